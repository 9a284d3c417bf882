"""Request/response Pydantic models."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from pagecapture.capture.models import Authentication, BeforeCapture, Viewport


class CaptureSettings(BaseModel):
    """Capture options shared by every URL of a batch."""

    delay_seconds: int = Field(default=0, ge=0)
    full_page: bool = False
    selector: str | None = None
    wait_for_selector: str | None = None
    scroll_to_element: bool = False
    hide_ads: bool = False
    hide_cookie_banners: bool = False
    before_capture: BeforeCapture | None = None
    authentication: Authentication | None = None


class BatchRequest(BaseModel):
    urls: list[str] = Field(min_length=1)
    viewport: Viewport
    settings: CaptureSettings = CaptureSettings()

    def item_payloads(self) -> list[dict[str, Any]]:
        """One raw request per URL; each is validated when its turn comes."""
        shared = self.settings.model_dump(exclude_none=True)
        viewport = self.viewport.model_dump()
        return [{**shared, "url": url, "viewport": viewport} for url in self.urls]


class CaptureAccepted(BaseModel):
    task_id: str
    status: Literal["accepted"] = "accepted"


class BatchAccepted(BaseModel):
    batch_id: str
    total: int
    status: Literal["accepted"] = "accepted"


class MessageResponse(BaseModel):
    message: str
