"""Capture executor tests against the fake render engine."""

import asyncio

import pytest

from pagecapture.capture import PHASE_PERCENT, CaptureExecutor, CaptureRequest, ErrorKind


def _request(**overrides) -> CaptureRequest:
    data = dict(url="https://example.com", viewport={"width": 1280, "height": 200})
    data.update(overrides)
    return CaptureRequest.model_validate(data)


def _executor(engine, **overrides) -> CaptureExecutor:
    kwargs = dict(interaction_settle_ms=0, section_settle_ms=0)
    kwargs.update(overrides)
    return CaptureExecutor(engine, **kwargs)


class _Recorder:
    def __init__(self) -> None:
        self.states: list = []

    async def __call__(self, state) -> None:
        self.states.append(state)

    def labels(self) -> list[str]:
        return [getattr(s, "phase", None) or s.status for s in self.states]

    def percents(self) -> list[int]:
        return [s.percent for s in self.states if hasattr(s, "percent")]


# --- phase sequencing ---


@pytest.mark.asyncio
async def test_minimal_request_phase_sequence(make_engine):
    engine = make_engine()
    recorder = _Recorder()

    outcome = await _executor(engine).run(_request(), recorder)

    assert outcome.status == "completed"
    assert recorder.labels() == ["starting", "viewport", "navigate", "capture", "completed"]
    percents = recorder.percents()
    assert percents == sorted(percents)
    assert percents[0] == 0 and percents[-1] == 100
    assert recorder.states[-1] is outcome
    assert engine.names() == ["set_viewport", "goto", "screenshot"]


@pytest.mark.asyncio
async def test_all_optional_phases_in_order(make_engine):
    engine = make_engine()
    recorder = _Recorder()
    request = _request(
        authentication={"login_url": "https://example.com/login", "username": "u", "password": "p"},
        hide_ads=True,
        wait_for_selector="#app",
        before_capture={"click": ["#accept"], "hover": [".menu"], "wait_ms": 1},
        delay_seconds=1,
    )

    outcome = await _executor(engine).run(request, recorder)

    assert outcome.status == "completed"
    assert recorder.labels() == [
        "starting", "auth", "viewport", "blocking", "navigate",
        "wait_selector", "interact", "delay", "capture", "completed",
    ]
    processing = [s for s in recorder.states if s.status == "processing"]
    assert [s.percent for s in processing] == [PHASE_PERCENT[s.phase] for s in processing]
    assert engine.names() == [
        "login", "set_viewport", "block_requests", "goto",
        "wait_for_selector", "click", "hover", "screenshot",
    ]


@pytest.mark.asyncio
async def test_invalid_request_rejected_before_any_phase(make_engine):
    engine = make_engine()
    recorder = _Recorder()

    outcome = await _executor(engine).run({"url": "not a url", "viewport": {"width": 0, "height": 10}}, recorder)

    assert outcome.status == "failed"
    assert outcome.error.kind is ErrorKind.INVALID_REQUEST
    assert recorder.states == [outcome]
    assert engine.sessions == 0


# --- capture shapes ---


@pytest.mark.asyncio
async def test_full_page_splits_into_sections(make_engine):
    engine = make_engine(content_height=700)  # 3.5 x viewport height

    outcome = await _executor(engine).run(_request(full_page=True))

    assert outcome.status == "completed"
    assert len(outcome.results) == 4
    assert [r.section_index for r in outcome.results] == [1, 2, 3, 4]
    assert {r.total_sections for r in outcome.results} == {4}
    offsets = [call[1] for call in engine.calls if call[0] == "scroll_to"]
    assert offsets == [0, 200, 400, 600]


@pytest.mark.asyncio
async def test_full_page_single_section_still_a_list(make_engine):
    engine = make_engine(content_height=150)

    outcome = await _executor(engine).run(_request(full_page=True))

    assert len(outcome.results) == 1
    assert outcome.results[0].section_index == 1
    assert outcome.results[0].total_sections == 1


@pytest.mark.asyncio
async def test_viewport_capture_has_no_section(make_engine):
    outcome = await _executor(make_engine()).run(_request())

    assert len(outcome.results) == 1
    result = outcome.results[0]
    assert result.section_index is None
    assert result.source_url == "https://example.com"
    assert (result.viewport.width, result.viewport.height) == (1280, 200)
    assert result.image_data.startswith(b"png:")


@pytest.mark.asyncio
async def test_selector_capture_produces_one_result(make_engine):
    engine = make_engine(content_height=5000)

    outcome = await _executor(engine).run(_request(selector="#hero", full_page=True, scroll_to_element=True))

    assert len(outcome.results) == 1
    assert outcome.results[0].image_data == b"element:#hero"
    assert "scroll_into_view" in engine.names()
    assert "content_height" not in engine.names()


@pytest.mark.asyncio
async def test_missing_element_fails(make_engine):
    engine = make_engine(missing_selectors={"#gone"})

    outcome = await _executor(engine).run(_request(selector="#gone"))

    assert outcome.status == "failed"
    assert outcome.error.kind is ErrorKind.ELEMENT_NOT_FOUND
    assert outcome.error.phase == "capture"
    assert "#gone" in outcome.error.message


# --- timeouts and failures ---


@pytest.mark.asyncio
async def test_navigation_timeout(make_engine):
    engine = make_engine(delays={"goto": 1})

    outcome = await _executor(engine, navigation_timeout=0.05).run(_request())

    assert outcome.status == "failed"
    assert outcome.error.kind is ErrorKind.NAVIGATION_TIMEOUT
    assert outcome.error.phase == "navigate"
    assert "screenshot" not in engine.names()


@pytest.mark.asyncio
async def test_engine_timeout_error_maps_to_navigation_timeout(make_engine):
    engine = make_engine(failures={"goto": TimeoutError("Timeout 30000ms exceeded")})

    outcome = await _executor(engine).run(_request())

    assert outcome.error.kind is ErrorKind.NAVIGATION_TIMEOUT


@pytest.mark.asyncio
async def test_wait_for_selector_timeout(make_engine):
    engine = make_engine(delays={"wait_for_selector": 1})

    outcome = await _executor(engine, selector_timeout=0.05).run(_request(wait_for_selector="#late"))

    assert outcome.error.kind is ErrorKind.SELECTOR_TIMEOUT
    assert outcome.error.phase == "wait_selector"


@pytest.mark.asyncio
async def test_interaction_failures_are_not_fatal(make_engine):
    engine = make_engine(broken_selectors={"#broken", ".flaky"}, delays={"click": 0})
    request = _request(before_capture={"click": ["#broken", "#ok"], "hover": [".flaky", ".fine"]})

    outcome = await _executor(engine).run(request)

    assert outcome.status == "completed"
    interactions = [call for call in engine.calls if call[0] in ("click", "hover")]
    assert interactions == [("click", "#broken"), ("click", "#ok"), ("hover", ".flaky"), ("hover", ".fine")]


@pytest.mark.asyncio
async def test_slow_interaction_times_out_and_continues(make_engine):
    engine = make_engine(delays={"click": 1})
    request = _request(before_capture={"click": ["#slow"]})

    outcome = await _executor(engine, interaction_timeout=0.05).run(request)

    assert outcome.status == "completed"
    assert engine.names()[-1] == "screenshot"


@pytest.mark.asyncio
async def test_engine_failure_is_delegate_error(make_engine):
    engine = make_engine(failures={"screenshot": RuntimeError("Target closed")})

    outcome = await _executor(engine).run(_request())

    assert outcome.error.kind is ErrorKind.DELEGATE_ERROR
    assert outcome.error.phase == "capture"
    assert outcome.error.message == "Target closed"


@pytest.mark.asyncio
async def test_cancellation_emits_no_terminal_state(make_engine):
    engine = make_engine(delays={"goto": 5})
    recorder = _Recorder()

    task = asyncio.create_task(_executor(engine).run(_request(), recorder))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert recorder.labels() == ["starting", "viewport", "navigate"]
