import asyncio
import json
import random

import pytest

from truthlens.analysis_client import ForensicAnalysisClient, parse_report
from truthlens.dashboard import build_dashboard
from truthlens.errors import DecodeError, InvalidTransition
from truthlens.frame_sampler import sample_bytes
from truthlens.progress import ProgressTicker
from truthlens.schemas import ApplicationPhase, SessionState
from truthlens.state_machine import (
    ANALYSIS_STEPS,
    GENERIC_FAILURE_MESSAGE,
    AnalysisSession,
    advance_progress,
    complete_progress,
    fail,
    frames_ready,
    report_ready,
    reset,
    select_file,
    snapshot,
)

from conftest import FakeGenaiClient

IDLE = ApplicationPhase.IDLE
EXTRACTING = ApplicationPhase.EXTRACTING
ANALYZING = ApplicationPhase.ANALYZING
RESULT = ApplicationPhase.RESULT
ERROR = ApplicationPhase.ERROR


# --- pure transitions ---

def test_video_upload_moves_to_extracting():
    state = select_file(SessionState(), "video/mp4", "clip.mp4")
    assert state.phase == EXTRACTING
    assert snapshot(state).step_label == "DECODING_MEDIA"


@pytest.mark.parametrize("content_type", ["image/png", "application/pdf", "", None, "text/video"])
def test_non_video_upload_goes_straight_to_error(content_type):
    state = select_file(SessionState(), content_type, "file.bin")
    assert state.phase == ERROR
    assert state.error == GENERIC_FAILURE_MESSAGE


def test_happy_path_transitions(frames, report_json):
    state = select_file(SessionState(), "video/webm")
    state = frames_ready(state, frames)
    assert state.phase == ANALYZING
    assert state.frames == tuple(frames)
    assert snapshot(state).step_label == ANALYSIS_STEPS[0]
    assert snapshot(state).engine_status == "ENGINE: BUSY"

    state = complete_progress(state)
    assert state.progress == 100
    state = report_ready(state, parse_report(report_json))
    assert state.phase == RESULT
    assert snapshot(state).engine_status == "ENGINE: ONLINE"


def test_progress_is_capped_and_steps_saturate(frames):
    state = frames_ready(select_file(SessionState(), "video/mp4"), frames)
    for _ in range(50):
        state = advance_progress(state, 4.9, cap=92)
        assert state.progress <= 92
    assert state.progress == 92
    assert snapshot(state).step_label == ANALYSIS_STEPS[-1]


def test_progress_cap_holds_even_for_large_increment(frames):
    state = frames_ready(select_file(SessionState(), "video/mp4"), frames)
    state = state.model_copy(update={"progress": 91.0})
    assert advance_progress(state, 4.9, cap=92).progress == 92


def test_failure_discards_frames(frames):
    state = frames_ready(select_file(SessionState(), "video/mp4", "clip.mp4"), frames)
    state = fail(state)
    assert state.phase == ERROR
    assert state.frames == ()
    assert state.report is None
    assert state.error == GENERIC_FAILURE_MESSAGE


def test_reset_clears_everything(frames, report_json):
    state = frames_ready(select_file(SessionState(), "video/mp4"), frames)
    state = report_ready(complete_progress(state), parse_report(report_json))
    assert reset(state) == SessionState()


@pytest.mark.parametrize("transition", [
    lambda s, f, r: frames_ready(s, f),
    lambda s, f, r: report_ready(s, r),
    lambda s, f, r: complete_progress(s),
    lambda s, f, r: advance_progress(s, 1.0),
    lambda s, f, r: fail(s),
])
def test_out_of_order_events_are_rejected(transition, frames, report_json):
    with pytest.raises(InvalidTransition):
        transition(SessionState(), frames, parse_report(report_json))


def test_cannot_select_file_while_busy():
    state = select_file(SessionState(), "video/mp4")
    with pytest.raises(InvalidTransition):
        select_file(state, "video/mp4")


# --- session ---

class FakeAnalyzer:
    def __init__(self, report=None, error=None, delay=0.0):
        self.report = report
        self.error = error
        self.delay = delay
        self.calls = []

    async def analyze(self, frames):
        self.calls.append(list(frames))
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.report


def _recording(session):
    states = []
    session.add_listener(states.append)
    return states


def _fast_ticker(on_tick):
    return ProgressTicker(on_tick, interval=0.001, max_increment=50.0, rng=random.Random(0))


def test_session_reaches_result(frames, report_json):
    analyzer = FakeAnalyzer(report=parse_report(report_json))
    session = AnalysisSession(sampler=lambda data, count, suffix: frames,
                              analyzer_factory=lambda: analyzer, result_delay=0)
    states = _recording(session)

    final = asyncio.run(session.run(b"video", "video/mp4", "clip.mp4"))

    assert final.phase == RESULT
    assert final.report.overall_score == 87
    assert [s.phase for s in states][:2] == [EXTRACTING, ANALYZING]
    assert analyzer.calls == [frames]


def test_session_progress_never_passes_cap_then_hits_100(frames, report_json):
    analyzer = FakeAnalyzer(report=parse_report(report_json), delay=0.1)
    session = AnalysisSession(sampler=lambda data, count, suffix: frames,
                              analyzer_factory=lambda: analyzer, result_delay=0,
                              ticker_factory=_fast_ticker)
    states = _recording(session)

    asyncio.run(session.run(b"video", "video/mp4"))

    analyzing = [s for s in states if s.phase == ANALYZING]
    completed = [i for i, s in enumerate(analyzing) if s.progress == 100]
    assert completed, "progress was never forced to 100"
    before_success = analyzing[:completed[0]]
    assert len(before_success) > 3
    assert all(s.progress <= 92 for s in before_success)
    assert max(s.progress for s in before_success) == 92
    assert states[-2].progress == 100
    assert states[-1].phase == RESULT


def test_non_video_never_enters_extracting(frames):
    sampled = []

    def sampler(data, count, suffix):
        sampled.append(data)
        return frames

    session = AnalysisSession(sampler=sampler, analyzer_factory=FakeAnalyzer, result_delay=0)
    states = _recording(session)

    final = asyncio.run(session.run(b"%PDF", "application/pdf", "doc.pdf"))

    assert final.phase == ERROR
    assert EXTRACTING not in [s.phase for s in states]
    assert sampled == []


def test_sampler_failure_ends_in_error(frames):
    def sampler(data, count, suffix):
        raise DecodeError("seek failed")

    session = AnalysisSession(sampler=sampler, analyzer_factory=FakeAnalyzer, result_delay=0)
    final = asyncio.run(session.run(b"video", "video/mp4"))

    assert final.phase == ERROR
    assert final.error == GENERIC_FAILURE_MESSAGE


def test_malformed_oracle_json_ends_in_error_with_frames_discarded(frames):
    analyzer = ForensicAnalysisClient(genai_client=FakeGenaiClient(text='{"overallScore": 87, "confidence":'))
    session = AnalysisSession(sampler=lambda data, count, suffix: frames,
                              analyzer_factory=lambda: analyzer, result_delay=0)

    final = asyncio.run(session.run(b"video", "video/mp4"))

    assert final.phase == ERROR
    assert final.error == GENERIC_FAILURE_MESSAGE
    assert final.frames == ()
    assert final.report is None


def test_ticker_is_stopped_on_failure(frames):
    tickers = []

    def factory(on_tick):
        ticker = _fast_ticker(on_tick)
        tickers.append(ticker)
        return ticker

    session = AnalysisSession(sampler=lambda data, count, suffix: frames,
                              analyzer_factory=lambda: FakeAnalyzer(error=RuntimeError("boom"), delay=0.02),
                              result_delay=0, ticker_factory=factory)

    asyncio.run(session.run(b"video", "video/mp4"))

    assert tickers and not tickers[0].running


def test_reset_after_error_returns_to_idle(frames):
    session = AnalysisSession(sampler=lambda data, count, suffix: frames,
                              analyzer_factory=lambda: FakeAnalyzer(error=RuntimeError("boom")),
                              result_delay=0)

    async def scenario():
        await session.run(b"video", "video/mp4")
        assert session.state.phase == ERROR
        return await session.reset()

    snap = asyncio.run(scenario())
    assert snap.phase == IDLE
    assert session.state == SessionState()


def test_reset_cancels_an_in_flight_run(frames, report_json):
    session = AnalysisSession(sampler=lambda data, count, suffix: frames,
                              analyzer_factory=lambda: FakeAnalyzer(report=parse_report(report_json), delay=10),
                              result_delay=0, ticker_factory=_fast_ticker)

    async def scenario():
        session.begin(b"video", "video/mp4")
        await asyncio.sleep(0.05)
        assert session.state.phase == ANALYZING
        await session.reset()
        await asyncio.sleep(0.02)
        return session.state

    assert asyncio.run(scenario()) == SessionState()


def test_reset_during_run_stays_idle_when_analysis_later_fails(frames):
    session = AnalysisSession(sampler=lambda data, count, suffix: frames,
                              analyzer_factory=lambda: FakeAnalyzer(error=RuntimeError("boom"), delay=0.05),
                              result_delay=0)
    states = _recording(session)

    async def scenario():
        run = asyncio.create_task(session.run(b"v", "video/mp4"))
        await asyncio.sleep(0.01)
        await session.reset()
        final = await run
        await asyncio.sleep(0.08)
        return final

    assert asyncio.run(scenario()) == SessionState()
    assert session.state == SessionState()
    assert ERROR not in [s.phase for s in states]


def test_subscribers_receive_snapshots(frames, report_json):
    session = AnalysisSession(sampler=lambda data, count, suffix: frames,
                              analyzer_factory=lambda: FakeAnalyzer(report=parse_report(report_json)),
                              result_delay=0)

    async def scenario():
        queue = session.subscribe()
        await session.run(b"video", "video/mp4")
        snaps = []
        while not queue.empty():
            snaps.append(queue.get_nowait())
        return snaps

    snaps = asyncio.run(scenario())
    assert snaps[0].phase == EXTRACTING
    assert snaps[-1].phase == RESULT
    assert snaps[-1].progress == 100


def test_nine_second_video_end_to_end(nine_second_video, report_payload):
    report_payload["detections"]["eyes"] = {"score": 80, "status": "manipulated", "observation": "..."}
    analyzer = ForensicAnalysisClient(genai_client=FakeGenaiClient(text=json.dumps(report_payload)))
    session = AnalysisSession(sampler=sample_bytes, analyzer_factory=lambda: analyzer,
                              frame_count=4, result_delay=0)

    final = asyncio.run(session.run(nine_second_video.read_bytes(), "video/x-msvideo", "clip.avi"))

    assert final.phase == RESULT
    assert [f.timestamp_seconds for f in final.frames] == pytest.approx([1.8, 3.6, 5.4, 7.2])
    view = build_dashboard(final.report, final.frames)
    assert view.classification == "AI_GENERATED"
    assert view.synthetic_probability_label == "87%"
