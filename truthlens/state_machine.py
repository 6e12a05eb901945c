import asyncio
import logging
import os
from typing import Any, Callable, List, Optional, Sequence

from truthlens.analysis_client import ForensicAnalysisClient
from truthlens.config import settings
from truthlens.errors import InputValidationError, InvalidTransition
from truthlens.frame_sampler import sample_bytes
from truthlens.progress import ProgressTicker
from truthlens.schemas import (
    ApplicationPhase,
    ForensicReport,
    SampledFrame,
    SessionSnapshot,
    SessionState,
)

logger = logging.getLogger("TruthLensEngine")

GENERIC_FAILURE_MESSAGE = "Analysis failed. This might be due to content safety filters or API connectivity issues."

EXTRACTING_STEP_LABEL = "DECODING_MEDIA"

ANALYSIS_STEPS = [
    "DECODING_TEMPORAL_DATA",
    "ISOLATING_FACIAL_LANDMARKS",
    "ANALYZING_BLINK_PATTERNS",
    "CHECKING_LIP_SYNC_COHERENCE",
    "SCANNING_SKIN_TEXTURE_NOISE",
    "IDENTIFYING_LIGHTING_INCONSISTENCIES",
    "COMPUTING_NEURAL_WEIGHTS"
]


# ==========================================
# PURE TRANSITIONS
# ==========================================

def _require(state: SessionState, event: str, *phases: ApplicationPhase):
    if state.phase not in phases:
        raise InvalidTransition(event, state.phase)


def is_video_content_type(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.lower().startswith("video/")


def select_file(state: SessionState, content_type: Optional[str], filename: Optional[str] = None) -> SessionState:
    """IDLE -> EXTRACTING for a video upload, IDLE -> ERROR for anything else."""
    _require(state, "select_file", ApplicationPhase.IDLE)
    if not is_video_content_type(content_type):
        return SessionState(phase=ApplicationPhase.ERROR, filename=filename, error=GENERIC_FAILURE_MESSAGE)
    return SessionState(phase=ApplicationPhase.EXTRACTING, filename=filename)


def frames_ready(state: SessionState, frames: Sequence[SampledFrame]) -> SessionState:
    _require(state, "frames_ready", ApplicationPhase.EXTRACTING)
    return state.model_copy(update={
        "phase": ApplicationPhase.ANALYZING,
        "frames": tuple(frames),
        "progress": 0.0,
        "step_index": 0,
    })


def advance_progress(state: SessionState, increment: float, cap: Optional[float] = None) -> SessionState:
    """One cosmetic tick: bump progress (never past the cap) and move to the next step label."""
    _require(state, "advance_progress", ApplicationPhase.ANALYZING)
    cap = settings.PROGRESS_CAP if cap is None else cap
    progress = state.progress if state.progress >= cap else min(state.progress + max(increment, 0.0), cap)
    step_index = min(state.step_index + 1, len(ANALYSIS_STEPS) - 1)
    return state.model_copy(update={"progress": progress, "step_index": step_index})


def complete_progress(state: SessionState) -> SessionState:
    _require(state, "complete_progress", ApplicationPhase.ANALYZING)
    return state.model_copy(update={"progress": 100.0})


def report_ready(state: SessionState, report: ForensicReport) -> SessionState:
    _require(state, "report_ready", ApplicationPhase.ANALYZING)
    return state.model_copy(update={"phase": ApplicationPhase.RESULT, "report": report, "progress": 100.0})


def fail(state: SessionState, message: str = GENERIC_FAILURE_MESSAGE) -> SessionState:
    """Any in-flight phase -> ERROR. Frames and partial data are dropped."""
    _require(state, "fail", ApplicationPhase.EXTRACTING, ApplicationPhase.ANALYZING)
    return SessionState(phase=ApplicationPhase.ERROR, filename=state.filename, error=message)


def reset(state: SessionState) -> SessionState:
    return SessionState()


def step_label(state: SessionState) -> Optional[str]:
    if state.phase == ApplicationPhase.EXTRACTING:
        return EXTRACTING_STEP_LABEL
    if state.phase == ApplicationPhase.ANALYZING:
        return ANALYSIS_STEPS[min(state.step_index, len(ANALYSIS_STEPS) - 1)]
    return None


def snapshot(state: SessionState) -> SessionSnapshot:
    return SessionSnapshot(
        phase=state.phase,
        progress=int(round(state.progress)),
        step_label=step_label(state),
        error=state.error,
        filename=state.filename,
        frame_count=len(state.frames),
        engine_status="ENGINE: BUSY" if state.phase == ApplicationPhase.ANALYZING else "ENGINE: ONLINE",
        max_upload_mb=settings.MAX_UPLOAD_MB,
    )


# ==========================================
# SESSION (single owner of the state)
# ==========================================

def _default_analyzer():
    # Built lazily so a missing API key surfaces as a failed analysis, not a startup crash
    return ForensicAnalysisClient()


class AnalysisSession:
    """
    Owns the SessionState and runs IDLE -> EXTRACTING -> ANALYZING -> RESULT/ERROR.

    `sampler(video_bytes, count, suffix)` and `analyzer_factory()` are injectable;
    the defaults use OpenCV and Gemini.
    """

    def __init__(self, sampler: Optional[Callable[[bytes, int, str], List[SampledFrame]]] = None,
                 analyzer_factory: Optional[Callable[[], Any]] = None,
                 frame_count: Optional[int] = None,
                 result_delay: Optional[float] = None,
                 ticker_factory: Optional[Callable[[Callable[[float], None]], ProgressTicker]] = None):
        self.sampler = sampler or sample_bytes
        self.analyzer_factory = analyzer_factory or _default_analyzer
        self.frame_count = settings.FRAME_COUNT if frame_count is None else frame_count
        self.result_delay = settings.RESULT_DELAY_SECONDS if result_delay is None else result_delay
        self.ticker_factory = ticker_factory or (lambda on_tick: ProgressTicker(on_tick))

        self._analyzer = None
        self._state = SessionState()
        self._task: Optional[asyncio.Task] = None
        self._ticker: Optional[ProgressTicker] = None
        self._listeners: List[Callable[[SessionState], None]] = []
        self._queues: List[asyncio.Queue] = []

    @property
    def state(self) -> SessionState:
        return self._state

    def snapshot(self) -> SessionSnapshot:
        return snapshot(self._state)

    # --- observers ---

    def add_listener(self, listener: Callable[[SessionState], None]):
        self._listeners.append(listener)

    def subscribe(self) -> asyncio.Queue:
        """Queue receiving a SessionSnapshot on every state change."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._queues:
            self._queues.remove(queue)

    def _set_state(self, new_state: SessionState):
        old_phase = self._state.phase
        self._state = new_state
        if new_state.phase != old_phase:
            logger.info(f"Phase {old_phase.value} -> {new_state.phase.value}")
        for listener in list(self._listeners):
            listener(new_state)
        snap = snapshot(new_state)
        for queue in list(self._queues):
            queue.put_nowait(snap)

    # --- pipeline ---

    def begin(self, video_bytes: bytes, content_type: Optional[str], filename: Optional[str] = None) -> SessionSnapshot:
        """
        Validates the upload and schedules the pipeline on the running loop.
        Returns immediately with the EXTRACTING (or ERROR) snapshot.
        """
        if not self._accept(content_type, filename):
            return self.snapshot()
        self._task = asyncio.create_task(self._process(video_bytes, filename))
        return self.snapshot()

    async def run(self, video_bytes: bytes, content_type: Optional[str], filename: Optional[str] = None) -> SessionState:
        """Runs the whole pipeline and returns the terminal state (RESULT or ERROR, or IDLE after a reset)."""
        if not self._accept(content_type, filename):
            return self._state

        # Tracked like begin() so reset() can cancel it
        task = asyncio.create_task(self._process(video_bytes, filename))
        self._task = task
        try:
            await asyncio.wait([task])
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not task.cancelled():
            task.result()
        return self._state

    def _accept(self, content_type: Optional[str], filename: Optional[str]) -> bool:
        new_state = select_file(self._state, content_type, filename)
        if new_state.phase == ApplicationPhase.ERROR:
            err = InputValidationError(f"Rejected upload {filename!r}: content type {content_type!r} is not video/*")
            logger.error(f"Input validation failed: {err}")
        self._set_state(new_state)
        return new_state.phase == ApplicationPhase.EXTRACTING

    async def _process(self, video_bytes: bytes, filename: Optional[str]):
        try:
            suffix = os.path.splitext(filename or "")[1] or ".mp4"
            frames = await asyncio.to_thread(self.sampler, video_bytes, self.frame_count, suffix)
            logger.info(f"Extracted {len(frames)} frames")
            self._set_state(frames_ready(self._state, frames))

            self._ticker = self.ticker_factory(self._on_tick)
            self._ticker.start()

            if self._analyzer is None:
                self._analyzer = self.analyzer_factory()
            report = await self._analyzer.analyze(list(frames))

            await self._stop_ticker()
            self._set_state(complete_progress(self._state))
            await asyncio.sleep(self.result_delay)
            self._set_state(report_ready(self._state, report))
        except asyncio.CancelledError:
            await self._stop_ticker()
            raise
        except Exception as e:
            await self._stop_ticker()
            logger.error(f"Analysis pipeline failed for {filename!r}: {e}", exc_info=True)
            self._set_state(fail(self._state))

    def _on_tick(self, increment: float):
        if self._state.phase != ApplicationPhase.ANALYZING:
            return
        self._set_state(advance_progress(self._state, increment))

    async def _stop_ticker(self):
        ticker, self._ticker = self._ticker, None
        if ticker is not None:
            await ticker.stop()

    async def reset(self) -> SessionSnapshot:
        """Discards everything, including any in-flight run, and returns to IDLE."""
        task, self._task = self._task, None
        pending = task is not None and not task.done()
        if pending:
            task.cancel()
        # IDLE is published before the cancelled run unwinds, so its awaiter sees it
        self._set_state(reset(self._state))
        if pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._stop_ticker()
        return self.snapshot()
