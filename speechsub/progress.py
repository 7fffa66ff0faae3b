"""
Progress Channel — Shared pipeline state and per-stage progress.

The orchestrator is the only writer. Readers (console renderer, GUI
redraw loop) either poll ``snapshot()`` or subscribe a listener that is
called with every new snapshot.

Snapshots are immutable and replaced wholesale, so a reader never
blocks the worker and never sees a half-updated state/progress pair.
"""

import enum
import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class PipelineState(enum.IntEnum):
    IDLE = 0
    RESAMPLING = 1
    SEGMENTING = 2
    TRANSCRIBING = 3
    SAVING = 4
    FINISHED = 5

    @property
    def label(self) -> str:
        return _STATE_LABELS[self]


_STATE_LABELS = {
    PipelineState.IDLE: "Idle",
    PipelineState.RESAMPLING: "Resampling Audio...",
    PipelineState.SEGMENTING: "Detecting Speech...",
    PipelineState.TRANSCRIBING: "Transcribing Speech...",
    PipelineState.SAVING: "Saving Subtitles...",
    PipelineState.FINISHED: "Finished",
}


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of the pipeline. Progress is per stage."""
    state: PipelineState = PipelineState.IDLE
    progress: float = 0.0
    version: int = 0
    error: Optional[str] = None

    @property
    def percent(self) -> int:
        return int(self.progress * 100)


Listener = Callable[[ProgressSnapshot], None]


class ProgressChannel:
    """
    Single-writer holder of the current PipelineState and ProgressValue.

    Transitions are linear: each ``enter()`` must move forward through
    PipelineState; only ``reset()`` returns to IDLE for a new run.
    """

    def __init__(self):
        self._snapshot = ProgressSnapshot()
        self._write_lock = threading.Lock()
        self._listeners: List[Listener] = []

    def snapshot(self) -> ProgressSnapshot:
        """Latest snapshot. Never blocks."""
        return self._snapshot

    @property
    def state(self) -> PipelineState:
        return self._snapshot.state

    @property
    def progress(self) -> float:
        return self._snapshot.progress

    # ── Writer API (orchestrator only) ──

    def reset(self):
        self._publish(state=PipelineState.IDLE, progress=0.0, error=None)

    def enter(self, state: PipelineState):
        """Move to the next stage with progress reset to 0."""
        current = self._snapshot.state
        if state <= current:
            raise ValueError(
                f"Illegal pipeline transition {current.name} -> {state.name}"
            )
        self._publish(state=state, progress=0.0)

    def update(self, progress: float):
        self._publish(progress=min(1.0, max(0.0, float(progress))))

    def complete(self):
        self._publish(progress=1.0)

    def fail(self, error):
        """Record a fatal error. The state stays on the failing stage."""
        self._publish(error=str(error) or type(error).__name__)

    # ── Observers ──

    def subscribe(self, listener: Listener):
        with self._write_lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener):
        with self._write_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _publish(self, **changes):
        with self._write_lock:
            current = self._snapshot
            snap = replace(current, version=current.version + 1, **changes)
            self._snapshot = snap
            listeners = list(self._listeners)

        # Listeners run outside the lock
        for listener in listeners:
            listener(snap)


_default_channel = ProgressChannel()


def get_progress_channel() -> ProgressChannel:
    """The process-wide channel used when none is injected."""
    return _default_channel
