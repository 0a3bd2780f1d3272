"""Progress timeline state machine.

`transition` is a pure function over immutable timelines; `ProgressReporter`
owns the current timeline for one run and fans snapshots out to subscribers
(the terminal display, the run log, tests).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, List, Optional, Sequence

from .models import ProgressTimeline, StepStatus

logger = logging.getLogger(__name__)

DEFAULT_LIVE_LINES = 5

_ALLOWED = {
    StepStatus.PENDING: {StepStatus.IN_PROGRESS},
    StepStatus.IN_PROGRESS: {StepStatus.IN_PROGRESS, StepStatus.COMPLETE, StepStatus.ERROR},
    StepStatus.COMPLETE: set(),
    StepStatus.ERROR: set(),
}


class InvalidStateTransition(ValueError):
    """Raised when a step is moved along an edge the state machine forbids."""


def transition(
    timeline: ProgressTimeline,
    index: int,
    new_status: StepStatus,
    error: Optional[str] = None,
    output_lines: Optional[Sequence[str]] = None,
    max_lines: int = DEFAULT_LIVE_LINES,
) -> ProgressTimeline:
    """Return a new timeline with step `index` moved to `new_status`.

    `in_progress -> in_progress` is the output-only update used while a long
    subprocess streams lines; `output_lines=None` keeps the current lines.
    Terminal transitions drop the live output.
    """
    if not 0 <= index < len(timeline):
        raise IndexError(f"Step index {index} out of range (0..{len(timeline) - 1})")

    current = timeline[index]
    if new_status not in _ALLOWED[current.status]:
        raise InvalidStateTransition(
            f"Step {index + 1} '{current.label}': {current.status.value} -> {new_status.value} is not allowed"
        )
    if error is not None and new_status != StepStatus.ERROR:
        raise InvalidStateTransition("An error message can only accompany the 'error' status")

    if new_status == StepStatus.IN_PROGRESS and current.status == StepStatus.PENDING:
        busy = [i for i in timeline.in_progress_indices() if i != index]
        if busy:
            raise InvalidStateTransition(
                f"Cannot start step {index + 1} while step {busy[0] + 1} is still in progress"
            )

    if new_status.is_terminal:
        lines: tuple = ()
    elif output_lines is None:
        lines = current.output_lines
    else:
        lines = tuple(output_lines)[-max_lines:] if max_lines > 0 else ()

    updated = replace(
        current,
        status=new_status,
        error=error if new_status == StepStatus.ERROR else None,
        output_lines=lines,
    )
    steps = timeline.steps[:index] + (updated,) + timeline.steps[index + 1:]
    return ProgressTimeline(steps=steps)


Subscriber = Callable[[ProgressTimeline], None]


class ProgressReporter:
    """Holds the live timeline of one run and notifies subscribers on change."""

    def __init__(self, labels: List[str], max_lines: int = DEFAULT_LIVE_LINES) -> None:
        self._timeline = ProgressTimeline.from_labels(labels)
        self.max_lines = max_lines
        self._subscribers: List[Subscriber] = []

    @property
    def timeline(self) -> ProgressTimeline:
        return self._timeline

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)
        callback(self._timeline)

    def start(self, index: int) -> None:
        self._apply(index, StepStatus.IN_PROGRESS)

    def update_output(self, index: int, lines: Sequence[str]) -> None:
        self._apply(index, StepStatus.IN_PROGRESS, output_lines=lines)

    def complete(self, index: int) -> None:
        self._apply(index, StepStatus.COMPLETE)

    def fail(self, index: int, error: str) -> None:
        self._apply(index, StepStatus.ERROR, error=error)

    def _apply(
        self,
        index: int,
        status: StepStatus,
        error: Optional[str] = None,
        output_lines: Optional[Sequence[str]] = None,
    ) -> None:
        self._timeline = transition(
            self._timeline, index, status,
            error=error, output_lines=output_lines, max_lines=self.max_lines,
        )
        if status != StepStatus.IN_PROGRESS or output_lines is None:
            logger.debug("Step %d -> %s", index + 1, status.value)
        for callback in list(self._subscribers):
            try:
                callback(self._timeline)
            except Exception:
                logger.warning("⚠️  Progress subscriber %r failed", callback, exc_info=True)
