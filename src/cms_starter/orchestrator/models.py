"""Data models for the orchestrator module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .resources import ResourceTracker


class StepStatus(str, Enum):
    """步骤执行状态"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETE, StepStatus.ERROR)


class ResourceKind(str, Enum):
    """Kinds of external resources that rollback knows how to delete."""
    REMOTE_REPO = "remote_repo"
    CLOUD_PROJECT = "cloud_project"


@dataclass(frozen=True)
class Step:
    """One entry of the progress timeline (immutable snapshot)."""
    label: str
    status: StepStatus = StepStatus.PENDING
    error: Optional[str] = None
    output_lines: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "status": self.status.value,
            "error": self.error,
            "output_lines": list(self.output_lines),
        }


@dataclass(frozen=True)
class ProgressTimeline:
    """Ordered, fixed-length sequence of steps for a single run."""
    steps: Tuple[Step, ...]

    @classmethod
    def from_labels(cls, labels: List[str]) -> "ProgressTimeline":
        return cls(steps=tuple(Step(label=label) for label in labels))

    def __len__(self) -> int:
        return len(self.steps)

    def __getitem__(self, index: int) -> Step:
        return self.steps[index]

    def __iter__(self):
        return iter(self.steps)

    @property
    def statuses(self) -> List[StepStatus]:
        return [step.status for step in self.steps]

    def in_progress_indices(self) -> List[int]:
        return [i for i, step in enumerate(self.steps) if step.status == StepStatus.IN_PROGRESS]

    def to_list(self) -> List[Dict[str, Any]]:
        return [step.to_dict() for step in self.steps]


@dataclass
class ResourceHandle:
    """Identifier of an externally created object that may need deletion."""
    kind: ResourceKind
    identifier: str
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def describe(self) -> str:
        return f"{self.kind.value}:{self.identifier}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "identifier": self.identifier,
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
        }


@dataclass
class StepResult:
    """步骤执行结果"""
    success: bool
    status: StepStatus
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def succeeded(cls, outputs: Optional[Dict[str, Any]] = None) -> "StepResult":
        """创建成功结果"""
        return cls(success=True, status=StepStatus.COMPLETE, outputs=outputs or {})

    @classmethod
    def failed(cls, error: str) -> "StepResult":
        """创建失败结果"""
        return cls(success=False, status=StepStatus.ERROR, error=error)


@dataclass
class StepRuntime:
    """What a running step can see and touch.

    `context` holds the merged outputs of every step that already completed
    (e.g. the database URL produced by step 4 is read by step 5 and step 8).
    """
    index: int
    label: str
    context: Dict[str, Any]
    tracker: "ResourceTracker"
    emit_output: Callable[[List[str]], None]

    def record(self, kind: ResourceKind, identifier: str, **metadata: str) -> ResourceHandle:
        """Record a freshly created resource so rollback can remove it."""
        return self.tracker.record(kind, identifier, **metadata)

    def require(self, key: str) -> Any:
        """Read an output of an earlier step, failing loudly when it is absent."""
        if key not in self.context:
            raise KeyError(f"Step '{self.label}' needs '{key}' but no earlier step produced it")
        return self.context[key]


@dataclass
class PipelineStep:
    """A labelled unit of work in the fixed pipeline.

    `run` returns a mapping of outputs (merged into the shared context), a
    `StepResult`, or None. Failure is signalled by raising.
    """
    label: str
    run: Callable[[StepRuntime], Any]


@dataclass
class RollbackReport:
    """What compensation attempted and achieved."""
    attempted: List[ResourceHandle] = field(default_factory=list)
    deleted: List[ResourceHandle] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def clean(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": [h.describe() for h in self.attempted],
            "deleted": [h.describe() for h in self.deleted],
            "failures": dict(self.failures),
        }


class ErrorKind(str, Enum):
    PREFLIGHT = "preflight"
    STEP = "step"


@dataclass
class OrchestrationOutcome:
    """Terminal result of one orchestration run.

    `failing_step` is the 1-based position of the failed step in the
    timeline (None for success and for pre-flight failures).
    """
    success: bool
    timeline: ProgressTimeline
    outputs: Dict[str, Any] = field(default_factory=dict)
    resources: List[ResourceHandle] = field(default_factory=list)
    failing_step: Optional[int] = None
    failing_label: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    rollback: Optional[RollbackReport] = None

    @classmethod
    def succeeded(
        cls,
        timeline: ProgressTimeline,
        outputs: Dict[str, Any],
        resources: List[ResourceHandle],
    ) -> "OrchestrationOutcome":
        return cls(success=True, timeline=timeline, outputs=outputs, resources=resources)

    @classmethod
    def preflight_failed(cls, timeline: ProgressTimeline, error: str) -> "OrchestrationOutcome":
        return cls(
            success=False,
            timeline=timeline,
            error=error,
            error_kind=ErrorKind.PREFLIGHT,
        )

    @classmethod
    def step_failed(
        cls,
        timeline: ProgressTimeline,
        index: int,
        error: str,
        resources: List[ResourceHandle],
        rollback: RollbackReport,
    ) -> "OrchestrationOutcome":
        return cls(
            success=False,
            timeline=timeline,
            resources=resources,
            failing_step=index + 1,
            failing_label=timeline[index].label,
            error=error,
            error_kind=ErrorKind.STEP,
            rollback=rollback,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "outputs": self.outputs,
            "resources": [h.to_dict() for h in self.resources],
            "failing_step": self.failing_step,
            "failing_label": self.failing_label,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "rollback": self.rollback.to_dict() if self.rollback else None,
        }
