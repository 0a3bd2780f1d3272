"""Orchestrator module for the provisioning pipeline.

- Orchestrator: sequences the fixed steps and triggers rollback on failure
- StepExecutor / run_subprocess: run one step, stream subprocess output
- ProgressReporter / transition: the progress timeline state machine
- ResourceTracker / RollbackCoordinator: created resources and their undo
- await_ready / poll_until: bounded polling of external systems
"""

from .models import (
    StepStatus,
    ResourceKind,
    Step,
    ProgressTimeline,
    ResourceHandle,
    StepResult,
    StepRuntime,
    PipelineStep,
    RollbackReport,
    ErrorKind,
    OrchestrationOutcome,
)
from .progress import InvalidStateTransition, ProgressReporter, transition
from .polling import ReadinessTimeoutError, await_ready, poll_until
from .resources import ResourceTracker, RollbackCoordinator
from .step_executor import ExitCodeError, RollingBuffer, StepExecutor, run_subprocess
from .orchestrator import Orchestrator

__all__ = [
    "StepStatus",
    "ResourceKind",
    "Step",
    "ProgressTimeline",
    "ResourceHandle",
    "StepResult",
    "StepRuntime",
    "PipelineStep",
    "RollbackReport",
    "ErrorKind",
    "OrchestrationOutcome",
    "InvalidStateTransition",
    "ProgressReporter",
    "transition",
    "ReadinessTimeoutError",
    "await_ready",
    "poll_until",
    "ResourceTracker",
    "RollbackCoordinator",
    "ExitCodeError",
    "RollingBuffer",
    "StepExecutor",
    "run_subprocess",
    "Orchestrator",
]
