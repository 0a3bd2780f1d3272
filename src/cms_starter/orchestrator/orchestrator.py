"""Provisioning orchestrator: sequences the fixed pipeline and unwinds on failure."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import PreflightError
from .models import (
    OrchestrationOutcome, PipelineStep, RollbackReport, StepResult, StepRuntime, StepStatus,
)
from .progress import ProgressReporter
from .resources import ResourceTracker, RollbackCoordinator
from .step_executor import StepExecutor

logger = logging.getLogger(__name__)

Preflight = Callable[[Dict[str, Any]], None]

_SENSITIVE_MARKERS = ("password", "secret", "token", "database_url")


def _redact(outputs: Dict[str, Any]) -> Dict[str, Any]:
    redacted = {}
    for key, value in outputs.items():
        if any(marker in str(key).lower() for marker in _SENSITIVE_MARKERS):
            redacted[key] = "***"
        else:
            redacted[key] = value
    return redacted


class Orchestrator:
    """
    编排器

    Runs a fixed list of `PipelineStep`s strictly in order. Each step sees
    the merged outputs of the steps before it. The first failure stops the
    run, marks that step `error`, and hands every tracked resource to the
    rollback coordinator. One instance drives one run.
    """

    def __init__(
        self,
        steps: List[PipelineStep],
        rollback: RollbackCoordinator,
        preflight: Optional[Preflight] = None,
        reporter: Optional[ProgressReporter] = None,
        log_dir: Optional[str] = None,
        run_name: str = "run",
    ):
        if not steps:
            raise ValueError("An orchestrator needs at least one step")
        labels = [step.label for step in steps]
        if reporter is None:
            reporter = ProgressReporter(labels)
        elif [s.label for s in reporter.timeline] != labels:
            raise ValueError("Reporter timeline does not match the step list")

        self.steps = steps
        self.rollback = rollback
        self.preflight = preflight
        self.reporter = reporter
        self.executor = StepExecutor(reporter)
        self.tracker = ResourceTracker()
        self.run_name = run_name

        self.log_dir = Path(log_dir) if log_dir else None
        self.run_log: Dict[str, Any] = {}
        self.current_log_file: Optional[Path] = None
        self._started = False

    def run(self, context: Optional[Dict[str, Any]] = None) -> OrchestrationOutcome:
        """Execute the pipeline once and return its terminal outcome."""
        if self._started:
            raise RuntimeError("Orchestrator instances are single-use")
        self._started = True

        context = dict(context or {})
        outputs: Dict[str, Any] = {}
        self._init_log()

        if self.preflight is not None:
            try:
                self.preflight(context)
            except (PreflightError, ValueError, OSError) as exc:
                logger.error("❌ Pre-flight check failed: %s", exc)
                outcome = OrchestrationOutcome.preflight_failed(self.reporter.timeline, str(exc))
                self._finalize_log(outcome)
                return outcome

        logger.info("=" * 60)
        logger.info("🚀 PROVISIONING %s (%d steps)", self.run_name, len(self.steps))
        logger.info("=" * 60)

        failure: Optional[Tuple[int, str]] = None
        index = 0
        try:
            for index, step in enumerate(self.steps):
                runtime = StepRuntime(
                    index=index,
                    label=step.label,
                    context=context,
                    tracker=self.tracker,
                    emit_output=lambda lines, i=index: self.reporter.update_output(i, lines),
                )
                result = self.executor.execute(index, step, runtime)
                self._log_step(index, result)

                if not result.success:
                    failure = (index, result.error or "Unknown error")
                    break

                outputs.update(result.outputs)
                context.update(result.outputs)
        except Exception as exc:
            logger.error("❌ Step %d crashed outside its body", index + 1, exc_info=True)
            error = f"{type(exc).__name__}: {exc}"
            if self.reporter.timeline[index].status == StepStatus.IN_PROGRESS:
                self.reporter.fail(index, error)
            failure = (index, error)

        if failure is not None:
            return self._fail(*failure)

        logger.info("🎉 Provisioning completed successfully!")
        outcome = OrchestrationOutcome.succeeded(self.reporter.timeline, outputs, self.tracker.handles)
        self._finalize_log(outcome)
        return outcome

    def _fail(self, index: int, error: str) -> OrchestrationOutcome:
        report = self.rollback.compensate(self.tracker)
        if not report.clean:
            logger.warning("⚠️  Rollback left %d resource(s) behind", len(report.failures))
        outcome = OrchestrationOutcome.step_failed(
            self.reporter.timeline,
            index,
            error,
            self.tracker.handles,
            report,
        )
        self._finalize_log(outcome)
        return outcome

    # ------------------------------------------------------------------
    # JSON run log
    # ------------------------------------------------------------------

    def _init_log(self) -> None:
        """初始化日志文件"""
        if self.log_dir is None:
            return
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("⚠️  Run log disabled, cannot create %s: %s", self.log_dir, exc)
            return
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.current_log_file = self.log_dir / f"provision_{self.run_name}_{timestamp}.json"
        self.run_log = {
            "version": "1.0",
            "run_name": self.run_name,
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "status": "running",
            "steps": [],
            "resources": [],
            "rollback": None,
        }
        logger.info("📝 Logging to: %s", self.current_log_file)
        self._save_log()

    def _log_step(self, index: int, result: StepResult) -> None:
        if self.current_log_file is None:
            return
        self.run_log["steps"].append({
            "index": index + 1,
            "label": self.steps[index].label,
            "status": result.status.value,
            "error": result.error,
            "outputs": _redact(result.outputs),
            "timestamp": datetime.now().isoformat(),
        })
        self.run_log["resources"] = [h.to_dict() for h in self.tracker.handles]
        self._save_log()

    def _finalize_log(self, outcome: OrchestrationOutcome) -> None:
        """完成日志记录"""
        if self.current_log_file is None:
            return
        self.run_log["end_time"] = datetime.now().isoformat()
        if outcome.success:
            self.run_log["status"] = "success"
        else:
            self.run_log["status"] = outcome.error_kind.value if outcome.error_kind else "failed"
        self.run_log["error"] = outcome.error
        self.run_log["failing_step"] = outcome.failing_step
        self.run_log["outputs"] = _redact(outcome.outputs)
        rollback: Optional[RollbackReport] = outcome.rollback
        self.run_log["rollback"] = rollback.to_dict() if rollback else None
        self._save_log()
        logger.info("📄 Log saved to: %s", self.current_log_file)

    def _save_log(self) -> None:
        """保存日志到文件"""
        if not self.current_log_file:
            return
        try:
            with open(self.current_log_file, "w", encoding="utf-8") as f:
                json.dump(self.run_log, f, indent=2, ensure_ascii=False, default=str)
        except (OSError, TypeError, ValueError) as exc:
            # 日志写入失败不影响编排流程
            logger.warning("⚠️  Failed to write run log %s: %s", self.current_log_file, exc)
