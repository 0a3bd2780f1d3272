"""Step executor: runs one pipeline step and reports its status transitions."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
from collections import deque
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..errors import ProvisioningError
from .models import PipelineStep, StepResult, StepRuntime
from .progress import ProgressReporter

logger = logging.getLogger(__name__)

LIVE_WINDOW = 5
ERROR_WINDOW = 50


class RollingBuffer:
    """Most-recent-N line window, safe to append from a reader thread."""

    def __init__(self, maxlen: int) -> None:
        if maxlen < 1:
            raise ValueError("maxlen must be at least 1")
        self.maxlen = maxlen
        self._lines: deque = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)


class ExitCodeError(ProvisioningError):
    """Raised when a subprocess exits non-zero or cannot be spawned."""

    def __init__(
        self,
        command: Sequence[str],
        exit_code: Optional[int],
        output_lines: List[str],
        reason: Optional[str] = None,
        label: Optional[str] = None,
    ) -> None:
        self.command = list(command)
        self.exit_code = exit_code
        self.output_lines = output_lines
        name = label or " ".join(self.command)
        if exit_code is None:
            message = f"Failed to run {name}: {reason or 'process could not be started'}"
        else:
            message = f"{name} failed with exit code {exit_code}"
        if output_lines:
            message += "\n\nOutput:\n" + "\n".join(output_lines)
        super().__init__(message)


def run_subprocess(
    command: Sequence[str],
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    on_output: Optional[Callable[[List[str]], None]] = None,
    *,
    label: Optional[str] = None,
    live_lines: int = LIVE_WINDOW,
    error_lines: int = ERROR_WINDOW,
) -> None:
    """Run `command`, streaming merged stdout/stderr line by line.

    Every non-blank line lands in two windows: a short live window passed to
    `on_output` after each line, and a longer one kept for the error message.
    `env` entries are layered over the current process environment.

    Raises:
        ExitCodeError: on non-zero exit or spawn failure.
    """
    live = RollingBuffer(live_lines)
    retained = RollingBuffer(error_lines)

    # npm/npx are .cmd shims on Windows; resolve them through PATH
    argv = list(command)
    argv[0] = shutil.which(argv[0]) or argv[0]

    full_env: Optional[Dict[str, str]] = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)

    logger.debug("Running %s in %s", " ".join(command), cwd or os.getcwd())
    try:
        process = subprocess.Popen(
            argv,
            cwd=cwd,
            env=full_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
    except OSError as exc:
        raise ExitCodeError(command, None, [], reason=str(exc), label=label) from exc

    assert process.stdout is not None
    try:
        with process.stdout:
            for raw in process.stdout:
                line = raw.strip()
                if not line:
                    continue
                live.append(line)
                retained.append(line)
                if on_output:
                    on_output(live.snapshot())
    except BaseException:
        # 回调出错时不留下孤儿进程
        process.kill()
        process.wait()
        raise

    exit_code = process.wait()
    if exit_code != 0:
        raise ExitCodeError(command, exit_code, retained.snapshot(), label=label)


class StepExecutor:
    """
    步骤执行器

    Runs a single `PipelineStep` between a start and a finish transition.
    Whatever the step raises becomes a failed `StepResult`; the executor
    itself never raises for step errors.
    """

    def __init__(self, reporter: ProgressReporter) -> None:
        self.reporter = reporter

    def execute(self, index: int, step: PipelineStep, runtime: StepRuntime) -> StepResult:
        total = len(self.reporter.timeline)
        self.reporter.start(index)
        logger.info("📍 Step %d/%d: %s", index + 1, total, step.label)

        try:
            returned = step.run(runtime)
        except ProvisioningError as exc:
            result = StepResult.failed(str(exc))
        except Exception as exc:
            logger.debug("Step '%s' raised an unexpected error", step.label, exc_info=True)
            result = StepResult.failed(f"{type(exc).__name__}: {exc}")
        else:
            if isinstance(returned, StepResult):
                result = returned
            elif returned is None or isinstance(returned, Mapping):
                result = StepResult.succeeded(dict(returned or {}))
            else:
                result = StepResult.failed(
                    f"Step returned {type(returned).__name__}, expected a mapping of outputs"
                )

        if result.success:
            self.reporter.complete(index)
            logger.info("   ✓ %s", step.label)
        else:
            error = result.error or "Unknown error"
            self.reporter.fail(index, error)
            logger.error("   ❌ %s failed: %s", step.label, error.splitlines()[0])
        return result
