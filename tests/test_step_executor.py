import subprocess
import sys
import threading
import unittest
from unittest import mock

from cms_starter.errors import ProvisioningError
from cms_starter.orchestrator import step_executor
from cms_starter.orchestrator import (
    ExitCodeError,
    PipelineStep,
    ProgressReporter,
    ResourceTracker,
    RollingBuffer,
    StepExecutor,
    StepResult,
    StepRuntime,
    StepStatus,
    run_subprocess,
)


def _python(code: str) -> list:
    return [sys.executable, "-c", code]


class RollingBufferTests(unittest.TestCase):
    def test_keeps_most_recent_lines(self) -> None:
        buffer = RollingBuffer(3)
        for i in range(5):
            buffer.append(str(i))
        self.assertEqual(buffer.snapshot(), ["2", "3", "4"])
        self.assertEqual(len(buffer), 3)

    def test_concurrent_appends(self) -> None:
        buffer = RollingBuffer(50)

        def writer() -> None:
            for i in range(500):
                buffer.append(str(i))

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(buffer.snapshot()), 50)

    def test_rejects_empty_window(self) -> None:
        with self.assertRaises(ValueError):
            RollingBuffer(0)


class RunSubprocessTests(unittest.TestCase):
    def test_streams_stripped_non_blank_lines(self) -> None:
        windows = []
        run_subprocess(
            _python("print('  one  '); print(''); print('two'); print('   ')"),
            on_output=windows.append,
        )
        self.assertEqual(windows, [["one"], ["one", "two"]])

    def test_live_window_is_bounded(self) -> None:
        windows = []
        run_subprocess(
            _python("for i in range(8): print(i)"),
            on_output=windows.append,
            live_lines=5,
        )
        self.assertEqual(windows[-1], ["3", "4", "5", "6", "7"])

    def test_stderr_is_merged(self) -> None:
        windows = []
        run_subprocess(
            _python("import sys; sys.stderr.write('warn\\n')"),
            on_output=windows.append,
        )
        self.assertEqual(windows[-1], ["warn"])

    def test_env_is_layered_over_environment(self) -> None:
        windows = []
        run_subprocess(
            _python("import os; print(os.environ['DATABASE_URL'])"),
            env={"DATABASE_URL": "postgresql://x"},
            on_output=windows.append,
        )
        self.assertEqual(windows[-1], ["postgresql://x"])

    def test_non_zero_exit_raises_with_error_window(self) -> None:
        code = "import sys\nfor i in range(60): print(f'line {i}')\nsys.exit(3)"
        with self.assertRaises(ExitCodeError) as ctx:
            run_subprocess(_python(code), label="npm install in payload", error_lines=50)

        error = ctx.exception
        self.assertEqual(error.exit_code, 3)
        self.assertEqual(len(error.output_lines), 50)
        self.assertEqual(error.output_lines[0], "line 10")
        self.assertEqual(error.output_lines[-1], "line 59")
        message = str(error)
        self.assertTrue(message.startswith("npm install in payload failed with exit code 3"))
        self.assertIn("\n\nOutput:\nline 10", message)

    def test_spawn_failure_raises(self) -> None:
        with self.assertRaises(ExitCodeError) as ctx:
            run_subprocess(["definitely-not-a-real-binary-xyz"], label="Migration generation")
        self.assertIsNone(ctx.exception.exit_code)
        self.assertIn("Failed to run Migration generation", str(ctx.exception))

    def test_callback_error_kills_and_reaps_child(self) -> None:
        started = []
        real_popen = subprocess.Popen

        def spawn(*args, **kwargs):
            process = real_popen(*args, **kwargs)
            started.append(process)
            return process

        def broken_display(lines) -> None:
            raise RuntimeError("display broke")

        command = _python("import time; print('ready', flush=True); time.sleep(30)")
        with mock.patch.object(step_executor.subprocess, "Popen", side_effect=spawn):
            with self.assertRaises(RuntimeError):
                run_subprocess(command, on_output=broken_display)

        self.assertEqual(len(started), 1)
        self.assertIsNotNone(started[0].returncode)

class StepExecutorTests(unittest.TestCase):
    def _runtime(self, reporter: ProgressReporter, index: int = 0) -> StepRuntime:
        return StepRuntime(
            index=index,
            label=reporter.timeline[index].label,
            context={},
            tracker=ResourceTracker(),
            emit_output=lambda lines: reporter.update_output(index, lines),
        )

    def test_mapping_result_becomes_outputs(self) -> None:
        reporter = ProgressReporter(["make"])
        seen = []
        reporter.subscribe(lambda t: seen.append(t[0].status))

        result = StepExecutor(reporter).execute(
            0, PipelineStep("make", lambda rt: {"answer": 42}), self._runtime(reporter)
        )

        self.assertTrue(result.success)
        self.assertEqual(result.outputs, {"answer": 42})
        self.assertEqual(seen, [StepStatus.PENDING, StepStatus.IN_PROGRESS, StepStatus.COMPLETE])

    def test_none_result_is_success(self) -> None:
        reporter = ProgressReporter(["noop"])
        result = StepExecutor(reporter).execute(
            0, PipelineStep("noop", lambda rt: None), self._runtime(reporter)
        )
        self.assertTrue(result.success)
        self.assertEqual(result.outputs, {})

    def test_non_mapping_result_is_a_failure(self) -> None:
        reporter = ProgressReporter(["odd"])
        result = StepExecutor(reporter).execute(
            0, PipelineStep("odd", lambda rt: True), self._runtime(reporter)
        )
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Step returned bool, expected a mapping of outputs")
        self.assertEqual(reporter.timeline[0].status, StepStatus.ERROR)

    def test_broken_subscriber_does_not_stop_the_step(self) -> None:
        reporter = ProgressReporter(["make"])

        def display(timeline) -> None:
            if timeline[0].status == StepStatus.IN_PROGRESS:
                raise RuntimeError("display broke")

        reporter.subscribe(display)
        result = StepExecutor(reporter).execute(
            0, PipelineStep("make", lambda rt: {"answer": 42}), self._runtime(reporter)
        )

        self.assertTrue(result.success)
        self.assertEqual(reporter.timeline[0].status, StepStatus.COMPLETE)

    def test_step_is_in_progress_while_running(self) -> None:
        reporter = ProgressReporter(["observe"])
        observed = []

        def run(rt: StepRuntime) -> None:
            observed.append(reporter.timeline.in_progress_indices())

        StepExecutor(reporter).execute(0, PipelineStep("observe", run), self._runtime(reporter))
        self.assertEqual(observed, [[0]])

    def test_provisioning_error_message_is_kept(self) -> None:
        reporter = ProgressReporter(["fail"])

        def run(rt: StepRuntime) -> None:
            raise ProvisioningError("Railway API error (create project): quota exceeded")

        result = StepExecutor(reporter).execute(0, PipelineStep("fail", run), self._runtime(reporter))
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Railway API error (create project): quota exceeded")
        self.assertEqual(reporter.timeline[0].status, StepStatus.ERROR)
        self.assertEqual(reporter.timeline[0].error, result.error)

    def test_unexpected_error_includes_type(self) -> None:
        reporter = ProgressReporter(["crash"])

        def run(rt: StepRuntime) -> None:
            raise KeyError("database_url")

        result = StepExecutor(reporter).execute(0, PipelineStep("crash", run), self._runtime(reporter))
        self.assertFalse(result.success)
        self.assertTrue(result.error.startswith("KeyError"))

    def test_returned_failed_result_is_respected(self) -> None:
        reporter = ProgressReporter(["soft"])
        result = StepExecutor(reporter).execute(
            0, PipelineStep("soft", lambda rt: StepResult.failed("nope")), self._runtime(reporter)
        )
        self.assertFalse(result.success)
        self.assertEqual(reporter.timeline[0].error, "nope")

    def test_emitted_output_reaches_timeline(self) -> None:
        reporter = ProgressReporter(["stream"])
        captured = []
        reporter.subscribe(lambda t: captured.append(t[0].output_lines))

        def run(rt: StepRuntime) -> None:
            rt.emit_output(["Status: queued"])

        StepExecutor(reporter).execute(0, PipelineStep("stream", run), self._runtime(reporter))
        self.assertIn(("Status: queued",), captured)
        self.assertEqual(reporter.timeline[0].output_lines, ())


if __name__ == "__main__":
    unittest.main()
