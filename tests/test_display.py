import unittest

from rich.console import Console

from cms_starter.display import TimelineDisplay, render_outcome, render_timeline
from cms_starter.orchestrator import (
    OrchestrationOutcome,
    ProgressTimeline,
    ResourceHandle,
    ResourceKind,
    RollbackReport,
    StepStatus,
    transition,
)


def _render(renderable) -> str:
    console = Console(record=True, width=120, color_system=None)
    console.print(renderable)
    return console.export_text()


class DisplayTests(unittest.TestCase):
    def setUp(self) -> None:
        timeline = ProgressTimeline.from_labels(["Scaffolding project files", "Installing dependencies", "Deploy"])
        timeline = transition(timeline, 0, StepStatus.IN_PROGRESS)
        timeline = transition(timeline, 0, StepStatus.COMPLETE)
        timeline = transition(timeline, 1, StepStatus.IN_PROGRESS, output_lines=["added 812 packages"])
        self.timeline = timeline

    def test_timeline_shows_status_and_live_output(self) -> None:
        text = _render(render_timeline(self.timeline))
        self.assertIn("✓  1. Scaffolding project files", text)
        self.assertIn("◐  2. Installing dependencies", text)
        self.assertIn("added 812 packages", text)
        self.assertIn("○  3. Deploy", text)

    def test_failed_step_shows_first_error_line(self) -> None:
        failed = transition(self.timeline, 1, StepStatus.ERROR, error="npm install failed\n\nOutput:\nmore")
        text = _render(render_timeline(failed))
        self.assertIn("✗  2. Installing dependencies", text)
        self.assertIn("npm install failed", text)
        self.assertNotIn("more", text)

    def test_success_panel(self) -> None:
        outcome = OrchestrationOutcome.succeeded(
            self.timeline,
            {"cms_url": "https://cms.example/admin", "repo_url": "https://github.com/octo/site"},
            [],
        )
        text = _render(render_outcome(outcome))
        self.assertIn("https://cms.example/admin", text)
        self.assertIn("https://github.com/octo/site", text)

    def test_failure_panel_lists_rollback(self) -> None:
        repo = ResourceHandle(ResourceKind.REMOTE_REPO, "octo/site")
        project = ResourceHandle(ResourceKind.CLOUD_PROJECT, "proj-1")
        report = RollbackReport(
            attempted=[repo, project],
            deleted=[repo],
            failures={"cloud_project:proj-1": "forbidden"},
        )
        failed = transition(self.timeline, 1, StepStatus.ERROR, error="boom")
        outcome = OrchestrationOutcome.step_failed(failed, 1, "boom", [project, repo], report)

        text = _render(render_outcome(outcome))

        self.assertIn("Step 2 failed: Installing dependencies", text)
        self.assertIn("removed remote_repo:octo/site", text)
        self.assertIn("cloud_project:proj-1: forbidden", text)
        self.assertIn("Generated files were kept on disk.", text)

    def test_preflight_panel(self) -> None:
        outcome = OrchestrationOutcome.preflight_failed(self.timeline, 'Directory "site" already exists')
        text = _render(render_outcome(outcome))
        self.assertIn("Pre-flight check failed", text)
        self.assertNotIn("Generated files", text)

    def test_live_display_updates(self) -> None:
        console = Console(record=True, width=120, color_system=None, force_terminal=False)
        with TimelineDisplay(console) as display:
            display.update(self.timeline)
        self.assertIn("Installing dependencies", console.export_text())


if __name__ == "__main__":
    unittest.main()
