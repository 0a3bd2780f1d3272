"""Terminal rendering of the progress timeline and the final outcome."""

from __future__ import annotations

from typing import Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from .orchestrator import OrchestrationOutcome, ProgressTimeline, StepStatus

_ICONS = {
    StepStatus.PENDING: ("○", "dim"),
    StepStatus.IN_PROGRESS: ("◐", "cyan"),
    StepStatus.COMPLETE: ("✓", "green"),
    StepStatus.ERROR: ("✗", "bold red"),
}


def render_timeline(timeline: ProgressTimeline) -> Text:
    """One line per step; live output under the running step, error under a failed one."""
    text = Text()
    for position, step in enumerate(timeline, 1):
        icon, style = _ICONS[step.status]
        text.append(f" {icon} ", style=style)
        text.append(f"{position:>2}. {step.label}\n", style=style if step.status != StepStatus.PENDING else "dim")
        for line in step.output_lines:
            text.append(f"        {line}\n", style="dim")
        if step.error:
            first_line = step.error.splitlines()[0]
            text.append(f"        {first_line}\n", style="red")
    return text


def render_outcome(outcome: OrchestrationOutcome) -> Panel:
    if outcome.success:
        body = Text()
        labels = (("cms_url", "CMS admin"), ("repo_url", "Repository"), ("website_url", "Website"))
        for key, label in labels:
            if outcome.outputs.get(key):
                body.append(f"{label:<12}", style="bold")
                body.append(f"{outcome.outputs[key]}\n")
        return Panel(body, title="🎉 Project ready", border_style="green")

    body = Text()
    if outcome.failing_step is not None:
        body.append(f"Step {outcome.failing_step} failed: {outcome.failing_label}\n\n", style="bold")
    else:
        body.append("Pre-flight check failed\n\n", style="bold")
    body.append(f"{outcome.error}\n")

    rollback = outcome.rollback
    if rollback is not None and rollback.attempted:
        body.append("\nRollback\n", style="bold")
        for handle in rollback.deleted:
            body.append(f"  ✓ removed {handle.describe()}\n", style="green")
        for name, reason in rollback.failures.items():
            body.append(f"  ✗ {name}: {reason}\n", style="yellow")
        if rollback.failures:
            body.append("  Remove the resources above manually.\n", style="yellow")
    if outcome.failing_step is not None:
        body.append("\nGenerated files were kept on disk.\n", style="dim")
    return Panel(body, title="❌ Provisioning failed", border_style="red")


class TimelineDisplay:
    """Live view that redraws whenever the reporter publishes a snapshot."""

    def __init__(self, console: Optional[Console] = None, refresh_per_second: int = 8) -> None:
        self.console = console or Console()
        self._live = Live(
            Text(""),
            console=self.console,
            refresh_per_second=refresh_per_second,
            transient=False,
        )

    def __enter__(self) -> "TimelineDisplay":
        self._live.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._live.stop()

    def update(self, timeline: ProgressTimeline) -> None:
        self._live.update(Group(Text("Provisioning\n", style="bold"), render_timeline(timeline)))
