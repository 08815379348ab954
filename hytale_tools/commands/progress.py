"""Render engine progress events with rich."""

from __future__ import annotations

from types import TracebackType

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from hytale_tools.core.progress import Phase, ProgressEvent, Stage

STAGE_LABELS = {
    Stage.PATCH_TOOL: "Patch tool",
    Stage.PATCH_DOWNLOAD: "Downloading patch",
    Stage.PATCH_APPLY: "Applying patch",
    Stage.ONLINE_PATCH_DOWNLOAD: "Downloading online patch",
    Stage.ONLINE_PATCH_APPLY: "Applying online patch",
    Stage.ONLINE_PATCH_REVERT: "Reverting online patch",
    Stage.RUNTIME_CHECK: "Checking runtime",
    Stage.RUNTIME_DOWNLOAD: "Downloading runtime",
    Stage.RUNTIME_INSTALL: "Installing runtime",
    Stage.FILES_DOWNLOAD: "Downloading files",
}


def describe(event: ProgressEvent) -> str:
    """Task description for an event."""
    label = STAGE_LABELS.get(event.stage, str(event.stage))
    from_build = event.context.get("from_build")
    to_build = event.context.get("to_build")
    if from_build is not None and to_build is not None:
        label = f"{label} {from_build} -> {to_build}"
    target = event.context.get("target")
    if target:
        label = f"{label} ({target})"
    return label


class RichProgressSink:
    """Progress sink showing one rich task per running stage.

    Debug events are printed only when ``verbose`` is set.
    """

    def __init__(self, console: Console, verbose: bool = False):
        self.console = console
        self.verbose = verbose
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
        self.tasks: dict[str, TaskID] = {}

    def __enter__(self) -> RichProgressSink:
        self.progress.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.progress.stop()

    def __call__(self, event: ProgressEvent) -> None:
        if event.stage is Stage.DEBUG:
            if self.verbose and event.message:
                self.console.print(f"[dim]{event.message}[/dim]")
            return

        key = describe(event)
        if event.phase is Phase.START:
            self._finish(key)
            self.tasks[key] = self.progress.add_task(key, total=100)
        elif event.phase is Phase.PROGRESS:
            task = self.tasks.get(key)
            if task is None:
                task = self.tasks[key] = self.progress.add_task(key, total=100)
            if event.percent is not None:
                self.progress.update(task, completed=event.percent)
        elif event.phase is Phase.END:
            self._finish(key)
        elif event.phase is Phase.ERROR:
            self._finish(key)
            self.console.print(f"[red]{key}: {event.message}[/red]")
        elif event.phase is Phase.READY and self.verbose:
            self.console.print(f"[green]{key}: ready[/green]")

    def _finish(self, key: str) -> None:
        task = self.tasks.pop(key, None)
        if task is not None:
            self.progress.update(task, completed=100)
            self.progress.remove_task(task)
