"""Structured progress reporting.

Components never own subscribers. Each one receives a
:class:`ProgressReporter` wrapping a caller-supplied sink and calls it
directly; nested components get a reporter bound with extra context
(``reporter.bind(target="client")``) so events arrive annotated with where
they came from.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

logger = structlog.get_logger()


class Stage(StrEnum):
    """Operation an event belongs to."""
    PATCH_TOOL = "patch_tool"
    PATCH_DOWNLOAD = "patch_download"
    PATCH_APPLY = "patch_apply"
    ONLINE_PATCH_DOWNLOAD = "online_patch_download"
    ONLINE_PATCH_APPLY = "online_patch_apply"
    ONLINE_PATCH_REVERT = "online_patch_revert"
    RUNTIME_CHECK = "runtime_check"
    RUNTIME_DOWNLOAD = "runtime_download"
    RUNTIME_INSTALL = "runtime_install"
    FILES_DOWNLOAD = "files_download"
    DEBUG = "debug"


class Phase(StrEnum):
    """Position of an event within its stage."""
    START = "start"
    PROGRESS = "progress"
    END = "end"
    READY = "ready"
    ERROR = "error"
    LOG = "log"


@dataclass(frozen=True)
class ProgressEvent:
    """A single progress notification."""

    stage: Stage
    phase: Phase
    percent: int | None = None
    current: int | None = None
    total: int | None = None
    message: str | None = None
    context: dict[str, Any] = field(default_factory=lambda: dict[str, Any]())


ProgressSink = Callable[[ProgressEvent], None]


def discard(event: ProgressEvent) -> None:
    """Sink that drops every event."""


def percent_of(current: int, total: int) -> int:
    """Integer percentage, 0 when the total is unknown."""
    if total <= 0:
        return 0
    return max(0, min(100, round(current * 100 / total)))


class ProgressReporter:
    """Forward progress events to a sink, annotated with bound context.

    Args:
        sink: Callable receiving every event; events are dropped when None
        **context: Key/value pairs attached to every event
    """

    def __init__(self, sink: ProgressSink | None = None, **context: Any):
        self.sink: ProgressSink = sink or discard
        self.context = context

    def bind(self, **context: Any) -> ProgressReporter:
        """Reporter sharing the sink with additional context."""
        return ProgressReporter(self.sink, **{**self.context, **context})

    def emit(
        self,
        stage: Stage,
        phase: Phase,
        *,
        percent: int | None = None,
        current: int | None = None,
        total: int | None = None,
        message: str | None = None,
        **context: Any,
    ) -> None:
        """Send one event to the sink."""
        self.sink(
            ProgressEvent(
                stage=stage,
                phase=phase,
                percent=percent,
                current=current,
                total=total,
                message=message,
                context={**self.context, **context},
            )
        )

    def start(self, stage: Stage, message: str | None = None, **context: Any) -> None:
        self.emit(stage, Phase.START, message=message, **context)

    def progress(
        self,
        stage: Stage,
        *,
        current: int | None = None,
        total: int | None = None,
        percent: int | None = None,
        **context: Any,
    ) -> None:
        if percent is None and current is not None and total:
            percent = percent_of(current, total)
        self.emit(stage, Phase.PROGRESS, percent=percent, current=current, total=total, **context)

    def end(self, stage: Stage, message: str | None = None, **context: Any) -> None:
        self.emit(stage, Phase.END, message=message, **context)

    def ready(self, stage: Stage, message: str | None = None, **context: Any) -> None:
        self.emit(stage, Phase.READY, message=message, **context)

    def error(self, stage: Stage, message: str, **context: Any) -> None:
        self.emit(stage, Phase.ERROR, message=message, **context)

    def debug(self, message: str, **context: Any) -> None:
        """Send a debug line and mirror it to the structured log."""
        logger.debug(message, **{**self.context, **context})
        self.emit(Stage.DEBUG, Phase.LOG, message=message, **context)
