"""Progress reporting for fleetsync.

Provides callback-based progress tracking for reconciliation and
conditional passes, supporting text, JSON and rich output.
"""

import json
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .types import Outcome, OutcomeRecord

if TYPE_CHECKING:
    from .report import PassReport


@dataclass
class ProgressEvent:
    """A progress event during a pass.

    Attributes:
        event_type: Type of event (pass_start, resource_start, ...)
        resource: Identity key, or "*" for pass-level events
        timestamp: When the event occurred
        details: Additional event-specific details
    """

    event_type: str
    resource: str
    timestamp: str
    details: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "event": self.event_type,
            "resource": self.resource,
            "timestamp": self.timestamp,
        }
        result.update(self.details)
        return result

    def to_json(self) -> str:
        """Convert to JSON string (NDJSON format)."""
        return json.dumps(self.to_dict())


class ProgressReporter(ABC):
    """Base class for progress reporters."""

    @abstractmethod
    def on_pass_start(self, total: int, operation: str) -> None:
        """Called when a pass starts."""

    @abstractmethod
    def on_resource_start(self, name: str) -> None:
        """Called when a provider call for a resource is issued."""

    @abstractmethod
    def on_resource_complete(self, record: OutcomeRecord, duration: float) -> None:
        """Called when a resource's outcome is known."""

    @abstractmethod
    def on_resource_retry(
        self,
        name: str,
        attempt: int,
        max_attempts: int,
        error: str,
        delay: float,
    ) -> None:
        """Called when a throttled call is about to be retried."""

    @abstractmethod
    def on_pass_complete(self, report: "PassReport", duration: float) -> None:
        """Called when a pass completes or stops on cancellation."""


class JsonProgressReporter(ProgressReporter):
    """Reports progress as NDJSON (newline-delimited JSON) events."""

    def __init__(self, output: Any = None) -> None:
        """Initialize JSON progress reporter.

        Args:
            output: Output stream (defaults to sys.stderr to not pollute stdout)
        """
        self.output = output or sys.stderr

    def _emit(self, event_type: str, resource: str, **details: Any) -> None:
        event = ProgressEvent(
            event_type=event_type,
            resource=resource,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details,
        )
        print(event.to_json(), file=self.output, flush=True)

    def on_pass_start(self, total: int, operation: str) -> None:
        self._emit("pass_start", "*", total=total, operation=operation)

    def on_resource_start(self, name: str) -> None:
        self._emit("resource_start", name)

    def on_resource_complete(self, record: OutcomeRecord, duration: float) -> None:
        details: dict[str, Any] = {
            "outcome": record.outcome.value,
            "duration": round(duration, 3),
        }
        if record.detail:
            details["detail"] = record.detail
        if record.resource_id:
            details["resource_id"] = record.resource_id
        self._emit("resource_complete", record.name, **details)

    def on_resource_retry(
        self,
        name: str,
        attempt: int,
        max_attempts: int,
        error: str,
        delay: float,
    ) -> None:
        self._emit(
            "resource_retry",
            name,
            attempt=attempt,
            max_attempts=max_attempts,
            error=error,
            delay=round(delay, 1),
        )

    def on_pass_complete(self, report: "PassReport", duration: float) -> None:
        self._emit(
            "pass_complete",
            "*",
            applied=report.applied,
            skipped=report.skipped,
            failed=report.failed,
            cancelled=report.cancelled,
            duration=round(duration, 3),
        )


class TextProgressReporter(ProgressReporter):
    """Reports progress as human-readable text."""

    def __init__(self, output: Any = None) -> None:
        """Initialize text progress reporter.

        Args:
            output: Output stream (defaults to sys.stderr)
        """
        self.output = output or sys.stderr
        self.completed = 0
        self.total = 0

    def _emit(self, message: str) -> None:
        print(message, file=self.output, flush=True)

    def on_pass_start(self, total: int, operation: str) -> None:
        self.total = total
        self.completed = 0
        self._emit(f"Running '{operation}' on {total} resource(s)...")

    def on_resource_start(self, name: str) -> None:
        pass

    def on_resource_complete(self, record: OutcomeRecord, duration: float) -> None:
        self.completed += 1
        prefix = f"  [{self.completed}/{self.total}]"
        if record.outcome == Outcome.APPLIED:
            self._emit(f"{prefix} ✓ {record.name} ({duration:.2f}s)")
        elif record.outcome == Outcome.SKIPPED:
            reason = f": {record.detail}" if record.detail else ""
            self._emit(f"{prefix} - {record.name} skipped{reason}")
        else:
            error_msg = f": {record.detail}" if record.detail else ""
            self._emit(f"{prefix} ✗ {record.name} FAILED{error_msg}")

    def on_resource_retry(
        self,
        name: str,
        attempt: int,
        max_attempts: int,
        error: str,
        delay: float,
    ) -> None:
        self._emit(f"  ⟳ {name}: retrying in {delay:.0f}s (attempt {attempt}/{max_attempts}): {error}")

    def on_pass_complete(self, report: "PassReport", duration: float) -> None:
        summary = (
            f"Completed: {report.applied} applied, {report.skipped} skipped, "
            f"{report.failed} failed in {duration:.2f}s"
        )
        if report.cancelled:
            summary += " (cancelled)"
        self._emit(summary)


class RichProgressReporter(ProgressReporter):
    """Shows a rich progress bar on stderr while a pass runs."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True)
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        )
        self._task: Any = None

    def on_pass_start(self, total: int, operation: str) -> None:
        self.progress.start()
        self._task = self.progress.add_task(operation, total=total)

    def on_resource_start(self, name: str) -> None:
        if self._task is not None:
            self.progress.update(self._task, description=name)

    def on_resource_complete(self, record: OutcomeRecord, duration: float) -> None:
        if record.outcome == Outcome.FAILED:
            self.console.print(f"[red]✗ {record.name}: {record.detail}[/red]")
        if self._task is not None:
            self.progress.advance(self._task)

    def on_resource_retry(
        self,
        name: str,
        attempt: int,
        max_attempts: int,
        error: str,
        delay: float,
    ) -> None:
        self.console.print(
            f"[yellow]⟳ {name}: retrying in {delay:.0f}s ({attempt}/{max_attempts})[/yellow]"
        )

    def on_pass_complete(self, report: "PassReport", duration: float) -> None:
        self.progress.stop()
        self._task = None
        style = "green" if report.is_success else "red"
        self.console.print(
            f"[{style}]{report.applied} applied, {report.skipped} skipped, "
            f"{report.failed} failed[/{style}] in {duration:.2f}s"
        )


class NullProgressReporter(ProgressReporter):
    """No-op progress reporter that discards all events."""

    def on_pass_start(self, total: int, operation: str) -> None:
        pass

    def on_resource_start(self, name: str) -> None:
        pass

    def on_resource_complete(self, record: OutcomeRecord, duration: float) -> None:
        pass

    def on_resource_retry(
        self,
        name: str,
        attempt: int,
        max_attempts: int,
        error: str,
        delay: float,
    ) -> None:
        pass

    def on_pass_complete(self, report: "PassReport", duration: float) -> None:
        pass


def create_progress_reporter(
    enabled: bool,
    json_format: bool = False,
    output: Any = None,
    rich: bool = False,
) -> ProgressReporter:
    """Create a progress reporter.

    Args:
        enabled: Whether progress reporting is enabled
        json_format: Use NDJSON events instead of text
        output: Output stream (defaults to sys.stderr)
        rich: Use a rich progress bar (ignored with json_format)

    Returns:
        ProgressReporter instance
    """
    if not enabled:
        return NullProgressReporter()

    if json_format:
        return JsonProgressReporter(output)
    if rich:
        return RichProgressReporter()
    return TextProgressReporter(output)
