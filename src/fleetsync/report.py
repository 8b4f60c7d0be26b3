"""Pass reports.

A PassReport holds one OutcomeRecord per processed resource, in input
order. A cancelled pass still reports every resource it processed.
"""

from dataclasses import dataclass, field
from typing import Any

from .types import Outcome, OutcomeRecord


@dataclass
class PassReport:
    """Outcome of a reconciliation or conditional pass.

    Attributes:
        records: Per-resource outcomes in input order
        cancelled: Whether the pass stopped early on cancellation
        total: Number of resources the pass set out to process
    """

    records: list[OutcomeRecord] = field(default_factory=list)
    cancelled: bool = False
    total: int = 0

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.records if r.outcome == outcome)

    @property
    def applied(self) -> int:
        return self._count(Outcome.APPLIED)

    @property
    def skipped(self) -> int:
        return self._count(Outcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(Outcome.FAILED)

    @property
    def is_success(self) -> bool:
        """Check if no resource failed."""
        return self.failed == 0

    def get(self, name: str) -> OutcomeRecord | None:
        """Get the first record for an identity key."""
        for record in self.records:
            if record.name == name:
                return record
        return None

    def by_outcome(self, outcome: Outcome) -> list[OutcomeRecord]:
        return [r for r in self.records if r.outcome == outcome]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.is_success,
            "cancelled": self.cancelled,
            "summary": {
                "total": self.total or len(self.records),
                "processed": len(self.records),
                "applied": self.applied,
                "skipped": self.skipped,
                "failed": self.failed,
            },
            "results": [r.to_dict() for r in self.records],
        }

    def format_text(self) -> str:
        """Format as human-readable text."""
        symbols = {Outcome.APPLIED: "✓", Outcome.SKIPPED: "-", Outcome.FAILED: "✗"}
        lines = []
        for record in self.records:
            ident = f" ({record.resource_id})" if record.resource_id else ""
            detail = f": {record.detail}" if record.detail else ""
            lines.append(f"  {symbols[record.outcome]} {record.name}{ident} {record.outcome.value}{detail}")

        summary = f"Applied: {self.applied}, Skipped: {self.skipped}, Failed: {self.failed}"
        if self.cancelled:
            summary += f" (cancelled after {len(self.records)}/{self.total})"
        lines.append("")
        lines.append(summary)
        return "\n".join(lines)
