"""Reconciliation of desired state against live state.

``reconcile`` is a pure function from (specs, live resources) to a plan.
For every spec it emits exactly one action:

- Create when no live resource carries the identity key
- NoOp when the live resource already matches
- Update when only mutable fields (tags, instance type) diverge
- NoOp plus a ReplacementRequired warning when an immutable field
  (image, region) diverges; replacement is never automatic

Plans are computed fresh from a snapshot on every pass and never stored,
so a plan can never be applied against state it was not computed from.
Reconciling a converged fleet yields a plan of NoOps, and reconciling the
same inputs twice yields the same plan.

The Reconciler class wires the pure function to a provider: it captures a
snapshot (failing closed with ProviderUnavailable), plans, and applies
Create and Update actions concurrently.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from .descriptor import coalesce_specs
from .exceptions import AmbiguousResource, FleetError, ReplacementRequired
from .executor import BatchExecutor, CancelToken
from .logging import log_performance
from .progress import NullProgressReporter, ProgressReporter
from .report import PassReport
from .retry import RetryConfig
from .snapshot import Snapshot
from .types import IDENTITY_TAG, LiveResource, Operation, OutcomeRecord, ResourceSpec

logger = logging.getLogger(__name__)

# Tags the provider manages itself and that are never purged
RESERVED_TAG_PREFIXES = ("aws:",)


class ActionKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    NOOP = "noop"


@dataclass(frozen=True)
class ResourceDiff:
    """Mutable differences between a spec and its live resource.

    Attributes:
        set_tags: Tags to add or overwrite
        remove_tags: Tag keys to delete (only with purge_tags)
        instance_type: (live, desired) when the resource class differs
    """

    set_tags: dict[str, str] = field(default_factory=dict)
    remove_tags: tuple[str, ...] = ()
    instance_type: tuple[str, str] | None = None

    def __bool__(self) -> bool:
        return bool(self.set_tags or self.remove_tags or self.instance_type)

    def to_operation(self) -> Operation:
        """Express the diff as an ``update`` operation for the provider."""
        return Operation(
            name="update",
            params={
                "set_tags": dict(self.set_tags),
                "remove_tags": list(self.remove_tags),
                "instance_type": self.instance_type[1] if self.instance_type else None,
            },
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.set_tags:
            result["set_tags"] = dict(self.set_tags)
        if self.remove_tags:
            result["remove_tags"] = list(self.remove_tags)
        if self.instance_type:
            result["instance_type"] = {"from": self.instance_type[0], "to": self.instance_type[1]}
        return result

    def format_text(self) -> str:
        parts = []
        for key, value in self.set_tags.items():
            parts.append(f"tag {key}={value}")
        for key in self.remove_tags:
            parts.append(f"untag {key}")
        if self.instance_type:
            parts.append(f"instance_type {self.instance_type[0]} -> {self.instance_type[1]}")
        return ", ".join(parts)


@dataclass(frozen=True)
class Action:
    """One step of a reconciliation plan.

    Attributes:
        kind: Create, Update or NoOp
        name: Identity key
        spec: Desired state
        resource_id: Live resource ID (Update and NoOp on existing resources)
        diff: Changes to apply (Update only)
        reason: Why a NoOp was chosen when the resource is not converged
    """

    kind: ActionKind
    name: str
    spec: ResourceSpec
    resource_id: str | None = None
    diff: ResourceDiff = field(default_factory=ResourceDiff)
    reason: str = ""

    @property
    def is_mutating(self) -> bool:
        return self.kind != ActionKind.NOOP

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"action": self.kind.value, "name": self.name}
        if self.resource_id:
            result["resource_id"] = self.resource_id
        if self.kind == ActionKind.CREATE:
            result["spec"] = self.spec.to_dict()
        if self.diff:
            result["diff"] = self.diff.to_dict()
        if self.reason:
            result["reason"] = self.reason
        return result


@dataclass
class ReconciliationPlan:
    """Ordered actions for one reconciliation pass, plus warnings.

    Attributes:
        actions: One action per spec, in spec order
        warnings: ReplacementRequired and AmbiguousResource findings
    """

    actions: list[Action] = field(default_factory=list)
    warnings: list[FleetError] = field(default_factory=list)

    @property
    def creates(self) -> list[Action]:
        return [a for a in self.actions if a.kind == ActionKind.CREATE]

    @property
    def updates(self) -> list[Action]:
        return [a for a in self.actions if a.kind == ActionKind.UPDATE]

    @property
    def noops(self) -> list[Action]:
        return [a for a in self.actions if a.kind == ActionKind.NOOP]

    @property
    def is_converged(self) -> bool:
        """Check if the plan contains only NoOps."""
        return not any(a.is_mutating for a in self.actions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "summary": {
                "create": len(self.creates),
                "update": len(self.updates),
                "noop": len(self.noops),
            },
            "warnings": [w.context.to_dict() for w in self.warnings],
        }

    def format_text(self) -> str:
        """Format as human-readable text."""
        symbols = {ActionKind.CREATE: "+", ActionKind.UPDATE: "~", ActionKind.NOOP: "="}
        lines = ["", "Reconciliation Plan:"]
        for action in self.actions:
            line = f"  {symbols[action.kind]} {action.name}"
            if action.kind == ActionKind.CREATE:
                line += f" (create {action.spec.instance_type} from {action.spec.image})"
            elif action.kind == ActionKind.UPDATE:
                line += f" ({action.diff.format_text()})"
            elif action.reason:
                line += f" (unchanged: {action.reason})"
            lines.append(line)
        lines.append("")
        lines.append(
            f"Plan: {len(self.creates)} to create, {len(self.updates)} to update, "
            f"{len(self.noops)} unchanged"
        )
        if self.warnings:
            lines.append("")
            lines.append("Warnings:")
            for warning in self.warnings:
                lines.append(f"  {warning.context.format_text()}")
        lines.append("")
        return "\n".join(lines)


def reconcile(
    specs: Sequence[ResourceSpec],
    live_set: Sequence[LiveResource] | Snapshot,
    purge_tags: bool = False,
) -> ReconciliationPlan:
    """Compute the actions that converge live state to desired state.

    Args:
        specs: Desired state, one spec per identity key
        live_set: Live resources or a Snapshot of them
        purge_tags: Also remove live tags that the desired state does not declare

    Returns:
        Plan with one action per identity key, in spec order

    Raises:
        MalformedSpec: If two specs share an identity key but differ
    """
    specs = coalesce_specs(specs)
    snapshot = live_set if isinstance(live_set, Snapshot) else Snapshot.from_resources(live_set)
    plan = ReconciliationPlan()

    for spec in specs:
        live = snapshot.get(spec.name)

        if live is None:
            plan.actions.append(Action(kind=ActionKind.CREATE, name=spec.name, spec=spec))
            continue

        if spec.name in snapshot.duplicates:
            warning = AmbiguousResource(spec.name, list(snapshot.duplicates[spec.name]))
            logger.warning(warning.message)
            plan.warnings.append(warning)
            plan.actions.append(
                Action(
                    kind=ActionKind.NOOP,
                    name=spec.name,
                    spec=spec,
                    resource_id=live.resource_id,
                    reason="ambiguous identity key",
                )
            )
            continue

        immutable = _immutable_changes(spec, live)
        if immutable:
            warning = ReplacementRequired(spec.name, immutable)
            logger.warning(warning.message)
            plan.warnings.append(warning)
            plan.actions.append(
                Action(
                    kind=ActionKind.NOOP,
                    name=spec.name,
                    spec=spec,
                    resource_id=live.resource_id,
                    reason="replacement required",
                )
            )
            continue

        diff = _mutable_changes(spec, live, purge_tags)
        plan.actions.append(
            Action(
                kind=ActionKind.UPDATE if diff else ActionKind.NOOP,
                name=spec.name,
                spec=spec,
                resource_id=live.resource_id,
                diff=diff,
            )
        )

    return plan


def _immutable_changes(spec: ResourceSpec, live: LiveResource) -> dict[str, tuple[str, str]]:
    changes: dict[str, tuple[str, str]] = {}
    if live.image and live.image != spec.image:
        changes["image"] = (live.image, spec.image)
    if live.region and live.region != spec.region:
        changes["region"] = (live.region, spec.region)
    return changes


def _mutable_changes(spec: ResourceSpec, live: LiveResource, purge_tags: bool) -> ResourceDiff:
    set_tags = {k: v for k, v in spec.tags.items() if live.tags.get(k) != v}

    remove_tags: tuple[str, ...] = ()
    if purge_tags:
        remove_tags = tuple(
            sorted(
                k
                for k in live.tags
                if k not in spec.tags
                and k != IDENTITY_TAG
                and not k.startswith(RESERVED_TAG_PREFIXES)
            )
        )

    instance_type = None
    if live.instance_type != spec.instance_type:
        instance_type = (live.instance_type, spec.instance_type)

    return ResourceDiff(set_tags=set_tags, remove_tags=remove_tags, instance_type=instance_type)


class Reconciler:
    """Plans and applies reconciliation passes against a provider.

    Attributes:
        provider: Provider owning the live resources
        executor: Batch executor for Create and Update calls
        reporter: Progress reporter
        purge_tags: Remove live tags the desired state does not declare

    Example:
        >>> reconciler = Reconciler(provider, concurrency=5)
        >>> plan = await reconciler.plan(specs)
        >>> print(plan.format_text())
        >>> report = await reconciler.apply(plan)
    """

    def __init__(
        self,
        provider,
        concurrency: int = 10,
        retry_config: RetryConfig | None = None,
        reporter: ProgressReporter | None = None,
        purge_tags: bool = False,
    ) -> None:
        self.provider = provider
        self.reporter = reporter or NullProgressReporter()
        self.executor: BatchExecutor[Action, OutcomeRecord] = BatchExecutor(
            concurrency, retry_config, on_retry=self.reporter.on_resource_retry
        )
        self.purge_tags = purge_tags

    async def plan(
        self,
        specs: Sequence[ResourceSpec],
        filters: dict[str, str] | None = None,
    ) -> ReconciliationPlan:
        """Capture a fresh snapshot and compute the plan.

        Raises:
            MalformedSpec: If two specs share an identity key but differ
            ProviderUnavailable: If live state cannot be listed
        """
        specs = coalesce_specs(specs)
        # Resources created in a spec's region must be visible to the next pass
        self.provider.include_regions(dict.fromkeys(spec.region for spec in specs))
        snapshot = await Snapshot.capture(self.provider, filters)
        with log_performance(logger, "Reconciliation", level=logging.DEBUG, specs=len(specs)):
            plan = reconcile(specs, snapshot, purge_tags=self.purge_tags)
        logger.info(
            f"Plan: {len(plan.creates)} create, {len(plan.updates)} update, {len(plan.noops)} noop"
        )
        return plan

    async def apply(self, plan: ReconciliationPlan, cancel: CancelToken | None = None) -> PassReport:
        """Execute the plan's Create and Update actions.

        NoOps are reported as skipped without contacting the provider. A
        rejected action fails only its own resource.
        """
        start = time.perf_counter()
        self.reporter.on_pass_start(len(plan.actions), "reconcile")

        async def work(action: Action) -> OutcomeRecord:
            self.reporter.on_resource_start(action.name)
            started = time.perf_counter()
            if action.kind == ActionKind.NOOP:
                record = OutcomeRecord.skipped(
                    action.name, action.reason or "up to date", action.resource_id
                )
            elif action.kind == ActionKind.CREATE:
                resource_id = await self.provider.create_resource(action.spec)
                logger.info(f"Created {action.name} ({resource_id})")
                record = OutcomeRecord.applied(action.name, "created", resource_id)
            else:
                await self.provider.mutate_resource(
                    action.resource_id or "", action.diff.to_operation()
                )
                logger.info(f"Updated {action.name}: {action.diff.format_text()}")
                record = OutcomeRecord.applied(
                    action.name, f"updated: {action.diff.format_text()}", action.resource_id
                )
            self.reporter.on_resource_complete(record, time.perf_counter() - started)
            return record

        def on_error(action: Action, exc: Exception) -> OutcomeRecord:
            logger.error(f"{action.kind.value} failed for {action.name}: {exc}")
            record = OutcomeRecord.failed(action.name, str(exc), action.resource_id)
            self.reporter.on_resource_complete(record, 0.0)
            return record

        results = await self.executor.run(
            plan.actions, key=lambda a: a.name, work=work, on_error=on_error, cancel=cancel
        )
        report = PassReport(
            records=list(results.values()),
            cancelled=bool(cancel and cancel.cancelled),
            total=len(plan.actions),
        )
        self.reporter.on_pass_complete(report, time.perf_counter() - start)
        return report

    async def converge(
        self,
        specs: Sequence[ResourceSpec],
        filters: dict[str, str] | None = None,
        cancel: CancelToken | None = None,
    ) -> PassReport:
        """Plan and apply in one pass."""
        plan = await self.plan(specs, filters)
        return await self.apply(plan, cancel=cancel)
