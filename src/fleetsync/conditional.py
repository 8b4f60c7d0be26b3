"""Conditional operations over a fleet.

The ConditionalOperator applies one operation to every live resource whose
facts satisfy a predicate, such as shutting down only the Debian hosts:

    operator = ConditionalOperator(provider)
    report = await operator.run(parse_predicate('os_family == "Debian"'), Operation.parse("shutdown"))

The predicate is evaluated once per resource against the snapshot taken
for the pass. Resources that do not match, or whose facts leave the answer
unknown, are skipped without contacting the provider.
"""

import logging
import time
from typing import Sequence

from .executor import BatchExecutor, CancelToken
from .predicate import Predicate
from .progress import NullProgressReporter, ProgressReporter
from .report import PassReport
from .retry import RetryConfig
from .snapshot import Snapshot
from .types import LiveResource, Operation, OutcomeRecord

logger = logging.getLogger(__name__)


class ConditionalOperator:
    """Applies an operation to the resources a predicate selects.

    Attributes:
        provider: Provider owning the live resources
        executor: Batch executor for provider calls
        reporter: Progress reporter

    Example:
        >>> operator = ConditionalOperator(provider, concurrency=5)
        >>> snapshot = await Snapshot.capture(provider)
        >>> report = await operator.apply(snapshot, predicate, Operation.parse("stop"))
        >>> report.applied
        2
    """

    def __init__(
        self,
        provider,
        concurrency: int = 10,
        retry_config: RetryConfig | None = None,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self.provider = provider
        self.reporter = reporter or NullProgressReporter()
        self.executor: BatchExecutor[LiveResource, OutcomeRecord] = BatchExecutor(
            concurrency, retry_config, on_retry=self.reporter.on_resource_retry
        )

    def select(
        self,
        live_set: Sequence[LiveResource] | Snapshot,
        predicate: Predicate,
    ) -> list[LiveResource]:
        """Return the resources the predicate definitely selects."""
        return [r for r in _tracked(live_set) if predicate.matches(r.facts)]

    async def apply(
        self,
        live_set: Sequence[LiveResource] | Snapshot,
        predicate: Predicate,
        operation: Operation,
        cancel: CancelToken | None = None,
    ) -> PassReport:
        """Apply ``operation`` to every resource matching ``predicate``.

        Args:
            live_set: Live resources for this pass
            predicate: Selection predicate over resource facts
            operation: Operation to apply to selected resources
            cancel: Optional cancellation token

        Returns:
            PassReport with one record per processed resource
        """
        resources = _tracked(live_set)
        start = time.perf_counter()
        self.reporter.on_pass_start(len(resources), operation.name)
        logger.info(f"Applying {operation} where {predicate} to {len(resources)} resource(s)")

        async def work(resource: LiveResource) -> OutcomeRecord:
            verdict = predicate.evaluate(resource.facts)
            if verdict is None:
                record = OutcomeRecord.skipped(
                    resource.name, "predicate unknown (missing facts)", resource.resource_id
                )
            elif not verdict:
                record = OutcomeRecord.skipped(
                    resource.name, "predicate not matched", resource.resource_id
                )
            elif operation.is_satisfied_by(resource.state):
                record = OutcomeRecord.skipped(
                    resource.name, f"already {resource.state.value}", resource.resource_id
                )
            else:
                self.reporter.on_resource_start(resource.name)
                started = time.perf_counter()
                await self.provider.mutate_resource(resource.resource_id, operation)
                logger.info(f"{operation} applied to {resource.name} ({resource.resource_id})")
                record = OutcomeRecord.applied(resource.name, operation.name, resource.resource_id)
                self.reporter.on_resource_complete(record, time.perf_counter() - started)
                return record
            logger.debug(f"Skipped {resource.name}: {record.detail}")
            self.reporter.on_resource_complete(record, 0.0)
            return record

        def on_error(resource: LiveResource, exc: Exception) -> OutcomeRecord:
            logger.error(f"{operation} failed for {resource.name} ({resource.resource_id}): {exc}")
            record = OutcomeRecord.failed(resource.name, str(exc), resource.resource_id)
            self.reporter.on_resource_complete(record, 0.0)
            return record

        results = await self.executor.run(
            resources, key=lambda r: r.resource_id, work=work, on_error=on_error, cancel=cancel
        )
        report = PassReport(
            records=list(results.values()),
            cancelled=bool(cancel and cancel.cancelled),
            total=len(resources),
        )
        self.reporter.on_pass_complete(report, time.perf_counter() - start)
        return report

    async def run(
        self,
        predicate: Predicate,
        operation: Operation,
        filters: dict[str, str] | None = None,
        cancel: CancelToken | None = None,
    ) -> PassReport:
        """Capture a fresh snapshot and apply the operation to it.

        Raises:
            ProviderUnavailable: If live state cannot be listed
        """
        snapshot = await Snapshot.capture(self.provider, filters)
        return await self.apply(snapshot, predicate, operation, cancel=cancel)


def _tracked(live_set: Sequence[LiveResource] | Snapshot) -> list[LiveResource]:
    if isinstance(live_set, Snapshot):
        return list(live_set)
    return [r for r in live_set if not r.is_terminated]
