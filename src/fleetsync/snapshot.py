"""Per-pass snapshot of live provider state.

A Snapshot is captured once at the start of a pass and used read-only for
everything the pass computes: the reconciliation plan and every predicate
evaluation see the same view of the fleet. Snapshots are never refreshed;
the next pass captures a new one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterator, Mapping, Sequence

from .exceptions import FleetError, ProviderUnavailable
from .logging import log_performance
from .types import LiveResource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of live resources for a single pass.

    Terminated resources are not tracked. When several resources carry the
    same identity key, lookups return the first in provider order and the
    key is listed in ``duplicates``.

    Attributes:
        resources: Tracked resources in provider order
        duplicates: Identity keys carried by more than one resource

    Example:
        >>> snapshot = Snapshot.from_resources(live)
        >>> snapshot.get("web01").state
        <ResourceState.RUNNING: 'running'>
    """

    resources: tuple[LiveResource, ...] = ()
    duplicates: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    _by_name: Mapping[str, LiveResource] = field(
        default_factory=lambda: MappingProxyType({}), repr=False, compare=False
    )

    @classmethod
    def from_resources(cls, resources: Sequence[LiveResource]) -> "Snapshot":
        """Build a snapshot from a provider listing."""
        tracked = tuple(r for r in resources if not r.is_terminated)

        by_name: dict[str, LiveResource] = {}
        ids_by_name: dict[str, list[str]] = {}
        for resource in tracked:
            by_name.setdefault(resource.name, resource)
            ids_by_name.setdefault(resource.name, []).append(resource.resource_id)

        duplicates = {name: tuple(ids) for name, ids in ids_by_name.items() if len(ids) > 1}
        for name, ids in duplicates.items():
            logger.warning(f"Identity key {name} is carried by {len(ids)} resources: {', '.join(ids)}")

        return cls(
            resources=tracked,
            duplicates=MappingProxyType(duplicates),
            _by_name=MappingProxyType(by_name),
        )

    @classmethod
    async def capture(cls, provider, filters: dict[str, str] | None = None) -> "Snapshot":
        """List live resources once and freeze them.

        Args:
            provider: Provider to list resources from
            filters: Provider-side filters

        Returns:
            Snapshot of the listing

        Raises:
            ProviderUnavailable: If the provider could not report live state
        """
        try:
            with log_performance(logger, "Snapshot capture", level=logging.DEBUG):
                resources = await provider.list_resources(filters or {})
        except asyncio.CancelledError:
            raise
        except ProviderUnavailable:
            raise
        except FleetError as e:
            raise ProviderUnavailable(f"Failed to list resources: {e.message}") from e
        except Exception as e:
            raise ProviderUnavailable(f"Failed to list resources: {e}") from e

        snapshot = cls.from_resources(resources)
        logger.info(f"Captured snapshot of {len(snapshot)} live resource(s)")
        return snapshot

    def get(self, name: str) -> LiveResource | None:
        """Look up a resource by identity key."""
        return self._by_name.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[LiveResource]:
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)
