"""Provider interface.

A provider owns live resource records. fleetsync only reads them through
``list_resources`` once per pass and asks the provider to create or mutate
individual resources.
"""

from abc import ABC, abstractmethod
from typing import Iterable

from fleetsync.types import LiveResource, Operation, ResourceSpec


class Provider(ABC):
    """Abstract base class for infrastructure providers.

    Implementations raise:
        ProviderUnavailable: from list_resources when live state cannot be read
        ProviderRejected: from create_resource / mutate_resource when the
            provider refuses a call for one resource
    """

    name = "provider"

    @abstractmethod
    async def list_resources(self, filters: dict[str, str]) -> list[LiveResource]:
        """List live resources, facts included.

        Args:
            filters: Provider-side filters (e.g., {"tag:env": "dev"})
        """

    @abstractmethod
    async def create_resource(self, spec: ResourceSpec) -> str:
        """Create a resource and return its provider ID."""

    @abstractmethod
    async def mutate_resource(self, resource_id: str, operation: Operation) -> None:
        """Apply an operation to one resource."""

    def include_regions(self, regions: Iterable[str]) -> None:
        """Make later list_resources calls cover ``regions`` as well.

        Providers that already see every region ignore this.
        """

    async def close(self) -> None:
        """Release provider resources (sessions, connections)."""

    async def __aenter__(self) -> "Provider":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
