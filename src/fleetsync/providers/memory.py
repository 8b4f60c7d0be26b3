"""In-memory provider.

Keeps live resources in a dictionary. Used by the test suite, by the
examples, and by ``--provider memory`` to rehearse a pass against a YAML
state file before touching a real account.

State file format (the same shape LiveResource.to_dict produces):

    resources:
      - name: web01
        resource_id: i-0001
        state: running
        image: ami-0abcdef
        instance_type: t3.micro
        region: us-east-1
        tags: {Name: web01}
        facts: {os_family: Debian, distribution: Ubuntu}
"""

import asyncio
import itertools
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable

import yaml

from fleetsync.exceptions import ProviderRejected, ProviderUnavailable
from fleetsync.types import (
    IDENTITY_TAG,
    Facts,
    LiveResource,
    Operation,
    ResourceSpec,
    ResourceState,
)

from .base import Provider

logger = logging.getLogger(__name__)

# State a resource moves to for each operation
TRANSITIONS = {
    "start": ResourceState.RUNNING,
    "stop": ResourceState.STOPPED,
    "reboot": ResourceState.RUNNING,
    "terminate": ResourceState.TERMINATED,
}


class MemoryProvider(Provider):
    """Provider backed by an in-process dictionary.

    Attributes:
        resources: Live resources keyed by resource ID
        calls: Every call made, as (method, argument) tuples
        fail_on: Resource IDs or names whose mutations are rejected
        unavailable: When True, list_resources raises ProviderUnavailable
        delay: Seconds each call sleeps, or a mapping of resource ID to delay
        default_facts: Facts given to resources created by this provider

    Example:
        >>> provider = MemoryProvider([
        ...     LiveResource(name="web01", resource_id="i-1", state=ResourceState.RUNNING),
        ... ])
        >>> await provider.mutate_resource("i-1", Operation.parse("stop"))
        >>> provider.resources["i-1"].state
        <ResourceState.STOPPED: 'stopped'>
    """

    name = "memory"

    def __init__(
        self,
        resources: Iterable[LiveResource] = (),
        fail_on: Iterable[str] = (),
        unavailable: bool = False,
        delay: float | dict[str, float] = 0.0,
        default_facts: Facts | None = None,
    ) -> None:
        self.resources: dict[str, LiveResource] = {r.resource_id: r for r in resources}
        self.calls: list[tuple[str, Any]] = []
        self.fail_on = set(fail_on)
        self.unavailable = unavailable
        self.delay = delay
        self.default_facts = default_facts or Facts()
        self._ids = itertools.count(len(self.resources) + 1)

    @classmethod
    def from_file(cls, path: str | Path) -> "MemoryProvider":
        """Load resources from a YAML state file."""
        data = yaml.safe_load(Path(path).read_text()) or {}
        return cls(LiveResource.from_dict(entry) for entry in data.get("resources", []))

    def save(self, path: str | Path) -> None:
        """Write resources back to a YAML state file."""
        data = {"resources": [r.to_dict() for r in self.resources.values()]}
        Path(path).write_text(yaml.safe_dump(data, sort_keys=False))

    async def _pause(self, resource_id: str | None = None) -> None:
        if isinstance(self.delay, dict):
            seconds = self.delay.get(resource_id or "", 0.0)
        else:
            seconds = self.delay
        if seconds:
            await asyncio.sleep(seconds)

    async def list_resources(self, filters: dict[str, str]) -> list[LiveResource]:
        self.calls.append(("list_resources", dict(filters)))
        await self._pause()
        if self.unavailable:
            raise ProviderUnavailable("memory provider marked unavailable")
        return [r for r in self.resources.values() if _matches_filters(r, filters)]

    async def create_resource(self, spec: ResourceSpec) -> str:
        self.calls.append(("create_resource", spec.name))
        await self._pause()
        if spec.name in self.fail_on:
            raise ProviderRejected(f"create rejected for {spec.name}", resource=spec.name)

        resource_id = f"i-{next(self._ids):04d}"
        self.resources[resource_id] = LiveResource(
            name=spec.name,
            resource_id=resource_id,
            state=ResourceState.RUNNING,
            image=spec.image,
            instance_type=spec.instance_type,
            region=spec.region,
            tags={IDENTITY_TAG: spec.name, **spec.tags},
            facts=self.default_facts,
        )
        logger.debug(f"Created {spec.name} as {resource_id}")
        return resource_id

    async def mutate_resource(self, resource_id: str, operation: Operation) -> None:
        self.calls.append(("mutate_resource", (resource_id, operation.name)))
        await self._pause(resource_id)

        resource = self.resources.get(resource_id)
        if resource is None:
            raise ProviderRejected(f"{resource_id} does not exist", resource=resource_id)
        if resource_id in self.fail_on or resource.name in self.fail_on:
            raise ProviderRejected(
                f"{operation.name} rejected for {resource_id}", resource=resource_id
            )

        if operation.name == "update":
            self.resources[resource_id] = _apply_update(resource, operation.params)
        else:
            self.resources[resource_id] = replace(resource, state=TRANSITIONS[operation.name])

    def calls_to(self, method: str) -> list[Any]:
        """Arguments of every recorded call to ``method``."""
        return [arg for name, arg in self.calls if name == method]


def _apply_update(resource: LiveResource, params: dict[str, Any]) -> LiveResource:
    tags = dict(resource.tags)
    tags.update(params.get("set_tags", {}))
    for key in params.get("remove_tags", ()):
        tags.pop(key, None)
    return replace(
        resource,
        tags=tags,
        instance_type=params.get("instance_type") or resource.instance_type,
    )


def _matches_filters(resource: LiveResource, filters: dict[str, str]) -> bool:
    """Match the EC2-style filters the CLI accepts."""
    for key, value in filters.items():
        if key.startswith("tag:"):
            if resource.tags.get(key[len("tag:"):]) != value:
                return False
        elif key == "instance-state-name":
            if resource.state.value != value:
                return False
        elif key == "region":
            if resource.region != value:
                return False
        else:
            return False
    return True
