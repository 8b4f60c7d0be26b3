"""Type definitions for fleetsync.

This module defines the core data types shared by the descriptor, the
reconciler and the conditional operator. Desired state and live state are
kept as separate, strongly-typed dataclasses so that nothing downstream has
to guess what a dictionary key means.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ResourceState(str, Enum):
    """Lifecycle state of a live resource as reported by the provider."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"

    @classmethod
    def parse(cls, value: "str | ResourceState") -> "ResourceState":
        """Convert a provider state name to a ResourceState.

        Raises:
            ValueError: If the state name is unknown
        """
        if isinstance(value, ResourceState):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown resource state: {value}. Valid states: {valid}") from None


@dataclass(frozen=True)
class Facts:
    """Observed attributes of a live resource.

    The well-known facts used by predicates are explicit fields; anything
    else a provider or fact gatherer discovers goes into ``extra``. A fact
    that was never discovered is None, which predicates treat as unknown.

    Attributes:
        os_family: OS family (e.g., "Debian", "RedHat", "Windows")
        distribution: Distribution name (e.g., "Ubuntu", "Amazon")
        distribution_version: Distribution version (e.g., "22.04")
        architecture: CPU architecture (e.g., "x86_64", "arm64")
        platform: Provider platform string (e.g., "Linux/UNIX")
        extra: Additional string facts

    Example:
        >>> facts = Facts(os_family="Debian", distribution="Ubuntu")
        >>> facts.get("os_family")
        'Debian'
        >>> facts.get("kernel") is None
        True
    """

    os_family: str | None = None
    distribution: str | None = None
    distribution_version: str | None = None
    architecture: str | None = None
    platform: str | None = None
    extra: dict[str, str] = field(default_factory=dict)

    KNOWN = ("os_family", "distribution", "distribution_version", "architecture", "platform")

    def get(self, name: str) -> str | None:
        """Get a fact by name, returning None when it is missing."""
        if name in self.KNOWN:
            return getattr(self, name)
        return self.extra.get(name)

    def merge(self, other: "Facts") -> "Facts":
        """Return new facts with values from ``other`` taking precedence."""
        values: dict[str, Any] = {}
        for name in self.KNOWN:
            theirs = getattr(other, name)
            values[name] = theirs if theirs is not None else getattr(self, name)
        return Facts(**values, extra={**self.extra, **other.extra})

    def to_dict(self) -> dict[str, str]:
        """Convert to a flat dictionary, omitting missing facts."""
        result = {name: getattr(self, name) for name in self.KNOWN if getattr(self, name) is not None}
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Facts":
        """Create facts from a flat dictionary."""
        data = dict(data or {})
        known = {name: _optional_str(data.pop(name, None)) for name in cls.KNOWN}
        extra = {str(k): str(v) for k, v in data.items() if v is not None}
        return cls(**known, extra=extra)


@dataclass(frozen=True)
class ResourceSpec:
    """Desired state of a single resource.

    ``name`` is the identity key: two specs with the same name describe the
    same logical resource. ``key_name`` and ``security_groups`` are only used
    when the resource is created and are never compared with live state.

    Attributes:
        name: Identity key, unique within a batch
        image: Provider image reference (e.g., AMI ID)
        instance_type: Resource class (e.g., "t3.micro")
        region: Provider region
        tags: Tags to apply (string to string)
        key_name: SSH key pair name used at creation
        security_groups: Security groups attached at creation

    Example:
        >>> spec = ResourceSpec(
        ...     name="web01",
        ...     image="ami-0abcdef",
        ...     instance_type="t3.micro",
        ...     region="us-east-1",
        ...     tags={"role": "web"},
        ... )
    """

    name: str
    image: str
    instance_type: str
    region: str
    tags: dict[str, str] = field(default_factory=dict)
    key_name: str | None = None
    security_groups: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML/JSON serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "image": self.image,
            "instance_type": self.instance_type,
            "region": self.region,
        }
        if self.tags:
            result["tags"] = dict(self.tags)
        if self.key_name:
            result["key_name"] = self.key_name
        if self.security_groups:
            result["security_groups"] = list(self.security_groups)
        return result


@dataclass(frozen=True)
class LiveResource:
    """A resource as currently reported by the provider.

    Attributes:
        name: Identity key (the resource's Name tag)
        resource_id: Opaque ID assigned by the provider
        state: Current lifecycle state
        image: Image reference the resource was launched from
        instance_type: Current resource class
        region: Region the resource lives in
        tags: Current tags
        facts: Discovered facts
        address: Address usable for fact gathering, if any
    """

    name: str
    resource_id: str
    state: ResourceState
    image: str = ""
    instance_type: str = ""
    region: str = ""
    tags: dict[str, str] = field(default_factory=dict)
    facts: Facts = field(default_factory=Facts)
    address: str | None = None

    @property
    def is_terminated(self) -> bool:
        """Check if the provider has confirmed termination."""
        return self.state == ResourceState.TERMINATED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "resource_id": self.resource_id,
            "state": self.state.value,
            "image": self.image,
            "instance_type": self.instance_type,
            "region": self.region,
            "tags": dict(self.tags),
            "facts": self.facts.to_dict(),
        }
        if self.address:
            result["address"] = self.address
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LiveResource":
        """Create from dictionary."""
        return cls(
            name=data["name"],
            resource_id=data["resource_id"],
            state=ResourceState.parse(data.get("state", "running")),
            image=data.get("image", ""),
            instance_type=data.get("instance_type", ""),
            region=data.get("region", ""),
            tags={str(k): str(v) for k, v in (data.get("tags") or {}).items()},
            facts=Facts.from_dict(data.get("facts")),
            address=data.get("address"),
        )


# Tag that carries the identity key on providers that name resources by tag
IDENTITY_TAG = "Name"

# Operations and the states in which they are already satisfied
OPERATIONS: dict[str, frozenset[ResourceState]] = {
    "start": frozenset({ResourceState.RUNNING, ResourceState.PENDING}),
    "stop": frozenset({ResourceState.STOPPED, ResourceState.STOPPING}),
    "reboot": frozenset(),
    "terminate": frozenset({ResourceState.SHUTTING_DOWN, ResourceState.TERMINATED}),
    "update": frozenset(),
}

OPERATION_ALIASES = {
    "shutdown": "stop",
    "halt": "stop",
    "restart": "reboot",
}


@dataclass(frozen=True)
class Operation:
    """An operation sent to the provider for a single resource.

    Attributes:
        name: Operation kind (start, stop, reboot, terminate, update)
        params: Operation parameters (used by update)

    Example:
        >>> Operation.parse("shutdown").name
        'stop'
        >>> Operation.parse("stop").is_satisfied_by(ResourceState.STOPPED)
        True
    """

    name: str
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.name not in OPERATIONS:
            valid = ", ".join(sorted(OPERATIONS))
            raise ValueError(f"Unknown operation: {self.name}. Valid operations: {valid}")

    @classmethod
    def parse(cls, name: str) -> "Operation":
        """Create an operation from a user-supplied name, resolving aliases."""
        key = name.strip().lower()
        return cls(name=OPERATION_ALIASES.get(key, key))

    @property
    def is_destructive(self) -> bool:
        """Check if the operation takes resources out of service."""
        return self.name in ("stop", "terminate", "reboot")

    def is_satisfied_by(self, state: ResourceState) -> bool:
        """Check if a resource in ``state`` already satisfies this operation."""
        return state in OPERATIONS[self.name]

    def __str__(self) -> str:
        return self.name


class Outcome(str, Enum):
    """Per-resource outcome of a pass."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class OutcomeRecord:
    """Outcome of one resource in a pass.

    Attributes:
        name: Identity key of the resource
        outcome: Applied, Skipped or Failed
        detail: Human-readable explanation
        resource_id: Provider resource ID, when known
    """

    name: str
    outcome: Outcome
    detail: str = ""
    resource_id: str | None = None

    @classmethod
    def applied(cls, name: str, detail: str = "", resource_id: str | None = None) -> "OutcomeRecord":
        return cls(name=name, outcome=Outcome.APPLIED, detail=detail, resource_id=resource_id)

    @classmethod
    def skipped(cls, name: str, detail: str = "", resource_id: str | None = None) -> "OutcomeRecord":
        return cls(name=name, outcome=Outcome.SKIPPED, detail=detail, resource_id=resource_id)

    @classmethod
    def failed(cls, name: str, detail: str, resource_id: str | None = None) -> "OutcomeRecord":
        return cls(name=name, outcome=Outcome.FAILED, detail=detail, resource_id=resource_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {"name": self.name, "outcome": self.outcome.value}
        if self.detail:
            result["detail"] = self.detail
        if self.resource_id:
            result["resource_id"] = self.resource_id
        return result


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)
