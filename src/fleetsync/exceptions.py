"""Exceptions for fleetsync.

Every error carries an ErrorContext describing what failed, on which
resource, and what the user can do about it. The error types decide how
far an error travels:

- MalformedSpec and PredicateError abort before any provider call
- ProviderUnavailable fails the whole pass with no mutation attempted
- ProviderRejected is per-resource and becomes a Failed outcome
- ReplacementRequired is only ever reported as a plan warning
"""

from dataclasses import dataclass
from typing import Any


class ErrorTypes:
    """Error type classifications."""

    MALFORMED_SPEC = "MalformedSpec"
    INVALID_PREDICATE = "InvalidPredicate"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    PROVIDER_REJECTED = "ProviderRejected"
    PROVIDER_THROTTLED = "ProviderThrottled"
    REPLACEMENT_REQUIRED = "ReplacementRequired"
    AMBIGUOUS_RESOURCE = "AmbiguousResource"
    UNKNOWN = "Unknown"


@dataclass
class ErrorContext:
    """Structured description of an error.

    Attributes:
        error_type: One of the ErrorTypes constants
        message: Human-readable message
        resource: Identity key or provider ID involved, if any
        suggestion: What to do about it, if known
    """

    error_type: str
    message: str
    resource: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {"error_type": self.error_type, "message": self.message}
        if self.resource:
            result["resource"] = self.resource
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def format_text(self) -> str:
        """Format as human-readable text."""
        where = f" [{self.resource}]" if self.resource else ""
        lines = [f"{self.error_type}{where}: {self.message}"]
        if self.suggestion:
            lines.append(f"  Suggestion: {self.suggestion}")
        return "\n".join(lines)


class FleetError(Exception):
    """Base class for fleetsync errors."""

    error_type = ErrorTypes.UNKNOWN

    def __init__(
        self,
        message: str,
        resource: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message)
        self.context = ErrorContext(
            error_type=self.error_type,
            message=message,
            resource=resource,
            suggestion=suggestion,
        )

    @property
    def message(self) -> str:
        return self.context.message


class MalformedSpec(FleetError):
    """Raised when the desired-state input is invalid.

    Example:
        raise MalformedSpec("missing required field 'image'", name="web01")
    """

    error_type = ErrorTypes.MALFORMED_SPEC

    def __init__(self, message: str, name: str | None = None) -> None:
        super().__init__(
            message,
            resource=name,
            suggestion="Fix the fleet file; no provider calls were made",
        )
        self.name = name


class PredicateError(FleetError):
    """Raised when a predicate expression cannot be parsed."""

    error_type = ErrorTypes.INVALID_PREDICATE

    def __init__(self, message: str, position: int | None = None) -> None:
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message)
        self.position = position


class ProviderUnavailable(FleetError):
    """Raised when the provider cannot report live state.

    A pass that cannot see live state makes no changes.
    """

    error_type = ErrorTypes.PROVIDER_UNAVAILABLE

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            suggestion="Check provider credentials and connectivity, then rerun",
        )


class ProviderRejected(FleetError):
    """Raised when the provider refuses an operation on one resource.

    Attributes:
        reason: Provider's reason for rejecting the call
        transient: True when retrying may succeed (throttling, rate limits)
    """

    error_type = ErrorTypes.PROVIDER_REJECTED

    def __init__(self, reason: str, resource: str | None = None, transient: bool = False) -> None:
        super().__init__(reason, resource=resource)
        self.reason = reason
        self.transient = transient
        if transient:
            self.context.error_type = ErrorTypes.PROVIDER_THROTTLED


class ReplacementRequired(FleetError):
    """Describes a live resource whose immutable fields diverge from desired state.

    Never raised by the reconciler; instances are attached to the plan as
    warnings so the operator decides whether to replace the resource.

    Attributes:
        name: Identity key of the resource
        fields: Mapping of field name to (live value, desired value)
    """

    error_type = ErrorTypes.REPLACEMENT_REQUIRED

    def __init__(self, name: str, fields: dict[str, tuple[str, str]]) -> None:
        changes = ", ".join(f"{k}: {old!r} -> {new!r}" for k, (old, new) in fields.items())
        super().__init__(
            f"{name} requires replacement ({changes})",
            resource=name,
            suggestion="Replace the resource manually; it is left untouched",
        )
        self.name = name
        self.fields = fields


class AmbiguousResource(FleetError):
    """Describes an identity key carried by more than one live resource.

    Like ReplacementRequired, this is attached to a plan as a warning and
    the resource is never mutated.
    """

    error_type = ErrorTypes.AMBIGUOUS_RESOURCE

    def __init__(self, name: str, resource_ids: list[str]) -> None:
        super().__init__(
            f"{name} matches {len(resource_ids)} live resources ({', '.join(resource_ids)})",
            resource=name,
            suggestion="Rename or terminate the extra resources so the Name tag is unique",
        )
        self.name = name
        self.resource_ids = resource_ids
