"""Saved run profiles for fleetsync.

A profile stores the options of an ``apply`` or ``operate`` invocation so
a recurring pass (e.g., "stop every Debian dev host") can be rerun by name.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import FleetError

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_DIR = Path.home() / ".fleetsync" / "profiles"
PROFILE_NAME = re.compile(r"[A-Za-z0-9_-]+")

DEFAULT_PARALLEL = 10
MAX_PARALLEL = 100

PROFILE_COMMANDS = ("apply", "operate")


@dataclass
class RunProfile:
    """A saved pass configuration.

    Attributes:
        name: Profile name
        command: CLI command to run ("apply" or "operate")
        fleet_file: Fleet file for apply
        predicate: Predicate expression for operate
        operation: Operation for operate
        description: Optional description
        provider: Provider name
        state_file: State file for the memory provider
        region: Provider region
        aws_profile: AWS credentials profile
        filters: Provider-side filters
        parallel: Number of concurrent provider calls
        retry: Retries for throttled calls
        retry_delay: Initial delay between retries
        gather_facts: Fact gathering mode ("none" or "ssh")
        ssh_user: SSH user for fact gathering
        ssh_key: SSH private key for fact gathering
        purge_tags: Remove live tags missing from the fleet file
        format: Output format
    """

    name: str
    command: str
    fleet_file: str | None = None
    predicate: str | None = None
    operation: str | None = None
    description: str = ""
    provider: str | None = None
    state_file: str | None = None
    region: str | None = None
    aws_profile: str | None = None
    filters: dict[str, str] = field(default_factory=dict)
    parallel: int | None = None
    retry: int | None = None
    retry_delay: float | None = None
    gather_facts: str | None = None
    ssh_user: str | None = None
    ssh_key: str | None = None
    purge_tags: bool | None = None
    format: str | None = None

    OPTIONAL = (
        "provider", "state_file", "region", "aws_profile", "parallel", "retry",
        "retry_delay", "gather_facts", "ssh_user", "ssh_key", "purge_tags", "format",
    )

    def validate(self) -> None:
        """Check that the profile describes a runnable pass.

        Raises:
            FleetError: If the command or its required options are missing
        """
        if self.command not in PROFILE_COMMANDS:
            raise FleetError(
                f"Unknown profile command: {self.command}",
                suggestion=f"Use one of: {', '.join(PROFILE_COMMANDS)}",
            )
        if self.command == "apply" and not self.fleet_file:
            raise FleetError("An apply profile needs a fleet file", suggestion="Pass --fleet-file")
        if self.command == "operate" and not (self.operation and self.predicate):
            raise FleetError(
                "An operate profile needs an operation and a predicate",
                suggestion="Pass --op and --where",
            )
        if self.parallel is not None and not 1 <= self.parallel <= MAX_PARALLEL:
            raise FleetError(f"parallel must be between 1 and {MAX_PARALLEL}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {"name": self.name, "command": self.command}
        for key in ("fleet_file", "predicate", "operation"):
            if getattr(self, key):
                result[key] = getattr(self, key)
        if self.description:
            result["description"] = self.description
        if self.filters:
            result["filters"] = dict(self.filters)
        for key in self.OPTIONAL:
            if getattr(self, key) is not None:
                result[key] = getattr(self, key)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunProfile":
        """Create from dictionary."""
        return cls(
            name=data["name"],
            command=data["command"],
            fleet_file=data.get("fleet_file"),
            predicate=data.get("predicate"),
            operation=data.get("operation"),
            description=data.get("description", ""),
            filters=data.get("filters", {}),
            **{key: data.get(key) for key in cls.OPTIONAL},
        )

    def format_text(self) -> str:
        """Format profile as human-readable text."""
        lines = [f"Profile: {self.name}", f"Command: {self.command}"]
        if self.description:
            lines.append(f"Description: {self.description}")
        if self.fleet_file:
            lines.append(f"Fleet file: {self.fleet_file}")
        if self.operation:
            lines.append(f"Operation: {self.operation}")
        if self.predicate:
            lines.append(f"Where: {self.predicate}")
        if self.filters:
            lines.append("Filters: " + " ".join(f"{k}={v}" for k, v in self.filters.items()))
        for key in self.OPTIONAL:
            value = getattr(self, key)
            if value is not None:
                lines.append(f"{key.replace('_', ' ').capitalize()}: {value}")
        return "\n".join(lines)

    def to_cli_args(self) -> list[str]:
        """Build the CLI arguments that rerun this profile."""
        args = [self.command]
        if self.command == "apply":
            args.extend(["--fleet-file", self.fleet_file or "", "--yes"])
        else:
            args.extend(["--op", self.operation or "", "--where", self.predicate or "", "--yes"])

        for key, value in self.filters.items():
            args.extend(["--filter", f"{key}={value}"])
        for key in self.OPTIONAL:
            value = getattr(self, key)
            if value is None:
                continue
            option = "--" + key.replace("_", "-")
            if key == "purge_tags":
                if value:
                    args.append(option)
            else:
                args.extend([option, str(value)])
        return args


class ProfileStore:
    """Directory of saved profiles, one ``<name>.json`` file each.

    Profile names are restricted to letters, digits, ``-`` and ``_`` so a
    name always maps to a file directly inside the store.

    Example:
        >>> store = ProfileStore()
        >>> store.save(RunProfile(name="stop-debian", command="operate",
        ...                       operation="stop", predicate='os_family == "Debian"'))
        >>> store.names()
        ['stop-debian']
    """

    def __init__(self, directory: Path | None = None) -> None:
        self.directory = Path(directory or DEFAULT_PROFILE_DIR)

    def path(self, name: str) -> Path:
        """File backing the profile ``name``.

        Raises:
            FleetError: If the name contains characters other than [A-Za-z0-9_-]
        """
        if not PROFILE_NAME.fullmatch(name):
            raise FleetError(
                f"Invalid profile name: {name!r}",
                suggestion="Use letters, digits, '-' and '_' only",
            )
        return self.directory / f"{name}.json"

    def load(self, name: str) -> RunProfile | None:
        """Read a profile; None when it does not exist or cannot be decoded."""
        path = self.path(name)
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable profile {path}: {e}")
            return None
        try:
            return RunProfile.from_dict(data)
        except (KeyError, TypeError) as e:
            logger.warning(f"Ignoring profile {path} with missing field {e}")
            return None

    def save(self, profile: RunProfile) -> Path:
        """Validate and write a profile, replacing any previous version."""
        profile.validate()
        path = self.path(profile.name)
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(profile.to_dict(), indent=2) + "\n")
        logger.info(f"Saved profile {profile.name} to {path}")
        return path

    def names(self) -> list[str]:
        """Names of all saved profiles, sorted."""
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json") if PROFILE_NAME.fullmatch(p.stem))

    def delete(self, name: str) -> bool:
        """Remove a profile; False when it did not exist."""
        try:
            self.path(name).unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Deleted profile {name}")
        return True
