"""Desired-state descriptor for fleetsync.

Parses a fleet file into an ordered list of ResourceSpec. A fleet file is
YAML with optional ``defaults`` merged under each entry of ``instances``:

    defaults:
      region: us-east-1
      image: ami-0abcdef
      instance_type: t3.micro
      key_name: deploy
      security_groups: [ssh-only]
      tags:
        project: demo
    instances:
      - name: web01
        tags:
          role: web
      - name: db01
        instance_type: t3.large

A bare list of instance mappings is also accepted. All validation happens
here, before any provider is contacted.
"""

import logging
from pathlib import Path
from typing import Any, Iterable

import yaml

from .exceptions import MalformedSpec
from .types import IDENTITY_TAG, ResourceSpec

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "image", "instance_type", "region")
OPTIONAL_FIELDS = ("tags", "key_name", "security_groups")
FIELD_ALIASES = {
    "image_id": "image",
    "resource_class": "instance_type",
}


def parse(source: str | Path | list[Any] | dict[str, Any]) -> list[ResourceSpec]:
    """Parse desired state into resource specs.

    Args:
        source: Path to a fleet file, YAML text, or already-loaded data

    Returns:
        Specs in order of first occurrence, one per identity key

    Raises:
        MalformedSpec: If a required field is missing, a field is invalid,
            or an identity key is declared twice with different fields
    """
    data = _load(source)

    defaults: dict[str, Any] = {}
    if isinstance(data, dict):
        unknown = set(data) - {"defaults", "instances"}
        if unknown:
            raise MalformedSpec(f"Unknown top-level key(s): {', '.join(sorted(unknown))}")
        defaults = data.get("defaults") or {}
        if not isinstance(defaults, dict):
            raise MalformedSpec("'defaults' must be a mapping")
        entries = data.get("instances")
        if entries is None:
            raise MalformedSpec("Fleet file has no 'instances' list")
    else:
        entries = data

    if not isinstance(entries, list):
        raise MalformedSpec("'instances' must be a list of mappings")

    built = []
    for position, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            raise MalformedSpec(f"Instance #{position} is not a mapping")
        built.append(_build_spec(position, _merge(defaults, entry)))

    specs = coalesce_specs(built)
    logger.debug(f"Parsed {len(specs)} resource spec(s)")
    return specs


def coalesce_specs(specs: Iterable[ResourceSpec]) -> list[ResourceSpec]:
    """Collapse identical duplicates, keeping the order of first occurrence.

    Raises:
        MalformedSpec: If an identity key appears twice with different fields
    """
    unique: dict[str, ResourceSpec] = {}
    for spec in specs:
        existing = unique.get(spec.name)
        if existing is None:
            unique[spec.name] = spec
        elif existing == spec:
            logger.debug(f"Coalescing identical duplicate of {spec.name}")
        else:
            old, new = existing.to_dict(), spec.to_dict()
            diverging = sorted(k for k in set(old) | set(new) if old.get(k) != new.get(k))
            raise MalformedSpec(
                f"Identity key {spec.name!r} is declared more than once with different "
                f"values for: {', '.join(diverging)}",
                name=spec.name,
            )
    return list(unique.values())


def load_fleet_file(path: str | Path) -> Any:
    """Read a fleet file with PyYAML.

    Raises:
        MalformedSpec: If the file is missing or is not valid YAML
    """
    path = Path(path)
    try:
        content = path.read_text()
    except OSError as e:
        raise MalformedSpec(f"Cannot read fleet file {path}: {e}") from e
    return _safe_load(content, str(path))


def dump_specs(specs: list[ResourceSpec]) -> dict[str, Any]:
    """Render specs back to fleet-file form (without defaults)."""
    return {"instances": [spec.to_dict() for spec in specs]}


def _load(source: str | Path | list[Any] | dict[str, Any]) -> Any:
    if isinstance(source, Path):
        return load_fleet_file(source)
    if isinstance(source, str):
        # A single line naming an existing file is a path
        if "\n" not in source and Path(source).is_file():
            return load_fleet_file(source)
        return _safe_load(source, "<string>")
    return source


def _safe_load(content: str, origin: str) -> Any:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise MalformedSpec(f"Invalid YAML in {origin}: {e}") from e
    if data is None:
        raise MalformedSpec(f"Fleet file {origin} is empty")
    if not isinstance(data, (dict, list)):
        raise MalformedSpec(f"Fleet file {origin} must contain a mapping or a list")
    return data


def _merge(defaults: dict[str, Any], entry: dict[str, Any]) -> dict[str, Any]:
    """Merge an entry over defaults, resolving aliases; tags merge key-wise."""
    merged: dict[str, Any] = {}
    for source in (defaults, entry):
        for key, value in source.items():
            key = FIELD_ALIASES.get(key, key)
            if key == "tags" and isinstance(value, dict) and isinstance(merged.get("tags"), dict):
                merged["tags"] = {**merged["tags"], **value}
            else:
                merged[key] = value
    return merged


def _build_spec(position: int, data: dict[str, Any]) -> ResourceSpec:
    label = f"instance #{position}"
    raw_name = data.get("name")
    name = str(raw_name) if isinstance(raw_name, (str, int)) and raw_name != "" else None
    if name:
        label = f"{label} ({name})"

    unknown = set(data) - set(REQUIRED_FIELDS) - set(OPTIONAL_FIELDS)
    if unknown:
        raise MalformedSpec(
            f"Unknown field(s) in {label}: {', '.join(sorted(unknown))}",
            name=name,
        )

    for field_name in REQUIRED_FIELDS:
        value = data.get(field_name)
        if value is None or value == "":
            raise MalformedSpec(f"Missing required field {field_name!r} in {label}", name=name)
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise MalformedSpec(f"Field {field_name!r} in {label} must be a string", name=name)

    tags = _parse_tags(data.get("tags"), label, str(data["name"]))
    if tags.get(IDENTITY_TAG, name) != name:
        raise MalformedSpec(
            f"Tag {IDENTITY_TAG!r} in {label} conflicts with the identity key", name=name
        )

    return ResourceSpec(
        name=str(data["name"]),
        image=str(data["image"]),
        instance_type=str(data["instance_type"]),
        region=str(data["region"]),
        tags=tags,
        key_name=_optional_string(data.get("key_name"), "key_name", label, str(data["name"])),
        security_groups=_parse_groups(data.get("security_groups"), label, str(data["name"])),
    )


def _parse_tags(value: Any, label: str, name: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedSpec(f"'tags' in {label} must be a mapping", name=name)

    tags: dict[str, str] = {}
    for key, tag_value in value.items():
        if not isinstance(key, str):
            raise MalformedSpec(f"Tag key {key!r} in {label} must be a string", name=name)
        if isinstance(tag_value, (dict, list)):
            raise MalformedSpec(f"Tag {key!r} in {label} must have a scalar value", name=name)
        if tag_value is None:
            tag_value = ""
        elif isinstance(tag_value, bool):
            tag_value = "true" if tag_value else "false"
        tags[key] = str(tag_value)
    return tags


def _parse_groups(value: Any, label: str, name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(g, str) for g in value):
        raise MalformedSpec(f"'security_groups' in {label} must be a list of strings", name=name)
    return tuple(value)


def _optional_string(value: Any, field_name: str, label: str, name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedSpec(f"Field {field_name!r} in {label} must be a string", name=name)
    return value
