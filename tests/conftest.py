"""Shared fixtures for fleetsync tests."""

import pytest

from fleetsync.types import Facts, LiveResource, ResourceSpec, ResourceState


def make_spec(name: str, **overrides) -> ResourceSpec:
    """Build a spec with sensible defaults."""
    values = {
        "image": "ami-0abc",
        "instance_type": "t3.micro",
        "region": "us-east-1",
        "tags": {"env": "dev"},
    }
    values.update(overrides)
    return ResourceSpec(name=name, **values)


def make_live(
    name: str,
    resource_id: str | None = None,
    state: ResourceState = ResourceState.RUNNING,
    os_family: str | None = None,
    **overrides,
) -> LiveResource:
    """Build a live resource that matches make_spec(name) unless overridden."""
    values = {
        "image": "ami-0abc",
        "instance_type": "t3.micro",
        "region": "us-east-1",
        "tags": {"Name": name, "env": "dev"},
        "facts": Facts(os_family=os_family),
    }
    values.update(overrides)
    return LiveResource(name=name, resource_id=resource_id or f"i-{name}", state=state, **values)


@pytest.fixture
def mixed_fleet() -> list[LiveResource]:
    """Two Debian hosts, one RedHat host and one host with no facts."""
    return [
        make_live("web01", os_family="Debian"),
        make_live("web02", os_family="Debian"),
        make_live("db01", os_family="RedHat"),
        make_live("legacy01"),
    ]


@pytest.fixture
def fleet_yaml(tmp_path):
    """A fleet file with defaults and three instances."""
    path = tmp_path / "fleet.yml"
    path.write_text(
        """
defaults:
  region: us-east-1
  image: ami-0abc
  instance_type: t3.micro
  tags:
    env: dev
instances:
  - name: web01
  - name: web02
  - name: db01
    instance_type: t3.large
    tags:
      role: db
"""
    )
    return path
