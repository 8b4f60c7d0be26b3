"""Tests for fleetsync type definitions."""

import pytest

from fleetsync.types import (
    Facts,
    LiveResource,
    Operation,
    Outcome,
    OutcomeRecord,
    ResourceSpec,
    ResourceState,
)


class TestResourceState:
    """Tests for ResourceState parsing."""

    def test_parse_provider_names(self):
        """Test parsing provider state names, case-insensitively."""
        assert ResourceState.parse("running") == ResourceState.RUNNING
        assert ResourceState.parse("STOPPED") == ResourceState.STOPPED
        assert ResourceState.parse("shutting-down") == ResourceState.SHUTTING_DOWN

    def test_parse_passthrough(self):
        """Test that an existing state is returned unchanged."""
        assert ResourceState.parse(ResourceState.PENDING) is ResourceState.PENDING

    def test_parse_unknown(self):
        """Test that unknown states are rejected with the valid list."""
        with pytest.raises(ValueError, match="Valid states"):
            ResourceState.parse("hibernating")


class TestFacts:
    """Tests for Facts."""

    def test_get_known_and_extra(self):
        """Test looking up well-known and extra facts."""
        facts = Facts(os_family="Debian", extra={"kernel": "6.1"})

        assert facts.get("os_family") == "Debian"
        assert facts.get("kernel") == "6.1"
        assert facts.get("distribution") is None
        assert facts.get("nonexistent") is None

    def test_merge_prefers_other(self):
        """Test that merged facts take non-missing values from the argument."""
        base = Facts(os_family="Debian", platform="Linux/UNIX", extra={"a": "1"})
        gathered = Facts(distribution="Ubuntu", os_family="Debian", extra={"b": "2"})

        merged = base.merge(gathered)

        assert merged.os_family == "Debian"
        assert merged.distribution == "Ubuntu"
        assert merged.platform == "Linux/UNIX"
        assert merged.extra == {"a": "1", "b": "2"}

    def test_dict_roundtrip_omits_missing(self):
        """Test that missing facts are omitted from the dictionary form."""
        facts = Facts.from_dict({"os_family": "RedHat", "kernel": "5.14"})

        assert facts.os_family == "RedHat"
        assert facts.extra == {"kernel": "5.14"}
        assert facts.to_dict() == {"os_family": "RedHat", "kernel": "5.14"}


class TestResourceSpec:
    """Tests for ResourceSpec."""

    def test_to_dict_minimal(self):
        """Test that empty optional fields are omitted."""
        spec = ResourceSpec(name="web01", image="ami-1", instance_type="t3.micro", region="us-east-1")

        assert spec.to_dict() == {
            "name": "web01",
            "image": "ami-1",
            "instance_type": "t3.micro",
            "region": "us-east-1",
        }

    def test_to_dict_full(self):
        """Test serializing create-only fields."""
        spec = ResourceSpec(
            name="web01",
            image="ami-1",
            instance_type="t3.micro",
            region="us-east-1",
            tags={"role": "web"},
            key_name="deploy",
            security_groups=("ssh-only",),
        )

        data = spec.to_dict()
        assert data["tags"] == {"role": "web"}
        assert data["key_name"] == "deploy"
        assert data["security_groups"] == ["ssh-only"]

    def test_specs_are_immutable(self):
        """Test that specs cannot be modified after parsing."""
        spec = ResourceSpec(name="web01", image="ami-1", instance_type="t3.micro", region="us-east-1")

        with pytest.raises(AttributeError):
            spec.name = "web02"


class TestLiveResource:
    """Tests for LiveResource."""

    def test_from_dict(self):
        """Test loading a live resource from a state file entry."""
        resource = LiveResource.from_dict({
            "name": "web01",
            "resource_id": "i-1",
            "state": "stopped",
            "tags": {"Name": "web01", "port": 80},
            "facts": {"os_family": "Debian"},
        })

        assert resource.state == ResourceState.STOPPED
        assert resource.tags == {"Name": "web01", "port": "80"}
        assert resource.facts.os_family == "Debian"
        assert resource.address is None

    def test_is_terminated(self):
        """Test termination check."""
        live = LiveResource(name="a", resource_id="i-1", state=ResourceState.TERMINATED)
        assert live.is_terminated is True
        assert LiveResource(name="a", resource_id="i-1", state=ResourceState.RUNNING).is_terminated is False


class TestOperation:
    """Tests for Operation."""

    def test_parse_aliases(self):
        """Test that shutdown and halt resolve to stop."""
        assert Operation.parse("shutdown").name == "stop"
        assert Operation.parse("Halt").name == "stop"
        assert Operation.parse("restart").name == "reboot"
        assert Operation.parse("terminate").name == "terminate"

    def test_unknown_operation(self):
        """Test that unknown operations are rejected."""
        with pytest.raises(ValueError, match="Unknown operation"):
            Operation.parse("explode")

    def test_satisfied_states(self):
        """Test which states already satisfy an operation."""
        stop = Operation.parse("stop")
        start = Operation.parse("start")

        assert stop.is_satisfied_by(ResourceState.STOPPED)
        assert stop.is_satisfied_by(ResourceState.STOPPING)
        assert not stop.is_satisfied_by(ResourceState.RUNNING)
        assert start.is_satisfied_by(ResourceState.RUNNING)
        assert not Operation.parse("reboot").is_satisfied_by(ResourceState.RUNNING)

    def test_is_destructive(self):
        """Test destructive classification."""
        assert Operation.parse("stop").is_destructive
        assert Operation.parse("terminate").is_destructive
        assert not Operation.parse("start").is_destructive


class TestOutcomeRecord:
    """Tests for OutcomeRecord."""

    def test_constructors(self):
        """Test the outcome shortcuts."""
        assert OutcomeRecord.applied("a").outcome == Outcome.APPLIED
        assert OutcomeRecord.skipped("a", "not matched").outcome == Outcome.SKIPPED
        assert OutcomeRecord.failed("a", "boom").outcome == Outcome.FAILED

    def test_to_dict(self):
        """Test serialization omits empty fields."""
        assert OutcomeRecord.applied("web01").to_dict() == {"name": "web01", "outcome": "applied"}
        assert OutcomeRecord.failed("web01", "denied", "i-1").to_dict() == {
            "name": "web01",
            "outcome": "failed",
            "detail": "denied",
            "resource_id": "i-1",
        }
