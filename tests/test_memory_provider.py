"""Tests for the in-memory provider."""

import pytest
import yaml

from conftest import make_live, make_spec
from fleetsync.exceptions import ProviderRejected, ProviderUnavailable
from fleetsync.providers.memory import MemoryProvider
from fleetsync.types import Facts, Operation, ResourceState


class TestMemoryProvider:
    """Tests for MemoryProvider."""

    @pytest.mark.asyncio
    async def test_list_filters(self):
        """Test EC2-style filters."""
        provider = MemoryProvider([
            make_live("a", tags={"Name": "a", "env": "dev"}),
            make_live("b", tags={"Name": "b", "env": "prod"}, state=ResourceState.STOPPED),
            make_live("c", region="eu-west-1"),
        ])

        assert [r.name for r in await provider.list_resources({})] == ["a", "b", "c"]
        assert [r.name for r in await provider.list_resources({"tag:env": "prod"})] == ["b"]
        assert [r.name for r in await provider.list_resources({"instance-state-name": "running"})] == ["a", "c"]
        assert [r.name for r in await provider.list_resources({"region": "eu-west-1"})] == ["c"]
        assert await provider.list_resources({"vpc-id": "vpc-1"}) == []

    @pytest.mark.asyncio
    async def test_unavailable(self):
        """Test the unavailable switch."""
        with pytest.raises(ProviderUnavailable):
            await MemoryProvider(unavailable=True).list_resources({})

    @pytest.mark.asyncio
    async def test_create(self):
        """Test that created resources carry the identity tag."""
        provider = MemoryProvider(default_facts=Facts(os_family="Debian"))

        resource_id = await provider.create_resource(make_spec("web01", tags={"env": "prod"}))

        resource = provider.resources[resource_id]
        assert resource_id == "i-0001"
        assert resource.name == "web01"
        assert resource.state == ResourceState.RUNNING
        assert resource.tags == {"Name": "web01", "env": "prod"}
        assert resource.facts.os_family == "Debian"

    @pytest.mark.asyncio
    async def test_ids_continue_after_loaded_resources(self):
        """Test that new IDs do not collide with existing ones."""
        provider = MemoryProvider([make_live("a", "i-0001")])

        assert await provider.create_resource(make_spec("b")) == "i-0002"

    @pytest.mark.asyncio
    async def test_state_transitions(self):
        """Test lifecycle operations."""
        provider = MemoryProvider([make_live("a", "i-1")])

        await provider.mutate_resource("i-1", Operation.parse("shutdown"))
        assert provider.resources["i-1"].state == ResourceState.STOPPED

        await provider.mutate_resource("i-1", Operation.parse("start"))
        assert provider.resources["i-1"].state == ResourceState.RUNNING

        await provider.mutate_resource("i-1", Operation.parse("terminate"))
        assert provider.resources["i-1"].state == ResourceState.TERMINATED

    @pytest.mark.asyncio
    async def test_update(self):
        """Test tag and instance type updates."""
        provider = MemoryProvider([make_live("a", "i-1", tags={"Name": "a", "old": "x"})])

        await provider.mutate_resource(
            "i-1",
            Operation("update", {"set_tags": {"env": "prod"}, "remove_tags": ["old"], "instance_type": "t3.large"}),
        )

        resource = provider.resources["i-1"]
        assert resource.tags == {"Name": "a", "env": "prod"}
        assert resource.instance_type == "t3.large"

    @pytest.mark.asyncio
    async def test_rejections(self):
        """Test fail_on by name and unknown IDs."""
        provider = MemoryProvider([make_live("a", "i-1")], fail_on={"a"})

        with pytest.raises(ProviderRejected, match="stop rejected"):
            await provider.mutate_resource("i-1", Operation.parse("stop"))
        with pytest.raises(ProviderRejected, match="does not exist"):
            await provider.mutate_resource("i-missing", Operation.parse("stop"))

        assert provider.resources["i-1"].state == ResourceState.RUNNING
        assert provider.calls_to("mutate_resource") == [("i-1", "stop"), ("i-missing", "stop")]

    @pytest.mark.asyncio
    async def test_state_file_round_trip(self, tmp_path):
        """Test loading and saving the YAML state file."""
        state_file = tmp_path / "state.yml"
        state_file.write_text(
            yaml.safe_dump(
                {
                    "resources": [
                        {
                            "name": "web01",
                            "resource_id": "i-0001",
                            "state": "running",
                            "image": "ami-0abc",
                            "instance_type": "t3.micro",
                            "region": "us-east-1",
                            "tags": {"Name": "web01"},
                            "facts": {"os_family": "Debian"},
                        }
                    ]
                }
            )
        )

        provider = MemoryProvider.from_file(state_file)
        await provider.mutate_resource("i-0001", Operation.parse("stop"))
        provider.save(state_file)

        reloaded = MemoryProvider.from_file(state_file)
        resource = reloaded.resources["i-0001"]
        assert resource.state == ResourceState.STOPPED
        assert resource.facts.os_family == "Debian"
        assert resource.tags == {"Name": "web01"}
