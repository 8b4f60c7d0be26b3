"""Tests for fleet file parsing."""

import pytest

from fleetsync.descriptor import dump_specs, parse
from fleetsync.exceptions import MalformedSpec


class TestParse:
    """Tests for parse()."""

    def test_parse_file_with_defaults(self, fleet_yaml):
        """Test that defaults are merged under every instance."""
        specs = parse(fleet_yaml)

        assert [s.name for s in specs] == ["web01", "web02", "db01"]
        assert specs[0].region == "us-east-1"
        assert specs[0].tags == {"env": "dev"}
        assert specs[2].instance_type == "t3.large"
        assert specs[2].tags == {"env": "dev", "role": "db"}

    def test_parse_path_string(self, fleet_yaml):
        """Test that a path given as a string is read from disk."""
        assert len(parse(str(fleet_yaml))) == 3

    def test_parse_yaml_text(self):
        """Test parsing a bare list from YAML text."""
        specs = parse(
            "- name: web01\n  image: ami-1\n  instance_type: t3.micro\n  region: eu-west-1\n"
        )

        assert len(specs) == 1
        assert specs[0].region == "eu-west-1"

    def test_parse_loaded_data(self):
        """Test parsing already-loaded data with aliases."""
        specs = parse([
            {"name": "web01", "image_id": "ami-1", "resource_class": "t3.small", "region": "us-east-1"},
        ])

        assert specs[0].image == "ami-1"
        assert specs[0].instance_type == "t3.small"

    def test_create_only_fields(self):
        """Test key pair and security groups."""
        specs = parse({
            "defaults": {"key_name": "deploy", "security_groups": "ssh-only"},
            "instances": [
                {"name": "web01", "image": "ami-1", "instance_type": "t3.micro", "region": "us-east-1"},
            ],
        })

        assert specs[0].key_name == "deploy"
        assert specs[0].security_groups == ("ssh-only",)

    def test_scalar_tag_values_coerced(self):
        """Test that numeric and boolean tag values become strings."""
        specs = parse([{
            "name": "web01",
            "image": "ami-1",
            "instance_type": "t3.micro",
            "region": "us-east-1",
            "tags": {"port": 80, "public": True, "owner": None},
        }])

        assert specs[0].tags == {"port": "80", "public": "true", "owner": ""}

    def test_identical_duplicates_coalesced(self):
        """Test that an identity key declared twice identically yields one spec."""
        entry = {"name": "web01", "image": "ami-1", "instance_type": "t3.micro", "region": "us-east-1"}

        specs = parse([entry, dict(entry)])

        assert len(specs) == 1

    def test_divergent_duplicates_rejected(self):
        """Test that an identity key declared twice differently is an error."""
        first = {"name": "web01", "image": "ami-1", "instance_type": "t3.micro", "region": "us-east-1"}
        second = dict(first, instance_type="t3.large")

        with pytest.raises(MalformedSpec, match="instance_type") as exc_info:
            parse([first, second])
        assert exc_info.value.context.resource == "web01"

    def test_dump_specs(self, fleet_yaml):
        """Test rendering specs back to fleet-file form."""
        data = dump_specs(parse(fleet_yaml))
        assert [i["name"] for i in data["instances"]] == ["web01", "web02", "db01"]
        assert parse(data) == parse(fleet_yaml)


class TestValidation:
    """Tests for malformed fleet files."""

    @pytest.mark.parametrize("missing", ["name", "image", "instance_type", "region"])
    def test_missing_required_field(self, missing):
        """Test that every required field is enforced."""
        entry = {"name": "web01", "image": "ami-1", "instance_type": "t3.micro", "region": "us-east-1"}
        del entry[missing]

        with pytest.raises(MalformedSpec, match=missing):
            parse([entry])

    def test_unknown_field(self):
        """Test that typos are reported instead of ignored."""
        with pytest.raises(MalformedSpec, match="instnace_type"):
            parse([{"name": "a", "image": "ami-1", "instnace_type": "t3", "region": "r"}])

    def test_unknown_top_level_key(self):
        """Test that unknown top-level keys are rejected."""
        with pytest.raises(MalformedSpec, match="hosts"):
            parse({"hosts": [], "instances": []})

    def test_nested_tag_value(self):
        """Test that tag values must be scalars."""
        with pytest.raises(MalformedSpec, match="scalar"):
            parse([{
                "name": "a", "image": "ami-1", "instance_type": "t3", "region": "r",
                "tags": {"role": ["web", "api"]},
            }])

    def test_name_tag_conflict(self):
        """Test that a Name tag must agree with the identity key."""
        with pytest.raises(MalformedSpec, match="identity key"):
            parse([{
                "name": "web01", "image": "ami-1", "instance_type": "t3", "region": "r",
                "tags": {"Name": "web02"},
            }])

    def test_invalid_yaml(self):
        """Test that YAML syntax errors become MalformedSpec."""
        with pytest.raises(MalformedSpec, match="Invalid YAML"):
            parse("instances: [unclosed")

    def test_empty_file(self, tmp_path):
        """Test that an empty fleet file is rejected."""
        path = tmp_path / "empty.yml"
        path.write_text("")

        with pytest.raises(MalformedSpec, match="empty"):
            parse(path)

    def test_missing_file(self, tmp_path):
        """Test that a missing Path is reported as MalformedSpec."""
        with pytest.raises(MalformedSpec, match="Cannot read"):
            parse(tmp_path / "nope.yml")

    def test_instances_not_list(self):
        """Test that instances must be a list."""
        with pytest.raises(MalformedSpec, match="list"):
            parse({"instances": {"name": "web01"}})

    def test_empty_fleet_is_valid(self):
        """Test that an empty instance list parses to no specs."""
        assert parse({"instances": []}) == []
