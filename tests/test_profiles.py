"""Tests for saved run profiles."""

import pytest

from fleetsync import profiles
from fleetsync.exceptions import FleetError
from fleetsync.profiles import ProfileStore, RunProfile


def _operate_profile(**overrides) -> RunProfile:
    values = {
        "name": "stop-debian",
        "command": "operate",
        "predicate": 'os_family == "Debian"',
        "operation": "stop",
        "filters": {"tag:env": "dev"},
    }
    values.update(overrides)
    return RunProfile(**values)


class TestRunProfile:
    """Tests for RunProfile."""

    def test_validate_operate(self):
        """Test that operate profiles need an operation and a predicate."""
        _operate_profile().validate()

        with pytest.raises(FleetError, match="operation and a predicate"):
            _operate_profile(predicate=None).validate()

    def test_validate_apply(self):
        """Test that apply profiles need a fleet file."""
        RunProfile(name="web", command="apply", fleet_file="fleet.yml").validate()

        with pytest.raises(FleetError, match="fleet file"):
            RunProfile(name="web", command="apply").validate()

    def test_validate_command_and_parallel(self):
        """Test unknown commands and out-of-range parallelism."""
        with pytest.raises(FleetError, match="Unknown profile command"):
            RunProfile(name="x", command="destroy").validate()
        with pytest.raises(FleetError, match="parallel"):
            _operate_profile(parallel=0).validate()

    def test_dict_round_trip_omits_unset(self):
        """Test serialization keeps only what was set."""
        profile = _operate_profile(parallel=5, purge_tags=None, description="nightly")

        data = profile.to_dict()

        assert data == {
            "name": "stop-debian",
            "command": "operate",
            "predicate": 'os_family == "Debian"',
            "operation": "stop",
            "description": "nightly",
            "filters": {"tag:env": "dev"},
            "parallel": 5,
        }
        assert RunProfile.from_dict(data) == profile

    def test_operate_cli_args(self):
        """Test rebuilding operate arguments."""
        args = _operate_profile(provider="memory", state_file="state.yml", parallel=4).to_cli_args()

        assert args == [
            "operate",
            "--op", "stop",
            "--where", 'os_family == "Debian"',
            "--yes",
            "--filter", "tag:env=dev",
            "--provider", "memory",
            "--state-file", "state.yml",
            "--parallel", "4",
        ]

    def test_apply_cli_args(self):
        """Test rebuilding apply arguments with the purge flag."""
        args = RunProfile(
            name="web", command="apply", fleet_file="fleet.yml", purge_tags=True, format="json"
        ).to_cli_args()

        assert args == ["apply", "--fleet-file", "fleet.yml", "--yes", "--purge-tags", "--format", "json"]

    def test_format_text(self):
        """Test the human-readable profile."""
        text = _operate_profile(region="us-east-1").format_text()

        assert "Profile: stop-debian" in text
        assert "Operation: stop" in text
        assert "Filters: tag:env=dev" in text
        assert "Region: us-east-1" in text


class TestProfileStore:
    """Tests for saving and loading profiles."""

    def test_save_and_load(self, tmp_path):
        """Test a save/load cycle."""
        store = ProfileStore(tmp_path)

        path = store.save(_operate_profile())

        assert path == tmp_path / "stop-debian.json"
        assert store.load("stop-debian") == _operate_profile()

    def test_default_directory(self, tmp_path, monkeypatch):
        """Test that the default directory is read when the store is created."""
        monkeypatch.setattr(profiles, "DEFAULT_PROFILE_DIR", tmp_path / "default")

        assert ProfileStore().directory == tmp_path / "default"

    def test_save_validates(self, tmp_path):
        """Test that invalid profiles are never written."""
        store = ProfileStore(tmp_path)

        with pytest.raises(FleetError):
            store.save(RunProfile(name="broken", command="apply"))

        assert store.names() == []

    @pytest.mark.parametrize("name", ["../evil", "has space", "", "a/b"])
    def test_invalid_names_rejected(self, tmp_path, name):
        """Test that profile names cannot escape the directory."""
        with pytest.raises(FleetError, match="Invalid profile name"):
            ProfileStore(tmp_path).path(name)

    def test_load_missing_or_corrupt(self, tmp_path):
        """Test that missing and unreadable profiles load as None."""
        (tmp_path / "corrupt.json").write_text("{not json")
        (tmp_path / "partial.json").write_text('{"name": "partial"}')
        store = ProfileStore(tmp_path)

        assert store.load("missing") is None
        assert store.load("corrupt") is None
        assert store.load("partial") is None

    def test_names_and_delete(self, tmp_path):
        """Test listing and deleting profiles."""
        store = ProfileStore(tmp_path)
        store.save(_operate_profile(name="b"))
        store.save(_operate_profile(name="a"))

        assert store.names() == ["a", "b"]
        assert store.delete("a")
        assert not store.delete("a")
        assert store.names() == ["b"]

    def test_names_missing_directory(self, tmp_path):
        """Test listing when nothing was ever saved."""
        assert ProfileStore(tmp_path / "nope").names() == []
