"""Tests for fact discovery."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_live
from fleetsync.facts import (
    FactGatherer,
    SSHConfig,
    classify_os_release,
    facts_from_platform,
    parse_os_release,
)
from fleetsync.types import Facts, ResourceState

UBUNTU_RELEASE = """\
NAME="Ubuntu"
VERSION_ID="22.04"
ID=ubuntu
ID_LIKE=debian
PRETTY_NAME="Ubuntu 22.04.3 LTS"
"""

AMAZON_RELEASE = """\
NAME="Amazon Linux"
VERSION="2023"
ID="amzn"
ID_LIKE="fedora"
VERSION_ID="2023"
"""


class TestOsRelease:
    """Tests for /etc/os-release classification."""

    def test_parse_os_release(self):
        """Test parsing quoted and unquoted values."""
        values = parse_os_release(UBUNTU_RELEASE + "# comment\n\n")

        assert values["ID"] == "ubuntu"
        assert values["VERSION_ID"] == "22.04"
        assert values["PRETTY_NAME"] == "Ubuntu 22.04.3 LTS"

    def test_debian_family(self):
        """Test Ubuntu maps to the Debian family."""
        facts = classify_os_release(UBUNTU_RELEASE)

        assert facts.os_family == "Debian"
        assert facts.distribution == "Ubuntu"
        assert facts.distribution_version == "22.04"

    def test_redhat_family(self):
        """Test Amazon Linux maps to the RedHat family."""
        facts = classify_os_release(AMAZON_RELEASE)

        assert facts.os_family == "RedHat"
        assert facts.distribution == "Amazon"

    def test_id_like_fallback(self):
        """Test that unknown derivatives fall back to ID_LIKE."""
        facts = classify_os_release('ID=mycorp\nID_LIKE="rhel centos fedora"\nNAME="MyCorp Linux"\n')

        assert facts.os_family == "RedHat"
        assert facts.distribution == "MyCorp"

    def test_unclassifiable(self):
        """Test that empty output yields no facts."""
        assert classify_os_release("") == Facts()


class TestPlatformFacts:
    """Tests for provider-metadata facts."""

    @pytest.mark.parametrize(
        "image_name,family,distribution,version",
        [
            ("ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-20230516", "Debian", "Ubuntu", "22.04"),
            ("debian-12-amd64-20230711-1438", "Debian", "Debian", "12"),
            ("al2023-ami-2023.1.20230725.0-kernel-6.1-x86_64", "RedHat", "Amazon", "2023"),
            ("amzn2-ami-kernel-5.10-hvm-2.0.20230727.0-x86_64-gp2", "RedHat", "Amazon", "2"),
            ("RHEL-9.2.0_HVM-20230503-x86_64-41-Hourly2-GP2", "RedHat", "RedHat", "9.2"),
        ],
    )
    def test_image_names(self, image_name, family, distribution, version):
        """Test recognising well-known AMI names."""
        facts = facts_from_platform("Linux/UNIX", image_name)

        assert facts.os_family == family
        assert facts.distribution == distribution
        assert facts.distribution_version == version
        assert facts.platform == "Linux/UNIX"

    def test_platform_only(self):
        """Test platform strings that identify the OS on their own."""
        assert facts_from_platform("Windows").os_family == "Windows"
        assert facts_from_platform("Red Hat Enterprise Linux").os_family == "RedHat"

    def test_generic_linux_is_unknown(self):
        """Test that Linux/UNIX alone does not guess a family."""
        facts = facts_from_platform("Linux/UNIX", "my-golden-image-v42")

        assert facts.os_family is None
        assert facts.platform == "Linux/UNIX"


class TestSSHConfig:
    """Tests for SSHConfig."""

    def test_asyncssh_options(self):
        """Test conversion to asyncssh.connect() kwargs."""
        options = SSHConfig(username="ubuntu", client_keys=["~/.ssh/id"], known_hosts=None).to_asyncssh_options("10.0.0.5")

        assert options["host"] == "10.0.0.5"
        assert options["username"] == "ubuntu"
        assert options["client_keys"] == ["~/.ssh/id"]
        assert options["known_hosts"] is None

    def test_default_known_hosts_not_passed(self):
        """Test that the default known_hosts is left to asyncssh."""
        assert "known_hosts" not in SSHConfig().to_asyncssh_options("host")


def _mock_connect(stdout: str):
    conn = MagicMock()
    conn.run = AsyncMock(return_value=MagicMock(stdout=stdout))
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=conn)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context)


class TestFactGatherer:
    """Tests for SSH fact gathering."""

    @pytest.mark.asyncio
    async def test_gather(self):
        """Test gathering and classifying facts from a host."""
        connect = _mock_connect(UBUNTU_RELEASE + "--- arch\nx86_64\n")

        with patch("fleetsync.facts.asyncssh.connect", connect):
            facts = await FactGatherer(SSHConfig(username="ubuntu")).gather("10.0.0.5")

        assert facts.os_family == "Debian"
        assert facts.architecture == "x86_64"
        assert connect.call_args.kwargs["host"] == "10.0.0.5"

    @pytest.mark.asyncio
    async def test_enrich_merges_and_tolerates_failures(self):
        """Test that unreachable hosts keep their provider facts."""
        reachable = make_live("web01", address="10.0.0.5", facts=Facts(platform="Linux/UNIX"))
        unreachable = make_live("web02", address="10.0.0.6", facts=Facts(platform="Linux/UNIX"))
        stopped = make_live("web03", address="10.0.0.7", state=ResourceState.STOPPED)
        no_address = make_live("web04")

        good = _mock_connect(UBUNTU_RELEASE + "--- arch\naarch64\n")

        def connect(**options):
            if options["host"] == "10.0.0.6":
                raise OSError("Connection refused")
            return good(**options)

        with patch("fleetsync.facts.asyncssh.connect", side_effect=connect) as mocked:
            enriched = await FactGatherer().enrich([reachable, unreachable, stopped, no_address])

        assert [r.name for r in enriched] == ["web01", "web02", "web03", "web04"]
        assert enriched[0].facts.os_family == "Debian"
        assert enriched[0].facts.platform == "Linux/UNIX"
        assert enriched[0].facts.architecture == "aarch64"
        assert enriched[1] == unreachable
        assert enriched[2] == stopped
        assert mocked.call_count == 2
