"""Fact discovery for live resources.

Facts come from two places:

- Provider metadata (platform string and image name), which is cheap and
  available for every resource but only identifies well-known images.
- The host itself over SSH (``/etc/os-release`` and ``uname -m``), the
  same source Ansible's fact gathering uses for ``os_family``.

OS family names follow Ansible's (RedHat, Debian, Suse, Archlinux, Alpine,
Gentoo) so existing playbook conditions translate directly.
"""

import logging
import re
import shlex
from dataclasses import dataclass, replace
from typing import Any

import asyncssh

from .executor import BatchExecutor
from .types import Facts, LiveResource, ResourceState

logger = logging.getLogger(__name__)

OS_FAMILY_BY_ID = {
    "RedHat": (
        "rhel", "redhat", "centos", "fedora", "amzn", "amazon", "rocky", "almalinux",
        "ol", "oraclelinux", "scientific", "cloudlinux", "virtuozzo", "eurolinux",
    ),
    "Debian": (
        "debian", "ubuntu", "raspbian", "linuxmint", "pop", "kali", "devuan",
        "neon", "elementary",
    ),
    "Suse": ("sles", "sled", "suse", "opensuse", "opensuse-leap", "opensuse-tumbleweed"),
    "Archlinux": ("arch", "archarm", "manjaro", "endeavouros"),
    "Alpine": ("alpine",),
    "Gentoo": ("gentoo",),
}

ID_TO_FAMILY = {os_id: family for family, ids in OS_FAMILY_BY_ID.items() for os_id in ids}

DISTRIBUTION_NAMES = {
    "rhel": "RedHat",
    "redhat": "RedHat",
    "centos": "CentOS",
    "fedora": "Fedora",
    "amzn": "Amazon",
    "rocky": "Rocky",
    "almalinux": "AlmaLinux",
    "ol": "OracleLinux",
    "debian": "Debian",
    "ubuntu": "Ubuntu",
    "sles": "SLES",
    "opensuse-leap": "openSUSE Leap",
    "opensuse-tumbleweed": "openSUSE Tumbleweed",
    "arch": "Archlinux",
    "alpine": "Alpine",
}

# (image name pattern, distribution, os_family); group 1 is the version
IMAGE_PATTERNS = [
    (re.compile(r"ubuntu.*?(\d{2}\.\d{2})", re.I), "Ubuntu", "Debian"),
    (re.compile(r"^debian-(\d+)", re.I), "Debian", "Debian"),
    (re.compile(r"^al(20\d\d)-ami", re.I), "Amazon", "RedHat"),
    (re.compile(r"^amzn(\d*)-ami", re.I), "Amazon", "RedHat"),
    (re.compile(r"^RHEL-(\d+(?:\.\d+)?)", re.I), "RedHat", "RedHat"),
    (re.compile(r"^Rocky-(\d+)", re.I), "Rocky", "RedHat"),
    (re.compile(r"^CentOS.*?(\d+)", re.I), "CentOS", "RedHat"),
    (re.compile(r"^suse-sles-(\d+)", re.I), "SLES", "Suse"),
    (re.compile(r"^Windows_Server-(\d{4})", re.I), "Windows", "Windows"),
]

FACT_COMMAND = "cat /etc/os-release 2>/dev/null; echo '--- arch'; uname -m"


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``/etc/os-release`` content into a dictionary."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw.strip("\"'")]
        values[key.strip()] = parts[0] if parts else ""
    return values


def classify_os_release(text: str) -> Facts:
    """Derive facts from ``/etc/os-release`` content.

    ``ID`` decides the family; ``ID_LIKE`` is consulted for derivatives not
    listed by name.

    Example:
        >>> classify_os_release('ID=ubuntu\\nVERSION_ID="22.04"\\n').os_family
        'Debian'
    """
    release = parse_os_release(text)
    os_id = release.get("ID", "").lower()
    if not os_id:
        return Facts()

    family = ID_TO_FAMILY.get(os_id)
    if family is None:
        for like in release.get("ID_LIKE", "").lower().split():
            family = ID_TO_FAMILY.get(like)
            if family:
                break

    distribution = DISTRIBUTION_NAMES.get(os_id)
    if distribution is None:
        name = release.get("NAME", os_id)
        distribution = name.split()[0] if name else os_id

    return Facts(
        os_family=family,
        distribution=distribution,
        distribution_version=release.get("VERSION_ID") or None,
    )


def facts_from_platform(platform_details: str | None, image_name: str | None = None) -> Facts:
    """Best-effort facts from provider metadata.

    Args:
        platform_details: Provider platform string (e.g., EC2 PlatformDetails)
        image_name: Name of the image the resource was launched from

    Returns:
        Facts; os_family stays None when the image is not recognised
    """
    platform = platform_details or None
    if image_name:
        for pattern, distribution, family in IMAGE_PATTERNS:
            match = pattern.search(image_name)
            if match:
                return Facts(
                    os_family=family,
                    distribution=distribution,
                    distribution_version=match.group(1) or None,
                    platform=platform,
                )

    if platform:
        lowered = platform.lower()
        if lowered.startswith("windows"):
            return Facts(os_family="Windows", distribution="Windows", platform=platform)
        if "red hat" in lowered:
            return Facts(os_family="RedHat", distribution="RedHat", platform=platform)
        if "suse" in lowered:
            return Facts(os_family="Suse", distribution="SLES", platform=platform)
        if "ubuntu" in lowered:
            return Facts(os_family="Debian", distribution="Ubuntu", platform=platform)

    return Facts(platform=platform)


@dataclass
class SSHConfig:
    """SSH connection settings for fact gathering.

    Attributes:
        username: SSH username (asyncssh default when None)
        client_keys: Private key paths
        known_hosts: Known hosts file; () uses the default, None disables checking
        connect_timeout: Connection timeout in seconds
        port: SSH port
    """

    username: str | None = None
    client_keys: list[str] | None = None
    known_hosts: Any = ()
    connect_timeout: float = 10.0
    port: int = 22

    def to_asyncssh_options(self, hostname: str) -> dict[str, Any]:
        """Convert to asyncssh.connect() kwargs."""
        options: dict[str, Any] = {
            "host": hostname,
            "port": self.port,
            "connect_timeout": self.connect_timeout,
        }
        if self.username:
            options["username"] = self.username
        if self.client_keys:
            options["client_keys"] = self.client_keys
        if self.known_hosts is None:
            options["known_hosts"] = None
        elif self.known_hosts != ():
            options["known_hosts"] = self.known_hosts
        return options


class FactGatherer:
    """Gathers OS facts from running hosts over SSH.

    Hosts that cannot be reached keep whatever facts the provider supplied;
    gathering never fails a pass.

    Example:
        >>> gatherer = FactGatherer(SSHConfig(username="ubuntu", client_keys=["~/.ssh/deploy"]))
        >>> resources = await gatherer.enrich(resources)
    """

    def __init__(self, ssh_config: SSHConfig | None = None, concurrency: int = 10) -> None:
        self.ssh_config = ssh_config or SSHConfig()
        self.executor: BatchExecutor[LiveResource, LiveResource] = BatchExecutor(concurrency)

    async def gather(self, address: str) -> Facts:
        """Gather facts from one host.

        Raises:
            asyncssh.Error, OSError: If the host cannot be reached
        """
        options = self.ssh_config.to_asyncssh_options(address)
        logger.debug(f"Gathering facts from {address}")
        async with asyncssh.connect(**options) as conn:
            result = await conn.run(FACT_COMMAND, check=False)

        output = result.stdout if isinstance(result.stdout, str) else (result.stdout or b"").decode()
        release, _, arch = output.partition("--- arch")
        facts = classify_os_release(release)
        architecture = arch.strip() or None
        return replace(facts, architecture=architecture) if architecture else facts

    async def enrich(self, resources: list[LiveResource]) -> list[LiveResource]:
        """Return resources with SSH-gathered facts merged over provider facts."""
        reachable = [
            r for r in resources if r.address and r.state == ResourceState.RUNNING
        ]
        if not reachable:
            return resources

        async def work(resource: LiveResource) -> LiveResource:
            gathered = await self.gather(resource.address or "")
            return replace(resource, facts=resource.facts.merge(gathered))

        def on_error(resource: LiveResource, exc: Exception) -> LiveResource:
            logger.warning(f"Fact gathering failed for {resource.name} ({resource.address}): {exc}")
            return resource

        enriched = await self.executor.run(
            reachable, key=lambda r: r.resource_id, work=work, on_error=on_error
        )
        return [enriched.get(r.resource_id, r) for r in resources]
