"""Expansion of the configured host and log lists into query targets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Protocol

import structlog

from ..config import split_names
from ..models import Target
from ..sources.transport import TransportError, local_hostname

logger = structlog.get_logger(__name__)


class LogLister(Protocol):
    def list_logs(self, host: str) -> list[str]: ...


@dataclass
class TargetResolution:
    targets: list[Target] = field(default_factory=list)
    failed_hosts: dict[str, str] = field(default_factory=dict)


def dedupe(names: Iterable[str]) -> list[str]:
    """Drop repeated names, keeping the first occurrence."""
    seen: set[str] = set()
    out: list[str] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            out.append(name)
    return out


class TargetResolver:
    """Resolves targets fresh on every call; log lists are never cached across cycles."""

    def __init__(self, lister: LogLister, local_host: Callable[[], str] | None = None):
        self.lister = lister
        self.local_host = local_host or local_hostname

    def hosts(self, hosts_config: Any) -> list[str]:
        hosts = dedupe(split_names(hosts_config))
        return hosts or [self.local_host()]

    def logs_for_host(self, host: str, logs_config: Any) -> list[str]:
        """Sorted log names to query on a host. Raises TransportError when enumeration fails."""
        logs = dedupe(split_names(logs_config))
        if not logs:
            logs = self.lister.list_logs(host)
        return sorted(logs)

    def resolve(self, hosts_config: Any, logs_config: Any) -> TargetResolution:
        """Ordered targets, by host in configuration order and then by log name."""
        resolution = TargetResolution()
        for host in self.hosts(hosts_config):
            try:
                logs = self.logs_for_host(host, logs_config)
            except TransportError as e:
                logger.error("Error connecting to host to retrieve log names", host=host, error=str(e))
                resolution.failed_hosts[host] = str(e)
                continue
            resolution.targets.extend(Target(host, name) for name in logs)
        return resolution
