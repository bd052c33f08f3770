"""
Source address filtering for the authorization webhook.
"""

import ipaddress
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Union

from shared.logging import get_logger


IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@dataclass(frozen=True)
class AllowedSourceSet:
    """Explicit allow-list plus one network rule, fixed at startup.

    A rule in ``network/prefix`` notation is matched by CIDR containment;
    a bare address must match exactly. An empty set permits every caller.
    """

    allowed_ips: FrozenSet[str] = frozenset()
    network_rule: Optional[str] = None
    network: Optional[IPNetwork] = None

    @classmethod
    def build(cls, allowed_ips: Iterable[str] = (), network_rule: Optional[str] = None) -> "AllowedSourceSet":
        """Normalize configuration values; raises ValueError on a malformed rule."""
        ips = frozenset(ip.strip() for ip in allowed_ips if ip and ip.strip())
        rule = network_rule.strip() if network_rule and network_rule.strip() else None
        network = None
        if rule is not None:
            if "/" in rule:
                network = ipaddress.ip_network(rule, strict=False)
            else:
                ipaddress.ip_address(rule)
        return cls(allowed_ips=ips, network_rule=rule, network=network)

    @property
    def permits_all(self) -> bool:
        return not self.allowed_ips and self.network_rule is None


class IPAuthorizationFilter:
    """Decides whether a caller may invoke the authorization webhook."""

    def __init__(self, sources: AllowedSourceSet):
        self.sources = sources
        self.logger = get_logger("gqlcache.ip_filter")
        if sources.permits_all:
            self.logger.warning("No allowed sources configured, webhook accepts every caller")

    def is_allowed(self, source_ip: Optional[str]) -> bool:
        if self.sources.permits_all:
            return True
        if not source_ip:
            return False

        candidate = source_ip.strip()
        if candidate in self.sources.allowed_ips:
            return True

        if self.sources.network_rule is None:
            return False
        if self.sources.network is None:
            return candidate == self.sources.network_rule
        return self._in_network(candidate)

    def _in_network(self, candidate: str) -> bool:
        try:
            address = ipaddress.ip_address(candidate)
        except ValueError:
            self.logger.debug("Unparseable source address", source_ip=candidate)
            return False
        # Mixed address families never match.
        return address.version == self.sources.network.version and address in self.sources.network
