#!/usr/bin/env python3

"""
Network interface discovery.

Reads ``ifconfig`` output into an ``InterfaceSnapshot`` every poll and finds
the default gateway scoped to a physical interface with ``route -n get``.
Nothing here is cached; callers take a new snapshot each cycle.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .logger import log_message
from .utils import run_command, natural_key, CommandError

_HEADER = re.compile(r'^([A-Za-z0-9_.-]+):\s')
_INET = re.compile(r'^\s+inet\s+(?:addr:)?(\d{1,3}(?:\.\d{1,3}){3})\b')
_GATEWAY = re.compile(r'^\s*gateway:\s*(\S+)', re.MULTILINE)


@dataclass
class InterfaceSnapshot:
    """Interface name -> IPv4 addresses, as observed at one instant."""
    addresses: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def parse(cls, ifconfig_output: str) -> "InterfaceSnapshot":
        addresses = {}
        current = None
        for line in ifconfig_output.splitlines():
            header = _HEADER.match(line)
            if header:
                current = header.group(1)
                addresses.setdefault(current, [])
                continue
            if current is None:
                continue
            inet = _INET.match(line)
            if inet:
                addresses[current].append(inet.group(1))
        return cls(addresses)

    def address_of(self, interface: str) -> Optional[str]:
        """First non-loopback IPv4 address of ``interface``."""
        for address in self.addresses.get(interface, []):
            if not address.startswith("127."):
                return address
        return None

    def tunnels(self, prefixes) -> List[Tuple[str, str]]:
        """Tunnel interfaces carrying an address, lowest-numbered first."""
        found = []
        for name in sorted(self.addresses, key=natural_key):
            if not any(name.startswith(prefix) for prefix in prefixes):
                continue
            address = self.address_of(name)
            if address:
                found.append((name, address))
        return found

    def chosen_tunnel(self, prefixes) -> Optional[Tuple[str, str]]:
        tunnels = self.tunnels(prefixes)
        return tunnels[0] if tunnels else None


@dataclass(frozen=True)
class PhysicalNetwork:
    """The non-tunnel path: interface, its address, and its default gateway."""
    interface: str
    address: str
    gateway: str

    def __str__(self):
        return f"{self.interface}:{self.address}:{self.gateway}"


class InterfaceReader:
    """Capability wrapper around ``ifconfig`` and ``route``."""

    def snapshot(self) -> InterfaceSnapshot:
        try:
            result = run_command(["ifconfig"], check=True, capture_output=True)
        except CommandError as e:
            log_message(1, f"Could not list network interfaces: {e}")
            return InterfaceSnapshot()
        return InterfaceSnapshot.parse(result.stdout)

    def default_gateway(self, interface: str) -> Optional[str]:
        try:
            result = run_command(["route", "-n", "get", "-ifscope", interface, "default"],
                                 check=False, capture_output=True)
        except CommandError as e:
            log_message(5, f"Gateway lookup for {interface} failed: {e}")
            return None
        if result.returncode != 0:
            return None
        match = _GATEWAY.search(result.stdout)
        return match.group(1) if match else None

    def physical_network(self, candidates) -> Optional[PhysicalNetwork]:
        """First candidate interface with both an address and a scoped default gateway."""
        snapshot = self.snapshot()
        for interface in candidates:
            address = snapshot.address_of(interface)
            if not address:
                continue
            gateway = self.default_gateway(interface)
            if gateway:
                return PhysicalNetwork(interface, address, gateway)
        return None
