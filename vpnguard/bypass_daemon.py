#!/usr/bin/env python3

"""
Plex VPN Bypass Daemon

Every cycle:
  1. ENSURE PF RULES: detect the physical interface/address/gateway, compare
     the anchor's live rules with the ruleset for that network, and reload
     only if they differ.
  2. CHECK PUBLIC IP: ask the echo service over a connection bound to the
     physical address.
  3. PROPAGATE: if the public IP changed, update Plex's customConnections
     exactly once.

Runs as root (pfctl). Rules stay in the anchor when the daemon stops.
"""

from typing import Optional

from .interfaces import PhysicalNetwork
from .logger import log_message, log_event, FATAL
from .notify import NullNotifier
from .pf import RuleSet, RuleLoadError, PRIVATE_TABLE
from .plex import PlexClient, PlexApiError, ProbeError


class BypassRouteDaemon:
    """Keeps the bypass ruleset loaded and Plex's advertised address current."""

    def __init__(self, interfaces, anchor, probe, plex, physical_candidates=("en0", "en1", "en2"),
                 service_port=32400, notifier=None):
        self.interfaces = interfaces
        self.anchor = anchor
        self.probe = probe
        self.plex = plex
        self.physical_candidates = tuple(physical_candidates)
        self.service_port = service_port
        self.notifier = notifier or NullNotifier()

        self.last_network: Optional[PhysicalNetwork] = None
        self.last_public_address: Optional[str] = None

    @classmethod
    def from_config(cls, config, interfaces, anchor, probe, plex, notifier=None):
        return cls(
            interfaces, anchor, probe, plex,
            physical_candidates=config.network.physical_interfaces,
            service_port=config.services.plex_port,
            notifier=notifier,
        )

    def poll(self) -> Optional[str]:
        """One cycle; returns the observed public address, or None if the cycle stopped early."""
        network = self.interfaces.physical_network(self.physical_candidates)
        if network is None:
            log_message(1, "WARNING: Physical network not detected; skipping this cycle")
            return None

        if not self.ensure_rules(network):
            return None

        address = self.check_public_address(network)
        if address is None:
            return None

        self.propagate(address)
        return address

    def ensure_rules(self, network: PhysicalNetwork) -> bool:
        """Make the anchor hold the ruleset for ``network``; True once it is confirmed live."""
        desired = RuleSet(network, self.service_port)
        live = self.anchor.live_rules()
        rules_current = desired.matches(live)

        if rules_current and desired.table_matches(self.anchor.live_table()):
            if self.last_network != network:
                log_message(3, f"PF rules already current for {network}; reload skipped")
            self.last_network = network
            return True

        if not live:
            log_message(3, "PF anchor is empty; rules need loading")
        elif rules_current:
            log_message(1, f"PF table <{PRIVATE_TABLE}> missing or altered; reloading")
        elif self.last_network is not None and self.last_network != network:
            log_message(0, f"Network config changed ({self.last_network} -> {network})")
        else:
            log_message(3, "PF anchor does not match the desired ruleset; reloading")

        log_message(3, f"Loading PF rules into anchor {self.anchor.anchor}:")
        for line in desired.lines():
            log_message(3, f"  {line}")

        try:
            self.anchor.load(desired)
        except RuleLoadError as e:
            log_message(FATAL, f"{e}; Plex remote access is NOT bypassing the VPN")
            log_event(FATAL, "pf_reload", "failed", network=network)
            self.notifier.send("Plex VPN Bypass", "CRITICAL: PF rules could not be loaded")
            return False

        if not (desired.matches(self.anchor.live_rules()) and desired.table_matches(self.anchor.live_table())):
            log_message(FATAL, f"PF rules not visible in {self.anchor.anchor} after load")
            log_event(FATAL, "pf_reload", "unconfirmed", network=network)
            self.notifier.send("Plex VPN Bypass", "CRITICAL: PF rules did not take effect")
            return False

        log_message(2, "PF rules loaded successfully")
        log_event(0, "pf_reload", "loaded", network=network)
        self.last_network = network
        return True

    def check_public_address(self, network: PhysicalNetwork) -> Optional[str]:
        try:
            return self.probe.probe(network.address)
        except ProbeError as e:
            log_message(1, f"WARNING: {e} (keeping last known: {self.last_public_address or '<unknown>'})")
            return None

    def propagate(self, address: str) -> bool:
        """Update Plex when ``address`` differs from the last observed one; True if Plex was written."""
        if address == self.last_public_address:
            return False

        previous = self.last_public_address
        url = PlexClient.connection_url(address, self.service_port)
        try:
            if previous is None:
                log_message(0, f"Initial public IP: {address}")
                if self.plex.get_custom_connections() == url:
                    log_message(3, f"Plex customConnections already {url}")
                    self.last_public_address = address
                    return False
            else:
                log_message(0, f"Public IP changed: {previous} -> {address}")
                self.notifier.send("Plex VPN Bypass", f"Public IP changed to {address}")
            self.plex.set_custom_connections(url)
        except PlexApiError as e:
            log_message(1, f"WARNING: Plex update failed ({e}); will retry next cycle")
            log_event(1, "public_ip_changed", "plex_update_failed", address=address)
            return False

        self.last_public_address = address
        log_event(0, "public_ip_changed", "plex_updated", old=previous or "<unknown>", new=address)
        return True
