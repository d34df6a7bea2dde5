#!/usr/bin/env python3

"""
PF anchor management for the media server bypass.

The rules live in a private anchor so they can be queried, replaced and
flushed without touching any other rule. A ruleset is always rendered in
full and handed to a single ``pfctl -f`` call; pfctl parses the whole input
before swapping it in, so a bad ruleset leaves the previous rules in place.

Only ``route-to`` (routing) directives are used. Per-user filtering
(``user`` matches) did not enforce on the deployed macOS version; re-check
that on any other OS release before relying on it.
"""

from dataclasses import dataclass, field
from typing import List, Tuple

from .interfaces import PhysicalNetwork
from .logger import log_message
from .utils import VpnGuardError, CommandError, run_command

PRIVATE_RANGES = ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "127.0.0.0/8")
PRIVATE_TABLE = "rfc1918"


class RuleLoadError(VpnGuardError):
    """pfctl refused the ruleset (syntax, privilege) or could not be run."""
    pass


@dataclass(frozen=True)
class RuleSet:
    """Desired anchor contents for one physical network state."""
    network: PhysicalNetwork
    service_port: int = 32400
    private_ranges: Tuple[str, ...] = field(default=PRIVATE_RANGES)

    def lines(self) -> List[str]:
        net = self.network
        return [
            f"table <{PRIVATE_TABLE}> const {{ {', '.join(self.private_ranges)} }}",
            f"pass in quick on {net.interface} proto tcp to port {self.service_port}",
            f"pass out quick route-to ({net.interface} {net.gateway}) from {net.address} to ! <{PRIVATE_TABLE}>",
        ]

    def text(self) -> str:
        return "\n".join(self.lines()) + "\n"

    def signatures(self) -> List[Tuple[str, ...]]:
        """Fragments each rule must show in ``pfctl -sr`` output (pfctl expands rules when printing)."""
        net = self.network
        return [
            ("pass in", "quick", f"on {net.interface}", f"port = {self.service_port}"),
            ("pass out", "quick", f"route-to ({net.interface} {net.gateway})",
             f"from {net.address}", f"to ! <{PRIVATE_TABLE}>"),
        ]

    def table_matches(self, live_entries: List[str]) -> bool:
        """True when the anchor's private-range table holds exactly the desired ranges.

        ``pfctl -sr`` does not print tables, so they are checked separately.
        """
        return set(live_entries) == set(self.private_ranges)

    def matches(self, live_rules: List[str]) -> bool:
        """True when every desired rule is present in the live anchor and nothing else is."""
        if len(live_rules) != len(self.signatures()):
            return False
        remaining = list(live_rules)
        for signature in self.signatures():
            for rule in remaining:
                if all(fragment in rule for fragment in signature):
                    remaining.remove(rule)
                    break
            else:
                return False
        return True


class PfAnchor:
    """Capability wrapper around ``pfctl -a <anchor>``."""

    def __init__(self, anchor: str, sudo: bool = False):
        self.anchor = anchor
        self.sudo = sudo

    def live_rules(self) -> List[str]:
        """Current filter rules in the anchor; empty when absent or unreadable."""
        try:
            result = run_command(["pfctl", "-a", self.anchor, "-sr"], check=False,
                                 capture_output=True, sudo=self.sudo)
        except CommandError as e:
            log_message(1, f"Could not query PF anchor {self.anchor}: {e}")
            return []
        if result.returncode != 0:
            log_message(1, f"pfctl query of {self.anchor} failed: {(result.stderr or '').strip()}")
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def live_table(self) -> List[str]:
        """Entries of the private-range table in the anchor; empty when absent or unreadable."""
        try:
            result = run_command(["pfctl", "-a", self.anchor, "-t", PRIVATE_TABLE, "-T", "show"],
                                 check=False, capture_output=True, sudo=self.sudo)
        except CommandError as e:
            log_message(1, f"Could not query PF table <{PRIVATE_TABLE}> in {self.anchor}: {e}")
            return []
        if result.returncode != 0:
            log_message(5, f"PF table <{PRIVATE_TABLE}> not present in {self.anchor}")
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def load(self, ruleset: RuleSet):
        """Replace the anchor contents with ``ruleset`` in one pfctl call, then make sure PF is on."""
        try:
            run_command(["pfctl", "-a", self.anchor, "-f", "-"], check=True, capture_output=True,
                        sudo=self.sudo, input=ruleset.text())
        except CommandError as e:
            raise RuleLoadError(f"Failed to load PF rules into {self.anchor}: {e.stderr or e}")

        # "pf already enabled" exits non-zero; nothing to do in that case
        try:
            run_command(["pfctl", "-e"], check=False, capture_output=True, sudo=self.sudo)
        except CommandError as e:
            log_message(1, f"Could not enable PF: {e}")

    def flush(self):
        """Remove every rule and table in the anchor."""
        try:
            run_command(["pfctl", "-a", self.anchor, "-F", "all"], check=True, capture_output=True,
                        sudo=self.sudo)
        except CommandError as e:
            raise RuleLoadError(f"Failed to flush PF anchor {self.anchor}: {e.stderr or e}")
        log_message(2, f"Flushed PF anchor {self.anchor}")
