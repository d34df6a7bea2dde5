#!/usr/bin/env python3

"""
Link Monitor

Watches the VPN tunnel interfaces and keeps the torrent client confined to
the tunnel:

- VPN UP:         bind-address := tunnel address (read back), launch or confirm running
- VPN IP CHANGE:  bind-address := new address, full stop/start
- VPN DROP:       kill the client immediately, bind-address := loopback
- still down:     nothing, with a reduced-frequency log line

A stopped client is verified with pgrep, never assumed.
"""

import enum
from dataclasses import dataclass
from typing import Optional, Tuple

from .logger import log_message, log_event, FATAL
from .notify import NullNotifier
from .transmission import ProcessControlError, BindAddressError


class LinkStatus(enum.Enum):
    DOWN = "down"
    UP = "up"
    CHANGED = "changed"


@dataclass(frozen=True)
class LinkState:
    status: LinkStatus
    address: Optional[str] = None
    previous_address: Optional[str] = None
    interface: Optional[str] = None

    @classmethod
    def down(cls):
        return cls(LinkStatus.DOWN)

    @classmethod
    def up(cls, address, interface=None):
        return cls(LinkStatus.UP, address, interface=interface)

    @classmethod
    def changed(cls, old, new, interface=None):
        return cls(LinkStatus.CHANGED, new, previous_address=old, interface=interface)

    @property
    def is_down(self):
        return self.status is LinkStatus.DOWN


def next_link_state(previous: Optional[LinkState], tunnel: Optional[Tuple[str, str]]) -> LinkState:
    """Transition function. ``previous`` is None before the first poll."""
    if tunnel is None:
        return LinkState.down()
    interface, address = tunnel
    if previous is None or previous.is_down:
        return LinkState.up(address, interface)
    if previous.address != address:
        return LinkState.changed(previous.address, address, interface)
    return LinkState.up(address, interface)


class LinkMonitor:
    """One poll = snapshot interfaces, compute the transition, act on it."""

    def __init__(self, interfaces, controller, tunnel_prefixes=("utun",),
                 loopback_address="127.0.0.1", down_log_every=60, notifier=None):
        self.interfaces = interfaces
        self.controller = controller
        self.tunnel_prefixes = tuple(tunnel_prefixes)
        self.loopback_address = loopback_address
        self.down_log_every = down_log_every
        self.notifier = notifier or NullNotifier()

        self.state: Optional[LinkState] = None
        self.kill_pending = False
        self.launch_pending = False
        self.restart_pending = False
        self.down_polls = 0

    @classmethod
    def from_config(cls, config, interfaces, controller, notifier=None):
        return cls(
            interfaces, controller,
            tunnel_prefixes=config.network.tunnel_prefixes,
            loopback_address=config.network.loopback_address,
            down_log_every=config.services.down_log_every,
            notifier=notifier,
        )

    def poll(self) -> LinkState:
        snapshot = self.interfaces.snapshot()
        tunnels = snapshot.tunnels(self.tunnel_prefixes)
        if len(tunnels) > 1:
            log_message(4, f"Multiple tunnel interfaces up: {tunnels}; using {tunnels[0][0]}")
        tunnel = tunnels[0] if tunnels else None

        previous = self.state
        new_state = next_link_state(previous, tunnel)

        if new_state.is_down:
            if previous is None or not previous.is_down:
                self._handle_vpn_down(startup=previous is None)
            else:
                self._handle_still_down()
        elif new_state.status is LinkStatus.CHANGED:
            self._handle_address_change(new_state)
        elif previous is None or previous.is_down:
            self._handle_vpn_up(new_state, startup=previous is None)
        elif self.launch_pending or self.restart_pending:
            log_message(3, "Retrying pending launch")
            self._bring_up(new_state.address, force_restart=self.restart_pending)

        self.state = new_state
        return new_state

    # --- Transition handlers ---

    def _handle_vpn_down(self, startup=False):
        self.down_polls = 0
        if startup:
            log_message(1, "No VPN connection detected at startup")
        else:
            log_message(0, "VPN DOWN detected!")
            self.notifier.send("VPN Monitor", "VPN connection lost: killing Transmission")
        self._kill()

    def _handle_still_down(self):
        self.down_polls += 1
        if self.kill_pending:
            log_message(1, "Retrying kill of client that survived the previous attempt")
            self._kill()
            return
        if self.down_polls % self.down_log_every == 0:
            log_event(3, "vpn_still_down", "noop", polls=self.down_polls)

    def _handle_vpn_up(self, state: LinkState, startup=False):
        if startup:
            log_message(0, f"Initial VPN IP: {state.address} ({state.interface})")
        else:
            log_message(0, f"VPN RESTORED with IP {state.address} ({state.interface})")
            self.notifier.send("VPN Monitor", f"VPN restored ({state.address}): launching Transmission")
        outcome = self._bring_up(state.address, force_restart=False)
        log_event(0 if outcome == "running" else 1, "vpn_up", outcome,
                  address=state.address, interface=state.interface)

    def _handle_address_change(self, state: LinkState):
        log_message(0, f"VPN IP changed: {state.previous_address} -> {state.address}")
        self.notifier.send("VPN Monitor", f"VPN IP changed to {state.address}")
        outcome = self._bring_up(state.address, force_restart=True)
        log_event(0 if outcome == "running" else 1, "vpn_ip_changed", outcome,
                  old=state.previous_address, new=state.address)

    # --- Actions ---

    def _kill(self):
        try:
            killed = self.controller.terminate()
        except ProcessControlError as e:
            self.kill_pending = True
            log_message(FATAL, f"Cannot stop Transmission while VPN is down: {e}")
            log_event(FATAL, "vpn_down", "kill_failed")
            self.notifier.send("VPN Monitor", "CRITICAL: Transmission could not be stopped with VPN down")
            return
        self.kill_pending = False
        self.launch_pending = False
        self.restart_pending = False
        log_event(0, "vpn_down", "killed" if killed else "already_stopped")
        try:
            self.controller.set_bind_address(self.loopback_address)
        except BindAddressError as e:
            log_message(1, f"Could not park bind-address on {self.loopback_address}: {e}")

    def _apply_bind_address(self, address) -> bool:
        """Write and confirm the bind address; a running client is stopped if the write does not stick."""
        try:
            if self.controller.set_bind_address(address):
                return True
            if self.controller.lookup() is not None:
                log_message(1, "Bind-address did not stick while client is running; stopping it and rewriting")
                self.controller.terminate()
            if self.controller.set_bind_address(address):
                return True
            log_message(1, f"Bind-address still not {address} after rewrite")
        except BindAddressError as e:
            log_message(1, f"Bind-address update failed: {e}")
        except ProcessControlError as e:
            log_message(FATAL, f"Cannot stop client to apply bind-address: {e}")
            self.notifier.send("VPN Monitor", "CRITICAL: Transmission could not be stopped to apply bind-address")
        return False

    def _bring_up(self, address, force_restart) -> str:
        """Bind-address first, then launch/restart/confirm. Returns an outcome tag."""
        try:
            previous_bind = self.controller.read_bind_address()
        except BindAddressError:
            previous_bind = None

        if not self._apply_bind_address(address):
            self.launch_pending = True
            return "bind_address_unconfirmed"

        handle = self.controller.lookup()
        if handle is not None and (force_restart or previous_bind != address):
            log_message(3, f"Restarting client (PID {handle.pid}) onto {address}")
            try:
                self.controller.terminate()
            except ProcessControlError as e:
                self.restart_pending = True
                log_message(FATAL, f"Cannot stop client for restart: {e}")
                self.notifier.send("VPN Monitor", "CRITICAL: Transmission could not be restarted")
                return "restart_kill_failed"
            handle = None
        self.restart_pending = False

        if handle is not None:
            log_message(3, f"Transmission already running (PID {handle.pid})")
            self.launch_pending = False
            return "running"

        try:
            self.controller.launch()
        except ProcessControlError as e:
            self.launch_pending = True
            log_message(1, f"{e}; will retry next poll")
            return "launch_failed"
        self.launch_pending = False
        return "running"
