"""In-memory stand-ins for the capabilities the monitors drive."""

import copy

from vpnguard.interfaces import InterfaceSnapshot
from vpnguard.pf import RuleLoadError, PRIVATE_RANGES, PRIVATE_TABLE
from vpnguard.pia.piactl import RestoreError
from vpnguard.pia.settings import SettingsError, extract_monitored_fields
from vpnguard.plex import PlexApiError, PlexClient, ProbeError
from vpnguard.transmission import ManagedProcessHandle, ProcessControlError


class FakeInterfaces:
    def __init__(self, addresses=None, physical=None):
        self.addresses = dict(addresses or {})
        self.physical = physical
        self.physical_lookups = 0

    def snapshot(self):
        return InterfaceSnapshot({name: list(addrs) for name, addrs in self.addresses.items()})

    def physical_network(self, candidates):
        self.physical_lookups += 1
        return self.physical


class FakeController:
    """Torrent client whose process table and preference store live in memory."""

    def __init__(self, running=False, bind_address=None):
        self.running = running
        self.bind_address = bind_address
        self.pid = 100 if running else None
        self.next_pid = 100
        self.terminate_fails = False
        self.launch_fails = False
        self.bind_sticks = True
        self.calls = []
        self.bound_at_launch = []

    def read_bind_address(self):
        return self.bind_address

    def set_bind_address(self, address):
        self.calls.append(("set_bind", address))
        if self.bind_sticks:
            self.bind_address = address
        return self.bind_address == address

    def lookup(self):
        return ManagedProcessHandle(self.pid) if self.running else None

    def is_running(self):
        return self.running

    def terminate(self):
        self.calls.append(("terminate",))
        if not self.running:
            return False
        if self.terminate_fails:
            raise ProcessControlError("Transmission is STILL running after force-kill")
        self.running = False
        self.pid = None
        return True

    def launch(self):
        self.calls.append(("launch",))
        if self.launch_fails:
            raise ProcessControlError("Transmission failed to launch")
        self.running = True
        self.next_pid += 1
        self.pid = self.next_pid
        self.bound_at_launch.append(self.bind_address)
        return ManagedProcessHandle(self.pid)

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


class FakeSettings:
    """Callable used in place of read_settings_file."""

    def __init__(self, fields):
        self.fields = copy.deepcopy(fields)
        self.error = None
        self.reads = 0

    def __call__(self, path):
        self.reads += 1
        if self.error:
            raise SettingsError(self.error)
        return extract_monitored_fields(copy.deepcopy(self.fields))


class FakePiaCtl:
    def __init__(self, settings, fixes=True, apply_error=None):
        self.settings = settings
        self.fixes = fixes
        self.apply_error = apply_error
        self.applied = []
        self.reconnects = 0
        self._pending = None

    def available(self):
        return True

    def apply_settings(self, fields):
        self.applied.append(copy.deepcopy(fields))
        if self.apply_error:
            raise RestoreError(self.apply_error)
        self._pending = copy.deepcopy(fields)

    def reconnect(self):
        self.reconnects += 1
        if self.fixes and self._pending is not None:
            self.settings.fields.update(self._pending)
        self._pending = None


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def pfctl_listing(ruleset):
    """Rules as ``pfctl -sr`` prints them back (expanded, with state flags)."""
    net = ruleset.network
    return [
        f"pass in quick on {net.interface} proto tcp from any to any port = {ruleset.service_port} flags S/SA keep state",
        f"pass out quick route-to ({net.interface} {net.gateway}) inet from {net.address} "
        f"to ! <{PRIVATE_TABLE}> flags S/SA keep state",
    ]


class FakeAnchor:
    def __init__(self, live=None, table=None, anchor="com.apple/100.tilsit.vpn-bypass"):
        self.anchor = anchor
        self.live = list(live or [])
        if table is None:
            table = PRIVATE_RANGES if self.live else []
        self.table = list(table)
        self.loads = []
        self.load_error = None

    def live_rules(self):
        return list(self.live)

    def live_table(self):
        return list(self.table)

    def load(self, ruleset):
        self.loads.append(ruleset)
        if self.load_error:
            raise RuleLoadError(self.load_error)
        self.live = pfctl_listing(ruleset)
        self.table = list(ruleset.private_ranges)

    def flush(self):
        self.live = []
        self.table = []


class FakeProbe:
    def __init__(self, address=None):
        self.address = address
        self.error = None
        self.bound_to = []

    def probe(self, bind_address):
        self.bound_to.append(bind_address)
        if self.error:
            raise ProbeError(self.error)
        return self.address


class FakePlex:
    def __init__(self, current=None):
        self.current = current
        self.gets = 0
        self.puts = []
        self.fail = False

    def get_custom_connections(self):
        self.gets += 1
        if self.fail:
            raise PlexApiError("Plex API returned HTTP 503", status_code=503)
        return self.current

    def set_custom_connections(self, url):
        self.puts.append(url)
        if self.fail:
            raise PlexApiError("Plex API returned HTTP 503", status_code=503)
        self.current = url

    @staticmethod
    def connection_url(address, port=32400):
        return PlexClient.connection_url(address, port)
