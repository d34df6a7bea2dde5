#!/usr/bin/env python3

"""
Transmission Process and Bind-Address Management

Narrow capability layer the Link Monitor drives:
- bind-address preference store (macOS ``defaults`` domain for Transmission.app,
  or ``settings.json`` for transmission-daemon), with read-back
- process lookup through ``pgrep`` (never a cached flag)
- launch, graceful quit, force kill, and verification of each
"""

import json
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .logger import log_message
from .utils import (
    VpnGuardError, CommandError, run_command, find_pids, signal_processes,
    atomic_write_text
)

BIND_ADDRESS_KEY = "BindAddressIPv4"
SETTINGS_BIND_ADDRESS_KEY = "bind-address-ipv4"


class ProcessControlError(VpnGuardError):
    """The application could not be launched or terminated."""
    pass


class BindAddressError(VpnGuardError):
    """The bind-address preference could not be written or read back."""
    pass


@dataclass(frozen=True)
class ManagedProcessHandle:
    """A supervised process observed alive by a lookup."""
    pid: int


class DefaultsBindAddressStore:
    """Bind address kept in a macOS preferences domain (Transmission.app)."""

    def __init__(self, domain: str):
        self.domain = domain

    def read(self) -> Optional[str]:
        try:
            result = run_command(["defaults", "read", self.domain, BIND_ADDRESS_KEY],
                                 check=False, capture_output=True)
        except CommandError as e:
            raise BindAddressError(f"Cannot read {self.domain} {BIND_ADDRESS_KEY}: {e}")
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def write(self, address: str):
        try:
            run_command(["defaults", "write", self.domain, BIND_ADDRESS_KEY, "-string", address],
                        check=True, capture_output=True)
        except CommandError as e:
            raise BindAddressError(f"Cannot write {self.domain} {BIND_ADDRESS_KEY}: {e}")


class SettingsJsonBindAddressStore:
    """Bind address kept in transmission-daemon's settings.json.

    Other keys are preserved; the file is replaced atomically.
    """

    def __init__(self, settings_file: Path):
        self.settings_file = Path(settings_file)

    def _load(self) -> dict:
        if not self.settings_file.exists():
            return {}
        try:
            with open(self.settings_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise BindAddressError(f"Cannot read {self.settings_file}: {e}")
        if not isinstance(data, dict):
            raise BindAddressError(f"{self.settings_file} does not contain a JSON object")
        return data

    def read(self) -> Optional[str]:
        return self._load().get(SETTINGS_BIND_ADDRESS_KEY)

    def write(self, address: str):
        data = self._load()
        data[SETTINGS_BIND_ADDRESS_KEY] = address
        try:
            atomic_write_text(self.settings_file, json.dumps(data, indent=4, sort_keys=True) + "\n", mode=0o600)
        except OSError as e:
            raise BindAddressError(f"Cannot write {self.settings_file}: {e}")


class TransmissionController:
    """
    Lifecycle control of the torrent client.

    Every "is it running" decision is a fresh ``pgrep -x`` lookup, so a
    process that died behind our back is never mistaken for a live one.
    """

    GRACE_POLL = 1  # seconds between liveness checks while quitting

    def __init__(self, bind_store, process_name="Transmission", backend="app",
                 app_name="Transmission", daemon_path=None, daemon_config_dir=None,
                 quit_timeout=2, force_settle=1, launch_settle=3, sleep=time.sleep):
        self.bind_store = bind_store
        self.process_name = process_name
        self.backend = backend
        self.app_name = app_name
        self.daemon_path = daemon_path
        self.daemon_config_dir = daemon_config_dir
        self.quit_timeout = quit_timeout
        self.force_settle = force_settle
        self.launch_settle = launch_settle
        self.sleep = sleep

    @classmethod
    def from_config(cls, config):
        services = config.services
        if services.transmission_backend == "daemon":
            settings_file = config.paths.transmission_settings_file
            if settings_file is None:
                raise ValueError("paths.transmission_settings_file is required for the daemon backend")
            bind_store = SettingsJsonBindAddressStore(settings_file)
            config_dir = settings_file.parent
        else:
            bind_store = DefaultsBindAddressStore(services.transmission_defaults_domain)
            config_dir = None
        return cls(
            bind_store,
            process_name=services.transmission_process_name,
            backend=services.transmission_backend,
            app_name=services.transmission_app_name,
            daemon_path=services.transmission_daemon_path,
            daemon_config_dir=config_dir,
            quit_timeout=services.quit_timeout,
            force_settle=services.force_settle,
            launch_settle=services.launch_settle,
        )

    # --- Bind address ---

    def read_bind_address(self) -> Optional[str]:
        return self.bind_store.read()

    def set_bind_address(self, address: str) -> bool:
        """Write the bind address and read it back; True only if the read-back matches."""
        self.bind_store.write(address)
        applied = self.bind_store.read()
        if applied != address:
            log_message(1, f"Bind-address read-back mismatch: wrote {address}, read {applied}")
            return False
        log_message(2, f"Bind-address set to {address}")
        return True

    # --- Process lifecycle ---

    def lookup(self) -> Optional[ManagedProcessHandle]:
        pids = find_pids(self.process_name)
        if not pids:
            return None
        if len(pids) > 1:
            log_message(1, f"Multiple {self.process_name} processes found: {pids}")
        return ManagedProcessHandle(min(pids))

    def is_running(self) -> bool:
        return self.lookup() is not None

    def _launch_command(self):
        if self.backend == "daemon":
            cmd = [self.daemon_path]
            if self.daemon_config_dir:
                cmd.extend(["-g", str(self.daemon_config_dir)])
            return cmd
        return ["open", "-a", self.app_name]

    def launch(self) -> ManagedProcessHandle:
        """Launch the application and confirm a live process; one retry."""
        for attempt in (1, 2):
            log_message(3, f"Launching {self.process_name} (attempt {attempt})...")
            try:
                run_command(self._launch_command(), check=True, capture_output=True)
            except CommandError as e:
                log_message(1, f"Launch command failed: {e}")
            self.sleep(self.launch_settle)
            handle = self.lookup()
            if handle:
                log_message(2, f"{self.process_name} launched (PID {handle.pid})")
                return handle
            log_message(1, f"{self.process_name} did not start")
        raise ProcessControlError(f"{self.process_name} failed to launch")

    def _graceful_quit(self, handle: ManagedProcessHandle):
        if self.backend == "daemon":
            signal_processes(find_pids(self.process_name), signal.SIGTERM)
            return
        try:
            run_command(["osascript", "-e", f'quit app "{self.app_name}"'], check=False, capture_output=True)
        except CommandError as e:
            log_message(1, f"Graceful quit request failed: {e}")

    def _force_kill(self):
        if self.backend == "daemon":
            signal_processes(find_pids(self.process_name), signal.SIGKILL)
            return
        try:
            run_command(["killall", "-9", self.process_name], check=False, capture_output=True)
        except CommandError as e:
            log_message(1, f"Force kill failed: {e}")

    def terminate(self) -> bool:
        """Stop the application and verify it is gone.

        Returns False when it was not running. Raises ProcessControlError if a
        process is still alive after the force kill.
        """
        handle = self.lookup()
        if handle is None:
            log_message(3, f"{self.process_name} is not running")
            return False

        log_message(3, f"Killing {self.process_name} (PID {handle.pid})...")
        self._graceful_quit(handle)

        waited = 0
        while self.is_running() and waited < self.quit_timeout:
            self.sleep(self.GRACE_POLL)
            waited += self.GRACE_POLL

        if self.is_running():
            log_message(1, f"Graceful quit failed after {self.quit_timeout}s, force-killing")
            self._force_kill()
            self.sleep(self.force_settle)

        survivor = self.lookup()
        if survivor is not None:
            raise ProcessControlError(f"{self.process_name} is STILL running after force-kill (PID {survivor.pid})")

        log_message(2, f"{self.process_name} killed")
        return True
