#!/usr/bin/env python3

"""
PIA Split Tunnel Configuration Watchdog

PIA periodically forgets its split tunnel rules. Every cycle this module:
- READ:    the monitored fields of PIA's settings.json
- COMPARE: against the saved reference (read fresh from disk)
- FIX:     piactl -u applysettings + disconnect/connect cycle
- VERIFY:  re-read settings and confirm they match again

A pause marker suspends FIX/VERIFY while an operator edits PIA on purpose;
``save_reference`` captures the new settings and removes the marker in one step.
"""

import time
from pathlib import Path
from typing import Optional

from .logger import log_message, log_event
from .notify import NullNotifier
from .polling import BackoffState
from .pia import (
    SettingsError, RestoreError, DriftRecord, ReferenceStore, PauseMarker, PiaCtl,
    read_settings_file, compare
)
from .pia.settings import format_fields


class ConfigDriftWatchdog:
    """Detects and repairs drift of PIA's split tunnel settings."""

    def __init__(self, settings_file: Path, reference: ReferenceStore, pause: PauseMarker,
                 piactl: PiaCtl, backoff: Optional[BackoffState] = None, notifier=None,
                 clock=time.monotonic, read_settings=read_settings_file):
        self.settings_file = Path(settings_file)
        self.reference = reference
        self.pause = pause
        self.piactl = piactl
        self.backoff = backoff or BackoffState()
        self.notifier = notifier or NullNotifier()
        self.clock = clock
        self.read_settings = read_settings
        self.last_record: Optional[DriftRecord] = None

    @classmethod
    def from_config(cls, config, notifier=None):
        paths, services = config.paths, config.services
        return cls(
            paths.pia_settings_file,
            ReferenceStore(paths.reference_file),
            PauseMarker(paths.pause_file),
            PiaCtl(paths.piactl_path, services.reconnect_delay, services.reconnect_settle),
            BackoffState(max_failures=services.max_restore_failures, cooldown=services.restore_backoff),
            notifier=notifier,
        )

    def poll(self) -> Optional[DriftRecord]:
        """One watchdog cycle; returns the drift record, or None if it could not be computed."""
        try:
            current = self.read_settings(self.settings_file)
        except SettingsError as e:
            log_message(1, f"WARNING: {e} (PIA may not be installed or running); skipping check")
            return None

        try:
            reference = self.reference.load()
        except SettingsError as e:
            log_message(1, f"{e}; cannot check for drift")
            return None

        record = compare(current, reference)
        previous, self.last_record = self.last_record, record

        if record.matches:
            if previous is not None and not previous.matches:
                log_event(0, "drift", "resolved")
            if self.backoff.failures:
                log_message(3, f"Config matches reference again after {self.backoff.failures} failed fix attempt(s)")
            self.backoff.record_success()
            return record

        drift_detail = {name: current[name] for name in record.drifted_fields}

        if self.pause.is_set():
            log_message(3, f"PAUSED: drift detected but auto-restore disabled ({self.pause.path} exists)")
            for line in format_fields(drift_detail).splitlines():
                log_message(3, f"  {line}")
            log_message(3, "  Run with --save-reference to save current config and resume monitoring")
            log_event(3, "drift", "paused", fields=",".join(record.drifted_fields))
            return record

        now = self.clock()
        if not self.backoff.can_attempt(now):
            log_message(1, f"Drift persists ({record}); auto-restore backing off for another {int(self.backoff.remaining(now))}s")
            log_event(1, "drift", "backoff", fields=",".join(record.drifted_fields))
            return record

        log_message(0, "DRIFT DETECTED: PIA split tunnel config does not match reference")
        log_message(3, "Current config:")
        for line in format_fields(current).splitlines():
            log_message(3, f"  {line}")
        self.notifier.send("PIA Config Drift", "Split tunnel config changed: attempting auto-restore")

        if self._restore(reference):
            log_message(2, "Auto-restore SUCCEEDED")
            log_event(0, "drift", "restored", fields=",".join(record.drifted_fields))
            self.notifier.send("PIA Config Restored", "Split tunnel configuration restored from reference")
            self.backoff.record_success()
            self.last_record = DriftRecord()
            return self.last_record

        attempt = self.backoff.failures + 1
        log_message(1, f"Fix attempt {attempt}/{self.backoff.max_failures} failed")
        log_event(1, "drift", "restore_failed", attempt=attempt)
        if self.backoff.record_failure(self.clock()):
            minutes = int(self.backoff.cooldown // 60)
            log_message(1, f"Max failures reached: backing off for {minutes} minutes")
            self.notifier.send("PIA Monitor", f"Auto-restore failed {self.backoff.max_failures} times: backing off {minutes} min")
        return record

    def _restore(self, reference) -> bool:
        """Apply, reconnect, re-read; True only when the re-read matches the reference."""
        try:
            self.piactl.apply_settings(reference)
        except RestoreError as e:
            log_message(1, f"ERROR: {e}")
            return False

        self.piactl.reconnect()

        try:
            current = self.read_settings(self.settings_file)
        except SettingsError as e:
            log_message(1, f"Failed to read settings after fix attempt: {e}")
            return False

        verification = compare(current, reference)
        if verification.matches:
            log_message(2, "Verification passed: settings match reference")
            return True
        log_message(1, f"Verification FAILED: settings still do not match reference ({verification})")
        return False

    def save_reference(self) -> bool:
        """Capture current PIA settings as the reference and clear the pause marker."""
        try:
            current = self.read_settings(self.settings_file)
        except SettingsError as e:
            log_message(1, f"ERROR: {e}")
            return False

        try:
            self.reference.save(current)
        except OSError as e:
            log_message(1, f"ERROR: Failed to write reference {self.reference.path}: {e}")
            return False

        if self.pause.clear():
            log_message(0, "Pause file removed: monitoring resumed with new reference")
        log_event(0, "save_reference", "saved", path=self.reference.path)
        return True
