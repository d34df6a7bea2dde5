#!/usr/bin/env python3

import json
import time
from pathlib import Path
from typing import Any, Dict

from ..logger import log_message
from ..utils import VpnGuardError, CommandError, run_command


class RestoreError(VpnGuardError):
    """PIA refused or failed to apply settings."""
    pass


class PiaCtl:
    """Thin wrapper over the ``piactl`` command line client."""

    COMMAND_TIMEOUT = 30  # seconds

    def __init__(self, piactl_path: Path, reconnect_delay=3, reconnect_settle=10, sleep=time.sleep):
        self.piactl_path = Path(piactl_path)
        self.reconnect_delay = reconnect_delay
        self.reconnect_settle = reconnect_settle
        self.sleep = sleep

    def available(self) -> bool:
        return self.piactl_path.is_file()

    def apply_settings(self, fields: Dict[str, Any]):
        """``piactl -u applysettings <json>``; raises RestoreError on failure."""
        if not self.available():
            raise RestoreError(f"piactl not found at {self.piactl_path}: cannot auto-fix (detect-only mode)")
        payload = json.dumps(fields, sort_keys=True)
        log_message(3, "Applying reference config via piactl -u applysettings...")
        try:
            run_command([str(self.piactl_path), "-u", "applysettings", payload],
                        check=True, capture_output=True, timeout=self.COMMAND_TIMEOUT)
        except CommandError as e:
            raise RestoreError(f"applysettings command failed: {e}")
        log_message(2, "applysettings command succeeded")

    def reconnect(self):
        """Disconnect/connect cycle so PIA applies the new settings; errors are logged only."""
        log_message(3, "Reconnecting PIA to apply settings...")
        for verb, pause in (("disconnect", self.reconnect_delay), ("connect", self.reconnect_settle)):
            try:
                run_command([str(self.piactl_path), verb], check=False, capture_output=True,
                            timeout=self.COMMAND_TIMEOUT)
            except CommandError as e:
                log_message(1, f"piactl {verb} failed: {e}")
            self.sleep(pause)
