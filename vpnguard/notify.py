#!/usr/bin/env python3

import shutil

from .logger import log_message
from .utils import run_command, CommandError


class Notifier:
    """Best-effort desktop notifications through terminal-notifier.

    When ``as_user`` is set (root daemons) the notification is delivered in
    that user's login session. Delivery problems are logged, never raised.
    """

    def __init__(self, group, sender=None, as_user=None, enabled=True):
        self.group = group
        self.sender = sender
        self.as_user = as_user
        self.enabled = enabled

    def _base_command(self):
        if self.as_user:
            return ["sudo", "-iu", self.as_user, "terminal-notifier"]
        if shutil.which("terminal-notifier") is None:
            return None
        return ["terminal-notifier"]

    def send(self, title, message):
        if not self.enabled:
            return False
        cmd = self._base_command()
        if cmd is None:
            log_message(5, f"terminal-notifier not available; skipping notification '{title}'")
            return False

        cmd = cmd + ["-title", title, "-message", message, "-group", self.group]
        if self.sender:
            cmd.extend(["-sender", self.sender])
        try:
            result = run_command(cmd, check=False, capture_output=True, timeout=10)
        except CommandError as e:
            log_message(5, f"Notification '{title}' not delivered: {e}")
            return False
        return result.returncode == 0


class NullNotifier:
    """Notifier used in tests and when notifications are disabled."""

    def __init__(self):
        self.sent = []

    def send(self, title, message):
        self.sent.append((title, message))
        return True
