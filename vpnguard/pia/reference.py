#!/usr/bin/env python3

"""
Reference snapshot and pause marker, both plain files read fresh on every
use. The operator (or the deployment) writes the reference with
``--save-reference``; the watchdog only reads it.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..logger import log_message
from ..utils import atomic_write_text
from .settings import MONITORED_FIELDS, SettingsError, extract_monitored_fields, format_fields


class PauseMarker:
    """Presence of a file suspends auto-restore; no content is needed."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def is_set(self) -> bool:
        return self.path.exists()

    def set(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)

    def clear(self) -> bool:
        """Remove the marker; returns True if it was present."""
        try:
            self.path.unlink()
            return True
        except FileNotFoundError:
            return False


class ReferenceStore:
    """JSON reference file: ``{"saved_at": ..., "fields": {...}}``."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Dict[str, Any]:
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            raise SettingsError(f"Reference file not found at {self.path}")
        except (OSError, json.JSONDecodeError) as e:
            raise SettingsError(f"Reference file {self.path} unreadable: {e}")

        if not isinstance(data, dict) or not data:
            raise SettingsError(f"Reference file {self.path} is empty or not an object")
        # Older references stored the bare field mapping
        fields = data.get("fields", data)
        if not isinstance(fields, dict):
            raise SettingsError(f"Reference file {self.path} has no field mapping")
        missing = [name for name in MONITORED_FIELDS if name not in fields]
        if missing:
            raise SettingsError(f"Reference file {self.path} is missing fields: {', '.join(missing)}")
        return extract_monitored_fields(fields)

    def saved_at(self) -> Optional[str]:
        try:
            with open(self.path, 'r') as f:
                return json.load(f).get("saved_at")
        except (OSError, json.JSONDecodeError, AttributeError):
            return None

    def save(self, fields: Dict[str, Any], now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        document = {
            "saved_at": now.isoformat(timespec="seconds"),
            "fields": extract_monitored_fields(fields),
        }
        atomic_write_text(self.path, json.dumps(document, sort_keys=True, indent=2) + "\n")
        log_message(2, f"Reference config saved to {self.path}")
        for line in format_fields(document["fields"]).splitlines():
            log_message(3, f"  {line}")
