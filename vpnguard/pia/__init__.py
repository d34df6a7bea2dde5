"""
PIA client integration for the drift watchdog.

- settings: monitored split-tunnel fields, normalization, drift comparison
- reference: saved reference snapshot and the operator pause marker
- piactl: applying settings and forcing a reconnect through ``piactl``
"""

from .settings import (
    MONITORED_FIELDS, SettingsError, DriftRecord,
    extract_monitored_fields, read_settings_file, normalize, compare
)
from .reference import ReferenceStore, PauseMarker
from .piactl import PiaCtl, RestoreError

__all__ = [
    'MONITORED_FIELDS',
    'SettingsError',
    'DriftRecord',
    'extract_monitored_fields',
    'read_settings_file',
    'normalize',
    'compare',
    'ReferenceStore',
    'PauseMarker',
    'PiaCtl',
    'RestoreError',
]
