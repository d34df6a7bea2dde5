#!/usr/bin/env python3

"""
PIA Split Tunnel Settings

Reads the fields of PIA's settings.json that must stay stable and compares
them with a reference. Lists are compared order-independently: PIA rewrites
its rule list in arbitrary order without changing meaning.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ..utils import VpnGuardError

# Monitored field -> value assumed when PIA omits it
MONITORED_FIELDS: Dict[str, Any] = {
    'splitTunnelEnabled': False,
    'splitTunnelRules': [],
    'killswitch': '',
    'bypassSubnets': [],
}


class SettingsError(VpnGuardError):
    """PIA settings or the reference snapshot could not be read or parsed."""
    pass


def extract_monitored_fields(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the monitored fields, filling PIA's defaults for missing ones."""
    return {name: settings.get(name, default) for name, default in MONITORED_FIELDS.items()}


def read_settings_file(path: Path) -> Dict[str, Any]:
    """Load and extract the monitored fields from a PIA settings.json."""
    path = Path(path)
    try:
        with open(path, 'r') as f:
            settings = json.load(f)
    except FileNotFoundError:
        raise SettingsError(f"PIA settings file not found at {path}")
    except (OSError, json.JSONDecodeError) as e:
        raise SettingsError(f"Failed to read PIA settings {path}: {e}")
    if not isinstance(settings, dict):
        raise SettingsError(f"PIA settings {path} is not a JSON object")
    return extract_monitored_fields(settings)


def normalize(obj):
    """Canonical form for comparison: sorted keys, lists sorted by JSON dump."""
    if isinstance(obj, dict):
        return {k: normalize(v) for k, v in sorted(obj.items())}
    if isinstance(obj, list):
        normalized = [normalize(item) for item in obj]
        return sorted(normalized, key=lambda x: json.dumps(x, sort_keys=True))
    return obj


@dataclass(frozen=True)
class DriftRecord:
    """Result of comparing current settings with the reference."""
    drifted_fields: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def matches(self) -> bool:
        return not self.drifted_fields

    def __str__(self):
        return "Matches" if self.matches else f"Drifted({', '.join(self.drifted_fields)})"


def compare(current: Dict[str, Any], reference: Dict[str, Any]) -> DriftRecord:
    """Field-by-field comparison over the monitored fields."""
    drifted: List[str] = []
    for name in MONITORED_FIELDS:
        if normalize(current.get(name)) != normalize(reference.get(name)):
            drifted.append(name)
    return DriftRecord(tuple(drifted))


def format_fields(fields: Dict[str, Any]) -> str:
    return json.dumps(fields, sort_keys=True, indent=2)
