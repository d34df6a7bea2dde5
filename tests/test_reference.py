import json
from datetime import datetime, timezone

import pytest

from vpnguard.pia.reference import ReferenceStore, PauseMarker
from vpnguard.pia.settings import SettingsError

FIELDS = {
    "splitTunnelEnabled": True,
    "splitTunnelRules": [{"mode": "exclude", "path": "/usr/sbin/sshd"}],
    "killswitch": "auto",
    "bypassSubnets": [],
}


def test_save_writes_timestamped_document(tmp_path):
    store = ReferenceStore(tmp_path / "etc" / "reference.json")
    store.save(dict(FIELDS, region="auto"), now=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))

    document = json.loads(store.path.read_text())
    assert document["saved_at"] == "2026-03-01T12:00:00+00:00"
    assert document["fields"] == FIELDS
    assert store.saved_at() == "2026-03-01T12:00:00+00:00"
    assert store.load() == FIELDS


def test_load_accepts_bare_field_mapping(tmp_path):
    path = tmp_path / "reference.json"
    path.write_text(json.dumps(FIELDS))

    assert ReferenceStore(path).load() == FIELDS
    assert ReferenceStore(path).saved_at() is None


def test_load_rejects_missing_empty_or_broken_file(tmp_path):
    with pytest.raises(SettingsError):
        ReferenceStore(tmp_path / "absent.json").load()

    empty = tmp_path / "empty.json"
    empty.write_text("{}")
    with pytest.raises(SettingsError):
        ReferenceStore(empty).load()

    broken = tmp_path / "broken.json"
    broken.write_text("{")
    with pytest.raises(SettingsError):
        ReferenceStore(broken).load()


def test_pause_marker_set_and_clear(tmp_path):
    marker = PauseMarker(tmp_path / "etc" / "pia-monitor-paused")
    assert not marker.is_set()

    marker.set()
    assert marker.is_set()

    assert marker.clear()
    assert not marker.is_set()
    assert not marker.clear()


def test_load_rejects_reference_missing_monitored_fields(tmp_path):
    empty_fields = tmp_path / "empty-fields.json"
    empty_fields.write_text(json.dumps({"saved_at": "2026-03-01T12:00:00+00:00", "fields": {}}))
    with pytest.raises(SettingsError):
        ReferenceStore(empty_fields).load()

    partial = tmp_path / "partial.json"
    partial.write_text(json.dumps({"fields": {"splitTunnelRules": [], "killswitch": "auto"}}))
    with pytest.raises(SettingsError) as excinfo:
        ReferenceStore(partial).load()
    assert "splitTunnelEnabled" in str(excinfo.value)
