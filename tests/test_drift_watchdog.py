import pytest

from vpnguard.drift_watchdog import ConfigDriftWatchdog
from vpnguard.notify import NullNotifier
from vpnguard.pia import ReferenceStore, PauseMarker
from vpnguard.polling import BackoffState

from fakes import FakeSettings, FakePiaCtl, FakeClock

REFERENCE = {
    "splitTunnelEnabled": True,
    "splitTunnelRules": [
        {"mode": "exclude", "path": "/Applications/Plex Media Server.app"},
        {"mode": "exclude", "path": "/usr/sbin/sshd"},
    ],
    "killswitch": "auto",
    "bypassSubnets": [{"mode": "exclude", "subnet": "192.168.1.0/24"}],
}


@pytest.fixture
def reference(tmp_path):
    store = ReferenceStore(tmp_path / "pia-split-tunnel-reference.json")
    store.save(REFERENCE)
    return store


def _watchdog(tmp_path, reference, settings, piactl=None, clock=None):
    return ConfigDriftWatchdog(
        tmp_path / "settings.json",
        reference,
        PauseMarker(tmp_path / "pia-monitor-paused"),
        piactl or FakePiaCtl(settings),
        backoff=BackoffState(max_failures=3, cooldown=300),
        notifier=NullNotifier(),
        clock=clock or FakeClock(),
        read_settings=settings,
    )


def _drifted():
    return dict(REFERENCE, splitTunnelEnabled=False, splitTunnelRules=[])


def test_matching_settings_need_no_action(tmp_path, reference):
    settings = FakeSettings(REFERENCE)
    watchdog = _watchdog(tmp_path, reference, settings)

    record = watchdog.poll()

    assert record.matches
    assert watchdog.piactl.applied == []


def test_rule_order_does_not_count_as_drift(tmp_path, reference):
    reordered = dict(REFERENCE, splitTunnelRules=list(reversed(REFERENCE["splitTunnelRules"])))
    watchdog = _watchdog(tmp_path, reference, FakeSettings(reordered))

    assert watchdog.poll().matches
    assert watchdog.piactl.applied == []


def test_drift_is_corrected_in_one_poll(tmp_path, reference):
    settings = FakeSettings(_drifted())
    watchdog = _watchdog(tmp_path, reference, settings)

    record = watchdog.poll()

    assert record.matches
    assert len(watchdog.piactl.applied) == 1
    assert watchdog.piactl.reconnects == 1
    assert settings.fields["splitTunnelEnabled"] is True
    assert watchdog.poll().matches
    assert len(watchdog.piactl.applied) == 1


def test_drift_while_paused_is_logged_but_not_touched(tmp_path, reference, caplog):
    settings = FakeSettings(_drifted())
    watchdog = _watchdog(tmp_path, reference, settings)
    watchdog.pause.set()
    before = reference.path.read_bytes()

    with caplog.at_level("INFO", logger="vpnguard"):
        record = watchdog.poll()

    assert not record.matches
    assert set(record.drifted_fields) == {"splitTunnelEnabled", "splitTunnelRules"}
    assert watchdog.piactl.applied == []
    assert reference.path.read_bytes() == before
    assert "outcome=paused" in caplog.text


def test_pause_marker_is_read_fresh_each_poll(tmp_path, reference):
    settings = FakeSettings(_drifted())
    watchdog = _watchdog(tmp_path, reference, settings)
    watchdog.pause.set()
    watchdog.poll()

    watchdog.pause.clear()
    assert watchdog.poll().matches
    assert len(watchdog.piactl.applied) == 1


def test_three_failures_suspend_restore_for_exactly_the_cooldown(tmp_path, reference):
    settings = FakeSettings(_drifted())
    clock = FakeClock(1000.0)
    piactl = FakePiaCtl(settings, fixes=False)
    watchdog = _watchdog(tmp_path, reference, settings, piactl=piactl, clock=clock)

    for _ in range(3):
        watchdog.poll()
    assert len(piactl.applied) == 3
    assert any("backing off" in message for _, message in watchdog.notifier.sent)

    watchdog.poll()
    clock.now = 1299.9
    watchdog.poll()
    assert len(piactl.applied) == 3

    clock.now = 1300.0
    watchdog.poll()
    assert len(piactl.applied) == 4


def test_success_resets_failure_counter(tmp_path, reference):
    settings = FakeSettings(_drifted())
    piactl = FakePiaCtl(settings, fixes=False)
    watchdog = _watchdog(tmp_path, reference, settings, piactl=piactl)

    watchdog.poll()
    watchdog.poll()
    assert watchdog.backoff.failures == 2

    piactl.fixes = True
    assert watchdog.poll().matches
    assert watchdog.backoff.failures == 0


def test_applysettings_error_counts_as_failure(tmp_path, reference):
    settings = FakeSettings(_drifted())
    piactl = FakePiaCtl(settings, apply_error="applysettings command failed")
    watchdog = _watchdog(tmp_path, reference, settings, piactl=piactl)

    record = watchdog.poll()

    assert not record.matches
    assert piactl.reconnects == 0
    assert watchdog.backoff.failures == 1


def test_unreadable_settings_skip_the_cycle(tmp_path, reference):
    settings = FakeSettings(REFERENCE)
    settings.error = "PIA settings file not found"
    watchdog = _watchdog(tmp_path, reference, settings)

    assert watchdog.poll() is None
    assert watchdog.piactl.applied == []


def test_missing_reference_skips_the_cycle(tmp_path):
    settings = FakeSettings(_drifted())
    watchdog = _watchdog(tmp_path, ReferenceStore(tmp_path / "missing.json"), settings)

    assert watchdog.poll() is None
    assert watchdog.piactl.applied == []


def test_reference_is_reread_every_poll(tmp_path, reference):
    settings = FakeSettings(_drifted())
    watchdog = _watchdog(tmp_path, reference, settings)
    watchdog.pause.set()
    watchdog.poll()

    reference.save(_drifted())
    assert watchdog.poll().matches


def test_save_reference_captures_settings_and_resumes(tmp_path):
    settings = FakeSettings(REFERENCE)
    store = ReferenceStore(tmp_path / "etc" / "pia-split-tunnel-reference.json")
    watchdog = _watchdog(tmp_path, store, settings)
    watchdog.pause.set()

    assert watchdog.save_reference()

    assert store.load() == REFERENCE
    assert store.saved_at()
    assert not watchdog.pause.is_set()


def test_save_reference_fails_without_settings(tmp_path):
    settings = FakeSettings(REFERENCE)
    settings.error = "PIA settings file not found"
    store = ReferenceStore(tmp_path / "ref.json")
    watchdog = _watchdog(tmp_path, store, settings)

    assert not watchdog.save_reference()
    assert not store.exists()
