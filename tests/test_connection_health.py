from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from trackview.core.connection_health import ConnectionHealth, needs_probe

NOW = datetime(2024, 1, 10, 12, tzinfo=timezone.utc)


def test_needs_probe_after_two_minutes():
    """Status becomes stale strictly after two minutes."""
    stale_after = timedelta(minutes=2)

    assert needs_probe(NOW, NOW - timedelta(minutes=1), stale_after) is False
    assert needs_probe(NOW, NOW - timedelta(minutes=2), stale_after) is False
    assert needs_probe(NOW, NOW - timedelta(minutes=2, seconds=1), stale_after) is True


def test_mark_connected_reports_restoration():
    """Reconnecting after a failure is reported once."""
    health = ConnectionHealth(clock=lambda: NOW)

    assert health.mark_connected() is True
    assert health.mark_connected() is False

    health.mark_disconnected()
    assert health.snapshot().connected is False
    assert health.mark_connected() is True


def test_failure_keeps_last_tested_at():
    """Failures do not refresh the last successful test time."""
    clock = [NOW]
    health = ConnectionHealth(clock=lambda: clock[0])
    health.mark_connected()

    clock[0] = NOW + timedelta(minutes=5)
    health.mark_disconnected()

    assert health.snapshot().last_tested_at == NOW
    assert health.is_stale(timedelta(minutes=2)) is True


def test_concurrent_reconnects_report_restoration_once():
    """Only one of many concurrent successes reports the restored connection."""
    health = ConnectionHealth()
    health.mark_disconnected()

    with ThreadPoolExecutor(max_workers=8) as executor:
        restored = list(executor.map(lambda _: health.mark_connected(), range(200)))

    assert restored.count(True) == 1
    assert health.snapshot().connected is True
