import threading
from unittest.mock import Mock, patch

import pytest

from core.exceptions import DatabaseError, ServiceError
from service.traffic_monitor import ActiveConnections, TrafficMonitor

NOW = 1_700_000_000


@pytest.fixture
def vpn_server():
    server = Mock()
    server.get_active_connections.return_value = ["alice"]
    server.get_user_traffic.return_value = (1000, 2000)
    return server


@pytest.fixture
def monitor(vpn_server, user_repo, traffic_repo):
    return TrafficMonitor(vpn_server, user_repo, traffic_repo, interval=60, clock=lambda: NOW)


def test_tick_records_combined_session_bytes(monitor, user_repo, traffic_repo):
    alice = user_repo.create_user("alice", "user")

    summary = monitor.run_tick()

    samples = traffic_repo.get_user_traffic(alice, 0, NOW)
    assert [s['bytes'] for s in samples] == [3000]
    assert samples[0]['timestamp'] == NOW
    assert summary["sampled"] == 1
    assert monitor.connections.get(alice) == "alice"


def test_each_tick_appends_a_sample(monitor, user_repo, traffic_repo):
    alice = user_repo.create_user("alice", "user")

    monitor.run_tick()
    monitor.run_tick()

    assert len(traffic_repo.get_user_traffic(alice, 0, NOW)) == 2
    assert traffic_repo.get_total_user_traffic(alice) == 6000


def test_user_over_limit_is_disconnected_once(monitor, vpn_server, user_repo, traffic_repo):
    alice = user_repo.create_user("alice", "user", traffic_limit=5000)
    traffic_repo.log_traffic(alice, 4000, NOW - 600)
    vpn_server.get_user_traffic.return_value = (500, 1500)

    summary = monitor.run_tick()

    vpn_server.disconnect_user.assert_called_once_with("alice")
    assert summary["disconnected"] == ["alice"]


def test_user_at_limit_is_not_disconnected(monitor, vpn_server, user_repo, traffic_repo):
    alice = user_repo.create_user("alice", "user", traffic_limit=5000)
    traffic_repo.log_traffic(alice, 2000, NOW - 600)

    monitor.run_tick()

    vpn_server.disconnect_user.assert_not_called()


def test_zero_limit_means_unlimited(monitor, vpn_server, user_repo, traffic_repo):
    alice = user_repo.create_user("alice", "user", traffic_limit=0)
    traffic_repo.log_traffic(alice, 10 ** 12, NOW - 600)

    monitor.run_tick()

    vpn_server.disconnect_user.assert_not_called()


def test_unknown_session_is_skipped(monitor, vpn_server, user_repo, traffic_repo):
    alice = user_repo.create_user("alice", "user")
    vpn_server.get_active_connections.return_value = ["ghost", "alice"]

    summary = monitor.run_tick()

    assert summary["sessions"] == 2
    assert summary["sampled"] == 1
    assert traffic_repo.get_total_user_traffic(alice) == 3000
    assert len(monitor.connections) == 1


def test_listing_failure_skips_tick(monitor, vpn_server, user_repo, traffic_repo):
    alice = user_repo.create_user("alice", "user")
    monitor.connections.record(alice, "alice")
    vpn_server.get_active_connections.side_effect = ServiceError("occtl", "list sessions", "down")

    summary = monitor.run_tick()

    assert summary["skipped"]
    assert traffic_repo.get_total_traffic() == 0
    assert monitor.connections.get(alice) == "alice"


def test_quota_is_enforced_when_sample_write_fails(monitor, vpn_server, user_repo, traffic_repo):
    alice = user_repo.create_user("alice", "user", traffic_limit=5000)
    traffic_repo.log_traffic(alice, 6000, NOW - 600)

    with patch.object(traffic_repo, "log_traffic", side_effect=DatabaseError("disk I/O error")):
        summary = monitor.run_tick()

    vpn_server.disconnect_user.assert_called_once_with("alice")
    assert summary["disconnected"] == ["alice"]
    assert traffic_repo.get_total_user_traffic(alice) == 6000


def test_traffic_read_failure_skips_only_that_session(monitor, vpn_server, user_repo, traffic_repo):
    alice = user_repo.create_user("alice", "user")
    bob = user_repo.create_user("bob", "user")
    vpn_server.get_active_connections.return_value = ["alice", "bob"]
    vpn_server.get_user_traffic.side_effect = [
        ServiceError("occtl", "read session stats", "gone"),
        (10, 20),
    ]

    monitor.run_tick()

    assert traffic_repo.get_total_user_traffic(alice) == 0
    assert traffic_repo.get_total_user_traffic(bob) == 30
    assert monitor.connections.get(alice) == "alice"


def test_connections_are_rebuilt_every_tick(monitor, vpn_server, user_repo):
    alice = user_repo.create_user("alice", "user")
    monitor.run_tick()
    vpn_server.get_active_connections.return_value = []

    monitor.run_tick()

    assert monitor.connections.get(alice) is None


def test_overlapping_tick_is_skipped(monitor, vpn_server):
    monitor._tick_lock.acquire()
    try:
        summary = monitor.run_tick()
    finally:
        monitor._tick_lock.release()

    assert summary["skipped"]
    vpn_server.get_active_connections.assert_not_called()


def test_start_and_stop(vpn_server, user_repo, traffic_repo):
    monitor = TrafficMonitor(vpn_server, user_repo, traffic_repo, interval=0.01)
    stop_event = threading.Event()

    monitor.start(stop_event)
    assert monitor.is_running()

    monitor.stop(timeout=1)
    assert not monitor.is_running()
    assert stop_event.is_set()


def test_active_connections_snapshot_is_a_copy():
    connections = ActiveConnections()
    connections.record(1, "alice")

    snapshot = connections.snapshot()
    snapshot[2] = "bob"

    assert connections.snapshot() == {1: "alice"}
