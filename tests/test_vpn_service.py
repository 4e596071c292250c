import threading
from unittest.mock import Mock, patch

import pytest

from config.app_config import VPNConfig
from core.exceptions import (
    DatabaseError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
    UserNotFoundError,
    ValidationError,
)
from service.traffic_monitor import ActiveConnections
from service.vpn_service import VPNService


@pytest.fixture
def vpn_server():
    return Mock()


@pytest.fixture
def traffic_monitor():
    monitor = Mock()
    monitor.connections = ActiveConnections()
    return monitor


@pytest.fixture
def vpn_service(user_repo, route_repo, traffic_repo, vpn_server, traffic_monitor):
    return VPNService(user_repo, route_repo, traffic_repo, vpn_server, traffic_monitor)


@pytest.fixture
def admin(user_repo):
    return user_repo.create_user("root", "admin")


class TestResolveRoutes:
    def test_assigned_custom_route_is_the_only_route(self, vpn_service, user_repo):
        alice = user_repo.create_user("alice", "user")
        route = vpn_service.create_route("10.0.0.0/24", "custom", created_by=alice)
        vpn_service.assign_route_to_user(alice, route['id'])

        routes = vpn_service.resolve_routes(alice)

        assert [(r["network"], r["type"]) for r in routes] == [("10.0.0.0/24", "custom")]

    def test_individual_routes_come_before_group_routes(self, vpn_service, user_repo, route_repo):
        alice = user_repo.create_user("alice", "user")
        own = vpn_service.create_route("10.1.0.0/16")
        shared = vpn_service.create_route("10.2.0.0/16")
        group = vpn_service.create_group("office")
        vpn_service.add_route_to_group(group['id'], shared['id'])
        route_repo.assign_route_to_user(alice, own['id'])
        route_repo.assign_group_to_user(alice, group['id'])

        routes = vpn_service.resolve_routes(alice)

        assert [r['network'] for r in routes] == ["10.1.0.0/16", "10.2.0.0/16"]

    def test_duplicate_routes_across_groups_are_kept(self, vpn_service, user_repo, route_repo):
        alice = user_repo.create_user("alice", "user")
        shared = vpn_service.create_route("10.2.0.0/16")
        for name in ("a", "b"):
            group = vpn_service.create_group(name)
            vpn_service.add_route_to_group(group['id'], shared['id'])
            route_repo.assign_group_to_user(alice, group['id'])

        routes = vpn_service.resolve_routes(alice)

        assert [r['network'] for r in routes] == ["10.2.0.0/16", "10.2.0.0/16"]

    def test_disabled_assignments_are_excluded(self, vpn_service, user_repo, route_repo):
        alice = user_repo.create_user("alice", "user")
        route = vpn_service.create_route("10.1.0.0/16")
        route_repo.assign_route_to_user(alice, route['id'], enabled=False)

        assert vpn_service.resolve_routes(alice) == []

    def test_vassal_without_individual_routes_gets_defaults(self, vpn_service, user_repo):
        vassal = user_repo.create_user("v", "vassal")
        vpn_service.create_route("0.0.0.0/0", "default")

        routes = vpn_service.resolve_routes(vassal)

        assert [r['network'] for r in routes] == ["0.0.0.0/0"]

    def test_vassal_gets_defaults_even_with_group_routes(self, vpn_service, user_repo, route_repo):
        vassal = user_repo.create_user("v", "vassal")
        vpn_service.create_route("0.0.0.0/0", "default")
        shared = vpn_service.create_route("10.2.0.0/16")
        group = vpn_service.create_group("office")
        vpn_service.add_route_to_group(group['id'], shared['id'])
        route_repo.assign_group_to_user(vassal, group['id'])

        routes = vpn_service.resolve_routes(vassal)

        assert [r['network'] for r in routes] == ["10.2.0.0/16", "0.0.0.0/0"]

    def test_vassal_with_individual_route_gets_no_defaults(self, vpn_service, user_repo, route_repo):
        vassal = user_repo.create_user("v", "vassal")
        vpn_service.create_route("0.0.0.0/0", "default")
        own = vpn_service.create_route("10.1.0.0/16")
        route_repo.assign_route_to_user(vassal, own['id'])

        routes = vpn_service.resolve_routes(vassal)

        assert [r['network'] for r in routes] == ["10.1.0.0/16"]

    def test_non_vassal_does_not_receive_defaults(self, vpn_service, user_repo):
        alice = user_repo.create_user("alice", "user")
        vpn_service.create_route("0.0.0.0/0", "default")

        assert vpn_service.resolve_routes(alice) == []

    def test_unknown_user(self, vpn_service):
        with pytest.raises(UserNotFoundError):
            vpn_service.resolve_routes(999)

    def test_resolution_does_not_touch_the_daemon(self, vpn_service, vpn_server, user_repo):
        vassal = user_repo.create_user("v", "vassal")
        vpn_service.create_route("0.0.0.0/0", "default")
        vpn_server.reset_mock()

        first = vpn_service.resolve_routes(vassal)
        second = vpn_service.resolve_routes(vassal)

        assert first == second
        assert vpn_server.method_calls == []


class TestRouteRecords:
    def test_create_route_normalizes_and_pushes(self, vpn_service, vpn_server):
        route = vpn_service.create_route("10.0.0.9/24", "custom", "lab")

        assert route['network'] == "10.0.0.0/24"
        assert route['description'] == "lab"
        vpn_server.add_route.assert_called_once_with("10.0.0.0/24")

    def test_blocked_route_goes_to_block_list(self, vpn_service, vpn_server):
        vpn_service.create_route("192.168.0.0/16", "blocked")

        vpn_server.block_route.assert_called_once_with("192.168.0.0/16")
        vpn_server.add_route.assert_not_called()

    def test_unknown_route_type_is_rejected(self, vpn_service, route_repo):
        with pytest.raises(ValidationError):
            vpn_service.create_route("10.0.0.0/24", "sometimes")
        assert route_repo.get_all_routes() == []

    def test_daemon_failure_keeps_the_record(self, vpn_service, vpn_server, route_repo):
        vpn_server.add_route.side_effect = ServiceError("ocserv", "add route", "busy")

        vpn_service.create_route("10.0.0.0/24")

        assert len(route_repo.get_all_routes()) == 1

    def test_delete_route_removes_it_from_daemon(self, vpn_service, vpn_server, route_repo):
        route = vpn_service.create_route("10.0.0.0/24")

        vpn_service.delete_route(route['id'])

        vpn_server.remove_route.assert_called_once_with("10.0.0.0/24")
        assert route_repo.get_route(route['id']) is None

    def test_delete_route_keeps_network_used_by_another_record(self, vpn_service, vpn_server):
        first = vpn_service.create_route("10.0.0.0/24")
        vpn_service.create_route("10.0.0.0/24", "default")

        vpn_service.delete_route(first['id'])

        vpn_server.remove_route.assert_not_called()

    def test_asn_route_pushed_only_for_routable_types(self, vpn_service, vpn_server):
        vpn_service.create_asn_route(13335)
        vpn_server.add_asn_route.assert_not_called()

        vpn_service.create_asn_route(15169, "default")
        vpn_server.add_asn_route.assert_called_once_with(15169)


class TestAssignments:
    def test_vassal_cannot_add_routes(self, vpn_service, user_repo, route_repo):
        vassal = user_repo.create_user("v", "vassal")

        with pytest.raises(PermissionDeniedError):
            vpn_service.add_custom_route_for_user(vassal, "10.0.0.0/24")
        assert route_repo.get_all_routes() == []

    def test_user_cannot_change_another_users_routes(self, vpn_service, user_repo):
        alice = user_repo.create_user("alice", "user")
        bob = user_repo.create_user("bob", "user")
        route = vpn_service.create_route("10.0.0.0/24")

        with pytest.raises(PermissionDeniedError):
            vpn_service.assign_route_to_user(bob, route['id'], actor_id=alice)

    def test_admin_can_assign_routes_to_vassal(self, vpn_service, user_repo, admin):
        vassal = user_repo.create_user("v", "vassal")
        route = vpn_service.create_route("10.0.0.0/24")

        vpn_service.assign_route_to_user(vassal, route['id'], actor_id=admin)

        assert [r['id'] for r in vpn_service.resolve_routes(vassal)] == [route['id']]

    def test_failed_assignment_leaves_route_record(self, vpn_service, user_repo, route_repo):
        alice = user_repo.create_user("alice", "user")

        with patch.object(route_repo, "assign_route_to_user", side_effect=DatabaseError("locked")):
            with pytest.raises(DatabaseError):
                vpn_service.add_custom_route_for_user(alice, "10.0.0.0/24")

        assert [r['network'] for r in route_repo.get_all_routes()] == ["10.0.0.0/24"]
        assert vpn_service.resolve_routes(alice) == []

    def test_remove_route_for_user(self, vpn_service, user_repo):
        alice = user_repo.create_user("alice", "user")
        vpn_service.add_custom_route_for_user(alice, "10.0.0.0/24")

        vpn_service.remove_route_for_user(alice, "10.0.0.1/24")

        assert vpn_service.resolve_routes(alice) == []

    def test_remove_unassigned_route(self, vpn_service, user_repo):
        alice = user_repo.create_user("alice", "user")

        with pytest.raises(NotFoundError):
            vpn_service.remove_route_for_user(alice, "10.0.0.0/24")

    def test_group_assignment_can_be_disabled(self, vpn_service, user_repo, route_repo, admin):
        alice = user_repo.create_user("alice", "user")
        route = vpn_service.create_route("10.0.0.0/24")
        group = vpn_service.create_group("office")
        vpn_service.add_route_to_group(group['id'], route['id'])
        vpn_service.assign_group_to_user(alice, group['id'], actor_id=admin)
        route_repo.set_user_group_enabled(alice, group['id'], False)

        assert vpn_service.resolve_routes(alice) == []


class TestLifecycle:
    def test_start_loads_routes_then_starts_daemon_and_monitor(
        self, user_repo, route_repo, traffic_repo, vpn_server, traffic_monitor
    ):
        config = VPNConfig(default_routes=["172.16.0.0/12", "bogus"], default_asn_routes=[13335])
        service = VPNService(user_repo, route_repo, traffic_repo, vpn_server, traffic_monitor, config=config)
        route_repo.create_route("0.0.0.0/0", "default", "", None)
        route_repo.create_route("192.168.0.0/16", "blocked", "", None)

        def reject_bogus(cidr):
            if cidr == "bogus":
                raise ValidationError("network", cidr, "invalid CIDR")

        vpn_server.add_route.side_effect = reject_bogus
        stop_event = threading.Event()

        service.start(stop_event)

        added = [c.args[0] for c in vpn_server.add_route.call_args_list]
        assert added == ["172.16.0.0/12", "bogus", "0.0.0.0/0"]
        vpn_server.add_asn_route.assert_called_once_with(13335)
        vpn_server.block_route.assert_called_once_with("192.168.0.0/16")
        vpn_server.start.assert_called_once()
        traffic_monitor.start.assert_called_once_with(stop_event)

    def test_daemon_start_failure_is_fatal(self, vpn_service, vpn_server, traffic_monitor):
        vpn_server.start.side_effect = ServiceError("ocserv", "start", "no binary")

        with pytest.raises(ServiceError):
            vpn_service.start()
        traffic_monitor.start.assert_not_called()

    def test_stop(self, vpn_service, vpn_server, traffic_monitor):
        vpn_service.stop()

        traffic_monitor.stop.assert_called_once()
        vpn_server.stop.assert_called_once()


class TestSessions:
    def test_disconnect_connected_user(self, vpn_service, vpn_server, traffic_monitor):
        traffic_monitor.connections.record(7, "alice")

        vpn_service.disconnect_user(7)

        vpn_server.disconnect_user.assert_called_once_with("alice")

    def test_disconnect_user_without_session(self, vpn_service, vpn_server):
        with pytest.raises(NotFoundError):
            vpn_service.disconnect_user(7)
        vpn_server.disconnect_user.assert_not_called()

    def test_traffic_range_is_inclusive(self, vpn_service, user_repo, traffic_repo):
        alice = user_repo.create_user("alice", "user")
        for ts in (100, 200, 300):
            traffic_repo.log_traffic(alice, 10, ts)

        samples = vpn_service.get_user_traffic(alice, 100, 200)

        assert [s['timestamp'] for s in samples] == [100, 200]

    def test_reversed_traffic_range_is_rejected(self, vpn_service):
        with pytest.raises(ValidationError):
            vpn_service.get_user_traffic(1, 200, 100)
