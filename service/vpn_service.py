"""
Route management, route resolution and VPN lifecycle for the panel.

Route and assignment records live in the store; the daemon only receives
allow/block list deltas, which apply on its next restart. Composite
operations (create a route, then assign it) are not transactional: if a
later step fails the earlier rows stay in place and the error propagates.
"""

import threading
from typing import Any, Dict, List, Optional

from config.app_config import VPNConfig
from core.exceptions import (
    GroupNotFoundError,
    NotFoundError,
    PermissionDeniedError,
    RouteNotFoundError,
    UserNotFoundError,
    ValidationError,
    VPNManagerError,
)
from core.logging_config import LoggerMixin, log_function_call
from core.network import normalize_cidr, validate_asn
from core.role_policy import get_role_limits
from core.types import Role, RouteType, UserId
from data.route_repository import RouteRepository
from data.traffic_repository import TrafficRepository
from data.user_repository import UserRepository
from service.traffic_monitor import TrafficMonitor

ROUTE_TYPES = tuple(t.value for t in RouteType)

class VPNService(LoggerMixin):
    def __init__(
        self,
        user_repo: UserRepository,
        route_repo: RouteRepository,
        traffic_repo: TrafficRepository,
        vpn_server,
        traffic_monitor: TrafficMonitor,
        config: Optional[VPNConfig] = None,
    ) -> None:
        self.user_repo = user_repo
        self.route_repo = route_repo
        self.traffic_repo = traffic_repo
        self.vpn_server = vpn_server
        self.traffic_monitor = traffic_monitor
        self.config = config or VPNConfig()

    # --- Lifecycle ---

    def start(self, stop_event: Optional[threading.Event] = None) -> None:
        """Load routes into the daemon, start it, then start traffic enforcement."""
        for cidr in self.config.default_routes:
            try:
                self.vpn_server.add_route(cidr)
            except ValidationError as e:
                self.logger.warning("Skipping invalid configured route", cidr=cidr, error=str(e))
        for asn in self.config.default_asn_routes:
            try:
                self.vpn_server.add_asn_route(asn)
            except ValidationError as e:
                self.logger.warning("Skipping invalid configured ASN route", asn=asn, error=str(e))

        self._load_stored_routes(RouteType.DEFAULT.value, self.vpn_server.add_route)
        self._load_stored_routes(RouteType.BLOCKED.value, self.vpn_server.block_route)

        # A daemon that cannot start is fatal for the whole service.
        self.vpn_server.start()
        self.traffic_monitor.start(stop_event)
        self.logger.info("VPN service started")

    def _load_stored_routes(self, route_type: str, apply) -> None:
        try:
            routes = self.route_repo.get_routes_by_type(route_type)
        except VPNManagerError as e:
            self.logger.warning("Failed to load stored routes", type=route_type, error=str(e))
            return
        for route in routes:
            try:
                apply(route['network'])
            except ValidationError as e:
                self.logger.warning("Skipping invalid stored route", route_id=route['id'], error=str(e))

    def stop(self) -> None:
        self.traffic_monitor.stop()
        self.vpn_server.stop()
        self.logger.info("VPN service stopped")

    # --- Route resolution ---

    def resolve_routes(self, user_id: UserId) -> List[Dict[str, Any]]:
        """
        Effective routes for a user, in fetch order.

        Individually assigned (enabled) routes come first, followed by the
        routes of every enabled group assigned to the user. Duplicates
        across groups are kept. A vassal with no individual routes also
        receives every default route, even when groups supplied routes.
        """
        user = self.user_repo.get_user_by_id(user_id)
        if not user:
            raise UserNotFoundError(user_id)

        individual = self.route_repo.get_user_routes(user_id)
        routes = list(individual)

        for group in self.route_repo.get_user_groups(user_id):
            try:
                routes.extend(self.route_repo.get_group_routes(group['id']))
            except VPNManagerError as e:
                self.logger.warning("Failed to load group routes", group_id=group['id'], error=str(e))

        if user['role'] == Role.VASSAL.value and not individual:
            routes.extend(self.route_repo.get_routes_by_type(RouteType.DEFAULT.value))

        return routes

    # --- Route records ---

    @log_function_call
    def create_route(self, network: str, route_type: str = RouteType.CUSTOM.value,
                     description: str = "", created_by: Optional[UserId] = None) -> Dict[str, Any]:
        route_type = route_type or RouteType.CUSTOM.value
        if route_type not in ROUTE_TYPES:
            raise ValidationError("type", route_type, f"must be one of {', '.join(ROUTE_TYPES)}")
        normalized = normalize_cidr(network)

        route_id = self.route_repo.create_route(normalized, route_type, description, created_by)
        self.logger.info("Route created", route_id=route_id, network=normalized, type=route_type)

        try:
            if route_type in (RouteType.DEFAULT.value, RouteType.CUSTOM.value):
                self.vpn_server.add_route(normalized)
            elif route_type == RouteType.BLOCKED.value:
                self.vpn_server.block_route(normalized)
        except VPNManagerError as e:
            self.logger.warning("Failed to push route to VPN server", network=normalized, error=str(e))

        return self.route_repo.get_route(route_id)

    @log_function_call
    def create_asn_route(self, asn, route_type: str = RouteType.ASN.value,
                         description: str = "", created_by: Optional[UserId] = None) -> Dict[str, Any]:
        route_type = route_type or RouteType.ASN.value
        if route_type not in ROUTE_TYPES:
            raise ValidationError("type", route_type, f"must be one of {', '.join(ROUTE_TYPES)}")
        asn = validate_asn(asn)

        asn_route_id = self.route_repo.create_asn_route(asn, route_type, description, created_by)
        self.logger.info("ASN route created", asn_route_id=asn_route_id, asn=asn, type=route_type)

        if route_type in (RouteType.DEFAULT.value, RouteType.CUSTOM.value):
            try:
                self.vpn_server.add_asn_route(asn)
            except VPNManagerError as e:
                self.logger.warning("Failed to push ASN route to VPN server", asn=asn, error=str(e))

        return self.route_repo.get_asn_route(asn_route_id)

    def delete_route(self, route_id: int) -> Dict[str, Any]:
        route = self.route_repo.get_route(route_id)
        if not route:
            raise RouteNotFoundError(route_id)
        self.route_repo.delete_route(route_id)
        if route['type'] == RouteType.BLOCKED.value:
            self.vpn_server.unblock_route(route['network'])
        elif not self.route_repo.get_routes_by_network(route['network']):
            self.vpn_server.remove_route(route['network'])
        return {"message": f"Route {route['network']} deleted"}

    def delete_asn_route(self, asn_route_id: int) -> Dict[str, Any]:
        asn_route = self.route_repo.get_asn_route(asn_route_id)
        if not asn_route:
            raise RouteNotFoundError(asn_route_id)
        self.route_repo.delete_asn_route(asn_route_id)
        self.vpn_server.remove_asn_route(asn_route['asn'])
        return {"message": f"ASN route AS{asn_route['asn']} deleted"}

    def list_routes(self, route_type: Optional[str] = None) -> List[Dict[str, Any]]:
        if route_type:
            return self.route_repo.get_routes_by_type(route_type)
        return self.route_repo.get_all_routes()

    def list_asn_routes(self) -> List[Dict[str, Any]]:
        return self.route_repo.get_all_asn_routes()

    # --- Groups ---

    @log_function_call
    def create_group(self, name: str, description: str = "",
                     created_by: Optional[UserId] = None) -> Dict[str, Any]:
        if not name or not name.strip():
            raise ValidationError("name", str(name), "group name is required")
        group_id = self.route_repo.create_group(name.strip(), description, created_by)
        self.logger.info("Route group created", group_id=group_id, name=name)
        return self.route_repo.get_group(group_id)

    def add_route_to_group(self, group_id: int, route_id: int) -> Dict[str, Any]:
        self._require_group(group_id)
        self._require_route(route_id)
        self.route_repo.add_route_to_group(group_id, route_id)
        return {"message": f"Route {route_id} added to group {group_id}"}

    def remove_route_from_group(self, group_id: int, route_id: int) -> Dict[str, Any]:
        self._require_group(group_id)
        self.route_repo.remove_route_from_group(group_id, route_id)
        return {"message": f"Route {route_id} removed from group {group_id}"}

    def delete_group(self, group_id: int) -> Dict[str, Any]:
        self._require_group(group_id)
        self.route_repo.delete_group(group_id)
        return {"message": f"Route group {group_id} deleted"}

    def list_groups(self) -> List[Dict[str, Any]]:
        return self.route_repo.get_all_groups()

    def get_group_routes(self, group_id: int) -> List[Dict[str, Any]]:
        self._require_group(group_id)
        return self.route_repo.get_group_routes(group_id)

    # --- User assignments ---

    def assign_route_to_user(self, user_id: UserId, route_id: int,
                             actor_id: Optional[UserId] = None) -> Dict[str, Any]:
        self._check_route_permission(user_id, actor_id)
        self._require_route(route_id)
        self.route_repo.assign_route_to_user(user_id, route_id)
        self.logger.info("Route assigned to user", user_id=user_id, route_id=route_id)
        return {"message": f"Route {route_id} assigned to user {user_id}"}

    def unassign_route_from_user(self, user_id: UserId, route_id: int,
                                 actor_id: Optional[UserId] = None) -> Dict[str, Any]:
        self._check_route_permission(user_id, actor_id)
        if not self.route_repo.unassign_route_from_user(user_id, route_id):
            raise NotFoundError("Route assignment", f"{user_id}/{route_id}")
        self.logger.info("Route unassigned from user", user_id=user_id, route_id=route_id)
        return {"message": f"Route {route_id} removed from user {user_id}"}

    def set_user_route_enabled(self, user_id: UserId, route_id: int, enabled: bool,
                               actor_id: Optional[UserId] = None) -> Dict[str, Any]:
        self._check_route_permission(user_id, actor_id)
        if not self.route_repo.set_user_route_enabled(user_id, route_id, enabled):
            raise NotFoundError("Route assignment", f"{user_id}/{route_id}")
        state = "enabled" if enabled else "disabled"
        return {"message": f"Route {route_id} {state} for user {user_id}"}

    def assign_group_to_user(self, user_id: UserId, group_id: int,
                             actor_id: Optional[UserId] = None) -> Dict[str, Any]:
        self._check_route_permission(user_id, actor_id)
        self._require_group(group_id)
        self.route_repo.assign_group_to_user(user_id, group_id)
        self.logger.info("Route group assigned to user", user_id=user_id, group_id=group_id)
        return {"message": f"Group {group_id} assigned to user {user_id}"}

    def unassign_group_from_user(self, user_id: UserId, group_id: int,
                                 actor_id: Optional[UserId] = None) -> Dict[str, Any]:
        self._check_route_permission(user_id, actor_id)
        if not self.route_repo.unassign_group_from_user(user_id, group_id):
            raise NotFoundError("Group assignment", f"{user_id}/{group_id}")
        self.logger.info("Route group unassigned from user", user_id=user_id, group_id=group_id)
        return {"message": f"Group {group_id} removed from user {user_id}"}

    def add_custom_route_for_user(self, user_id: UserId, network: str,
                                  description: str = "") -> Dict[str, Any]:
        """Create a custom route and assign it to the user who asked for it."""
        self._check_route_permission(user_id, None)
        route = self.create_route(network, RouteType.CUSTOM.value, description, created_by=user_id)
        self.assign_route_to_user(user_id, route['id'])
        return route

    def remove_route_for_user(self, user_id: UserId, network: str) -> Dict[str, Any]:
        normalized = normalize_cidr(network)
        for route in self.route_repo.get_user_routes(user_id, enabled_only=False):
            if route['network'] == normalized:
                return self.unassign_route_from_user(user_id, route['id'])
        raise NotFoundError("Route assignment", normalized)

    def _check_route_permission(self, user_id: UserId, actor_id: Optional[UserId]) -> None:
        user = self.user_repo.get_user_by_id(user_id)
        if not user:
            raise UserNotFoundError(user_id)
        actor = user
        if actor_id is not None and actor_id != user_id:
            actor = self.user_repo.get_user_by_id(actor_id)
            if not actor:
                raise UserNotFoundError(actor_id)
            if not get_role_limits(actor['role']).can_manage_users:
                raise PermissionDeniedError("You may only change your own routes")
        if not get_role_limits(actor['role']).can_add_routes:
            raise PermissionDeniedError("Your role is not allowed to manage routes")

    def _require_route(self, route_id: int) -> Dict[str, Any]:
        route = self.route_repo.get_route(route_id)
        if not route:
            raise RouteNotFoundError(route_id)
        return route

    def _require_group(self, group_id: int) -> Dict[str, Any]:
        group = self.route_repo.get_group(group_id)
        if not group:
            raise GroupNotFoundError(group_id)
        return group

    # --- Traffic and sessions ---

    def get_user_traffic(self, user_id: UserId, from_ts: int, to_ts: int) -> List[Dict[str, Any]]:
        if from_ts > to_ts:
            raise ValidationError("from", str(from_ts), "start of range is after its end")
        return self.traffic_repo.get_user_traffic(user_id, from_ts, to_ts)

    def get_total_user_traffic(self, user_id: UserId) -> int:
        return self.traffic_repo.get_total_user_traffic(user_id)

    def get_active_connections(self) -> Dict[UserId, str]:
        return self.traffic_monitor.connections.snapshot()

    def disconnect_user(self, user_id: UserId) -> Dict[str, Any]:
        identifier = self.traffic_monitor.connections.get(user_id)
        if identifier is None:
            raise NotFoundError("Active session for user", user_id)
        self.vpn_server.disconnect_user(identifier)
        return {"message": f"User {identifier} disconnected"}
