import time
from typing import Optional, List, Dict, Any
from .db import Database
from core.types import UserId, CIDR

class RouteRepository:
    """Routes, ASN routes, route groups and their assignments to users."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # --- Routes ---

    def create_route(self, network: CIDR, route_type: str, description: str = "",
                     created_by: Optional[UserId] = None) -> int:
        query = """
        INSERT INTO routes (network, description, type, created_by, created_at)
        VALUES (?, ?, ?, ?, ?)
        """
        return self.db.execute_insert(query, (network, description, route_type, created_by, int(time.time())))

    def get_route(self, route_id: int) -> Optional[Dict[str, Any]]:
        result = self.db.execute_query("SELECT * FROM routes WHERE id = ?", (route_id,))
        return result[0] if result else None

    def get_routes_by_network(self, network: CIDR) -> List[Dict[str, Any]]:
        return self.db.execute_query("SELECT * FROM routes WHERE network = ? ORDER BY id", (network,))

    def get_all_routes(self) -> List[Dict[str, Any]]:
        return self.db.execute_query("SELECT * FROM routes ORDER BY id")

    def get_routes_by_type(self, route_type: str) -> List[Dict[str, Any]]:
        return self.db.execute_query("SELECT * FROM routes WHERE type = ? ORDER BY id", (route_type,))

    def delete_route(self, route_id: int) -> bool:
        return self.db.execute_update("DELETE FROM routes WHERE id = ?", (route_id,)) > 0

    # --- ASN routes ---

    def create_asn_route(self, asn: int, route_type: str, description: str = "",
                         created_by: Optional[UserId] = None) -> int:
        query = """
        INSERT INTO asn_routes (asn, description, type, created_by, created_at)
        VALUES (?, ?, ?, ?, ?)
        """
        return self.db.execute_insert(query, (asn, description, route_type, created_by, int(time.time())))

    def get_asn_route(self, asn_route_id: int) -> Optional[Dict[str, Any]]:
        result = self.db.execute_query("SELECT * FROM asn_routes WHERE id = ?", (asn_route_id,))
        return result[0] if result else None

    def get_all_asn_routes(self) -> List[Dict[str, Any]]:
        return self.db.execute_query("SELECT * FROM asn_routes ORDER BY id")

    def get_asn_routes_by_type(self, route_type: str) -> List[Dict[str, Any]]:
        return self.db.execute_query("SELECT * FROM asn_routes WHERE type = ? ORDER BY id", (route_type,))

    def delete_asn_route(self, asn_route_id: int) -> bool:
        return self.db.execute_update("DELETE FROM asn_routes WHERE id = ?", (asn_route_id,)) > 0

    # --- Groups ---

    def create_group(self, name: str, description: str = "", created_by: Optional[UserId] = None) -> int:
        query = """
        INSERT INTO route_groups (name, description, created_by, created_at)
        VALUES (?, ?, ?, ?)
        """
        return self.db.execute_insert(query, (name, description, created_by, int(time.time())))

    def get_group(self, group_id: int) -> Optional[Dict[str, Any]]:
        result = self.db.execute_query("SELECT * FROM route_groups WHERE id = ?", (group_id,))
        return result[0] if result else None

    def get_all_groups(self) -> List[Dict[str, Any]]:
        return self.db.execute_query("SELECT * FROM route_groups ORDER BY id")

    def delete_group(self, group_id: int) -> bool:
        return self.db.execute_update("DELETE FROM route_groups WHERE id = ?", (group_id,)) > 0

    def add_route_to_group(self, group_id: int, route_id: int) -> None:
        self.db.execute_query(
            "INSERT OR IGNORE INTO route_group_items (group_id, route_id) VALUES (?, ?)",
            (group_id, route_id),
        )

    def remove_route_from_group(self, group_id: int, route_id: int) -> bool:
        return self.db.execute_update(
            "DELETE FROM route_group_items WHERE group_id = ? AND route_id = ?", (group_id, route_id)
        ) > 0

    def get_group_routes(self, group_id: int) -> List[Dict[str, Any]]:
        query = """
        SELECT r.* FROM routes r
        JOIN route_group_items i ON i.route_id = r.id
        WHERE i.group_id = ?
        ORDER BY r.id
        """
        return self.db.execute_query(query, (group_id,))

    # --- User assignments ---

    def assign_route_to_user(self, user_id: UserId, route_id: int, enabled: bool = True) -> None:
        query = """
        INSERT INTO user_routes (user_id, route_id, enabled, created_at) VALUES (?, ?, ?, ?)
        ON CONFLICT(user_id, route_id) DO UPDATE SET enabled = excluded.enabled
        """
        self.db.execute_query(query, (user_id, route_id, int(enabled), int(time.time())))

    def unassign_route_from_user(self, user_id: UserId, route_id: int) -> bool:
        return self.db.execute_update(
            "DELETE FROM user_routes WHERE user_id = ? AND route_id = ?", (user_id, route_id)
        ) > 0

    def set_user_route_enabled(self, user_id: UserId, route_id: int, enabled: bool) -> bool:
        return self.db.execute_update(
            "UPDATE user_routes SET enabled = ? WHERE user_id = ? AND route_id = ?",
            (int(enabled), user_id, route_id),
        ) > 0

    def get_user_routes(self, user_id: UserId, enabled_only: bool = True) -> List[Dict[str, Any]]:
        query = """
        SELECT r.* FROM routes r
        JOIN user_routes ur ON ur.route_id = r.id
        WHERE ur.user_id = ?
        """
        if enabled_only:
            query += " AND ur.enabled = 1"
        query += " ORDER BY ur.created_at, r.id"
        return self.db.execute_query(query, (user_id,))

    def assign_group_to_user(self, user_id: UserId, group_id: int, enabled: bool = True) -> None:
        query = """
        INSERT INTO user_route_groups (user_id, group_id, enabled, created_at) VALUES (?, ?, ?, ?)
        ON CONFLICT(user_id, group_id) DO UPDATE SET enabled = excluded.enabled
        """
        self.db.execute_query(query, (user_id, group_id, int(enabled), int(time.time())))

    def unassign_group_from_user(self, user_id: UserId, group_id: int) -> bool:
        return self.db.execute_update(
            "DELETE FROM user_route_groups WHERE user_id = ? AND group_id = ?", (user_id, group_id)
        ) > 0

    def set_user_group_enabled(self, user_id: UserId, group_id: int, enabled: bool) -> bool:
        return self.db.execute_update(
            "UPDATE user_route_groups SET enabled = ? WHERE user_id = ? AND group_id = ?",
            (int(enabled), user_id, group_id),
        ) > 0

    def get_user_groups(self, user_id: UserId, enabled_only: bool = True) -> List[Dict[str, Any]]:
        query = """
        SELECT g.* FROM route_groups g
        JOIN user_route_groups ug ON ug.group_id = g.id
        WHERE ug.user_id = ?
        """
        if enabled_only:
            query += " AND ug.enabled = 1"
        query += " ORDER BY ug.created_at, g.id"
        return self.db.execute_query(query, (user_id,))
