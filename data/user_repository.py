import time
from typing import Optional, List, Dict, Any
from .db import Database
from core.types import Username, UserId

class UserRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create_user(
        self,
        username: Username,
        role: str,
        telegram_id: Optional[int] = None,
        invited_by: Optional[UserId] = None,
        certificate: Optional[str] = None,
        traffic_limit: int = 0,
    ) -> UserId:
        query = """
        INSERT INTO users (username, telegram_id, role, certificate, created_at, invited_by, traffic_limit)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """
        return self.db.execute_insert(
            query,
            (username, telegram_id, role, certificate, int(time.time()), invited_by, traffic_limit),
        )

    def get_user_by_id(self, user_id: UserId) -> Optional[Dict[str, Any]]:
        result = self.db.execute_query("SELECT * FROM users WHERE id = ?", (user_id,))
        return result[0] if result else None

    def get_user_by_username(self, username: Username) -> Optional[Dict[str, Any]]:
        result = self.db.execute_query("SELECT * FROM users WHERE username = ?", (username,))
        return result[0] if result else None

    def get_user_by_telegram_id(self, telegram_id: int) -> Optional[Dict[str, Any]]:
        result = self.db.execute_query("SELECT * FROM users WHERE telegram_id = ?", (telegram_id,))
        return result[0] if result else None

    def get_all_users(self) -> List[Dict[str, Any]]:
        """Retrieves all users ordered by id."""
        return self.db.execute_query("SELECT * FROM users ORDER BY id")

    def get_users_invited_by(self, user_id: UserId) -> List[Dict[str, Any]]:
        return self.db.execute_query("SELECT * FROM users WHERE invited_by = ? ORDER BY id", (user_id,))

    def update_role(self, user_id: UserId, role: str) -> bool:
        return self.db.execute_update("UPDATE users SET role = ? WHERE id = ?", (role, user_id)) > 0

    def update_certificate(self, user_id: UserId, certificate: str) -> bool:
        return self.db.execute_update("UPDATE users SET certificate = ? WHERE id = ?", (certificate, user_id)) > 0

    def update_traffic_limit(self, user_id: UserId, traffic_limit: int) -> bool:
        return self.db.execute_update(
            "UPDATE users SET traffic_limit = ? WHERE id = ?", (traffic_limit, user_id)
        ) > 0

    def update_invited_by(self, user_id: UserId, inviter_id: UserId) -> bool:
        return self.db.execute_update("UPDATE users SET invited_by = ? WHERE id = ?", (inviter_id, user_id)) > 0

    def update_last_login(self, user_id: UserId, timestamp: Optional[int] = None) -> bool:
        return self.db.execute_update(
            "UPDATE users SET last_login_at = ? WHERE id = ?",
            (timestamp if timestamp is not None else int(time.time()), user_id),
        ) > 0

    def delete_user(self, user_id: UserId) -> bool:
        return self.db.execute_update("DELETE FROM users WHERE id = ?", (user_id,)) > 0

    def get_total_user_count(self) -> int:
        result = self.db.execute_query("SELECT COUNT(*) AS total FROM users")
        return result[0]['total'] if result else 0
