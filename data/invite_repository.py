import time
from typing import Optional, List, Dict, Any
from .db import Database
from core.types import UserId

class InviteRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create_invite(self, code: str, created_by: UserId, expires_at: int) -> int:
        query = """
        INSERT INTO invite_codes (code, created_by, created_at, expires_at)
        VALUES (?, ?, ?, ?)
        """
        return self.db.execute_insert(query, (code, created_by, int(time.time()), expires_at))

    def get_invite_by_code(self, code: str) -> Optional[Dict[str, Any]]:
        result = self.db.execute_query("SELECT * FROM invite_codes WHERE code = ?", (code,))
        return result[0] if result else None

    def get_invites_by_creator(self, user_id: UserId) -> List[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM invite_codes WHERE created_by = ? ORDER BY created_at DESC, id DESC",
            (user_id,),
        )

    def count_active_invites(self, user_id: UserId, now: Optional[int] = None) -> int:
        """Counts unused, unexpired invites created by a user."""
        query = """
        SELECT COUNT(*) AS total FROM invite_codes
        WHERE created_by = ? AND used_by IS NULL AND expired = 0 AND expires_at > ?
        """
        result = self.db.execute_query(query, (user_id, now if now is not None else int(time.time())))
        return result[0]['total'] if result else 0

    def mark_used(self, code: str, used_by: UserId, used_at: Optional[int] = None) -> bool:
        query = "UPDATE invite_codes SET used_by = ?, used_at = ?, expired = 1 WHERE code = ?"
        return self.db.execute_update(
            query, (used_by, used_at if used_at is not None else int(time.time()), code)
        ) > 0

    def expire_stale_invites(self, now: Optional[int] = None) -> int:
        query = "UPDATE invite_codes SET expired = 1 WHERE expired = 0 AND expires_at <= ?"
        return self.db.execute_update(query, (now if now is not None else int(time.time()),))

    def delete_invite(self, code: str) -> bool:
        return self.db.execute_update("DELETE FROM invite_codes WHERE code = ?", (code,)) > 0
