import time
from typing import List, Dict, Any, Optional
from .db import Database
from core.types import UserId

class TrafficRepository:
    """Append-only store of per-session traffic samples."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def log_traffic(self, user_id: UserId, byte_count: int, timestamp: Optional[int] = None) -> int:
        query = "INSERT INTO user_traffic (user_id, bytes, timestamp) VALUES (?, ?, ?)"
        return self.db.execute_insert(
            query, (user_id, byte_count, timestamp if timestamp is not None else int(time.time()))
        )

    def get_user_traffic(self, user_id: UserId, from_ts: int, to_ts: int) -> List[Dict[str, Any]]:
        """Samples for a user with from_ts <= timestamp <= to_ts."""
        query = """
        SELECT * FROM user_traffic
        WHERE user_id = ? AND timestamp >= ? AND timestamp <= ?
        ORDER BY timestamp, id
        """
        return self.db.execute_query(query, (user_id, from_ts, to_ts))

    def get_total_user_traffic(self, user_id: UserId) -> int:
        query = "SELECT COALESCE(SUM(bytes), 0) AS total FROM user_traffic WHERE user_id = ?"
        result = self.db.execute_query(query, (user_id,))
        return result[0]['total'] if result else 0

    def get_total_traffic(self) -> int:
        result = self.db.execute_query("SELECT COALESCE(SUM(bytes), 0) AS total FROM user_traffic")
        return result[0]['total'] if result else 0

    def get_daily_traffic(self, days: int = 7) -> List[Dict[str, Any]]:
        """Total bytes per UTC day for the last ``days`` days."""
        since = int(time.time()) - days * 86400
        query = """
        SELECT date(timestamp, 'unixepoch') AS day, COALESCE(SUM(bytes), 0) AS bytes
        FROM user_traffic
        WHERE timestamp >= ?
        GROUP BY day
        ORDER BY day
        """
        return self.db.execute_query(query, (since,))
