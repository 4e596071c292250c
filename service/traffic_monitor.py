"""
Periodic traffic accounting and quota enforcement.

Every tick the monitor lists live daemon sessions, maps each session to a
stored user, appends a traffic sample and disconnects the session once the
user's cumulative usage exceeds their traffic limit. Disconnection is
session-level only; the user may reconnect.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional

from core.exceptions import VPNManagerError
from core.logging_config import LoggerMixin, log_performance
from core.rwlock import ReadWriteLock
from core.types import UserId
from data.traffic_repository import TrafficRepository
from data.user_repository import UserRepository

DEFAULT_INTERVAL = 300

class ActiveConnections:
    """User id to session identifier map shared with status readers."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._sessions: Dict[UserId, str] = {}

    def replace(self, sessions: Optional[Dict[UserId, str]] = None) -> None:
        with self._lock.write_locked():
            self._sessions = dict(sessions or {})

    def record(self, user_id: UserId, identifier: str) -> None:
        with self._lock.write_locked():
            self._sessions[user_id] = identifier

    def get(self, user_id: UserId) -> Optional[str]:
        with self._lock.read_locked():
            return self._sessions.get(user_id)

    def snapshot(self) -> Dict[UserId, str]:
        with self._lock.read_locked():
            return dict(self._sessions)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._sessions)

class TrafficMonitor(LoggerMixin):
    def __init__(
        self,
        vpn_server,
        user_repo: UserRepository,
        traffic_repo: TrafficRepository,
        interval: int = DEFAULT_INTERVAL,
        connections: Optional[ActiveConnections] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.vpn_server = vpn_server
        self.user_repo = user_repo
        self.traffic_repo = traffic_repo
        self.interval = interval
        self.connections = connections if connections is not None else ActiveConnections()
        self.clock = clock
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self, stop_event: Optional[threading.Event] = None) -> None:
        if self._thread and self._thread.is_alive():
            self.logger.warning("Traffic monitor is already running")
            return
        self._stop_event = stop_event if stop_event is not None else threading.Event()
        self._thread = threading.Thread(target=self._run, name="traffic-monitor", daemon=True)
        self._thread.start()
        self.logger.info("Traffic monitor started", interval=self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.logger.info("Traffic monitor stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.run_tick()
            except Exception as e:
                self.logger.error("Traffic tick failed", error=str(e), error_type=type(e).__name__)

    @log_performance
    def run_tick(self) -> Dict[str, Any]:
        """Run one accounting pass. Overlapping calls are skipped."""
        summary: Dict[str, Any] = {"sessions": 0, "sampled": 0, "disconnected": [], "skipped": False}
        if not self._tick_lock.acquire(blocking=False):
            self.logger.warning("Previous traffic tick still running, skipping")
            summary["skipped"] = True
            return summary
        try:
            try:
                identifiers = self.vpn_server.get_active_connections()
            except VPNManagerError as e:
                self.logger.error("Failed to list active sessions", error=str(e))
                summary["skipped"] = True
                return summary

            self.connections.replace()
            summary["sessions"] = len(identifiers)
            for identifier in identifiers:
                user = self._process_session(identifier)
                if user is None:
                    continue
                summary["sampled"] += 1
                if self._enforce_quota(user, identifier):
                    summary["disconnected"].append(identifier)
            return summary
        finally:
            self._tick_lock.release()

    def _process_session(self, identifier: str) -> Optional[Dict[str, Any]]:
        try:
            user = self.user_repo.get_user_by_username(identifier)
        except VPNManagerError as e:
            self.logger.warning("Failed to look up session user", identifier=identifier, error=str(e))
            return None
        if not user:
            self.logger.warning("Session does not match any user", identifier=identifier)
            return None

        self.connections.record(user['id'], identifier)

        try:
            bytes_in, bytes_out = self.vpn_server.get_user_traffic(identifier)
        except VPNManagerError as e:
            self.logger.warning("Failed to read session traffic", identifier=identifier, error=str(e))
            return None

        try:
            self.traffic_repo.log_traffic(user['id'], bytes_in + bytes_out, int(self.clock()))
        except VPNManagerError as e:
            # The quota is still checked against what is already stored.
            self.logger.warning("Failed to store traffic sample", user_id=user['id'], error=str(e))
        return user

    def _enforce_quota(self, user: Dict[str, Any], identifier: str) -> bool:
        limit = user.get('traffic_limit') or 0
        if limit <= 0:
            return False
        try:
            total = self.traffic_repo.get_total_user_traffic(user['id'])
        except VPNManagerError as e:
            self.logger.warning("Failed to read traffic total", user_id=user['id'], error=str(e))
            return False
        if total <= limit:
            return False
        try:
            self.vpn_server.disconnect_user(identifier)
        except VPNManagerError as e:
            self.logger.error("Failed to disconnect user over quota", user_id=user['id'], error=str(e))
            return False
        self.logger.info("User disconnected for exceeding traffic limit",
                         user_id=user['id'], total=total, limit=limit)
        return True
