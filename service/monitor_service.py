import time
from typing import Any, Dict

import psutil

from core.logging_config import LoggerMixin
from data.traffic_repository import TrafficRepository
from data.user_repository import UserRepository

class MonitorService(LoggerMixin):
    """Read-only status view over the daemon, live sessions and stored traffic."""

    def __init__(self, vpn_server, traffic_monitor, user_repo: UserRepository,
                 traffic_repo: TrafficRepository, history_days: int = 7) -> None:
        self.vpn_server = vpn_server
        self.traffic_monitor = traffic_monitor
        self.user_repo = user_repo
        self.traffic_repo = traffic_repo
        self.history_days = history_days
        self.started_at = time.time()

    def get_status(self) -> Dict[str, Any]:
        memory = psutil.virtual_memory()
        return {
            "server_state": self.vpn_server.state.value,
            "enforcement_running": self.traffic_monitor.is_running(),
            "active_connections": len(self.traffic_monitor.connections),
            "total_users": self.user_repo.get_total_user_count(),
            "total_traffic": self.traffic_repo.get_total_traffic(),
            "daily_traffic": self.traffic_repo.get_daily_traffic(self.history_days),
            "system": {
                "cpu_percent": psutil.cpu_percent(interval=None),
                "memory_percent": memory.percent,
                "memory_used_mb": memory.used / (1024 * 1024),
                "uptime_seconds": int(time.time() - self.started_at),
            },
        }
