"""
Centralized application configuration management.
Provides type-safe configuration with environment variable support.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from pathlib import Path
from dotenv import load_dotenv

from core.exceptions import ConfigurationError
from .paths import VPNPaths

def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]

@dataclass
class DatabaseConfig:
    """Database configuration settings."""
    path: str = field(default_factory=VPNPaths.get_database_file)

@dataclass
class JWTConfig:
    """Token signing settings."""
    secret: Optional[str] = None
    expiry_minutes: int = 1440

@dataclass
class VPNConfig:
    """OpenConnect daemon settings."""
    listen_ip: str = "0.0.0.0"
    listen_port: int = 443
    cert_directory: str = field(default_factory=VPNPaths.get_cert_dir)
    ca_common_name: str = "OCPanel CA"
    server_common_name: str = "vpn.example.com"
    organization: str = "OCPanel"
    country: str = "US"
    default_routes: List[str] = field(default_factory=list)
    default_asn_routes: List[int] = field(default_factory=list)
    binary: str = "ocserv"
    occtl_binary: str = "occtl"
    stop_timeout: float = 5.0
    traffic_check_interval: int = 300

@dataclass
class TelegramConfig:
    """Chat bot settings."""
    token: Optional[str] = None
    admin_ids: List[int] = field(default_factory=list)

    @property
    def enabled(self) -> bool:
        return bool(self.token)

@dataclass
class APIConfig:
    """REST server settings."""
    host: str = "0.0.0.0"
    port: int = 8080
    threads: int = 0
    shutdown_timeout: int = 10
    secret_key: Optional[str] = None

@dataclass
class MonitoringConfig:
    """Monitoring configuration settings."""
    log_level: str = "INFO"
    log_format: str = "json"
    history_days: int = 7

@dataclass
class AppConfig:
    """Main application configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    jwt: JWTConfig = field(default_factory=JWTConfig)
    vpn: VPNConfig = field(default_factory=VPNConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    api: APIConfig = field(default_factory=APIConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    
    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'AppConfig':
        """Load configuration from environment variables."""
        if env_file and os.path.exists(env_file):
            load_dotenv(env_file)
        
        try:
            return cls(
                database=DatabaseConfig(
                    path=os.getenv("DATABASE_FILE", VPNPaths.get_database_file())
                ),
                jwt=JWTConfig(
                    secret=os.getenv("JWT_SECRET"),
                    expiry_minutes=int(os.getenv("JWT_EXPIRY_MINUTES", "1440"))
                ),
                vpn=VPNConfig(
                    listen_ip=os.getenv("VPN_LISTEN_IP", "0.0.0.0"),
                    listen_port=int(os.getenv("VPN_LISTEN_PORT", "443")),
                    cert_directory=os.getenv("VPN_CERT_DIR", VPNPaths.get_cert_dir()),
                    ca_common_name=os.getenv("VPN_CA_COMMON_NAME", "OCPanel CA"),
                    server_common_name=os.getenv("VPN_SERVER_COMMON_NAME", "vpn.example.com"),
                    organization=os.getenv("VPN_ORGANIZATION", "OCPanel"),
                    country=os.getenv("VPN_COUNTRY", "US"),
                    default_routes=_split_list(os.getenv("VPN_DEFAULT_ROUTES")),
                    default_asn_routes=[int(asn) for asn in _split_list(os.getenv("VPN_DEFAULT_ASN_ROUTES"))],
                    binary=os.getenv("OCSERV_BINARY", "ocserv"),
                    occtl_binary=os.getenv("OCCTL_BINARY", "occtl"),
                    stop_timeout=float(os.getenv("OCSERV_STOP_TIMEOUT", "5")),
                    traffic_check_interval=int(os.getenv("TRAFFIC_CHECK_INTERVAL", "300"))
                ),
                telegram=TelegramConfig(
                    token=os.getenv("TELEGRAM_TOKEN"),
                    admin_ids=[int(i) for i in _split_list(os.getenv("TELEGRAM_ADMIN_IDS"))]
                ),
                api=APIConfig(
                    host=os.getenv("API_HOST", "0.0.0.0"),
                    port=int(os.getenv("API_PORT", "8080")),
                    threads=int(os.getenv("API_THREADS", "0")),
                    shutdown_timeout=int(os.getenv("API_SHUTDOWN_TIMEOUT", "10")),
                    secret_key=os.getenv("API_SECRET_KEY")
                ),
                monitoring=MonitoringConfig(
                    log_level=os.getenv("LOG_LEVEL", "INFO"),
                    log_format=os.getenv("LOG_FORMAT", "json"),
                    history_days=int(os.getenv("TRAFFIC_HISTORY_DAYS", "7"))
                )
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}")
    
    def validate(self) -> None:
        """Validate configuration settings."""
        if not self.jwt.secret:
            raise ConfigurationError("JWT_SECRET is required")
        if len(self.jwt.secret) < 32:
            raise ConfigurationError("JWT_SECRET must be at least 32 characters long")
        if not 0 < self.vpn.listen_port < 65536:
            raise ConfigurationError(f"VPN_LISTEN_PORT out of range: {self.vpn.listen_port}")
        if self.vpn.traffic_check_interval <= 0:
            raise ConfigurationError("TRAFFIC_CHECK_INTERVAL must be positive")
        if self.monitoring.log_format not in ("json", "console"):
            raise ConfigurationError(f"LOG_FORMAT must be json or console, got {self.monitoring.log_format!r}")
        
        # Ensure database directory exists
        db_path = Path(self.database.path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

# Global configuration instance
_config: Optional[AppConfig] = None

def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env(VPNPaths.get_env_file())
    return _config

def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
