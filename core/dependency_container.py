from typing import Dict, Any, Optional, TypeVar, Callable
from config.app_config import AppConfig
from data.db import Database
from data.schema import initialize_schema
from data.user_repository import UserRepository
from data.invite_repository import InviteRepository
from data.route_repository import RouteRepository
from data.traffic_repository import TrafficRepository
from service.user_service import UserService
from service.auth_service import AuthService
from service.invite_service import InviteService
from service.vpn_service import VPNService
from service.traffic_monitor import TrafficMonitor
from service.monitor_service import MonitorService
from core.jwt_service import JWTService
from core.certificate_manager import CertificateManager
from core.openconnect_server import OpenConnectServer
T = TypeVar('T')

class DependencyContainer:
    def __init__(self):
        self._instances: Dict[str, Any] = {}
        self._factories: Dict[str, Callable[[], Any]] = {}
        self._config: Optional[AppConfig] = None
    
    def register_config(self, config: AppConfig) -> None:
        self._config = config
        self._instances['config'] = config

    def register_singleton(self, name: str, factory: Callable[[], T]) -> None:
        self._factories[name] = factory
    
    def get(self, name: str) -> T:
        if name in self._instances:
            return self._instances[name]
        if name in self._factories:
            instance = self._factories[name]()
            self._instances[name] = instance
            return instance
        raise KeyError(f"Dependency '{name}' not registered")

    def register_core_dependencies(self) -> None:
        self.register_singleton('database', self._create_database)
        self.register_singleton('user_repository', self._create_user_repository)
        self.register_singleton('invite_repository', self._create_invite_repository)
        self.register_singleton('route_repository', self._create_route_repository)
        self.register_singleton('traffic_repository', self._create_traffic_repository)
        self.register_singleton('jwt_service', self._create_jwt_service)
        self.register_singleton('certificate_manager', self._create_certificate_manager)
        self.register_singleton('vpn_server', self._create_vpn_server)

    def register_service_dependencies(self) -> None:
        self.register_singleton('traffic_monitor', self._create_traffic_monitor)
        self.register_singleton('vpn_service', self._create_vpn_service)
        self.register_singleton('user_service', self._create_user_service)
        self.register_singleton('invite_service', self._create_invite_service)
        self.register_singleton('auth_service', self._create_auth_service)
        self.register_singleton('monitor_service', self._create_monitor_service)

    def _create_database(self) -> Database:
        db = Database(self._config.database.path)
        initialize_schema(db)
        return db

    def _create_user_repository(self) -> UserRepository:
        return UserRepository(self.get('database'))

    def _create_invite_repository(self) -> InviteRepository:
        return InviteRepository(self.get('database'))

    def _create_route_repository(self) -> RouteRepository:
        return RouteRepository(self.get('database'))

    def _create_traffic_repository(self) -> TrafficRepository:
        return TrafficRepository(self.get('database'))

    def _create_jwt_service(self) -> JWTService:
        return JWTService.create_service(self._config.jwt.secret, self._config.jwt.expiry_minutes)

    def _create_certificate_manager(self) -> CertificateManager:
        vpn = self._config.vpn
        return CertificateManager(
            vpn.cert_directory,
            ca_common_name=vpn.ca_common_name,
            server_common_name=vpn.server_common_name,
            organization=vpn.organization,
            country=vpn.country,
        )

    def _create_vpn_server(self) -> OpenConnectServer:
        vpn = self._config.vpn
        certs = self.get('certificate_manager')
        return OpenConnectServer(
            listen_ip=vpn.listen_ip,
            listen_port=vpn.listen_port,
            cert_file=certs.server_cert_path,
            key_file=certs.server_key_path,
            ca_file=certs.ca_cert_path,
            binary=vpn.binary,
            occtl_binary=vpn.occtl_binary,
            stop_timeout=vpn.stop_timeout,
        )

    def _create_traffic_monitor(self) -> TrafficMonitor:
        return TrafficMonitor(
            self.get('vpn_server'),
            self.get('user_repository'),
            self.get('traffic_repository'),
            interval=self._config.vpn.traffic_check_interval,
        )

    def _create_vpn_service(self) -> VPNService:
        return VPNService(
            self.get('user_repository'),
            self.get('route_repository'),
            self.get('traffic_repository'),
            self.get('vpn_server'),
            self.get('traffic_monitor'),
            config=self._config.vpn,
        )

    def _create_user_service(self) -> UserService:
        return UserService(self.get('user_repository'), self.get('traffic_repository'))

    def _create_invite_service(self) -> InviteService:
        return InviteService(self.get('invite_repository'), self.get('user_repository'))

    def _create_auth_service(self) -> AuthService:
        return AuthService(
            self.get('user_repository'),
            self.get('invite_service'),
            self.get('certificate_manager'),
            self.get('jwt_service'),
            admin_telegram_ids=self._config.telegram.admin_ids,
        )

    def _create_monitor_service(self) -> MonitorService:
        return MonitorService(
            self.get('vpn_server'),
            self.get('traffic_monitor'),
            self.get('user_repository'),
            self.get('traffic_repository'),
            history_days=self._config.monitoring.history_days,
        )

    def cleanup(self) -> None:
        database = self._instances.get('database')
        if database:
            Database.close_all(database.db_file)
        self._instances.clear()
        self._factories.clear()

_container = DependencyContainer()

def get_container() -> DependencyContainer:
    return _container

def initialize_container(config: AppConfig) -> DependencyContainer:
    container = get_container()
    container.register_config(config)
    container.register_core_dependencies()
    container.register_service_dependencies()
    return container

def get_service(service_name: str) -> Any:
    return get_container().get(service_name)

def cleanup_container() -> None:
    get_container().cleanup()
