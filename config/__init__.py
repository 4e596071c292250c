# Configuration module exports
from .paths import VPNPaths, paths
from .app_config import AppConfig, get_config, set_config

__all__ = [
    'AppConfig',
    'VPNPaths',
    'get_config',
    'paths',
    'set_config'
]
