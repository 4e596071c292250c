# Data module exports
from .db import Database
from .schema import initialize_schema
from .user_repository import UserRepository
from .invite_repository import InviteRepository
from .route_repository import RouteRepository
from .traffic_repository import TrafficRepository

__all__ = [
    'Database',
    'initialize_schema',
    'UserRepository',
    'InviteRepository',
    'RouteRepository',
    'TrafficRepository'
]
