# Core module exports
from .types import *
from .exceptions import *

__all__ = [
    'Role',
    'RouteType',
    'VPNManagerError',
    'NotFoundError',
    'UserNotFoundError',
    'ValidationError',
    'AuthorizationError',
    'PermissionDeniedError',
    'ServiceError',
    'DatabaseError',
    'ConfigurationError'
]
