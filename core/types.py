"""
Type definitions for the OpenConnect panel.
Provides type safety and better IDE support.
"""

from typing import Dict, List, Any, Tuple
from enum import Enum

Username = str
CIDR = str
IPAddress = str
Port = int
UserId = int

class Role(str, Enum):
    """User roles, ordered from most to least privileged."""
    ADMIN = "admin"
    USER = "user"
    VASSAL = "vassal"

class RouteType(str, Enum):
    """Kinds of routes the panel manages."""
    DEFAULT = "default"
    CUSTOM = "custom"
    ASN = "asn"
    BLOCKED = "blocked"

ROLE_HIERARCHY: Dict[str, int] = {
    Role.ADMIN.value: 3,
    Role.USER.value: 2,
    Role.VASSAL.value: 1,
}

TrafficCounters = Tuple[int, int]
DatabaseRow = Dict[str, Any]
DatabaseResult = List[DatabaseRow]
