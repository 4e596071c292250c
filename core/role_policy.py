"""
Capability sets per user role.
"""

from dataclasses import dataclass

from core.types import Role

UNLIMITED = -1

@dataclass(frozen=True)
class RoleLimits:
    max_invites: int = 0
    max_vpn_connections: int = 0
    can_add_routes: bool = False
    can_view_logs: bool = False
    can_manage_users: bool = False
    can_manage_invites: bool = False
    can_view_invite_tree: bool = False
    can_override_admin_routes: bool = False

_ROLE_LIMITS = {
    Role.ADMIN.value: RoleLimits(
        max_invites=UNLIMITED,
        max_vpn_connections=UNLIMITED,
        can_add_routes=True,
        can_view_logs=True,
        can_manage_users=True,
        can_manage_invites=True,
        can_view_invite_tree=True,
        can_override_admin_routes=True,
    ),
    Role.USER.value: RoleLimits(
        max_invites=4,
        max_vpn_connections=1,
        can_add_routes=True,
        can_manage_invites=True,
        can_view_invite_tree=True,
    ),
    Role.VASSAL.value: RoleLimits(
        max_invites=0,
        max_vpn_connections=1,
    ),
}

def get_role_limits(role) -> RoleLimits:
    """Return the capability set for a role. Unknown roles get nothing."""
    if isinstance(role, Role):
        role = role.value
    return _ROLE_LIMITS.get(role, RoleLimits())
