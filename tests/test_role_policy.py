from core.role_policy import UNLIMITED, RoleLimits, get_role_limits
from core.types import Role


def test_admin_has_every_capability():
    limits = get_role_limits(Role.ADMIN)

    assert limits.max_invites == UNLIMITED
    assert limits.max_vpn_connections == UNLIMITED
    assert limits.can_add_routes
    assert limits.can_manage_users
    assert limits.can_view_logs
    assert limits.can_override_admin_routes


def test_user_limits():
    limits = get_role_limits("user")

    assert limits.max_invites == 4
    assert limits.max_vpn_connections == 1
    assert limits.can_add_routes
    assert limits.can_manage_invites
    assert not limits.can_manage_users
    assert not limits.can_view_logs


def test_vassal_cannot_invite_or_route():
    limits = get_role_limits(Role.VASSAL.value)

    assert limits.max_invites == 0
    assert limits.max_vpn_connections == 1
    assert not limits.can_add_routes
    assert not limits.can_manage_invites
    assert not limits.can_view_invite_tree


def test_unknown_role_gets_no_capabilities():
    assert get_role_limits("superuser") == RoleLimits()


def test_privilege_is_monotonic_across_roles():
    admin, user, vassal = (get_role_limits(r) for r in ("admin", "user", "vassal"))
    flags = [name for name, value in vars(RoleLimits()).items() if isinstance(value, bool)]

    for flag in flags:
        assert getattr(admin, flag) >= getattr(user, flag) >= getattr(vassal, flag), flag


def test_policy_is_referentially_transparent():
    assert get_role_limits("user") == get_role_limits(Role.USER)
    assert get_role_limits("user") is get_role_limits("user")
