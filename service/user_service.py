from dataclasses import asdict
from typing import Dict, Any, List

from core.exceptions import PermissionDeniedError, UserNotFoundError, ValidationError
from core.logging_config import LoggerMixin, log_function_call
from core.role_policy import get_role_limits
from core.types import Role, UserId
from data.traffic_repository import TrafficRepository
from data.user_repository import UserRepository

ROLE_LADDER = [Role.VASSAL.value, Role.USER.value, Role.ADMIN.value]

class UserService(LoggerMixin):
    def __init__(self, user_repo: UserRepository, traffic_repo: TrafficRepository):
        self.user_repo = user_repo
        self.traffic_repo = traffic_repo

    def get_user(self, user_id: UserId) -> Dict[str, Any]:
        user = self.user_repo.get_user_by_id(user_id)
        if not user:
            raise UserNotFoundError(user_id)
        return user

    def get_user_info(self, user_id: UserId) -> Dict[str, Any]:
        user = self.get_user(user_id)
        limits = get_role_limits(user['role'])
        return {
            "id": user['id'],
            "username": user['username'],
            "role": user['role'],
            "telegram_id": user['telegram_id'],
            "created_at": user['created_at'],
            "last_login_at": user['last_login_at'],
            "invited_by": user['invited_by'],
            "traffic_limit": user['traffic_limit'],
            "traffic_used": self.traffic_repo.get_total_user_traffic(user_id),
            "has_certificate": bool(user['certificate']),
            "limits": asdict(limits),
        }

    def get_all_users(self, actor_id: UserId) -> List[Dict[str, Any]]:
        self._require_manager(actor_id)
        return self.user_repo.get_all_users()

    @log_function_call
    def set_user_role(self, actor_id: UserId, user_id: UserId, role: str) -> Dict[str, Any]:
        actor = self.get_user(actor_id)
        if actor['role'] != Role.ADMIN.value:
            raise PermissionDeniedError("Only admins can change roles")
        if role not in [r.value for r in Role]:
            raise ValidationError("role", role, "unknown role")
        user = self.get_user(user_id)
        self.user_repo.update_role(user_id, role)
        self.logger.info("User role changed", user_id=user_id, old_role=user['role'], new_role=role)
        return {"message": f"User '{user['username']}' is now {role}"}

    @log_function_call
    def set_traffic_limit(self, actor_id: UserId, user_id: UserId, limit_bytes: int) -> Dict[str, Any]:
        self._require_manager(actor_id)
        if limit_bytes < 0:
            raise ValidationError("traffic_limit", str(limit_bytes), "must be non-negative")
        user = self.get_user(user_id)
        self.user_repo.update_traffic_limit(user_id, limit_bytes)
        return {"message": f"Traffic limit for '{user['username']}' set to {limit_bytes} bytes"}

    @log_function_call
    def delete_user(self, actor_id: UserId, user_id: UserId) -> Dict[str, Any]:
        self._require_manager(actor_id)
        if actor_id == user_id:
            raise ValidationError("user_id", str(user_id), "cannot delete yourself")
        user = self.get_user(user_id)
        self.user_repo.delete_user(user_id)
        self.logger.info("User deleted", user_id=user_id, username=user['username'])
        return {"message": f"User '{user['username']}' deleted successfully"}

    def promote_user(self, actor_id: UserId, user_id: UserId) -> Dict[str, Any]:
        return self._shift_role(actor_id, user_id, 1)

    def demote_user(self, actor_id: UserId, user_id: UserId) -> Dict[str, Any]:
        return self._shift_role(actor_id, user_id, -1)

    def _shift_role(self, actor_id: UserId, user_id: UserId, step: int) -> Dict[str, Any]:
        user = self.get_user(user_id)
        if user['role'] not in ROLE_LADDER:
            raise ValidationError("role", user['role'], "unknown role")
        index = ROLE_LADDER.index(user['role']) + step
        if not 0 <= index < len(ROLE_LADDER):
            direction = "promoted" if step > 0 else "demoted"
            raise ValidationError("role", user['role'], f"user cannot be {direction} further")
        return self.set_user_role(actor_id, user_id, ROLE_LADDER[index])

    def _require_manager(self, actor_id: UserId) -> Dict[str, Any]:
        actor = self.get_user(actor_id)
        if not get_role_limits(actor['role']).can_manage_users:
            raise PermissionDeniedError("Your role is not allowed to manage users")
        return actor
