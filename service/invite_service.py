import base64
import secrets
import time
from typing import Any, Dict, List, Optional

from core.exceptions import (
    InviteNotFoundError,
    PermissionDeniedError,
    UserAlreadyExistsError,
    UserNotFoundError,
    ValidationError,
)
from core.logging_config import LoggerMixin
from core.role_policy import UNLIMITED, get_role_limits
from core.types import Role, UserId
from data.invite_repository import InviteRepository
from data.user_repository import UserRepository

INVITE_CODE_LENGTH = 16
INVITE_TTL_SECONDS = 7 * 24 * 3600

def generate_code(length: int = INVITE_CODE_LENGTH) -> str:
    """Random URL-safe code of exactly ``length`` characters."""
    raw = base64.urlsafe_b64encode(secrets.token_bytes(length)).decode()
    return raw[:length]

class InviteService(LoggerMixin):
    def __init__(self, invite_repo: InviteRepository, user_repo: UserRepository) -> None:
        self.invite_repo = invite_repo
        self.user_repo = user_repo

    def generate_invite_code(self, user_id: UserId) -> Dict[str, Any]:
        user = self._require_user(user_id)
        limits = get_role_limits(user['role'])
        if limits.max_invites == 0:
            raise PermissionDeniedError("Your role is not allowed to create invites")
        if limits.max_invites != UNLIMITED:
            active = self.invite_repo.count_active_invites(user_id)
            if active >= limits.max_invites:
                raise PermissionDeniedError(
                    f"Invite limit reached ({active}/{limits.max_invites} active invites)"
                )

        code = generate_code()
        expires_at = int(time.time()) + INVITE_TTL_SECONDS
        self.invite_repo.create_invite(code, user_id, expires_at)
        self.logger.info("Invite code generated", user_id=user_id, expires_at=expires_at)
        return self.invite_repo.get_invite_by_code(code)

    @staticmethod
    def is_valid(invite: Dict[str, Any], now: Optional[int] = None) -> bool:
        now = now if now is not None else int(time.time())
        return not invite['expired'] and invite['used_by'] is None and now < invite['expires_at']

    def use_invite_code(self, code: str, username: str, telegram_id: Optional[int] = None) -> Dict[str, Any]:
        """Create a new user from an invite. Admin invites yield users, others vassals."""
        if not username or not username.strip():
            raise ValidationError("username", str(username), "username is required")
        invite = self.invite_repo.get_invite_by_code(code)
        if not invite:
            raise InviteNotFoundError(code)
        if not self.is_valid(invite):
            raise ValidationError("code", code, "invite code is expired or already used")
        if self.user_repo.get_user_by_username(username):
            raise UserAlreadyExistsError(username)
        if telegram_id is not None and self.user_repo.get_user_by_telegram_id(telegram_id):
            raise UserAlreadyExistsError(username)

        inviter = self.user_repo.get_user_by_id(invite['created_by'])
        role = Role.USER.value if inviter and inviter['role'] == Role.ADMIN.value else Role.VASSAL.value

        user_id = self.user_repo.create_user(username, role, telegram_id=telegram_id,
                                             invited_by=invite['created_by'])
        self.invite_repo.mark_used(code, user_id)
        self.logger.info("Invite code used", user_id=user_id, invited_by=invite['created_by'], role=role)
        return self.user_repo.get_user_by_id(user_id)

    def redeem_invite_code(self, user_id: UserId, code: str) -> Dict[str, Any]:
        """Attach an invite to a user who registered through the bot without one."""
        user = self._require_user(user_id)
        if user['invited_by'] is not None:
            raise ValidationError("code", code, "an invite code was already used for this account")
        invite = self.invite_repo.get_invite_by_code(code)
        if not invite:
            raise InviteNotFoundError(code)
        if not self.is_valid(invite):
            raise ValidationError("code", code, "invite code is expired or already used")
        if invite['created_by'] == user_id:
            raise ValidationError("code", code, "you cannot use your own invite code")

        inviter = self.user_repo.get_user_by_id(invite['created_by'])
        if user['role'] == Role.VASSAL.value and inviter and inviter['role'] == Role.ADMIN.value:
            self.user_repo.update_role(user_id, Role.USER.value)
        self.user_repo.update_invited_by(user_id, invite['created_by'])
        self.invite_repo.mark_used(code, user_id)
        self.logger.info("Invite code redeemed", user_id=user_id, invited_by=invite['created_by'])
        return self.user_repo.get_user_by_id(user_id)

    def get_user_invites(self, user_id: UserId) -> List[Dict[str, Any]]:
        return self.invite_repo.get_invites_by_creator(user_id)

    def delete_invite_code(self, user_id: UserId, code: str) -> Dict[str, Any]:
        user = self._require_user(user_id)
        invite = self.invite_repo.get_invite_by_code(code)
        if not invite:
            raise InviteNotFoundError(code)
        if invite['created_by'] != user_id and user['role'] != Role.ADMIN.value:
            raise PermissionDeniedError("Only the creator or an admin can delete this invite")
        self.invite_repo.delete_invite(code)
        return {"message": "Invite code deleted"}

    def expire_stale_invites(self) -> int:
        expired = self.invite_repo.expire_stale_invites()
        if expired:
            self.logger.info("Expired stale invite codes", count=expired)
        return expired

    def get_invite_tree(self, user_id: UserId) -> Dict[UserId, List[Dict[str, Any]]]:
        """
        Users invited by ``user_id``, keyed by inviter id.

        Admins get the full tree below them; other roles see one level.
        """
        user = self._require_user(user_id)
        if not get_role_limits(user['role']).can_view_invite_tree:
            raise PermissionDeniedError("Your role is not allowed to view the invite tree")

        tree: Dict[UserId, List[Dict[str, Any]]] = {}
        recursive = user['role'] == Role.ADMIN.value
        pending = [user_id]
        seen = set()
        while pending:
            current = pending.pop(0)
            if current in seen:
                continue
            seen.add(current)
            invited = self.user_repo.get_users_invited_by(current)
            tree[current] = invited
            if recursive:
                pending.extend(child['id'] for child in invited)
        return tree

    def _require_user(self, user_id: UserId) -> Dict[str, Any]:
        user = self.user_repo.get_user_by_id(user_id)
        if not user:
            raise UserNotFoundError(user_id)
        return user
