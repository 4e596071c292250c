"""
Authentication for the bot and REST layers.

Users authenticate either by their Telegram identity or by presenting the
client certificate the panel issued them. Successful logins receive a JWT.
"""

from typing import Any, Dict, Iterable, Optional

from core.certificate_manager import CertificateManager, get_common_name, parse_certificate
from core.exceptions import AuthenticationError, UserAlreadyExistsError, ValidationError
from core.jwt_service import JWTService
from core.logging_config import LoggerMixin
from core.types import ROLE_HIERARCHY, Role
from data.user_repository import UserRepository
from service.invite_service import InviteService

class AuthService(LoggerMixin):
    def __init__(self, user_repo: UserRepository, invite_service: InviteService,
                 cert_manager: CertificateManager, jwt_service: JWTService,
                 admin_telegram_ids: Optional[Iterable[int]] = None) -> None:
        self.user_repo = user_repo
        self.invite_service = invite_service
        self.cert_manager = cert_manager
        self.jwt_service = jwt_service
        self.admin_telegram_ids = set(admin_telegram_ids or [])

    def register_user_with_telegram(self, telegram_id: int, username: str) -> Dict[str, Any]:
        """Return the user for a Telegram id, creating a vassal on first contact."""
        user = self.user_repo.get_user_by_telegram_id(telegram_id)
        if user:
            self.user_repo.update_last_login(user['id'])
            if telegram_id in self.admin_telegram_ids and user['role'] != Role.ADMIN.value:
                self.user_repo.update_role(user['id'], Role.ADMIN.value)
            return self.user_repo.get_user_by_id(user['id'])

        if not username:
            username = f"tg{telegram_id}"
        if self.user_repo.get_user_by_username(username):
            raise UserAlreadyExistsError(username)

        role = Role.ADMIN.value if telegram_id in self.admin_telegram_ids else Role.VASSAL.value
        user_id = self.user_repo.create_user(username, role, telegram_id=telegram_id)
        self.user_repo.update_last_login(user_id)
        self.logger.info("User registered via Telegram", user_id=user_id, role=role)
        return self.user_repo.get_user_by_id(user_id)

    def authenticate_with_telegram(self, telegram_id: int) -> Dict[str, Any]:
        user = self.user_repo.get_user_by_telegram_id(telegram_id)
        if not user:
            raise AuthenticationError("Unknown Telegram account")
        self.user_repo.update_last_login(user['id'])
        return user

    def register_with_invite(self, code: str, username: str,
                             telegram_id: Optional[int] = None) -> Dict[str, Any]:
        user = self.invite_service.use_invite_code(code, username, telegram_id)
        return {"user": user, **self.issue_token(user)}

    def authenticate_with_certificate(self, certificate_pem: str) -> Dict[str, Any]:
        """Match a presented certificate against the one stored for its common name."""
        try:
            presented = parse_certificate(certificate_pem)
        except ValidationError:
            raise AuthenticationError("Invalid certificate")
        username = get_common_name(presented)
        if not username:
            raise AuthenticationError("Certificate has no common name")

        user = self.user_repo.get_user_by_username(username)
        if not user or not user.get('certificate'):
            raise AuthenticationError("Invalid certificate")
        try:
            stored = parse_certificate(user['certificate'])
        except ValidationError:
            self.logger.error("Stored certificate is unreadable", user_id=user['id'])
            raise AuthenticationError("Invalid certificate")
        if stored.serial_number != presented.serial_number:
            raise AuthenticationError("Invalid certificate")

        self.user_repo.update_last_login(user['id'])
        return user

    def issue_certificate(self, user_id: int) -> Dict[str, str]:
        """Issue a fresh client certificate; it replaces any previous one for login."""
        user = self.user_repo.get_user_by_id(user_id)
        if not user:
            raise AuthenticationError("Unknown user")
        cert_pem, key_pem = self.cert_manager.create_client_certificate(user['username'])
        self.user_repo.update_certificate(user_id, cert_pem)
        return {
            "certificate": cert_pem,
            "private_key": key_pem,
            "ca_certificate": self.cert_manager.get_ca_pem(),
        }

    def issue_token(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return self.jwt_service.generate_token(user['id'], user['username'], user['role'])

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Validate a token and return the user's current identity."""
        payload = self.jwt_service.validate_token(token)
        user = self.user_repo.get_user_by_id(payload['user_id'])
        if not user:
            raise AuthenticationError("User no longer exists")
        return {"user_id": user['id'], "username": user['username'], "role": user['role']}

    @staticmethod
    def check_permission(user_role: str, required_role: str) -> bool:
        """True when ``user_role`` is at least as privileged as ``required_role``."""
        return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, 0) > 0
