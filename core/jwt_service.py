"""
JWT service for API authentication.
"""

import jwt
import uuid
from typing import Dict, Any
from datetime import datetime, timedelta, timezone
from core.exceptions import AuthenticationError, ConfigurationError

MIN_SECRET_LENGTH = 32

class JWTService:
    """
    Issues and validates signed access tokens carrying the user's id, name and role.
    """
    
    def __init__(self, secret_key: str, expiry_minutes: int = 1440):
        self.secret_key = secret_key
        self.algorithm = 'HS256'
        self.expiry_minutes = expiry_minutes
    
    def generate_token(self, user_id: int, username: str, role: str) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        token_id = str(uuid.uuid4())
        
        payload = {
            'jti': token_id,
            'user_id': user_id,
            'username': username,
            'role': role,
            'iat': int(now.timestamp()),
            'exp': int((now + timedelta(minutes=self.expiry_minutes)).timestamp())
        }
        
        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        
        return {
            'token': token,
            'token_id': token_id,
            'expires_in': self.expiry_minutes * 60,
            'expires_at': payload['exp']
        }
    
    def validate_token(self, token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid token")

        for field in ('user_id', 'username', 'role'):
            if field not in payload:
                raise AuthenticationError(f"Token missing required field: {field}")
        return payload
    
    @staticmethod
    def create_service(secret_key: str, expiry_minutes: int = 1440) -> 'JWTService':
        """
        Factory method validating the signing secret.
        """
        if not secret_key:
            raise ConfigurationError("JWT secret is not configured")
        
        if len(secret_key) < MIN_SECRET_LENGTH:
            raise ConfigurationError(f"JWT secret must be at least {MIN_SECRET_LENGTH} characters long")
        
        return JWTService(secret_key, expiry_minutes)
