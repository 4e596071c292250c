"""
JWT middleware resolving the calling user on every protected request.
"""

from functools import wraps
from typing import Optional, Dict, Any
from flask import request, jsonify, g
from core.dependency_container import get_service
from core.exceptions import AuthenticationError
from service.auth_service import AuthService

class JWTMiddleware:
    """
    Bearer-token authentication and role checks for API endpoints.
    """
    
    @staticmethod
    def require_auth(f):
        """Decorator to require JWT authentication for protected endpoints."""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            token = JWTMiddleware._extract_token(request)
            if not token:
                return jsonify({
                    'success': False,
                    'error': 'Authorization header with Bearer token is required'
                }), 401

            try:
                g.current_user = JWTMiddleware._get_auth_service().verify_token(token)
            except AuthenticationError as e:
                return jsonify({
                    'success': False,
                    'error': str(e)
                }), 401

            return f(*args, **kwargs)
        
        return decorated_function
    
    @staticmethod
    def require_role(role: str):
        """Decorator to require at least the given role. Use after require_auth."""
        def decorator(f):
            @wraps(f)
            def decorated_function(*args, **kwargs):
                current_user = JWTMiddleware.get_current_user()
                if not current_user:
                    return jsonify({
                        'success': False,
                        'error': 'This endpoint requires authentication'
                    }), 401
                
                if not AuthService.check_permission(current_user['role'], role):
                    return jsonify({
                        'success': False,
                        'error': f'This action requires the "{role}" role'
                    }), 403
                
                return f(*args, **kwargs)
            
            return decorated_function
        return decorator
    
    @staticmethod
    def _extract_token(request) -> Optional[str]:
        """Extract JWT token from Authorization header."""
        auth_header = request.headers.get('Authorization')
        
        if not auth_header:
            return None
        
        parts = auth_header.split(' ')
        if len(parts) != 2 or parts[0].lower() != 'bearer':
            return None
        
        return parts[1]
    
    @staticmethod
    def _get_auth_service() -> AuthService:
        return get_service('auth_service')
    
    @staticmethod
    def get_current_user() -> Optional[Dict[str, Any]]:
        """Get current authenticated user from Flask g object."""
        return getattr(g, 'current_user', None)
