"""
Registration and login endpoints. All of them return a JWT on success.
"""

from flask import Blueprint, request, jsonify
from core.dependency_container import get_service
from service.auth_service import AuthService

auth_bp = Blueprint('auth', __name__)

def get_auth_service() -> AuthService:
    return get_service('auth_service')

def _missing(fields):
    return jsonify({
        'success': False,
        'error': f"Missing required fields: {', '.join(fields)}"
    }), 400

@auth_bp.route('/register', methods=['POST'])
def register():
    """
    Create an account from an invite code.

    Request body:
    {
        "invite_code": "string",
        "username": "string",
        "telegram_id": int (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    missing = [f for f in ('invite_code', 'username') if not data.get(f)]
    if missing:
        return _missing(missing)

    result = get_auth_service().register_with_invite(
        data['invite_code'], data['username'], data.get('telegram_id')
    )
    return jsonify({
        'success': True,
        'message': 'Registration successful',
        'data': result
    }), 201

@auth_bp.route('/login', methods=['POST'])
def login():
    """
    Authenticate with the PEM client certificate issued by the panel.

    Request body:
    {
        "certificate": "-----BEGIN CERTIFICATE-----..."
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get('certificate'):
        return _missing(['certificate'])

    auth_service = get_auth_service()
    user = auth_service.authenticate_with_certificate(data['certificate'])
    return jsonify({
        'success': True,
        'data': {'user_id': user['id'], 'role': user['role'], **auth_service.issue_token(user)}
    }), 200

@auth_bp.route('/telegram', methods=['POST'])
def telegram_login():
    """
    Register or log in with a Telegram identity.

    Request body:
    {
        "telegram_id": int,
        "username": "string"
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get('telegram_id'):
        return _missing(['telegram_id'])
    try:
        telegram_id = int(data['telegram_id'])
    except (TypeError, ValueError):
        return jsonify({'success': False, 'error': 'telegram_id must be an integer'}), 400

    auth_service = get_auth_service()
    user = auth_service.register_user_with_telegram(telegram_id, data.get('username', ''))
    return jsonify({
        'success': True,
        'data': {'user_id': user['id'], 'role': user['role'], **auth_service.issue_token(user)}
    }), 200
