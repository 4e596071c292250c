from flask import Blueprint, request, jsonify
from api.middleware.jwt_middleware import JWTMiddleware
from core.dependency_container import get_service
from core.types import Role
from service.monitor_service import MonitorService
from service.user_service import UserService
from service.vpn_service import VPNService

admin_bp = Blueprint('admin', __name__)

def get_vpn_service() -> VPNService:
    return get_service('vpn_service')

def get_user_service() -> UserService:
    return get_service('user_service')

def get_monitor_service() -> MonitorService:
    return get_service('monitor_service')

def _current_user_id() -> int:
    return JWTMiddleware.get_current_user()['user_id']

@admin_bp.route('/connections', methods=['GET'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def get_connections():
    connections = get_vpn_service().get_active_connections()
    return jsonify({
        'success': True,
        'data': [{'user_id': uid, 'session': name} for uid, name in connections.items()]
    }), 200

@admin_bp.route('/disconnect/<int:user_id>', methods=['POST'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def disconnect(user_id: int):
    result = get_vpn_service().disconnect_user(user_id)
    return jsonify({'success': True, **result}), 200

@admin_bp.route('/users', methods=['GET'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def list_users():
    users = get_user_service().get_all_users(_current_user_id())
    return jsonify({'success': True, 'data': users}), 200

@admin_bp.route('/users/<int:user_id>/role', methods=['PUT'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def set_role(user_id: int):
    data = request.get_json(silent=True) or {}
    if not data.get('role'):
        return jsonify({'success': False, 'error': 'role is required'}), 400
    result = get_user_service().set_user_role(_current_user_id(), user_id, data['role'])
    return jsonify({'success': True, **result}), 200

@admin_bp.route('/users/<int:user_id>/limit', methods=['PUT'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def set_limit(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        limit = int(data['traffic_limit'])
    except (KeyError, TypeError, ValueError):
        return jsonify({'success': False, 'error': 'traffic_limit must be an integer byte count'}), 400
    result = get_user_service().set_traffic_limit(_current_user_id(), user_id, limit)
    return jsonify({'success': True, **result}), 200

@admin_bp.route('/status', methods=['GET'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def status():
    return jsonify({'success': True, 'data': get_monitor_service().get_status()}), 200
