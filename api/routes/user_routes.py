import time
from flask import Blueprint, request, jsonify
from api.middleware.jwt_middleware import JWTMiddleware
from core.dependency_container import get_service
from service.auth_service import AuthService
from service.user_service import UserService
from service.vpn_service import VPNService

user_bp = Blueprint('user', __name__)

DEFAULT_TRAFFIC_WINDOW = 30 * 24 * 3600

def get_vpn_service() -> VPNService:
    return get_service('vpn_service')

def get_user_service() -> UserService:
    return get_service('user_service')

def get_auth_service() -> AuthService:
    return get_service('auth_service')

def _current_user_id() -> int:
    return JWTMiddleware.get_current_user()['user_id']

@user_bp.route('/info', methods=['GET'])
@JWTMiddleware.require_auth
def get_info():
    info = get_user_service().get_user_info(_current_user_id())
    return jsonify({'success': True, 'data': info}), 200

@user_bp.route('/routes', methods=['GET'])
@JWTMiddleware.require_auth
def get_routes():
    """Effective routes for the calling user."""
    routes = get_vpn_service().resolve_routes(_current_user_id())
    return jsonify({'success': True, 'data': routes}), 200

@user_bp.route('/routes/add', methods=['POST'])
@JWTMiddleware.require_auth
def add_route():
    """
    Request body:
    {
        "network": "10.0.0.0/24",
        "description": "string" (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get('network'):
        return jsonify({'success': False, 'error': 'network is required'}), 400

    route = get_vpn_service().add_custom_route_for_user(
        _current_user_id(), data['network'], data.get('description', '')
    )
    return jsonify({'success': True, 'message': 'Route added', 'data': route}), 201

@user_bp.route('/routes/remove', methods=['POST'])
@JWTMiddleware.require_auth
def remove_route():
    data = request.get_json(silent=True) or {}
    if not data.get('network'):
        return jsonify({'success': False, 'error': 'network is required'}), 400

    result = get_vpn_service().remove_route_for_user(_current_user_id(), data['network'])
    return jsonify({'success': True, **result}), 200

@user_bp.route('/traffic', methods=['GET'])
@JWTMiddleware.require_auth
def get_traffic():
    """Traffic samples between ``from`` and ``to`` (Unix seconds, default last 30 days)."""
    now = int(time.time())
    try:
        to_ts = int(request.args.get('to', now))
        from_ts = int(request.args.get('from', to_ts - DEFAULT_TRAFFIC_WINDOW))
    except ValueError:
        return jsonify({'success': False, 'error': 'from and to must be Unix timestamps'}), 400

    samples = get_vpn_service().get_user_traffic(_current_user_id(), from_ts, to_ts)
    return jsonify({
        'success': True,
        'data': {
            'from': from_ts,
            'to': to_ts,
            'total': sum(s['bytes'] for s in samples),
            'samples': samples
        }
    }), 200

@user_bp.route('/traffic/total', methods=['GET'])
@JWTMiddleware.require_auth
def get_total_traffic():
    total = get_vpn_service().get_total_user_traffic(_current_user_id())
    return jsonify({'success': True, 'data': {'total': total}}), 200

@user_bp.route('/config', methods=['GET'])
@JWTMiddleware.require_auth
def get_config():
    """Issue a fresh client certificate and key for connecting to the VPN."""
    bundle = get_auth_service().issue_certificate(_current_user_id())
    return jsonify({'success': True, 'data': bundle}), 200
