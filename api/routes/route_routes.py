from flask import Blueprint, request, jsonify
from api.middleware.jwt_middleware import JWTMiddleware
from core.dependency_container import get_service
from core.types import Role
from service.vpn_service import VPNService

route_bp = Blueprint('routes', __name__)

def get_vpn_service() -> VPNService:
    return get_service('vpn_service')

def _current_user_id() -> int:
    return JWTMiddleware.get_current_user()['user_id']

@route_bp.route('/', methods=['GET'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def list_routes():
    vpn_service = get_vpn_service()
    return jsonify({
        'success': True,
        'data': {
            'routes': vpn_service.list_routes(request.args.get('type')),
            'asn_routes': vpn_service.list_asn_routes(),
            'groups': vpn_service.list_groups()
        }
    }), 200

@route_bp.route('/create', methods=['POST'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def create_route():
    """
    Request body:
    {
        "network": "10.0.0.0/24",
        "type": "default|custom|blocked" (optional, default custom),
        "description": "string" (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get('network'):
        return jsonify({'success': False, 'error': 'network is required'}), 400

    route = get_vpn_service().create_route(
        data['network'], data.get('type', 'custom'), data.get('description', ''),
        created_by=_current_user_id()
    )
    return jsonify({'success': True, 'message': 'Route created', 'data': route}), 201

@route_bp.route('/asn', methods=['POST'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def create_asn_route():
    data = request.get_json(silent=True) or {}
    if not data.get('asn'):
        return jsonify({'success': False, 'error': 'asn is required'}), 400

    route = get_vpn_service().create_asn_route(
        data['asn'], data.get('type', 'asn'), data.get('description', ''),
        created_by=_current_user_id()
    )
    return jsonify({'success': True, 'message': 'ASN route created', 'data': route}), 201

@route_bp.route('/<int:route_id>', methods=['DELETE'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def delete_route(route_id: int):
    result = get_vpn_service().delete_route(route_id)
    return jsonify({'success': True, **result}), 200

@route_bp.route('/groups', methods=['POST'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def create_group():
    data = request.get_json(silent=True) or {}
    group = get_vpn_service().create_group(
        data.get('name', ''), data.get('description', ''), created_by=_current_user_id()
    )
    return jsonify({'success': True, 'message': 'Group created', 'data': group}), 201

@route_bp.route('/groups/<int:group_id>/routes', methods=['POST'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def add_route_to_group(group_id: int):
    data = request.get_json(silent=True) or {}
    if not data.get('route_id'):
        return jsonify({'success': False, 'error': 'route_id is required'}), 400

    result = get_vpn_service().add_route_to_group(group_id, int(data['route_id']))
    return jsonify({'success': True, **result}), 200

@route_bp.route('/users/<int:user_id>/routes', methods=['POST'])
@JWTMiddleware.require_auth
@JWTMiddleware.require_role(Role.ADMIN.value)
def assign_route(user_id: int):
    """Assign a route (``route_id``) or a group (``group_id``) to a user."""
    data = request.get_json(silent=True) or {}
    vpn_service = get_vpn_service()
    if data.get('route_id'):
        result = vpn_service.assign_route_to_user(user_id, int(data['route_id']), actor_id=_current_user_id())
    elif data.get('group_id'):
        result = vpn_service.assign_group_to_user(user_id, int(data['group_id']), actor_id=_current_user_id())
    else:
        return jsonify({'success': False, 'error': 'route_id or group_id is required'}), 400
    return jsonify({'success': True, **result}), 200
