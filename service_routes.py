from flask import Blueprint, jsonify, request
from flask_login import current_user

from catalog_service import (
    CATEGORIES, create_service, delete_service, get_service, provider_services,
    search_services, toggle_service, update_service,
)
from errors import NotFound, handle_errors
from security import provider_required

services_bp = Blueprint('services', __name__, url_prefix='/api/services')


@services_bp.route('/categories', methods=['GET'])
def list_categories():
    return jsonify({
        'success': True,
        'categories': [{'id': code, 'name': name} for code, name in CATEGORIES],
    }), 200


@services_bp.route('', methods=['GET'])
@handle_errors('load services')
def list_services():
    """Public listing. Pass lat/lng (and optionally radius_km, sort_by) for nearby results."""
    args = request.args
    services = search_services(
        category=args.get('category'),
        text=args.get('q'),
        lat=args.get('lat'),
        lng=args.get('lng'),
        radius_km=args.get('radius_km', type=float),
        sort_by=args.get('sort_by', 'distance'),
    )
    return jsonify({'success': True, 'services': services, 'count': len(services)}), 200


@services_bp.route('/<int:service_id>', methods=['GET'])
@handle_errors('load service')
def service_detail(service_id):
    service = get_service(service_id)
    if not (service.is_active and service.admin_approved):
        raise NotFound('Service not found')
    return jsonify({'success': True, 'service': service.to_dict()}), 200


@services_bp.route('/mine', methods=['GET'])
@provider_required
def my_services():
    return jsonify({
        'success': True,
        'services': [service.to_dict() for service in provider_services(current_user.id)],
    }), 200


@services_bp.route('', methods=['POST'])
@provider_required
@handle_errors('create service')
def post_service():
    service = create_service(current_user._get_current_object(), request.get_json(silent=True) or {})
    return jsonify({
        'success': True,
        'message': 'Service submitted for admin approval',
        'service': service.to_dict(),
    }), 201


@services_bp.route('/<int:service_id>', methods=['PATCH'])
@provider_required
@handle_errors('update service')
def patch_service(service_id):
    service = update_service(current_user._get_current_object(), service_id, request.get_json(silent=True) or {})
    return jsonify({
        'success': True,
        'message': 'Service updated and sent for admin approval',
        'service': service.to_dict(),
    }), 200


@services_bp.route('/<int:service_id>/toggle', methods=['POST'])
@provider_required
@handle_errors('toggle service')
def post_toggle(service_id):
    data = request.get_json(silent=True) or {}
    service = toggle_service(current_user._get_current_object(), service_id, data.get('is_active'))
    return jsonify({'success': True, 'service': service.to_dict()}), 200


@services_bp.route('/<int:service_id>', methods=['DELETE'])
@provider_required
@handle_errors('delete service')
def remove_service(service_id):
    delete_service(current_user._get_current_object(), service_id)
    return jsonify({'success': True, 'message': 'Service removed'}), 200
