import logging
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from catalog_service import approve_service, escape_like, pending_services, provider_services, reject_service
from commission_service import (
    aggregate_commissions, approve_payment, deactivate_payment_method, earnings_history, list_payment_methods,
    list_payments, provider_cycle, providers_by_id, reject_payment, save_payment_method,
)
from content_service import get_contact_info, list_content, save_contact_info, save_content, toggle_content
from errors import handle_errors
from extensions import db
from models import Booking, CommissionPayment, ProviderProfile, Service, User, utcnow
from security import admin_required
from strike_service import lift_suspension, set_banned, users_with_strikes
from upload_service import APPLICATION_SLOTS
from verification_service import (
    approve_application, get_profile, list_pro_badge_requests, pending_applications,
    reject_application, remove_pro_badge, review_pro_badge,
)

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


def _admin():
    return current_user._get_current_object()


def _json():
    return request.get_json(silent=True) or {}


@admin_bp.route('/dashboard', methods=['GET'])
@admin_required
@handle_errors('load dashboard')
def dashboard():
    """Platform statistics for the admin overview"""
    bookings_by_status = dict(
        db.session.query(Booking.status, db.func.count(Booking.id)).group_by(Booking.status).all()
    )
    cancellations = dict(
        db.session.query(Booking.cancelled_by, db.func.count(Booking.id))
        .filter(Booking.status == 'cancelled')
        .group_by(Booking.cancelled_by)
        .all()
    )
    revenue = (
        db.session.query(db.func.coalesce(db.func.sum(Booking.final_price), 0.0))
        .filter(Booking.status == 'completed')
        .scalar()
    )
    commission = aggregate_commissions()

    stats = {
        'total_users': User.query.count(),
        'total_customers': User.query.filter_by(user_type='customer').count(),
        'total_providers': User.query.filter_by(user_type='provider').count(),
        'approved_providers': ProviderProfile.query.filter_by(admin_approved=True).count(),
        'total_bookings': sum(bookings_by_status.values()),
        'bookings_by_status': bookings_by_status,
        'total_revenue': round(float(revenue), 2),
        'commission': {key: value for key, value in commission.items() if key != 'providers'},
        'pending_applications': len(pending_applications()),
        'pending_services': len(pending_services()),
        'pending_payments': CommissionPayment.query.filter_by(status='pending').count(),
        'cancellations_by': {(actor or 'unknown'): count for actor, count in cancellations.items()},
        'suspended_users': User.query.filter_by(is_suspended=True).count(),
        'banned_users': User.query.filter_by(is_banned=True).count(),
    }
    return jsonify({'success': True, 'stats': stats}), 200


# Provider applications

@admin_bp.route('/applications', methods=['GET'])
@admin_required
def get_applications():
    profiles = pending_applications()
    return jsonify({
        'success': True,
        'applications': [
            dict(profile.to_dict(include_documents=True), full_name=profile.user.full_name, email=profile.user.email)
            for profile in profiles
        ],
    }), 200


@admin_bp.route('/applications/<int:profile_id>', methods=['GET'])
@admin_required
@handle_errors('load application')
def get_application(profile_id):
    profile = get_profile(profile_id)
    data = profile.to_dict(include_documents=True)
    data['user'] = profile.user.to_dict()
    return jsonify({'success': True, 'application': data}), 200


@admin_bp.route('/applications/<int:profile_id>/approve', methods=['POST'])
@admin_required
@handle_errors('approve application')
def post_approve_application(profile_id):
    profile = approve_application(profile_id, _admin(), _json().get('notes'))
    return jsonify({'success': True, 'message': 'Provider approved', 'application': profile.to_dict()}), 200


@admin_bp.route('/applications/<int:profile_id>/reject', methods=['POST'])
@admin_required
@handle_errors('reject application')
def post_reject_application(profile_id):
    profile = reject_application(profile_id, _admin(), _json().get('reason'))
    return jsonify({'success': True, 'message': 'Application rejected', 'application': profile.to_dict()}), 200


# Services

@admin_bp.route('/services/pending', methods=['GET'])
@admin_required
def get_pending_services():
    return jsonify({'success': True, 'services': [s.to_dict() for s in pending_services()]}), 200


@admin_bp.route('/services/<int:service_id>/approve', methods=['POST'])
@admin_required
@handle_errors('approve service')
def post_approve_service(service_id):
    service = approve_service(service_id, _admin())
    return jsonify({'success': True, 'service': service.to_dict()}), 200


@admin_bp.route('/services/<int:service_id>/reject', methods=['POST'])
@admin_required
@handle_errors('reject service')
def post_reject_service(service_id):
    service = reject_service(service_id, _admin(), _json().get('reason'))
    return jsonify({'success': True, 'service': service.to_dict()}), 200


# Commission

@admin_bp.route('/commission/overview', methods=['GET'])
@admin_required
@handle_errors('load commission overview')
def commission_overview():
    overview = aggregate_commissions()
    users = providers_by_id([row['provider_id'] for row in overview['providers']])
    for row in overview['providers']:
        user = users.get(row['provider_id'])
        row['provider_name'] = user.full_name if user else None
    return jsonify({'success': True, 'commission': overview}), 200


@admin_bp.route('/commission/payments', methods=['GET'])
@admin_required
def get_commission_payments():
    payments = list_payments(status=request.args.get('status'))
    return jsonify({'success': True, 'payments': [p.to_dict() for p in payments]}), 200


@admin_bp.route('/commission/payments/<int:payment_id>/approve', methods=['POST'])
@admin_required
@handle_errors('approve payment')
def post_approve_payment(payment_id):
    payment = approve_payment(payment_id, _admin())
    return jsonify({'success': True, 'message': 'Payment approved', 'payment': payment.to_dict()}), 200


@admin_bp.route('/commission/payments/<int:payment_id>/reject', methods=['POST'])
@admin_required
@handle_errors('reject payment')
def post_reject_payment(payment_id):
    payment = reject_payment(payment_id, _admin(), _json().get('reason'))
    return jsonify({'success': True, 'message': 'Payment rejected', 'payment': payment.to_dict()}), 200


# Payment methods

@admin_bp.route('/payment-methods', methods=['GET'])
@admin_required
def get_payment_methods():
    methods = list_payment_methods(include_inactive=True)
    return jsonify({'success': True, 'payment_methods': [m.to_dict() for m in methods]}), 200


@admin_bp.route('/payment-methods', methods=['POST'])
@admin_required
@handle_errors('create payment method')
def post_payment_method():
    method = save_payment_method(_json())
    return jsonify({'success': True, 'payment_method': method.to_dict()}), 201


@admin_bp.route('/payment-methods/<int:method_id>', methods=['PATCH'])
@admin_required
@handle_errors('update payment method')
def patch_payment_method(method_id):
    method = save_payment_method(_json(), method_id)
    return jsonify({'success': True, 'payment_method': method.to_dict()}), 200


@admin_bp.route('/payment-methods/<int:method_id>', methods=['DELETE'])
@admin_required
@handle_errors('deactivate payment method')
def delete_payment_method(method_id):
    method = deactivate_payment_method(method_id)
    return jsonify({'success': True, 'payment_method': method.to_dict()}), 200


# Pro badges

@admin_bp.route('/pro-badges', methods=['GET'])
@admin_required
def get_pro_badges():
    badge_requests = list_pro_badge_requests(request.args.get('status'))
    return jsonify({'success': True, 'requests': [r.to_dict() for r in badge_requests]}), 200


@admin_bp.route('/pro-badges/<int:request_id>/<decision>', methods=['POST'])
@admin_required
@handle_errors('review pro badge')
def post_pro_badge_decision(request_id, decision):
    if decision not in ('approve', 'reject'):
        return jsonify({'success': False, 'message': 'Decision must be approve or reject'}), 404
    badge_request = review_pro_badge(request_id, _admin(), decision == 'approve', _json().get('notes'))
    return jsonify({'success': True, 'request': badge_request.to_dict()}), 200


# Users

@admin_bp.route('/users', methods=['GET'])
@admin_required
def get_users():
    query = User.query
    user_type = request.args.get('user_type')
    search = request.args.get('search')
    if user_type:
        query = query.filter_by(user_type=user_type)
    if search:
        pattern = f'%{escape_like(search)}%'
        query = query.filter(db.or_(
            User.full_name.ilike(pattern, escape='\\'),
            User.email.ilike(pattern, escape='\\'),
        ))
    users = query.order_by(User.created_at.desc()).all()
    return jsonify({'success': True, 'users': [u.to_dict() for u in users]}), 200


@admin_bp.route('/users/strikes', methods=['GET'])
@admin_required
def get_users_with_strikes():
    return jsonify({'success': True, 'users': [u.to_dict() for u in users_with_strikes()]}), 200


@admin_bp.route('/users/<int:user_id>/ban', methods=['POST'])
@admin_required
@handle_errors('ban user')
def post_ban(user_id):
    user = set_banned(user_id, True, _admin())
    return jsonify({'success': True, 'message': 'User banned', 'user': user.to_dict()}), 200


@admin_bp.route('/users/<int:user_id>/unban', methods=['POST'])
@admin_required
@handle_errors('unban user')
def post_unban(user_id):
    user = set_banned(user_id, False, _admin())
    return jsonify({'success': True, 'message': 'User unbanned', 'user': user.to_dict()}), 200


@admin_bp.route('/users/<int:user_id>/lift-suspension', methods=['POST'])
@admin_required
@handle_errors('lift suspension')
def post_lift_suspension(user_id):
    user = lift_suspension(user_id)
    return jsonify({'success': True, 'message': 'Suspension lifted', 'user': user.to_dict()}), 200


@admin_bp.route('/services', methods=['GET'])
@admin_required
def get_all_services():
    services = Service.query.order_by(Service.created_at.desc()).all()
    return jsonify({'success': True, 'services': [s.to_dict() for s in services]}), 200


# Provider detail

def _document_urls(profile):
    storage = current_app.extensions['storage']
    documents = profile.documents()
    urls = {}
    for slot in APPLICATION_SLOTS.values():
        value = documents.get(slot.field)
        if slot.multiple:
            urls[slot.field] = [storage.public_url(slot.bucket, path) for path in value or []]
        else:
            urls[slot.field] = storage.public_url(slot.bucket, value) if value else None
    return urls


@admin_bp.route('/providers/<int:profile_id>', methods=['GET'])
@admin_required
@handle_errors('load provider details')
def get_provider_detail(profile_id):
    """Everything an admin reviews about one provider"""
    profile = get_profile(profile_id)
    provider_id = profile.user_id

    week_ago = utcnow() - timedelta(days=7)
    weekly = Booking.query.filter(Booking.provider_id == provider_id, Booking.created_at >= week_ago).all()
    weekly_completed = [booking for booking in weekly if booking.status == 'completed']
    recent = (
        Booking.query.filter_by(provider_id=provider_id)
        .order_by(Booking.created_at.desc())
        .limit(5)
        .all()
    )

    data = profile.to_dict(include_documents=True)
    data['user'] = profile.user.to_dict()
    data['document_urls'] = _document_urls(profile)
    return jsonify({
        'success': True,
        'provider': data,
        'services': [service.to_dict() for service in provider_services(provider_id)],
        'recent_bookings': [booking.to_dict() for booking in recent],
        'commission_payments': [payment.to_dict() for payment in list_payments(provider_id=provider_id)],
        'commission_cycle': provider_cycle(provider_id),
        'earnings': earnings_history(provider_id, request.args.get('range', '30days')),
        'performance': {
            'weekly_bookings': len(weekly),
            'weekly_earnings': round(sum(booking.price for booking in weekly_completed), 2),
            'completion_rate': round(len(weekly_completed) / len(weekly) * 100, 1) if weekly else 0.0,
            'average_rating': profile.rating or 0.0,
        },
    }), 200


@admin_bp.route('/providers/<int:profile_id>/remove-pro-badge', methods=['POST'])
@admin_required
@handle_errors('remove pro badge')
def post_remove_pro_badge(profile_id):
    profile = remove_pro_badge(profile_id, _admin())
    return jsonify({'success': True, 'message': 'Pro badge removed', 'provider': profile.to_dict()}), 200


# Site content

@admin_bp.route('/content/contact', methods=['GET'])
@admin_required
def get_admin_contact():
    return jsonify({'success': True, 'contact': get_contact_info()}), 200


@admin_bp.route('/content/contact', methods=['PUT'])
@admin_required
@handle_errors('update contact information')
def put_contact():
    contact = save_contact_info(_json())
    return jsonify({'success': True, 'message': 'Contact information updated', 'contact': contact.to_dict()}), 200


@admin_bp.route('/content/<kind>', methods=['GET'])
@admin_required
@handle_errors('load content')
def get_admin_content(kind):
    items = list_content(kind, include_inactive=True)
    return jsonify({'success': True, kind: [item.to_dict() for item in items]}), 200


@admin_bp.route('/content/<kind>', methods=['POST'])
@admin_required
@handle_errors('create content')
def post_content(kind):
    item = save_content(kind, _json())
    return jsonify({'success': True, 'message': 'Content created', 'item': item.to_dict()}), 201


@admin_bp.route('/content/<kind>/<int:item_id>', methods=['PATCH'])
@admin_required
@handle_errors('update content')
def patch_content(kind, item_id):
    item = save_content(kind, _json(), item_id)
    return jsonify({'success': True, 'message': 'Content updated successfully', 'item': item.to_dict()}), 200


@admin_bp.route('/content/<kind>/<int:item_id>/toggle', methods=['POST'])
@admin_required
@handle_errors('toggle content')
def post_toggle_content(kind, item_id):
    item = toggle_content(kind, item_id)
    state = 'activated' if item.is_active else 'deactivated'
    return jsonify({'success': True, 'message': f'Content {state} successfully', 'item': item.to_dict()}), 200
