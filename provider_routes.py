import logging

from flask import Blueprint, abort, current_app, jsonify, request, send_file
from flask_login import current_user, login_required

from commission_service import earnings_history
from errors import ValidationError, handle_errors
from geo_service import parse_coordinates
from models import ProviderProfile, commit_changes, utcnow
from review_service import ratings_history
from security import provider_required
from storage import BUCKETS, PRIVATE_BUCKETS, StorageError, owner_id_from_path
from upload_service import APPLICATION_SLOTS, files_from_request
from verification_service import request_pro_badge, submit_application

logger = logging.getLogger(__name__)

provider_bp = Blueprint('provider', __name__, url_prefix='/api/provider')
files_bp = Blueprint('files', __name__, url_prefix='/api/files')


def get_storage():
    return current_app.extensions['storage']


@provider_bp.route('/application', methods=['GET'])
@provider_required
def get_application():
    profile = current_user.provider_profile
    return jsonify({
        'success': True,
        'profile': profile.to_dict(include_documents=True) if profile else None,
    }), 200


@provider_bp.route('/application', methods=['POST'])
@provider_required
@handle_errors('submit application')
def post_application():
    """Submit or resubmit the verification application (multipart form)"""
    files = files_from_request(request.files, APPLICATION_SLOTS)
    logger.info("[APPLICATION] Submission from user %s with slots: %s", current_user.id, ', '.join(files) or 'none')

    profile, failed = submit_application(current_user._get_current_object(), request.form, files, get_storage())

    message = 'Application submitted for review'
    if failed:
        message = f'Application submitted, but {len(failed)} file(s) could not be uploaded: {", ".join(failed)}'
    return jsonify({
        'success': True,
        'message': message,
        'failed_uploads': failed,
        'profile': profile.to_dict(include_documents=True),
    }), 201


@provider_bp.route('/profile', methods=['PATCH'])
@provider_required
@handle_errors('update provider profile')
def update_profile():
    profile = current_user.provider_profile
    if not profile:
        raise ValidationError('Submit your provider application first')

    data = request.get_json(silent=True) or {}
    for field in ('business_address', 'description', 'phone'):
        if field in data:
            setattr(profile, field, data[field])
    if 'experience_years' in data:
        try:
            profile.experience_years = int(data['experience_years'])
        except (TypeError, ValueError):
            raise ValidationError('Experience years must be a number')

    commit_changes()
    return jsonify({'success': True, 'profile': profile.to_dict()}), 200


@provider_bp.route('/location', methods=['PUT'])
@provider_required
@handle_errors('update location')
def update_location():
    profile = current_user.provider_profile
    if not profile:
        raise ValidationError('Submit your provider application first')

    data = request.get_json(silent=True) or {}
    profile.latitude, profile.longitude = parse_coordinates(data.get('lat'), data.get('lng'))
    if data.get('address'):
        profile.business_address = data['address']
    profile.location_updated_at = utcnow()
    commit_changes()

    logger.info("[LOCATION] Provider %s moved to %.5f, %.5f", current_user.id, profile.latitude, profile.longitude)
    return jsonify({'success': True, 'profile': profile.to_dict()}), 200


@provider_bp.route('/pro-badge', methods=['POST'])
@provider_required
@handle_errors('request pro badge')
def post_pro_badge():
    data = request.get_json(silent=True) or {}
    badge_request = request_pro_badge(current_user._get_current_object(), data.get('message'))
    return jsonify({'success': True, 'request': badge_request.to_dict()}), 201


@provider_bp.route('/earnings', methods=['GET'])
@provider_required
@handle_errors('load earnings history')
def get_earnings_history():
    """Daily earnings, bookings and commission; ``range`` is 7days, 30days, 3months, 6months or 1year"""
    history = earnings_history(current_user.id, request.args.get('range', '3months'))
    return jsonify(dict(history, success=True)), 200


@provider_bp.route('/ratings', methods=['GET'])
@provider_required
@handle_errors('load ratings history')
def get_ratings_history():
    return jsonify(dict(ratings_history(current_user.id), success=True)), 200


@provider_bp.route('/<int:user_id>', methods=['GET'])
def public_profile(user_id):
    profile = ProviderProfile.query.filter_by(user_id=user_id, admin_approved=True).first()
    if not profile or profile.user.is_banned:
        return jsonify({'success': False, 'message': 'Provider not found'}), 404

    data = profile.to_dict()
    data['full_name'] = profile.user.full_name
    data['shop_photos'] = [
        get_storage().public_url('shop-photos', path) for path in (profile.shop_photos or [])
    ]
    return jsonify({'success': True, 'provider': data}), 200


@files_bp.route('/<bucket>/<path:path>', methods=['GET'])
@login_required
def get_file(bucket, path):
    """Serve a stored object. Private buckets are limited to the owner and admins."""
    if bucket not in BUCKETS:
        abort(404)
    if bucket in PRIVATE_BUCKETS and not current_user.is_admin and owner_id_from_path(path) != current_user.id:
        return jsonify({'success': False, 'message': 'You do not have access to this file'}), 403

    try:
        full_path = get_storage().open_path(bucket, path)
    except StorageError:
        abort(404)
    if not full_path:
        abort(404)
    return send_file(full_path)
