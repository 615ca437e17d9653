from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from commission_service import list_payment_methods, provider_summary, submit_payment
from errors import handle_errors
from security import provider_required
from upload_service import PendingFile

commission_bp = Blueprint('commission', __name__, url_prefix='/api/commission')


@commission_bp.route('/summary', methods=['GET'])
@provider_required
@handle_errors('load commission summary')
def get_summary():
    return jsonify({'success': True, 'commission': provider_summary(current_user)}), 200


@commission_bp.route('/payment-methods', methods=['GET'])
@login_required
def get_payment_methods():
    """Get active payment methods"""
    return jsonify({
        'success': True,
        'payment_methods': [method.to_dict() for method in list_payment_methods()],
    }), 200


@commission_bp.route('/payments', methods=['POST'])
@provider_required
@handle_errors('submit commission payment')
def post_payment():
    """Submit a commission payment (multipart form with a screenshot file)"""
    upload = request.files.get('screenshot')
    screenshot = PendingFile.from_storage(upload) if upload and upload.filename else None

    payment = submit_payment(
        current_user._get_current_object(),
        request.form,
        screenshot,
        current_app.extensions['storage'],
    )
    return jsonify({
        'success': True,
        'message': 'Payment submitted for review',
        'payment': payment.to_dict(),
    }), 201
