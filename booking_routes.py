from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from booking_service import (
    available_actions, cancel_booking, create_booking, fire_event, get_booking_for,
    get_shared_location, list_bookings, share_location, stop_sharing_location,
)
from chat_service import accept_offer, list_messages, send_message
from errors import handle_errors
from review_service import create_review, provider_reviews

bookings_bp = Blueprint('bookings', __name__, url_prefix='/api')

# route action name -> state machine event
STATUS_ACTIONS = {
    'confirm': 'confirm',
    'reject': 'reject',
    'coming': 'mark_coming',
    'start': 'start',
    'complete': 'complete',
}


def _user():
    return current_user._get_current_object()


def _booking_payload(booking):
    data = booking.to_dict()
    data['available_actions'] = available_actions(booking, current_user)
    return data


@bookings_bp.route('/bookings', methods=['GET'])
@login_required
def get_bookings():
    bookings = list_bookings(current_user, status=request.args.get('status'))
    return jsonify({'success': True, 'bookings': [b.to_dict() for b in bookings]}), 200


@bookings_bp.route('/bookings', methods=['POST'])
@login_required
@handle_errors('create booking')
def post_booking():
    booking = create_booking(_user(), request.get_json(silent=True) or {})
    return jsonify({
        'success': True,
        'message': 'Booking request sent to the provider',
        'booking': _booking_payload(booking),
    }), 201


@bookings_bp.route('/bookings/<int:booking_id>', methods=['GET'])
@login_required
@handle_errors('load booking')
def get_booking_detail(booking_id):
    booking = get_booking_for(booking_id, _user())
    return jsonify({'success': True, 'booking': _booking_payload(booking)}), 200


@bookings_bp.route('/bookings/<int:booking_id>/<action>', methods=['POST'])
@login_required
@handle_errors('update booking')
def post_booking_action(booking_id, action):
    if action not in STATUS_ACTIONS:
        return jsonify({'success': False, 'message': f'Unknown action: {action}'}), 404
    booking = fire_event(booking_id, _user(), STATUS_ACTIONS[action])
    return jsonify({'success': True, 'booking': _booking_payload(booking)}), 200


@bookings_bp.route('/bookings/<int:booking_id>/cancel', methods=['POST'])
@login_required
@handle_errors('cancel booking')
def post_cancel(booking_id):
    data = request.get_json(silent=True) or {}
    booking = cancel_booking(booking_id, _user(), reason=data.get('reason'), no_show=bool(data.get('no_show')))
    return jsonify({'success': True, 'message': 'Booking cancelled', 'booking': _booking_payload(booking)}), 200


@bookings_bp.route('/bookings/<int:booking_id>/location', methods=['POST'])
@login_required
@handle_errors('share location')
def post_location(booking_id):
    data = request.get_json(silent=True) or {}
    booking = share_location(booking_id, _user(), data.get('lat'), data.get('lng'))
    return jsonify({
        'success': True,
        'message': 'Location shared with the provider',
        'expires_at': booking.location_access_expires_at.isoformat(),
    }), 200


@bookings_bp.route('/bookings/<int:booking_id>/location', methods=['GET'])
@login_required
@handle_errors('load location')
def get_location(booking_id):
    return jsonify({'success': True, 'location': get_shared_location(booking_id, _user())}), 200


@bookings_bp.route('/bookings/<int:booking_id>/location', methods=['DELETE'])
@login_required
@handle_errors('stop sharing location')
def delete_location(booking_id):
    stop_sharing_location(booking_id, _user())
    return jsonify({'success': True, 'message': 'Location sharing stopped'}), 200


# Chat

@bookings_bp.route('/bookings/<int:booking_id>/messages', methods=['GET'])
@login_required
@handle_errors('load messages')
def get_messages(booking_id):
    messages = list_messages(booking_id, _user())
    return jsonify({'success': True, 'messages': [m.to_dict() for m in messages]}), 200


@bookings_bp.route('/bookings/<int:booking_id>/messages', methods=['POST'])
@login_required
@handle_errors('send message')
def post_message(booking_id):
    data = request.get_json(silent=True) or {}
    message = send_message(
        booking_id, _user(),
        content=data.get('content'),
        message_type=data.get('message_type', 'text'),
        price_offer=data.get('price_offer'),
    )
    return jsonify({'success': True, 'message': message.to_dict()}), 201


@bookings_bp.route('/messages/<int:message_id>/accept', methods=['POST'])
@login_required
@handle_errors('accept offer')
def post_accept_offer(message_id):
    booking = accept_offer(message_id, _user())
    return jsonify({'success': True, 'message': 'Offer accepted', 'booking': _booking_payload(booking)}), 200


# Reviews

@bookings_bp.route('/bookings/<int:booking_id>/review', methods=['POST'])
@login_required
@handle_errors('submit review')
def post_review(booking_id):
    data = request.get_json(silent=True) or {}
    review = create_review(booking_id, _user(), data.get('rating'), data.get('comment'))
    return jsonify({'success': True, 'message': 'Thank you for your review', 'review': review.to_dict()}), 201


@bookings_bp.route('/providers/<int:provider_id>/reviews', methods=['GET'])
def get_provider_reviews(provider_id):
    return jsonify(dict(provider_reviews(provider_id), success=True)), 200
