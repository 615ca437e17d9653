import json

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context
from flask_login import current_user, login_required

from errors import handle_errors
from notification_service import (
    iter_new_notifications, list_notifications, mark_all_read, mark_read, unread_count,
)

notifications_bp = Blueprint('notifications', __name__, url_prefix='/api/notifications')


@notifications_bp.route('', methods=['GET'])
@login_required
def get_notifications():
    unread_only = request.args.get('unread') in ('1', 'true')
    notifications = list_notifications(current_user.id, unread_only=unread_only,
                                       limit=request.args.get('limit', 50, type=int))
    return jsonify({
        'success': True,
        'notifications': [n.to_dict() for n in notifications],
        'unread_count': unread_count(current_user.id),
    }), 200


@notifications_bp.route('/unread-count', methods=['GET'])
@login_required
def get_unread_count():
    return jsonify({'success': True, 'unread_count': unread_count(current_user.id)}), 200


@notifications_bp.route('/<int:notification_id>/read', methods=['POST'])
@login_required
@handle_errors('mark notification read')
def post_mark_read(notification_id):
    notification = mark_read(current_user.id, notification_id)
    return jsonify({'success': True, 'notification': notification.to_dict()}), 200


@notifications_bp.route('/read-all', methods=['POST'])
@login_required
@handle_errors('mark notifications read')
def post_mark_all_read():
    updated = mark_all_read(current_user.id)
    return jsonify({'success': True, 'updated': updated}), 200


@notifications_bp.route('/stream', methods=['GET'])
@login_required
def stream():
    """Server-sent events feed of the user's new notifications"""
    user_id = current_user.id
    last_id = request.args.get('last_id', 0, type=int)
    if not last_id and request.headers.get('Last-Event-ID', '').isdigit():
        last_id = int(request.headers['Last-Event-ID'])
    poll_interval = current_app.config['NOTIFICATION_POLL_SECONDS']
    max_polls = request.args.get('max_polls', type=int)

    def generate():
        yield 'retry: 5000\n\n'
        for notification in iter_new_notifications(user_id, last_id, poll_interval, max_polls):
            yield f'id: {notification.id}\nevent: notification\ndata: {json.dumps(notification.to_dict())}\n\n'

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
