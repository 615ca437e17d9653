import logging
import time

from errors import NotFound
from extensions import db
from models import Notification, User, commit_changes, utcnow
from signals import booking_status_changed

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    'confirmed': ('Booking Confirmed', 'Your booking "{title}" has been confirmed.'),
    'rejected': ('Booking Rejected', 'Your booking request "{title}" was declined.'),
    'coming': ('Provider On The Way', 'Your provider is on the way for "{title}".'),
    'in_progress': ('Job Started', 'Work on "{title}" has started.'),
    'completed': ('Job Completed', 'The booking "{title}" has been marked as completed.'),
    'cancelled': ('Booking Cancelled', 'The booking "{title}" has been cancelled.'),
}


def notify(user_id, title, content, type, booking_id=None):
    """Queue a notification on the session; the caller commits it with its own changes"""
    notification = Notification(
        user_id=user_id,
        booking_id=booking_id,
        title=title,
        content=content,
        type=type,
    )
    db.session.add(notification)
    return notification


def notify_admins(title, content, type, booking_id=None):
    admins = User.query.filter_by(user_type='admin', is_banned=False).all()
    return [notify(admin.id, title, content, type, booking_id) for admin in admins]


@booking_status_changed.connect
def notify_status_change(booking, previous=None, event=None, actor=None, **extra):
    title, template = STATUS_MESSAGES.get(
        booking.status, ('Booking Updated', 'The booking "{title}" is now {status}.')
    )
    content = template.format(title=booking.title, status=booking.status)
    if booking.status == 'cancelled' and booking.cancellation_reason:
        content = f'{content} Reason: {booking.cancellation_reason}'

    if actor == 'customer':
        recipients = [booking.provider_id]
    elif actor == 'provider':
        recipients = [booking.customer_id]
    else:
        recipients = [booking.customer_id, booking.provider_id]

    for user_id in recipients:
        notify(user_id, title, content, 'booking_update', booking.id)
    logger.debug("[NOTIFY] Booking %s %s -> %s by %s", booking.id, previous, booking.status, actor)


def list_notifications(user_id, unread_only=False, limit=50):
    query = Notification.query.filter_by(user_id=user_id)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def unread_count(user_id):
    return Notification.query.filter_by(user_id=user_id).filter(Notification.read_at.is_(None)).count()


def mark_read(user_id, notification_id):
    notification = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
    if not notification:
        raise NotFound('Notification not found')
    if notification.read_at is None:
        notification.read_at = utcnow()
        commit_changes()
    return notification


def mark_all_read(user_id):
    updated = (
        Notification.query
        .filter_by(user_id=user_id)
        .filter(Notification.read_at.is_(None))
        .update({Notification.read_at: utcnow()}, synchronize_session=False)
    )
    commit_changes()
    return updated


def iter_new_notifications(user_id, last_id=0, poll_interval=2.0, max_polls=None, sleep=time.sleep):
    """Yield notifications newer than ``last_id`` as they are written.

    Polls every ``poll_interval`` seconds; ``max_polls`` bounds the loop.
    """
    polls = 0
    while max_polls is None or polls < max_polls:
        new_rows = (
            Notification.query
            .filter(Notification.user_id == user_id, Notification.id > last_id)
            .order_by(Notification.id)
            .all()
        )
        for notification in new_rows:
            last_id = notification.id
            yield notification
        # end the read transaction so the next poll sees new commits
        db.session.rollback()
        polls += 1
        if max_polls is None or polls < max_polls:
            sleep(poll_interval)
