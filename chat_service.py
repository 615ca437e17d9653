import logging

from booking_service import apply_event, get_booking
from errors import InvalidTransition, NotFound, PermissionDenied, ValidationError
from extensions import db
from models import ChatMessage, commit_changes, utcnow
from notification_service import notify

logger = logging.getLogger(__name__)

MESSAGE_TYPES = ('text', 'price_offer', 'booking_update')

# Bookings whose price can still be agreed in the chat
NEGOTIABLE_STATUSES = ('pending', 'confirmed', 'coming')


def _participant_booking(booking_id, user):
    booking = get_booking(booking_id)
    if user.id not in (booking.customer_id, booking.provider_id):
        raise PermissionDenied('Only the customer and provider of this booking can use its chat')
    return booking


def send_message(booking_id, user, content=None, message_type='text', price_offer=None):
    booking = _participant_booking(booking_id, user)
    if message_type not in ('text', 'price_offer'):
        raise ValidationError('Unsupported message type')

    content = (content or '').strip()
    if message_type == 'price_offer':
        try:
            price_offer = float(price_offer)
        except (TypeError, ValueError):
            raise ValidationError('Price offer must be a number')
        if price_offer <= 0:
            raise ValidationError('Price offer must be greater than zero')
        if booking.status not in NEGOTIABLE_STATUSES:
            raise InvalidTransition(f'Cannot make a price offer on a {booking.status} booking')
        content = content or f'Price offer: Rs. {price_offer:.2f}'
    else:
        price_offer = None
        if not content:
            raise ValidationError('Message cannot be empty')

    message = ChatMessage(
        booking_id=booking.id,
        sender_id=user.id,
        content=content,
        message_type=message_type,
        price_offer=price_offer,
    )
    db.session.add(message)

    title = 'New Price Offer' if message_type == 'price_offer' else 'New Message'
    notify(booking.other_party_id(user.id), title, f'{user.full_name}: {content[:100]}', 'message', booking.id)
    commit_changes()
    return message


def list_messages(booking_id, user, mark_read=True):
    """Messages of a booking's chat, oldest first; incoming ones are marked read"""
    booking = _participant_booking(booking_id, user)
    messages = booking.messages.order_by(ChatMessage.created_at, ChatMessage.id).all()

    if mark_read:
        now = utcnow()
        unread = [m for m in messages if m.sender_id != user.id and m.read_at is None]
        for message in unread:
            message.read_at = now
        if unread:
            commit_changes()
    return messages


def accept_offer(message_id, user):
    """Accept the other party's price offer.

    A pending booking is confirmed at the offered price; a booking that is
    already confirmed only has its price updated.
    """
    message = db.session.get(ChatMessage, message_id)
    if not message or message.message_type != 'price_offer':
        raise NotFound('Price offer not found')

    booking = _participant_booking(message.booking_id, user)
    if message.sender_id == user.id:
        raise ValidationError('You cannot accept your own offer')
    if booking.status not in NEGOTIABLE_STATUSES:
        raise InvalidTransition(f'Cannot accept an offer on a {booking.status} booking')

    booking.final_price = message.price_offer
    if booking.status == 'pending':
        actor = 'customer' if user.id == booking.customer_id else 'provider'
        apply_event(booking, 'accept_offer', actor)

    db.session.add(ChatMessage(
        booking_id=booking.id,
        sender_id=user.id,
        content=f'Price offer of Rs. {message.price_offer:.2f} accepted',
        message_type='booking_update',
    ))
    notify(booking.other_party_id(user.id), 'Offer Accepted',
           f'{user.full_name} accepted the price of Rs. {message.price_offer:.2f}.', 'message', booking.id)
    commit_changes()
    logger.info("[CHAT] Offer %s accepted on booking %s by user %s", message.id, booking.id, user.id)
    return booking
