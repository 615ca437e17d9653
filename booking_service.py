"""
Booking lifecycle.

Every status change goes through ``booking_machine`` and is announced on the
``booking_status_changed`` signal, which writes the notifications.
"""
import logging
from datetime import datetime, timedelta, timezone

from flask import current_app

from commission_service import enforce_cycle, is_cycle_due
from errors import NotFound, PermissionDenied, ValidationError
from extensions import db
from geo_service import parse_coordinates
from models import Booking, Service, commit_changes, utcnow
from notification_service import notify
from signals import booking_status_changed
from state_machines import booking_machine
from strike_service import record_no_show, refresh_suspension

logger = logging.getLogger(__name__)

CONFIRMING_EVENTS = ('confirm', 'accept_offer')


def _parse_datetime(value):
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (AttributeError, ValueError):
        raise ValidationError('scheduled_date must be an ISO 8601 date')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def get_booking(booking_id):
    booking = db.session.get(Booking, booking_id)
    if not booking:
        raise NotFound('Booking not found')
    return booking


def actor_for(booking, user):
    """The role ``user`` plays in ``booking``"""
    if user.id == booking.customer_id:
        return 'customer'
    if user.id == booking.provider_id:
        return 'provider'
    if user.is_admin:
        return 'admin'
    raise PermissionDenied('You are not part of this booking')


def create_booking(customer, data):
    if customer.user_type != 'customer':
        raise PermissionDenied('Only customers can book services')
    refresh_suspension(customer)
    if customer.is_banned or customer.is_suspended:
        raise PermissionDenied('Your account is suspended and cannot make bookings')

    service = db.session.get(Service, data.get('service_id'))
    if not service or not service.is_active or not service.admin_approved:
        raise ValidationError('This service is not available for booking')
    if service.provider.is_banned:
        raise ValidationError('This service is not available for booking')

    try:
        proposed_price = data.get('proposed_price')
        proposed_price = float(service.base_price if proposed_price is None else proposed_price)
    except (TypeError, ValueError):
        raise ValidationError('Proposed price must be a number')
    if proposed_price <= 0:
        raise ValidationError('Proposed price must be greater than zero')

    location = (data.get('location') or '').strip()
    if not location:
        raise ValidationError('Location is required')

    booking = Booking(
        customer_id=customer.id,
        provider_id=service.provider_id,
        service_id=service.id,
        title=(data.get('title') or service.title).strip(),
        description=data.get('description'),
        location=location,
        scheduled_date=_parse_datetime(data.get('scheduled_date')),
        proposed_price=proposed_price,
        status='pending',
    )
    db.session.add(booking)
    db.session.flush()

    notify(
        service.provider_id,
        'New Booking Request',
        f'{customer.full_name} requested "{booking.title}" for Rs. {proposed_price:.2f}.',
        'booking_request',
        booking.id,
    )
    commit_changes()
    logger.info("[BOOKING] Customer %s created booking %s for service %s", customer.id, booking.id, service.id)
    return booking


def _on_start(booking, **kwargs):
    booking.started_at = utcnow()


def _on_complete(booking, **kwargs):
    booking.completed_at = utcnow()
    rate = current_app.config['COMMISSION_RATE']
    price = booking.price
    booking.commission_amount = round(price * rate, 2)

    profile = booking.provider.provider_profile
    if profile is not None:
        profile.total_jobs = (profile.total_jobs or 0) + 1
        profile.total_earnings = (profile.total_earnings or 0) + price
        profile.total_commission = (profile.total_commission or 0) + booking.commission_amount

    db.session.flush()
    enforce_cycle(booking.provider_id)


def _on_cancel(booking, actor=None, reason=None, no_show=False, **kwargs):
    reason = str(reason or '').strip()
    if not reason:
        raise ValidationError('Please provide a reason for cancellation')
    booking.cancellation_reason = reason
    booking.cancelled_by = actor
    booking.cancelled_at = utcnow()
    if no_show:
        record_no_show(booking, reason)


def _on_terminal(booking, **kwargs):
    booking.location_access_active = False


_SIDE_EFFECTS = {
    'start': _on_start,
    'complete': _on_complete,
    'cancel': _on_cancel,
}


def apply_event(booking, event, actor, **kwargs):
    """Move ``booking`` along ``event`` without committing"""
    previous = booking.status
    if event in CONFIRMING_EVENTS and is_cycle_due(booking.provider_id):
        raise PermissionDenied('The provider has a pending commission payment and cannot accept bookings')

    booking.status = booking_machine.fire(event, previous, actor)
    side_effect = _SIDE_EFFECTS.get(event)
    if side_effect:
        side_effect(booking, actor=actor, **kwargs)
    if booking_machine.is_terminal(booking.status):
        _on_terminal(booking)

    booking_status_changed.send(booking, previous=previous, event=event, actor=actor)
    logger.info("[BOOKING] Booking %s: %s -> %s (%s by %s)", booking.id, previous, booking.status, event, actor)
    return booking


def fire_event(booking_id, user, event, **kwargs):
    if event == 'accept_offer':
        raise ValidationError('Price offers are accepted from the chat')
    booking = get_booking(booking_id)
    apply_event(booking, event, actor_for(booking, user), **kwargs)
    commit_changes()
    return booking


def cancel_booking(booking_id, user, reason=None, no_show=False):
    booking = get_booking(booking_id)
    actor = actor_for(booking, user)
    if no_show and actor != 'provider':
        raise PermissionDenied('Only the provider can report a no-show')
    if no_show and booking.status not in ('confirmed', 'coming'):
        raise ValidationError('A no-show can only be reported for a confirmed booking')

    apply_event(booking, 'cancel', actor, reason=reason, no_show=no_show)
    commit_changes()
    return booking


def available_actions(booking, user):
    actor = actor_for(booking, user)
    return [event for event in booking_machine.available_events(booking.status, actor) if event != 'accept_offer']


def list_bookings(user, status=None):
    query = Booking.query
    if user.is_provider:
        query = query.filter_by(provider_id=user.id)
    elif not user.is_admin:
        query = query.filter_by(customer_id=user.id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Booking.created_at.desc(), Booking.id.desc()).all()


def get_booking_for(booking_id, user):
    booking = get_booking(booking_id)
    actor_for(booking, user)
    return booking


def share_location(booking_id, user, lat, lng):
    booking = get_booking(booking_id)
    if user.id != booking.customer_id:
        raise PermissionDenied('Only the customer can share their location')
    if booking_machine.is_terminal(booking.status):
        raise ValidationError('Location can only be shared for an active booking')

    lat, lng = parse_coordinates(lat, lng)
    now = utcnow()
    booking.customer_location_lat = lat
    booking.customer_location_lng = lng
    booking.customer_location_shared_at = now
    booking.location_access_active = True
    booking.location_access_expires_at = now + timedelta(hours=current_app.config['LOCATION_ACCESS_HOURS'])

    notify(booking.provider_id, 'Location Shared',
           f'The customer shared their location for "{booking.title}".', 'location_shared', booking.id)
    commit_changes()
    return booking


def stop_sharing_location(booking_id, user):
    booking = get_booking(booking_id)
    if user.id != booking.customer_id:
        raise PermissionDenied('Only the customer can stop sharing their location')
    booking.location_access_active = False
    commit_changes()
    return booking


def get_shared_location(booking_id, user, now=None):
    booking = get_booking(booking_id)
    if user.id not in (booking.customer_id, booking.provider_id):
        raise PermissionDenied('You are not part of this booking')

    now = now or utcnow()
    if booking.location_access_active and booking.location_access_expires_at and booking.location_access_expires_at <= now:
        booking.location_access_active = False
        commit_changes()

    if not booking.location_access_active:
        return {'active': False}
    return {
        'active': True,
        'lat': booking.customer_location_lat,
        'lng': booking.customer_location_lng,
        'shared_at': booking.customer_location_shared_at.isoformat(),
        'expires_at': booking.location_access_expires_at.isoformat(),
    }
