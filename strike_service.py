import logging
from datetime import timedelta

from flask import current_app

from errors import NotFound, ValidationError
from extensions import db
from models import NoShowStrike, User, UserSuspension, commit_changes, utcnow
from notification_service import notify

logger = logging.getLogger(__name__)


def strikes_in_window(user_id, now=None):
    now = now or utcnow()
    since = now - timedelta(days=current_app.config['STRIKE_WINDOW_DAYS'])
    return NoShowStrike.query.filter(
        NoShowStrike.user_id == user_id,
        NoShowStrike.strike_date >= since,
    ).count()


def suspend_user(user, reason, hours=None, admin=None, now=None):
    now = now or utcnow()
    hours = hours or current_app.config['SUSPENSION_HOURS']
    end = now + timedelta(hours=hours)

    user.is_suspended = True
    user.suspension_end_time = end
    suspension = UserSuspension(
        user_id=user.id,
        suspension_reason=reason,
        suspension_start=now,
        suspension_end=end,
        is_active=True,
        auto_suspension=admin is None,
        created_by=admin.id if admin else None,
    )
    db.session.add(suspension)
    notify(
        user.id,
        'Account Suspended',
        f'Your account has been suspended for {hours} hours. Reason: {reason}',
        'account_suspended',
    )
    logger.warning("[STRIKES] User %s suspended until %s: %s", user.id, end.isoformat(), reason)
    return suspension


def record_no_show(booking, reason=None, now=None):
    """Add a no-show strike against the booking's customer.

    The customer is suspended automatically once they reach the strike
    limit inside the rolling window. Changes are left for the caller to
    commit.
    """
    now = now or utcnow()
    customer = booking.customer
    limit = current_app.config['STRIKE_LIMIT']

    strike = NoShowStrike(
        user_id=customer.id,
        booking_id=booking.id,
        provider_id=booking.provider_id,
        strike_date=now,
        reason=reason or 'Customer did not show up',
    )
    db.session.add(strike)
    customer.no_show_strikes_count = (customer.no_show_strikes_count or 0) + 1
    customer.last_strike_date = now

    recent = strikes_in_window(customer.id, now)
    notify(
        customer.id,
        'No-Show Strike',
        f'You received a no-show strike for "{booking.title}". '
        f'You now have {recent} of {limit} strikes this week.',
        'strike_warning',
        booking.id,
    )
    logger.info("[STRIKES] Strike for user %s on booking %s (%d in window)", customer.id, booking.id, recent)

    if recent >= limit and not customer.is_suspended:
        suspend_user(customer, f'{recent} no-show strikes within {current_app.config["STRIKE_WINDOW_DAYS"]} days', now=now)
    return strike


def refresh_suspension(user, now=None):
    """Lift an expired suspension. Returns True when one was lifted."""
    now = now or utcnow()
    if not user.is_suspended or not user.suspension_end_time or user.suspension_end_time > now:
        return False

    user.is_suspended = False
    user.suspension_end_time = None
    UserSuspension.query.filter_by(user_id=user.id, is_active=True).update(
        {UserSuspension.is_active: False}, synchronize_session=False
    )
    logger.info("[STRIKES] Suspension of user %s expired", user.id)
    return True


def lift_suspension(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound('User not found')
    if not user.is_suspended:
        raise ValidationError('User is not suspended')

    user.is_suspended = False
    user.suspension_end_time = None
    UserSuspension.query.filter_by(user_id=user.id, is_active=True).update(
        {UserSuspension.is_active: False}, synchronize_session=False
    )
    notify(user.id, 'Suspension Lifted', 'Your account suspension has been lifted.', 'account_update')
    commit_changes()
    logger.info("[STRIKES] Suspension of user %s lifted by admin", user.id)
    return user


def set_banned(user_id, banned, admin):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound('User not found')
    if user.id == admin.id:
        raise ValidationError('You cannot ban yourself')
    if user.is_admin and banned:
        raise ValidationError('Admin accounts cannot be banned')

    user.is_banned = bool(banned)
    commit_changes()
    logger.warning("[ADMIN] User %s %s by admin %s", user.id, 'banned' if banned else 'unbanned', admin.id)
    return user


def reset_weekly_strikes():
    """Reset every user's strike counter. Strike history rows are kept."""
    updated = User.query.filter(User.no_show_strikes_count > 0).update(
        {User.no_show_strikes_count: 0}, synchronize_session=False
    )
    commit_changes()
    logger.info("[STRIKES] Weekly reset cleared strikes for %d users", updated)
    return updated


def users_with_strikes():
    return (
        User.query
        .filter((User.no_show_strikes_count > 0) | (User.is_suspended.is_(True)))
        .order_by(User.no_show_strikes_count.desc())
        .all()
    )
