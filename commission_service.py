"""
Commission accounting.

Commission is owed on every completed booking at ``COMMISSION_RATE`` of its
price. Providers settle it in cycles of ``COMMISSION_CYCLE_JOBS`` jobs by
submitting a payment with a transfer screenshot that an admin approves.
While a cycle is due the provider's services are switched off.
"""
import calendar
import logging
import time
from collections import OrderedDict
from datetime import date, datetime, timedelta

import pytz
from flask import current_app

from errors import NotFound, PermissionDenied, ValidationError
from extensions import db
from models import Booking, CommissionPayment, PaymentMethod, Service, User, commit_changes, utcnow
from notification_service import notify, notify_admins
from upload_service import SCREENSHOT_SLOT, store_file, validate_file

logger = logging.getLogger(__name__)


def commission_rate():
    return current_app.config['COMMISSION_RATE']


def _money(value):
    return round(value, 2)


def _period_starts(now):
    day_start = datetime(now.year, now.month, now.day)
    week_start = day_start - timedelta(days=(now.weekday() + 1) % 7)  # weeks start on Sunday
    month_start = datetime(now.year, now.month, 1)
    return week_start, month_start


def aggregate_commissions(now=None):
    """Recompute commission totals from completed bookings and approved payments.

    Nothing is written, so calling this repeatedly on the same data returns
    the same figures.
    """
    now = now or utcnow()
    rate = commission_rate()
    cycle_jobs = current_app.config['COMMISSION_CYCLE_JOBS']
    week_start, month_start = _period_starts(now)

    providers = OrderedDict()

    def row_for(provider_id):
        if provider_id not in providers:
            providers[provider_id] = {
                'provider_id': provider_id,
                'completed_jobs': 0,
                'earnings': 0.0,
                'approved_paid': 0.0,
                'approved_payments': 0,
            }
        return providers[provider_id]

    completed = Booking.query.filter_by(status='completed').order_by(Booking.provider_id, Booking.id).all()
    for booking in completed:
        row = row_for(booking.provider_id)
        row['completed_jobs'] += 1
        row['earnings'] += booking.price

    approved = CommissionPayment.query.filter_by(status='approved').order_by(CommissionPayment.id).all()
    weekly = monthly = 0.0
    for payment in approved:
        row = row_for(payment.provider_id)
        row['approved_paid'] += payment.amount
        row['approved_payments'] += 1
        if payment.submitted_at and payment.submitted_at >= week_start:
            weekly += payment.amount
        if payment.submitted_at and payment.submitted_at >= month_start:
            monthly += payment.amount

    pending_amount = sum(
        payment.amount for payment in CommissionPayment.query.filter_by(status='pending').all()
    )

    rows = []
    total_expected = total_cleared = total_due = total_earnings = 0.0
    providers_pending = 0
    for row in providers.values():
        expected = rate * row['earnings']
        cleared = min(expected, row['approved_paid'])
        due = expected - cleared
        if row['completed_jobs'] >= cycle_jobs and row['approved_payments'] == 0:
            providers_pending += 1

        total_earnings += row['earnings']
        total_expected += expected
        total_cleared += cleared
        total_due += due
        rows.append({
            'provider_id': row['provider_id'],
            'completed_jobs': row['completed_jobs'],
            'earnings': _money(row['earnings']),
            'expected': _money(expected),
            'cleared': _money(cleared),
            'due': _money(due),
        })

    return {
        'rate': rate,
        'providers': rows,
        'total_earnings': _money(total_earnings),
        'total_expected': _money(total_expected),
        'total_cleared': _money(total_cleared),
        'total_due': _money(total_due),
        'pending_payments_amount': _money(pending_amount),
        'weekly_commission': _money(weekly),
        'monthly_commission': _money(monthly),
        'providers_pending': providers_pending,
    }


def provider_cycle(provider_id):
    """Jobs of the provider's current unpaid commission cycle.

    Completed jobs are taken in completion order; the first ``n`` of them
    are covered by the ``booking_count`` of approved payments.
    """
    rate = commission_rate()
    cycle_jobs = current_app.config['COMMISSION_CYCLE_JOBS']

    completed = (
        Booking.query
        .filter_by(provider_id=provider_id, status='completed')
        .order_by(Booking.completed_at, Booking.id)
        .all()
    )
    covered = int(
        db.session.query(db.func.coalesce(db.func.sum(CommissionPayment.booking_count), 0))
        .filter(CommissionPayment.provider_id == provider_id, CommissionPayment.status == 'approved')
        .scalar()
    )
    uncovered = completed[covered:]
    earnings = sum(booking.price for booking in uncovered)

    pending = CommissionPayment.query.filter_by(provider_id=provider_id, status='pending').first()
    return {
        'provider_id': provider_id,
        'completed_jobs': len(completed),
        'covered_jobs': min(covered, len(completed)),
        'cycle_jobs': len(uncovered),
        'cycle_size': cycle_jobs,
        'booking_ids': [booking.id for booking in uncovered],
        'earnings': _money(earnings),
        'amount_due': _money(rate * earnings),
        'is_due': len(uncovered) >= cycle_jobs,
        'pending_payment': pending.to_dict() if pending else None,
    }


def is_cycle_due(provider_id):
    return provider_cycle(provider_id)['is_due']


def enforce_cycle(provider_id):
    """Switch off the provider's services when a commission cycle is due.

    Returns True when the cycle is due. Changes are left for the caller to
    commit.
    """
    cycle = provider_cycle(provider_id)
    if not cycle['is_due']:
        return False

    deactivated = Service.query.filter_by(provider_id=provider_id, is_active=True).update(
        {Service.is_active: False}, synchronize_session='fetch'
    )
    if deactivated:
        notify(
            provider_id,
            'Commission Payment Due',
            f'You have completed {cycle["cycle_jobs"]} jobs. Please pay the commission of '
            f'Rs. {cycle["amount_due"]:.2f} to reactivate your services.',
            'commission_due',
        )
        logger.info("[COMMISSION] Deactivated %d services of provider %s, cycle due", deactivated, provider_id)
    return True


def submit_payment(user, form, screenshot, storage, sleep=time.sleep):
    """Record a commission payment with its transfer screenshot for admin review"""
    if not user.is_provider:
        raise PermissionDenied('Only providers pay commission')

    try:
        amount = float(form.get('amount'))
    except (TypeError, ValueError):
        raise ValidationError('Amount must be a number')
    if amount <= 0:
        raise ValidationError('Amount must be greater than zero')

    method_code = (form.get('payment_method') or '').strip()
    method = PaymentMethod.query.filter_by(code=method_code, is_active=True).first()
    if not method:
        raise ValidationError('Please choose an available payment method')

    if screenshot is None:
        raise ValidationError('A payment screenshot is required')
    validate_file(screenshot, SCREENSHOT_SLOT)

    if CommissionPayment.query.filter_by(provider_id=user.id, status='pending').first():
        raise ValidationError('You already have a payment waiting for review')

    cycle = provider_cycle(user.id)
    path = store_file(storage, user.id, SCREENSHOT_SLOT, screenshot, sleep=sleep)

    payment = CommissionPayment(
        provider_id=user.id,
        amount=amount,
        booking_count=cycle['cycle_jobs'],
        payment_method=method.code,
        screenshot_url=path,
        status='pending',
    )
    db.session.add(payment)
    notify_admins(
        'Commission Payment Submitted',
        f'{user.full_name} submitted a commission payment of Rs. {amount:.2f} via {method.name}.',
        'commission_payment',
    )
    commit_changes()
    logger.info("[COMMISSION] Provider %s submitted payment %s of %.2f", user.id, payment.id, amount)
    return payment


def get_payment(payment_id):
    payment = db.session.get(CommissionPayment, payment_id)
    if not payment:
        raise NotFound('Commission payment not found')
    return payment


def list_payments(status=None, provider_id=None):
    query = CommissionPayment.query
    if status:
        query = query.filter_by(status=status)
    if provider_id:
        query = query.filter_by(provider_id=provider_id)
    return query.order_by(CommissionPayment.submitted_at.desc()).all()


def approve_payment(payment_id, admin):
    payment = get_payment(payment_id)
    if payment.status != 'pending':
        raise ValidationError(f'This payment has already been {payment.status}')

    payment.status = 'approved'
    payment.reviewed_at = utcnow()
    payment.reviewed_by = admin.id
    db.session.flush()

    if not is_cycle_due(payment.provider_id):
        Service.query.filter_by(provider_id=payment.provider_id, admin_approved=True).update(
            {Service.is_active: True}, synchronize_session='fetch'
        )

    notify(
        payment.provider_id,
        'Commission Payment Approved',
        f'Your commission payment of Rs. {payment.amount:.2f} has been approved. Your services are active again.',
        'commission_payment',
    )
    commit_changes()
    logger.info("[COMMISSION] Payment %s approved by admin %s", payment.id, admin.id)
    return payment


def reject_payment(payment_id, admin, reason):
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('A rejection reason is required')

    payment = get_payment(payment_id)
    if payment.status != 'pending':
        raise ValidationError(f'This payment has already been {payment.status}')

    payment.status = 'rejected'
    payment.rejection_reason = reason
    payment.reviewed_at = utcnow()
    payment.reviewed_by = admin.id
    notify(
        payment.provider_id,
        'Commission Payment Rejected',
        f'Your commission payment of Rs. {payment.amount:.2f} was rejected. Reason: {reason}',
        'commission_payment',
    )
    commit_changes()
    logger.info("[COMMISSION] Payment %s rejected by admin %s", payment.id, admin.id)
    return payment


def list_payment_methods(include_inactive=False):
    query = PaymentMethod.query
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(PaymentMethod.id).all()


def save_payment_method(data, method_id=None):
    if method_id is None:
        name = (data.get('name') or '').strip()
        code = (data.get('code') or '').strip().lower()
        if not name or not code:
            raise ValidationError('Name and code are required')
        if PaymentMethod.query.filter_by(code=code).first():
            raise ValidationError(f'A payment method with code "{code}" already exists')
        method = PaymentMethod(name=name, code=code)
        db.session.add(method)
    else:
        method = db.session.get(PaymentMethod, method_id)
        if not method:
            raise NotFound('Payment method not found')
        if data.get('name'):
            method.name = data['name'].strip()

    for field in ('account_details', 'instructions'):
        if field in data:
            setattr(method, field, data[field])
    if 'is_active' in data:
        method.is_active = bool(data['is_active'])

    commit_changes()
    return method


def deactivate_payment_method(method_id):
    return save_payment_method({'is_active': False}, method_id)


def provider_summary(user):
    """Commission standing of one provider, for their dashboard"""
    cycle = provider_cycle(user.id)
    profile = user.provider_profile
    cycle['total_commission'] = _money(float(profile.total_commission or 0)) if profile else 0.0
    cycle['total_earnings'] = _money(float(profile.total_earnings or 0)) if profile else 0.0
    cycle['rate'] = commission_rate()
    cycle['payments'] = [payment.to_dict() for payment in list_payments(provider_id=user.id)]
    return cycle


def providers_by_id(provider_ids):
    if not provider_ids:
        return {}
    return {user.id: user for user in User.query.filter(User.id.in_(provider_ids)).all()}


# Earnings history, in calendar months except for the short ranges
EARNINGS_RANGES = OrderedDict([
    ('7days', ('days', 7)),
    ('30days', ('days', 30)),
    ('3months', ('months', 3)),
    ('6months', ('months', 6)),
    ('1year', ('months', 12)),
])


def _months_before(day, months):
    index = day.year * 12 + day.month - 1 - months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def _range_start(today, range_name):
    if range_name not in EARNINGS_RANGES:
        raise ValidationError(f'range must be one of: {", ".join(EARNINGS_RANGES)}')
    unit, amount = EARNINGS_RANGES[range_name]
    if unit == 'days':
        return today - timedelta(days=amount - 1)
    return _months_before(today, amount)


def earnings_history(provider_id, range_name='3months', now=None):
    """Completed-job earnings of one provider, day by day.

    Every day of the range is listed, with zero values on days without
    completed jobs. Days follow the configured ``TIMEZONE``.
    """
    tz = pytz.timezone(current_app.config['TIMEZONE'])
    now = now or utcnow()
    today = pytz.utc.localize(now).astimezone(tz).date()
    start_day = _range_start(today, range_name)
    start = tz.localize(datetime.combine(start_day, datetime.min.time())).astimezone(pytz.utc).replace(tzinfo=None)

    days = OrderedDict()
    day = start_day
    while day <= today:
        days[day] = {'date': day.isoformat(), 'earnings': 0.0, 'bookings': 0, 'commission': 0.0}
        day += timedelta(days=1)

    rate = commission_rate()
    bookings = (
        Booking.query
        .filter(Booking.provider_id == provider_id, Booking.status == 'completed')
        .filter(Booking.completed_at >= start, Booking.completed_at <= now)
        .order_by(Booking.completed_at)
        .all()
    )
    for booking in bookings:
        local_day = pytz.utc.localize(booking.completed_at).astimezone(tz).date()
        row = days.get(local_day)
        if row is None:
            continue
        price = booking.price
        commission = booking.commission_amount if booking.commission_amount is not None else price * rate
        row['earnings'] += price
        row['bookings'] += 1
        row['commission'] += float(commission)

    history = []
    for row in days.values():
        row['earnings'] = _money(row['earnings'])
        row['commission'] = _money(row['commission'])
        history.append(row)

    return {
        'range': range_name,
        'start_date': start_day.isoformat(),
        'end_date': today.isoformat(),
        'days': history,
        'total_earnings': _money(sum(row['earnings'] for row in history)),
        'total_bookings': sum(row['bookings'] for row in history),
        'total_commission': _money(sum(row['commission'] for row in history)),
    }
