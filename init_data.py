"""
Initialize database with the admin account and commission payment methods
"""
import logging

from flask import current_app

from extensions import db
from models import PaymentMethod, User

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_METHODS = [
    {
        'name': 'Bank Transfer',
        'code': 'bank_transfer',
        'account_details': 'Account Name: TaskKarwalo\nAccount Number: 123456789\nBank: Example Bank',
        'instructions': 'Transfer the commission amount and upload a screenshot of the receipt.',
    },
    {
        'name': 'EasyPaisa',
        'code': 'easypaisa',
        'account_details': 'EasyPaisa Number: 03001234567',
        'instructions': 'Send the commission amount and upload a screenshot of the confirmation.',
    },
    {
        'name': 'JazzCash',
        'code': 'jazzcash',
        'account_details': 'JazzCash Number: 03011234567',
        'instructions': 'Send the commission amount and upload a screenshot of the confirmation.',
    },
]


def ensure_admin(email, password, full_name='Admin User', reset_password=False):
    """Create the admin account, or promote an existing user to admin.

    The password of an existing account is only replaced with ``reset_password``.
    """
    email = email.strip().lower()
    admin_user = User.query.filter_by(email=email).first()
    if admin_user:
        if admin_user.user_type != 'admin':
            admin_user.user_type = 'admin'
            admin_user.email_confirmed = True
            logger.info("[INIT] Promoted %s to admin", email)
        if reset_password:
            admin_user.set_password(password)
            logger.info("[INIT] Password reset for admin %s", email)
        return admin_user, False

    admin_user = User(
        full_name=full_name,
        email=email,
        user_type='admin',
        email_confirmed=True,
    )
    admin_user.set_password(password)
    db.session.add(admin_user)
    db.session.flush()
    logger.info("[INIT] Created admin user: %s with ID: %s", email, admin_user.id)
    return admin_user, True


def ensure_payment_methods():
    created = 0
    for method_data in DEFAULT_PAYMENT_METHODS:
        if not PaymentMethod.query.filter_by(code=method_data['code']).first():
            db.session.add(PaymentMethod(**method_data))
            created += 1
    return created


def create_initial_data():
    """Create initial data for the application"""
    try:
        ensure_admin(current_app.config['ADMIN_EMAIL'], current_app.config['ADMIN_PASSWORD'])
        created = ensure_payment_methods()
        db.session.commit()
        logger.info("[INIT] Initial data ready (%d payment methods added)", created)
    except Exception:
        db.session.rollback()
        logger.exception("[INIT] Error creating initial data")
        raise
