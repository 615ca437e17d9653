import logging
import random
import re

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from email_service import send_confirmation_email
from errors import AuthError, PermissionDenied, ValidationError, handle_errors
from extensions import db
from models import User, commit_changes
from security import create_token
from strike_service import refresh_suspension

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
SIGNUP_TYPES = ('customer', 'provider')
THEMES = ('light', 'dark', 'system')


def _code():
    return str(random.randint(100000, 999999))


def _check_code(user, code_field, attempts_field, code, label):
    """Compare a submitted code, discarding the stored one after too many misses"""
    expected = getattr(user, code_field)
    if not expected:
        raise ValidationError(f'Please request a new {label}')
    if code == expected:
        setattr(user, attempts_field, 0)
        return

    attempts = (getattr(user, attempts_field) or 0) + 1
    if attempts >= current_app.config['MAX_CODE_ATTEMPTS']:
        setattr(user, code_field, None)
        setattr(user, attempts_field, 0)
        commit_changes()
        logger.warning("[AUTH] Too many wrong codes for user %s, %s discarded", user.id, label)
        raise ValidationError(f'Too many incorrect attempts. Please request a new {label}.')

    setattr(user, attempts_field, attempts)
    commit_changes()
    raise ValidationError(f'Invalid {label}')


@auth_bp.route('/register', methods=['POST'])
@handle_errors('register')
def register():
    """Register a new account; the email must be confirmed before login"""
    data = request.get_json(silent=True) or {}
    full_name = (data.get('full_name') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    user_type = data.get('user_type', 'customer')

    logger.info("[REGISTER] Registration attempt for: %s", email)

    if not full_name or not email or not password:
        raise ValidationError('Full name, email and password are required')
    if not EMAIL_PATTERN.match(email):
        raise ValidationError('Please enter a valid email address')
    if len(password) < 6:
        raise ValidationError('Password must be at least 6 characters')
    if user_type not in SIGNUP_TYPES:
        raise ValidationError('Account type must be customer or provider')
    if User.query.filter_by(email=email).first():
        raise ValidationError('An account with this email already exists')

    user = User(
        full_name=full_name,
        email=email,
        phone=data.get('phone'),
        user_type=user_type,
        email_confirmed=False,
        confirmation_code=_code(),
    )
    user.set_password(password)
    db.session.add(user)
    commit_changes()

    email_sent = send_confirmation_email(email, user.confirmation_code)
    logger.info("[REGISTER] User %s created (email sent: %s)", user.id, email_sent)

    return jsonify({
        'success': True,
        'message': 'Registration successful. Please check your email for the confirmation code.',
        'email_sent': email_sent,
        'user': user.to_dict(),
    }), 201


@auth_bp.route('/confirm', methods=['GET', 'POST'])
@handle_errors('confirm email')
def confirm_email():
    """Confirm an email address from the link parameters or a posted code"""
    data = request.args if request.method == 'GET' else (request.get_json(silent=True) or {})
    email = (data.get('email') or '').strip().lower()
    code = (data.get('code') or '').strip()

    if not email or not code:
        raise ValidationError('Email and confirmation code are required')

    user = User.query.filter_by(email=email).first()
    if not user:
        raise ValidationError('Invalid confirmation link')
    if user.email_confirmed:
        return jsonify({'success': True, 'message': 'Email already confirmed'}), 200
    logger.info("[CONFIRM] Confirmation attempt for: %s", email)
    _check_code(user, 'confirmation_code', 'confirmation_attempts', code, 'confirmation code')

    user.email_confirmed = True
    user.confirmation_code = None
    commit_changes()
    logger.info("[CONFIRM] Email confirmed for: %s", email)

    return jsonify({
        'success': True,
        'message': 'Email confirmed. You can now log in.',
        'token': create_token(user),
        'user': user.to_dict(),
    }), 200


@auth_bp.route('/resend-confirmation', methods=['POST'])
@handle_errors('resend confirmation')
def resend_confirmation():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    if not email:
        raise ValidationError('Email is required')

    user = User.query.filter_by(email=email).first()
    if not user:
        raise ValidationError('No account found with this email')
    if user.email_confirmed:
        raise ValidationError('Email is already confirmed')

    user.confirmation_code = _code()
    user.confirmation_attempts = 0
    commit_changes()
    email_sent = send_confirmation_email(email, user.confirmation_code)

    return jsonify({'success': True, 'message': 'Confirmation code sent', 'email_sent': email_sent}), 200


@auth_bp.route('/login', methods=['POST'])
@handle_errors('log in')
def login():
    """Login user and return JWT token"""
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    logger.info("[LOGIN] Login attempt for: %s", email)

    if not email or not password:
        raise ValidationError('Email and password required')

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        logger.info("[LOGIN] Invalid credentials for: %s", email)
        raise AuthError('Invalid credentials')

    if not user.email_confirmed:
        raise AuthError('Please confirm your email before logging in', payload={'requires_confirmation': True})

    if user.is_banned:
        logger.warning("[LOGIN] Banned user tried to log in: %s", email)
        raise PermissionDenied('Your account has been banned. Please contact support.')

    if refresh_suspension(user):
        commit_changes()
    if user.is_suspended:
        raise PermissionDenied(
            'Your account is suspended',
            payload={'suspension_end_time': user.suspension_end_time.isoformat() if user.suspension_end_time else None},
        )

    logger.info("[LOGIN] Login successful for: %s", email)
    return jsonify({
        'success': True,
        'message': 'Login successful',
        'token': create_token(user),
        'user': user.to_dict(),
        'provider_profile': user.provider_profile.to_dict() if user.provider_profile else None,
    }), 200


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({
        'success': True,
        'user': current_user.to_dict(),
        'provider_profile': current_user.provider_profile.to_dict(include_documents=True)
        if current_user.provider_profile else None,
    }), 200


@auth_bp.route('/me', methods=['PATCH'])
@login_required
@handle_errors('update profile')
def update_me():
    data = request.get_json(silent=True) or {}

    if 'full_name' in data:
        full_name = (data.get('full_name') or '').strip()
        if not full_name:
            raise ValidationError('Full name cannot be empty')
        current_user.full_name = full_name
    if 'phone' in data and data.get('phone') != current_user.phone:
        current_user.phone = data.get('phone')
        current_user.phone_verified = False
    if 'avatar_url' in data:
        current_user.avatar_url = data.get('avatar_url')
    if 'theme' in data:
        if data['theme'] not in THEMES:
            raise ValidationError('Theme must be light, dark or system')
        current_user.theme = data['theme']

    commit_changes()
    return jsonify({'success': True, 'user': current_user.to_dict()}), 200


@auth_bp.route('/phone/send-otp', methods=['POST'])
@login_required
@handle_errors('send verification code')
def send_phone_otp():
    data = request.get_json(silent=True) or {}
    phone = (data.get('phone') or current_user.phone or '').strip()
    if not phone:
        raise ValidationError('Phone number is required')

    current_user.phone = phone
    current_user.phone_verified = False
    current_user.phone_otp = _code()
    current_user.phone_otp_attempts = 0
    commit_changes()

    # No SMS gateway is configured; the code is only written to the log
    logger.info("[PHONE] Verification code for user %s (%s): %s", current_user.id, phone, current_user.phone_otp)
    return jsonify({'success': True, 'message': 'Verification code sent'}), 200


@auth_bp.route('/phone/verify-otp', methods=['POST'])
@login_required
@handle_errors('verify phone')
def verify_phone_otp():
    data = request.get_json(silent=True) or {}
    code = str(data.get('code') or '').strip()

    _check_code(current_user, 'phone_otp', 'phone_otp_attempts', code, 'verification code')

    current_user.phone_verified = True
    current_user.phone_otp = None
    commit_changes()
    return jsonify({'success': True, 'message': 'Phone number verified', 'user': current_user.to_dict()}), 200
