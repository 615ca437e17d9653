import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import current_app, jsonify, request
from flask_login import current_user

from extensions import db, login_manager
from models import User

logger = logging.getLogger(__name__)


def create_token(user):
    """Issue a signed bearer token for ``user``"""
    token_payload = {
        'user_id': user.id,
        'email': user.email,
        'user_type': user.user_type,
        'exp': datetime.now(timezone.utc) + timedelta(days=current_app.config['JWT_EXPIRES_DAYS']),
    }
    return jwt.encode(
        token_payload,
        current_app.config['JWT_SECRET_KEY'],
        algorithm=current_app.config['JWT_ALGORITHM'],
    )


def decode_token(token):
    """Return the token payload, or None when it is expired or tampered with"""
    try:
        return jwt.decode(
            token,
            current_app.config['JWT_SECRET_KEY'],
            algorithms=[current_app.config['JWT_ALGORITHM']],
        )
    except jwt.ExpiredSignatureError:
        logger.info("[AUTH] Token expired")
    except jwt.InvalidTokenError:
        logger.info("[AUTH] Invalid token")
    return None


def _bearer_token():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header.split(' ', 1)[1].strip()
    # EventSource cannot set headers, the notification stream passes the token in the query string
    return request.args.get('access_token')


@login_manager.request_loader
def load_user_from_request(req):
    token = _bearer_token()
    if not token:
        return None

    payload = decode_token(token)
    if not payload:
        return None

    user = db.session.get(User, payload.get('user_id'))
    if not user or user.is_banned:
        return None
    return user


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'success': False, 'message': 'Authentication required'}), 401


def roles_required(*roles):
    """Allow the wrapped route only for authenticated users of the given types"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return unauthorized()
            if current_user.user_type not in roles:
                logger.warning("[AUTH] %s denied for user %s (%s)", f.__name__, current_user.id, current_user.user_type)
                return jsonify({'success': False, 'message': 'You do not have access to this resource'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


admin_required = roles_required('admin')
provider_required = roles_required('provider')
