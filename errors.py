"""
Error types raised by the service layer and the helpers routes use to turn
them into JSON responses.
"""
import logging
from functools import wraps

from flask import jsonify
from sqlalchemy.orm.exc import StaleDataError

from extensions import db

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self):
        data = dict(self.payload)
        data['success'] = False
        data['message'] = self.message
        return data


class ValidationError(MarketplaceError):
    status_code = 400


class AuthError(MarketplaceError):
    status_code = 401


class PermissionDenied(MarketplaceError):
    status_code = 403


class NotFound(MarketplaceError):
    status_code = 404


class InvalidTransition(MarketplaceError):
    status_code = 409


class ConflictError(MarketplaceError):
    status_code = 409


class UploadError(MarketplaceError):
    status_code = 502


def is_permission_error(message):
    """True for backend row-level-security / permission failures."""
    if not message:
        return False
    return 'RLS' in message or 'permission' in message.lower()


def error_response(error):
    return jsonify(error.to_dict()), error.status_code


def handle_errors(action):
    """Wrap a route so service errors become JSON responses.

    Anything that is not a MarketplaceError rolls the session back and is
    reported as a 500 with the action name in the message.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except StaleDataError:
                db.session.rollback()
                logger.warning("[%s] concurrent update detected", action.upper())
                return error_response(ConflictError('This record was changed by someone else. Reload and try again.'))
            except MarketplaceError as e:
                db.session.rollback()
                if is_permission_error(e.message):
                    logger.warning("[%s] permission error: %s", action.upper(), e.message)
                else:
                    logger.info("[%s] %s", action.upper(), e.message)
                return error_response(e)
            except Exception as e:
                db.session.rollback()
                logger.exception("[%s] unexpected error", action.upper())
                return jsonify({'success': False, 'message': f'Failed to {action}: {str(e)}'}), 500
        return decorated_function
    return decorator
