from functools import wraps
from flask import request, jsonify
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from models.user import User, UserSession
from extensions import db
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

# Seconds between last_activity writes for one session
ACTIVITY_WRITE_INTERVAL = 300


class AuthError(Exception):
    def __init__(self, message):
        super().__init__(message)
        self.message = message


def _unauthenticated(message):
    return jsonify({'error': message, 'authenticated': False}), 401


def _touch(session):
    now = datetime.utcnow()
    if session.last_activity and (now - session.last_activity).total_seconds() <= ACTIVITY_WRITE_INTERVAL:
        return
    session.last_activity = now
    db.session.commit()


def authenticate_request():
    """
    Resolve the caller from the JWT and the X-Session-Token header.
    Returns (user, session); raises AuthError when either is missing or stale.
    """
    try:
        verify_jwt_in_request()
        user_id = int(get_jwt_identity())
    except (JWTExtendedException, PyJWTError, TypeError, ValueError) as e:
        raise AuthError(f'Authentication failed: {e}') from None

    token = request.headers.get('X-Session-Token')
    if not token:
        raise AuthError('Session token required in X-Session-Token header')

    session = UserSession.query.filter_by(session_token=token, user_id=user_id).first()
    if not session:
        raise AuthError('Invalid session')
    if not session.is_valid():
        raise AuthError('Session expired or revoked')

    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise AuthError('User not found or inactive')

    _touch(session)
    return user, session


def require_session():
    """
    JWT plus revocable UserSession; attaches request.current_user and
    request.current_session for the route.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                user, session = authenticate_request()
            except AuthError as e:
                logger.info(f"Rejected {request.method} {request.path}: {e.message}")
                return _unauthenticated(e.message)

            request.current_user = user
            request.current_session = session
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_role(*roles):
    """
    Role gate, applied after require_session()

    Usage:
        @require_session()
        @require_role('recruiter', 'admin')
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(request, 'current_user', None)
            if user is None or user.role not in roles:
                logger.info(
                    f"Role check failed on {request.path}: "
                    f"user={getattr(user, 'id', None)} role={getattr(user, 'role', None)}"
                )
                return jsonify({'error': 'Not authorized'}), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
