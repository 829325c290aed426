"""
Token authentication.

Clients send the signed token in the ``x-auth-token`` header (an
``Authorization: Bearer`` header is accepted too). Tokens are HS256 JWTs
carrying the user id in ``sub``; there is no server-side session state.
"""
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Optional

import jwt
from flask import current_app, g, request

from src.database import db
from src.models.user import User
from src.services.errors import Unauthorized
from src.services.request_context import set_user_context
from src.services.structured_logging import get_logger

logger = get_logger('waifu.auth')

JWT_ALGORITHM = "HS256"


def issue_token(user: User) -> str:
    """Issue a signed token for a user."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "iat": now,
        "exp": now + timedelta(days=int(current_app.config.get("JWT_EXPIRES_DAYS", 7))),
    }
    return jwt.encode(payload, current_app.config["JWT_SECRET"], algorithm=JWT_ALGORITHM)


def _token_from_request() -> Optional[str]:
    token = request.headers.get('x-auth-token')
    if token:
        return token.strip()
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:].strip()
    return None


def _load_user(token: str) -> User:
    try:
        payload = jwt.decode(token, current_app.config["JWT_SECRET"], algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.log_auth_event('token_verification', success=False, reason=type(e).__name__)
        raise Unauthorized("Token is not valid")

    user = db.session.get(User, payload.get("sub"))
    if user is None:
        logger.log_auth_event('token_verification', success=False, reason='unknown_user')
        raise Unauthorized("Token is not valid")
    return user


def require_auth(f):
    """Decorator to require a valid token; sets g.current_user."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _token_from_request()
        if not token:
            raise Unauthorized("No token, authorization denied")
        g.current_user = _load_user(token)
        set_user_context(g.current_user.id)
        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """Like require_auth, but a missing token leaves g.current_user as None."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _token_from_request()
        g.current_user = _load_user(token) if token else None
        if g.current_user is not None:
            set_user_context(g.current_user.id)
        return f(*args, **kwargs)

    return decorated_function


def current_user_id() -> Optional[str]:
    user = getattr(g, 'current_user', None)
    return user.id if user is not None else None
