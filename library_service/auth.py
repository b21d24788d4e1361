import logging
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import current_app, g, request
from sqlalchemy import select
from werkzeug.security import check_password_hash, generate_password_hash

from .db import SessionLocal
from .errors import ForbiddenError, UnauthorizedError
from .models import ROLE_ADMIN, User

logger = logging.getLogger(__name__)

CurrentUser = namedtuple("CurrentUser", ["id", "email", "role"])


def hash_password(raw):
    return generate_password_hash(raw)


def verify_password(password_hash, raw):
    return check_password_hash(password_hash, raw)


def issue_token(user):
    """Sign an access token carrying the user's id and role."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "iat": now,
        "exp": now + timedelta(minutes=current_app.config["JWT_EXP_MINUTES"]),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET"],
        algorithm=current_app.config["JWT_ALGORITHM"],
    )


def decode_token(token):
    try:
        return jwt.decode(
            token,
            current_app.config["JWT_SECRET"],
            algorithms=[current_app.config["JWT_ALGORITHM"]],
        )
    except jwt.PyJWTError as exc:
        logger.warning("Rejected token on %s: %s", request.path, exc)
        raise UnauthorizedError("Invalid or expired token") from exc


def _bearer_token():
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _load_current_user():
    token = _bearer_token()
    if token is None:
        logger.warning("Missing bearer token on %s", request.path)
        raise UnauthorizedError("Missing bearer token")

    claims = decode_token(token)
    try:
        user_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise UnauthorizedError("Invalid or expired token") from exc

    session = SessionLocal()
    try:
        user = session.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
        if not user:
            logger.warning("Token for unknown user %s on %s", user_id, request.path)
            raise UnauthorizedError("User no longer exists")
        return CurrentUser(id=user.id, email=user.email, role=user.role)
    finally:
        session.close()


def login_required(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        g.current_user = _load_current_user()
        return func(*args, **kwargs)

    return wrapper


def admin_required(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        g.current_user = _load_current_user()
        if g.current_user.role != ROLE_ADMIN:
            logger.warning(
                "User %s denied admin route %s", g.current_user.id, request.path
            )
            raise ForbiddenError("Admin access required")
        return func(*args, **kwargs)

    return wrapper
