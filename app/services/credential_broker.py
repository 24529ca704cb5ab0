"""
Credential broker: turns WeChat codes, guest identities and username/password
pairs into a persisted ``User`` plus a signed session token.
"""

import hmac
import logging
import re
from datetime import timedelta

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from app.errors import (
    ConfigurationError,
    Conflict,
    InvalidCredentials,
    UpstreamAuthFailure,
    ValidationError,
)
from app.extensions import db
from app.models import User
from app.services import wechat
from app.services.role_resolver import ADMIN, resolve_role
from app.utils.time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
BCRYPT_ROUNDS = 10
MAX_PASSWORD_BYTES = 72
DEFAULT_EXPIRES_IN = "14d"
GUEST_DISPLAY_NAME = "Guest User"
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def _clean(value):
    """Trim strings; empty values become None so sparse unique indexes hold."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _clean_email(value):
    value = _clean(value)
    return value.lower() if value else None


def parse_expires_in(value) -> timedelta:
    """Accepts ``14d``, ``12h``, ``30m``, ``45s`` or a bare number of seconds."""
    raw = str(value or DEFAULT_EXPIRES_IN).strip().lower()
    match = re.fullmatch(r"(\d+)\s*([smhdw]?)", raw)
    if not match:
        raise ConfigurationError(f"Invalid JWT_EXPIRES_IN value: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNITS.get(unit or "s"))


def _signing_secret():
    secret = current_app.config.get("JWT_SECRET")
    if not secret:
        raise ConfigurationError("JWT secret is not configured")
    return secret


# --- Tokens ---------------------------------------------------------------


def issue_token(user) -> str:
    secret = _signing_secret()
    now = utcnow()
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "provider": user.provider,
        "iat": now,
        "exp": now + parse_expires_in(current_app.config.get("JWT_EXPIRES_IN")),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_token(token) -> dict:
    return jwt.decode(token, _signing_secret(), algorithms=[JWT_ALGORITHM])


def _strip_bearer(value):
    if not value:
        return None
    value = value.strip()
    if value.startswith("Bearer "):
        value = value[len("Bearer "):].strip()
    return value or None


def token_from_request(req):
    """Authorization header first, then cookie, then the ``token`` query param."""
    header = req.headers.get("Authorization")
    if header:
        return _strip_bearer(header)

    cookie = req.cookies.get("token") or req.cookies.get("authorization")
    if cookie:
        return _strip_bearer(cookie)

    return _clean(req.args.get("token"))


def authenticate(req, require_auth=True):
    """
    Resolve the current user from a bearer credential.

    A missing credential is tolerated only when ``require_auth`` is False; a
    present but invalid/expired token or a vanished subject is always an error.
    """
    token = token_from_request(req)
    if not token:
        if require_auth:
            raise InvalidCredentials("Missing token", code="missing_token")
        return None

    try:
        claims = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise InvalidCredentials("Token has expired", code="invalid_token")
    except jwt.InvalidTokenError:
        raise InvalidCredentials("Invalid token", code="invalid_token")

    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        raise InvalidCredentials("Invalid token", code="invalid_token")

    user = db.session.get(User, user_id)
    if not user:
        raise InvalidCredentials("User not found", code="user_not_found")
    return user


def sanitize_user(user):
    if not user:
        return None
    return {
        "id": str(user.id),
        "username": user.username or "",
        "displayName": user.display_name or "",
        "avatarUrl": user.avatar_url or "",
        "email": user.email or "",
        "phone": user.phone or "",
        "role": user.role or "user",
        "provider": user.provider or "anonymous",
        "metadata": user.profile_metadata or {},
        "lastLoginAt": to_utc_z(user.last_login_at),
        "createdAt": to_utc_z(user.created_at),
        "updatedAt": to_utc_z(user.updated_at),
    }


def session_payload(user):
    return {"token": issue_token(user), "user": sanitize_user(user)}


def gate_requested_role(requested_role, grant_key=None):
    """
    Only a privileged caller may ask for the admin role. Without a matching
    ``ADMIN_GRANT_KEY`` the request is treated as if no role was asked for.
    """
    if requested_role != ADMIN:
        return None

    expected = current_app.config.get("ADMIN_GRANT_KEY")
    if expected and grant_key and hmac.compare_digest(str(grant_key), str(expected)):
        return ADMIN

    logger.warning("Ignoring client-requested admin role without a valid grant key")
    return None


def _commit_user(user):
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise Conflict("Username, email or WeChat account already in use") from e


def _display_name_from(source):
    if not isinstance(source, dict):
        return None
    for key in ("displayName", "nickName", "nickname", "name"):
        name = _clean(source.get(key))
        if name:
            return name
    return None


# --- Login paths ----------------------------------------------------------


def wechat_login(code, user_info=None, ip=None, requested_role=None):
    if not _clean(code):
        raise ValidationError("Missing WeChat login code", field="code")

    try:
        session = wechat.exchange_code_for_session(
            code,
            current_app.config.get("WECHAT_APP_ID"),
            current_app.config.get("WECHAT_APP_SECRET"),
        )
    except wechat.WeChatAuthError as e:
        logger.error("WeChat exchange failed: %s", e)
        raise UpstreamAuthFailure("WeChat authentication failed", details=str(e))

    user_info = user_info if isinstance(user_info, dict) else {}
    display_name = _display_name_from(user_info)
    avatar_url = _clean(user_info.get("avatarUrl") or user_info.get("avatar"))
    email = _clean_email(user_info.get("email"))
    phone = _clean(user_info.get("phoneNumber") or user_info.get("phone"))
    now = utcnow()

    user = db.session.scalar(select(User).where(User.wechat_openid == session.open_id))

    if user:
        user.display_name = display_name or user.display_name
        user.avatar_url = avatar_url or user.avatar_url
        user.email = email or user.email
        user.phone = phone or user.phone
        user.wechat_unionid = session.union_id or user.wechat_unionid
        user.wechat_session_key = session.session_key
        user.provider = "wechat"
        user.role = resolve_role(user.email, user.wechat_openid, requested_role)
    else:
        metadata = user_info.get("metadata")
        user = User(
            display_name=display_name,
            avatar_url=avatar_url,
            email=email,
            phone=phone,
            provider="wechat",
            wechat_openid=session.open_id,
            wechat_unionid=session.union_id,
            wechat_session_key=session.session_key,
            role=resolve_role(email, session.open_id, requested_role),
            profile_metadata=metadata if isinstance(metadata, dict) else {},
        )

    user.last_login_at = now
    user.last_login_ip = ip
    _commit_user(user)
    return session_payload(user)


def anonymous_login(
    email=None,
    phone=None,
    name=None,
    avatar_url=None,
    requested_role=None,
    ip=None,
    user_agent=None,
):
    email = _clean_email(email)
    phone = _clean(phone)
    name = _clean(name)
    avatar_url = _clean(avatar_url)

    criteria = []
    if email:
        criteria.append(User.email == email)
    if phone:
        criteria.append(User.phone == phone)

    user = None
    if criteria:
        user = db.session.scalars(select(User).where(or_(*criteria)).limit(1)).first()

    if not user:
        user = User(
            display_name=name or GUEST_DISPLAY_NAME,
            email=email,
            phone=phone,
            avatar_url=avatar_url,
            provider="anonymous",
            role=resolve_role(email, None, requested_role),
            profile_metadata={"userAgent": user_agent} if user_agent else {},
        )
    else:
        if name:
            user.display_name = name
        if avatar_url:
            user.avatar_url = avatar_url
        if email:
            user.email = email
        if phone:
            user.phone = phone
        user.provider = user.provider or "anonymous"
        user.role = resolve_role(user.email, user.wechat_openid, requested_role)

    user.last_login_at = utcnow()
    user.last_login_ip = ip
    _commit_user(user)
    return session_payload(user)


def _password_bytes(password) -> bytes:
    if not isinstance(password, str):
        raise ValidationError("Password must be a string", field="password")
    return password.encode("utf-8")


def hash_password(password) -> bytes:
    secret = _password_bytes(password)
    # bcrypt only reads the first 72 bytes
    if len(secret) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes", field="password"
        )
    return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=BCRYPT_ROUNDS))


def check_password(password, stored_hash) -> bool:
    if not isinstance(password, str) or not password or not stored_hash:
        return False
    secret = password.encode("utf-8")
    if len(secret) > MAX_PASSWORD_BYTES:
        return False
    if isinstance(stored_hash, str):
        stored_hash = stored_hash.encode("utf-8")
    try:
        return bcrypt.checkpw(secret, stored_hash)
    except ValueError:
        return False


def password_login(username, password, ip=None):
    username = _clean(username)
    if not username or not password:
        raise ValidationError(
            "Username and password required", field="username" if not username else "password"
        )
    _password_bytes(password)

    user = db.session.scalar(select(User).where(User.username == username))
    if not user or not user.password_hash:
        raise InvalidCredentials("Invalid credentials")

    if not check_password(password, user.password_hash):
        raise InvalidCredentials("Invalid credentials")

    user.last_login_at = utcnow()
    user.last_login_ip = ip
    _commit_user(user)
    return session_payload(user)


def register(username, password, email, phone=None, display_name=None, ip=None):
    username = _clean(username)
    email = _clean_email(email)
    phone = _clean(phone)

    if not username:
        raise ValidationError("Username is required", field="username")
    if not password:
        raise ValidationError("Password is required", field="password")
    if len(_password_bytes(password)) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes", field="password"
        )
    if len(password) < 6:
        raise ValidationError("Password must be at least 6 characters", field="password")
    if not email:
        raise ValidationError("Email is required", field="email")
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format", field="email")

    existing = db.session.scalar(
        select(User).where(or_(User.username == username, User.email == email))
    )
    if existing:
        field = "username" if existing.username == username else "email"
        raise Conflict(f"{field.capitalize()} already exists", field=field)

    now = utcnow()
    user = User(
        username=username,
        password_hash=hash_password(password),
        email=email,
        phone=phone,
        display_name=_clean(display_name) or username,
        role="user",
        provider="password",
        last_login_at=now,
        last_login_ip=ip,
        profile_metadata={},
    )
    _commit_user(user)
    logger.info("Registered password account %s", user.id)
    return session_payload(user)


def update_profile(user, payload):
    """Merge profile fields from ``PUT /users/me``; only keys present are touched."""
    if "displayName" in payload:
        user.display_name = _clean(payload.get("displayName"))
    if "avatarUrl" in payload:
        user.avatar_url = _clean(payload.get("avatarUrl"))
    if "email" in payload:
        email = _clean_email(payload.get("email"))
        if email and not EMAIL_RE.match(email):
            raise ValidationError("Invalid email format", field="email")
        user.email = email
    if "phone" in payload:
        user.phone = _clean(payload.get("phone"))

    metadata = payload.get("metadata")
    if isinstance(metadata, dict):
        user.profile_metadata = {**(user.profile_metadata or {}), **metadata}

    _commit_user(user)
    return user
