import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .errors import (
    AuthenticationRequiredError,
    AuthorizationDeniedError,
    ConflictError,
    InvalidInputError,
    NotFoundError,
)
from .models import USER_ROLES, User, utc_now_naive

logger = structlog.get_logger("spadesk.auth")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@dataclass
class AuthIdentity:
    user_id: int
    role: str
    email: str
    name: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def validate_password_policy(password: str) -> None:
    raw = str(password or "")
    min_len = max(6, int(settings.AUTH_PASSWORD_MIN_LENGTH))
    if len(raw) < min_len:
        raise InvalidInputError(f"password must be at least {min_len} chars")
    if bool(settings.AUTH_PASSWORD_REQUIRE_UPPER) and not re.search(r"[A-Z]", raw):
        raise InvalidInputError("password must contain at least one uppercase letter")
    if bool(settings.AUTH_PASSWORD_REQUIRE_LOWER) and not re.search(r"[a-z]", raw):
        raise InvalidInputError("password must contain at least one lowercase letter")
    if bool(settings.AUTH_PASSWORD_REQUIRE_DIGIT) and not re.search(r"[0-9]", raw):
        raise InvalidInputError("password must contain at least one digit")
    if bool(settings.AUTH_PASSWORD_REQUIRE_SPECIAL) and not re.search(r"[^A-Za-z0-9]", raw):
        raise InvalidInputError("password must contain at least one special character")


def create_access_token(user: User) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "userId": int(user.id),
        "role": user.role,
        "email": user.email,
        "name": user.full_name,
        "iat": now,
        "exp": now + timedelta(hours=max(1, int(settings.AUTH_ACCESS_TOKEN_HOURS))),
    }
    return jwt.encode(payload, settings.AUTH_SECRET_KEY, algorithm=settings.AUTH_ALGORITHM)


def decode_access_token(token: str) -> AuthIdentity | None:
    try:
        payload = jwt.decode(token, settings.AUTH_SECRET_KEY, algorithms=[settings.AUTH_ALGORITHM])
    except JWTError:
        return None

    try:
        user_id = int(payload.get("userId") or 0)
    except (TypeError, ValueError):
        return None
    role = str(payload.get("role") or "").strip().lower()
    email = str(payload.get("email") or "").strip().lower()
    if user_id <= 0 or not role or not email:
        return None
    return AuthIdentity(user_id=user_id, role=role, email=email, name=str(payload.get("name") or ""))


def extract_identity_from_authorization_header(authorization_header: str | None) -> AuthIdentity | None:
    raw = (authorization_header or "").strip()
    if not raw.lower().startswith("bearer "):
        return None
    token = raw[7:].strip()
    if not token:
        return None
    return decode_access_token(token)


def require_identity(authorization: Optional[str] = Header(default=None)) -> AuthIdentity:
    if not (authorization or "").strip():
        raise AuthenticationRequiredError("Access denied. No token provided.")
    identity = extract_identity_from_authorization_header(authorization)
    if not identity:
        raise AuthenticationRequiredError("Invalid or expired token.")
    return identity


def require_admin(identity: AuthIdentity = Depends(require_identity)) -> AuthIdentity:
    if not identity.is_admin:
        raise AuthorizationDeniedError("Access denied. Admin privileges required.")
    return identity


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(User.email == _normalize_email(email))).scalar_one_or_none()


def create_user(
    db: Session,
    *,
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    role: str | None = None,
    phone: str | None = None,
    position: str | None = None,
) -> User:
    normalized_email = _normalize_email(email)
    if not normalized_email:
        raise InvalidInputError("email is required")
    normalized_role = (role or "receptionist").strip().lower()
    if normalized_role not in USER_ROLES:
        raise InvalidInputError(f"role must be one of: {', '.join(USER_ROLES)}")
    validate_password_policy(password)

    if get_user_by_email(db, normalized_email):
        raise ConflictError("User with this email already exists")

    row = User(
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        email=normalized_email,
        phone=(phone or "").strip() or None,
        password_hash=hash_password(password),
        role=normalized_role,
        position=(position or "").strip() or None,
        is_active=True,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("user_registered", user_id=row.id, role=row.role)
    return row


def authenticate_user(db: Session, email: str, password: str) -> User:
    row = get_user_by_email(db, email)
    if not row:
        raise AuthenticationRequiredError("Invalid email or password")
    if not row.is_active:
        raise AuthorizationDeniedError("Account is deactivated. Please contact administrator.")
    if not verify_password(password, row.password_hash):
        raise AuthenticationRequiredError("Invalid email or password")
    return row


def record_login_time(db: Session, user: User) -> None:
    user.last_login = utc_now_naive()
    db.commit()


def change_user_password(db: Session, *, user_id: int, current_password: str, new_password: str) -> User:
    row = get_user(db, user_id)
    if not row:
        raise NotFoundError("User not found")
    if not verify_password(current_password, row.password_hash):
        raise AuthenticationRequiredError("Current password is incorrect")
    validate_password_policy(new_password)
    row.password_hash = hash_password(new_password)
    db.commit()
    db.refresh(row)
    logger.info("password_changed", user_id=row.id)
    return row


def list_users(db: Session) -> list[User]:
    return db.execute(select(User).order_by(User.role.asc(), User.last_name.asc(), User.id.asc())).scalars().all()


def set_user_status(db: Session, user_id: int, is_active: bool) -> User:
    row = get_user(db, user_id)
    if not row:
        raise NotFoundError("User not found")
    row.is_active = bool(is_active)
    db.commit()
    db.refresh(row)
    logger.info("user_status_changed", user_id=row.id, is_active=row.is_active)
    return row


def ensure_bootstrap_admin(db: Session) -> User | None:
    email = _normalize_email(settings.BOOTSTRAP_ADMIN_EMAIL)
    password = settings.BOOTSTRAP_ADMIN_PASSWORD
    if not email or not password:
        return None
    existing = get_user_by_email(db, email)
    if existing:
        return existing
    return create_user(
        db,
        first_name=settings.BOOTSTRAP_ADMIN_FIRST_NAME or "Salon",
        last_name=settings.BOOTSTRAP_ADMIN_LAST_NAME or "Admin",
        email=email,
        password=password,
        role="admin",
    )
