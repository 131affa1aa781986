from datetime import datetime, timedelta, timezone

import jwt

from tutor_scheduler.core import config

ADMIN_ROLE = "admin"


def create_access_token(subject: str, role: str | None = None, expires_minutes: int | None = None) -> str:
    email = (subject or "").strip().lower()
    if not email:
        raise ValueError("Token subject must be a non-empty email address.")

    issued_at = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)
    payload = {"sub": email, "iat": issued_at, "exp": issued_at + lifetime}
    if role:
        payload["role"] = role
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def create_admin_token(email: str, expires_minutes: int | None = None) -> str:
    return create_access_token(email, role=ADMIN_ROLE, expires_minutes=expires_minutes)


def decode_access_token(token: str) -> dict:
    # Every token must expire and name its subject.
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        options={"require": ["exp", "sub"]},
    )
