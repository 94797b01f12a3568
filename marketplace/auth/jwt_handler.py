from datetime import datetime, timedelta, timezone

import jwt

from marketplace.core.config import Settings


def create_access_token(
    subject: str,
    settings: Settings,
    expires_days: int | None = None,
    version: int = 0,
) -> str:
    expire_days = expires_days or settings.jwt_expires_days
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "ver": version,
        "exp": issued_at + timedelta(days=expire_days),
        "iat": issued_at,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> dict:
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
