"""Issuing and tearing down the two halves of an authenticated session.

A signed JWT travels in the ``token`` cookie and a server-side row is keyed
by the ``session_id`` cookie. Both describe the same identity.
"""

import secrets
from datetime import timedelta

from fastapi import Response
from sqlalchemy.orm import Session

from marketplace.auth import jwt_handler
from marketplace.core.clock import utcnow
from marketplace.core.config import Settings
from marketplace.models.server_session import ServerSession
from marketplace.models.user import User


def _max_age_seconds(days: int) -> int:
    return days * 24 * 60 * 60


def set_token_cookie(response: Response, user: User, settings: Settings) -> str:
    token = jwt_handler.create_access_token(str(user.id), settings, version=user.token_version or 0)
    response.set_cookie(
        key=settings.token_cookie_name,
        value=token,
        max_age=_max_age_seconds(settings.jwt_expires_days),
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    return token


def issue_session(db: Session, user: User, response: Response, settings: Settings) -> ServerSession:
    """Create the server session and write both cookies onto ``response``.

    The row is committed before any cookie is set, so a failed commit leaves
    the client without either artifact.
    """
    server_session = ServerSession(
        id=secrets.token_urlsafe(32),
        user_id=user.id,
        expires_at=utcnow() + timedelta(days=settings.session_expires_days),
    )
    db.add(server_session)
    db.commit()

    set_token_cookie(response, user, settings)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=server_session.id,
        max_age=_max_age_seconds(settings.session_expires_days),
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    return server_session


def load_server_session(db: Session, session_id: str | None) -> ServerSession | None:
    if not session_id:
        return None
    server_session = db.query(ServerSession).filter(ServerSession.id == session_id).first()
    if server_session is None or server_session.expires_at <= utcnow():
        return None
    return server_session


def destroy_server_session(db: Session, session_id: str | None) -> None:
    if not session_id:
        return
    db.query(ServerSession).filter(ServerSession.id == session_id).delete(synchronize_session=False)
    db.commit()


def clear_token_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.token_cookie_name,
        path="/",
        httponly=True,
        secure=settings.is_production,
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(key=settings.session_cookie_name, path="/")
