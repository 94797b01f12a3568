import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from marketplace.auth import jwt_handler
from marketplace.auth.sessions import load_server_session
from marketplace.core.config import Settings
from marketplace.database import get_db
from marketplace.models.user import User
from marketplace.utils.exceptions import AuthException

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _user_from_token(db: Session, token: str, settings: Settings) -> User | None:
    try:
        payload = jwt_handler.decode_access_token(token, settings)
    except jwt.PyJWTError:
        return None

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        return None

    user = db.query(User).filter(User.id == int(subject)).first()
    if user is None:
        return None

    # Logout bumps token_version, so every earlier token stops matching.
    if payload.get("ver", 0) != (user.token_version or 0):
        return None
    return user


def resolve_user(
    db: Session,
    settings: Settings,
    token: str | None,
    session_id: str | None,
) -> User | None:
    """Find the caller from either the JWT or the server session."""
    if token:
        user = _user_from_token(db, token, settings)
        if user is not None:
            return user

    server_session = load_server_session(db, session_id)
    if server_session is None:
        return None
    return db.query(User).filter(User.id == server_session.user_id).first()


def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User | None:
    token = request.cookies.get(settings.token_cookie_name)
    if not token and credentials is not None:
        token = credentials.credentials
    session_id = request.cookies.get(settings.session_cookie_name)
    return resolve_user(db, settings, token, session_id)


def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise AuthException("Not authenticated")
    return user
