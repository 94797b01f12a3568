from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from marketplace.auth.passwords import hash_password
from marketplace.core.clock import utcnow
from marketplace.core.config import Settings
from marketplace.database import build_engine, build_session_factory, initialize_schema
from marketplace.main import create_app
from marketplace.models.user import User


class FakeEmailService:
    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.sent: list[dict] = []

    def send_email(self, to_email: str, subject: str, html_content: str) -> bool:
        self.sent.append({'to': to_email, 'subject': subject, 'html': html_content})
        return self.deliver


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url='sqlite://',
        jwt_secret_key='test-secret',
        log_level='WARNING',
    )


@pytest.fixture
def email_service() -> FakeEmailService:
    return FakeEmailService()


@pytest.fixture
def db_session(settings: Settings):
    engine = build_engine(settings.database_url)
    initialize_schema(engine)
    session_factory = build_session_factory(engine)

    db = session_factory()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def app(settings: Settings, email_service: FakeEmailService):
    return create_app(settings, email_service=email_service)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def app_db(app, client):
    db = app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def make_user(
    db,
    *,
    email: str,
    name: str = 'Test User',
    password: str | None = 'secret-pass',
    student_id: str | None = None,
    contact_number: str | None = None,
    verified: bool = True,
    otp: str | None = None,
    otp_expires_in: timedelta | None = None,
) -> User:
    user = User(
        name=name,
        email=email,
        hashed_password=hash_password(password) if password else None,
        student_id=student_id,
        contact_number=contact_number,
        is_verified=verified,
        otp=otp,
        otp_expires=utcnow() + otp_expires_in if otp_expires_in is not None else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def create_user():
    return make_user
