from datetime import timedelta

import pytest
from fastapi import Response
from sqlalchemy.exc import SQLAlchemyError

from marketplace.auth import jwt_handler
from marketplace.auth.dependencies import resolve_user
from marketplace.auth.passwords import verify_password
from marketplace.auth.sessions import issue_session
from marketplace.core.clock import utcnow
from marketplace.models.server_session import ServerSession
from marketplace.models.user import User
from marketplace.services import accounts
from marketplace.utils.exceptions import AuthException, ValidationException, VerificationException


def _register(db, settings, email_service, **overrides):
    fields = {
        'name': 'Nadia Rahman',
        'email': 'nadia@iut-dhaka.edu',
        'password': 'hunter22',
        'student_id': '190041101',
        'contact_number': '01712345678',
    }
    fields.update(overrides)
    return accounts.register(db, settings, email_service, **fields)


def test_generate_otp_is_six_digits() -> None:
    for _ in range(50):
        otp = accounts.generate_otp()
        assert len(otp) == 6
        assert 100000 <= int(otp) <= 999999


def test_register_rejects_outside_domain_without_creating_user(db_session, settings, email_service) -> None:
    with pytest.raises(ValidationException) as exc_info:
        _register(db_session, settings, email_service, email='nadia@gmail.com')

    assert exc_info.value.message == 'Registration restricted to @iut-dhaka.edu emails only'
    assert db_session.query(User).count() == 0
    assert email_service.sent == []


@pytest.mark.parametrize(
    ('field', 'value'),
    [
        ('student_id', '12345678'),
        ('student_id', '12345678a'),
        ('contact_number', '01212345678'),
        ('contact_number', '+8801712'),
    ],
)
def test_register_rejects_malformed_identifiers(db_session, settings, email_service, field, value) -> None:
    with pytest.raises(ValidationException) as exc_info:
        _register(db_session, settings, email_service, **{field: value})

    assert exc_info.value.details == {'field': field}
    assert db_session.query(User).count() == 0


def test_register_persists_unverified_user_and_sends_code(db_session, settings, email_service) -> None:
    before = utcnow()
    dispatch = _register(db_session, settings, email_service, email='  Nadia@IUT-Dhaka.edu ', contact_number='+8801712345678')

    user = dispatch.user
    assert dispatch.delivered is True
    assert user.email == 'nadia@iut-dhaka.edu'
    assert user.is_verified is False
    assert len(user.otp) == 6
    assert before + timedelta(minutes=4) < user.otp_expires <= utcnow() + timedelta(minutes=5)
    assert user.hashed_password != 'hunter22'
    assert verify_password('hunter22', user.hashed_password)
    assert user.avatar.startswith('https://ui-avatars.com/api/?name=Nadia%20Rahman')

    assert len(email_service.sent) == 1
    assert email_service.sent[0]['to'] == 'nadia@iut-dhaka.edu'
    assert user.otp in email_service.sent[0]['html']


def test_register_keeps_account_when_delivery_fails(db_session, settings, email_service) -> None:
    email_service.deliver = False

    dispatch = _register(db_session, settings, email_service)

    assert dispatch.delivered is False
    stored = db_session.query(User).filter(User.email == 'nadia@iut-dhaka.edu').one()
    assert stored.otp == dispatch.user.otp


def test_register_reports_duplicate_email(db_session, settings, email_service, create_user) -> None:
    create_user(db_session, email='nadia@iut-dhaka.edu', student_id='111111111')

    with pytest.raises(ValidationException) as exc_info:
        _register(db_session, settings, email_service)

    assert exc_info.value.message == 'Email already registered'


def test_register_reports_duplicate_student_id(db_session, settings, email_service, create_user) -> None:
    create_user(db_session, email='someone@iut-dhaka.edu', student_id='190041101')

    with pytest.raises(ValidationException) as exc_info:
        _register(db_session, settings, email_service)

    assert exc_info.value.message == 'Student ID already registered'


def test_verify_otp_marks_user_verified(db_session, create_user) -> None:
    create_user(
        db_session,
        email='nadia@iut-dhaka.edu',
        verified=False,
        otp='123456',
        otp_expires_in=timedelta(minutes=5),
    )

    outcome = accounts.verify_otp(db_session, 'nadia@iut-dhaka.edu', '123456')

    assert outcome.already_verified is False
    assert outcome.user.is_verified is True
    assert outcome.user.otp is None
    assert outcome.user.otp_expires is None


def test_verify_otp_rejects_expired_code_even_when_it_matches(db_session, create_user) -> None:
    create_user(
        db_session,
        email='nadia@iut-dhaka.edu',
        verified=False,
        otp='123456',
        otp_expires_in=timedelta(minutes=5),
    )

    with pytest.raises(VerificationException) as exc_info:
        accounts.verify_otp(db_session, 'nadia@iut-dhaka.edu', '123456', now=utcnow() + timedelta(minutes=6))

    assert exc_info.value.reason == VerificationException.EXPIRED
    assert exc_info.value.status_code == 400
    user = db_session.query(User).filter(User.email == 'nadia@iut-dhaka.edu').one()
    assert user.is_verified is False


def test_verify_otp_rejects_wrong_code(db_session, create_user) -> None:
    create_user(
        db_session,
        email='nadia@iut-dhaka.edu',
        verified=False,
        otp='123456',
        otp_expires_in=timedelta(minutes=5),
    )

    with pytest.raises(VerificationException) as exc_info:
        accounts.verify_otp(db_session, 'nadia@iut-dhaka.edu', '654321')

    assert exc_info.value.reason == VerificationException.MISMATCH
    assert exc_info.value.message == 'Invalid Code'


def test_verify_otp_unknown_email(db_session) -> None:
    with pytest.raises(VerificationException) as exc_info:
        accounts.verify_otp(db_session, 'ghost@iut-dhaka.edu', '123456')

    assert exc_info.value.reason == VerificationException.NOT_FOUND
    assert exc_info.value.status_code == 404


def test_verify_otp_already_verified_is_not_an_error(db_session, create_user) -> None:
    create_user(db_session, email='nadia@iut-dhaka.edu', verified=True)

    outcome = accounts.verify_otp(db_session, 'nadia@iut-dhaka.edu', 'anything')

    assert outcome.already_verified is True


def test_resend_otp_replaces_the_code(db_session, settings, email_service, create_user) -> None:
    create_user(
        db_session,
        email='nadia@iut-dhaka.edu',
        verified=False,
        otp='000000',
        otp_expires_in=timedelta(minutes=-1),
    )

    dispatch = accounts.resend_otp(db_session, settings, email_service, 'nadia@iut-dhaka.edu')

    assert dispatch is not None
    assert dispatch.user.otp != '000000'
    assert dispatch.user.otp_expires > utcnow()
    assert email_service.sent[-1]['to'] == 'nadia@iut-dhaka.edu'


def test_resend_otp_skips_verified_users(db_session, settings, email_service, create_user) -> None:
    create_user(db_session, email='nadia@iut-dhaka.edu', verified=True)

    assert accounts.resend_otp(db_session, settings, email_service, 'nadia@iut-dhaka.edu') is None
    assert email_service.sent == []


def test_authenticate_accepts_correct_password(db_session, create_user) -> None:
    created = create_user(db_session, email='nadia@iut-dhaka.edu', password='hunter22')

    user = accounts.authenticate(db_session, 'NADIA@iut-dhaka.edu', 'hunter22')

    assert user.id == created.id


@pytest.mark.parametrize(
    ('email', 'password', 'message'),
    [
        ('', 'hunter22', 'Please provide an email and password'),
        ('nadia@iut-dhaka.edu', 'wrong', 'Invalid credentials'),
        ('ghost@iut-dhaka.edu', 'hunter22', 'Invalid credentials'),
    ],
)
def test_authenticate_rejects_bad_credentials(db_session, create_user, email, password, message) -> None:
    create_user(db_session, email='nadia@iut-dhaka.edu', password='hunter22')

    with pytest.raises(AuthException) as exc_info:
        accounts.authenticate(db_session, email, password)

    assert exc_info.value.message == message


def test_authenticate_rejects_social_only_account(db_session, create_user) -> None:
    create_user(db_session, email='nadia@iut-dhaka.edu', password=None)

    with pytest.raises(AuthException) as exc_info:
        accounts.authenticate(db_session, 'nadia@iut-dhaka.edu', 'anything')

    assert 'single sign-on' in exc_info.value.message


def test_social_login_creates_passwordless_unverified_user(db_session, settings) -> None:
    user = accounts.social_login(
        db_session,
        settings,
        provider='saml',
        subject='subject-1',
        email='Nadia@iut-dhaka.edu',
        name='Nadia Rahman',
    )

    assert user.id is not None
    assert user.sso_subject == 'subject-1'
    assert user.has_password is False
    assert user.is_verified is False
    assert user.needs_profile_completion is True


def test_social_login_links_existing_account_by_email(db_session, settings, create_user) -> None:
    existing = create_user(db_session, email='nadia@iut-dhaka.edu', student_id='190041101')

    user = accounts.social_login(
        db_session,
        settings,
        provider='google',
        subject='google-42',
        email='nadia@iut-dhaka.edu',
    )

    assert user.id == existing.id
    assert user.google_id == 'google-42'
    assert db_session.query(User).count() == 1


def test_social_login_rejects_outside_domain_and_unknown_provider(db_session, settings) -> None:
    with pytest.raises(ValidationException):
        accounts.social_login(db_session, settings, provider='saml', subject='s', email='x@gmail.com')
    with pytest.raises(AuthException):
        accounts.social_login(db_session, settings, provider='myspace', subject='s', email='x@iut-dhaka.edu')

    assert db_session.query(User).count() == 0


def test_complete_profile_sets_fields_and_verifies(db_session, create_user) -> None:
    user = create_user(db_session, email='nadia@iut-dhaka.edu', password=None, verified=False)

    updated = accounts.complete_profile(
        db_session,
        user,
        student_id='190041101',
        contact_number='8801812345678',
        avatar_url='https://cdn.example.com/me.png',
    )

    assert updated.student_id == '190041101'
    assert updated.contact_number == '8801812345678'
    assert updated.is_verified is True
    assert updated.avatar == 'https://cdn.example.com/me.png'


def test_complete_profile_rejects_values_used_by_others(db_session, create_user) -> None:
    create_user(db_session, email='other@iut-dhaka.edu', student_id='190041101', contact_number='01712345678')
    user = create_user(db_session, email='nadia@iut-dhaka.edu', password=None, verified=False)

    with pytest.raises(ValidationException) as exc_info:
        accounts.complete_profile(db_session, user, student_id='190041199', contact_number='01712345678')

    assert exc_info.value.message == 'Student ID or Contact Number already in use'


def test_complete_profile_allows_resubmitting_own_values(db_session, create_user) -> None:
    user = create_user(
        db_session,
        email='nadia@iut-dhaka.edu',
        student_id='190041101',
        contact_number='01712345678',
    )

    updated = accounts.complete_profile(db_session, user, student_id='190041101', contact_number='01712345678')

    assert updated.student_id == '190041101'


def test_avatar_update_and_removal(db_session, create_user) -> None:
    user = create_user(db_session, email='nadia@iut-dhaka.edu', name='Nadia')

    accounts.update_avatar(db_session, user, 'https://cdn.example.com/pic.webp')
    assert user.avatar == 'https://cdn.example.com/pic.webp'

    with pytest.raises(ValidationException):
        accounts.update_avatar(db_session, user, 'https://cdn.example.com/pic.gif')

    accounts.remove_avatar(db_session, user)
    assert user.avatar == 'https://ui-avatars.com/api/?name=Nadia&background=0b0e11&color=fff&size=128'


def test_logout_invalidates_token_and_session(db_session, settings, create_user) -> None:
    user = create_user(db_session, email='nadia@iut-dhaka.edu')
    login_response = Response()
    server_session = issue_session(db_session, user, login_response, settings)
    session_id = server_session.id
    token = jwt_handler.create_access_token(str(user.id), settings)
    assert resolve_user(db_session, settings, token, None).id == user.id

    logout_response = Response()
    accounts.logout(db_session, logout_response, settings, token, session_id)

    assert db_session.query(ServerSession).count() == 0
    cookies = logout_response.headers.getlist('set-cookie')
    assert any(c.startswith('token=') and 'Max-Age=0' in c for c in cookies)
    assert any(c.startswith('session_id=') and 'Max-Age=0' in c for c in cookies)
    assert db_session.query(User).filter(User.id == user.id).one().last_logout is not None


def _cookie_value(response: Response, name: str) -> str:
    for header in response.headers.getlist('set-cookie'):
        if header.startswith(f'{name}='):
            return header.split(';', 1)[0].split('=', 1)[1]
    raise AssertionError(f'{name} cookie not set')


def test_token_issued_at_login_is_dead_after_logout(db_session, settings, create_user) -> None:
    user = create_user(db_session, email='nadia@iut-dhaka.edu')
    login_response = Response()
    issue_session(db_session, user, login_response, settings)
    token = _cookie_value(login_response, 'token')
    assert resolve_user(db_session, settings, token, None).id == user.id

    accounts.logout(db_session, Response(), settings, token, _cookie_value(login_response, 'session_id'))

    # Replayed immediately, so issue time and logout time share the same second.
    assert resolve_user(db_session, settings, token, None) is None


def test_new_login_after_logout_is_accepted(db_session, settings, create_user) -> None:
    user = create_user(db_session, email='nadia@iut-dhaka.edu')
    first_login = Response()
    issue_session(db_session, user, first_login, settings)
    accounts.logout(db_session, Response(), settings, _cookie_value(first_login, 'token'), None)

    second_login = Response()
    issue_session(db_session, user, second_login, settings)

    assert resolve_user(db_session, settings, _cookie_value(second_login, 'token'), None).id == user.id


def test_logout_clears_cookies_when_session_destroy_fails(db_session, settings, create_user, monkeypatch) -> None:
    user = create_user(db_session, email='nadia@iut-dhaka.edu')
    login_response = Response()
    issue_session(db_session, user, login_response, settings)

    def failing_destroy(_db, _session_id):
        raise SQLAlchemyError('session store unavailable')

    monkeypatch.setattr(accounts, 'destroy_server_session', failing_destroy)
    response = Response()

    accounts.logout(
        db_session,
        response,
        settings,
        _cookie_value(login_response, 'token'),
        _cookie_value(login_response, 'session_id'),
    )

    cookies = response.headers.getlist('set-cookie')
    assert any(c.startswith('token=') and 'Max-Age=0' in c for c in cookies)
    assert any(c.startswith('session_id=') and 'Max-Age=0' in c for c in cookies)
    assert db_session.query(User).filter(User.id == user.id).one().last_logout is not None


def test_logout_clears_cookies_when_recording_logout_fails(db_session, settings, create_user, monkeypatch) -> None:
    user = create_user(db_session, email='nadia@iut-dhaka.edu')
    login_response = Response()
    issue_session(db_session, user, login_response, settings)

    def failing_commit():
        raise SQLAlchemyError('database is locked')

    monkeypatch.setattr(db_session, 'commit', failing_commit)
    response = Response()

    accounts.logout(
        db_session,
        response,
        settings,
        _cookie_value(login_response, 'token'),
        _cookie_value(login_response, 'session_id'),
    )

    cookies = response.headers.getlist('set-cookie')
    assert any(c.startswith('token=') and 'Max-Age=0' in c for c in cookies)
    assert any(c.startswith('session_id=') and 'Max-Age=0' in c for c in cookies)


def test_logout_without_any_session_still_clears_cookies(db_session, settings) -> None:
    response = Response()

    accounts.logout(db_session, response, settings, None, None)

    cookies = response.headers.getlist('set-cookie')
    assert len(cookies) == 2
