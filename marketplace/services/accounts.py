"""
Account lifecycle: registration, OTP verification, password login, logout,
single sign-on and profile completion.

Functions here own the user records and raise marketplace exceptions; the
routes decide which redirect or cookie each outcome maps to.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

import jwt
from fastapi import Response
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.auth import jwt_handler
from marketplace.auth.passwords import hash_password, verify_password
from marketplace.auth.sessions import (
    clear_session_cookie,
    clear_token_cookie,
    destroy_server_session,
    load_server_session,
)
from marketplace.core.clock import utcnow
from marketplace.core.config import Settings
from marketplace.models.user import SOCIAL_PROVIDER_COLUMNS, User, default_avatar_for
from marketplace.services.email_service import EmailService, build_otp_email
from marketplace.utils.exceptions import AuthException, ValidationException, VerificationException
from marketplace.utils.validators import (
    normalize_email,
    validate_contact_number,
    validate_image_url,
    validate_institutional_email,
    validate_label,
    validate_student_id,
)

logger = logging.getLogger(__name__)


class OtpDispatch(NamedTuple):
    user: User
    delivered: bool


class VerificationOutcome(NamedTuple):
    user: User
    already_verified: bool


def generate_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


def _issue_otp(user: User, settings: Settings, now: Optional[datetime] = None) -> None:
    user.otp = generate_otp()
    user.otp_expires = (now or utcnow()) + timedelta(minutes=settings.otp_expires_minutes)


def _send_otp(user: User, settings: Settings, email_service: EmailService) -> bool:
    subject, html = build_otp_email(user.otp, settings.otp_expires_minutes, settings.mail_from_name)
    delivered = email_service.send_email(user.email, subject, html)
    if not delivered:
        logger.warning(f"OTP email for user {user.id} was not delivered; manual verification required")
    return delivered


def register(
    db: Session,
    settings: Settings,
    email_service: EmailService,
    *,
    name: str,
    email: str,
    password: str,
    student_id: str,
    contact_number: str,
    avatar_url: Optional[str] = None,
) -> OtpDispatch:
    """
    Create an unverified account and email it a one-time code.

    The user row is committed before the email is attempted; a failed
    delivery is reported through ``OtpDispatch.delivered`` and never rolls
    the account back.

    Raises:
        ValidationException: If any field is malformed or already registered
    """
    name = validate_label(name, 'name')
    email = validate_institutional_email(email, settings.institution_domain)
    student_id = validate_student_id(student_id)
    contact_number = validate_contact_number(contact_number)
    if not password:
        raise ValidationException('Password is required.', details={'field': 'password'})
    avatar = validate_image_url(avatar_url) if avatar_url else default_avatar_for(name)

    existing = db.query(User).filter(
        or_(User.email == email, User.student_id == student_id)
    ).first()
    if existing:
        message = 'User already exists'
        if existing.email == email:
            message = 'Email already registered'
        if existing.student_id == student_id:
            message = 'Student ID already registered'
        raise ValidationException(message)

    user = User(
        name=name,
        email=email,
        hashed_password=hash_password(password),
        student_id=student_id,
        contact_number=contact_number,
        avatar=avatar,
        is_verified=False,
    )
    _issue_otp(user, settings)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationException('User already exists') from exc
    db.refresh(user)

    logger.info(f"Registered user {user.id} pending verification")
    return OtpDispatch(user=user, delivered=_send_otp(user, settings, email_service))


def resend_otp(db: Session, settings: Settings, email_service: EmailService, email: str) -> OtpDispatch | None:
    """Issue a fresh code for an unverified user; ``None`` if already verified."""
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if user is None:
        raise VerificationException(VerificationException.NOT_FOUND, 'User not found')
    if user.is_verified:
        return None

    _issue_otp(user, settings)
    db.commit()
    return OtpDispatch(user=user, delivered=_send_otp(user, settings, email_service))


def verify_otp(db: Session, email: str, code: str, now: Optional[datetime] = None) -> VerificationOutcome:
    """
    Check a one-time code and mark the account verified.

    Raises:
        VerificationException: NOT_FOUND, MISMATCH or EXPIRED
    """
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if user is None:
        raise VerificationException(VerificationException.NOT_FOUND, 'User not found')

    if user.is_verified:
        return VerificationOutcome(user=user, already_verified=True)

    if not user.otp or user.otp != (code or '').strip():
        raise VerificationException(VerificationException.MISMATCH, 'Invalid Code')

    if user.otp_expires is None or (now or utcnow()) > user.otp_expires:
        raise VerificationException(VerificationException.EXPIRED, 'Code expired. Please request a new one.')

    user.is_verified = True
    user.otp = None
    user.otp_expires = None
    db.commit()
    db.refresh(user)

    logger.info(f"User {user.id} verified")
    return VerificationOutcome(user=user, already_verified=False)


def authenticate(db: Session, email: str, password: str) -> User:
    """
    Check email and password.

    Raises:
        AuthException: On missing fields, unknown users, social-only accounts or bad passwords
    """
    if not email or not password:
        raise AuthException('Please provide an email and password')

    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if user is None:
        raise AuthException('Invalid credentials')

    if not user.has_password:
        raise AuthException('Please login using single sign-on for this account')

    if not verify_password(password, user.hashed_password):
        raise AuthException('Invalid credentials')

    return user


def _logout_subject(db: Session, token: str | None, session_id: str | None, settings: Settings) -> User | None:
    if token:
        try:
            payload = jwt_handler.decode_access_token(token, settings)
        except jwt.PyJWTError:
            payload = {}
        subject = payload.get('sub')
        if subject and str(subject).isdigit():
            user = db.query(User).filter(User.id == int(subject)).first()
            if user is not None:
                return user

    server_session = load_server_session(db, session_id)
    if server_session is None:
        return None
    return db.query(User).filter(User.id == server_session.user_id).first()


def logout(
    db: Session,
    response: Response,
    settings: Settings,
    token: str | None,
    session_id: str | None,
) -> None:
    """
    Tear down both session artifacts.

    Each step runs even if an earlier one failed; storage failures are
    logged and never surfaced to the caller.
    """
    try:
        user = _logout_subject(db, token, session_id, settings)
        if user is not None:
            user.last_logout = utcnow()
            user.token_version = (user.token_version or 0) + 1
            db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Logout error while recording last logout')

    clear_token_cookie(response, settings)

    try:
        destroy_server_session(db, session_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Session destroy error')

    clear_session_cookie(response, settings)


def social_login(
    db: Session,
    settings: Settings,
    *,
    provider: str,
    subject: str,
    email: str,
    name: Optional[str] = None,
) -> User:
    """
    Find or create the account behind a single sign-on identity.

    New accounts have no password and stay unverified until the profile is
    completed.
    """
    column_name = SOCIAL_PROVIDER_COLUMNS.get(provider)
    if column_name is None:
        raise AuthException(f'Unsupported login provider: {provider}')
    if not subject:
        raise AuthException('Missing provider subject')

    email = validate_institutional_email(email, settings.institution_domain)
    provider_column = getattr(User, column_name)

    user = db.query(User).filter(or_(provider_column == subject, User.email == email)).first()
    if user is None:
        display_name = (name or '').strip() or email.split('@', 1)[0]
        user = User(
            name=display_name,
            email=email,
            avatar=default_avatar_for(display_name),
            is_verified=False,
            **{column_name: subject},
        )
        db.add(user)
        logger.info(f"Created {provider} account for {email}")
    elif not getattr(user, column_name):
        setattr(user, column_name, subject)

    db.commit()
    db.refresh(user)
    return user


def complete_profile(
    db: Session,
    user: User,
    *,
    student_id: str,
    contact_number: str,
    avatar_url: Optional[str] = None,
) -> User:
    """
    Fill in the fields single sign-on cannot provide and verify the account.

    Raises:
        ValidationException: If a field is malformed or used by another account
    """
    student_id = validate_student_id(student_id)
    contact_number = validate_contact_number(contact_number)
    avatar = validate_image_url(avatar_url) if avatar_url else None

    existing = db.query(User).filter(
        or_(User.student_id == student_id, User.contact_number == contact_number),
        User.id != user.id,
    ).first()
    if existing:
        raise ValidationException('Student ID or Contact Number already in use')

    user.student_id = student_id
    user.contact_number = contact_number
    user.is_verified = True
    if avatar:
        user.avatar = avatar

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationException('Student ID or Contact Number already in use') from exc
    db.refresh(user)
    return user


def update_avatar(db: Session, user: User, avatar_url: str) -> User:
    user.avatar = validate_image_url(avatar_url)
    db.commit()
    db.refresh(user)
    return user


def remove_avatar(db: Session, user: User) -> User:
    user.avatar = default_avatar_for(user.name)
    db.commit()
    db.refresh(user)
    return user
