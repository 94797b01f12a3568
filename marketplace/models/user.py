"""User model definitions."""

from urllib.parse import quote

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from marketplace.core.clock import utcnow
from marketplace.database import Base

DEFAULT_AVATAR_TEMPLATE = 'https://ui-avatars.com/api/?name={name}&background=0b0e11&color=fff&size=128'

SOCIAL_PROVIDER_COLUMNS = {
    'google': 'google_id',
    'github': 'github_id',
    'saml': 'sso_subject',
}


class User(Base):
    """Represents a marketplace member identified by an institutional email."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    student_id = Column(String, unique=True, index=True, nullable=True)
    contact_number = Column(String, nullable=True)
    hashed_password = Column(String, nullable=True)
    google_id = Column(String, unique=True, nullable=True)
    github_id = Column(String, unique=True, nullable=True)
    sso_subject = Column(String, unique=True, nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    otp = Column(String, nullable=True)
    otp_expires = Column(DateTime, nullable=True)
    avatar = Column(String, nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_logout = Column(DateTime, nullable=True)
    token_version = Column(Integer, default=0, nullable=False)

    @property
    def has_password(self) -> bool:
        return bool(self.hashed_password)

    @property
    def needs_profile_completion(self) -> bool:
        return not self.student_id or not self.contact_number

    @property
    def avatar_url(self) -> str:
        return self.avatar or default_avatar_for(self.name)


def default_avatar_for(name: str) -> str:
    return DEFAULT_AVATAR_TEMPLATE.format(name=quote(name or ""))
