"""Server-side session model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from marketplace.core.clock import utcnow
from marketplace.database import Base


class ServerSession(Base):
    """Server half of an authenticated session; its id is the session cookie value."""
    __tablename__ = "server_sessions"

    id = Column(String, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
