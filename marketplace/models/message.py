"""Chat message model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text

from marketplace.core.clock import utcnow
from marketplace.database import Base


class Message(Base):
    """A chat message between two users, optionally about a listing."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
