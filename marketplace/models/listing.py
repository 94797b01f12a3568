"""Listing model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text

from marketplace.core.clock import utcnow
from marketplace.database import Base

LISTING_AVAILABLE = 'Available'
LISTING_SOLD = 'Sold'
LISTING_REMOVED = 'Removed'


class Listing(Base):
    """An item offered for sale by its owner."""
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default='')
    price = Column(Numeric(12, 2), nullable=False)
    category = Column(String, nullable=False)
    images = Column(JSON, nullable=False, default=list)
    is_anonymous = Column(Boolean, default=False, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String, default=LISTING_AVAILABLE, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
