"""Limit order model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String

from marketplace.core.clock import utcnow
from marketplace.database import Base

ORDER_ACTIVE = 'ACTIVE'
ORDER_FILLED = 'FILLED'


class LimitOrder(Base):
    """A standing request to buy within a sector at or below ``max_price``."""
    __tablename__ = "limit_orders"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    sector = Column(String, nullable=False)
    max_price = Column(Numeric(12, 2), nullable=False)
    status = Column(String, default=ORDER_ACTIVE, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    filled_listing_id = Column(Integer, ForeignKey("listings.id", ondelete="SET NULL"), nullable=True)
    filled_at = Column(DateTime, nullable=True)
