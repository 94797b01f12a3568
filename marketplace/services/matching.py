"""
Limit order matching.

A listing matches an order when the order is ACTIVE, its sector equals the
listing's category after case folding, its ``max_price`` covers the listing
price, and the two belong to different users.

Two entry points share that rule but not their effects:

* ``on_listing_created`` fills every matching order.
* ``compute_matches_for_order`` only reads, for the dashboard.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from marketplace.core.clock import utcnow
from marketplace.models.limit_order import ORDER_ACTIVE, ORDER_FILLED, LimitOrder
from marketplace.models.listing import LISTING_AVAILABLE, Listing

logger = logging.getLogger(__name__)


def normalize_sector(label: str) -> str:
    return ' '.join((label or '').split()).casefold()


def sectors_match(sector: str, category: str) -> bool:
    return normalize_sector(sector) == normalize_sector(category)


def find_candidate_orders(db: Session, listing: Listing) -> List[LimitOrder]:
    """ACTIVE orders of other users that would accept ``listing`` right now."""
    orders = db.query(LimitOrder).filter(
        LimitOrder.status == ORDER_ACTIVE,
        LimitOrder.max_price >= listing.price,
        LimitOrder.owner_id != listing.owner_id,
    ).order_by(LimitOrder.created_at.asc(), LimitOrder.id.asc()).all()

    return [order for order in orders if sectors_match(order.sector, listing.category)]


def fill_order(db: Session, order_id: int, listing_id: int, now: Optional[datetime] = None) -> bool:
    """
    Move one order from ACTIVE to FILLED.

    The status is re-checked inside the UPDATE itself, so when two writers
    race for the same order only one of them sees a row change.

    Returns:
        True if this call performed the transition
    """
    updated = db.query(LimitOrder).filter(
        LimitOrder.id == order_id,
        LimitOrder.status == ORDER_ACTIVE,
    ).update(
        {
            LimitOrder.status: ORDER_FILLED,
            LimitOrder.filled_listing_id: listing_id,
            LimitOrder.filled_at: now or utcnow(),
        },
        synchronize_session=False,
    )
    return updated == 1


def on_listing_created(db: Session, listing: Listing) -> List[LimitOrder]:
    """
    Fill every standing order the new listing satisfies.

    Returns:
        The orders this call filled; orders lost to a concurrent fill are omitted
    """
    candidates = find_candidate_orders(db, listing)
    if not candidates:
        return []

    filled_ids = [order.id for order in candidates if fill_order(db, order.id, listing.id)]
    db.commit()

    filled = [order for order in candidates if order.id in filled_ids]
    for order in filled:
        db.refresh(order)
        logger.info(f"[ORDER] Limit order {order.id} filled by listing {listing.id}")

    skipped = len(candidates) - len(filled)
    if skipped:
        logger.info(f"Listing {listing.id}: {skipped} matching order(s) were already filled")
    return filled


def compute_matches_for_order(db: Session, order: LimitOrder, exclude_user_id: int) -> List[Listing]:
    """Available listings that satisfy ``order``; never mutates anything."""
    listings = db.query(Listing).filter(
        Listing.status == LISTING_AVAILABLE,
        Listing.price <= order.max_price,
        Listing.owner_id != exclude_user_id,
    ).order_by(Listing.created_at.desc(), Listing.id.desc()).all()

    return [listing for listing in listings if sectors_match(order.sector, listing.category)]
