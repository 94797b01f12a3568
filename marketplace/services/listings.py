"""
Listing and limit order operations.

Creating a listing persists it first and then runs the matching engine, so a
matching failure never loses the listing itself.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional

from sqlalchemy.orm import Session

from marketplace.models.limit_order import LimitOrder
from marketplace.models.listing import LISTING_AVAILABLE, Listing
from marketplace.models.user import User
from marketplace.services import matching
from marketplace.utils.exceptions import AuthorizationException, NotFoundException
from marketplace.utils.validators import validate_image_urls, validate_label, validate_price

logger = logging.getLogger(__name__)


class ListingCreation(NamedTuple):
    listing: Listing
    filled_orders: List[LimitOrder]


def browse_listings(
    db: Session,
    viewer_id: Optional[int] = None,
    sector: Optional[str] = None,
    max_price: Optional[Decimal] = None,
) -> List[Listing]:
    """
    Available listings, newest first.

    Args:
        viewer_id: Signed-in viewer whose own listings are hidden
        sector: Category filter, compared case-insensitively
        max_price: Upper bound on price
    """
    query = db.query(Listing).filter(Listing.status == LISTING_AVAILABLE)
    if viewer_id is not None:
        query = query.filter(Listing.owner_id != viewer_id)
    if max_price is not None:
        query = query.filter(Listing.price <= max_price)

    listings = query.order_by(Listing.created_at.desc(), Listing.id.desc()).all()
    if sector:
        listings = [listing for listing in listings if matching.sectors_match(sector, listing.category)]
    return listings


def get_listing(db: Session, listing_id: int) -> Listing:
    listing = db.query(Listing).filter(Listing.id == listing_id).first()
    if listing is None:
        raise NotFoundException('Product not found')
    return listing


def create_listing(
    db: Session,
    owner: User,
    *,
    title: str,
    description: str,
    price: Any,
    category: str,
    images: Optional[List[str]] = None,
    is_anonymous: bool = False,
) -> ListingCreation:
    """
    Persist a listing, then fill the standing orders it satisfies.

    Raises:
        ValidationException: If a field is malformed
    """
    listing = Listing(
        title=validate_label(title, 'title'),
        description=(description or '').strip(),
        price=validate_price(price),
        category=validate_label(category, 'category'),
        images=validate_image_urls(images or []),
        is_anonymous=bool(is_anonymous),
        owner_id=owner.id,
        status=LISTING_AVAILABLE,
    )
    db.add(listing)
    db.commit()
    db.refresh(listing)
    logger.info(f"Listing {listing.id} created by user {owner.id} in {listing.category} at {listing.price}")

    filled_orders = matching.on_listing_created(db, listing)
    return ListingCreation(listing=listing, filled_orders=filled_orders)


def delete_listing(db: Session, owner: User, listing_id: int) -> None:
    listing = get_listing(db, listing_id)
    if listing.owner_id != owner.id:
        raise AuthorizationException('Not authorized')

    db.delete(listing)
    db.commit()
    logger.info(f"Listing {listing_id} deleted by user {owner.id}")


def create_limit_order(db: Session, owner: User, *, sector: str, max_price: Any) -> LimitOrder:
    order = LimitOrder(
        owner_id=owner.id,
        sector=validate_label(sector, 'sector'),
        max_price=validate_price(max_price, field='max_price'),
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info(f"[ORDER] Limit order {order.id} placed by user {owner.id}: {order.sector} <= {order.max_price}")
    return order


def delete_limit_order(db: Session, owner: User, order_id: int) -> None:
    order = db.query(LimitOrder).filter(LimitOrder.id == order_id).first()
    if order is None:
        raise NotFoundException('Order not found')
    if order.owner_id != owner.id:
        raise AuthorizationException('Not authorized')

    db.delete(order)
    db.commit()
    logger.info(f"[ORDER] Limit Order {order_id} cancelled by user")


def build_dashboard(db: Session, user: User) -> Dict[str, Any]:
    """The caller's listings and orders, each order annotated with its current matches."""
    my_listings = db.query(Listing).filter(
        Listing.owner_id == user.id,
    ).order_by(Listing.created_at.desc(), Listing.id.desc()).all()

    my_orders = db.query(LimitOrder).filter(
        LimitOrder.owner_id == user.id,
    ).order_by(LimitOrder.created_at.desc(), LimitOrder.id.desc()).all()

    return {
        'listings': my_listings,
        'orders': [
            {'order': order, 'matches': matching.compute_matches_for_order(db, order, exclude_user_id=user.id)}
            for order in my_orders
        ],
    }
