from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from marketplace.auth.dependencies import get_current_user, get_optional_user
from marketplace.database import get_db
from marketplace.models.limit_order import LimitOrder
from marketplace.models.listing import Listing
from marketplace.models.user import User
from marketplace.services import listings as listing_service
from marketplace.utils.validators import MAX_LISTING_IMAGES

router = APIRouter(tags=['products'])


class CreateListingRequest(BaseModel):
    title: str
    description: str = ''
    price: Decimal
    category: str
    images: list[str] = Field(default_factory=list, max_length=MAX_LISTING_IMAGES)
    is_anonymous: bool = False

    @field_validator('is_anonymous', mode='before')
    @classmethod
    def accept_checkbox_value(cls, value):
        # HTML checkboxes submit "on" when ticked.
        if isinstance(value, str) and value.strip().lower() == 'on':
            return True
        return value


class CreateLimitOrderRequest(BaseModel):
    sector: str
    max_price: Decimal


class ListingResponse(BaseModel):
    id: int
    title: str
    description: str
    price: Decimal
    category: str
    images: list[str]
    is_anonymous: bool
    owner_id: int | None
    status: str
    created_at: datetime


class LimitOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    sector: str
    max_price: Decimal
    status: str
    created_at: datetime
    filled_listing_id: int | None = None
    filled_at: datetime | None = None


class CreateListingResponse(BaseModel):
    listing: ListingResponse
    filled_order_ids: list[int]


def to_listing_response(listing: Listing, viewer_id: int | None = None) -> ListingResponse:
    hide_owner = listing.is_anonymous and listing.owner_id != viewer_id
    return ListingResponse(
        id=listing.id,
        title=listing.title,
        description=listing.description or '',
        price=listing.price,
        category=listing.category,
        images=list(listing.images or []),
        is_anonymous=listing.is_anonymous,
        owner_id=None if hide_owner else listing.owner_id,
        status=listing.status,
        created_at=listing.created_at,
    )


def to_order_response(order: LimitOrder) -> LimitOrderResponse:
    return LimitOrderResponse.model_validate(order)


@router.get('', response_model=list[ListingResponse])
def browse_listings(
    sector: str | None = Query(default=None),
    max_price: Decimal | None = Query(default=None, alias='maxPrice', gt=0),
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    viewer_id = current_user.id if current_user else None
    listings = listing_service.browse_listings(db, viewer_id=viewer_id, sector=sector, max_price=max_price)
    return [to_listing_response(listing, viewer_id) for listing in listings]


@router.post('', response_model=CreateListingResponse, status_code=status.HTTP_201_CREATED)
def create_listing(
    data: CreateListingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    creation = listing_service.create_listing(
        db,
        current_user,
        title=data.title,
        description=data.description,
        price=data.price,
        category=data.category,
        images=data.images,
        is_anonymous=data.is_anonymous,
    )
    return CreateListingResponse(
        listing=to_listing_response(creation.listing, current_user.id),
        filled_order_ids=[order.id for order in creation.filled_orders],
    )


@router.post('/orders', response_model=LimitOrderResponse, status_code=status.HTTP_201_CREATED)
def create_limit_order(
    data: CreateLimitOrderRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = listing_service.create_limit_order(db, current_user, sector=data.sector, max_price=data.max_price)
    return to_order_response(order)


@router.delete('/orders/{order_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_limit_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    listing_service.delete_limit_order(db, current_user, order_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get('/{listing_id}', response_model=ListingResponse)
def get_listing(
    listing_id: int,
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    listing = listing_service.get_listing(db, listing_id)
    return to_listing_response(listing, current_user.id if current_user else None)


@router.delete('/{listing_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_listing(
    listing_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    listing_service.delete_listing(db, current_user, listing_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
