from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace.auth.dependencies import get_current_user
from marketplace.database import get_db
from marketplace.models.user import User
from marketplace.routes.listing_routes import (
    LimitOrderResponse,
    ListingResponse,
    to_listing_response,
    to_order_response,
)
from marketplace.services.listings import build_dashboard

router = APIRouter(tags=['dashboard'])


class OrderWithMatchesResponse(LimitOrderResponse):
    matches: list[ListingResponse]


class DashboardResponse(BaseModel):
    listings: list[ListingResponse]
    orders: list[OrderWithMatchesResponse]


@router.get('/dashboard', response_model=DashboardResponse)
def dashboard(
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, private'
    response.headers['Pragma'] = 'no-cache'

    data = build_dashboard(db, current_user)
    return DashboardResponse(
        listings=[to_listing_response(listing, current_user.id) for listing in data['listings']],
        orders=[
            OrderWithMatchesResponse(
                **to_order_response(entry['order']).model_dump(),
                matches=[to_listing_response(listing, current_user.id) for listing in entry['matches']],
            )
            for entry in data['orders']
        ],
    )
