"""
Place Routes - Listing and Managing Places

Routes:
- GET   /places              - List places (public: LIVE only; hosts: own; admins: all)
- GET   /places/{id}         - Place detail
- POST  /places              - Create place (host/admin)
- PUT   /places/{id}         - Update place (owner host/admin)
- PATCH /places/{id}/status  - Change listing status (owner host/admin)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.bidding import (
    AccommodationType,
    BiddingService,
    PlaceStatus,
    Principal,
    paginate,
)
from core.bidding.money import to_money
from core.bidding.places import validate_place_data
from web.auth import get_optional_principal, get_service, require_host_or_admin


router = APIRouter(prefix="/places", tags=["places"])


# =============================================================================
# Request Models
# =============================================================================


class PlaceRequest(BaseModel):
    """Place fields; values are validated by the engine, not here."""

    name: Optional[str] = None
    short_description: Optional[str] = None
    full_description: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    latitude: Optional[Union[float, str]] = None
    longitude: Optional[Union[float, str]] = None
    image_urls: Optional[List[str]] = None
    accommodation_type: Optional[str] = None
    retail_price: Optional[Union[str, int, float]] = None
    minimum_bid: Optional[Union[str, int, float]] = None
    auto_accept_above_minimum: Optional[bool] = None
    blackout_dates: Optional[List[str]] = None
    allowed_days_of_week: Optional[List[Any]] = None
    status: Optional[str] = None
    max_inventory: Optional[Union[int, str]] = None
    owner_id: Optional[str] = None


class PlaceStatusRequest(BaseModel):
    status: str


# =============================================================================
# Routes
# =============================================================================


@router.get("")
def list_places(
    city: Optional[str] = Query(None),
    accommodation_type: Optional[str] = Query(None),
    max_price: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: BiddingService = Depends(get_service),
):
    """List places visible to the caller."""
    try:
        type_filter = AccommodationType(accommodation_type) if accommodation_type else None
        status_filter = PlaceStatus(status) if status else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    price_filter: Optional[Decimal] = None
    if max_price:
        price_filter = to_money(max_price)
        if price_filter is None:
            raise HTTPException(status_code=400, detail="max_price must be a number")

    places = service.list_places(
        principal,
        city=city,
        accommodation_type=type_filter,
        max_price=price_filter,
        status=status_filter,
    )
    return JSONResponse(paginate(places, page, limit).to_dict(lambda p: p.to_dict()))


@router.post("/validate")
def validate_place(
    body: PlaceRequest,
    principal: Principal = Depends(require_host_or_admin),
):
    """Dry-run place validation for forms."""
    return JSONResponse(validate_place_data(body.model_dump(exclude_unset=True)).to_dict())


@router.get("/{place_id}")
def get_place(
    place_id: str,
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: BiddingService = Depends(get_service),
):
    """Place detail. Drafts and paused places are visible to their owner only."""
    place = service.get_place(place_id, principal)
    return JSONResponse(place.to_dict())


@router.post("", status_code=201)
def create_place(
    body: PlaceRequest,
    principal: Principal = Depends(require_host_or_admin),
    service: BiddingService = Depends(get_service),
):
    """Create a place."""
    place = service.create_place(principal, body.model_dump(exclude_unset=True))
    return JSONResponse(place.to_dict(), status_code=201)


@router.put("/{place_id}")
def update_place(
    place_id: str,
    body: PlaceRequest,
    principal: Principal = Depends(require_host_or_admin),
    service: BiddingService = Depends(get_service),
):
    """Update a place; only fields present in the body change."""
    changes = body.model_dump(exclude_unset=True)
    changes.pop("owner_id", None)
    place = service.update_place(principal, place_id, changes)
    return JSONResponse(place.to_dict())


@router.patch("/{place_id}/status")
def update_place_status(
    place_id: str,
    body: PlaceStatusRequest,
    principal: Principal = Depends(require_host_or_admin),
    service: BiddingService = Depends(get_service),
):
    """Toggle DRAFT / LIVE / PAUSED."""
    try:
        status = PlaceStatus(body.status.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail="Status must be one of DRAFT, LIVE or PAUSED")
    place = service.set_place_status(principal, place_id, status)
    return JSONResponse(place.to_dict())
