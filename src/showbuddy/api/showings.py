"""
Showings API endpoints
Catalog reads are public; creating a showing requires the admin role
"""
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from showbuddy.core.database import get_db
from showbuddy.core.security import CurrentUser, require_admin
from showbuddy.schemas import (
    ShowingCreate,
    ShowingResponse,
    ShowingListResponse,
    SeatMapResponse,
)
from showbuddy.services import SeatInventory, ShowingService
from showbuddy.services.cache_service import CacheService
from showbuddy.middleware.rate_limiter import limiter

router = APIRouter()


@router.get("/showings", response_model=ShowingListResponse)
@limiter.limit("30/minute")
async def list_showings(
    request: Request,
    movie_id: Optional[str] = Query(None, description="Filter by movie"),
    theater_id: Optional[str] = Query(None, description="Filter by theater"),
    show_date: Optional[date] = Query(None, description="Filter by date (YYYY-MM-DD)"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
):
    """
    List showings with pagination and filtering

    - **movie_id** / **theater_id** / **show_date**: optional filters
    - **page**: Page number (default: 1)
    - **page_size**: Items per page (default: 20, max: 100)
    """
    showings, total = await ShowingService.list_showings(
        db=db,
        movie_id=movie_id,
        theater_id=theater_id,
        show_date=show_date,
        page=page,
        page_size=page_size,
    )

    return ShowingListResponse(
        showings=[ShowingResponse.model_validate(showing) for showing in showings],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/showings", response_model=ShowingResponse, status_code=201)
@limiter.limit("10/minute")
async def create_showing(
    request: Request,
    showing_data: ShowingCreate,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create a showing and its seats from a seat-map template (admin only)"""
    showing = await ShowingService.create_showing(db, showing_data)
    return ShowingResponse.model_validate(showing)


@router.get("/showings/{showing_id}", response_model=ShowingResponse)
@limiter.limit("60/minute")
async def get_showing(
    request: Request,
    showing_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Get a specific showing by ID

    Cache key: showing:{showing_id}
    """
    cached = await CacheService.get_showing(showing_id)
    if cached:
        return ShowingResponse(**cached)

    showing = await ShowingService.get_showing(db, showing_id)
    response = ShowingResponse.model_validate(showing)
    await CacheService.set_showing(showing_id, response.model_dump(mode="json"))
    return response


@router.get("/showings/{showing_id}/seats", response_model=SeatMapResponse)
@limiter.limit("60/minute")
async def get_seat_map(
    request: Request,
    showing_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Seat map for a showing

    Each seat is reported as available, held or booked. A seat whose hold
    has run out is reported as available.
    """
    seats = await SeatInventory.get_seat_map(db, showing_id)
    return SeatMapResponse.from_seats(showing_id, seats)
