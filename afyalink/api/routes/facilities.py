"""GET /api/health-services: find facilities near a point, with filters."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from afyalink.api.dependencies import get_db
from afyalink.api.schemas import ErrorResponse, FacilityModel, FacilitySearchResponse
from afyalink.config import settings
from afyalink.services.distance import Coordinate
from afyalink.services.errors import ValidationError
from afyalink.services.facility_directory import find_active_facilities, get_facility
from afyalink.services.facility_search import (
    FacilityQuery,
    FacilityType,
    paginate,
    search,
)
from afyalink.services.facility_serializer import facility_to_dict, ranked_to_dict
from afyalink.services.metrics import metrics
from afyalink.services.rate_limiter import enforce_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/health-services",
    tags=["health-services"],
    dependencies=[Depends(enforce_rate_limit)],
)


@router.get(
    "",
    summary="Search health facilities",
    description=(
        "Return active health facilities matching the filters. When `lat` "
        "and `lng` are given, facilities farther than `radius` km are "
        "dropped and results are sorted nearest first; facilities with no "
        "stored location are kept and listed last. Ties are broken by "
        "rating (highest first) and then by name.\n\n"
        "Pagination is applied after ranking."
    ),
    response_model=FacilitySearchResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Only one of lat/lng given"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    },
)
async def search_facilities(
    lat: float | None = Query(None, ge=-90, le=90, description="Latitude of the user"),
    lng: float | None = Query(None, ge=-180, le=180, description="Longitude of the user"),
    radius: float = Query(
        settings.default_radius_km, ge=1, le=50, description="Search radius in km (1-50)"
    ),
    type: FacilityType | None = Query(None, description="Facility type"),
    search_text: str | None = Query(
        None, alias="search", max_length=100, description="Matches name, description or address"
    ),
    emergency: bool = Query(False, description="Only facilities offering emergency care"),
    is_24_hours: bool = Query(False, alias="is24Hours", description="Only 24-hour facilities"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    session: AsyncSession = Depends(get_db),
):
    """Filter, rank by distance and paginate health facilities."""
    if (lat is None) != (lng is None):
        raise ValidationError("Provide both 'lat' and 'lng', or neither.", field="lat" if lat is None else "lng")

    origin = Coordinate(latitude=lat, longitude=lng) if lat is not None else None
    query = FacilityQuery(
        origin=origin,
        radius_km=radius,
        type=type,
        search_text=search_text,
        emergency_only=emergency,
        open_24h=is_24_hours,
    )

    candidates = await find_active_facilities(
        session, origin=origin, radius_km=radius, facility_type=type
    )
    ranked = search(query, candidates)
    page_items, pagination = paginate(ranked, page, limit)
    metrics.inc_facility_search()

    logger.debug(
        "Facility search: %d candidates, %d matches, page %d",
        len(candidates), len(ranked), page,
    )

    return {
        "services": [ranked_to_dict(item) for item in page_items],
        "pagination": pagination,
        "filters": {
            "type": type.value if type else "all",
            "radius": radius,
            "emergency": emergency,
            "is24Hours": is_24_hours,
            "searchTerm": search_text or None,
        },
    }


@router.get(
    "/{facility_id}",
    summary="Get a health facility",
    response_model=FacilityModel,
    responses={404: {"model": ErrorResponse, "description": "Facility not found or inactive"}},
)
async def get_facility_detail(
    facility_id: str = Path(..., max_length=36, description="Facility ID"),
    session: AsyncSession = Depends(get_db),
):
    return facility_to_dict(await get_facility(session, facility_id))
