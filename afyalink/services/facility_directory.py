"""Read side of the facility directory: the persistence boundary for search.

Rows are converted to immutable ``FacilityRecord`` values here so the ranker
never sees ORM objects or ambiguous location shapes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from afyalink.db.models import HealthFacility
from afyalink.services.distance import Coordinate
from afyalink.services.errors import NotFoundError
from afyalink.services.facility_search import (
    FacilityRecord,
    FacilityType,
    bounding_box,
)

logger = logging.getLogger(__name__)

_LAT_KEYS = ("latitude", "lat")
_LNG_KEYS = ("longitude", "lng", "lon")


def _first_present(data: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def normalize_location(data: Mapping[str, Any]) -> Coordinate | None:
    """Extract a ``Coordinate`` from any of the location shapes seen in the wild.

    Accepts ``{"location": {"latitude": .., "longitude": ..}}``, flat
    ``latitude``/``longitude`` and flat ``lat``/``lng``.  Returns ``None``
    when either component is missing; raises ``ValueError`` when a value is
    not numeric or out of range.
    """
    nested = data.get("location")
    sources = [nested, data] if isinstance(nested, Mapping) else [data]

    for source in sources:
        lat = _first_present(source, _LAT_KEYS)
        lng = _first_present(source, _LNG_KEYS)
        if lat is not None and lng is not None:
            return Coordinate(latitude=float(lat), longitude=float(lng))
    return None


def to_record(row: HealthFacility) -> FacilityRecord:
    coordinate = None
    if row.latitude is not None and row.longitude is not None:
        coordinate = Coordinate(latitude=row.latitude, longitude=row.longitude)

    return FacilityRecord(
        id=str(row.id),
        type=FacilityType(row.type),
        name=row.name,
        address=row.address,
        coordinate=coordinate,
        description=row.description,
        phone=row.phone,
        email=row.email,
        website=row.website,
        services=tuple(row.services or ()),
        operating_hours=dict(row.operating_hours or {}),
        is_emergency=bool(row.is_emergency),
        is_24_hours=bool(row.is_24_hours),
        rating=float(row.rating or 0.0),
        review_count=int(row.review_count or 0),
        is_verified=bool(row.is_verified),
        is_active=bool(row.is_active),
    )


async def find_active_facilities(
    session: AsyncSession,
    *,
    origin: Coordinate | None = None,
    radius_km: float | None = None,
    facility_type: FacilityType | None = None,
) -> list[FacilityRecord]:
    """Load active facilities, coarsely narrowed for a radius query.

    With an *origin*, rows outside the radius' bounding box are skipped in
    SQL, but rows with no stored coordinates are always returned.
    """
    stmt = select(HealthFacility).where(HealthFacility.is_active.is_(True))

    if facility_type is not None:
        stmt = stmt.where(HealthFacility.type == facility_type.value)

    if origin is not None and radius_km is not None:
        min_lat, max_lat, min_lng, max_lng = bounding_box(origin, radius_km)
        stmt = stmt.where(
            or_(
                HealthFacility.latitude.is_(None),
                HealthFacility.longitude.is_(None),
                and_(
                    HealthFacility.latitude.between(min_lat, max_lat),
                    HealthFacility.longitude.between(min_lng, max_lng),
                ),
            )
        )

    result = await session.execute(stmt)
    rows = result.scalars().all()
    logger.debug("Loaded %d candidate facilities", len(rows))
    return [to_record(row) for row in rows]


async def get_facility(session: AsyncSession, facility_id: str) -> FacilityRecord:
    """Return an active facility by id, or raise ``NotFoundError``."""
    result = await session.execute(
        select(HealthFacility).where(
            HealthFacility.id == facility_id,
            HealthFacility.is_active.is_(True),
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError("Health service not found.")
    return to_record(row)
