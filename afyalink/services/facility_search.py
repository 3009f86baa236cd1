"""In-memory filtering and proximity ranking of health facilities.

``search`` is a pure function over a candidate list: it never touches the
database, so it can be exercised directly in tests and run concurrently
without locking.  The caller (see ``facility_directory``) is responsible for
supplying candidates, usually pre-narrowed with ``bounding_box``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

from afyalink.services.distance import EARTH_RADIUS_KM, Coordinate, distance_km


class FacilityType(str, Enum):
    CLINIC = "clinic"
    PHARMACY = "pharmacy"
    HOSPITAL = "hospital"
    EMERGENCY = "emergency"
    MENTAL_HEALTH = "mental_health"
    SPECIALIST = "specialist"


@dataclass(frozen=True)
class FacilityRecord:
    id: str
    type: FacilityType
    name: str
    address: str
    coordinate: Coordinate | None = None
    description: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    services: tuple[str, ...] = ()
    operating_hours: dict[str, str] = field(default_factory=dict, hash=False)
    is_emergency: bool = False
    is_24_hours: bool = False
    rating: float = 0.0
    review_count: int = 0
    is_verified: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class FacilityQuery:
    origin: Coordinate | None = None
    radius_km: float = 10.0
    type: FacilityType | None = None
    search_text: str | None = None
    emergency_only: bool = False
    open_24h: bool = False


@dataclass(frozen=True)
class RankedFacility:
    facility: FacilityRecord
    distance_km: float | None = None


def is_listed(record: FacilityRecord) -> bool:
    """Soft-delete predicate: only active facilities are ever listed."""
    return record.is_active


def _matches(record: FacilityRecord, query: FacilityQuery) -> bool:
    if query.type is not None and record.type != query.type:
        return False
    if query.emergency_only and not record.is_emergency:
        return False
    if query.open_24h and not record.is_24_hours:
        return False
    if query.search_text:
        needle = query.search_text.strip().lower()
        if needle:
            haystacks = (record.name, record.description, record.address)
            if not any(h and needle in h.lower() for h in haystacks):
                return False
    return True


def _rank_key(item: RankedFacility) -> tuple:
    # Unlocated facilities sort after every located one.
    d = item.distance_km
    return (
        d is None,
        d if d is not None else 0.0,
        -item.facility.rating,
        item.facility.name,
        item.facility.id,
    )


def search(
    query: FacilityQuery, candidates: list[FacilityRecord]
) -> list[RankedFacility]:
    """Filter *candidates* by *query* and order them nearest first.

    Facilities without a coordinate are never dropped by the radius check,
    only by the attribute filters.
    """
    results: list[RankedFacility] = []
    for record in candidates:
        if not is_listed(record) or not _matches(record, query):
            continue

        dist = None
        if query.origin is not None and record.coordinate is not None:
            dist = distance_km(query.origin, record.coordinate)
            if dist > query.radius_km:
                continue

        results.append(RankedFacility(facility=record, distance_km=dist))

    results.sort(key=_rank_key)
    return results


def page_meta(page: int, page_size: int, total: int) -> dict:
    """Pagination envelope shared by every paged endpoint."""
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / page_size) if total else 0,
        "totalItems": total,
        "itemsPerPage": page_size,
    }


def paginate(items: list, page: int, page_size: int) -> tuple[list, dict]:
    """Slice an already-ranked list and build the pagination envelope."""
    start = (page - 1) * page_size
    return items[start : start + page_size], page_meta(page, page_size, len(items))


def bounding_box(
    origin: Coordinate, radius_km: float
) -> tuple[float, float, float, float]:
    """Return ``(min_lat, max_lat, min_lng, max_lng)`` enclosing the radius.

    A coarse storage-side pre-filter; ``search`` still applies the exact
    Haversine cut.  Near the poles, or when the box would cross the
    antimeridian, the longitude range widens to the full [-180, 180].
    """
    angular = radius_km / EARTH_RADIUS_KM
    dlat = math.degrees(angular)
    min_lat = max(-90.0, origin.latitude - dlat)
    max_lat = min(90.0, origin.latitude + dlat)

    cos_lat = math.cos(math.radians(origin.latitude))
    if min_lat <= -90.0 or max_lat >= 90.0 or math.sin(angular) >= cos_lat:
        return min_lat, max_lat, -180.0, 180.0

    dlng = math.degrees(math.asin(math.sin(angular) / cos_lat))
    min_lng = origin.longitude - dlng
    max_lng = origin.longitude + dlng
    if min_lng < -180.0 or max_lng > 180.0:
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, min_lng, max_lng
