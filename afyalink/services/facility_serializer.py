"""FacilityRecord / RankedFacility -> API response dict."""

from __future__ import annotations

from afyalink.services.facility_search import FacilityRecord, RankedFacility


def facility_to_dict(record: FacilityRecord, distance_km: float | None = None) -> dict:
    coord = record.coordinate
    return {
        "id": record.id,
        "type": record.type.value,
        "name": record.name,
        "description": record.description,
        "address": record.address,
        "latitude": coord.latitude if coord else None,
        "longitude": coord.longitude if coord else None,
        "phone": record.phone,
        "email": record.email,
        "website": record.website,
        "services": list(record.services),
        "operatingHours": dict(record.operating_hours),
        "isEmergency": record.is_emergency,
        "is24Hours": record.is_24_hours,
        "rating": record.rating,
        "reviewCount": record.review_count,
        "isVerified": record.is_verified,
        "distance": round(distance_km, 3) if distance_km is not None else None,
    }


def ranked_to_dict(item: RankedFacility) -> dict:
    return facility_to_dict(item.facility, item.distance_km)
