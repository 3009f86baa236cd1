"""Tests for GET /api/health-services endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from afyalink.api.dependencies import get_db
from afyalink.api.main import app
from afyalink.db.models import HealthFacility
from afyalink.services.metrics import metrics


def _facility(fid, name, lat=None, lng=None, **kwargs) -> HealthFacility:
    values = dict(
        id=fid,
        type="clinic",
        name=name,
        address=f"{name} Road, Nairobi",
        latitude=lat,
        longitude=lng,
        services=[],
        operating_hours={},
        is_emergency=False,
        is_24_hours=False,
        rating=3.0,
        review_count=0,
        is_verified=False,
        is_active=True,
    )
    values.update(kwargs)
    return HealthFacility(**values)


def _mock_session(rows=(), one=None):
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(rows)
    result.scalar_one_or_none.return_value = one
    session = AsyncMock()
    session.execute.return_value = result
    return session


async def _get(client, session, url, **params):
    app.dependency_overrides[get_db] = lambda: session
    try:
        return await client.get(url, params=params)
    finally:
        app.dependency_overrides.clear()


ROWS = [
    _facility("1", "Far Hospital", -1.0000, 37.1000, type="hospital"),
    _facility("2", "Mid Pharmacy", -1.3200, 36.8500, type="pharmacy", rating=4.5),
    _facility("3", "Near Clinic", -1.2950, 36.8250, is_emergency=True, is_24_hours=True),
    _facility("4", "Mobile Clinic", rating=5.0),
]


@pytest.mark.asyncio
async def test_search_sorted_by_distance(client):
    resp = await _get(client, _mock_session(ROWS), "/api/health-services", lat=-1.2921, lng=36.8219)
    assert resp.status_code == 200
    body = resp.json()
    assert [s["id"] for s in body["services"]] == ["3", "2", "4"]
    assert body["services"][0]["distance"] < body["services"][1]["distance"]
    assert body["services"][-1]["distance"] is None
    assert body["pagination"] == {
        "currentPage": 1, "totalPages": 1, "totalItems": 3, "itemsPerPage": 50,
    }
    assert body["filters"]["radius"] == 10.0
    assert body["filters"]["type"] == "all"
    assert metrics.facility_searches == 1


@pytest.mark.asyncio
async def test_search_camel_case_fields(client):
    resp = await _get(client, _mock_session(ROWS[2:3]), "/api/health-services")
    facility = resp.json()["services"][0]
    assert facility["isEmergency"] is True
    assert facility["is24Hours"] is True
    assert "operatingHours" in facility
    assert "reviewCount" in facility
    assert facility["distance"] is None


@pytest.mark.asyncio
async def test_search_filters(client):
    resp = await _get(
        client, _mock_session(ROWS), "/api/health-services",
        emergency="true", is24Hours="true", search="near",
    )
    body = resp.json()
    assert [s["id"] for s in body["services"]] == ["3"]
    assert body["filters"]["emergency"] is True
    assert body["filters"]["is24Hours"] is True
    assert body["filters"]["searchTerm"] == "near"


@pytest.mark.asyncio
async def test_search_empty_area(client):
    resp = await _get(
        client, _mock_session(ROWS[:3]), "/api/health-services", lat=-4.0435, lng=39.6682, radius=5
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["services"] == []
    assert body["pagination"]["totalItems"] == 0
    assert body["pagination"]["totalPages"] == 0


@pytest.mark.asyncio
async def test_search_pagination(client):
    resp = await _get(client, _mock_session(ROWS), "/api/health-services", page=2, limit=3)
    body = resp.json()
    assert len(body["services"]) == 1
    assert body["pagination"]["totalPages"] == 2


@pytest.mark.asyncio
async def test_lat_without_lng_is_400(client):
    resp = await _get(client, _mock_session(), "/api/health-services", lat=-1.29)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] is True
    assert body["field"] == "lng"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "params",
    [
        {"lat": 91, "lng": 0},
        {"lat": 0, "lng": 181},
        {"radius": 0.5},
        {"radius": 51},
        {"page": 0},
        {"limit": 101},
        {"type": "spa"},
    ],
)
async def test_invalid_params_are_422(client, params):
    resp = await _get(client, _mock_session(), "/api/health-services", **params)
    assert resp.status_code == 422
    assert resp.json()["error"] is True


@pytest.mark.asyncio
async def test_rate_limit_headers(client):
    resp = await _get(client, _mock_session(), "/api/health-services")
    assert "X-RateLimit-Limit" in resp.headers
    assert "X-RateLimit-Remaining" in resp.headers


@pytest.mark.asyncio
async def test_get_facility(client):
    session = _mock_session(one=ROWS[1])
    resp = await _get(client, session, "/api/health-services/2")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Mid Pharmacy"
    assert resp.json()["type"] == "pharmacy"


@pytest.mark.asyncio
async def test_get_facility_missing(client):
    resp = await _get(client, _mock_session(one=None), "/api/health-services/missing")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Health service not found."
