"""Tests for facility filtering, ranking, pagination and bounding boxes."""

from __future__ import annotations

import pytest

from afyalink.services.distance import Coordinate, distance_km
from afyalink.services.facility_search import (
    FacilityQuery,
    FacilityRecord,
    FacilityType,
    bounding_box,
    is_listed,
    page_meta,
    paginate,
    search,
)

ORIGIN = Coordinate(-1.2921, 36.8219)  # Nairobi CBD


def _facility(fid, name, lat=None, lng=None, **kwargs) -> FacilityRecord:
    coord = Coordinate(lat, lng) if lat is not None else None
    kwargs.setdefault("type", FacilityType.CLINIC)
    kwargs.setdefault("address", f"{name} Road")
    return FacilityRecord(id=fid, name=name, coordinate=coord, **kwargs)


NEAR = _facility("1", "Near Clinic", -1.2950, 36.8250, rating=3.0)
MID = _facility("2", "Mid Pharmacy", -1.3200, 36.8500, type=FacilityType.PHARMACY, rating=4.5)
FAR = _facility("3", "Far Hospital", -1.0000, 37.1000, type=FacilityType.HOSPITAL)
UNLOCATED = _facility("4", "Mobile Clinic", rating=5.0, description="Outreach van")
INACTIVE = _facility("5", "Closed Clinic", -1.2925, 36.8220, is_active=False)


class TestSearchRadius:
    def test_only_within_radius_and_unlocated(self):
        results = search(FacilityQuery(origin=ORIGIN, radius_km=10), [NEAR, MID, FAR, UNLOCATED])
        ids = [r.facility.id for r in results]
        assert ids == ["1", "2", "4"]
        for r in results:
            if r.distance_km is not None:
                assert r.distance_km <= 10

    def test_unlocated_listed_last_with_null_distance(self):
        results = search(FacilityQuery(origin=ORIGIN, radius_km=50), [UNLOCATED, FAR, NEAR])
        assert results[-1].facility.id == "4"
        assert results[-1].distance_km is None

    def test_distance_reported(self):
        results = search(FacilityQuery(origin=ORIGIN), [NEAR])
        assert results[0].distance_km == pytest.approx(distance_km(ORIGIN, NEAR.coordinate))

    def test_no_origin_keeps_everything_without_distance(self):
        results = search(FacilityQuery(), [FAR, NEAR, UNLOCATED])
        assert {r.facility.id for r in results} == {"1", "3", "4"}
        assert all(r.distance_km is None for r in results)

    def test_no_origin_orders_by_rating_then_name(self):
        results = search(FacilityQuery(), [NEAR, MID, UNLOCATED])
        assert [r.facility.id for r in results] == ["4", "2", "1"]

    def test_empty_result(self):
        remote = Coordinate(-4.0435, 39.6682)  # Mombasa
        results = search(FacilityQuery(origin=remote, radius_km=5), [NEAR, MID, FAR])
        assert results == []

    def test_inactive_never_listed(self):
        assert not is_listed(INACTIVE)
        results = search(FacilityQuery(origin=ORIGIN, radius_km=50), [INACTIVE, NEAR])
        assert [r.facility.id for r in results] == ["1"]


class TestSearchFilters:
    def test_type_filter(self):
        results = search(FacilityQuery(type=FacilityType.PHARMACY), [NEAR, MID, FAR])
        assert [r.facility.id for r in results] == ["2"]

    def test_text_matches_name_description_address_case_insensitive(self):
        assert [r.facility.id for r in search(FacilityQuery(search_text="OUTREACH"), [NEAR, UNLOCATED])] == ["4"]
        assert [r.facility.id for r in search(FacilityQuery(search_text="near clinic road"), [NEAR, MID])] == ["1"]

    def test_blank_text_ignored(self):
        assert len(search(FacilityQuery(search_text="   "), [NEAR, MID])) == 2

    def test_emergency_and_24h(self):
        er = _facility("6", "ER", -1.29, 36.82, is_emergency=True, is_24_hours=True)
        day = _facility("7", "Day Clinic", -1.29, 36.82, is_24_hours=False)
        assert [r.facility.id for r in search(FacilityQuery(emergency_only=True), [er, day])] == ["6"]
        assert [r.facility.id for r in search(FacilityQuery(open_24h=True), [er, day])] == ["6"]

    def test_filters_apply_to_unlocated(self):
        results = search(FacilityQuery(origin=ORIGIN, emergency_only=True), [UNLOCATED])
        assert results == []


class TestRankingDeterminism:
    def test_equal_distance_ties_break_on_rating_then_name(self):
        a = _facility("a", "Beta", -1.30, 36.83, rating=4.0)
        b = _facility("b", "Alpha", -1.30, 36.83, rating=4.0)
        c = _facility("c", "Gamma", -1.30, 36.83, rating=4.8)
        results = search(FacilityQuery(origin=ORIGIN), [a, b, c])
        assert [r.facility.id for r in results] == ["c", "b", "a"]

    def test_same_order_regardless_of_input_order(self):
        candidates = [NEAR, MID, UNLOCATED, FAR]
        first = search(FacilityQuery(origin=ORIGIN, radius_km=50), candidates)
        second = search(FacilityQuery(origin=ORIGIN, radius_km=50), list(reversed(candidates)))
        assert [r.facility.id for r in first] == [r.facility.id for r in second]

    def test_distances_non_decreasing(self):
        results = search(FacilityQuery(origin=ORIGIN, radius_km=50), [FAR, MID, NEAR])
        distances = [r.distance_km for r in results]
        assert distances == sorted(distances)


class TestPaginate:
    def test_slices_and_reports(self):
        items = list(range(7))
        page, meta = paginate(items, 2, 3)
        assert page == [3, 4, 5]
        assert meta == {"currentPage": 2, "totalPages": 3, "totalItems": 7, "itemsPerPage": 3}

    def test_page_past_end_is_empty(self):
        page, meta = paginate([1, 2], 5, 10)
        assert page == []
        assert meta["totalPages"] == 1

    def test_empty(self):
        page, meta = paginate([], 1, 50)
        assert page == []
        assert meta["totalPages"] == 0
        assert meta["totalItems"] == 0

    def test_page_meta_rounds_up(self):
        assert page_meta(1, 20, 41)["totalPages"] == 3


class TestBoundingBox:
    def test_contains_points_on_radius(self):
        radius = 10.0
        min_lat, max_lat, min_lng, max_lng = bounding_box(ORIGIN, radius)
        # Points roughly due N/S/E/W at just under the radius are inside the box.
        for lat, lng in [
            (ORIGIN.latitude + 0.0898, ORIGIN.longitude),
            (ORIGIN.latitude - 0.0898, ORIGIN.longitude),
            (ORIGIN.latitude, ORIGIN.longitude + 0.0898),
            (ORIGIN.latitude, ORIGIN.longitude - 0.0898),
        ]:
            assert distance_km(ORIGIN, Coordinate(lat, lng)) < radius
            assert min_lat <= lat <= max_lat
            assert min_lng <= lng <= max_lng

    def test_far_point_outside(self):
        min_lat, max_lat, min_lng, max_lng = bounding_box(ORIGIN, 10)
        assert not (min_lat <= FAR.coordinate.latitude <= max_lat)

    def test_near_pole_spans_all_longitudes(self):
        _, max_lat, min_lng, max_lng = bounding_box(Coordinate(89.99, 10.0), 5)
        assert max_lat == 90.0
        assert (min_lng, max_lng) == (-180.0, 180.0)

    def test_antimeridian_spans_all_longitudes(self):
        _, _, min_lng, max_lng = bounding_box(Coordinate(0.0, 179.99), 10)
        assert (min_lng, max_lng) == (-180.0, 180.0)
