"""Load health facility seed data into health_facilities.

Usage:
    python -m afyalink.etl.load_facilities data/facilities.json
    python -m afyalink.etl.load_facilities data/facilities.csv --deactivate-missing

JSON files hold a list of facility objects (or ``{"facilities": [...]}``).
CSV files have one facility per row; ``services`` is ``;``-separated and
``operatingHours`` is a JSON object. Rows are matched to existing facilities
by name and address: matches are updated, the rest inserted.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pandas as pd
from sqlalchemy import create_engine, select, tuple_, update
from sqlalchemy.orm import Session

from afyalink.config import settings
from afyalink.db.models import HealthFacility
from afyalink.services.facility_directory import normalize_location
from afyalink.services.facility_search import FacilityType

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "y", "t"}

# Source key -> column; camelCase keys from the web client are accepted too.
_ALIASES = {
    "operatingHours": "operating_hours",
    "isEmergency": "is_emergency",
    "is24Hours": "is_24_hours",
    "reviewCount": "review_count",
    "isVerified": "is_verified",
    "isActive": "is_active",
}


def read_source(path: Path) -> list[dict]:
    """Read raw facility rows from a ``.json`` or ``.csv`` file."""
    suffix = path.suffix.lower()
    if suffix == ".json":
        with path.open(encoding="utf-8") as fh:
            data = json.load(fh)
        if isinstance(data, Mapping):
            data = data.get("facilities", [])
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a list of facilities")
        return [dict(item) for item in data]

    if suffix == ".csv":
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        logger.info("Read %d rows from %s", len(df), path)
        return [
            {k: (v if v != "" else None) for k, v in row.items()}
            for row in df.to_dict(orient="records")
        ]

    raise ValueError(f"Unsupported file type {suffix!r}; use .json or .csv")


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [s.strip() for s in value.split(";") if s.strip()]
    return [str(s) for s in value]


def _as_hours(value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, Mapping):
        raise ValueError("operating_hours must be an object")
    return {str(k): str(v) for k, v in value.items()}


def _text(raw: Mapping[str, Any], key: str, max_len: int, required: bool = False) -> str | None:
    value = raw.get(key)
    value = str(value).strip() if value is not None else ""
    if not value:
        if required:
            raise ValueError(f"{key} is required")
        return None
    if len(value) > max_len:
        raise ValueError(f"{key} longer than {max_len} characters")
    return value


def clean_row(raw: Mapping[str, Any]) -> dict:
    """Validate one source row and map it onto ``HealthFacility`` columns.

    Raises ``ValueError`` describing the first problem found.
    """
    raw = {_ALIASES.get(k, k): v for k, v in raw.items()}

    try:
        facility_type = FacilityType(str(raw.get("type") or "").strip())
    except ValueError:
        raise ValueError(f"unknown facility type {raw.get('type')!r}") from None

    coordinate = normalize_location(raw)

    rating = float(raw.get("rating") or 0)
    if not 0 <= rating <= 5:
        raise ValueError("rating must be between 0 and 5")
    review_count = int(float(raw.get("review_count") or 0))
    if review_count < 0:
        raise ValueError("review_count must not be negative")

    return {
        "type": facility_type.value,
        "name": _text(raw, "name", 100, required=True),
        "address": _text(raw, "address", 200, required=True),
        "description": _text(raw, "description", 2000),
        "latitude": coordinate.latitude if coordinate else None,
        "longitude": coordinate.longitude if coordinate else None,
        "phone": _text(raw, "phone", 20),
        "email": _text(raw, "email", 255),
        "website": _text(raw, "website", 255),
        "services": _as_list(raw.get("services")),
        "operating_hours": _as_hours(raw.get("operating_hours")),
        "is_emergency": _as_bool(raw.get("is_emergency")),
        "is_24_hours": _as_bool(raw.get("is_24_hours")),
        "rating": rating,
        "review_count": review_count,
        "is_verified": _as_bool(raw.get("is_verified")),
        "is_active": _as_bool(raw.get("is_active"), default=True),
    }


def upsert_facilities(
    rows: list[dict],
    engine,
    deactivate_missing: bool = False,
) -> dict[str, int]:
    """Insert or update cleaned rows, keyed on (name, address).

    With *deactivate_missing*, active facilities absent from *rows* are
    soft-deleted. Returns counts of inserted, updated and deactivated rows.
    """
    counts = {"inserted": 0, "updated": 0, "deactivated": 0}
    seen: set[tuple[str, str]] = set()

    with Session(engine) as session, session.begin():
        existing = {
            (f.name, f.address): f
            for f in session.scalars(select(HealthFacility)).all()
        }
        for row in rows:
            key = (row["name"], row["address"])
            if key in seen:
                logger.warning("Duplicate facility %r at %r in source; last one wins", *key)
            seen.add(key)

            facility = existing.get(key)
            if facility is None:
                facility = HealthFacility(**row)
                session.add(facility)
                existing[key] = facility
                counts["inserted"] += 1
            else:
                for column, value in row.items():
                    setattr(facility, column, value)
                counts["updated"] += 1

        if deactivate_missing:
            stale = [k for k, f in existing.items() if k not in seen and f.is_active]
            if stale:
                result = session.execute(
                    update(HealthFacility)
                    .where(tuple_(HealthFacility.name, HealthFacility.address).in_(stale))
                    .values(is_active=False)
                    .execution_options(synchronize_session=False)
                )
                counts["deactivated"] = result.rowcount or 0

    return counts


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(description="Load health facility seed data")
    parser.add_argument("path", type=Path, help="Facility file (.json or .csv)")
    parser.add_argument(
        "--deactivate-missing", action="store_true",
        help="Soft-delete active facilities that are not in the file",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    raw_rows = read_source(args.path)
    rows = []
    for line, raw in enumerate(raw_rows, 1):
        try:
            rows.append(clean_row(raw))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping row %d (%s): %s", line, raw.get("name"), exc)

    skipped = len(raw_rows) - len(rows)
    if not rows:
        logger.error("No valid facilities in %s", args.path)
        sys.exit(1)

    engine = create_engine(settings.database_url_sync)
    counts = upsert_facilities(rows, engine, deactivate_missing=args.deactivate_missing)

    logger.info(
        "Done: %d inserted, %d updated, %d deactivated, %d skipped",
        counts["inserted"], counts["updated"], counts["deactivated"], skipped,
    )


if __name__ == "__main__":
    main()
