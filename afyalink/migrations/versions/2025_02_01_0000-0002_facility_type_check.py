"""Restrict health_facilities.type to the known facility types.

Revision ID: 0002
Revises: 0001
Create Date: 2025-02-01 00:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

FACILITY_TYPES = ("clinic", "pharmacy", "hospital", "emergency", "mental_health", "specialist")


def upgrade() -> None:
    # Fold case and whitespace variants onto the canonical values first.
    op.execute("UPDATE health_facilities SET type = lower(trim(type))")
    op.create_check_constraint(
        "ck_health_facilities_type",
        "health_facilities",
        "type IN (" + ", ".join(f"'{t}'" for t in FACILITY_TYPES) + ")",
    )


def downgrade() -> None:
    op.drop_constraint("ck_health_facilities_type", "health_facilities", type_="check")
