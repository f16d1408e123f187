"""Initial schema: users, drivers, trip requests, driver offers, trips, ratings.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _status(*values: str) -> sa.Enum:
    # Stored as VARCHAR + CHECK, matching the ORM's non-native enums
    return sa.Enum(*values, native_enum=False, length=32, create_constraint=True)


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _route_columns() -> list[sa.Column]:
    return [
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("estimated_distance_km", sa.Float, nullable=False),
        sa.Column("estimated_duration_min", sa.Float, nullable=False),
        sa.Column("estimated_price_ils", sa.Integer, nullable=False),
    ]


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column(
            "role",
            _status("passenger", "driver", "manager", "admin"),
            nullable=False,
            server_default="passenger",
        ),
        _ts("created_at"),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.String(64), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("current_trip_id", sa.String(64), nullable=True),
        _ts("updated_at"),
    )
    op.create_index(
        "idx_drivers_online_available", "drivers", ["is_online", "is_available"]
    )

    # ── trip_requests ─────────────────────────────────────────────────
    op.create_table(
        "trip_requests",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("passenger_id", sa.String(64), nullable=False),
        *_route_columns(),
        sa.Column(
            "status",
            _status("open", "matched", "expired"),
            nullable=False,
            server_default="open",
        ),
        sa.Column("matched_driver_id", sa.String(64), nullable=True),
        sa.Column("matched_trip_id", sa.String(64), nullable=True),
        _ts("matched_at"),
        _ts("expired_at"),
        _ts("created_at", nullable=False),
    )
    op.create_index(
        "idx_trip_requests_status_created", "trip_requests", ["status", "created_at"]
    )
    op.create_index("idx_trip_requests_passenger", "trip_requests", ["passenger_id"])

    # ── driver_offers ─────────────────────────────────────────────────
    op.create_table(
        "driver_offers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("driver_id", sa.String(64), sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column(
            "request_id", sa.String(64), sa.ForeignKey("trip_requests.id"), nullable=False
        ),
        sa.Column("trip_id", sa.String(64), nullable=True),
        sa.Column("passenger_id", sa.String(64), nullable=False),
        *_route_columns(),
        sa.Column(
            "status",
            _status("pending", "accepted", "expired", "cancelled"),
            nullable=False,
            server_default="pending",
        ),
        _ts("created_at", nullable=False),
        _ts("expires_at", nullable=False),
        _ts("responded_at"),
        sa.UniqueConstraint(
            "driver_id", "request_id", name="uq_driver_offers_driver_request"
        ),
    )
    # Range-scanned by the expiry reaper
    op.create_index(
        "idx_driver_offers_status_expires", "driver_offers", ["status", "expires_at"]
    )
    op.create_index("idx_driver_offers_request", "driver_offers", ["request_id"])
    op.create_index("idx_driver_offers_trip", "driver_offers", ["trip_id"])

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "request_id", sa.String(64), sa.ForeignKey("trip_requests.id"), nullable=False
        ),
        sa.Column("passenger_id", sa.String(64), nullable=False),
        sa.Column("driver_id", sa.String(64), sa.ForeignKey("drivers.id"), nullable=False),
        *_route_columns(),
        sa.Column("final_price_ils", sa.Integer, nullable=True),
        sa.Column(
            "status",
            _status(
                "driver_assigned",
                "accepted",
                "driver_arrived",
                "in_progress",
                "completed",
                "rated",
                "cancelled_by_passenger",
                "cancelled_by_driver",
                "cancelled_by_system",
                "no_driver_available",
            ),
            nullable=False,
            server_default="driver_assigned",
        ),
        _ts("created_at", nullable=False),
        _ts("matched_at", nullable=False),
        _ts("accepted_at"),
        _ts("arrived_at"),
        _ts("started_at"),
        _ts("completed_at"),
        _ts("rated_at"),
        _ts("cancelled_at"),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("cancelled_by", sa.String(64), nullable=True),
        _ts("updated_at", nullable=False),
        sa.UniqueConstraint("request_id", name="uq_trips_request"),
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])
    op.create_index("idx_trips_passenger", "trips", ["passenger_id"])

    # ── ratings ───────────────────────────────────────────────────────
    op.create_table(
        "ratings",
        sa.Column("trip_id", sa.String(64), sa.ForeignKey("trips.id"), primary_key=True),
        sa.Column("passenger_id", sa.String(64), nullable=False),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=True),
        _ts("created_at", nullable=False),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_ratings_range"),
    )


def downgrade() -> None:
    op.drop_table("ratings")
    op.drop_table("trips")
    op.drop_table("driver_offers")
    op.drop_table("trip_requests")
    op.drop_table("drivers")
    op.drop_table("users")
