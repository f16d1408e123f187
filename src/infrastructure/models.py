"""
SQLAlchemy ORM models  (PostgreSQL in production, SQLite in tests).

Tables
------
* ``users``          -- passengers, drivers and operators (role check)
* ``drivers``        -- per-driver availability flags
* ``trip_requests``  -- ride asks before a driver is matched
* ``driver_offers``  -- per-driver inbox entries broadcast from a request
* ``trips``          -- bound rides after a driver is matched
* ``ratings``        -- one per rated trip, keyed by trip id

Indexes
-------
* **B-Tree** on ``driver_offers(status, expires_at)``: the secondary index of
  pending offers keyed by deadline that the expiry reaper range-scans.
* **B-Tree** on ``status`` / owner columns for the look-ups used by the API.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)

from .database import Base
from src.domain.enums import OfferStatus, TripRequestStatus, TripStatus, UserRole


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps, also on backends that drop the offset."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def _status(enum_cls):
    # Persist the lowercase values, not the member names
    return Enum(
        enum_cls,
        values_callable=lambda e: [m.value for m in e],
        native_enum=False,
        length=32,
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(120), nullable=False)
    role = Column(_status(UserRole), default=UserRole.PASSENGER, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(String(64), ForeignKey("users.id"), primary_key=True)
    is_online = Column(Boolean, default=False, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    current_trip_id = Column(String(64), nullable=True)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_drivers_online_available", "is_online", "is_available"),
    )


class TripRequestModel(Base):
    __tablename__ = "trip_requests"

    id = Column(String(64), primary_key=True, default=new_id)
    passenger_id = Column(String(64), nullable=False)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)

    estimated_distance_km = Column(Float, nullable=False)
    estimated_duration_min = Column(Float, nullable=False)
    estimated_price_ils = Column(Integer, nullable=False)

    status = Column(
        _status(TripRequestStatus), default=TripRequestStatus.OPEN, nullable=False
    )
    matched_driver_id = Column(String(64), nullable=True)
    matched_trip_id = Column(String(64), nullable=True)
    matched_at = Column(UTCDateTime, nullable=True)
    expired_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_trip_requests_status_created", "status", "created_at"),
        Index("idx_trip_requests_passenger", "passenger_id"),
    )


class DriverOfferModel(Base):
    __tablename__ = "driver_offers"

    id = Column(String(64), primary_key=True, default=new_id)
    driver_id = Column(String(64), ForeignKey("drivers.id"), nullable=False)
    request_id = Column(String(64), ForeignKey("trip_requests.id"), nullable=False)
    # Set only for a direct assignment, where the trip exists before confirmation
    trip_id = Column(String(64), nullable=True)
    passenger_id = Column(String(64), nullable=False)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    estimated_distance_km = Column(Float, nullable=False)
    estimated_duration_min = Column(Float, nullable=False)
    estimated_price_ils = Column(Integer, nullable=False)

    status = Column(_status(OfferStatus), default=OfferStatus.PENDING, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    responded_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("driver_id", "request_id", name="uq_driver_offers_driver_request"),
        Index("idx_driver_offers_status_expires", "status", "expires_at"),
        Index("idx_driver_offers_request", "request_id"),
        Index("idx_driver_offers_trip", "trip_id"),
    )


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(String(64), primary_key=True, default=new_id)
    request_id = Column(String(64), ForeignKey("trip_requests.id"), nullable=False)
    passenger_id = Column(String(64), nullable=False)
    driver_id = Column(String(64), ForeignKey("drivers.id"), nullable=False)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)

    estimated_distance_km = Column(Float, nullable=False)
    estimated_duration_min = Column(Float, nullable=False)
    estimated_price_ils = Column(Integer, nullable=False)
    final_price_ils = Column(Integer, nullable=True)

    status = Column(_status(TripStatus), default=TripStatus.DRIVER_ASSIGNED, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    matched_at = Column(UTCDateTime, nullable=False)
    accepted_at = Column(UTCDateTime, nullable=True)
    arrived_at = Column(UTCDateTime, nullable=True)
    started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    rated_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(String(255), nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    updated_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("request_id", name="uq_trips_request"),
        Index("idx_trips_status", "status"),
        Index("idx_trips_driver", "driver_id"),
        Index("idx_trips_passenger", "passenger_id"),
    )


class RatingModel(Base):
    __tablename__ = "ratings"

    trip_id = Column(String(64), ForeignKey("trips.id"), primary_key=True)
    passenger_id = Column(String(64), nullable=False)
    driver_id = Column(String(64), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
