"""Pydantic request / response schemas for the REST API (camelCase on the wire)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from src.domain.entities import Location
from src.domain.enums import OfferStatus, TripRequestStatus, TripStatus


class CamelModel(BaseModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_domain(self) -> Location:
        return Location(lat=self.lat, lng=self.lng)


class EstimateRequest(CamelModel):
    pickup: LocationIn
    dropoff: LocationIn


class ClientEstimate(CamelModel):
    distance_km: float = Field(..., ge=0, allow_inf_nan=False)
    duration_min: float = Field(..., ge=0, allow_inf_nan=False)
    price_ils: int = Field(..., ge=0)


class TripRequestCreate(CamelModel):
    pickup: LocationIn
    dropoff: LocationIn
    estimate: Optional[ClientEstimate] = Field(
        None,
        description="Estimate previously quoted to the client; re-validated server-side.",
    )


class RatingCreate(CamelModel):
    rating: int
    comment: Optional[str] = Field(None, max_length=1000)


class CancelRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=255)


class DriverStatusUpdate(CamelModel):
    is_online: bool
    name: Optional[str] = Field(None, max_length=120)


# ── Responses ─────────────────────────────────────────────────────────


class EstimateResponse(CamelModel):
    distance_km: float
    duration_min: float
    price_ils: int


class TripRequestCreated(CamelModel):
    request_id: str
    status: str
    trip_id: Optional[str] = None
    driver_id: Optional[str] = None


class TripRequestResponse(CamelModel):
    id: str
    passenger_id: str
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: float
    dropoff_lng: float
    estimated_distance_km: float
    estimated_duration_min: float
    estimated_price_ils: int
    status: TripRequestStatus
    matched_driver_id: Optional[str] = None
    matched_trip_id: Optional[str] = None
    matched_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: datetime


class DispatchResponse(CamelModel):
    dispatched_to: int
    driver_ids: list[str] = []


class AcceptResponse(CamelModel):
    trip_id: str


class TripResponse(CamelModel):
    id: str
    request_id: str
    passenger_id: str
    driver_id: str
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: float
    dropoff_lng: float
    estimated_distance_km: float
    estimated_duration_min: float
    estimated_price_ils: int
    final_price_ils: Optional[int] = None
    status: TripStatus
    created_at: datetime
    matched_at: datetime
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None


class TransitionResponse(CamelModel):
    success: bool
    status: TripStatus
    final_price_ils: Optional[int] = None


class RatingResponse(CamelModel):
    success: bool
    rating_id: str


class CancelResponse(CamelModel):
    trip_id: str
    cancelled: bool


class DriverStatusResponse(CamelModel):
    driver_id: str
    is_online: bool
    is_available: bool
    current_trip_id: Optional[str] = None


class DriverOfferResponse(CamelModel):
    id: str
    request_id: str
    trip_id: Optional[str] = None
    passenger_id: str
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: float
    dropoff_lng: float
    estimated_distance_km: float
    estimated_duration_min: float
    estimated_price_ils: int
    status: OfferStatus
    created_at: datetime
    expires_at: datetime


class PingResponse(BaseModel):
    pong: bool = True


class HealthResponse(BaseModel):
    status: str = "ok"
    environment: str


class ErrorResponse(BaseModel):
    detail: str
    code: str
    details: Optional[Any] = None
