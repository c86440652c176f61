from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Location(BaseModel):
    """Geographic coordinates in WGS84. Out-of-range values are rejected."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0, allow_inf_nan=False)
    lon: float = Field(..., ge=-180.0, le=180.0, allow_inf_nan=False)


class PinType(str, Enum):
    POI = "poi"
    HISTORICAL = "historical"
    LANDMARK = "landmark"
    EVENT = "event"
    CULTURAL = "cultural"
    NATURAL = "natural"


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    CROWDSOURCED = "crowdsourced"


class PinData(BaseModel):
    """Free-form payload of a pin."""
    name: str
    description: str = ""
    category: List[str] = Field(default_factory=list)

    historical_period: Optional[str] = None
    significance: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    visiting_hours: Optional[str] = None
    accessibility: Optional[str] = None
    related_pins: List[str] = Field(default_factory=list)


class PinMetadata(BaseModel):
    """Provenance of a pin."""
    source: str
    last_updated: datetime = Field(default_factory=_utcnow)
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    languages: List[str] = Field(default_factory=lambda: ["en"])
    tags: List[str] = Field(default_factory=list)


class TemporalData(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    recurring: Optional[bool] = None
    schedule: Optional[str] = None


class GeoPin(BaseModel):
    """A radius-bounded marker tracked by the spatial index.

    Pins are immutable once built; changing location or radius means building
    a new pin and re-inserting it under the same id.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    location: Location
    radius: float = Field(..., gt=0, allow_inf_nan=False, description="Activation radius in meters")
    type: PinType
    data: PinData
    metadata: PinMetadata
    temporal: Optional[TemporalData] = None


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

class TravelProfile(str, Enum):
    DRIVING = "driving"
    WALKING = "walking"
    CYCLING = "cycling"
    WHEELCHAIR = "wheelchair"


class RouteRequest(BaseModel):
    start: Location
    end: Location
    waypoints: List[Location] = Field(default_factory=list)
    profile: TravelProfile = TravelProfile.DRIVING
    interests: List[str] = Field(
        default_factory=list,
        description="User interests for POI filtering, e.g. 'history', 'architecture', 'nature'",
    )
    buffer_radius: float = Field(500.0, gt=0, allow_inf_nan=False, description="Meters around the route to search for POIs")


class RouteGeometry(BaseModel):
    """Route line as [lon, lat] pairs plus totals (meters, seconds)."""
    distance: float
    duration: float
    coordinates: List[List[float]]


class RouteResponse(BaseModel):
    route_id: str
    route: RouteGeometry
    contextual_pins: int
    pins: List[GeoPin] = Field(default_factory=list, description="Preview of the first pins found along the route")
    message: str = ""
    fallback: bool = Field(default=False, description="True if the geometry is a straight-line estimate")


# ---------------------------------------------------------------------------
# Context / enrichment
# ---------------------------------------------------------------------------

class NearbyContextRequest(BaseModel):
    location: Location
    radius: float = Field(1000.0, gt=0, allow_inf_nan=False)
    types: List[PinType] = Field(default_factory=list)
    max_results: int = Field(50, gt=0)


class EnrichRequest(BaseModel):
    location: Location
    radius: float = Field(500.0, gt=0, allow_inf_nan=False)


class NearbyContext(BaseModel):
    location: Location
    radius: float
    total_pins: int
    pins: List[GeoPin]


class EnrichedLocation(BaseModel):
    location: Location
    address: Optional[Dict[str, Any]] = None
    pois_found: int
    pois: List[GeoPin]
    message: str = ""


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

class BatchOptions(BaseModel):
    fail_fast: bool = False
    max_concurrency: Optional[int] = Field(default=None, gt=0)


class BatchItemResult(BaseModel):
    index: int
    success: bool
    data: Any = None
    error: Optional[str] = None


class BatchResponse(BaseModel):
    total_requests: int
    successful: int
    failed: int
    results: List[BatchItemResult]
    duration_ms: float


class BatchRouteRequest(BaseModel):
    requests: List[RouteRequest]
    options: BatchOptions = Field(default_factory=BatchOptions)


class BatchEnrichRequest(BaseModel):
    locations: List[EnrichRequest]
    options: BatchOptions = Field(default_factory=BatchOptions)


class BatchContextRequest(BaseModel):
    queries: List[NearbyContextRequest]
    options: BatchOptions = Field(default_factory=BatchOptions)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

class WebhookEvent(str, Enum):
    ROUTE_COMPLETED = "route.completed"
    ROUTE_FAILED = "route.failed"
    ENRICHMENT_COMPLETED = "enrichment.completed"
    ENRICHMENT_FAILED = "enrichment.failed"
    BATCH_COMPLETED = "batch.completed"
    BATCH_FAILED = "batch.failed"


class Webhook(BaseModel):
    id: str
    url: str
    events: List[WebhookEvent] = Field(..., min_length=1)
    secret: Optional[str] = Field(default=None, exclude=True, repr=False)
    active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    last_triggered: Optional[datetime] = None

    @field_validator("url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("webhook url must start with http:// or https://")
        return v


class WebhookPayload(BaseModel):
    event: WebhookEvent
    timestamp: datetime = Field(default_factory=_utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class WebhookDelivery(BaseModel):
    """One trigger of one webhook, across all of its retry attempts."""
    id: str
    webhook_id: str
    payload: WebhookPayload
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_attempt: Optional[datetime] = None
    attempt_times: List[datetime] = Field(default_factory=list)
    error: Optional[str] = None
