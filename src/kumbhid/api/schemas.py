"""Pydantic request/response schemas for the KumbhID API."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field, field_validator

from kumbhid.biometrics.types import EstimateSource, Gender
from kumbhid.biometrics.validator import ReasonCode
from kumbhid.records.repository import PersonStatus, RecordKind


class VerdictResponse(BaseModel):
    """Liveness verdict for a single frame."""

    is_valid: bool
    reason: ReasonCode
    mouth_opening: float | None = Field(default=None, description="Lip gap as a fraction of face height")


class DemographicsOut(BaseModel):
    age: int | None = None
    gender: Gender | None = None
    height_cm: int | None = None
    weight_kg: int | None = None
    source: EstimateSource | None = Field(default=None, description="'pose' or 'fallback' for height/weight")


class CaptureResponse(BaseModel):
    """Result of one capture. ``descriptor`` is null when no face embedding was available."""

    image: str = Field(description="Base64-encoded frame")
    descriptor: list[float] | None
    demographics: DemographicsOut | None


class ContactInfo(BaseModel):
    name: str | None = None
    phone: str | None = None
    relationship: str | None = None


class DevoteeCreate(BaseModel):
    """Devotee registration payload (identity fields only)."""

    full_name: str = Field(min_length=1)
    age: int | None = Field(default=None, ge=1, le=150)
    gender: Gender | None = None
    phone: str | None = None
    emergency_contact_name: str | None = None
    emergency_contact_phone: str | None = None
    photo_url: str | None = None
    descriptor: list[float] | None = Field(
        default=None,
        validation_alias=AliasChoices("descriptor", "face_descriptor"),
    )

    @field_validator("gender", mode="before")
    @classmethod
    def normalize_gender(cls, value: object) -> Gender | None:
        return Gender.parse(value)


class LostPersonReport(BaseModel):
    """Missing or found person report. A face descriptor is required."""

    descriptor: list[float] = Field(validation_alias=AliasChoices("descriptor", "face_descriptor"))
    status: PersonStatus = PersonStatus.MISSING
    name: str = "Unknown"
    age: int | None = Field(default=None, ge=0, le=150)
    gender: Gender | None = None
    photo_url: str | None = None
    contact_info: ContactInfo | None = None
    last_seen_location: str | None = None
    current_location: str | None = None

    @field_validator("gender", mode="before")
    @classmethod
    def normalize_gender(cls, value: object) -> Gender | None:
        return Gender.parse(value)


class FaceSearchRequest(BaseModel):
    descriptor: list[float] = Field(validation_alias=AliasChoices("descriptor", "face_descriptor"))
    max_distance: float | None = Field(
        default=None,
        ge=0.0,
        validation_alias=AliasChoices("max_distance", "maxDistance"),
    )


class LostFoundMatchRequest(FaceSearchRequest):
    status_filter: PersonStatus | None = Field(
        default=None,
        validation_alias=AliasChoices("status_filter", "statusFilter"),
    )


class StatusUpdate(BaseModel):
    status: PersonStatus


class PersonOut(BaseModel):
    """A person record without its descriptor."""

    id: str
    kind: RecordKind
    name: str
    status: PersonStatus
    age: int | None
    gender: Gender | None
    contact: dict[str, str]
    registration_number: str | None
    photo_url: str | None
    last_seen_location: str | None
    current_location: str | None
    has_descriptor: bool
    created_at: datetime
    updated_at: datetime


class MatchOut(BaseModel):
    record: PersonOut
    distance: float
    similarity: float = Field(ge=0.0, le=1.0)


class LostFoundMatchResponse(BaseModel):
    matches: list[MatchOut]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    inference_endpoints: list[str]
    cached_pools: int
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
