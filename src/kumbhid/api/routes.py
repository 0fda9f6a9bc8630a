"""API route definitions."""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, Request, UploadFile, status

from kumbhid.api.middleware import verify_api_key
from kumbhid.api.schemas import (
    CaptureResponse,
    DemographicsOut,
    DevoteeCreate,
    ErrorResponse,
    FaceSearchRequest,
    HealthResponse,
    LostFoundMatchRequest,
    LostFoundMatchResponse,
    LostPersonReport,
    MatchOut,
    PersonOut,
    StatusUpdate,
    VerdictResponse,
)
from kumbhid.biometrics.matcher import validate_descriptor
from kumbhid.biometrics.validator import ReasonCode, Verdict, validate_frame
from kumbhid.exceptions import (
    CaptureError,
    InferenceUnavailableError,
    InvalidQueryError,
    KumbhIdError,
    RecordNotFoundError,
)
from kumbhid.records.repository import PersonStatus, RecordKind

if TYPE_CHECKING:
    from collections.abc import Callable

    from kumbhid.biometrics.capture import CapturePipeline
    from kumbhid.biometrics.compute import ComputePool
    from kumbhid.biometrics.matcher import Matcher, MatchResult
    from kumbhid.biometrics.provider import InferenceProvider
    from kumbhid.config import Settings
    from kumbhid.records.cache import SnapshotCache
    from kumbhid.records.repository import InMemoryPersonRepository, PersonRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_CLIENT_ERRORS = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_compute_pool(request: Request) -> ComputePool:
    pool: ComputePool = request.app.state.compute_pool
    return pool


def _get_repository(request: Request) -> InMemoryPersonRepository:
    repository: InMemoryPersonRepository = request.app.state.repository
    return repository


def _get_matcher(request: Request) -> Matcher:
    matcher: Matcher = request.app.state.matcher
    return matcher


def _raise_http(exc: KumbhIdError) -> NoReturn:
    if isinstance(exc, RecordNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (InvalidQueryError, CaptureError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


async def _read_frame(request: Request, file: UploadFile) -> bytes:
    settings = _get_settings(request)
    image = await file.read(settings.max_file_size + 1)
    if len(image) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Frame exceeds {settings.max_file_size} bytes",
        )
    if not image:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded frame is empty")
    return image


async def _run_match(request: Request, func: Callable[..., list[MatchResult]], *args: object) -> list[MatchResult]:
    pool = _get_compute_pool(request)
    try:
        return await pool.run(func, *args)
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Matcher is busy, retry shortly",
        ) from exc
    except KumbhIdError as exc:
        _raise_http(exc)


def _person_out(record: PersonRecord) -> PersonOut:
    return PersonOut(
        id=record.id,
        kind=record.kind,
        name=record.name,
        status=record.status,
        age=record.age,
        gender=record.gender,
        contact=dict(record.contact),
        registration_number=record.registration_number,
        photo_url=record.photo_url,
        last_seen_location=record.last_seen_location,
        current_location=record.current_location,
        has_descriptor=record.descriptor is not None,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _match_out(match: MatchResult) -> MatchOut:
    return MatchOut(record=_person_out(match.record), distance=match.distance, similarity=match.similarity)


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


@router.post(
    "/validate",
    response_model=VerdictResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
    summary="Check whether a frame is ready to capture",
)
async def validate(request: Request, file: UploadFile) -> VerdictResponse:
    """Run the liveness and quality checks against one uploaded frame."""
    image = await _read_frame(request, file)
    provider: InferenceProvider = request.app.state.provider
    settings = _get_settings(request)
    try:
        detections = await provider.detect_faces(image)
        verdict = validate_frame(detections, settings.mouth_open_threshold)
    except InferenceUnavailableError as exc:
        logger.warning("Validation degraded: %s", exc)
        verdict = Verdict(is_valid=False, reason=ReasonCode.NO_FACE)
    return VerdictResponse(is_valid=verdict.is_valid, reason=verdict.reason, mouth_opening=verdict.mouth_opening)


@router.post(
    "/capture",
    response_model=CaptureResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
    summary="Extract descriptor and demographics from a confirmed frame",
)
async def capture(request: Request, file: UploadFile) -> CaptureResponse:
    """Best-effort capture: missing fields are null, never an error."""
    image = await _read_frame(request, file)
    pipeline: CapturePipeline = request.app.state.capture_pipeline
    try:
        result = await pipeline.capture(image)
    except CaptureError as exc:
        _raise_http(exc)

    demographics = None
    if result.demographics is not None:
        demographics = DemographicsOut(
            age=result.demographics.age,
            gender=result.demographics.gender,
            height_cm=result.demographics.height_cm,
            weight_kg=result.demographics.weight_kg,
            source=result.demographics.source,
        )
    return CaptureResponse(
        image=base64.b64encode(result.image).decode("ascii"),
        descriptor=list(result.descriptor) if result.descriptor is not None else None,
        demographics=demographics,
    )


# ---------------------------------------------------------------------------
# Devotees
# ---------------------------------------------------------------------------


@router.post(
    "/devotees",
    response_model=PersonOut,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
    summary="Register a devotee",
)
async def register_devotee(request: Request, body: DevoteeCreate) -> PersonOut:
    """Store a devotee's identity fields and optional face descriptor."""
    settings = _get_settings(request)
    descriptor = None
    if body.descriptor is not None:
        try:
            validate_descriptor(body.descriptor, settings.descriptor_length)
        except InvalidQueryError as exc:
            _raise_http(exc)
        descriptor = tuple(body.descriptor)

    contact = {
        key: value
        for key, value in {
            "phone": body.phone,
            "emergency_contact_name": body.emergency_contact_name,
            "emergency_contact_phone": body.emergency_contact_phone,
        }.items()
        if value
    }
    record = _get_repository(request).add_devotee(
        name=body.full_name,
        descriptor=descriptor,
        age=body.age,
        gender=body.gender,
        contact=contact,
        photo_url=body.photo_url,
    )
    logger.info("Registered devotee %s (descriptor=%s)", record.registration_number, descriptor is not None)
    return _person_out(record)


@router.post(
    "/devotees/search-by-face",
    response_model=list[MatchOut],
    responses=_CLIENT_ERRORS,
    summary="Find registered devotees by face descriptor",
)
async def search_devotees_by_face(request: Request, body: FaceSearchRequest) -> list[MatchOut]:
    """Return up to the registration top-K closest devotees within the threshold."""
    matcher = _get_matcher(request)
    matches = await _run_match(request, matcher.search_devotees, body.descriptor, body.max_distance)
    return [_match_out(match) for match in matches]


# ---------------------------------------------------------------------------
# Lost and found
# ---------------------------------------------------------------------------


@router.post(
    "/lost-found/report",
    response_model=PersonOut,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
    summary="Report a missing or found person",
)
async def report_person(request: Request, body: LostPersonReport) -> PersonOut:
    settings = _get_settings(request)
    try:
        validate_descriptor(body.descriptor, settings.descriptor_length)
        record = _get_repository(request).add_lost_person(
            descriptor=tuple(body.descriptor),
            status=body.status,
            name=body.name,
            age=body.age,
            gender=body.gender,
            contact=body.contact_info.model_dump(exclude_none=True) if body.contact_info else None,
            photo_url=body.photo_url,
            last_seen_location=body.last_seen_location,
            current_location=body.current_location,
        )
    except InvalidQueryError as exc:
        _raise_http(exc)
    logger.info("Lost-and-found report %s filed as %s", record.id, record.status)
    return _person_out(record)


@router.post(
    "/lost-found/match",
    response_model=LostFoundMatchResponse,
    responses=_CLIENT_ERRORS,
    summary="Match a descriptor against lost-and-found reports",
)
async def match_lost_person(request: Request, body: LostFoundMatchRequest) -> LostFoundMatchResponse:
    """Without ``status_filter``, every report that is not yet reunited is searched."""
    matcher = _get_matcher(request)
    matches = await _run_match(
        request,
        matcher.search_lost_persons,
        body.descriptor,
        body.max_distance,
        body.status_filter,
    )
    return LostFoundMatchResponse(matches=[_match_out(match) for match in matches])


@router.get(
    "/lost-found/list",
    response_model=list[PersonOut],
    summary="List recent lost-and-found reports",
)
async def list_reports(
    request: Request,
    status_filter: Annotated[PersonStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[PersonOut]:
    """Newest first; descriptors are never included."""
    records = _get_repository(request).list_recent(RecordKind.LOST_PERSON, status=status_filter, limit=limit)
    return [_person_out(record) for record in records]


@router.patch(
    "/lost-found/{record_id}/status",
    response_model=PersonOut,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    },
    summary="Update a report's lifecycle status",
)
async def update_report_status(request: Request, record_id: str, body: StatusUpdate) -> PersonOut:
    try:
        record = _get_repository(request).update_status(record_id, body.status)
    except KumbhIdError as exc:
        _raise_http(exc)
    logger.info("Lost-and-found report %s moved to %s", record.id, record.status)
    return _person_out(record)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_compute_pool(request)
    cache: SnapshotCache[object] = request.app.state.candidate_cache
    return HealthResponse(
        status="ok",
        inference_endpoints=settings.inference_endpoints,
        cached_pools=len(cache.cached_keys()),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
