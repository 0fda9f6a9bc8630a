"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from kumbhid.biometrics.provider import InferenceProvider
    from kumbhid.config import Settings

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kumbhid.api.routes import router
from kumbhid.biometrics.capture import CapturePipeline
from kumbhid.biometrics.compute import ComputePool
from kumbhid.biometrics.matcher import CandidatePool, Matcher
from kumbhid.biometrics.provider import HttpInferenceProvider
from kumbhid.biometrics.validator import LivenessMonitor
from kumbhid.config import get_settings
from kumbhid.records.cache import SnapshotCache
from kumbhid.records.repository import InMemoryPersonRepository

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, settings: Settings, provider: InferenceProvider | None = None) -> None:
    """Construct the shared collaborators and attach them to ``app.state``."""
    app.state.settings = settings
    app.state.provider = provider or HttpInferenceProvider(
        settings.inference_endpoints,
        timeout=settings.inference_timeout,
    )
    app.state.compute_pool = ComputePool(settings.max_concurrent, acquire_timeout=settings.compute_acquire_timeout)
    app.state.repository = InMemoryPersonRepository()
    app.state.candidate_cache = SnapshotCache[CandidatePool](ttl=settings.candidate_cache_ttl)
    app.state.matcher = Matcher(
        app.state.repository,
        app.state.candidate_cache,
        dimension=settings.descriptor_length,
        max_distance=settings.match_max_distance,
        registration_top_k=settings.registration_top_k,
        lost_found_top_k=settings.lost_found_top_k,
    )
    app.state.capture_pipeline = CapturePipeline(
        app.state.provider,
        timeout=settings.inference_timeout,
        descriptor_length=settings.descriptor_length,
    )


def create_liveness_monitor(app: FastAPI, frame_source: Callable[[], Awaitable[bytes]]) -> LivenessMonitor:
    """Build a polling validator for one camera, using the app's provider and settings."""
    settings: Settings = app.state.settings
    return LivenessMonitor(
        app.state.provider,
        frame_source,
        poll_interval=settings.validator_poll_interval,
        mouth_open_threshold=settings.mouth_open_threshold,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting KumbhID (max_concurrent=%s, descriptor_length=%s, max_distance=%s, endpoints=%s)",
        settings.max_concurrent,
        settings.descriptor_length,
        settings.match_max_distance,
        settings.inference_endpoints,
    )

    init_app_state(app, settings)

    logger.info("KumbhID ready")
    yield

    logger.info("Shutting down KumbhID")
    app.state.compute_pool.shutdown()
    app.state.candidate_cache.invalidate()
    provider = app.state.provider
    if isinstance(provider, HttpInferenceProvider):
        await provider.aclose()
    logger.info("KumbhID shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="KumbhID",
        description="Biometric identity resolution for devotee registration and lost-and-found",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("kumbhid.main:app", host=settings.host, port=settings.port)
