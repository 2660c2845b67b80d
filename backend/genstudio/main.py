from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from genstudio.api.routes import limiter, router
from genstudio.clients.gemini import GeminiClient
from genstudio.coordinator.orchestrator import GenerationOrchestrator
from genstudio.core.config import settings
from genstudio.core.credentials import CredentialGate, KeySelector
from genstudio.core.logging import log
from genstudio.core.media_store import MediaStore


def build_orchestrator(
    client: GeminiClient | None = None,
    selector: KeySelector | None = None,
) -> GenerationOrchestrator:
    """Wire the Gemini client, credential gate and media store together."""
    client = client or GeminiClient()
    gate = CredentialGate(selector, assume_usable=settings.assume_credential_usable())
    media_store = MediaStore(max_items=settings.media_store_max_items)
    return GenerationOrchestrator(
        client,
        gate,
        media_store,
        poll_interval_s=settings.video_poll_interval_s,
        max_wait_s=settings.video_max_wait_s,
    )


def create_app(orchestrator: GenerationOrchestrator | None = None) -> FastAPI:
    """Build the studio API around one generation session."""
    orchestrator = orchestrator or build_orchestrator()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for the studio API."""
        # Startup: resolve credential state once, as the key selector does on mount
        state = await orchestrator.gate.check_usable()
        log.info(
            f"STUDIO_STARTUP image_model={orchestrator.client.image_model} "
            f"video_model={orchestrator.client.video_model} credential={state.value}"
        )

        yield

        # Shutdown
        await orchestrator.shutdown()
        log.info("STUDIO_SHUTDOWN")

    app = FastAPI(lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.gate = orchestrator.gate
    app.state.media_store = orchestrator.media_store

    # Add rate limiter to app state
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS middleware - restrict to configured frontend origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        """Adds security headers to all responses."""
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        return response

    # API routes
    app.include_router(router, prefix="/api")

    @app.get("/")
    def root() -> dict:
        """Root endpoint."""
        return {
            "name": "Generation Studio API",
            "docs": "/docs",
            "health": "/api/healthz",
            "endpoints": {
                "session": "/api/session",
                "generate": "/api/generate",
                "credentials": "/api/credentials",
            },
        }

    return app


app = create_app()
