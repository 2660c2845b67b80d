"""Studio API routes (generation session + credential gate + media)."""

from __future__ import annotations

import json

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

from genstudio.coordinator.orchestrator import GenerationOrchestrator
from genstudio.core.config import settings
from genstudio.core.credentials import CredentialGate
from genstudio.core.errors import EnvironmentUnsupported, GenerationInProgress
from genstudio.core.logging import log
from genstudio.core.media_store import MediaStore
from genstudio.core.models import (
    IMAGE_ASPECT_RATIOS,
    VIDEO_ASPECT_RATIOS,
    VIDEO_RESOLUTIONS,
    GenerationMode,
    GenerationParameters,
    ImageParameters,
    VideoParameters,
)

router = APIRouter()

# Rate limiter instance
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)


def _orchestrator(request: Request) -> GenerationOrchestrator:
    return request.app.state.orchestrator


def _gate(request: Request) -> CredentialGate:
    return request.app.state.gate


def _media(request: Request) -> MediaStore:
    return request.app.state.media_store


def _credential_view(gate: CredentialGate) -> dict:
    return {"state": gate.state.value, "supports_selection": gate.supports_selection}


# ============================================================================
# Session Endpoints
# ============================================================================


class ModeRequest(BaseModel):
    """Request body for switching generation mode."""

    mode: GenerationMode


class GenerateRequest(BaseModel):
    """Request body for starting a generation."""

    mode: GenerationMode
    prompt: str = ""
    aspect_ratio: str | None = None  # Mode default when omitted
    resolution: str | None = None  # Video only


def _build_parameters(body: GenerateRequest) -> GenerationParameters:
    fields = {"prompt": body.prompt}
    if body.aspect_ratio is not None:
        fields["aspect_ratio"] = body.aspect_ratio
    if body.mode is GenerationMode.IMAGE:
        return ImageParameters(**fields)
    if body.resolution is not None:
        fields["resolution"] = body.resolution
    return VideoParameters(**fields)


@router.get("/healthz")
def healthz(request: Request) -> dict:
    """Liveness probe with a summary of session and credential state."""
    return {
        "ok": True,
        "status": _orchestrator(request).session.status.value,
        "credential": _gate(request).state.value,
    }


@router.get("/options")
def get_options() -> dict:
    """Option sets offered by the mode pickers, with their defaults."""
    return {
        "modes": [m.value for m in GenerationMode],
        "image": {
            "aspect_ratios": list(IMAGE_ASPECT_RATIOS),
            "default_aspect_ratio": ImageParameters().aspect_ratio,
        },
        "video": {
            "aspect_ratios": list(VIDEO_ASPECT_RATIOS),
            "resolutions": list(VIDEO_RESOLUTIONS),
            "default_aspect_ratio": VideoParameters().aspect_ratio,
            "default_resolution": VideoParameters().resolution,
        },
    }


@router.get("/session")
def get_session(request: Request) -> dict:
    """Current session snapshot."""
    return {"ok": True, "session": _orchestrator(request).session.model_dump(mode="json")}


@router.post("/mode")
def select_mode(body: ModeRequest, request: Request) -> dict:
    """Switch between Image and Video, clearing any previous result.

    Raises:
        HTTPException: 409 while a generation is running
    """
    try:
        session = _orchestrator(request).select_mode(body.mode)
    except GenerationInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": True, "session": session.model_dump(mode="json")}


@router.post("/generate")
@limiter.limit("20/minute")
async def generate(request: Request, response: Response) -> dict:
    """Start a generation in the background.

    Returns 202 with the Generating snapshot once the request is accepted. A
    prompt or credential guard keeps the session Idle and returns 200 with
    ``validation_message`` set.

    Raises:
        HTTPException: 400 on an invalid body, 409 while a generation is running
    """
    # Parse body manually to work around slowapi/FastAPI integration issue
    try:
        body_dict = json.loads(await request.body())
        body = GenerateRequest(**body_dict)
        params = _build_parameters(body)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Invalid request body: {str(e)}")

    try:
        session = _orchestrator(request).launch(body.mode, params)
    except GenerationInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))

    started = session.validation_message is None
    if started:
        response.status_code = 202
    return {
        "ok": started,
        "session": session.model_dump(mode="json"),
        "credential": _credential_view(_gate(request)),
    }


# ============================================================================
# Credential Endpoints
# ============================================================================


@router.get("/credentials")
def get_credentials(request: Request) -> dict:
    """Cached credential state (no host query)."""
    return {"ok": True, **_credential_view(_gate(request))}


@router.post("/credentials/check")
async def check_credentials(request: Request) -> dict:
    """Re-query the host for a selected key."""
    gate = _gate(request)
    await gate.check_usable()
    return {"ok": True, **_credential_view(gate)}


@router.post("/credentials/select")
async def select_credentials(request: Request) -> dict:
    """Open the host key picker; marks the key usable once it closes.

    Raises:
        HTTPException: 501 when the environment has no key picker, 502 when the
            picker itself fails
    """
    gate = _gate(request)
    try:
        await gate.request_selection()
    except EnvironmentUnsupported as e:
        raise HTTPException(status_code=501, detail=str(e))
    except Exception as e:
        log.error(f"credential_select_failed error={type(e).__name__}: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"Key selection failed: {e}")
    return {"ok": True, **_credential_view(gate)}


# ============================================================================
# Media Endpoints
# ============================================================================


@router.get("/media/{blob_id}")
def get_media(blob_id: str, request: Request) -> Response:
    """Serve a finished video held in the in-memory media store.

    Raises:
        HTTPException: 404 if the blob was released or evicted
    """
    blob = _media(request).get(blob_id)
    if blob is None:
        raise HTTPException(status_code=404, detail="Media not found")
    return Response(content=blob.data, media_type=blob.mime_type)
