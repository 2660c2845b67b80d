"""Pydantic models for generation requests and the observable session."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, get_args

from pydantic import BaseModel, Field

ImageAspectRatio = Literal["1:1", "3:4", "4:3", "9:16", "16:9"]
VideoAspectRatio = Literal["16:9", "9:16"]
VideoResolution = Literal["720p", "1080p"]

IMAGE_ASPECT_RATIOS: tuple[str, ...] = get_args(ImageAspectRatio)
VIDEO_ASPECT_RATIOS: tuple[str, ...] = get_args(VideoAspectRatio)
VIDEO_RESOLUTIONS: tuple[str, ...] = get_args(VideoResolution)


class GenerationMode(str, Enum):
    IMAGE = "Image"
    VIDEO = "Video"


class SessionStatus(str, Enum):
    IDLE = "Idle"
    GENERATING = "Generating"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class ImageParameters(BaseModel):
    """Image request. Prompt emptiness is checked by the orchestrator, not here."""

    prompt: str = Field(default="", description="Text prompt")
    aspect_ratio: ImageAspectRatio = Field(default="1:1")


class VideoParameters(BaseModel):
    """Video request."""

    prompt: str = Field(default="", description="Text prompt")
    aspect_ratio: VideoAspectRatio = Field(default="16:9")
    resolution: VideoResolution = Field(default="720p")


GenerationParameters = ImageParameters | VideoParameters


class GenerationSession(BaseModel):
    """Snapshot of the session the UI renders.

    ``result_reference`` and ``error_message`` are never both set, and both are
    unset while Idle or Generating. ``validation_message`` only appears while
    Idle.
    """

    mode: GenerationMode = GenerationMode.IMAGE
    status: SessionStatus = SessionStatus.IDLE
    progress_message: str = ""
    result_reference: str | None = None
    error_message: str | None = None
    validation_message: str | None = None
    request_id: str | None = None


class VideoOperation(BaseModel):
    """Provider-issued handle for a long-running video job."""

    name: str
    done: bool = False
    response: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    def video_uri(self) -> str | None:
        """Download URI of the first generated video, if any."""
        samples = ((self.response or {}).get("generateVideoResponse") or {}).get(
            "generatedSamples"
        ) or []
        if not samples:
            return None
        return (samples[0].get("video") or {}).get("uri") or None

    def filtered_reasons(self) -> list[str]:
        """Safety-filter reasons reported instead of media."""
        video_response = (self.response or {}).get("generateVideoResponse") or {}
        return list(video_response.get("raiMediaFilteredReasons") or [])
