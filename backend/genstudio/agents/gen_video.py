from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from genstudio.clients.gemini import GeminiClient, ProviderError
from genstudio.core.config import settings
from genstudio.core.credentials import CredentialGate
from genstudio.core.errors import (
    CredentialInvalidated,
    CredentialMissing,
    CredentialNotSelected,
    DownloadFailed,
    ErrorClassifier,
    FailureKind,
    NoOutputProduced,
    TransientProviderError,
    classify_provider_error,
)
from genstudio.core.logging import log
from genstudio.core.media_store import MediaStore
from genstudio.core.models import VideoOperation, VideoParameters

INITIALIZING_MESSAGE = "Initializing video generation..."
FETCHING_MESSAGE = "Fetching generated video..."

# Shown one per poll iteration, in order, wrapping around
PROGRESS_MESSAGES = (
    "Warming up the digital canvas...",
    "Rendering pixels into motion...",
    "Composing the opening scene...",
    "Almost there, adding finishing touches...",
    "Finalizing your masterpiece...",
)

CREDENTIAL_INVALIDATED_MESSAGE = "API key error. Please re-select your API key and try again."

ProgressCallback = Callable[[str], None]
Sleep = Callable[[float], Awaitable[None]]


async def generate(
    client: GeminiClient,
    gate: CredentialGate,
    params: VideoParameters,
    on_progress: ProgressCallback,
    media_store: MediaStore,
    *,
    classifier: ErrorClassifier = classify_provider_error,
    poll_interval_s: float | None = None,
    max_wait_s: float | None = None,
    sleep: Sleep = asyncio.sleep,
) -> str:
    """Submits a Veo job, polls it to completion and stores the finished video.

    The gate is only read here; revoking it is the orchestrator's job.

    Args:
        client: Gemini API client
        gate: Credential gate (must be USABLE)
        params: Prompt, aspect ratio and resolution
        on_progress: Receives a human-readable status line per step
        media_store: Where the downloaded bytes are kept
        classifier: Maps a poll error to a failure kind
        poll_interval_s: Wait between status queries (default from settings)
        max_wait_s: Optional ceiling on total waiting; None polls until settled
        sleep: Awaitable used for the wait between polls

    Returns:
        ``blob:<id>`` reference to the stored video

    Raises:
        CredentialNotSelected: If the gate is not USABLE (nothing is sent)
        CredentialMissing: If the gate is USABLE but no API key is configured
        CredentialInvalidated: If the operation disappears while polling
        NoOutputProduced: If the job completes without a download link
        DownloadFailed: If fetching the video returns a non-2xx status
        TransientProviderError: On any other provider failure
    """
    if not gate.is_usable:
        raise CredentialNotSelected(
            "API key not selected. Please select an API key to generate videos."
        )
    if not client.has_api_key:
        raise CredentialMissing("API key is missing after selection. Please try again.")

    interval = poll_interval_s if poll_interval_s is not None else settings.video_poll_interval_s
    if max_wait_s is None:
        max_wait_s = settings.video_max_wait_s

    on_progress(INITIALIZING_MESSAGE)
    log.info(
        f"veo_generate_start aspect={params.aspect_ratio} resolution={params.resolution} "
        f"prompt_len={len(params.prompt)}"
    )
    try:
        operation = await client.submit_video(
            params.prompt,
            params.aspect_ratio,
            params.resolution,
            number_of_videos=1,
        )
    except ProviderError as e:
        raise TransientProviderError(e.message) from e

    operation = await _poll(client, operation, on_progress, classifier, interval, max_wait_s, sleep)

    on_progress(FETCHING_MESSAGE)
    if operation.error:
        message = operation.error.get("message") or "Video generation failed."
        log.error(f"veo_operation_failed operation={operation.name} message={message}")
        raise TransientProviderError(message)

    uri = operation.video_uri()
    if not uri:
        message = "Video generation completed, but no download link was found."
        reasons = operation.filtered_reasons()
        if reasons:
            message = f"{message} {' '.join(reasons)}"
        log.error(f"veo_no_output operation={operation.name} filtered={len(reasons)}")
        raise NoOutputProduced(message)

    try:
        response = await client.download(uri)
    except ProviderError as e:
        raise TransientProviderError(e.message) from e
    if not response.is_success:
        status_text = response.reason_phrase or str(response.status_code)
        log.error(f"veo_download_failed operation={operation.name} status={response.status_code}")
        raise DownloadFailed(f"Failed to download the video. Status: {status_text}")

    mime_type = response.headers.get("content-type", "video/mp4").split(";")[0].strip()
    reference = media_store.put(response.content, mime_type or "video/mp4")
    log.info(f"veo_generate_complete operation={operation.name} ref={reference}")
    return reference


async def _poll(
    client: GeminiClient,
    operation: VideoOperation,
    on_progress: ProgressCallback,
    classifier: ErrorClassifier,
    interval: float,
    max_wait_s: float | None,
    sleep: Sleep,
) -> VideoOperation:
    """Waits on the operation until the provider reports it done."""
    phase = 0
    waited = 0.0
    while not operation.done:
        if max_wait_s is not None and waited >= max_wait_s:
            log.error(f"veo_poll_timeout operation={operation.name} waited_s={waited}")
            raise TransientProviderError(
                f"Video generation did not finish within {max_wait_s:g} seconds."
            )

        on_progress(PROGRESS_MESSAGES[phase % len(PROGRESS_MESSAGES)])
        phase += 1
        # Last wait is clamped so the ceiling is never overshot
        wait = interval if max_wait_s is None else min(interval, max_wait_s - waited)
        await sleep(wait)
        waited += wait

        try:
            operation = await client.get_video_operation(operation)
        except ProviderError as e:
            kind = classifier(e)
            log.error(f"veo_poll_failed operation={operation.name} kind={kind.value} error={e}")
            if kind is FailureKind.CREDENTIAL_INVALIDATED:
                raise CredentialInvalidated(CREDENTIAL_INVALIDATED_MESSAGE) from e
            raise TransientProviderError(e.message) from e

        log.info(f"veo_poll operation={operation.name} iteration={phase} done={operation.done}")

    return operation
