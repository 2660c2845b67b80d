from __future__ import annotations

import time
from typing import Any

import httpx

from genstudio.core.config import settings
from genstudio.core.logging import log
from genstudio.core.models import VideoOperation


class ProviderError(Exception):
    """Raised when the Gemini API rejects a call or cannot be reached.

    The message is the provider's own text so callers can classify it.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error_text(response: httpx.Response) -> str:
    """Pull the human message out of Google's ``{"error": {...}}`` envelope."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    text = response.text[:500] if response.text else ""
    return text or f"HTTP {response.status_code} {response.reason_phrase}"


class GeminiClient:
    """Gemini API client for Imagen stills and Veo videos.

    Args:
        api_key: Gemini API key (defaults to API_KEY)
        base_url: REST base URL
        image_model: Imagen model id
        video_model: Veo model id
        timeout_s: Timeout for generation and status calls
        download_timeout_s: Timeout for fetching finished videos
        transport: Optional httpx transport (tests inject ``httpx.MockTransport``)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        image_model: str | None = None,
        video_model: str | None = None,
        timeout_s: float | None = None,
        download_timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.key = api_key if api_key is not None else settings.api_key
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.image_model = image_model or settings.image_model
        self.video_model = video_model or settings.video_model
        self.timeout_s = timeout_s or settings.http_timeout_s
        self.download_timeout_s = download_timeout_s or settings.download_timeout_s
        self.transport = transport

    @property
    def has_api_key(self) -> bool:
        return bool(self.key)

    def _client(self, timeout: float) -> httpx.AsyncClient:
        if not self.key:
            raise RuntimeError("API_KEY missing")
        return httpx.AsyncClient(
            timeout=timeout,
            headers={
                "x-goog-api-key": self.key,
                "Content-Type": "application/json",
                "User-Agent": "genstudio/1.0",
            },
            transport=self.transport,
            follow_redirects=True,
        )

    async def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            async with self._client(self.timeout_s) as client:
                r = await client.request(method, url, json=json)
        except httpx.HTTPError as e:
            log.error(f"gemini_transport_error path={path} error={type(e).__name__}: {e}")
            raise ProviderError(f"Network error calling Gemini API: {e}") from e

        if r.status_code >= 400:
            message = _error_text(r)
            log.error(f"gemini_http_error path={path} status={r.status_code} message={message}")
            raise ProviderError(message, status_code=r.status_code)

        try:
            return r.json()
        except ValueError as e:
            log.error(f"gemini_invalid_json path={path} status={r.status_code}")
            raise ProviderError(f"Gemini API returned a non-JSON response for {path}", status_code=r.status_code) from e

    async def generate_images(
        self,
        prompt: str,
        aspect_ratio: str,
        number_of_images: int = 1,
        mime_type: str = "image/png",
    ) -> list[str]:
        """Generate still images with Imagen.

        Args:
            prompt: Text prompt
            aspect_ratio: One of the Imagen ratios ("1:1", "16:9", ...)
            number_of_images: Samples to request
            mime_type: Output encoding

        Returns:
            Base64-encoded image bytes, one entry per image returned (may be empty
            when every sample was filtered)

        Raises:
            ProviderError: On HTTP or network failures
        """
        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "sampleCount": number_of_images,
                "aspectRatio": aspect_ratio,
                "outputOptions": {"mimeType": mime_type},
            },
        }

        start_time = time.monotonic()
        data = await self._request("POST", f"models/{self.image_model}:predict", json=payload)
        elapsed = time.monotonic() - start_time

        predictions = data.get("predictions") or []
        images = [p["bytesBase64Encoded"] for p in predictions if p.get("bytesBase64Encoded")]
        log.info(
            f"imagen_response model={self.image_model} elapsed_s={round(elapsed, 2)} "
            f"predictions={len(predictions)} images={len(images)}"
        )
        return images

    async def submit_video(
        self,
        prompt: str,
        aspect_ratio: str,
        resolution: str,
        number_of_videos: int = 1,
    ) -> VideoOperation:
        """Start a Veo long-running generation.

        Returns:
            Operation handle to poll with ``get_video_operation``

        Raises:
            ProviderError: On HTTP or network failures
        """
        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "aspectRatio": aspect_ratio,
                "resolution": resolution,
                "sampleCount": number_of_videos,
            },
        }
        data = await self._request(
            "POST", f"models/{self.video_model}:predictLongRunning", json=payload
        )
        if not data.get("name"):
            raise ProviderError(f"Veo returned no operation name: {data}")
        operation = VideoOperation.model_validate(data)
        log.info(f"veo_submitted model={self.video_model} operation={operation.name} done={operation.done}")
        return operation

    async def get_video_operation(self, operation: VideoOperation) -> VideoOperation:
        """Re-query a Veo operation by its handle.

        Raises:
            ProviderError: On HTTP or network failures (a 404 carries
                "Requested entity was not found.")
        """
        data = await self._request("GET", operation.name)
        return VideoOperation.model_validate({"name": operation.name, **data})

    async def download(self, uri: str) -> httpx.Response:
        """Fetch a finished video, authorising with the ``key`` query parameter.

        The response is returned whatever its status; callers decide what a
        failed download means.

        Raises:
            ProviderError: On network failures
        """
        try:
            async with self._client(self.download_timeout_s) as client:
                return await client.get(uri, params={"key": self.key})
        except httpx.HTTPError as e:
            log.error(f"veo_download_transport_error error={type(e).__name__}: {e}")
            raise ProviderError(f"Network error downloading video: {e}") from e
