"""Shared fakes for generation tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from genstudio.clients.gemini import GeminiClient
from genstudio.core.credentials import CredentialGate
from genstudio.core.media_store import MediaStore
from genstudio.core.models import VideoOperation

OPERATION_NAME = "models/veo-3.1-fast-generate-preview/operations/op123"
VIDEO_URI = "https://generativelanguage.googleapis.com/v1beta/files/vid1:download?alt=media"


def pending_op() -> VideoOperation:
    return VideoOperation(name=OPERATION_NAME, done=False)


def done_op(uri: str | None = VIDEO_URI, **response_extra) -> VideoOperation:
    video_response: dict = dict(response_extra)
    if uri is not None:
        video_response["generatedSamples"] = [{"video": {"uri": uri}}]
    return VideoOperation(
        name=OPERATION_NAME,
        done=True,
        response={"generateVideoResponse": video_response},
    )


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every requested wait."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeSelector:
    """Host key selector double."""

    def __init__(self, has_key: bool = False, fail_check: bool = False):
        self.has_key = has_key
        self.fail_check = fail_check
        self.opened = 0

    async def has_selected_key(self) -> bool:
        if self.fail_check:
            raise RuntimeError("selector crashed")
        return self.has_key

    async def open_select_key(self) -> None:
        self.opened += 1


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def media_store() -> MediaStore:
    return MediaStore(max_items=4)


@pytest.fixture
def mock_client() -> MagicMock:
    """Gemini client double whose video job finishes after one poll."""
    client = MagicMock(spec=GeminiClient)
    client.has_api_key = True
    client.generate_images = AsyncMock(return_value=["aGVsbG8="])
    client.submit_video = AsyncMock(return_value=pending_op())
    client.get_video_operation = AsyncMock(return_value=done_op())
    client.download = AsyncMock(
        return_value=httpx.Response(200, content=b"mp4-bytes", headers={"content-type": "video/mp4"})
    )
    return client


@pytest.fixture
async def usable_gate() -> CredentialGate:
    gate = CredentialGate(assume_usable=True)
    await gate.check_usable()
    return gate


@pytest.fixture
def unknown_gate() -> CredentialGate:
    return CredentialGate(assume_usable=True)
