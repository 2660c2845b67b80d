"""Session state machine driving image and video generation.

Idle -> Generating -> Succeeded | Failed. Settled sessions can start a new
request directly; switching mode returns the session to Idle. The UI reads
snapshots from ``session`` or subscribes to every change.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from genstudio.agents import gen_image, gen_video
from genstudio.clients.gemini import GeminiClient
from genstudio.core import ids
from genstudio.core.credentials import CredentialGate
from genstudio.core.errors import (
    ErrorClassifier,
    GenerationInProgress,
    ValidationError,
    classify_provider_error,
    error_message,
    is_credential_failure,
)
from genstudio.core.logging import log
from genstudio.core.media_store import MediaStore
from genstudio.core.models import (
    GenerationMode,
    GenerationParameters,
    GenerationSession,
    ImageParameters,
    SessionStatus,
    VideoParameters,
)

EMPTY_PROMPT_MESSAGE = "Please enter a prompt."
KEY_REQUIRED_MESSAGE = "Please select an API key before generating a video."
IMAGE_STARTED_MESSAGE = "Generating your image..."
VIDEO_STARTED_MESSAGE = "Initiating video generation..."
CANCELLED_MESSAGE = "Generation was interrupted."

SessionListener = Callable[[GenerationSession], None]

_PARAMETER_TYPES = {
    GenerationMode.IMAGE: ImageParameters,
    GenerationMode.VIDEO: VideoParameters,
}


class GenerationOrchestrator:
    """Owns the generation session and sequences the gate and executors.

    Only this class calls ``CredentialGate.revoke()``; the executors merely
    raise typed failures.
    """

    def __init__(
        self,
        client: GeminiClient,
        gate: CredentialGate,
        media_store: MediaStore,
        *,
        classifier: ErrorClassifier = classify_provider_error,
        poll_interval_s: float | None = None,
        max_wait_s: float | None = None,
        sleep: gen_video.Sleep = asyncio.sleep,
    ):
        self.client = client
        self.gate = gate
        self.media_store = media_store
        self.classifier = classifier
        self.poll_interval_s = poll_interval_s
        self.max_wait_s = max_wait_s
        self.sleep = sleep
        self._session = GenerationSession()
        self._listeners: list[SessionListener] = []
        self._task: asyncio.Task | None = None

    @property
    def session(self) -> GenerationSession:
        return self._session.model_copy()

    @property
    def is_generating(self) -> bool:
        return self._session.status is SessionStatus.GENERATING

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a callback receiving a snapshot after every change.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes) -> None:
        self._session = self._session.model_copy(update=changes)
        snapshot = self.session
        for listener in list(self._listeners):
            # Observers only render; a failing one must not steer the generation
            try:
                listener(snapshot)
            except Exception as e:
                log.error(f"session_listener_failed error={type(e).__name__}: {e}", exc_info=True)

    def _release_result(self) -> None:
        self.media_store.release(self._session.result_reference)

    def select_mode(self, mode: GenerationMode) -> GenerationSession:
        """Switch mode, dropping any previous result or error.

        The credential gate is left untouched.

        Raises:
            GenerationInProgress: If a request is in flight
        """
        if self.is_generating:
            raise GenerationInProgress("Cannot switch mode while a generation is running.")

        self._release_result()
        self._update(
            mode=mode,
            status=SessionStatus.IDLE,
            progress_message="",
            result_reference=None,
            error_message=None,
            validation_message=None,
        )
        log.info(f"session_mode_selected mode={mode.value}")
        return self.session

    def _reject(self, mode: GenerationMode, message: str) -> None:
        self._release_result()
        self._update(
            mode=mode,
            status=SessionStatus.IDLE,
            progress_message="",
            result_reference=None,
            error_message=None,
            validation_message=message,
        )
        log.info(f"generation_rejected mode={mode.value} reason={message!r}")

    def _check_guards(self, mode: GenerationMode, params: GenerationParameters) -> None:
        if not params.prompt.strip():
            raise ValidationError(EMPTY_PROMPT_MESSAGE)
        if mode is GenerationMode.VIDEO and not self.gate.is_usable:
            raise ValidationError(KEY_REQUIRED_MESSAGE)

    def _begin(self, mode: GenerationMode, params: GenerationParameters) -> str | None:
        """Apply the guards and enter Generating.

        Returns:
            The new request id, or None if a guard kept the session Idle
        """
        if self.is_generating:
            raise GenerationInProgress("A generation is already running.")

        expected = _PARAMETER_TYPES[mode]
        if not isinstance(params, expected):
            raise TypeError(f"{mode.value} generation requires {expected.__name__}")

        try:
            self._check_guards(mode, params)
        except ValidationError as e:
            self._reject(mode, e.message)
            return None

        self._release_result()
        rid = ids.request_id()
        self._update(
            mode=mode,
            status=SessionStatus.GENERATING,
            progress_message=IMAGE_STARTED_MESSAGE if mode is GenerationMode.IMAGE else VIDEO_STARTED_MESSAGE,
            result_reference=None,
            error_message=None,
            validation_message=None,
            request_id=rid,
        )
        log.info(f"generation_start id={rid} mode={mode.value}")
        return rid

    def _is_current(self, rid: str) -> bool:
        return self._session.request_id == rid and self.is_generating

    async def _execute(self, rid: str, mode: GenerationMode, params: GenerationParameters) -> str:
        if mode is GenerationMode.IMAGE:
            return await gen_image.generate(self.client, params)

        def on_progress(message: str) -> None:
            if self._is_current(rid):
                self._update(progress_message=message)

        return await gen_video.generate(
            self.client,
            self.gate,
            params,
            on_progress,
            self.media_store,
            classifier=self.classifier,
            poll_interval_s=self.poll_interval_s,
            max_wait_s=self.max_wait_s,
            sleep=self.sleep,
        )

    async def _run(self, rid: str, mode: GenerationMode, params: GenerationParameters) -> None:
        try:
            reference = await self._execute(rid, mode, params)
        except asyncio.CancelledError:
            if self._is_current(rid):
                self._update(status=SessionStatus.FAILED, progress_message="", error_message=CANCELLED_MESSAGE)
            log.warning(f"generation_cancelled id={rid}")
            raise
        except Exception as e:
            log.error(f"generation_failed id={rid} mode={mode.value} reason={type(e).__name__}: {e}")
            if mode is GenerationMode.VIDEO and is_credential_failure(e):
                self.gate.revoke()
            if not self._is_current(rid):
                log.info(f"generation_stale id={rid} outcome=failure")
                return
            self._update(
                status=SessionStatus.FAILED,
                progress_message="",
                result_reference=None,
                error_message=error_message(e),
            )
            return

        if not self._is_current(rid):
            log.info(f"generation_stale id={rid} outcome=success")
            self.media_store.release(reference)
            return

        self._update(
            status=SessionStatus.SUCCEEDED,
            progress_message="",
            result_reference=reference,
            error_message=None,
        )
        log.info(f"generation_succeeded id={rid} mode={mode.value}")

    async def start_generation(self, mode: GenerationMode, params: GenerationParameters) -> GenerationSession:
        """Run one generation to its terminal state.

        Failures never escape; they end the session in Failed.

        Raises:
            GenerationInProgress: If a request is already in flight
        """
        rid = self._begin(mode, params)
        if rid is not None:
            await self._run(rid, mode, params)
        return self.session

    def launch(self, mode: GenerationMode, params: GenerationParameters) -> GenerationSession:
        """Enter Generating now and finish the request in a background task.

        Must be called from a running event loop.

        Raises:
            GenerationInProgress: If a request is already in flight
        """
        rid = self._begin(mode, params)
        if rid is not None:
            self._task = asyncio.create_task(self._run(rid, mode, params))
        return self.session

    async def wait(self) -> GenerationSession:
        """Wait for a launched request to settle."""
        if self._task is not None:
            await self._task
        return self.session

    async def shutdown(self) -> None:
        """Cancel a launched request that is still running."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
