"""Tests for the session state machine (guards, terminal states, revocation)."""

from __future__ import annotations

import asyncio

import pytest

from conftest import done_op, pending_op
from genstudio.agents import gen_video
from genstudio.clients.gemini import ProviderError
from genstudio.coordinator.orchestrator import (
    EMPTY_PROMPT_MESSAGE,
    KEY_REQUIRED_MESSAGE,
    GenerationOrchestrator,
)
from genstudio.core.credentials import CredentialState
from genstudio.core.errors import GenerationInProgress
from genstudio.core.models import (
    GenerationMode,
    GenerationSession,
    ImageParameters,
    SessionStatus,
    VideoParameters,
)

IMAGE = GenerationMode.IMAGE
VIDEO = GenerationMode.VIDEO


@pytest.fixture
def make_orchestrator(mock_client, media_store, sleep):
    def factory(gate) -> tuple[GenerationOrchestrator, list[GenerationSession]]:
        orchestrator = GenerationOrchestrator(
            mock_client, gate, media_store, poll_interval_s=10.0, sleep=sleep
        )
        snapshots: list[GenerationSession] = []
        orchestrator.subscribe(snapshots.append)
        return orchestrator, snapshots

    return factory


def assert_exclusive(snapshots: list[GenerationSession]) -> None:
    for s in snapshots:
        assert not (s.result_reference and s.error_message)
        if s.status in (SessionStatus.IDLE, SessionStatus.GENERATING):
            assert s.result_reference is None
            assert s.error_message is None
        if s.validation_message is not None:
            assert s.status is SessionStatus.IDLE


class TestGuards:
    """Tests for the checks made before anything is dispatched."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prompt", ["", "   ", "\n\t "])
    @pytest.mark.parametrize("mode", [IMAGE, VIDEO])
    async def test_blank_prompt_stays_idle(self, make_orchestrator, usable_gate, mock_client, mode, prompt):
        orchestrator, snapshots = make_orchestrator(usable_gate)
        params = ImageParameters(prompt=prompt) if mode is IMAGE else VideoParameters(prompt=prompt)

        session = await orchestrator.start_generation(mode, params)

        assert session.status is SessionStatus.IDLE
        assert session.validation_message == EMPTY_PROMPT_MESSAGE
        mock_client.generate_images.assert_not_awaited()
        mock_client.submit_video.assert_not_awaited()
        assert_exclusive(snapshots)

    @pytest.mark.asyncio
    async def test_video_without_usable_key_is_rejected(self, make_orchestrator, unknown_gate, mock_client):
        orchestrator, _ = make_orchestrator(unknown_gate)

        session = await orchestrator.start_generation(VIDEO, VideoParameters(prompt="a cat"))

        assert session.status is SessionStatus.IDLE
        assert session.validation_message == KEY_REQUIRED_MESSAGE
        mock_client.submit_video.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_image_ignores_gate(self, make_orchestrator, unknown_gate):
        orchestrator, _ = make_orchestrator(unknown_gate)

        session = await orchestrator.start_generation(IMAGE, ImageParameters(prompt="a robot"))

        assert session.status is SessionStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_parameters_must_match_mode(self, make_orchestrator, usable_gate):
        orchestrator, _ = make_orchestrator(usable_gate)

        with pytest.raises(TypeError):
            await orchestrator.start_generation(VIDEO, ImageParameters(prompt="a robot"))

    @pytest.mark.asyncio
    async def test_second_start_while_generating_is_refused(self, make_orchestrator, usable_gate, mock_client):
        release = asyncio.Event()

        async def slow_images(*args, **kwargs):
            await release.wait()
            return ["aGVsbG8="]

        mock_client.generate_images.side_effect = slow_images
        orchestrator, _ = make_orchestrator(usable_gate)

        session = orchestrator.launch(IMAGE, ImageParameters(prompt="a robot"))
        assert session.status is SessionStatus.GENERATING

        with pytest.raises(GenerationInProgress):
            orchestrator.launch(IMAGE, ImageParameters(prompt="another"))
        with pytest.raises(GenerationInProgress):
            orchestrator.select_mode(VIDEO)

        release.set()
        session = await orchestrator.wait()
        assert session.status is SessionStatus.SUCCEEDED
        assert mock_client.generate_images.await_count == 1


class TestImageFlow:
    """Tests for image generation through the session."""

    @pytest.mark.asyncio
    async def test_success_sets_data_uri(self, make_orchestrator, usable_gate):
        orchestrator, snapshots = make_orchestrator(usable_gate)

        session = await orchestrator.start_generation(IMAGE, ImageParameters(prompt="a robot"))

        assert session.status is SessionStatus.SUCCEEDED
        assert session.result_reference.startswith("data:image/png;base64,")
        assert session.error_message is None
        assert session.progress_message == ""
        assert snapshots[0].status is SessionStatus.GENERATING
        assert snapshots[0].progress_message == "Generating your image..."
        assert_exclusive(snapshots)

    @pytest.mark.asyncio
    async def test_missing_key_fails_but_does_not_revoke(self, make_orchestrator, usable_gate, mock_client):
        mock_client.has_api_key = False
        orchestrator, _ = make_orchestrator(usable_gate)

        session = await orchestrator.start_generation(IMAGE, ImageParameters(prompt="a robot"))

        assert session.status is SessionStatus.FAILED
        assert "API_KEY" in session.error_message
        assert usable_gate.state is CredentialState.USABLE

    @pytest.mark.asyncio
    async def test_unexpected_exception_ends_failed(self, make_orchestrator, usable_gate, mock_client):
        mock_client.generate_images.side_effect = ValueError("")
        orchestrator, _ = make_orchestrator(usable_gate)

        session = await orchestrator.start_generation(IMAGE, ImageParameters(prompt="a robot"))

        assert session.status is SessionStatus.FAILED
        assert session.error_message == "An unknown error occurred."


class TestVideoFlow:
    """Tests for video generation through the session."""

    @pytest.mark.asyncio
    async def test_progress_sequence_and_success(self, make_orchestrator, usable_gate, mock_client):
        n = 6
        mock_client.get_video_operation.side_effect = [pending_op()] * (n - 1) + [done_op()]
        orchestrator, snapshots = make_orchestrator(usable_gate)

        session = await orchestrator.start_generation(VIDEO, VideoParameters(prompt="a neon cat"))

        progress = [s.progress_message for s in snapshots if s.progress_message in gen_video.PROGRESS_MESSAGES]
        assert progress == [gen_video.PROGRESS_MESSAGES[i % 5] for i in range(n)]
        assert session.status is SessionStatus.SUCCEEDED
        assert session.result_reference.startswith("blob:")
        assert session.progress_message == ""
        assert_exclusive(snapshots)

    @pytest.mark.asyncio
    async def test_not_found_revokes_gate(self, make_orchestrator, usable_gate, mock_client):
        mock_client.get_video_operation.side_effect = ProviderError("Requested entity was not found.", status_code=404)
        orchestrator, snapshots = make_orchestrator(usable_gate)

        session = await orchestrator.start_generation(VIDEO, VideoParameters(prompt="a neon cat"))

        assert session.status is SessionStatus.FAILED
        assert "API key" in session.error_message
        assert usable_gate.state is CredentialState.UNUSABLE
        assert_exclusive(snapshots)

        # Next attempt is gated again
        session = await orchestrator.start_generation(VIDEO, VideoParameters(prompt="a neon cat"))
        assert session.status is SessionStatus.IDLE
        assert session.validation_message == KEY_REQUIRED_MESSAGE
        assert mock_client.submit_video.await_count == 1

    @pytest.mark.asyncio
    async def test_no_output_leaves_gate_untouched(self, make_orchestrator, usable_gate, mock_client):
        mock_client.get_video_operation.return_value = done_op(uri=None)
        orchestrator, _ = make_orchestrator(usable_gate)

        session = await orchestrator.start_generation(VIDEO, VideoParameters(prompt="a neon cat"))

        assert session.status is SessionStatus.FAILED
        assert "no download link" in session.error_message
        assert usable_gate.state is CredentialState.USABLE

    @pytest.mark.asyncio
    async def test_transient_error_leaves_gate_untouched(self, make_orchestrator, usable_gate, mock_client):
        mock_client.submit_video.side_effect = ProviderError("Service unavailable", status_code=503)
        orchestrator, _ = make_orchestrator(usable_gate)

        session = await orchestrator.start_generation(VIDEO, VideoParameters(prompt="a neon cat"))

        assert session.error_message == "Service unavailable"
        assert usable_gate.state is CredentialState.USABLE

    @pytest.mark.asyncio
    async def test_missing_key_on_video_revokes_gate(self, make_orchestrator, usable_gate, mock_client):
        mock_client.has_api_key = False
        orchestrator, _ = make_orchestrator(usable_gate)

        session = await orchestrator.start_generation(VIDEO, VideoParameters(prompt="a neon cat"))

        assert session.status is SessionStatus.FAILED
        assert "API key is missing" in session.error_message
        assert usable_gate.state is CredentialState.UNUSABLE
        mock_client.submit_video.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_untyped_api_key_error_revokes_gate(self, make_orchestrator, usable_gate, mock_client):
        mock_client.get_video_operation.side_effect = RuntimeError("API key error: key was rotated")
        orchestrator, _ = make_orchestrator(usable_gate)

        session = await orchestrator.start_generation(VIDEO, VideoParameters(prompt="a neon cat"))

        assert session.status is SessionStatus.FAILED
        assert session.error_message == "API key error: key was rotated"
        assert usable_gate.state is CredentialState.UNUSABLE

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_abort_poll(self, make_orchestrator, usable_gate, mock_client):
        def render(snapshot: GenerationSession) -> None:
            if snapshot.progress_message == gen_video.PROGRESS_MESSAGES[0]:
                raise RuntimeError("render crashed")

        mock_client.get_video_operation.side_effect = [pending_op(), done_op()]
        orchestrator, snapshots = make_orchestrator(usable_gate)
        orchestrator.subscribe(render)

        session = await orchestrator.start_generation(VIDEO, VideoParameters(prompt="a neon cat"))

        assert session.status is SessionStatus.SUCCEEDED
        assert session.error_message is None
        assert mock_client.submit_video.await_count == 1
        assert mock_client.get_video_operation.await_count == 2
        # Other listeners still saw every change
        assert snapshots[-1].status is SessionStatus.SUCCEEDED


class TestSessionLifecycle:
    """Tests for re-entry, mode switching and result cleanup."""

    @pytest.mark.asyncio
    async def test_failed_then_succeeded_clears_error(self, make_orchestrator, usable_gate, mock_client):
        mock_client.generate_images.side_effect = [[], ["aGVsbG8="]]
        orchestrator, snapshots = make_orchestrator(usable_gate)

        failed = await orchestrator.start_generation(IMAGE, ImageParameters(prompt="a robot"))
        succeeded = await orchestrator.start_generation(IMAGE, ImageParameters(prompt="a robot"))

        assert failed.status is SessionStatus.FAILED
        assert succeeded.status is SessionStatus.SUCCEEDED
        assert succeeded.error_message is None
        assert_exclusive(snapshots)

    @pytest.mark.asyncio
    async def test_mode_switch_clears_result_not_gate(self, make_orchestrator, usable_gate, media_store):
        orchestrator, _ = make_orchestrator(usable_gate)
        done = await orchestrator.start_generation(VIDEO, VideoParameters(prompt="a neon cat"))
        assert len(media_store) == 1

        session = orchestrator.select_mode(IMAGE)

        assert session.mode is IMAGE
        assert session.status is SessionStatus.IDLE
        assert session.result_reference is None
        assert session.error_message is None
        assert media_store.get(done.result_reference) is None
        assert usable_gate.state is CredentialState.USABLE

    @pytest.mark.asyncio
    async def test_validation_after_failure_returns_to_idle(self, make_orchestrator, usable_gate, mock_client):
        mock_client.generate_images.return_value = []
        orchestrator, snapshots = make_orchestrator(usable_gate)
        await orchestrator.start_generation(IMAGE, ImageParameters(prompt="a robot"))

        session = await orchestrator.start_generation(IMAGE, ImageParameters(prompt=" "))

        assert session.status is SessionStatus.IDLE
        assert session.error_message is None
        assert session.validation_message == EMPTY_PROMPT_MESSAGE
        assert_exclusive(snapshots)

    @pytest.mark.asyncio
    async def test_launch_runs_in_background(self, make_orchestrator, usable_gate):
        orchestrator, _ = make_orchestrator(usable_gate)

        started = orchestrator.launch(VIDEO, VideoParameters(prompt="a neon cat"))
        assert started.status is SessionStatus.GENERATING
        assert started.request_id is not None

        settled = await orchestrator.wait()
        assert settled.status is SessionStatus.SUCCEEDED
        assert settled.request_id == started.request_id

    @pytest.mark.asyncio
    async def test_shutdown_cancels_in_flight_poll(self, make_orchestrator, usable_gate, mock_client):
        async def never_done(*args, **kwargs):
            await asyncio.sleep(3600)

        mock_client.get_video_operation.side_effect = never_done
        orchestrator, _ = make_orchestrator(usable_gate)
        orchestrator.launch(VIDEO, VideoParameters(prompt="a neon cat"))
        await asyncio.sleep(0)

        await orchestrator.shutdown()

        session = orchestrator.session
        assert session.status is SessionStatus.FAILED
        assert session.error_message == "Generation was interrupted."

    @pytest.mark.asyncio
    async def test_listener_raising_on_every_change_does_not_escape(self, make_orchestrator, usable_gate):
        def broken(snapshot: GenerationSession) -> None:
            raise ValueError("broken view")

        orchestrator, _ = make_orchestrator(usable_gate)
        orchestrator.subscribe(broken)

        session = await orchestrator.start_generation(IMAGE, ImageParameters(prompt="a robot"))

        assert session.status is SessionStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_unsubscribe_twice_is_harmless(self, make_orchestrator, usable_gate):
        orchestrator, _ = make_orchestrator(usable_gate)
        seen: list[GenerationSession] = []
        unsubscribe = orchestrator.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        await orchestrator.start_generation(IMAGE, ImageParameters(prompt="a robot"))

        assert seen == []
