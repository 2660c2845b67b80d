"""Credential gate for video generation.

Video calls are billed against a user-selected API key, so the orchestrator
refuses to dispatch them until this gate reports ``USABLE``. Image generation
never consults the gate.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol

from genstudio.core.errors import EnvironmentUnsupported
from genstudio.core.logging import log

SELECTOR_UNAVAILABLE_MESSAGE = "API Key selection utility is not available in this environment."


class CredentialState(str, Enum):
    UNKNOWN = "Unknown"
    USABLE = "Usable"
    UNUSABLE = "Unusable"


class KeySelector(Protocol):
    """Interactive key-selection capability supplied by the host environment."""

    async def has_selected_key(self) -> bool: ...

    async def open_select_key(self) -> None: ...


class CredentialGate:
    """Caches whether a usable API key exists.

    Args:
        selector: Host key selector, or None when the environment has none
        assume_usable: Answer used by ``check_usable`` when there is no selector
    """

    def __init__(self, selector: KeySelector | None = None, *, assume_usable: bool = False):
        self.selector = selector
        self.assume_usable = assume_usable
        self._state = CredentialState.UNKNOWN

    @property
    def state(self) -> CredentialState:
        return self._state

    @property
    def is_usable(self) -> bool:
        return self._state is CredentialState.USABLE

    @property
    def supports_selection(self) -> bool:
        return self.selector is not None

    async def check_usable(self) -> CredentialState:
        """Re-query the host for a selected key.

        A failing check lands on UNUSABLE; it never leaves the state half-set.
        """
        if self.selector is None:
            self._state = CredentialState.USABLE if self.assume_usable else CredentialState.UNUSABLE
            log.info(f"credential_check source=ambient state={self._state.value}")
            return self._state

        try:
            has_key = await self.selector.has_selected_key()
        except Exception as e:
            log.warning(f"credential_check_failed error={type(e).__name__}: {e}")
            self._state = CredentialState.UNUSABLE
            return self._state

        self._state = CredentialState.USABLE if has_key else CredentialState.UNUSABLE
        log.info(f"credential_check source=selector state={self._state.value}")
        return self._state

    async def request_selection(self) -> CredentialState:
        """Open the host's key picker and optimistically mark the key usable.

        The picker does not report which key was chosen, so a later call can
        still fail with ``CredentialInvalidated``.

        Raises:
            EnvironmentUnsupported: If no selector is available (state unchanged)
        """
        if self.selector is None:
            log.warning("credential_select_unsupported")
            raise EnvironmentUnsupported(SELECTOR_UNAVAILABLE_MESSAGE)

        await self.selector.open_select_key()
        self._state = CredentialState.USABLE
        log.info("credential_selected optimistic=true")
        return self._state

    def revoke(self) -> None:
        """Force UNUSABLE so the next video attempt re-prompts for a key."""
        if self._state is not CredentialState.UNUSABLE:
            log.warning(f"credential_revoked previous={self._state.value}")
        self._state = CredentialState.UNUSABLE
