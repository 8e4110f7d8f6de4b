"""
Identity Context

Resolves the current principal and holds the optional delegated token
used for private attachment uploads.

The token lifecycle:
- set on sign-in (or refresh / account linking)
- restored from the session scope after a reload in the same session
- discarded on sign-out and whenever the principal changes
"""

from typing import Callable, Optional

import structlog

from family_ledger.exceptions import NotAuthenticated
from family_ledger.identity.session import InMemorySessionScope, SessionScope
from family_ledger.models.entities import Principal
from family_ledger.services.storage import Subscription


logger = structlog.get_logger(__name__)

TOKEN_KEY = "delegated_token"
TOKEN_OWNER_KEY = "delegated_token_owner"

PrincipalCallback = Callable[[Optional[Principal]], None]


class IdentityContext:
    """Current principal plus its session-only delegated token."""

    def __init__(self, session: Optional[SessionScope] = None):
        self._session = session or InMemorySessionScope()
        self._principal: Optional[Principal] = None
        self._listeners: dict[int, PrincipalCallback] = {}
        self._next_listener = 0

    def current_principal(self) -> Optional[Principal]:
        return self._principal

    def require_principal(self) -> Principal:
        if self._principal is None:
            raise NotAuthenticated()
        return self._principal

    @property
    def is_google_user(self) -> bool:
        return bool(self._principal and self._principal.is_google_linked)

    def on_change(self, callback: PrincipalCallback) -> Subscription:
        """Call `callback` with the new principal (or None) on every change."""
        listener_id = self._next_listener
        self._next_listener += 1
        self._listeners[listener_id] = callback
        return Subscription(lambda: self._listeners.pop(listener_id, None))

    def sign_in(self, principal: Principal, delegated_token: Optional[str] = None) -> None:
        """
        Make `principal` current.

        A token cached for a different principal is discarded first.
        """
        previous = self._principal
        if self._session.get(TOKEN_OWNER_KEY) not in (None, principal.id):
            self._discard_token()

        self._principal = principal
        if delegated_token:
            self.set_delegated_token(delegated_token)

        logger.info(
            "principal_signed_in",
            principal_id=principal.id,
            has_delegated_token=self.delegated_token() is not None,
        )
        if previous is None or previous != principal:
            self._emit(principal)

    def sign_out(self) -> None:
        previous = self._principal
        self._principal = None
        self._discard_token()
        if previous is not None:
            logger.info("principal_signed_out", principal_id=previous.id)
            self._emit(None)

    def set_delegated_token(self, token: str) -> None:
        """Store a fresh delegated token for the signed-in principal."""
        principal = self.require_principal()
        self._session.set(TOKEN_KEY, token)
        self._session.set(TOKEN_OWNER_KEY, principal.id)

    def delegated_token(self) -> Optional[str]:
        """The delegated token, only if it belongs to the current principal."""
        if self._principal is None:
            return None
        if self._session.get(TOKEN_OWNER_KEY) != self._principal.id:
            return None
        return self._session.get(TOKEN_KEY)

    def _discard_token(self) -> None:
        self._session.delete(TOKEN_KEY)
        self._session.delete(TOKEN_OWNER_KEY)

    def _emit(self, principal: Optional[Principal]) -> None:
        for callback in list(self._listeners.values()):
            try:
                callback(principal)
            except Exception as e:
                logger.error("principal_listener_failed", error=str(e))
