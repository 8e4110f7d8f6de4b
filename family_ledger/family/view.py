"""
Live Family View

Keeps a principal's family and pending invites current through continuous
subscriptions, and tells listeners whenever the visibility set may have
changed so the ledger subscription can be re-targeted.

The family subscription follows the resolved family id: it is re-opened
when the principal creates, joins or accepts into a family, and dropped
when they leave, are removed, or the family is deleted.
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from family_ledger.family.engine import (
    FAMILIES,
    FamilyMembershipEngine,
    effective_visibility_set,
    pending_invites_query,
)
from family_ledger.models.entities import Family, FamilyInvite, Principal
from family_ledger.services.storage import Document, Subscription


logger = structlog.get_logger(__name__)

VisibilityCallback = Callable[[frozenset[str]], Union[None, Awaitable[None]]]


class FamilyView:
    """
    Subscribed view of one principal's family state.

    Usage:
        async with FamilyView(engine) as view:
            await view.start(principal)
            view.on_change(lambda visible: print(sorted(visible)))
    """

    def __init__(self, engine: FamilyMembershipEngine):
        self._engine = engine
        self._principal: Optional[Principal] = None
        self._family: Optional[Family] = None
        self._family_id: Optional[str] = None
        self._pending: list[FamilyInvite] = []
        self._family_subscription: Optional[Subscription] = None
        self._invites_subscription: Optional[Subscription] = None
        self._listeners: dict[int, VisibilityCallback] = {}
        self._next_listener = 0

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def principal(self) -> Optional[Principal]:
        return self._principal

    @property
    def family(self) -> Optional[Family]:
        return self._family

    @property
    def pending_invites(self) -> list[FamilyInvite]:
        return list(self._pending)

    @property
    def visibility_set(self) -> frozenset[str]:
        if self._principal is None:
            return frozenset()
        return effective_visibility_set(self._principal, self._family)

    @property
    def is_owner(self) -> bool:
        return bool(
            self._family and self._principal and self._family.is_owner(self._principal.id)
        )

    def on_change(self, callback: VisibilityCallback) -> Subscription:
        """Call `callback(visibility_set)` after every change; may be a coroutine function."""
        listener_id = self._next_listener
        self._next_listener += 1
        self._listeners[listener_id] = callback
        return Subscription(lambda: self._listeners.pop(listener_id, None))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, principal: Principal) -> None:
        """Resolve the principal's family and open both subscriptions."""
        await self.close()
        self._principal = principal

        self._invites_subscription = await self._engine.store.subscribe_query(
            pending_invites_query(principal),
            self._on_invites,
            on_error=self._on_error,
        )
        await self.refresh()

    async def refresh(self) -> None:
        """Re-resolve the family; call after any mutation that changes membership."""
        if self._principal is None:
            return
        family = await self._engine.resolve_family(self._principal)
        await self._set_family(family)

    async def close(self) -> None:
        for subscription in (self._family_subscription, self._invites_subscription):
            if subscription is not None:
                subscription.close()
        self._family_subscription = None
        self._invites_subscription = None
        self._family_id = None
        self._family = None
        self._pending = []
        self._principal = None

    async def __aenter__(self) -> "FamilyView":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Subscription callbacks
    # -------------------------------------------------------------------------

    async def _set_family(self, family: Optional[Family]) -> None:
        new_id = family.id if family else None
        if new_id != self._family_id:
            if self._family_subscription is not None:
                self._family_subscription.close()
                self._family_subscription = None
            self._family_id = new_id
            self._family = family
            if new_id is not None:
                # Delivers the current document immediately through _on_family
                subscription = await self._engine.store.subscribe_document(
                    FAMILIES, new_id, self._on_family, on_error=self._on_error,
                )
                if self._family_id == new_id:
                    self._family_subscription = subscription
                else:
                    subscription.close()
                return
        else:
            self._family = family
        await self._emit()

    async def _on_family(self, doc: Optional[Document]) -> None:
        if self._principal is None:
            return

        family = None
        if doc is not None:
            try:
                candidate = Family.from_document(doc.id, doc.data)
            except PydanticValidationError as e:
                logger.warning("family_document_invalid", family_id=doc.id, error=str(e))
                candidate = None
            principal_id = self._principal.id
            if candidate and (candidate.is_owner(principal_id) or candidate.has_member(principal_id)):
                family = candidate

        if family is None and self._family_id is not None:
            logger.info("family_view_detached", family_id=self._family_id)
        await self._set_family(family)

    async def _on_invites(self, documents: list[Document]) -> None:
        invites = []
        for doc in documents:
            try:
                invites.append(FamilyInvite.from_document(doc.id, doc.data))
            except PydanticValidationError as e:
                logger.warning("invite_document_invalid", invite_id=doc.id, error=str(e))
        self._pending = invites
        await self._emit()

    def _on_error(self, error: Exception) -> None:
        logger.error("family_view_subscription_failed", error=str(error))

    async def _emit(self) -> None:
        visible = self.visibility_set
        for callback in list(self._listeners.values()):
            try:
                result = callback(visible)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("family_view_listener_failed", error=str(e))
