"""Identity context and session-scoped state."""

from family_ledger.identity.context import IdentityContext
from family_ledger.identity.session import (
    InMemorySessionScope,
    SessionScope,
    StreamlitSessionScope,
)

__all__ = [
    "IdentityContext",
    "InMemorySessionScope",
    "SessionScope",
    "StreamlitSessionScope",
]
