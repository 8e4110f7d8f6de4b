"""Family membership package."""

from family_ledger.family.engine import (
    FAMILIES,
    INVITES,
    FamilyMembershipEngine,
    effective_visibility_set,
    generate_invite_code,
    pending_invites_query,
)
from family_ledger.family.view import FamilyView

__all__ = [
    "FAMILIES",
    "INVITES",
    "FamilyMembershipEngine",
    "FamilyView",
    "effective_visibility_set",
    "generate_invite_code",
    "pending_invites_query",
]
