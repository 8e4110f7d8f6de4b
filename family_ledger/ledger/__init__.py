"""Transaction ledger package."""

from family_ledger.ledger.ledger import (
    TRANSACTIONS,
    LedgerSubscription,
    TransactionLedger,
    ledger_query,
)
from family_ledger.ledger.visibility import (
    attachment_owner,
    can_view_attachment,
    present,
)

__all__ = [
    "TRANSACTIONS",
    "LedgerSubscription",
    "TransactionLedger",
    "ledger_query",
    "attachment_owner",
    "can_view_attachment",
    "present",
]
