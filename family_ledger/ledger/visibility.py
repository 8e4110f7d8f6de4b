"""
Attachment visibility.

Transaction visibility follows family membership; attachment visibility
does not. Only the principal who uploaded a receipt can open it, because
it lives in their private Drive. Everyone else in the family sees the
transaction with a "private attachment" marker instead of the link.
"""

from family_ledger.models.entities import Transaction, TransactionView


def attachment_owner(transaction: Transaction) -> str:
    """Uploader of the attachment; records written before the field existed fall back to the owner."""
    return transaction.attachment_owner_id or transaction.user_id


def can_view_attachment(viewer_id: str, transaction: Transaction) -> bool:
    return transaction.has_attachment and viewer_id == attachment_owner(transaction)


def present(transaction: Transaction, viewer_id: str) -> TransactionView:
    """The transaction as `viewer_id` may see it."""
    visible = can_view_attachment(viewer_id, transaction)
    return TransactionView(
        id=transaction.id,
        type=transaction.type,
        amount=transaction.amount,
        category=transaction.category,
        account=transaction.account,
        to_account=transaction.to_account,
        note=transaction.note,
        date=transaction.date,
        user_id=transaction.user_id,
        user_name=transaction.user_name,
        attachment_url=transaction.attachment_url if visible else None,
        attachment_name=transaction.attachment_name if visible else None,
        has_private_attachment=transaction.has_attachment and not visible,
    )
