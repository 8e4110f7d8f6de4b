"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking (amount is a number, date is a calendar date)
- Known transaction type
- Handled by the TransactionDraft pydantic model

STAGE 2 - INTEGRITY VALIDATION:
- Amount strictly positive
- Category and account present
- Transfers name a destination account different from the source
- Only transfers carry a destination account

Stage 2 only runs when stage 1 passes. Every issue found is reported, so
the entry form can mark all offending fields at once.

IMPORTANT: Validation NEVER silently fixes issues.
"""

from decimal import Decimal
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from family_ledger.exceptions import ValidationError
from family_ledger.models.entities import TransactionDraft, TransactionType
from family_ledger.models.validation import ValidationIssue, ValidationResult


logger = structlog.get_logger(__name__)

DraftInput = Union[TransactionDraft, dict[str, Any]]


class TransactionValidator:
    """Validates transaction drafts before they reach the store."""

    def _validate_schema(self, data: DraftInput) -> tuple[Optional[TransactionDraft], list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (draft_or_None, list_of_issues)
        """
        if isinstance(data, TransactionDraft):
            return data, []

        try:
            return TransactionDraft.model_validate(data), []
        except PydanticValidationError as e:
            issues = []
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "transaction"
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="invalid_format" if error["type"] != "missing" else "missing",
                    message=f"{field}: {error['msg']}",
                ))
            return None, issues

    def _validate_integrity(self, draft: TransactionDraft) -> list[ValidationIssue]:
        """Stage 2: Integrity validation."""
        issues = []

        if draft.amount <= Decimal("0"):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="not_positive",
                message="Amount must be greater than zero",
            ))

        if not draft.category:
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Category is required",
            ))

        if not draft.account:
            issues.append(ValidationIssue(
                field="account",
                issue_type="missing",
                message="Account is required",
            ))

        if draft.type == TransactionType.TRANSFER:
            if not draft.to_account:
                issues.append(ValidationIssue(
                    field="toAccount",
                    issue_type="missing",
                    message="Transfers need a destination account",
                ))
            elif draft.to_account == draft.account:
                issues.append(ValidationIssue(
                    field="toAccount",
                    issue_type="same_account",
                    message="Destination account must differ from the source account",
                ))
        elif draft.to_account:
            issues.append(ValidationIssue(
                field="toAccount",
                issue_type="unexpected",
                message="Only transfers can have a destination account",
            ))

        return issues

    def validate(self, data: DraftInput) -> ValidationResult:
        """
        Run full two-stage validation.

        Args:
            data: A TransactionDraft or its camelCase / snake_case dict form

        Returns:
            ValidationResult with all issues found
        """
        draft, issues = self._validate_schema(data)
        schema_valid = draft is not None

        integrity_valid = False
        if draft is not None:
            integrity_issues = self._validate_integrity(draft)
            issues.extend(integrity_issues)
            integrity_valid = not integrity_issues

        return ValidationResult(
            schema_valid=schema_valid,
            integrity_valid=integrity_valid,
            issues=issues,
        )

    def ensure_valid(self, data: DraftInput) -> TransactionDraft:
        """
        Validate and return the parsed draft.

        Raises:
            ValidationError: carrying every issue found
        """
        draft, issues = self._validate_schema(data)
        if draft is not None:
            issues.extend(self._validate_integrity(draft))

        if issues or draft is None:
            logger.info(
                "transaction_rejected",
                fields=[issue.field for issue in issues],
            )
            raise ValidationError(issues)
        return draft
