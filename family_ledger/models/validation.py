"""
Validation Result Models

Transaction validation reports every issue it finds instead of stopping at
the first one, so the entry form can highlight all offending fields.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from family_ledger.models.entities import NAME_MAX_LENGTH, utc_now


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'not_positive', 'same_account')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (types, required fields)
    Stage 2: Integrity validation (amount, accounts, transfer rules)
    """

    validated_at: datetime = Field(default_factory=utc_now)

    schema_valid: bool = Field(
        ...,
        description="Did schema validation pass?"
    )
    integrity_valid: bool = Field(
        ...,
        description="Did integrity validation pass?"
    )
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.integrity_valid and not self.has_errors

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    def issue_for(self, field: str) -> Optional[ValidationIssue]:
        return next((issue for issue in self.issues if issue.field == field), None)


def check_name(name: str, label: str, field: str = "name") -> Optional[ValidationIssue]:
    """The issue with a stripped display name, or None when it can be stored."""
    if not name:
        return ValidationIssue(
            field=field,
            issue_type="missing",
            message=f"{label.capitalize()} name is required",
        )
    if len(name) > NAME_MAX_LENGTH:
        return ValidationIssue(
            field=field,
            issue_type="too_long",
            message=f"{label.capitalize()} name must be at most {NAME_MAX_LENGTH} characters",
        )
    return None
