"""
Core Data Models for Family Ledger

These models define the schemas for every record the core reads from or
writes to the document store. They are designed to:
1. Normalize loosely-shaped store documents at the boundary
2. Keep the camelCase wire names external dashboards depend on
3. Enforce the structural invariants of families and invites

DESIGN DECISION: Documents are validated on the way in (`from_document`)
and dumped with their wire aliases on the way out (`to_document`).
Core logic only ever sees these models, never raw dicts.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

# Family and catalog entry names
NAME_MAX_LENGTH = 100


def utc_now() -> dt.datetime:
    """Timezone-aware current time used for every stored timestamp."""
    return dt.datetime.now(dt.timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Kinds of money movement."""
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


class CategoryType(str, Enum):
    """
    Bucket a category belongs to.

    Older category documents carry no type; they are read as EXPENSE.
    """
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


class CatalogKind(str, Enum):
    """The two shared catalogs. Values double as collection names."""
    CATEGORY = "categories"
    ACCOUNT = "accounts"

    @property
    def label(self) -> str:
        return "category" if self is CatalogKind.CATEGORY else "account"


class InviteStatus(str, Enum):
    """Invite lifecycle. ACCEPTED and DECLINED are terminal."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


# =============================================================================
# BASE
# =============================================================================

class StoredModel(BaseModel):
    """
    Base for records persisted in the document store.

    Fields are populated either by Python name or by camelCase alias.
    The document id is carried on the model but never written into the body.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    id: str = Field(..., min_length=1, description="Document id")

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any], **extra: Any):
        """Validate a raw store document into a model."""
        return cls.model_validate({**data, **extra, "id": doc_id})

    def to_document(self) -> dict[str, Any]:
        """Dump the wire form of this record (without its id)."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"id"},
            exclude_none=True,
        )


# =============================================================================
# IDENTITY
# =============================================================================

class Principal(BaseModel):
    """
    The signed-in user, as resolved by the identity provider.

    Never persisted by the core.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    auth_providers: frozenset[str] = Field(default_factory=frozenset)

    @property
    def is_google_linked(self) -> bool:
        """True when a Google identity is linked (delegated Drive access possible)."""
        return "google.com" in self.auth_providers

    @property
    def normalized_email(self) -> str:
        return self.email.casefold()


# =============================================================================
# FAMILY
# =============================================================================

class FamilyMember(BaseModel):
    """A non-owner member entry in Family.members."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    email: str
    name: Optional[str] = None
    photo_url: Optional[str] = Field(default=None, alias="photoURL")
    joined_at: dt.datetime

    @classmethod
    def from_principal(cls, principal: Principal, joined_at: dt.datetime) -> "FamilyMember":
        return cls(
            id=principal.id,
            email=principal.email,
            name=principal.display_name,
            photo_url=principal.photo_url,
            joined_at=joined_at,
        )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Family(StoredModel):
    """
    A sharing group: one owner plus zero or more members.

    The owner is an implicit role and never appears in member_ids/members.
    """

    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    owner_id: str
    owner_email: Optional[str] = None
    owner_name: Optional[str] = None
    member_ids: list[str] = Field(default_factory=list)
    members: list[FamilyMember] = Field(default_factory=list)
    created_at: Optional[dt.datetime] = None

    @model_validator(mode='after')
    def validate_owner_not_member(self) -> 'Family':
        """The owner is never listed as a member."""
        if self.owner_id in self.member_ids:
            raise ValueError("Family owner cannot also be a member")
        if any(member.id == self.owner_id for member in self.members):
            raise ValueError("Family owner cannot also be a member")
        return self

    def is_owner(self, principal_id: str) -> bool:
        return self.owner_id == principal_id

    def has_member(self, principal_id: str) -> bool:
        return principal_id in self.member_ids

    def member_by_id(self, member_id: str) -> Optional[FamilyMember]:
        return next((m for m in self.members if m.id == member_id), None)

    def member_by_email(self, email: str) -> Optional[FamilyMember]:
        wanted = email.casefold()
        return next((m for m in self.members if m.email.casefold() == wanted), None)


class FamilyInvite(StoredModel):
    """
    An invitation to join a family.

    Two modes:
    - code invite: anonymous, redeemable once by whoever presents the code
      before expires_at
    - addressed invite: bound to invitee_email, picked up by the recipient
    """

    family_id: str
    family_name: str
    inviter_id: str
    inviter_name: Optional[str] = None
    inviter_email: Optional[str] = None
    status: InviteStatus = InviteStatus.PENDING
    created_at: dt.datetime

    invite_code: Optional[str] = None
    expires_at: Optional[dt.datetime] = None
    invitee_email: Optional[str] = None

    accepted_by: Optional[str] = None
    accepted_at: Optional[dt.datetime] = None

    @field_validator('invite_code')
    @classmethod
    def normalize_code(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @field_validator('invitee_email')
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v

    @model_validator(mode='after')
    def validate_mode(self) -> 'FamilyInvite':
        """Exactly one of invite_code / invitee_email; codes always expire."""
        if bool(self.invite_code) == bool(self.invitee_email):
            raise ValueError("Invite must have either an invite code or an invitee email")
        if self.invite_code and self.expires_at is None:
            raise ValueError("Code invites require expires_at")
        return self

    @property
    def is_code_invite(self) -> bool:
        return self.invite_code is not None

    @property
    def is_pending(self) -> bool:
        return self.status == InviteStatus.PENDING

    def is_expired(self, now: dt.datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


# =============================================================================
# CATALOG
# =============================================================================

class CatalogEntry(StoredModel):
    """
    A shared category or account record.

    user_ids is the list of principals subscribed to the entry, not an
    ownership list. Logical identity is (name casefolded, type).
    """

    kind: CatalogKind = Field(..., exclude=True)
    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    type: Optional[CategoryType] = None
    user_ids: list[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[dt.datetime] = None

    @model_validator(mode='after')
    def normalize_type(self) -> 'CatalogEntry':
        """Categories default to EXPENSE; accounts carry no type."""
        if self.kind is CatalogKind.CATEGORY and self.type is None:
            self.type = CategoryType.EXPENSE
        elif self.kind is CatalogKind.ACCOUNT:
            self.type = None
        return self

    @property
    def logical_key(self) -> tuple[str, Optional[str]]:
        return logical_key(self.name, self.type)

    def has_user(self, principal_id: str) -> bool:
        return principal_id in self.user_ids


def logical_key(name: str, entry_type: Optional[CategoryType] = None) -> tuple[str, Optional[str]]:
    """Case-insensitive identity of a catalog entry."""
    return name.strip().casefold(), entry_type.value if entry_type else None


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionDraft(BaseModel):
    """
    The user-editable fields of a transaction.

    Structural typing only; integrity rules (positive amount, transfer
    accounts) are checked by TransactionValidator so they surface as
    ValidationIssues rather than pydantic errors.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    type: TransactionType = TransactionType.EXPENSE
    amount: Decimal
    category: str = ""
    account: str = ""
    to_account: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=1000)
    date: dt.date

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Transaction(StoredModel):
    """
    A stored transaction.

    Visible to everyone in the owner's family. The attachment is readable
    only by attachment_owner_id (user_id for legacy records).
    """

    type: TransactionType = TransactionType.EXPENSE
    amount: Decimal
    category: str
    account: str
    to_account: Optional[str] = None
    note: Optional[str] = None
    date: dt.date

    user_id: str
    user_name: Optional[str] = None
    created_at: Optional[dt.datetime] = None

    attachment_url: Optional[str] = None
    attachment_name: Optional[str] = None
    attachment_owner_id: Optional[str] = None

    @field_validator('date', mode='before')
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        """Accept ISO timestamps from older records, keep only the calendar date."""
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        if isinstance(v, dt.datetime):
            return v.date()
        return v

    @property
    def has_attachment(self) -> bool:
        return bool(self.attachment_url)


class TransactionView(BaseModel):
    """A transaction as a specific viewer may see it."""

    id: str
    type: TransactionType
    amount: Decimal
    category: str
    account: str
    to_account: Optional[str] = None
    note: Optional[str] = None
    date: dt.date
    user_id: str
    user_name: Optional[str] = None
    attachment_url: Optional[str] = None
    attachment_name: Optional[str] = None
    has_private_attachment: bool = False


# =============================================================================
# ATTACHMENTS
# =============================================================================

class AttachmentFile(BaseModel):
    """A file selected for upload."""

    filename: str = Field(..., min_length=1, max_length=255)
    content: bytes
    mime_type: str = Field(default="application/octet-stream")

    @property
    def size_bytes(self) -> int:
        return len(self.content)


class AttachmentRef(BaseModel):
    """Reference returned by the blob store after a successful upload."""

    file_id: str
    view_link: str
    download_link: Optional[str] = None
    uploaded_at: dt.datetime = Field(default_factory=utc_now)
