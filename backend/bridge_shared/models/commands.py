"""
Command models
A Command is the durable intent to mutate one vendor record in the legacy system.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

# Portal user ids: account names and email addresses
USER_ID_PATTERN = r"^[A-Za-z0-9_.@+-]{1,128}$"


class VendorOperation(str, Enum):
    """Mutation kinds accepted by the bridge"""
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


class UserRole(str, Enum):
    """Submitter roles"""
    APPROVER = "Approver"  # internal user, executes under their own identity
    VENDOR = "Vendor"  # external user, executes under the system account


class CamelModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UserContext(CamelModel):
    """Who submitted the command"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )

    role: UserRole = Field(..., description="Submitter role")
    user_id: str = Field(
        ..., min_length=1, max_length=128, pattern=USER_ID_PATTERN, description="Stable portal-side user id"
    )
    strong_identity_token: Optional[str] = Field(
        None, description="Verifiable individual identity (Approver only)"
    )
    invitation_token: Optional[str] = Field(
        None, description="One-time registration proof (Vendor only)"
    )

    @model_validator(mode="after")
    def check_token_matches_role(self) -> "UserContext":
        if self.role == UserRole.APPROVER:
            if not self.strong_identity_token:
                raise ValueError("strongIdentityToken is required for role Approver")
            if self.invitation_token:
                raise ValueError("invitationToken is not allowed for role Approver")
        else:
            if not self.invitation_token:
                raise ValueError("invitationToken is required for role Vendor")
            if self.strong_identity_token:
                raise ValueError("strongIdentityToken is not allowed for role Vendor")
        return self


class VendorPayload(CamelModel):
    """
    Vendor record fields.

    Fields are opaque to the pipeline. Business completeness (a missing name
    or tax id) is judged by the legacy system, not here.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )

    external_record_id: Optional[str] = Field(None, description="Legacy vendor number (Update/Delete)")
    name: Optional[str] = None
    tax_id: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = Field(None, max_length=3)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    bank_country: Optional[str] = Field(None, max_length=3)
    bank_key: Optional[str] = None
    bank_account: Optional[str] = None
    iban: Optional[str] = None
    swift: Optional[str] = None
    payment_terms: Optional[str] = None
    credit_limit: Optional[Decimal] = Field(None, ge=0)


class Command(CamelModel):
    """Pending vendor mutation, immutable once built by the ingestion gateway"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    correlation_id: str = Field(default_factory=lambda: str(uuid4()), min_length=1)
    operation: VendorOperation
    payload: VendorPayload
    user_context: UserContext
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    delivery_attempt: int = Field(1, ge=1, description="Set from queue bookkeeping on each delivery")

    @property
    def role(self) -> UserRole:
        return self.user_context.role

    @property
    def user_id(self) -> str:
        return self.user_context.user_id

    def with_delivery_attempt(self, attempt: int) -> "Command":
        return self.model_copy(update={"delivery_attempt": attempt})

    def with_record_id(self, external_record_id: str) -> "Command":
        payload = self.payload.model_copy(update={"external_record_id": external_record_id})
        return self.model_copy(update={"payload": payload})

    def to_message(self) -> bytes:
        """Queue message body"""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")

    @classmethod
    def from_message(cls, raw: bytes) -> "Command":
        return cls.model_validate_json(raw)
