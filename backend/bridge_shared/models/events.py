"""
Status event models
A StatusEvent is the single terminal outcome of a Command.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import NAMESPACE_URL, uuid5

from pydantic import ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .commands import CamelModel, Command, VendorOperation

STATUS_EVENT_NAMESPACE = uuid5(NAMESPACE_URL, "urn:vendor-bridge:status-event")


class OutcomeStatus(str, Enum):
    SUCCESS = "Success"
    FAILURE = "Failure"


class FailureCode(str, Enum):
    """Distinct markers carried by Failure events"""
    BUSINESS_VALIDATION = "BUSINESS_VALIDATION"
    CREDENTIAL_RESOLUTION = "CREDENTIAL_RESOLUTION"
    DEAD_LETTER_EXHAUSTED = "DEAD_LETTER_EXHAUSTED"


def event_id_for(correlation_id: str) -> str:
    """Deterministic event id; every re-emission of an outcome carries the same id"""
    return str(uuid5(STATUS_EVENT_NAMESPACE, correlation_id))


class StatusEvent(CamelModel):
    """Immutable outcome record published on the status stream"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event_id: str
    correlation_id: str
    status: OutcomeStatus
    external_record_id: Optional[str] = None
    errors: Optional[List[str]] = None
    warnings: List[str] = Field(default_factory=list)
    error_code: Optional[FailureCode] = None
    operation: Optional[VendorOperation] = None
    user_id: Optional[str] = None
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_outcome_shape(self) -> "StatusEvent":
        if self.status == OutcomeStatus.SUCCESS:
            if not self.external_record_id:
                raise ValueError("Success event requires externalRecordId")
            if self.errors or self.error_code:
                raise ValueError("Success event must not carry errors")
        elif not self.errors:
            raise ValueError("Failure event requires errors")
        return self

    @classmethod
    def success(cls, command: Command, external_record_id: str,
                warnings: Optional[List[str]] = None) -> "StatusEvent":
        return cls(
            event_id=event_id_for(command.correlation_id),
            correlation_id=command.correlation_id,
            status=OutcomeStatus.SUCCESS,
            external_record_id=external_record_id,
            warnings=list(warnings or []),
            operation=command.operation,
            user_id=command.user_id,
        )

    @classmethod
    def failure(cls, command: Command, errors: List[str], error_code: FailureCode,
                warnings: Optional[List[str]] = None) -> "StatusEvent":
        return cls(
            event_id=event_id_for(command.correlation_id),
            correlation_id=command.correlation_id,
            status=OutcomeStatus.FAILURE,
            errors=list(errors),
            error_code=error_code,
            warnings=list(warnings or []),
            operation=command.operation,
            user_id=command.user_id,
        )

    @property
    def is_success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    def to_notification(self) -> Dict[str, Any]:
        """Real-time push payload"""
        message: Dict[str, Any] = {
            "correlationId": self.correlation_id,
            "status": self.status.value,
        }
        if self.external_record_id:
            message["externalRecordId"] = self.external_record_id
        if self.errors:
            message["errors"] = list(self.errors)
        return message

    def to_message(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")

    @classmethod
    def from_message(cls, raw: bytes) -> "StatusEvent":
        return cls.model_validate_json(raw)
