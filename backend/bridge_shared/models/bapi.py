"""
Result of one legacy RPC (BAPI) call
"""

from typing import List, Optional

from pydantic import ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .commands import CamelModel


class BapiResult(CamelModel):
    """Either a record id (success) or a non-empty error list (failure)"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    success: bool
    external_record_id: Optional[str] = None
    errors: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_outcome_shape(self) -> "BapiResult":
        if self.success:
            if not self.external_record_id:
                raise ValueError("successful result requires externalRecordId")
            if self.errors:
                raise ValueError("successful result must not carry errors")
        else:
            if not self.errors:
                raise ValueError("failed result requires at least one error")
            if self.external_record_id:
                raise ValueError("failed result must not carry externalRecordId")
        return self

    @classmethod
    def ok(cls, external_record_id: str) -> "BapiResult":
        return cls(success=True, external_record_id=external_record_id)

    @classmethod
    def failed(cls, errors: List[str]) -> "BapiResult":
        return cls(success=False, errors=list(errors))
