"""
Vendor identity mapping
"""

from datetime import datetime
from enum import Enum

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

from .commands import CamelModel


class MappingUpsertOutcome(str, Enum):
    CREATED = "created"
    UNCHANGED = "unchanged"  # same pair already stored
    CONFLICT = "conflict"  # user already mapped to a different record; left untouched


class VendorMapping(CamelModel):
    """Portal user -> legacy vendor record. At most one row per user."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    user_id: str
    external_record_id: str
    created_at: datetime
    last_updated: datetime
