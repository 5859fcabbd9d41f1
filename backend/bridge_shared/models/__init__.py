"""
Wire and domain models for the vendor bridge
"""

from .bapi import BapiResult
from .commands import Command, UserContext, UserRole, VendorOperation, VendorPayload
from .events import FailureCode, OutcomeStatus, StatusEvent, event_id_for
from .mapping import MappingUpsertOutcome, VendorMapping

__all__ = [
    "BapiResult",
    "Command",
    "FailureCode",
    "MappingUpsertOutcome",
    "OutcomeStatus",
    "StatusEvent",
    "UserContext",
    "UserRole",
    "VendorMapping",
    "VendorOperation",
    "VendorPayload",
    "event_id_for",
]
