"""
Domain exceptions
"""

from .base import (
    CommandValidationError,
    CredentialResolutionError,
    DeliveryRegistryError,
    DomainException,
    EventPublishError,
    MappingStoreError,
    QueueUnavailableError,
    TransientExecutionFailure,
)

__all__ = [
    "CommandValidationError",
    "CredentialResolutionError",
    "DeliveryRegistryError",
    "DomainException",
    "EventPublishError",
    "MappingStoreError",
    "QueueUnavailableError",
    "TransientExecutionFailure",
]
