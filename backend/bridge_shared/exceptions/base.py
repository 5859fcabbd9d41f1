"""
Domain exceptions for the vendor bridge
"""

from typing import Any, Dict, List, Optional


class DomainException(Exception):
    """Base domain exception"""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR",
                 details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class CommandValidationError(DomainException):
    """Submitted payload is not a valid command"""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"errors": errors or []}
        )
        self.errors = errors or []


class QueueUnavailableError(DomainException):
    """Command queue could not accept a command"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(
            message=f"Command queue unavailable: {message}",
            code="QUEUE_UNAVAILABLE",
            details=details or {}
        )


class CredentialResolutionError(DomainException):
    """No usable credential for the command's initiating user"""

    def __init__(self, message: str, role: str, retryable: bool = False):
        super().__init__(
            message=message,
            code="CREDENTIAL_RESOLUTION",
            details={"role": role, "retryable": retryable}
        )
        self.role = role
        self.retryable = retryable


class TransientExecutionFailure(DomainException):
    """Legacy call failed for a reason that a later attempt may not hit"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(
            message=message,
            code="TRANSIENT_FAILURE",
            details=details or {}
        )


class EventPublishError(DomainException):
    """Status event was not acknowledged by the event stream"""

    def __init__(self, message: str, correlation_id: Optional[str] = None):
        super().__init__(
            message=f"Event publish failed: {message}",
            code="EVENT_PUBLISH_ERROR",
            details={"correlation_id": correlation_id} if correlation_id else {}
        )


class MappingStoreError(DomainException):
    """Vendor mapping store could not be read or written"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(
            message=f"Mapping store error: {message}",
            code="MAPPING_STORE_ERROR",
            details=details or {}
        )


class DeliveryRegistryError(DomainException):
    """Delivery registry (lease bookkeeping) failure"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(
            message=f"Delivery registry error: {message}",
            code="DELIVERY_REGISTRY_ERROR",
            details=details or {}
        )
