"""
Application Configuration
Key patterns and naming conventions shared by every vendor bridge service
"""

from .settings import get_settings


class AppConfig:
    """
    Central place for Redis key patterns, Kafka header names and service names.

    Keeping these in one class stops the gateway, worker and notifier from
    drifting apart on how they name shared state.
    """

    # ======================
    # Service names
    # ======================
    INGESTION_GATEWAY_SERVICE = "ingestion-gateway"
    COMMAND_WORKER_SERVICE = "command-worker"
    FEEDBACK_NOTIFIER_SERVICE = "feedback-notifier"

    # ======================
    # Kafka headers
    # ======================
    HEADER_CORRELATION_ID = "correlation_id"
    HEADER_OPERATION = "operation"
    HEADER_DEAD_LETTER_REASON = "dead_letter_reason"
    HEADER_DELIVERY_ATTEMPTS = "delivery_count"

    # ======================
    # Redis Key Patterns
    # ======================
    @staticmethod
    def get_enqueue_dedup_key(correlation_id: str) -> str:
        """Duplicate-detection key written at enqueue time"""
        return f"vendor_command:{correlation_id}:enqueued"

    @staticmethod
    def get_outcome_key(correlation_id: str) -> str:
        """Cached terminal StatusEvent for a command"""
        return f"vendor_command:{correlation_id}:outcome"

    # ======================
    # Kafka names
    # ======================
    @staticmethod
    def get_command_topic() -> str:
        return get_settings().kafka.command_topic

    @staticmethod
    def get_status_topic() -> str:
        return get_settings().kafka.status_topic

    @staticmethod
    def get_dead_letter_topic() -> str:
        return get_settings().kafka.dead_letter_topic

    @staticmethod
    def get_notifier_group(instance_id: str) -> str:
        """Each notifier instance reads the whole status stream with its own group"""
        return f"{get_settings().kafka.notifier_group_prefix}-{instance_id}"
