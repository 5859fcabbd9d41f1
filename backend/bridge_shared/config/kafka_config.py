"""
Kafka configuration for the vendor bridge

Producer settings favour durability (acks=all, idempotence) because a
command that the gateway reported as queued must survive broker failover.
Consumers commit manually so a delivery is only settled by the worker.
"""

import uuid
from typing import Any, Dict, Optional

from .settings import get_settings


class KafkaBridgeConfig:
    """Builds confluent-kafka configuration dictionaries"""

    @staticmethod
    def get_producer_config(service_name: str, instance_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Idempotent producer configuration

        Args:
            service_name: Name of the producing service (e.g. 'ingestion-gateway')
            instance_id: Optional instance suffix for the client id
        """
        if instance_id is None:
            instance_id = str(uuid.uuid4())[:8]
        kafka = get_settings().kafka
        delivery_timeout_ms = int(kafka.produce_timeout_seconds * 1000)

        return {
            'bootstrap.servers': kafka.bootstrap_servers,
            'client.id': f'{service_name}-producer-{instance_id}',

            # Durability settings
            'acks': 'all',
            'enable.idempotence': True,
            'max.in.flight.requests.per.connection': 5,

            'compression.type': 'snappy',
            'linger.ms': 5,

            # A message the caller stopped waiting for must not be delivered later
            'delivery.timeout.ms': delivery_timeout_ms,
            'request.timeout.ms': min(30000, delivery_timeout_ms),
        }

    @staticmethod
    def get_consumer_config(
        service_name: str,
        group_id: str,
        auto_offset_reset: str = 'earliest',
    ) -> Dict[str, Any]:
        """
        Manual-commit consumer configuration

        Args:
            service_name: Name of the consuming service
            group_id: Consumer group ID
            auto_offset_reset: Where a brand new group starts reading
        """
        return {
            'bootstrap.servers': get_settings().kafka.bootstrap_servers,
            'group.id': group_id,
            'client.id': f'{service_name}-consumer',

            # Offsets are committed only after a delivery is settled
            'enable.auto.commit': False,
            'auto.offset.reset': auto_offset_reset,

            'session.timeout.ms': 45000,
            'max.poll.interval.ms': 300000,
            'heartbeat.interval.ms': 3000,

            'isolation.level': 'read_committed',
            'check.crcs': True,
        }

    @staticmethod
    def get_admin_config() -> Dict[str, Any]:
        return {
            'bootstrap.servers': get_settings().kafka.bootstrap_servers,
            'client.id': 'vendor-bridge-admin',
            'request.timeout.ms': 30000,
        }

    @staticmethod
    def get_topic_config(retention_ms: int = 604800000, min_insync_replicas: int = 1) -> Dict[str, str]:
        """
        Topic configuration

        Args:
            retention_ms: Message retention time in milliseconds
            min_insync_replicas: Minimum in-sync replicas for acks=all
        """
        return {
            'retention.ms': str(retention_ms),
            'min.insync.replicas': str(min_insync_replicas),
            'cleanup.policy': 'delete',
        }

    @staticmethod
    def get_topic_specs() -> Dict[str, Dict[str, str]]:
        """Per-topic configuration for every topic the bridge owns"""
        kafka = get_settings().kafka
        return {
            kafka.command_topic: KafkaBridgeConfig.get_topic_config(),
            kafka.dead_letter_topic: KafkaBridgeConfig.get_topic_config(retention_ms=2592000000),
            kafka.status_topic: KafkaBridgeConfig.get_topic_config(retention_ms=kafka.status_retention_ms),
        }
