"""
Vendor command orchestration

One delivery of a command moves through

    Received -> Authenticating -> Executing -> (Succeeded | Failed) -> Emitting -> Done

with DeadLettered as the terminal state for commands whose redeliveries are
exhausted. The orchestrator only acknowledges a delivery after the outcome
event is durable; until then the queue keeps redelivering it.

Redelivery of a command that already reached Done is answered from the
outcome cache, so the legacy system is not called twice for it.
"""

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from redis.exceptions import RedisError

from bridge_shared.config.settings import ApplicationSettings, ApproverFallbackPolicy
from bridge_shared.exceptions.base import (
    CredentialResolutionError,
    EventPublishError,
    MappingStoreError,
    TransientExecutionFailure,
)
from bridge_shared.models.commands import Command, UserRole, VendorOperation
from bridge_shared.models.events import FailureCode, StatusEvent
from bridge_shared.models.mapping import MappingUpsertOutcome
from bridge_shared.observability.metrics import BridgeMetrics, get_metrics
from bridge_shared.services.bapi_adapter import HttpBapiAdapter
from bridge_shared.services.command_queue import CommandDelivery, KafkaCommandQueue
from bridge_shared.services.credential_resolver import AuthenticationStrategySelector, Credential
from bridge_shared.services.outcome_cache import OutcomeCache
from bridge_shared.services.status_event_stream import StatusEventPublisher
from bridge_shared.services.vendor_mapping_store import VendorMappingStore

logger = logging.getLogger(__name__)


class CommandState(str, Enum):
    RECEIVED = "Received"
    AUTHENTICATING = "Authenticating"
    EXECUTING = "Executing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    EMITTING = "Emitting"
    DONE = "Done"
    DEAD_LETTERED = "DeadLettered"


class Disposition(str, Enum):
    """What happened to the delivery"""
    COMPLETED = "completed"
    RETRY = "retry"
    DEAD_LETTERED = "dead_lettered"


@dataclass(frozen=True)
class WorkerPolicy:
    """Explicit worker configuration, fixed at construction"""
    max_delivery_attempts: int = 5
    execution_timeout_seconds: float = 30.0
    lock_renewal_interval_seconds: float = 20.0
    approver_fallback: ApproverFallbackPolicy = ApproverFallbackPolicy.FAIL

    @classmethod
    def from_settings(cls, settings: ApplicationSettings) -> "WorkerPolicy":
        return cls(
            max_delivery_attempts=settings.worker.max_delivery_attempts,
            execution_timeout_seconds=settings.worker.execution_timeout_seconds,
            lock_renewal_interval_seconds=settings.worker.lock_renewal_interval_seconds,
            approver_fallback=settings.credentials.approver_fallback,
        )


@dataclass
class ProcessingOutcome:
    correlation_id: str
    disposition: Disposition
    state: CommandState
    event: Optional[StatusEvent] = None
    reason: Optional[str] = None
    adapter_called: bool = False
    warnings: List[str] = field(default_factory=list)


class WorkerOrchestrator:
    def __init__(
        self,
        *,
        queue: KafkaCommandQueue,
        selector: AuthenticationStrategySelector,
        adapter: HttpBapiAdapter,
        mapping_store: VendorMappingStore,
        publisher: StatusEventPublisher,
        outcome_cache: OutcomeCache,
        policy: WorkerPolicy,
        metrics: Optional[BridgeMetrics] = None,
    ):
        self.queue = queue
        self.selector = selector
        self.adapter = adapter
        self.mapping_store = mapping_store
        self.publisher = publisher
        self.outcome_cache = outcome_cache
        self.policy = policy
        self.metrics = metrics or get_metrics("command-worker")

    async def handle(self, delivery: CommandDelivery) -> ProcessingOutcome:
        """Drive one delivery to a settlement (complete, redeliver or dead-letter)"""
        command = delivery.command
        logger.info(
            f"Received {command.operation.value} command {command.correlation_id} "
            f"(role={command.role.value}, attempt={delivery.delivery_attempt})"
        )

        cached = await self._cached_outcome(command.correlation_id)
        if cached is not None:
            logger.info(f"Command {command.correlation_id} already finished; re-emitting recorded outcome")
            dead_letter_reason = None
            if cached.error_code == FailureCode.DEAD_LETTER_EXHAUSTED:
                dead_letter_reason = cached.errors[0]
            return await self._emit_and_settle(delivery, cached, record=False, dead_letter_reason=dead_letter_reason)

        if delivery.delivery_attempt > self.policy.max_delivery_attempts:
            reason = delivery.last_error or "maximum delivery attempts exceeded"
            return await self._exhausted(delivery, command, reason)

        renewal = asyncio.create_task(self._renew_lock_loop(delivery))
        try:
            return await self._process(delivery, command)
        finally:
            renewal.cancel()
            with suppress(asyncio.CancelledError):
                await renewal

    async def _process(self, delivery: CommandDelivery, command: Command) -> ProcessingOutcome:
        warnings: List[str] = []

        # Authenticating
        try:
            credential = await self.selector.resolve(command.user_context)
        except CredentialResolutionError as e:
            credential = await self._handle_credential_error(command, e, warnings)
            if credential is None:
                if command.role == UserRole.VENDOR and e.retryable:
                    return await self._retry_or_exhaust(delivery, command, f"credential store unavailable: {e.message}")
                event = StatusEvent.failure(
                    command, [f"Credential resolution failed: {e.message}"], FailureCode.CREDENTIAL_RESOLUTION
                )
                return await self._emit_and_settle(delivery, event)

        if (
            command.role == UserRole.VENDOR
            and command.operation != VendorOperation.CREATE
            and not command.payload.external_record_id
        ):
            try:
                mapping = await self.mapping_store.lookup(command.user_id)
            except MappingStoreError as e:
                return await self._retry_or_exhaust(delivery, command, e.message)
            if mapping is not None:
                command = command.with_record_id(mapping.external_record_id)

        # Executing
        timeout = self.policy.execution_timeout_seconds
        try:
            with self.metrics.time_adapter_call(command.operation.value, credential.strategy.value):
                result = await asyncio.wait_for(
                    self.adapter.execute(command.operation, command.payload, credential),
                    timeout=timeout,
                )
        except asyncio.TimeoutError:
            return await self._retry_or_exhaust(
                delivery, command, f"legacy call timed out after {timeout}s", adapter_called=True
            )
        except TransientExecutionFailure as e:
            return await self._retry_or_exhaust(delivery, command, e.message, adapter_called=True)

        if not result.success:
            logger.info(f"Command {command.correlation_id} rejected by legacy system: {result.errors}")
            event = StatusEvent.failure(command, result.errors, FailureCode.BUSINESS_VALIDATION, warnings)
            return await self._emit_and_settle(delivery, event, adapter_called=True)

        # Succeeded
        if command.role == UserRole.VENDOR:
            try:
                await self._persist_mapping(command, result.external_record_id, warnings)
            except MappingStoreError as e:
                return await self._retry_or_exhaust(delivery, command, e.message, adapter_called=True)

        event = StatusEvent.success(command, result.external_record_id, warnings)
        return await self._emit_and_settle(delivery, event, adapter_called=True)

    async def _handle_credential_error(self, command: Command, error: CredentialResolutionError,
                                       warnings: List[str]) -> Optional[Credential]:
        """Apply the Approver fallback policy; None means no credential"""
        if command.role != UserRole.APPROVER:
            logger.warning(f"Credential resolution failed for {command.correlation_id}: {error.message}")
            return None
        if self.policy.approver_fallback != ApproverFallbackPolicy.SYSTEM_ACCOUNT:
            logger.warning(
                f"Approver credential unavailable for {command.correlation_id}: {error.message}; "
                f"failing command (fallback policy: {self.policy.approver_fallback.value})"
            )
            return None
        try:
            credential = self.selector.system_credential()
        except CredentialResolutionError as fallback_error:
            logger.error(f"System account fallback failed for {command.correlation_id}: {fallback_error.message}")
            return None
        note = (
            f"Individual credential for user {command.user_id} was unavailable ({error.message}); "
            f"executed under the system account"
        )
        warnings.append(note)
        logger.warning(f"Command {command.correlation_id}: {note}")
        return credential

    async def _persist_mapping(self, command: Command, external_record_id: str,
                               warnings: List[str]) -> None:
        if command.operation == VendorOperation.CREATE:
            outcome = await self.mapping_store.upsert(command.user_id, external_record_id)
            if outcome == MappingUpsertOutcome.CONFLICT:
                note = (
                    f"User {command.user_id} is already mapped to a different vendor record; "
                    f"mapping left unchanged"
                )
                warnings.append(note)
                logger.warning(f"Command {command.correlation_id}: {note}")
        else:
            await self.mapping_store.touch(command.user_id)

    async def _retry_or_exhaust(self, delivery: CommandDelivery, command: Command, reason: str,
                                adapter_called: bool = False) -> ProcessingOutcome:
        """Transient failure: redeliver, or dead-letter once this was the last allowed attempt"""
        if delivery.delivery_attempt >= self.policy.max_delivery_attempts:
            return await self._exhausted(delivery, command, reason, adapter_called=adapter_called)

        await self.queue.abandon(delivery, reason)
        self.metrics.commands_processed.labels(command.operation.value, Disposition.RETRY.value, "").inc()
        return ProcessingOutcome(
            correlation_id=command.correlation_id,
            disposition=Disposition.RETRY,
            state=CommandState.FAILED,
            reason=reason,
            adapter_called=adapter_called,
        )

    async def _exhausted(self, delivery: CommandDelivery, command: Command, reason: str,
                         adapter_called: bool = False) -> ProcessingOutcome:
        attempts = delivery.delivery_attempt
        logger.error(f"Command {command.correlation_id} exhausted after {attempts} attempt(s): {reason}")
        event = StatusEvent.failure(
            command,
            [f"Command could not be completed after {attempts} attempt(s): {reason}"],
            FailureCode.DEAD_LETTER_EXHAUSTED,
        )
        return await self._emit_and_settle(delivery, event, dead_letter_reason=reason,
                                           adapter_called=adapter_called)

    async def _cached_outcome(self, correlation_id: str) -> Optional[StatusEvent]:
        try:
            return await self.outcome_cache.get(correlation_id)
        except RedisError as e:
            logger.warning(f"Outcome cache unavailable for {correlation_id}: {e}")
            return None

    async def _emit_and_settle(
        self,
        delivery: CommandDelivery,
        event: StatusEvent,
        *,
        record: bool = True,
        dead_letter_reason: Optional[str] = None,
        adapter_called: bool = False,
    ) -> ProcessingOutcome:
        """Emitting -> Done: cache, publish, then acknowledge"""
        if record:
            try:
                event = await self.outcome_cache.record(event)
            except RedisError as e:
                logger.warning(f"Could not record outcome for {event.correlation_id}: {e}")

        try:
            await self.publisher.publish(event)
        except EventPublishError as e:
            await self.queue.abandon(delivery, e.message)
            return ProcessingOutcome(
                correlation_id=event.correlation_id,
                disposition=Disposition.RETRY,
                state=CommandState.EMITTING,
                event=event,
                reason=e.message,
                adapter_called=adapter_called,
            )

        if dead_letter_reason is not None:
            try:
                await self.queue.dead_letter(delivery, dead_letter_reason)
            except Exception as e:
                # Not dead-lettered yet; the next delivery replays the cached
                # outcome and dead-letters again.
                reason = f"dead-letter failed: {e}"
                logger.error(f"Could not dead-letter {event.correlation_id}: {e}")
                await self.queue.abandon(delivery, reason)
                return ProcessingOutcome(
                    correlation_id=event.correlation_id,
                    disposition=Disposition.RETRY,
                    state=CommandState.EMITTING,
                    event=event,
                    reason=reason,
                    adapter_called=adapter_called,
                )
            disposition, state = Disposition.DEAD_LETTERED, CommandState.DEAD_LETTERED
        else:
            try:
                await self.queue.complete(delivery)
            except Exception as e:
                # The outcome is published and cached; a redelivery re-emits it.
                logger.error(f"Acknowledgement failed for {event.correlation_id}: {e}")
            disposition, state = Disposition.COMPLETED, CommandState.DONE

        self.metrics.commands_processed.labels(
            event.operation.value if event.operation else "", disposition.value, event.status.value
        ).inc()
        return ProcessingOutcome(
            correlation_id=event.correlation_id,
            disposition=disposition,
            state=state,
            event=event,
            reason=dead_letter_reason,
            adapter_called=adapter_called,
            warnings=list(event.warnings),
        )

    async def _renew_lock_loop(self, delivery: CommandDelivery) -> None:
        interval = self.policy.lock_renewal_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self.queue.renew_lock(delivery)
            except Exception as e:
                logger.warning(f"Lock renewal failed for {delivery.correlation_id}: {e}")
                continue
            if not renewed:
                logger.warning(f"Lost visibility lock for {delivery.correlation_id}")
                return
