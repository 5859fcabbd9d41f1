from __future__ import annotations

import pytest
from pydantic import ValidationError

from bridge_shared.models.events import FailureCode, OutcomeStatus, StatusEvent, event_id_for
from tests.factories import make_command


def test_success_event_carries_record_id_and_no_errors() -> None:
    command = make_command()
    event = StatusEvent.success(command, "0000100001")

    assert event.status == OutcomeStatus.SUCCESS
    assert event.is_success
    assert event.errors is None
    assert event.operation == command.operation
    assert event.user_id == command.user_id


def test_failure_event_requires_errors() -> None:
    command = make_command()
    with pytest.raises(ValidationError):
        StatusEvent.failure(command, [], FailureCode.BUSINESS_VALIDATION)


def test_success_event_without_record_id_is_invalid() -> None:
    with pytest.raises(ValidationError):
        StatusEvent(event_id="e", correlation_id="c", status=OutcomeStatus.SUCCESS)


def test_event_id_is_deterministic_per_correlation_id() -> None:
    command = make_command()
    first = StatusEvent.success(command, "0000100001")
    second = StatusEvent.failure(command, ["boom"], FailureCode.DEAD_LETTER_EXHAUSTED)

    assert first.event_id == second.event_id == event_id_for(command.correlation_id)
    assert event_id_for("other") != first.event_id


def test_notification_payload() -> None:
    command = make_command()
    success = StatusEvent.success(command, "0000100001", warnings=["note"])
    failure = StatusEvent.failure(command, ["Tax ID is required"], FailureCode.BUSINESS_VALIDATION)

    assert success.to_notification() == {
        "correlationId": command.correlation_id,
        "status": "Success",
        "externalRecordId": "0000100001",
    }
    assert failure.to_notification() == {
        "correlationId": command.correlation_id,
        "status": "Failure",
        "errors": ["Tax ID is required"],
    }


def test_event_message_round_trip() -> None:
    command = make_command()
    event = StatusEvent.failure(command, ["x"], FailureCode.CREDENTIAL_RESOLUTION, warnings=["w"])
    decoded = StatusEvent.from_message(event.to_message())
    assert decoded == event
    assert decoded.error_code == FailureCode.CREDENTIAL_RESOLUTION
