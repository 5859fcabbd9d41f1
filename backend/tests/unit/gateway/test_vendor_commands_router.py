from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from bridge_shared.exceptions.base import QueueUnavailableError
from ingestion_gateway.dependencies import get_gateway
from ingestion_gateway.main import app
from ingestion_gateway.service import IngestionGateway


class FakeQueue:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.commands = []

    async def enqueue(self, command):
        if self.fail:
            raise QueueUnavailableError("broker down")
        self.commands.append(command)
        return True


VENDOR_CONTEXT = {"role": "Vendor", "userId": "vendor-user-1", "invitationToken": "invite-123"}


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def client(queue):
    gateway = IngestionGateway(queue, enqueue_max_attempts=2, enqueue_retry_delay=0)
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_create_is_accepted_and_enqueued(client, queue) -> None:
    response = client.post(
        "/api/v1/vendor-commands/create",
        json={"payload": {"name": "Acme Supplies", "taxId": "DE123456789"}, "userContext": VENDOR_CONTEXT},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "queued"
    assert body["correlationId"] == queue.commands[0].correlation_id
    assert queue.commands[0].operation.value == "Create"
    assert queue.commands[0].payload.tax_id == "DE123456789"


def test_business_gaps_are_still_accepted(client, queue) -> None:
    response = client.post(
        "/api/v1/vendor-commands/create",
        json={"payload": {"name": "Acme Supplies", "taxId": ""}, "userContext": VENDOR_CONTEXT},
    )
    assert response.status_code == 202
    assert len(queue.commands) == 1


def test_approver_without_identity_token_is_rejected(client, queue) -> None:
    response = client.post(
        "/api/v1/vendor-commands/update",
        json={
            "payload": {"externalRecordId": "0000100001", "city": "Berlin"},
            "userContext": {"role": "Approver", "userId": "approver-1"},
        },
    )

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["errors"][0]["field"] == "userContext"
    assert "strongIdentityToken" in body["errors"][0]["message"]
    assert queue.commands == []


def test_unknown_payload_field_is_rejected(client, queue) -> None:
    response = client.post(
        "/api/v1/vendor-commands/delete",
        json={"payload": {"externalRecordId": "1", "colour": "red"}, "userContext": VENDOR_CONTEXT},
    )
    assert response.status_code == 422
    assert queue.commands == []


def test_queue_outage_returns_503() -> None:
    gateway = IngestionGateway(FakeQueue(fail=True), enqueue_max_attempts=2, enqueue_retry_delay=0)
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        response = TestClient(app).post(
            "/api/v1/vendor-commands/delete",
            json={"payload": {"externalRecordId": "0000100001"}, "userContext": VENDOR_CONTEXT},
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json()["code"] == "QUEUE_UNAVAILABLE"
