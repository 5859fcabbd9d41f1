from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from bridge_shared.models.bapi import BapiResult
from bridge_shared.models.commands import Command, UserContext, UserRole, VendorOperation, VendorPayload
from tests.factories import approver_context, make_command, vendor_context


def test_approver_requires_strong_identity_token() -> None:
    with pytest.raises(ValidationError, match="strongIdentityToken is required"):
        UserContext(role=UserRole.APPROVER, user_id="a-1")


def test_vendor_requires_invitation_token() -> None:
    with pytest.raises(ValidationError, match="invitationToken is required"):
        UserContext(role=UserRole.VENDOR, user_id="v-1")


def test_role_token_mismatch_rejected() -> None:
    with pytest.raises(ValidationError, match="not allowed"):
        UserContext(role=UserRole.VENDOR, user_id="v-1", invitation_token="i", strong_identity_token="t")
    with pytest.raises(ValidationError, match="not allowed"):
        UserContext(role=UserRole.APPROVER, user_id="a-1", strong_identity_token="t", invitation_token="i")


def test_user_context_accepts_camel_case_wire_names() -> None:
    context = UserContext.model_validate(
        {"role": "Vendor", "userId": "v-9", "invitationToken": "invite"}
    )
    assert context.user_id == "v-9"
    assert context.to_wire() == {"role": "Vendor", "userId": "v-9", "invitationToken": "invite"}


def test_user_id_admits_email_addresses_and_rejects_whitespace() -> None:
    context = UserContext(role=UserRole.VENDOR, user_id="jane.doe+ap@acme.com", invitation_token="i")
    assert context.user_id == "jane.doe+ap@acme.com"
    with pytest.raises(ValidationError):
        UserContext(role=UserRole.VENDOR, user_id="jane doe", invitation_token="i")
    with pytest.raises(ValidationError):
        UserContext(role=UserRole.VENDOR, user_id="x" * 129, invitation_token="i")


def test_payload_rejects_unknown_fields_and_negative_credit() -> None:
    with pytest.raises(ValidationError):
        VendorPayload.model_validate({"name": "x", "favouriteColour": "blue"})
    with pytest.raises(ValidationError):
        VendorPayload(name="x", credit_limit=Decimal("-1"))


def test_payload_keeps_business_gaps_for_the_legacy_system() -> None:
    # Missing name / tax id is a business failure decided later, not a schema error
    payload = VendorPayload(name="Acme", tax_id="")
    assert payload.tax_id == ""


def test_command_gets_unique_correlation_ids() -> None:
    first = make_command()
    second = make_command()
    assert first.correlation_id != second.correlation_id
    assert first.delivery_attempt == 1
    assert first.role == UserRole.VENDOR
    assert first.user_id == "vendor-user-1"


def test_command_message_round_trip_preserves_identity() -> None:
    command = make_command(VendorOperation.UPDATE, approver_context(), external_record_id="0000100042")
    decoded = Command.from_message(command.to_message())
    assert decoded == command
    assert b'"correlationId"' in command.to_message()
    assert b'"strongIdentityToken"' in command.to_message()


def test_command_copies_are_immutable_updates() -> None:
    command = make_command(VendorOperation.DELETE, vendor_context())
    redelivered = command.with_delivery_attempt(3)
    resolved = command.with_record_id("0000100077")

    assert redelivered.delivery_attempt == 3
    assert command.delivery_attempt == 1
    assert resolved.payload.external_record_id == "0000100077"
    assert command.payload.external_record_id is None
    with pytest.raises(ValidationError):
        command.operation = VendorOperation.CREATE


def test_bapi_result_shape() -> None:
    assert BapiResult.ok("0000100001").success is True
    assert BapiResult.failed(["Tax ID is required"]).errors == ["Tax ID is required"]
    with pytest.raises(ValidationError):
        BapiResult(success=True)
    with pytest.raises(ValidationError):
        BapiResult(success=False, errors=[])
