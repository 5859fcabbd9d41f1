from __future__ import annotations

import pytest
from jose import jwt

from bridge_shared.config.settings import CredentialSettings, LegacySystemSettings
from bridge_shared.exceptions.base import CredentialResolutionError
from bridge_shared.models.commands import UserRole
from bridge_shared.services.credential_resolver import (
    AuthenticationStrategySelector,
    AuthStrategy,
    IdentityPropagationResolver,
    SystemAccountResolver,
)
from tests.factories import approver_context, vendor_context

SIGNING_KEY = "unit-test-signing-key"


def _token(sub: str, **claims) -> str:
    return jwt.encode({"sub": sub, **claims}, SIGNING_KEY, algorithm="HS256")


def _credential_settings(certificate_dir: str, **overrides) -> CredentialSettings:
    values = {
        "certificate_dir": certificate_dir,
        "identity_token_key": SIGNING_KEY,
        "identity_token_algorithms": "HS256",
    }
    values.update(overrides)
    return CredentialSettings(**values)


def _legacy_settings(**overrides) -> LegacySystemSettings:
    values = {"system_user": "RFC_VENDOR", "system_password": "s3cret"}
    values.update(overrides)
    return LegacySystemSettings(**values)


@pytest.fixture
def cert_store(tmp_path):
    (tmp_path / "jdoe.crt").write_text("cert")
    (tmp_path / "jdoe.key").write_text("key")
    return tmp_path


def test_strategy_is_a_pure_function_of_role() -> None:
    assert AuthenticationStrategySelector.strategy_for(UserRole.APPROVER) == AuthStrategy.IDENTITY_PROPAGATION
    assert AuthenticationStrategySelector.strategy_for(UserRole.VENDOR) == AuthStrategy.SYSTEM_ACCOUNT


def test_algorithm_list_accepts_comma_separated_values() -> None:
    settings = CredentialSettings(identity_token_algorithms="RS256, ES256")
    assert settings.identity_token_algorithms == ["RS256", "ES256"]


@pytest.mark.asyncio
async def test_approver_resolves_to_individual_certificate(cert_store) -> None:
    resolver = IdentityPropagationResolver(_credential_settings(str(cert_store)))
    context = approver_context(user_id="approver-1", token=_token("approver-1", principal="jdoe"))

    credential = await resolver.resolve(context)

    assert credential.strategy == AuthStrategy.IDENTITY_PROPAGATION
    assert credential.principal == "jdoe"
    assert credential.cert_file == str(cert_store / "jdoe.crt")
    assert credential.key_file == str(cert_store / "jdoe.key")
    assert credential.password is None


@pytest.mark.asyncio
async def test_token_for_another_user_is_rejected(cert_store) -> None:
    resolver = IdentityPropagationResolver(_credential_settings(str(cert_store)))
    context = approver_context(user_id="approver-1", token=_token("someone-else", principal="jdoe"))

    with pytest.raises(CredentialResolutionError, match="does not belong"):
        await resolver.resolve(context)


@pytest.mark.asyncio
async def test_forged_token_is_rejected(cert_store) -> None:
    resolver = IdentityPropagationResolver(_credential_settings(str(cert_store)))
    forged = jwt.encode({"sub": "approver-1"}, "wrong-key", algorithm="HS256")

    with pytest.raises(CredentialResolutionError, match="rejected") as exc_info:
        await resolver.resolve(approver_context(user_id="approver-1", token=forged))
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_unavailable_certificate_store_is_retryable(tmp_path) -> None:
    resolver = IdentityPropagationResolver(_credential_settings(str(tmp_path / "missing")))
    context = approver_context(user_id="approver-1", token=_token("approver-1", principal="jdoe"))

    with pytest.raises(CredentialResolutionError) as exc_info:
        await resolver.resolve(context)
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_unmapped_principal_is_not_retryable(cert_store) -> None:
    resolver = IdentityPropagationResolver(_credential_settings(str(cert_store)))
    context = approver_context(user_id="approver-1", token=_token("approver-1", principal="nobody"))

    with pytest.raises(CredentialResolutionError, match="No certificate") as exc_info:
        await resolver.resolve(context)
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_missing_verification_key_fails(cert_store) -> None:
    resolver = IdentityPropagationResolver(_credential_settings(str(cert_store), identity_token_key=None))
    with pytest.raises(CredentialResolutionError, match="not configured"):
        await resolver.resolve(approver_context(token=_token("approver-1")))


@pytest.mark.asyncio
async def test_vendor_resolves_to_system_account(cert_store) -> None:
    selector = AuthenticationStrategySelector.from_settings(
        _credential_settings(str(cert_store)), _legacy_settings()
    )

    credential = await selector.resolve(vendor_context())

    assert credential.strategy == AuthStrategy.SYSTEM_ACCOUNT
    assert credential.principal == "RFC_VENDOR"
    assert credential.password == "s3cret"
    assert "s3cret" not in repr(credential)


@pytest.mark.asyncio
async def test_selector_never_falls_back_on_its_own(tmp_path) -> None:
    selector = AuthenticationStrategySelector.from_settings(
        _credential_settings(str(tmp_path / "missing")), _legacy_settings()
    )
    with pytest.raises(CredentialResolutionError):
        await selector.resolve(approver_context(token=_token("approver-1")))
    assert selector.system_credential().strategy == AuthStrategy.SYSTEM_ACCOUNT


def test_unconfigured_system_account_fails() -> None:
    resolver = SystemAccountResolver(_legacy_settings(system_user=None))
    with pytest.raises(CredentialResolutionError):
        resolver.credential()
