"""
Authentication strategy selection

Which identity runs a command against the legacy system is a pure function of
the submitter's role:

    Approver -> IDENTITY_PROPAGATION  (individual certificate; audit shows the person)
    Vendor   -> SYSTEM_ACCOUNT        (shared account; accountability via the mapping store)

The selector never swaps one strategy for another. Falling back from an
Approver's identity to the system account is the orchestrator's decision.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from jose import JWTError, jwt

from bridge_shared.config.settings import CredentialSettings, LegacySystemSettings
from bridge_shared.exceptions.base import CredentialResolutionError
from bridge_shared.models.commands import UserContext, UserRole

logger = logging.getLogger(__name__)

_PRINCIPAL_PATTERN = re.compile(r"^[A-Za-z0-9_.@-]{1,128}$")


class AuthStrategy(str, Enum):
    IDENTITY_PROPAGATION = "identity_propagation"
    SYSTEM_ACCOUNT = "system_account"


ROLE_STRATEGIES: Dict[UserRole, AuthStrategy] = {
    UserRole.APPROVER: AuthStrategy.IDENTITY_PROPAGATION,
    UserRole.VENDOR: AuthStrategy.SYSTEM_ACCOUNT,
}


@dataclass(frozen=True)
class Credential:
    """Resolved identity handed to the legacy adapter"""
    strategy: AuthStrategy
    principal: str
    password: Optional[str] = field(default=None, repr=False)
    cert_file: Optional[str] = None
    key_file: Optional[str] = None


class IdentityPropagationResolver:
    """Approver: strong identity token -> individual client certificate"""

    def __init__(self, settings: CredentialSettings):
        self.settings = settings

    def _verify_token(self, user_context: UserContext) -> str:
        key = self.settings.identity_token_key
        if key is None:
            raise CredentialResolutionError(
                "Identity token verification key is not configured", role=user_context.role.value
            )
        try:
            claims = jwt.decode(
                user_context.strong_identity_token,
                key.get_secret_value(),
                algorithms=self.settings.identity_token_algorithms,
                audience=self.settings.identity_token_audience,
                issuer=self.settings.identity_token_issuer,
                options={"verify_aud": self.settings.identity_token_audience is not None},
            )
        except JWTError as e:
            raise CredentialResolutionError(
                f"Strong identity token rejected: {e}", role=user_context.role.value
            ) from e

        if claims.get("sub") != user_context.user_id:
            raise CredentialResolutionError(
                "Strong identity token does not belong to the submitting user",
                role=user_context.role.value,
            )
        principal = str(claims.get("principal") or claims["sub"])
        if not _PRINCIPAL_PATTERN.match(principal):
            raise CredentialResolutionError(
                "Strong identity token names an invalid principal", role=user_context.role.value
            )
        return principal

    async def resolve(self, user_context: UserContext) -> Credential:
        principal = self._verify_token(user_context)

        store = self.settings.certificate_dir
        if not os.path.isdir(store):
            raise CredentialResolutionError(
                "Certificate store is unavailable", role=user_context.role.value, retryable=True
            )
        cert_file = os.path.join(store, f"{principal}.crt")
        key_file = os.path.join(store, f"{principal}.key")
        if not (os.path.isfile(cert_file) and os.path.isfile(key_file)):
            raise CredentialResolutionError(
                f"No certificate is mapped for principal {principal}", role=user_context.role.value
            )
        return Credential(
            strategy=AuthStrategy.IDENTITY_PROPAGATION,
            principal=principal,
            cert_file=cert_file,
            key_file=key_file,
        )


class SystemAccountResolver:
    """Vendor: shared system account from the secret store (environment)"""

    def __init__(self, settings: LegacySystemSettings):
        self.settings = settings

    def credential(self) -> Credential:
        if not self.settings.system_user or self.settings.system_password is None:
            raise CredentialResolutionError(
                "System account credential is not configured", role=UserRole.VENDOR.value
            )
        return Credential(
            strategy=AuthStrategy.SYSTEM_ACCOUNT,
            principal=self.settings.system_user,
            password=self.settings.system_password.get_secret_value(),
        )

    async def resolve(self, user_context: UserContext) -> Credential:
        return self.credential()


class AuthenticationStrategySelector:
    """Enum-keyed strategy table"""

    def __init__(
        self,
        identity_resolver: IdentityPropagationResolver,
        system_resolver: SystemAccountResolver,
    ):
        self.system_resolver = system_resolver
        self._resolvers: Dict[AuthStrategy, Callable[[UserContext], Awaitable[Credential]]] = {
            AuthStrategy.IDENTITY_PROPAGATION: identity_resolver.resolve,
            AuthStrategy.SYSTEM_ACCOUNT: system_resolver.resolve,
        }

    @classmethod
    def from_settings(cls, credentials: CredentialSettings,
                      legacy: LegacySystemSettings) -> "AuthenticationStrategySelector":
        return cls(IdentityPropagationResolver(credentials), SystemAccountResolver(legacy))

    @staticmethod
    def strategy_for(role: UserRole) -> AuthStrategy:
        return ROLE_STRATEGIES[role]

    async def resolve(self, user_context: UserContext) -> Credential:
        """
        Raises:
            CredentialResolutionError: no credential for the role's strategy
        """
        strategy = self.strategy_for(user_context.role)
        credential = await self._resolvers[strategy](user_context)
        logger.debug(f"Resolved {strategy.value} credential for user {user_context.user_id}")
        return credential

    def system_credential(self) -> Credential:
        """System account, for an explicit fallback decision by the caller"""
        return self.system_resolver.credential()
