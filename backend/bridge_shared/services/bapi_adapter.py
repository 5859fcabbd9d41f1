"""
Legacy ERP adapter

Thin async client for the legacy RPC gateway: one BAPI function per vendor
operation. Every failure is classified as exactly one of

- business validation: returned as ``BapiResult.failed`` (permanent)
- transient: raised as ``TransientExecutionFailure`` (redeliver)

Timeouts, transport errors, 408/429/5xx, unreadable bodies and a client
certificate that cannot be read are transient. Other 4xx (including a rejected
credential), an unusable client certificate and BAPI RETURN messages of type
E/A are business failures.
"""

import logging
import ssl
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from bridge_shared.config.settings import LegacySystemSettings
from bridge_shared.exceptions.base import TransientExecutionFailure
from bridge_shared.models.bapi import BapiResult
from bridge_shared.models.commands import VendorOperation, VendorPayload
from bridge_shared.services.credential_resolver import AuthStrategy, Credential

logger = logging.getLogger(__name__)

# VendorPayload field -> legacy import parameter
LEGACY_FIELDS: Dict[str, str] = {
    "name": "NAME",
    "tax_id": "STCD1",
    "street": "STREET",
    "city": "CITY",
    "postal_code": "POSTL_COD1",
    "region": "REGION",
    "country": "COUNTRY",
    "email": "E_MAIL",
    "phone": "TELEPHONE",
    "bank_country": "BANKS",
    "bank_key": "BANKL",
    "bank_account": "BANKN",
    "iban": "IBAN",
    "swift": "SWIFT",
    "payment_terms": "ZTERM",
    "credit_limit": "CREDIT_LIMIT",
}

# verify argument (bool, CA bundle path or SSLContext) -> client
ClientFactory = Callable[[Union[bool, str, ssl.SSLContext]], httpx.AsyncClient]

ERROR_MESSAGE_TYPES = frozenset({"E", "A"})
TRANSIENT_STATUS_CODES = frozenset({408, 429})


def precheck(operation: VendorOperation, payload: VendorPayload) -> List[str]:
    """Checks the legacy system would fail anyway; answered without a network call"""
    errors: List[str] = []
    if operation == VendorOperation.CREATE:
        if not (payload.name or "").strip():
            errors.append("Name is required")
        if not (payload.tax_id or "").strip():
            errors.append("Tax ID is required")
    elif not (payload.external_record_id or "").strip():
        errors.append("Vendor record ID is required")
    return errors


def return_messages(body: Any) -> List[str]:
    """Error texts from a BAPI RETURN table (list or single structure)"""
    if not isinstance(body, dict):
        return []
    table = body.get("RETURN") or []
    if isinstance(table, dict):
        table = [table]
    messages = []
    for entry in table:
        if isinstance(entry, dict) and str(entry.get("TYPE", "")).upper() in ERROR_MESSAGE_TYPES:
            messages.append(str(entry.get("MESSAGE") or "Legacy system reported an error"))
    return messages


class HttpBapiAdapter:
    """Executes vendor operations through the legacy RPC gateway"""

    def __init__(self, settings: LegacySystemSettings,
                 client_factory: Optional[ClientFactory] = None):
        self.settings = settings
        self._client_factory = client_factory or self._default_client
        self._functions = {
            VendorOperation.CREATE: settings.create_function,
            VendorOperation.UPDATE: settings.update_function,
            VendorOperation.DELETE: settings.delete_function,
        }
        self.client = self._client_factory(self._verify())

    def _default_client(self, verify) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.gateway_url,
            timeout=self.settings.timeout_seconds,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            verify=verify,
        )

    async def close(self) -> None:
        await self.client.aclose()

    def _verify(self):
        if not self.settings.verify_ssl:
            return False
        return self.settings.ca_bundle or True

    def to_legacy_fields(self, operation: VendorOperation, payload: VendorPayload) -> Dict[str, Any]:
        values = payload.model_dump(mode="json", exclude_none=True)
        fields = {LEGACY_FIELDS[name]: value for name, value in values.items() if name in LEGACY_FIELDS}
        if payload.external_record_id:
            fields[self.settings.record_id_field] = payload.external_record_id
        if operation == VendorOperation.DELETE:
            # Delete only needs the key; the legacy side flags the record for deletion.
            fields = {self.settings.record_id_field: payload.external_record_id, "DELETION_FLAG": "X"}
        return fields

    async def execute(self, operation: VendorOperation, payload: VendorPayload,
                      credential: Credential) -> BapiResult:
        """
        Run one legacy call.

        Raises:
            TransientExecutionFailure: the outcome is unknown or the system was unreachable
        """
        errors = precheck(operation, payload)
        if errors:
            return BapiResult.failed(errors)

        function = self._functions[operation]
        body = self.to_legacy_fields(operation, payload)
        path = f"/rfc/{function}"

        context = None
        if credential.strategy != AuthStrategy.SYSTEM_ACCOUNT:
            try:
                context = self._tls_context(credential)
            except ssl.SSLError as e:
                # Malformed or mismatched certificate and key; another attempt loads the same files
                logger.error(f"Certificate for {credential.principal} is unusable: {e}")
                return BapiResult.failed([f"Client certificate for {credential.principal} is unusable"])
            except OSError as e:
                raise TransientExecutionFailure(
                    f"Client certificate for {credential.principal} could not be read: {e}"
                ) from e

        try:
            if context is None:
                response = await self.client.post(
                    path, json=body, auth=httpx.BasicAuth(credential.principal, credential.password or "")
                )
            else:
                response = await self._post_as_individual(path, body, credential, context)
        except httpx.TimeoutException as e:
            raise TransientExecutionFailure(f"{function} timed out", details={"error": str(e)}) from e
        except httpx.TransportError as e:
            raise TransientExecutionFailure(f"{function} unreachable: {e}") from e

        return self._classify(operation, payload, function, response)

    def _tls_context(self, credential: Credential) -> ssl.SSLContext:
        """Mutual-TLS context presenting the individual's client certificate"""
        context = ssl.create_default_context(cafile=self.settings.ca_bundle)
        if not self.settings.verify_ssl:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        context.load_cert_chain(credential.cert_file, credential.key_file)
        return context

    async def _post_as_individual(self, path: str, body: Dict[str, Any],
                                  credential: Credential, context: ssl.SSLContext) -> httpx.Response:
        async with self._client_factory(context) as client:
            return await client.post(path, json=body, headers={"X-Legacy-Principal": credential.principal})

    def _classify(self, operation: VendorOperation, payload: VendorPayload,
                  function: str, response: httpx.Response) -> BapiResult:
        status = response.status_code
        if status >= 500 or status in TRANSIENT_STATUS_CODES:
            raise TransientExecutionFailure(
                f"{function} returned HTTP {status}", details={"status_code": status}
            )
        if status in (401, 403):
            return BapiResult.failed([f"Legacy system rejected the credential (HTTP {status})"])

        try:
            body = response.json() if response.content else {}
        except ValueError as e:
            raise TransientExecutionFailure(f"{function} returned an unreadable body") from e

        messages = return_messages(body)
        if status >= 400:
            logger.info(f"{function} rejected with HTTP {status}: {messages}")
            return BapiResult.failed(messages or [f"Legacy system rejected the request (HTTP {status})"])
        if messages:
            return BapiResult.failed(messages)

        record_id = body.get(self.settings.record_id_field) if isinstance(body, dict) else None
        record_id = str(record_id).strip() if record_id else payload.external_record_id
        if not record_id:
            return BapiResult.failed(["Legacy system returned no vendor record ID"])
        return BapiResult.ok(record_id)
