"""
Base payment adapter.

Defines the contract every payment provider adapter implements and the HTTP
plumbing they share: one ``httpx.AsyncClient`` per adapter, request signing
hook, and translation of transport/HTTP failures into ``ProviderError``s.
"""

import json
import random
import string
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog

from app.payments.config import ProviderConfig
from app.payments.errors import (
    PaymentValidationError,
    ProviderConnectionError,
    ProviderHTTPError,
    ProviderResponseError,
)
from app.payments.models import (
    AdapterHealth,
    HealthState,
    ProviderCategory,
    TransactionRecord,
    TransactionStatusResult,
)

logger = structlog.get_logger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def serialize_json(payload: Any) -> str:
    """Compact JSON used both as request body and as signing input."""
    if payload is None:
        return ""
    return json.dumps(payload, separators=(",", ":"), default=str)


class BasePaymentAdapter(ABC):
    """
    Abstract base class for payment provider adapters.

    Subclasses set ``name``, ``category``, the sandbox/production base URLs
    and a default timeout, and implement ``check_status``.
    """

    name: str = "BaseAdapter"
    category: ProviderCategory
    SANDBOX_URL: str = ""
    PRODUCTION_URL: str = ""
    DEFAULT_TIMEOUT: float = 30.0
    CONTENT_TYPE: str = "application/json"

    def __init__(
        self,
        config: ProviderConfig,
        tenant_id: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the adapter.

        Args:
            config: Tenant-scoped provider configuration
            tenant_id: Owning tenant
            timeout: Request timeout in seconds (provider default if None)
            transport: Optional httpx transport, used by tests
        """
        self.config = config
        self.tenant_id = tenant_id
        self.base_url = self.SANDBOX_URL if config.sandbox else self.PRODUCTION_URL
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self.default_headers(),
            transport=transport,
        )

    def default_headers(self) -> Dict[str, str]:
        """Headers sent with every request."""
        return {"Content-Type": self.CONTENT_TYPE}

    def sign_request(self, body: str) -> Dict[str, str]:
        """Return per-request authentication headers for ``body``."""
        return {}

    @staticmethod
    def generate_reference(prefix: str = "TXN") -> str:
        """Generate a unique transaction reference."""
        timestamp = _to_base36(int(time.time() * 1000))
        suffix = "".join(random.choices(_BASE36, k=6))
        return f"{prefix}{timestamp}{suffix}"

    @staticmethod
    def validate_amount(amount: Optional[float]) -> None:
        """Reject missing or non-positive amounts."""
        if amount is None or amount <= 0:
            raise PaymentValidationError("Invalid payment amount")

    def log_transaction(self, transaction: TransactionRecord) -> None:
        """Log transaction for audit."""
        logger.info(
            "payment.transaction",
            adapter=self.name,
            tenant_id=self.tenant_id,
            reference=transaction.reference,
            type=transaction.type,
            amount=transaction.amount,
            status=transaction.status.value,
        )

    async def _send(
        self,
        method: str,
        path: str,
        content: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Send a request and translate failures into provider errors."""
        try:
            response = await self.client.request(
                method, path, content=content, headers=headers
            )
        except httpx.TimeoutException as e:
            raise ProviderConnectionError(
                f"{self.name} request timed out: {e}", provider=self.category.value
            ) from e
        except httpx.TransportError as e:
            raise ProviderConnectionError(
                f"{self.name} connection failed: {e}", provider=self.category.value
            ) from e

        if response.status_code >= 400:
            raise ProviderHTTPError(
                f"{self.name} returned HTTP {response.status_code}",
                status_code=response.status_code,
                provider=self.category.value,
                body=response.text[:500],
            )
        return response

    async def _request_json(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Send a signed JSON request and return the decoded JSON body."""
        body = serialize_json(payload)
        response = await self._send(
            method,
            path,
            content=body if payload is not None else None,
            headers=self.sign_request(body),
        )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderResponseError(
                f"{self.name} returned invalid JSON", provider=self.category.value
            ) from e

    async def _probe(self, probe: Callable[[], Awaitable[Any]]) -> AdapterHealth:
        """Run a cheap provider call and report health from its outcome."""
        try:
            await probe()
        except Exception as e:
            return AdapterHealth(
                adapter=self.name, status=HealthState.UNHEALTHY, error=str(e)
            )
        return AdapterHealth(adapter=self.name, status=HealthState.HEALTHY)

    async def health_check(self) -> AdapterHealth:
        """Check adapter health."""
        return AdapterHealth(adapter=self.name, status=HealthState.HEALTHY)

    @abstractmethod
    async def check_status(self, reference: str) -> TransactionStatusResult:
        """
        Query the provider for the status of a transaction.

        Args:
            reference: Our transaction reference

        Returns:
            Normalized status result
        """
        pass

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
