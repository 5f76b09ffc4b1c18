"""
Payment error taxonomy.

Every error raised by the orchestrator or its adapters derives from
``PaymentError`` so the route layer can translate them in one place.
"""

from typing import Optional


class PaymentError(Exception):
    """Base exception for payment orchestration errors."""

    pass


class CapabilityUnavailableError(PaymentError):
    """Raised when the adapter backing an operation is not enabled for a tenant."""

    def __init__(self, message: str, capability: str, tenant_id: str):
        super().__init__(message)
        self.capability = capability
        self.tenant_id = tenant_id


class PaymentValidationError(PaymentError):
    """Raised when a payment request is rejected before reaching the provider."""

    pass


class ProviderError(PaymentError):
    """Base exception for provider (adapter) failures."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class ProviderConnectionError(ProviderError):
    """Raised when the connection to a provider fails or times out."""

    pass


class ProviderHTTPError(ProviderError):
    """Raised when a provider answers with an HTTP error status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        provider: Optional[str] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message, provider)
        self.status_code = status_code
        self.body = body


class ProviderResponseError(ProviderError):
    """Raised when a provider response cannot be parsed."""

    pass


class ProviderSignatureError(ProviderError):
    """Raised when a signed provider response fails verification."""

    pass
