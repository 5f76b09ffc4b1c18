"""Per-tenant payment orchestration over external payment providers."""

from app.payments.cache import OrchestratorCache, get_orchestrator_cache
from app.payments.orchestrator import (
    AdapterRegistry,
    PaymentOrchestrator,
    build_adapter_registry,
)
from app.payments.qr import extract_merchant_account, parse_merchant_account

__all__ = [
    "AdapterRegistry",
    "OrchestratorCache",
    "PaymentOrchestrator",
    "build_adapter_registry",
    "extract_merchant_account",
    "get_orchestrator_cache",
    "parse_merchant_account",
]
