"""
Per-tenant orchestrator cache.

Orchestrators are built lazily on first use and reused until explicitly
invalidated. There is no expiry: invalidating and rebuilding is the only way
a tenant picks up a configuration change.
"""

import threading
from functools import lru_cache
from typing import Callable, Dict, List, Optional

import structlog

from app.payments.config import TenantPaymentConfig
from app.payments.orchestrator import PaymentOrchestrator

logger = structlog.get_logger(__name__)

OrchestratorFactory = Callable[[TenantPaymentConfig], PaymentOrchestrator]


class OrchestratorCache:
    """Thread-safe mapping of tenant id to its payment orchestrator."""

    def __init__(self, factory: OrchestratorFactory = PaymentOrchestrator):
        """
        Initialize the cache.

        Args:
            factory: Builds an orchestrator from a tenant configuration
        """
        self._factory = factory
        self._orchestrators: Dict[str, PaymentOrchestrator] = {}
        self._lock = threading.Lock()

    def get_or_create(self, config: TenantPaymentConfig) -> PaymentOrchestrator:
        """Return the cached orchestrator for the tenant, building it if absent."""
        orchestrator = self._orchestrators.get(config.tenant_id)
        if orchestrator is not None:
            return orchestrator

        with self._lock:
            orchestrator = self._orchestrators.get(config.tenant_id)
            if orchestrator is None:
                logger.info("orchestrator.cache_miss", tenant_id=config.tenant_id)
                orchestrator = self._factory(config)
                self._orchestrators[config.tenant_id] = orchestrator
            return orchestrator

    def get(self, tenant_id: str) -> Optional[PaymentOrchestrator]:
        return self._orchestrators.get(tenant_id)

    def invalidate(self, tenant_id: Optional[str] = None) -> List[PaymentOrchestrator]:
        """
        Drop one tenant's orchestrator, or every orchestrator.

        Evicted orchestrators are left open: requests that already obtained
        one keep using it until they finish.

        Args:
            tenant_id: Tenant to drop; None clears the whole cache

        Returns:
            The evicted orchestrators
        """
        with self._lock:
            if tenant_id is None:
                evicted = list(self._orchestrators.values())
                self._orchestrators.clear()
            else:
                removed = self._orchestrators.pop(tenant_id, None)
                evicted = [removed] if removed is not None else []

        logger.info(
            "orchestrator.cache_invalidated",
            tenant_id=tenant_id or "*",
            evicted=len(evicted),
        )
        return evicted

    async def aclose(self) -> None:
        """Clear the cache and close every evicted orchestrator (shutdown only)."""
        for orchestrator in self.invalidate():
            await orchestrator.aclose()

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._orchestrators

    def __len__(self) -> int:
        return len(self._orchestrators)


@lru_cache(maxsize=1)
def get_orchestrator_cache() -> OrchestratorCache:
    """Process-scoped cache, provided to routes as a FastAPI dependency."""
    return OrchestratorCache()
