"""
Tenant configuration store.

Read-mostly, in-process store of tenant payment configurations, loaded from
a JSON file of the form ``{"tenants": [{"id": ..., "integrations": {...}}]}``.
"""

from __future__ import annotations

import json
import threading
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import structlog
from pydantic import ValidationError

from app.core.config import get_settings
from app.payments.config import TenantPaymentConfig

logger = structlog.get_logger(__name__)


class TenantConfigError(Exception):
    """Raised when the tenants file cannot be loaded."""

    pass


class TenantConfigStore:
    """Tenant id to payment configuration mapping."""

    def __init__(self, configs: Iterable[TenantPaymentConfig] = ()):
        self._lock = threading.Lock()
        self._configs: Dict[str, TenantPaymentConfig] = {
            c.tenant_id.lower(): c for c in configs
        }

    @classmethod
    def from_file(cls, path: str | Path) -> "TenantConfigStore":
        """Load tenant configurations from a JSON file."""
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
            if not isinstance(raw, dict) or not isinstance(
                raw.get("tenants", []), list
            ):
                raise TenantConfigError(
                    f"Cannot load tenants from {path}: "
                    'expected an object of the form {"tenants": [...]}'
                )
            configs = [
                TenantPaymentConfig.model_validate(item)
                for item in raw.get("tenants", [])
            ]
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise TenantConfigError(f"Cannot load tenants from {path}: {e}") from e

        logger.info("tenants.loaded", path=str(path), count=len(configs))
        return cls(configs)

    def get(self, tenant_id: str) -> Optional[TenantPaymentConfig]:
        """Return the active configuration for a tenant, if any."""
        config = self._configs.get(tenant_id.lower())
        if config is None or not config.active:
            return None
        return config

    def put(self, config: TenantPaymentConfig) -> None:
        """Insert or replace a tenant configuration."""
        with self._lock:
            self._configs[config.tenant_id.lower()] = config

    def all(self) -> List[TenantPaymentConfig]:
        return list(self._configs.values())

    def __len__(self) -> int:
        return len(self._configs)


@lru_cache(maxsize=1)
def get_tenant_store() -> TenantConfigStore:
    """Process-scoped store, loaded from ``TENANTS_FILE`` when configured."""
    settings = get_settings()
    if settings.TENANTS_FILE:
        return TenantConfigStore.from_file(settings.TENANTS_FILE)
    logger.warning("tenants.file_not_configured")
    return TenantConfigStore()
