"""Tenant configuration lookup."""

from app.tenants.store import TenantConfigError, TenantConfigStore, get_tenant_store

__all__ = ["TenantConfigError", "TenantConfigStore", "get_tenant_store"]
