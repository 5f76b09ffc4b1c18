"""
Tenant payment configuration.

Per-tenant integration flags and credentials for each payment provider
category. Instances are frozen: a configuration change means building a new
config and invalidating the tenant's cached orchestrator.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderConfig(BaseModel):
    """Fields shared by every provider integration."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    enabled: bool = Field(default=False, description="Build this adapter")
    sandbox: bool = Field(default=True, description="Use the provider sandbox")
    api_key: Optional[str] = None
    callback_url: Optional[str] = None


class SelcomConfig(ProviderConfig):
    """Bill aggregator credentials."""

    api_secret: Optional[str] = None
    vendor_id: Optional[str] = None


class TipsConfig(ProviderConfig):
    """Instant-transfer switch credentials."""

    institution_code: Optional[str] = None
    api_secret: Optional[str] = None


class GepgConfig(ProviderConfig):
    """Government payment gateway credentials (PEM keys for XML signing)."""

    sp_code: Optional[str] = None
    system_id: Optional[str] = None
    service_code: Optional[str] = None
    private_key: Optional[str] = None
    gepg_public_key: Optional[str] = None


class IntegrationsConfig(BaseModel):
    """Provider integrations for one tenant."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    selcom: SelcomConfig = Field(default_factory=SelcomConfig)
    tips: TipsConfig = Field(default_factory=TipsConfig)
    gepg: GepgConfig = Field(default_factory=GepgConfig)


class TenantPaymentConfig(BaseModel):
    """Payment configuration of a single tenant."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    tenant_id: str = Field(alias="id", min_length=1)
    name: Optional[str] = None
    active: bool = True
    integrations: IntegrationsConfig = Field(default_factory=IntegrationsConfig)

    @field_validator("tenant_id")
    @classmethod
    def _normalize_tenant_id(cls, value: str) -> str:
        return value.strip().lower()
