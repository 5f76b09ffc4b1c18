"""Models shared by the payment orchestrator and its provider adapters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderCategory(str, Enum):
    """Payment provider categories a tenant can enable."""

    SELCOM = "selcom"  # Bills and airtime
    TIPS = "tips"  # Instant transfers, mobile money, QR
    GEPG = "gepg"  # Government payments


class PaymentType(str, Enum):
    """Logical payment types offered to customers."""

    BILL_PAYMENT = "BILL_PAYMENT"
    AIRTIME = "AIRTIME"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_TRANSFER = "MOBILE_TRANSFER"
    GOVERNMENT = "GOVERNMENT"
    QR_PAYMENT = "QR_PAYMENT"


PAYMENT_TYPE_PROVIDERS: Dict[PaymentType, ProviderCategory] = {
    PaymentType.BILL_PAYMENT: ProviderCategory.SELCOM,
    PaymentType.AIRTIME: ProviderCategory.SELCOM,
    PaymentType.BANK_TRANSFER: ProviderCategory.TIPS,
    PaymentType.MOBILE_TRANSFER: ProviderCategory.TIPS,
    PaymentType.GOVERNMENT: ProviderCategory.GEPG,
    PaymentType.QR_PAYMENT: ProviderCategory.TIPS,
}


class TransactionStatus(str, Enum):
    """Normalized transaction status across providers."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REVERSED = "REVERSED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"


class BillStatus(str, Enum):
    """Government bill (control number) status."""

    PENDING = "PENDING"
    PAID = "PAID"
    PARTIAL = "PARTIAL"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"


class HealthState(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class MerchantAccountInfo:
    """Destination account decoded from a merchant QR payload."""

    account_number: str
    bank_code: str = ""
    bank_name: str = ""


class PaymentMethod(BaseModel):
    """A payment method currently offered to a tenant's customers."""

    type: PaymentType
    name: str
    description: str
    provider: ProviderCategory


class TransactionRecord(BaseModel):
    """Result of a payment executed through a provider adapter."""

    reference: str
    type: str
    amount: float
    currency: str = "TZS"
    status: TransactionStatus
    provider_reference: Optional[str] = None
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    details: Dict[str, Any] = Field(default_factory=dict)

    # QR payment enrichment
    payment_type: Optional[PaymentType] = None
    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = None
    qr_reference: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == TransactionStatus.COMPLETED


class TransactionStatusResult(BaseModel):
    """Provider answer to a transaction status query."""

    reference: str
    status: TransactionStatus
    provider_reference: Optional[str] = None
    completed_at: Optional[str] = None
    failure_reason: Optional[str] = None
    message: Optional[str] = None


class Biller(BaseModel):
    code: str
    name: str
    category: Optional[str] = None


class BillerValidation(BaseModel):
    valid: bool
    customer_name: Optional[str] = None
    balance: Optional[float] = None
    message: Optional[str] = None


class Bank(BaseModel):
    code: str
    name: str
    swift_code: Optional[str] = None
    active: bool = True


class AccountValidation(BaseModel):
    """Destination account check performed by the instant-transfer switch."""

    valid: bool
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    bank_name: Optional[str] = None
    message: Optional[str] = None


class MerchantLookup(BaseModel):
    found: bool
    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = None
    account_number: Optional[str] = None
    bank_code: Optional[str] = None
    bank_name: Optional[str] = None
    mcc: Optional[str] = None
    city: Optional[str] = None
    message: Optional[str] = None


class QRMerchantValidation(BaseModel):
    valid: bool
    merchant_name: Optional[str] = None
    account_number: str
    bank_code: str = ""
    bank_name: Optional[str] = None
    message: Optional[str] = None


class GovernmentServiceProvider(BaseModel):
    code: str
    name: str
    services: List[Any] = Field(default_factory=list)


class GovernmentBill(BaseModel):
    """Bill behind a government control number."""

    found: bool
    control_number: Optional[str] = None
    bill_id: Optional[str] = None
    payer_name: Optional[str] = None
    payer_id: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "TZS"
    description: Optional[str] = None
    service_provider: Optional[str] = None
    sp_code: Optional[str] = None
    expiry_date: Optional[str] = None
    status: BillStatus = BillStatus.UNKNOWN
    message: Optional[str] = None


class ReceiptVerification(BaseModel):
    valid: bool
    receipt_number: Optional[str] = None
    control_number: Optional[str] = None
    amount: float = 0.0
    payment_date: Optional[str] = None
    payer_name: Optional[str] = None
    service_provider: Optional[str] = None


class AdapterHealth(BaseModel):
    adapter: str
    status: HealthState
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class HealthReport(BaseModel):
    """Aggregated adapter health for one tenant."""

    tenant_id: str
    adapters: Dict[str, AdapterHealth] = Field(default_factory=dict)
    overall: HealthState = HealthState.HEALTHY
