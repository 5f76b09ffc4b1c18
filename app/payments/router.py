"""
Payment API routes.

Thin HTTP surface over the tenant's ``PaymentOrchestrator``. The tenant is
resolved from the ``X-Tenant-ID`` header; orchestration errors are
translated into JSON error responses by ``payment_error_handler``.
"""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.core.config import get_settings
from app.payments.cache import OrchestratorCache, get_orchestrator_cache
from app.payments.config import TenantPaymentConfig
from app.payments.errors import (
    CapabilityUnavailableError,
    PaymentValidationError,
    ProviderError,
)
from app.payments.models import (
    AccountValidation,
    Bank,
    Biller,
    BillerValidation,
    GovernmentBill,
    GovernmentServiceProvider,
    HealthReport,
    MerchantLookup,
    PaymentMethod,
    QRMerchantValidation,
    ReceiptVerification,
    TransactionRecord,
    TransactionStatusResult,
)
from app.payments.orchestrator import PaymentOrchestrator
from app.tenants.store import TenantConfigStore, get_tenant_store

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


# ==================
# DEPENDENCIES
# ==================


def get_tenant_config(
    x_tenant_id: Optional[str] = Header(default=None),
    store: TenantConfigStore = Depends(get_tenant_store),
) -> TenantPaymentConfig:
    """Resolve the calling tenant from the X-Tenant-ID header."""
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant identification is required. Use the X-Tenant-ID header.",
        )
    config = store.get(x_tenant_id.lower())
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant {x_tenant_id.lower()} not found",
        )
    return config


def get_orchestrator(
    config: TenantPaymentConfig = Depends(get_tenant_config),
    cache: OrchestratorCache = Depends(get_orchestrator_cache),
) -> PaymentOrchestrator:
    return cache.get_or_create(config)


# ==================
# ERROR TRANSLATION
# ==================


def _error_body(code: str, message: str) -> Dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}}


async def payment_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map orchestration errors to client-facing responses."""
    if isinstance(exc, CapabilityUnavailableError):
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content=_error_body("FEATURE_NOT_ENABLED", str(exc)),
        )
    if isinstance(exc, PaymentValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body("VALIDATION_ERROR", str(exc)),
        )
    if isinstance(exc, ProviderError):
        logger.error(
            "payment.provider_error",
            provider=exc.provider,
            error=str(exc),
            path=str(request.url.path),
        )
        message = str(exc) if get_settings().DEBUG else "External service error"
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=_error_body("PROVIDER_ERROR", message),
        )

    logger.error("payment.error", error=str(exc), path=str(request.url.path))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("PAYMENT_ERROR", str(exc)),
    )


# ==================
# REQUEST MODELS
# ==================


class BillValidationRequest(BaseModel):
    biller_code: str
    account_number: str


class BillPaymentRequest(BaseModel):
    biller_code: str
    account_number: str
    amount: float = Field(gt=0)
    payer_phone: Optional[str] = None
    description: Optional[str] = None


class AirtimeRequest(BaseModel):
    phone_number: str
    amount: float = Field(gt=0)
    network: Optional[str] = None


class AccountValidationRequest(BaseModel):
    account_number: str
    bank_code: str


class BankTransferRequest(BaseModel):
    source_account: str
    destination_account: str
    destination_bank_code: str
    amount: float = Field(gt=0)
    currency: Optional[str] = None
    narration: Optional[str] = None
    sender_name: Optional[str] = None
    sender_phone: Optional[str] = None
    recipient_name: Optional[str] = None


class MobileTransferRequest(BaseModel):
    source_account: str
    mobile_number: str
    amount: float = Field(gt=0)
    network: Optional[str] = None
    currency: Optional[str] = None
    narration: Optional[str] = None
    sender_name: Optional[str] = None
    recipient_name: Optional[str] = None


class QRValidationRequest(BaseModel):
    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = None
    qr_data: Optional[str] = None


class QRPaymentRequest(BaseModel):
    source_account: str
    merchant_id: str
    merchant_name: str
    merchant_account: str
    merchant_bank: Optional[str] = Field(
        default=None, description="Bank code, or a bank name to resolve"
    )
    amount: float = Field(gt=0)
    reference: Optional[str] = None
    currency: Optional[str] = None
    sender_name: Optional[str] = None
    sender_phone: Optional[str] = None


class GovernmentPaymentRequest(BaseModel):
    control_number: str
    amount: float = Field(gt=0)
    payer_name: Optional[str] = None
    payer_phone: Optional[str] = None
    payer_email: Optional[str] = None
    payer_account: Optional[str] = None
    payment_method: str = "ACCOUNT"


class AvailabilityResponse(BaseModel):
    payment_type: str
    available: bool


class CacheInvalidationResponse(BaseModel):
    tenant_id: Optional[str]
    evicted: int


# ==================
# AVAILABILITY & HEALTH
# ==================


@router.get("/methods", response_model=List[PaymentMethod])
async def list_methods(orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    """Payment methods enabled for the tenant."""
    return orchestrator.get_available_methods()


@router.get("/availability/{payment_type}", response_model=AvailabilityResponse)
async def availability(
    payment_type: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    return AvailabilityResponse(
        payment_type=payment_type,
        available=orchestrator.is_available(payment_type.upper()),
    )


@router.get("/health", response_model=HealthReport)
async def health(orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.health_check()


# ==================
# BILLS & AIRTIME
# ==================


@router.get("/bills/billers", response_model=List[Biller])
async def list_billers(
    category: Optional[str] = None,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_billers(category)


@router.post("/bills/validate", response_model=BillerValidation)
async def validate_biller(
    body: BillValidationRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.validate_biller(body.biller_code, body.account_number)


@router.post("/bills/pay", response_model=TransactionRecord)
async def pay_bill(
    body: BillPaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.pay_bill(**body.model_dump())


@router.post("/airtime", response_model=TransactionRecord)
async def buy_airtime(
    body: AirtimeRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.buy_airtime(**body.model_dump())


# ==================
# TRANSFERS
# ==================


@router.get("/banks", response_model=List[Bank])
async def list_banks(orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.get_banks()


@router.post("/transfers/validate", response_model=AccountValidation)
async def validate_account(
    body: AccountValidationRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.validate_bank_account(
        body.account_number, body.bank_code
    )


@router.post("/transfers/bank", response_model=TransactionRecord)
async def transfer_to_bank(
    body: BankTransferRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    details = body.model_dump()
    details["currency"] = body.currency or get_settings().DEFAULT_CURRENCY
    return await orchestrator.transfer_to_bank(**details)


@router.post("/transfers/mobile", response_model=TransactionRecord)
async def transfer_to_mobile(
    body: MobileTransferRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    details = body.model_dump()
    details["currency"] = body.currency or get_settings().DEFAULT_CURRENCY
    return await orchestrator.transfer_to_mobile(**details)


# ==================
# QR PAY
# ==================


@router.post("/qr/validate", response_model=QRMerchantValidation)
async def validate_qr_merchant(
    body: QRValidationRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    if not body.merchant_id and not body.qr_data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Merchant ID or QR data is required",
        )
    return await orchestrator.validate_qr_merchant(
        merchant_id=body.merchant_id,
        merchant_name=body.merchant_name,
        qr_data=body.qr_data,
    )


@router.get("/qr/merchants/{merchant_id}", response_model=MerchantLookup)
async def lookup_qr_merchant(
    merchant_id: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    return await orchestrator.lookup_qr_merchant(merchant_id)


@router.post("/qr/pay", response_model=TransactionRecord)
async def pay_qr_merchant(
    body: QRPaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    bank_code = await orchestrator.resolve_merchant_bank(body.merchant_bank)

    result = await orchestrator.pay_qr_merchant(
        source_account=body.source_account,
        merchant_id=body.merchant_id,
        merchant_name=body.merchant_name,
        merchant_account=body.merchant_account,
        merchant_bank_code=bank_code,
        amount=body.amount,
        reference=body.reference,
        currency=body.currency or get_settings().DEFAULT_CURRENCY,
        sender_name=body.sender_name,
        sender_phone=body.sender_phone,
    )
    logger.info(
        "qr.payment_processed",
        tenant_id=orchestrator.tenant_id,
        reference=result.reference,
        merchant_id=body.merchant_id,
        amount=body.amount,
        status=result.status.value,
    )
    return result


# ==================
# GOVERNMENT PAYMENTS
# ==================


@router.get("/government/services", response_model=List[GovernmentServiceProvider])
async def list_government_services(
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_government_services()


@router.get("/government/bills/{control_number}", response_model=GovernmentBill)
async def lookup_control_number(
    control_number: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    return await orchestrator.lookup_control_number(control_number)


@router.post("/government/pay", response_model=TransactionRecord)
async def pay_government_bill(
    body: GovernmentPaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.pay_government_bill(**body.model_dump())


@router.get(
    "/government/receipts/{receipt_number}", response_model=ReceiptVerification
)
async def verify_receipt(
    receipt_number: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    return await orchestrator.verify_receipt(receipt_number)


# ==================
# STATUS & CACHE
# ==================


@router.get("/status/{provider}/{reference}", response_model=TransactionStatusResult)
async def transaction_status(
    provider: str,
    reference: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.check_transaction_status(reference, provider.lower())


@router.post("/cache/invalidate", response_model=CacheInvalidationResponse)
async def invalidate_cache(
    tenant_id: Optional[str] = None,
    cache: OrchestratorCache = Depends(get_orchestrator_cache),
):
    """Drop cached orchestrators so the next request rebuilds them from config.

    Evicted orchestrators are not closed: requests already holding one finish
    on it, and its HTTP clients are released once it is garbage collected.
    """
    evicted = cache.invalidate(tenant_id.lower() if tenant_id else None)
    return CacheInvalidationResponse(tenant_id=tenant_id, evicted=len(evicted))
