"""
Payment orchestrator.

Coordinates the payment adapters of one tenant. The adapters that exist are
decided once, at construction, from the tenant's integration flags; every
operation is dispatched to the single adapter category that implements it
and fails fast with ``CapabilityUnavailableError`` when that adapter was not
built. There is no fallback across provider categories and no retry.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

import structlog

from app.core.config import Settings, get_settings
from app.payments.adapters import (
    BasePaymentAdapter,
    GEPGAdapter,
    SelcomAdapter,
    TIPSAdapter,
)
from app.payments.config import ProviderConfig, TenantPaymentConfig
from app.payments.errors import CapabilityUnavailableError
from app.payments.models import (
    PAYMENT_TYPE_PROVIDERS,
    AccountValidation,
    AdapterHealth,
    Bank,
    Biller,
    BillerValidation,
    GovernmentBill,
    GovernmentServiceProvider,
    HealthReport,
    HealthState,
    MerchantLookup,
    PaymentMethod,
    PaymentType,
    ProviderCategory,
    QRMerchantValidation,
    ReceiptVerification,
    TransactionRecord,
    TransactionStatusResult,
)
from app.payments.qr import extract_merchant_account

logger = structlog.get_logger(__name__)

AdapterFactory = Callable[[ProviderConfig, str], Any]

BILLS_UNAVAILABLE = "Bill payment not available for this tenant"
AIRTIME_UNAVAILABLE = "Airtime purchase not available for this tenant"
BANK_TRANSFER_UNAVAILABLE = "Bank transfers not available for this tenant"
MOBILE_TRANSFER_UNAVAILABLE = "Mobile transfers not available for this tenant"
QR_UNAVAILABLE = "QR payments not available for this tenant"
GOVERNMENT_UNAVAILABLE = "Government payments not available for this tenant"

BANK_CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,11}$")

_METHODS: Dict[ProviderCategory, List[Tuple[PaymentType, str, str]]] = {
    ProviderCategory.SELCOM: [
        (
            PaymentType.BILL_PAYMENT,
            "Bill Payments",
            "Pay utility bills, subscriptions, and services",
        ),
        (PaymentType.AIRTIME, "Airtime & Data", "Buy airtime and data bundles"),
    ],
    ProviderCategory.TIPS: [
        (
            PaymentType.BANK_TRANSFER,
            "Bank Transfer",
            "Transfer to other bank accounts",
        ),
        (
            PaymentType.MOBILE_TRANSFER,
            "Mobile Money",
            "Send to mobile money wallets",
        ),
        (PaymentType.QR_PAYMENT, "QR Pay / TanQR", "Scan QR code to pay merchants"),
    ],
    ProviderCategory.GEPG: [
        (
            PaymentType.GOVERNMENT,
            "Government Payments",
            "Pay taxes, fees, and government services",
        ),
    ],
}


def default_adapter_factories(
    settings: Optional[Settings] = None,
) -> Dict[ProviderCategory, AdapterFactory]:
    """Adapter constructors keyed by category, with timeouts from settings."""
    settings = settings or get_settings()
    return {
        ProviderCategory.SELCOM: lambda cfg, tenant_id: SelcomAdapter(
            cfg, tenant_id, timeout=settings.SELCOM_TIMEOUT
        ),
        ProviderCategory.TIPS: lambda cfg, tenant_id: TIPSAdapter(
            cfg, tenant_id, timeout=settings.TIPS_TIMEOUT
        ),
        ProviderCategory.GEPG: lambda cfg, tenant_id: GEPGAdapter(
            cfg, tenant_id, timeout=settings.GEPG_TIMEOUT
        ),
    }


@dataclass(frozen=True)
class AdapterRegistry:
    """One optional adapter slot per provider category."""

    selcom: Optional[SelcomAdapter] = None
    tips: Optional[TIPSAdapter] = None
    gepg: Optional[GEPGAdapter] = None

    def get(self, category: ProviderCategory) -> Optional[BasePaymentAdapter]:
        return getattr(self, category.value)

    def items(self) -> Iterator[Tuple[ProviderCategory, BasePaymentAdapter]]:
        """Constructed adapters in category order."""
        for category in ProviderCategory:
            adapter = self.get(category)
            if adapter is not None:
                yield category, adapter

    def __len__(self) -> int:
        return sum(1 for _ in self.items())


def build_adapter_registry(
    config: TenantPaymentConfig,
    factories: Optional[Dict[ProviderCategory, AdapterFactory]] = None,
) -> AdapterRegistry:
    """Build exactly the adapters a tenant has enabled.

    Args:
        config: Tenant payment configuration
        factories: Adapter constructors per category (defaults to the real
            provider adapters)

    Returns:
        Registry with a slot filled for every enabled category
    """
    factories = factories or default_adapter_factories()
    adapters: Dict[str, Any] = {}

    for category in ProviderCategory:
        provider_config: ProviderConfig = getattr(config.integrations, category.value)
        if not provider_config.enabled:
            continue
        adapters[category.value] = factories[category](
            provider_config, config.tenant_id
        )
        logger.info(
            "adapter.initialized",
            provider=category.value,
            tenant_id=config.tenant_id,
        )

    return AdapterRegistry(**adapters)


class PaymentOrchestrator:
    """
    Unified payment API for one tenant.

    Built once per tenant (see ``OrchestratorCache``) and reused for the
    tenant's lifetime; rebuild it to pick up configuration changes.
    """

    def __init__(
        self,
        config: TenantPaymentConfig,
        factories: Optional[Dict[ProviderCategory, AdapterFactory]] = None,
    ):
        self.config = config
        self.tenant_id = config.tenant_id
        self.registry = build_adapter_registry(config, factories)

    def _require(self, category: ProviderCategory, message: str) -> Any:
        adapter = self.registry.get(category)
        if adapter is None:
            raise CapabilityUnavailableError(
                message, capability=category.value, tenant_id=self.tenant_id
            )
        return adapter

    # ==================
    # AVAILABILITY
    # ==================

    def is_available(self, payment_type: Union[PaymentType, str]) -> bool:
        """Whether ``payment_type`` has a backing adapter for this tenant."""
        try:
            category = PAYMENT_TYPE_PROVIDERS[PaymentType(payment_type)]
        except ValueError:
            return False
        return self.registry.get(category) is not None

    def get_available_methods(self) -> List[PaymentMethod]:
        """Payment methods currently enabled for this tenant (no network I/O)."""
        return [
            PaymentMethod(
                type=payment_type,
                name=name,
                description=description,
                provider=category,
            )
            for category, _ in self.registry.items()
            for payment_type, name, description in _METHODS[category]
        ]

    # ==================
    # BILL PAYMENTS
    # ==================

    async def get_billers(self, category: Optional[str] = None) -> List[Biller]:
        selcom = self._require(ProviderCategory.SELCOM, BILLS_UNAVAILABLE)
        return await selcom.get_billers(category)

    async def validate_biller(
        self, biller_code: str, account_number: str
    ) -> BillerValidation:
        selcom = self._require(ProviderCategory.SELCOM, BILLS_UNAVAILABLE)
        return await selcom.validate_biller(biller_code, account_number)

    async def pay_bill(
        self,
        biller_code: str,
        account_number: str,
        amount: float,
        payer_phone: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TransactionRecord:
        selcom = self._require(ProviderCategory.SELCOM, BILLS_UNAVAILABLE)
        return await selcom.pay_bill(
            biller_code=biller_code,
            customer_ref=account_number,
            amount=amount,
            phone=payer_phone,
            description=description,
        )

    async def buy_airtime(
        self, phone_number: str, amount: float, network: Optional[str] = None
    ) -> TransactionRecord:
        selcom = self._require(ProviderCategory.SELCOM, AIRTIME_UNAVAILABLE)
        return await selcom.buy_airtime(
            phone=phone_number, amount=amount, network=network
        )

    # ==================
    # BANK TRANSFERS (TIPS)
    # ==================

    async def get_banks(self) -> List[Bank]:
        tips = self._require(ProviderCategory.TIPS, BANK_TRANSFER_UNAVAILABLE)
        return await tips.get_banks()

    async def validate_bank_account(
        self, account_number: str, bank_code: str
    ) -> AccountValidation:
        tips = self._require(ProviderCategory.TIPS, BANK_TRANSFER_UNAVAILABLE)
        return await tips.validate_account(
            account_number=account_number, bank_code=bank_code, account_type="BANK"
        )

    async def transfer_to_bank(
        self,
        source_account: str,
        destination_account: str,
        destination_bank_code: str,
        amount: float,
        currency: str = "TZS",
        narration: Optional[str] = None,
        sender_name: Optional[str] = None,
        sender_phone: Optional[str] = None,
        recipient_name: Optional[str] = None,
    ) -> TransactionRecord:
        tips = self._require(ProviderCategory.TIPS, BANK_TRANSFER_UNAVAILABLE)
        return await tips.transfer(
            source_account=source_account,
            destination_account=destination_account,
            destination_bank_code=destination_bank_code,
            amount=amount,
            currency=currency,
            narration=narration,
            sender_name=sender_name,
            sender_phone=sender_phone,
            recipient_name=recipient_name,
            account_type="BANK",
        )

    async def transfer_to_mobile(
        self,
        source_account: str,
        mobile_number: str,
        amount: float,
        network: Optional[str] = None,
        currency: str = "TZS",
        narration: Optional[str] = None,
        sender_name: Optional[str] = None,
        recipient_name: Optional[str] = None,
    ) -> TransactionRecord:
        tips = self._require(ProviderCategory.TIPS, MOBILE_TRANSFER_UNAVAILABLE)
        return await tips.transfer_to_mobile(
            source_account=source_account,
            mobile_number=mobile_number,
            amount=amount,
            network=network,
            currency=currency,
            narration=narration,
            sender_name=sender_name,
            recipient_name=recipient_name,
        )

    # ==================
    # QR PAY / TanQR (via TIPS)
    # ==================

    async def validate_qr_merchant(
        self,
        merchant_id: Optional[str] = None,
        merchant_name: Optional[str] = None,
        qr_data: Optional[str] = None,
    ) -> QRMerchantValidation:
        """Decode the merchant account from the QR and validate it through TIPS."""
        tips = self._require(ProviderCategory.TIPS, QR_UNAVAILABLE)

        account = extract_merchant_account(qr_data, merchant_id)
        validation = await tips.validate_account(
            account_number=account.account_number,
            bank_code=account.bank_code,
            account_type="BANK",
        )

        return QRMerchantValidation(
            valid=validation.valid,
            merchant_name=validation.account_name or merchant_name,
            account_number=account.account_number,
            bank_code=account.bank_code,
            bank_name=validation.bank_name or account.bank_name,
            message=validation.message,
        )

    async def resolve_merchant_bank(
        self, merchant_bank: Optional[str]
    ) -> Optional[str]:
        """Accept a bank code as-is; otherwise match it against TIPS bank names."""
        tips = self._require(ProviderCategory.TIPS, QR_UNAVAILABLE)
        if not merchant_bank or BANK_CODE_PATTERN.match(merchant_bank):
            return merchant_bank

        needle = merchant_bank.lower()
        for bank in await tips.get_banks():
            if needle in bank.name.lower():
                return bank.code
        return merchant_bank

    async def lookup_qr_merchant(self, merchant_id: str) -> MerchantLookup:
        tips = self._require(ProviderCategory.TIPS, QR_UNAVAILABLE)
        return await tips.lookup_merchant(merchant_id)

    async def pay_qr_merchant(
        self,
        source_account: str,
        merchant_id: str,
        merchant_name: str,
        merchant_account: str,
        merchant_bank_code: Optional[str],
        amount: float,
        reference: Optional[str] = None,
        currency: str = "TZS",
        sender_name: Optional[str] = None,
        sender_phone: Optional[str] = None,
    ) -> TransactionRecord:
        """Pay a QR merchant with a TIPS bank transfer."""
        tips = self._require(ProviderCategory.TIPS, QR_UNAVAILABLE)

        logger.info(
            "qr.payment_started",
            tenant_id=self.tenant_id,
            merchant_id=merchant_id,
            amount=amount,
        )

        narration = f"QR Payment to {merchant_name}"
        if reference:
            narration = f"{narration} - {reference}"

        result = await tips.transfer(
            source_account=source_account,
            destination_account=merchant_account,
            destination_bank_code=merchant_bank_code,
            amount=amount,
            currency=currency,
            narration=narration,
            sender_name=sender_name,
            sender_phone=sender_phone,
            recipient_name=merchant_name,
            account_type="BANK",
        )

        return result.model_copy(
            update={
                "payment_type": PaymentType.QR_PAYMENT,
                "merchant_id": merchant_id,
                "merchant_name": merchant_name,
                "qr_reference": reference,
            }
        )

    # ==================
    # GOVERNMENT PAYMENTS (GEPG)
    # ==================

    async def get_government_services(self) -> List[GovernmentServiceProvider]:
        gepg = self._require(ProviderCategory.GEPG, GOVERNMENT_UNAVAILABLE)
        return await gepg.get_service_providers()

    async def lookup_control_number(self, control_number: str) -> GovernmentBill:
        gepg = self._require(ProviderCategory.GEPG, GOVERNMENT_UNAVAILABLE)
        return await gepg.lookup_bill(control_number)

    async def pay_government_bill(
        self,
        control_number: str,
        amount: float,
        payer_name: Optional[str] = None,
        payer_phone: Optional[str] = None,
        payer_email: Optional[str] = None,
        payer_account: Optional[str] = None,
        payment_method: str = "ACCOUNT",
    ) -> TransactionRecord:
        gepg = self._require(ProviderCategory.GEPG, GOVERNMENT_UNAVAILABLE)
        return await gepg.pay_bill(
            control_number=control_number,
            amount=amount,
            payer_name=payer_name,
            payer_phone=payer_phone,
            payer_email=payer_email,
            payer_account=payer_account,
            payment_method=payment_method,
        )

    async def verify_receipt(self, receipt_number: str) -> ReceiptVerification:
        gepg = self._require(ProviderCategory.GEPG, GOVERNMENT_UNAVAILABLE)
        return await gepg.verify_receipt(receipt_number)

    # ==================
    # TRANSACTION STATUS
    # ==================

    async def check_transaction_status(
        self, reference: str, provider: Union[ProviderCategory, str]
    ) -> TransactionStatusResult:
        """Ask the provider that executed ``reference`` for its status."""
        message = f"Provider {getattr(provider, 'value', provider)} not available"
        try:
            category = ProviderCategory(provider)
        except ValueError:
            raise CapabilityUnavailableError(
                message, capability=str(provider), tenant_id=self.tenant_id
            ) from None

        adapter = self._require(category, message)
        return await adapter.check_status(reference)

    # ==================
    # HEALTH CHECK
    # ==================

    async def health_check(self) -> HealthReport:
        """Probe every constructed adapter; never raises."""
        report = HealthReport(tenant_id=self.tenant_id)

        for category, adapter in self.registry.items():
            try:
                health = await adapter.health_check()
            except Exception as e:
                logger.warning(
                    "health.adapter_failed",
                    tenant_id=self.tenant_id,
                    provider=category.value,
                    error=str(e),
                )
                health = AdapterHealth(
                    adapter=getattr(adapter, "name", category.value),
                    status=HealthState.UNHEALTHY,
                    error=str(e),
                )

            report.adapters[category.value] = health
            if health.status != HealthState.HEALTHY:
                report.overall = HealthState.DEGRADED

        return report

    async def aclose(self) -> None:
        """Close the HTTP clients of every constructed adapter."""
        for _, adapter in self.registry.items():
            await adapter.aclose()
