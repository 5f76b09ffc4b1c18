"""
TIPS (Tanzania Instant Payment System) adapter.

Handles instant bank-to-bank and bank-to-mobile-money transfers, destination
account validation and merchant registry lookups for QR payments.
"""

import hashlib
import time
from typing import Dict, List, Optional

from pydantic import ValidationError

from app.payments.adapters.base import BasePaymentAdapter
from app.payments.config import TipsConfig
from app.payments.errors import ProviderHTTPError, ProviderResponseError
from app.payments.models import (
    AccountValidation,
    AdapterHealth,
    Bank,
    MerchantLookup,
    ProviderCategory,
    TransactionRecord,
    TransactionStatus,
    TransactionStatusResult,
)

ACCOUNT_TYPE_BANK = "BANK"
ACCOUNT_TYPE_MOBILE = "MOBILE"

MOBILE_NETWORK_CODES: Dict[str, str] = {
    "MPESA": "MPESA",
    "VODACOM": "MPESA",
    "TIGOPESA": "TIGOPESA",
    "TIGO": "TIGOPESA",
    "AIRTELMONEY": "AIRTELMONEY",
    "AIRTEL": "AIRTELMONEY",
    "HALOPESA": "HALOPESA",
    "HALOTEL": "HALOPESA",
}
DEFAULT_MOBILE_NETWORK = "MPESA"

STATUS_MAP: Dict[str, TransactionStatus] = {
    "PENDING": TransactionStatus.PENDING,
    "PROCESSING": TransactionStatus.PROCESSING,
    "SUCCESSFUL": TransactionStatus.COMPLETED,
    "COMPLETED": TransactionStatus.COMPLETED,
    "FAILED": TransactionStatus.FAILED,
    "REVERSED": TransactionStatus.REVERSED,
    "CANCELLED": TransactionStatus.CANCELLED,
}


def map_status(tips_status: Optional[str]) -> TransactionStatus:
    """Map a TIPS status to the normalized transaction status."""
    return STATUS_MAP.get(tips_status or "", TransactionStatus.UNKNOWN)


class TIPSAdapter(BasePaymentAdapter):
    """Adapter for the TIPS instant-transfer switch."""

    name = "TIPSAdapter"
    category = ProviderCategory.TIPS
    SANDBOX_URL = "https://sandbox.tips.co.tz/api/v1"
    PRODUCTION_URL = "https://api.tips.co.tz/api/v1"
    # TIPS can take longer
    DEFAULT_TIMEOUT = 60.0

    config: TipsConfig

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers["X-Institution-Code"] = self.config.institution_code or ""
        headers["X-API-Key"] = self.config.api_key or ""
        return headers

    def sign_request(self, body: str) -> Dict[str, str]:
        timestamp = str(int(time.time() * 1000))
        payload = body + timestamp + (self.config.api_secret or "")
        return {
            "X-Timestamp": timestamp,
            "X-Signature": hashlib.sha256(payload.encode()).hexdigest(),
        }

    async def validate_account(
        self,
        account_number: str,
        bank_code: str,
        account_type: str = ACCOUNT_TYPE_BANK,
    ) -> AccountValidation:
        """Validate a destination account and resolve the holder name."""
        data = await self._request_json(
            "POST",
            "/accounts/validate",
            {
                "account_number": account_number,
                "bank_code": bank_code,
                "account_type": account_type,
            },
        )
        details = data.get("data") or {}
        return AccountValidation(
            valid=bool(data.get("success")),
            account_name=details.get("account_name"),
            account_number=details.get("account_number"),
            bank_name=details.get("bank_name"),
            message=data.get("message"),
        )

    async def transfer(
        self,
        source_account: str,
        destination_account: str,
        destination_bank_code: Optional[str],
        amount: float,
        currency: str = "TZS",
        narration: Optional[str] = None,
        sender_name: Optional[str] = None,
        sender_phone: Optional[str] = None,
        recipient_name: Optional[str] = None,
        account_type: str = ACCOUNT_TYPE_BANK,
    ) -> TransactionRecord:
        """Transfer funds via TIPS."""
        self.validate_amount(amount)
        reference = self.generate_reference("TIPS")

        data = await self._request_json(
            "POST",
            "/transfers",
            {
                "transaction_reference": reference,
                "source_account": source_account,
                "destination_account": destination_account,
                "destination_bank_code": destination_bank_code,
                "destination_type": account_type,
                "amount": amount,
                "currency": currency,
                "narration": narration or "Fund Transfer",
                "sender_name": sender_name,
                "sender_phone": sender_phone,
                "recipient_name": recipient_name,
                "callback_url": self.config.callback_url,
            },
        )
        details = data.get("data") or {}

        transaction = TransactionRecord(
            reference=reference,
            type="TIPS_TRANSFER",
            amount=amount,
            currency=currency,
            status=map_status(details.get("status")),
            provider_reference=details.get("tips_reference"),
            message=data.get("message"),
            details={
                "source_account": source_account,
                "destination_account": destination_account,
                "destination_bank_code": destination_bank_code,
                "destination_type": account_type,
            },
        )
        self.log_transaction(transaction)
        return transaction

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
        """Transfer to a mobile money wallet (M-Pesa, Tigo Pesa, ...)."""
        return await self.transfer(
            source_account=source_account,
            destination_account=mobile_number,
            destination_bank_code=MOBILE_NETWORK_CODES.get(
                (network or "").upper(), DEFAULT_MOBILE_NETWORK
            ),
            amount=amount,
            currency=currency,
            narration=narration,
            sender_name=sender_name,
            recipient_name=recipient_name,
            account_type=ACCOUNT_TYPE_MOBILE,
        )

    async def get_banks(self) -> List[Bank]:
        """List participating banks."""
        data = await self._request_json("GET", "/banks")
        try:
            return [
                Bank(
                    code=bank["bank_code"],
                    name=bank["bank_name"],
                    swift_code=bank.get("swift_code"),
                    active=bank.get("is_active", True),
                )
                for bank in data.get("data") or []
            ]
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            raise ProviderResponseError(
                f"{self.name} returned a malformed bank list: {e}",
                provider=self.category.value,
            ) from e

    async def lookup_merchant(self, merchant_id: str) -> MerchantLookup:
        """Look a merchant up in the TIPS merchant registry."""
        try:
            data = await self._request_json("GET", f"/merchants/{merchant_id}")
        except ProviderHTTPError as e:
            if e.status_code == 404:
                return MerchantLookup(found=False, message="Merchant not found")
            raise

        merchant = data.get("data") or {}
        return MerchantLookup(
            found=True,
            merchant_id=merchant.get("merchant_id"),
            merchant_name=merchant.get("merchant_name"),
            account_number=merchant.get("account_number"),
            bank_code=merchant.get("bank_code"),
            bank_name=merchant.get("bank_name"),
            mcc=merchant.get("mcc"),
            city=merchant.get("city"),
        )

    async def check_status(self, reference: str) -> TransactionStatusResult:
        data = await self._request_json("GET", f"/transfers/{reference}/status")
        details = data.get("data") or {}
        return TransactionStatusResult(
            reference=reference,
            status=map_status(details.get("status")),
            provider_reference=details.get("tips_reference"),
            completed_at=details.get("completed_at"),
            failure_reason=details.get("failure_reason"),
            message=data.get("message"),
        )

    async def health_check(self) -> AdapterHealth:
        return await self._probe(self.get_banks)
