"""
Selcom bill payment adapter.

Handles bill payments and airtime via the Selcom aggregator: prepaid
electricity (LUKU), water, pay-TV and mobile network airtime bundles.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import ValidationError

from app.payments.adapters.base import BasePaymentAdapter
from app.payments.config import SelcomConfig
from app.payments.errors import ProviderResponseError
from app.payments.models import (
    AdapterHealth,
    Biller,
    BillerValidation,
    ProviderCategory,
    TransactionRecord,
    TransactionStatus,
    TransactionStatusResult,
)

AIRTIME_BILLER_CODES: Dict[str, str] = {
    "VODACOM": "VODABUNDLES",
    "AIRTEL": "AIRTELBUNDLES",
    "TIGO": "TIGOBUNDLES",
    "HALOTEL": "HALOBUNDLES",
}
DEFAULT_AIRTIME_BILLER = "VODABUNDLES"

SIGNED_FIELDS = "transid,amount,msisdn"


def _result_status(data: Dict) -> TransactionStatus:
    if data.get("result") == "SUCCESS":
        return TransactionStatus.COMPLETED
    return TransactionStatus.FAILED


class SelcomAdapter(BasePaymentAdapter):
    """Adapter for the Selcom bill and airtime aggregator."""

    name = "SelcomAdapter"
    category = ProviderCategory.SELCOM
    SANDBOX_URL = "https://apigw.selcommobile.com/v1/sandbox"
    PRODUCTION_URL = "https://apigw.selcommobile.com/v1"
    DEFAULT_TIMEOUT = 30.0

    config: SelcomConfig

    def _digest(self, body: str, timestamp: str) -> str:
        """Base64 HMAC-SHA256 of body + timestamp keyed by the API secret."""
        secret = (self.config.api_secret or "").encode()
        mac = hmac.new(secret, (body + timestamp).encode(), hashlib.sha256)
        return base64.b64encode(mac.digest()).decode()

    def sign_request(self, body: str) -> Dict[str, str]:
        timestamp = datetime.now(timezone.utc).isoformat()
        digest = self._digest(body, timestamp)
        return {
            "Authorization": f"SELCOM {self.config.api_key}:{digest}",
            "Digest": f"SHA256={digest}",
            "Timestamp": timestamp,
            "Signed-Fields": SIGNED_FIELDS,
        }

    async def get_billers(self, category: Optional[str] = None) -> List[Biller]:
        """List billers, optionally restricted to one category."""
        data = await self._request_json("GET", "/checkout/billers")
        try:
            billers = [
                Biller(
                    code=item.get("biller_code") or item.get("code"),
                    name=item.get("biller_name") or item.get("name"),
                    category=item.get("category"),
                )
                for item in data.get("data") or []
            ]
        except (AttributeError, ValidationError) as e:
            raise ProviderResponseError(
                f"{self.name} returned a malformed biller list: {e}",
                provider=self.category.value,
            ) from e
        if category:
            billers = [
                b for b in billers if (b.category or "").lower() == category.lower()
            ]
        return billers

    async def validate_biller(
        self, biller_code: str, customer_ref: str
    ) -> BillerValidation:
        """Validate a bill / meter number with the biller."""
        data = await self._request_json(
            "POST",
            "/checkout/bill-validation",
            {
                "vendor": self.config.vendor_id,
                "biller_code": biller_code,
                "customer_ref": customer_ref,
            },
        )
        details = data.get("data") or {}
        return BillerValidation(
            valid=data.get("result") == "SUCCESS",
            customer_name=details.get("customer_name"),
            balance=details.get("balance"),
            message=data.get("message"),
        )

    async def pay_bill(
        self,
        biller_code: str,
        customer_ref: str,
        amount: float,
        phone: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TransactionRecord:
        """Pay a bill (LUKU, water, TV, ...)."""
        self.validate_amount(amount)
        reference = self.generate_reference("BILL")

        data = await self._request_json(
            "POST",
            "/checkout/bill-payment",
            {
                "vendor": self.config.vendor_id,
                "transid": reference,
                "biller_code": biller_code,
                "customer_ref": customer_ref,
                "amount": amount,
                "msisdn": phone,
                "narration": description or f"Bill payment - {biller_code}",
                "callback_url": self.config.callback_url,
            },
        )
        details = data.get("data") or {}

        transaction = TransactionRecord(
            reference=reference,
            type="BILL_PAYMENT",
            amount=amount,
            status=_result_status(data),
            provider_reference=details.get("reference"),
            message=data.get("message"),
            details={
                "biller_code": biller_code,
                "customer_ref": customer_ref,
                # LUKU token
                "token": details.get("token"),
            },
        )
        self.log_transaction(transaction)
        return transaction

    async def buy_airtime(
        self, phone: str, amount: float, network: Optional[str] = None
    ) -> TransactionRecord:
        """Buy airtime for a mobile number."""
        self.validate_amount(amount)
        reference = self.generate_reference("AIR")
        biller_code = AIRTIME_BILLER_CODES.get(
            (network or "").upper(), DEFAULT_AIRTIME_BILLER
        )

        data = await self._request_json(
            "POST",
            "/checkout/airtime-topup",
            {
                "vendor": self.config.vendor_id,
                "transid": reference,
                "msisdn": phone,
                "amount": amount,
                "biller_code": biller_code,
                "callback_url": self.config.callback_url,
            },
        )
        details = data.get("data") or {}

        transaction = TransactionRecord(
            reference=reference,
            type="AIRTIME",
            amount=amount,
            status=_result_status(data),
            provider_reference=details.get("reference"),
            message=data.get("message"),
            details={"phone": phone, "network": network},
        )
        self.log_transaction(transaction)
        return transaction

    async def check_status(self, reference: str) -> TransactionStatusResult:
        data = await self._request_json("GET", f"/checkout/order-status/{reference}")
        details = data.get("data") or {}
        payment_status = (details.get("payment_status") or "").upper()
        try:
            status = TransactionStatus(payment_status)
        except ValueError:
            status = TransactionStatus.UNKNOWN
        return TransactionStatusResult(
            reference=reference,
            status=status,
            provider_reference=details.get("reference"),
            message=data.get("message"),
        )

    async def health_check(self) -> AdapterHealth:
        return await self._probe(self.get_billers)
