"""
GePG (Government Electronic Payment Gateway) adapter.

Handles government payments (taxes, fees, licences) identified by control
numbers. GePG speaks signed XML: every request body is serialized, signed
with the tenant's RSA key and wrapped in a ``gepgSignedRequest`` envelope;
signed responses are verified against the GePG public key outside sandbox.
"""

import base64
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from xml.etree import ElementTree

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from app.payments.adapters.base import BasePaymentAdapter
from app.payments.config import GepgConfig
from app.payments.errors import (
    PaymentValidationError,
    ProviderResponseError,
    ProviderSignatureError,
)
from app.payments.models import (
    AdapterHealth,
    BillStatus,
    GovernmentBill,
    GovernmentServiceProvider,
    ProviderCategory,
    ReceiptVerification,
    TransactionRecord,
    TransactionStatus,
    TransactionStatusResult,
)

PAYMENT_STATUS_MAP: Dict[str, TransactionStatus] = {
    "PENDING": TransactionStatus.PENDING,
    "PROCESSING": TransactionStatus.PROCESSING,
    "SUCCESSFUL": TransactionStatus.COMPLETED,
    "SUCCESS": TransactionStatus.COMPLETED,
    "COMPLETED": TransactionStatus.COMPLETED,
    "FAILED": TransactionStatus.FAILED,
    "REJECTED": TransactionStatus.FAILED,
}

AMOUNT_TOLERANCE = 0.01


def map_bill_status(status: Optional[str]) -> BillStatus:
    try:
        return BillStatus(status or "")
    except ValueError:
        return BillStatus.UNKNOWN


def map_payment_status(status: Optional[str]) -> TransactionStatus:
    return PAYMENT_STATUS_MAP.get(status or "", TransactionStatus.UNKNOWN)


def _append(parent: ElementTree.Element, tag: str, value: Any) -> None:
    if isinstance(value, list):
        for item in value:
            _append(parent, tag, item)
        return

    child = ElementTree.SubElement(parent, tag)
    if isinstance(value, dict):
        for key, item in value.items():
            _append(child, key, item)
    elif value is not None:
        child.text = str(value)


def build_xml(root_tag: str, body: Dict[str, Any]) -> str:
    """Serialize a nested dict to an XML document without declaration."""
    root = ElementTree.Element(root_tag)
    for key, value in body.items():
        _append(root, key, value)
    return ElementTree.tostring(root, encoding="unicode")


def element_to_dict(element: ElementTree.Element) -> Any:
    """Convert an element to plain data.

    Leaf elements become their text; repeated child tags become lists.
    """
    children = list(element)
    if not children:
        return (element.text or "").strip()

    result: Dict[str, Any] = {}
    for child in children:
        value = element_to_dict(child)
        if child.tag in result:
            existing = result[child.tag]
            if not isinstance(existing, list):
                result[child.tag] = [existing]
            result[child.tag].append(value)
        else:
            result[child.tag] = value
    return result


def _as_list(value: Any) -> List[Any]:
    if not value:
        return []
    return value if isinstance(value, list) else [value]


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class GEPGAdapter(BasePaymentAdapter):
    """Adapter for the government payment gateway."""

    name = "GEPGAdapter"
    category = ProviderCategory.GEPG
    SANDBOX_URL = "https://uat.gepg.go.tz/api/v1"
    PRODUCTION_URL = "https://api.gepg.go.tz/api/v1"
    DEFAULT_TIMEOUT = 60.0
    CONTENT_TYPE = "application/xml"

    config: GepgConfig

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers["Accept"] = "application/xml"
        return headers

    def _generate_signature(self, data: str) -> str:
        """RSA-SHA256 signature of ``data`` with the tenant's private key."""
        if not self.config.private_key:
            raise ProviderSignatureError(
                "GePG private key not configured", provider=self.category.value
            )
        try:
            key = serialization.load_pem_private_key(
                self.config.private_key.encode(), password=None
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise ProviderSignatureError(
                f"GePG private key cannot be loaded: {e}", provider=self.category.value
            ) from e
        signature = key.sign(data.encode(), padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode()

    def _verify_signature(self, data: str, signature: str) -> bool:
        if not self.config.gepg_public_key:
            return False
        try:
            key = serialization.load_pem_public_key(
                self.config.gepg_public_key.encode()
            )
        except (ValueError, UnsupportedAlgorithm) as e:
            raise ProviderSignatureError(
                f"GePG public key cannot be loaded: {e}", provider=self.category.value
            ) from e
        try:
            key.verify(
                base64.b64decode(signature),
                data.encode(),
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except (InvalidSignature, ValueError):
            return False
        return True

    def build_signed_request(self, operation: str, data: Dict[str, Any]) -> str:
        """Build the signed XML envelope for ``operation``."""
        xml = build_xml(
            "gepgServiceRequest",
            {
                "requestHeader": {
                    "systemId": self.config.system_id,
                    "spCode": self.config.sp_code,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "operation": operation,
                },
                "requestBody": data,
            },
        )
        signature = self._generate_signature(xml)
        request_data = base64.b64encode(xml.encode()).decode()
        return (
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            "<gepgSignedRequest>"
            f"<requestData>{request_data}</requestData>"
            f"<signature>{signature}</signature>"
            "</gepgSignedRequest>"
        )

    def parse_response(self, xml_response: str) -> Dict[str, Any]:
        """Parse (and verify, outside sandbox) a GePG XML response."""
        try:
            root = ElementTree.fromstring(xml_response)
            if root.tag == "gepgSignedResponse":
                envelope = element_to_dict(root)
                response_data = base64.b64decode(
                    envelope.get("responseData", "")
                ).decode("utf-8")

                if not self.config.sandbox and not self._verify_signature(
                    response_data, envelope.get("signature", "")
                ):
                    raise ProviderSignatureError(
                        "Invalid GEPG response signature",
                        provider=self.category.value,
                    )
                root = ElementTree.fromstring(response_data)
        except (ElementTree.ParseError, ValueError) as e:
            raise ProviderResponseError(
                f"Unparseable GePG response: {e}", provider=self.category.value
            ) from e

        parsed = element_to_dict(root)
        return parsed if isinstance(parsed, dict) else {}

    async def _call(
        self, operation: str, path: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Send a signed operation and return its ``responseBody``."""
        response = await self._send(
            "POST", path, content=self.build_signed_request(operation, data)
        )
        parsed = self.parse_response(response.text)
        body = parsed.get("responseBody")
        return body if isinstance(body, dict) else {}

    async def get_service_providers(self) -> List[GovernmentServiceProvider]:
        """List service providers (ministries, departments, agencies)."""
        body = await self._call("GET_SP_LIST", "/mdas", {})
        return [
            GovernmentServiceProvider(
                code=sp.get("spCode", ""),
                name=sp.get("spName", ""),
                services=_as_list(sp.get("services")),
            )
            for sp in _as_list(body.get("spList"))
            if isinstance(sp, dict)
        ]

    async def lookup_bill(self, control_number: str) -> GovernmentBill:
        """Look up the bill behind a control number."""
        body = await self._call(
            "BILL_INQUIRY", "/bills/inquiry", {"controlNumber": control_number}
        )
        bill = body.get("billInfo")
        if not isinstance(bill, dict):
            return GovernmentBill(found=False, message="Control number not found")

        return GovernmentBill(
            found=True,
            control_number=bill.get("controlNumber"),
            bill_id=bill.get("billId"),
            payer_name=bill.get("payerName"),
            payer_id=bill.get("payerId"),
            amount=_to_float(bill.get("billAmount")),
            currency=bill.get("currency") or "TZS",
            description=bill.get("billDesc"),
            service_provider=bill.get("spName"),
            sp_code=bill.get("spCode"),
            expiry_date=bill.get("billExpiryDate"),
            status=map_bill_status(bill.get("billStatus")),
        )

    async def pay_bill(
        self,
        control_number: str,
        amount: float,
        payer_name: Optional[str] = None,
        payer_phone: Optional[str] = None,
        payer_email: Optional[str] = None,
        payer_account: Optional[str] = None,
        payment_method: str = "ACCOUNT",
    ) -> TransactionRecord:
        """Pay a government bill by control number."""
        self.validate_amount(amount)

        bill = await self.lookup_bill(control_number)
        if not bill.found:
            raise PaymentValidationError("Invalid control number")
        if bill.status == BillStatus.PAID:
            raise PaymentValidationError("Bill already paid")
        if bill.status == BillStatus.EXPIRED:
            raise PaymentValidationError("Control number expired")
        if abs((bill.amount or 0.0) - amount) > AMOUNT_TOLERANCE:
            raise PaymentValidationError(
                f"Amount mismatch. Expected {bill.amount}, got {amount}"
            )

        reference = self.generate_reference("GEPG")
        body = await self._call(
            "PAYMENT",
            "/payments",
            {
                "paymentInfo": {
                    "controlNumber": control_number,
                    "billId": bill.bill_id,
                    "spCode": bill.sp_code,
                    "transactionId": reference,
                    "payerName": payer_name,
                    "payerPhone": payer_phone,
                    "payerEmail": payer_email or "",
                    "payerAccount": payer_account,
                    "paymentAmount": amount,
                    "paymentCurrency": "TZS",
                    "paymentMethod": payment_method,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            },
        )
        result = body.get("paymentResult") or {}

        transaction = TransactionRecord(
            reference=reference,
            type="GEPG_PAYMENT",
            amount=amount,
            status=map_payment_status(result.get("status")),
            provider_reference=result.get("receiptNumber"),
            message=result.get("message") or "Payment submitted",
            details={
                "control_number": control_number,
                "bill_id": bill.bill_id,
                "service_provider": bill.service_provider,
            },
        )
        self.log_transaction(transaction)
        return transaction

    async def verify_receipt(self, receipt_number: str) -> ReceiptVerification:
        """Verify a payment receipt."""
        body = await self._call(
            "RECEIPT_INQUIRY", "/receipts/verify", {"receiptNumber": receipt_number}
        )
        receipt = body.get("receiptInfo") or {}
        return ReceiptVerification(
            valid=str(receipt.get("valid", "")).lower() == "true",
            receipt_number=receipt.get("receiptNumber"),
            control_number=receipt.get("controlNumber"),
            amount=_to_float(receipt.get("amount")),
            payment_date=receipt.get("paymentDate"),
            payer_name=receipt.get("payerName"),
            service_provider=receipt.get("spName"),
        )

    async def check_status(self, reference: str) -> TransactionStatusResult:
        body = await self._call(
            "PAYMENT_STATUS", "/payments/status", {"transactionId": reference}
        )
        info = body.get("statusInfo") or {}
        return TransactionStatusResult(
            reference=reference,
            status=map_payment_status(info.get("status")),
            provider_reference=info.get("receiptNumber"),
            completed_at=info.get("paymentDate"),
            message=info.get("message"),
        )

    async def health_check(self) -> AdapterHealth:
        return await self._probe(self.get_service_providers)
