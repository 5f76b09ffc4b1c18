"""
Merchant QR payload decoding.

Merchant-presented QR codes follow the EMVCo tag-length-value layout: each
field is a 2-digit tag, a 2-digit decimal length and exactly that many
characters of value. Templates 26..51 carry Merchant Account Information as
a nested TLV sequence; from those we pull the destination account number and
bank code used to route a QR payment over the instant-transfer switch.

This is not a full EMVCo parser: the CRC (tag 63) is not checked and only
the nested tags needed for routing are interpreted.

Decoding never raises. ``parse_merchant_account`` returns a ``QRParseResult``
and ``extract_merchant_account`` falls back to the caller's merchant id when
parsing failed or there was nothing to parse.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import structlog

from app.payments.models import MerchantAccountInfo

logger = structlog.get_logger(__name__)

MERCHANT_ACCOUNT_TAG_MIN = 26
MERCHANT_ACCOUNT_TAG_MAX = 51

NESTED_GUID = "00"
NESTED_ACCOUNT_NUMBER = "01"
NESTED_BANK_CODE = "02"

TZ_GUID_PREFIX = "TZ."

TLVField = Tuple[str, str]


@dataclass
class _AccountAccumulator:
    """Output threaded through the whole parse.

    Every nested field overwrites what an earlier one wrote, including fields
    from an earlier Merchant Account Information template, so the last
    template in the payload wins.
    """

    account_number: Optional[str] = None
    bank_code: str = ""


@dataclass(frozen=True)
class QRParseResult:
    """Outcome of parsing a QR payload."""

    ok: bool
    account_number: Optional[str] = None
    bank_code: str = ""
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "QRParseResult":
        return cls(ok=False, error=error)


def _is_two_digits(value: str) -> bool:
    return len(value) == 2 and value.isascii() and value.isdigit()


def split_tlv(data: str) -> Tuple[List[TLVField], Optional[str]]:
    """Split a TLV string into (tag, value) pairs.

    Args:
        data: TLV-encoded string

    Returns:
        Tuple of the fields read and an error message. The error is None when
        the whole string was consumed; otherwise the fields are empty.
    """
    fields: List[TLVField] = []
    position = 0
    end = len(data)

    while position < end:
        if position + 4 > end:
            return [], f"truncated field header at position {position}"

        tag = data[position : position + 2]
        raw_length = data[position + 2 : position + 4]
        if not _is_two_digits(tag):
            return [], f"non-numeric tag {tag!r} at position {position}"
        if not _is_two_digits(raw_length):
            return [], f"malformed length {raw_length!r} at position {position + 2}"

        length = int(raw_length)
        position += 4
        if position + length > end:
            return [], (
                f"tag {tag} declares length {length} but only "
                f"{end - position} characters remain"
            )

        fields.append((tag, data[position : position + length]))
        position += length

    return fields, None


def _apply_nested_field(acc: _AccountAccumulator, tag: str, value: str) -> None:
    if tag == NESTED_GUID:
        if value.startswith(TZ_GUID_PREFIX):
            parts = value.split(".")
            if len(parts) >= 3:
                acc.bank_code = parts[2]
    elif tag == NESTED_ACCOUNT_NUMBER:
        acc.account_number = value
    elif tag == NESTED_BANK_CODE:
        acc.bank_code = value


def parse_merchant_account(qr_data: str) -> QRParseResult:
    """Parse the Merchant Account Information templates of a QR payload.

    Args:
        qr_data: Raw QR payload

    Returns:
        Parse result. On success ``account_number`` is None when no template
        carried an account number.
    """
    acc = _AccountAccumulator()

    fields, error = split_tlv(qr_data)
    if error:
        return QRParseResult.failure(error)

    for tag, value in fields:
        if not MERCHANT_ACCOUNT_TAG_MIN <= int(tag) <= MERCHANT_ACCOUNT_TAG_MAX:
            continue

        nested, error = split_tlv(value)
        if error:
            return QRParseResult.failure(f"template {tag}: {error}")

        for nested_tag, nested_value in nested:
            _apply_nested_field(acc, nested_tag, nested_value)

    return QRParseResult(
        ok=True, account_number=acc.account_number, bank_code=acc.bank_code
    )


def extract_merchant_account(
    qr_data: Optional[str], merchant_id: Optional[str]
) -> MerchantAccountInfo:
    """Resolve the destination account for a QR payment.

    Args:
        qr_data: Raw QR payload, may be empty
        merchant_id: Identifier to fall back on when the payload is absent
            or malformed

    Returns:
        Merchant account info. ``bank_name`` is always empty here; name
        resolution is a separate lookup against the transfer switch.
    """
    fallback = MerchantAccountInfo(account_number=merchant_id or "")

    if not qr_data:
        return fallback

    result = parse_merchant_account(qr_data)
    if not result.ok:
        logger.warning(
            "qr.parse_failed",
            reason=result.error,
            merchant_id=merchant_id,
        )
        return fallback

    account_number = result.account_number
    if account_number is None:
        account_number = merchant_id or ""

    return MerchantAccountInfo(
        account_number=account_number, bank_code=result.bank_code
    )
