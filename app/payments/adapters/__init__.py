"""Payment provider adapter implementations."""

from app.payments.adapters.base import BasePaymentAdapter
from app.payments.adapters.gepg import GEPGAdapter
from app.payments.adapters.selcom import SelcomAdapter
from app.payments.adapters.tips import TIPSAdapter

__all__ = ["BasePaymentAdapter", "SelcomAdapter", "TIPSAdapter", "GEPGAdapter"]
