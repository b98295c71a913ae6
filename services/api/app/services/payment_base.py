from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol


class PaymentGatewayError(Exception):
    """Base class for payment gateway errors."""


class PaymentGatewayConfigError(PaymentGatewayError):
    def __init__(self, setting: str) -> None:
        super().__init__(f"Payment gateway is not configured. Set {setting} and retry.")
        self.setting = setting


class RefundRejectedError(PaymentGatewayError):
    def __init__(self, payment_reference: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(f"Refund for payment {payment_reference} was rejected: {reason}")
        self.payment_reference = payment_reference
        self.reason = reason
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class RefundReceipt:
    refund_id: str
    status: str
    amount: Decimal


class RefundGateway(Protocol):
    provider: str

    def refund(
        self,
        payment_reference: str,
        amount: Decimal,
        *,
        idempotency_key: str,
        reason: str | None = None,
    ) -> RefundReceipt: ...
