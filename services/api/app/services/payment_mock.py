from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

from services.api.app.services.payment_base import RefundReceipt, RefundRejectedError


class MockPaymentGateway:
    """Approves every refund and remembers it.

    Payment references starting with ``fail_`` are rejected so the failure path can be
    exercised end to end without a real provider.
    """

    provider = "MOCK"

    def __init__(self) -> None:
        self.refunds: list[tuple[str, Decimal]] = []

    def refund(
        self,
        payment_reference: str,
        amount: Decimal,
        *,
        idempotency_key: str,
        reason: str | None = None,
    ) -> RefundReceipt:
        del idempotency_key, reason

        if payment_reference.startswith("fail_"):
            raise RefundRejectedError(payment_reference, "mock gateway rejection")

        self.refunds.append((payment_reference, amount))
        return RefundReceipt(refund_id=f"rf_{uuid4().hex[:10]}", status="approved", amount=amount)
