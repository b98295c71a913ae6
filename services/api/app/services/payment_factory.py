from __future__ import annotations

import os

from services.api.app.services.payment_base import RefundGateway
from services.api.app.services.payment_mock import MockPaymentGateway


def get_refund_gateway() -> RefundGateway:
    """Select a refund gateway based on env vars.

    Defaults to the mock gateway so tests and local dev never move real money unless
    explicitly configured otherwise.
    """

    mode = os.getenv("SAVEUP_PAYMENT_GATEWAY", "mock").strip().lower()

    if mode == "mock":
        return MockPaymentGateway()

    if mode in ("mercadopago", "pix"):
        from services.api.app.services.mercadopago_gateway import MercadoPagoRefundGateway

        return MercadoPagoRefundGateway.from_env()

    raise ValueError(f"Unknown SAVEUP_PAYMENT_GATEWAY={mode!r}. Expected mock or mercadopago.")
