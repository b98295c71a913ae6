from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from dataclasses import dataclass
from decimal import Decimal

from services.api.app.services.payment_base import (
    PaymentGatewayConfigError,
    PaymentGatewayError,
    RefundReceipt,
    RefundRejectedError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _MercadoPagoConfig:
    access_token: str
    base_url: str
    timeout_seconds: float

    @classmethod
    def from_env(cls) -> "_MercadoPagoConfig":
        access_token = (os.getenv("MERCADOPAGO_ACCESS_TOKEN") or "").strip()
        if not access_token:
            raise PaymentGatewayConfigError("MERCADOPAGO_ACCESS_TOKEN")

        base_url = os.getenv("MERCADOPAGO_BASE_URL", "https://api.mercadopago.com").rstrip("/")
        timeout_seconds = float(os.getenv("MERCADOPAGO_TIMEOUT_SECONDS", "30"))
        return cls(access_token=access_token, base_url=base_url, timeout_seconds=timeout_seconds)


class MercadoPagoRefundGateway:
    """Refunds captured PIX/card payments through the Mercado Pago payments API.

    Partial refunds are supported by passing an explicit amount; the provider rejects
    amounts above what is still refundable on the payment.

    Env vars:
    - SAVEUP_PAYMENT_GATEWAY=mercadopago
    - MERCADOPAGO_ACCESS_TOKEN (required)
    - MERCADOPAGO_BASE_URL (default: https://api.mercadopago.com)
    - MERCADOPAGO_TIMEOUT_SECONDS (default: 30)
    """

    provider = "MERCADOPAGO"

    def __init__(self, cfg: _MercadoPagoConfig) -> None:
        self._cfg = cfg

    @classmethod
    def from_env(cls) -> "MercadoPagoRefundGateway":
        return cls(_MercadoPagoConfig.from_env())

    def refund(
        self,
        payment_reference: str,
        amount: Decimal,
        *,
        idempotency_key: str,
        reason: str | None = None,
    ) -> RefundReceipt:
        url = f"{self._cfg.base_url}/v1/payments/{payment_reference}/refunds"

        body: dict = {"amount": float(amount)}
        if reason:
            body["metadata"] = {"reason": reason}

        req = urllib.request.Request(url, method="POST")
        req.add_header("Authorization", f"Bearer {self._cfg.access_token}")
        req.add_header("Content-Type", "application/json")
        req.add_header("X-Idempotency-Key", idempotency_key)

        logger.info("Requesting refund of %s for payment %s", amount, payment_reference)

        try:
            with urllib.request.urlopen(
                req,
                data=json.dumps(body).encode("utf-8"),
                timeout=self._cfg.timeout_seconds,
            ) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace")
            raise RefundRejectedError(payment_reference, _error_message(raw), e.code) from e
        except urllib.error.URLError as e:
            raise PaymentGatewayError(f"Mercado Pago unreachable: {e.reason}") from e

        try:
            return RefundReceipt(
                refund_id=str(payload["id"]),
                status=str(payload.get("status") or "approved"),
                amount=Decimal(str(payload.get("amount", amount))),
            )
        except Exception as e:
            raise PaymentGatewayError(f"Unexpected Mercado Pago response shape: {payload!r}") from e


def _error_message(raw: str) -> str:
    try:
        data = json.loads(raw)
    except ValueError:
        return raw or "unknown error"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return raw
