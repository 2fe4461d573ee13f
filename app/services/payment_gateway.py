"""Payment gateway signature verification.

Order creation happens client-side against the gateway.  We only verify
the callback: HMAC-SHA256 of ``"<order_id>|<payment_id>"`` keyed with the
gateway secret, compared in constant time.  Orders whose id starts with
``mock_order_`` are test orders and skip the signature check so the ledger
can be exercised without a live gateway.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Protocol, runtime_checkable

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

MOCK_ORDER_PREFIX = "mock_order_"


@runtime_checkable
class PaymentGateway(Protocol):
    def verify(self, *, order_id: str, payment_id: str, signature: str | None) -> bool: ...


class HmacPaymentGateway:
    def __init__(self, secret: str, *, allow_mock_orders: bool = True) -> None:
        self._secret = secret.encode()
        self._allow_mock_orders = allow_mock_orders

    def sign(self, order_id: str, payment_id: str) -> str:
        message = f"{order_id}|{payment_id}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(self, *, order_id: str, payment_id: str, signature: str | None) -> bool:
        if self._allow_mock_orders and order_id.startswith(MOCK_ORDER_PREFIX):
            logger.info("Accepting mock order=%s without signature", order_id)
            return True
        if not signature or not self._secret:
            return False
        return hmac.compare_digest(self.sign(order_id, payment_id), signature)


payment_gateway: PaymentGateway = HmacPaymentGateway(
    SETTINGS.payment_gateway_secret,
    allow_mock_orders=not SETTINGS.is_prod,
)
