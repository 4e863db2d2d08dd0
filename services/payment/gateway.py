"""
services/payment/gateway.py
Razorpay client wrapper. Order calls go through a circuit breaker;
signature checks are local HMAC verification by the SDK.
"""

import logging
from typing import Optional

import razorpay
from fastapi.concurrency import run_in_threadpool
from pybreaker import CircuitBreakerError
from razorpay.errors import BadRequestError, SignatureVerificationError

from config.settings import settings
from shared.exceptions import PaymentGatewayError, ServiceUnavailable, ValidationError
from shared.utils.resilience import circuit_breaker_manager

logger = logging.getLogger(__name__)


class PaymentGateway:
    def __init__(
        self,
        key_id: str = settings.RAZORPAY_KEY_ID,
        key_secret: str = settings.RAZORPAY_KEY_SECRET,
        currency: str = settings.PAYMENT_CURRENCY,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.currency = currency
        self._client: Optional[razorpay.Client] = None

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @property
    def client(self) -> razorpay.Client:
        if self._client is None:
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    async def _call(self, action: str, fn, *args):
        """Run a blocking SDK call in the threadpool behind the razorpay breaker."""
        if not self.configured:
            logger.error(f"Razorpay credentials missing, cannot {action}")
            raise ServiceUnavailable("Payment service is not configured")

        breaker = circuit_breaker_manager.get_breaker("razorpay", exclude=[BadRequestError])
        try:
            return await run_in_threadpool(breaker.call, fn, *args)
        except CircuitBreakerError:
            logger.error(f"Razorpay circuit open, cannot {action}")
            raise ServiceUnavailable("Payment service temporarily unavailable")
        except BadRequestError as e:
            logger.warning(f"Razorpay rejected request to {action}: {str(e)}")
            raise
        except Exception as e:
            logger.error(f"Razorpay call to {action} failed: {str(e)}")
            raise PaymentGatewayError(f"Payment gateway error: {str(e)}")

    async def create_order(self, amount_paise: int, receipt: str, notes: Optional[dict] = None) -> dict:
        """Create a Razorpay order. The SDK is blocking, so it runs in the threadpool."""
        payload = {
            "amount": amount_paise,
            "currency": self.currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            order = await self._call("create order", self.client.order.create, payload)
        except BadRequestError as e:
            raise PaymentGatewayError(f"Payment gateway error: {str(e)}")

        logger.info(f"Razorpay order {order.get('id')} created for {amount_paise} paise")
        return order

    async def fetch_order(self, order_id: str) -> dict:
        try:
            return await self._call("fetch order", self.client.order.fetch, order_id)
        except BadRequestError:
            raise ValidationError("Unknown payment order")

    async def confirm_payment(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
        amount_paise: int,
        bus_route: str,
        destination: str,
    ) -> dict:
        """
        Accept a checkout result only when the signature verifies and the order
        it names was created for this amount, route and destination.
        """
        if not self.verify_signature(order_id, payment_id, signature):
            raise ValidationError("Payment verification failed")

        order = await self.fetch_order(order_id)
        # Razorpay returns an empty list instead of an object when no notes were set
        notes = order.get("notes") or {}
        if not isinstance(notes, dict):
            notes = {}
        if (
            order.get("amount") != amount_paise
            or notes.get("bus_route") != bus_route
            or notes.get("destination") != destination
        ):
            logger.warning(
                f"Payment {payment_id} on order {order_id} does not match "
                f"{bus_route}/{destination} ({amount_paise} paise)"
            )
            raise ValidationError("Payment does not match the selected route and destination")

        logger.info(f"Payment {payment_id} confirmed against order {order_id}")
        return order

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            logger.error("Razorpay secret missing, cannot verify payment signature")
            return False
        try:
            self.client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except SignatureVerificationError:
            logger.warning(f"Payment signature verification failed for order {order_id}")
            return False
        return True


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; one client per process."""
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway()
    return _gateway
