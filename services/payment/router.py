"""
services/payment/router.py
Razorpay checkout support: order creation for the catalog fare and
client-side payment signature verification.
"""

import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.catalog.service import FareCatalog
from services.payment.gateway import PaymentGateway, get_payment_gateway
from shared.exceptions import NotFound, ValidationError
from shared.schemas.schemas import PaymentOrderRequest, PaymentVerifyRequest
from shared.utils.responses import envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["Payments"])


@router.post("/order")
async def create_payment_order(
    data: PaymentOrderRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Create a Razorpay order for the fare of (busRoute, destination).
    The amount is always taken from the catalog, never from the client.
    Client uses order id + key id to open Razorpay checkout.
    """
    try:
        quote = await FareCatalog(db).get_fare(data.bus_route, data.destination)
    except NotFound:
        raise ValidationError("Invalid bus route or destination")
    if quote.fare <= 0:
        raise ValidationError("No payment required for this destination")

    receipt = data.receipt or f"bp-{uuid.uuid4().hex[:12]}"
    order = await gateway.create_order(
        amount_paise=quote.fare * 100,
        receipt=receipt,
        notes={"bus_route": quote.route_code, "destination": quote.stop_name},
    )
    return envelope(
        {
            "order": order,
            "keyId": gateway.key_id,
            "amount": quote.fare * 100,
            "fare": quote.fare,
        }
    )


@router.post("/verify")
async def verify_payment(
    data: PaymentVerifyRequest,
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    if not gateway.verify_signature(
        data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature
    ):
        raise ValidationError("Payment signature verification failed")

    logger.info(f"Payment verified: order {data.razorpay_order_id}")
    return {"success": True}
