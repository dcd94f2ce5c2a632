from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from ..logging_config import logger
from ..models.schemas import OperationClass, PaymentOrder, PaymentOrderRequest, PaymentResult, PaymentVerification
from ..services.container import Services
from ..utils.auth import get_current_user_id, get_services, throttled

router = APIRouter(prefix="/api/v1", tags=["account"])


async def _load_or_404(services: Services, user_id: str):
    user = await services.store.load(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail={"error_code": "NOT_FOUND", "message": "User record not found"})
    return user


@router.get("/usage")
async def usage(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    user = await _load_or_404(services, user_id)
    decision = services.ledger.can_generate(user)
    snapshot = services.ledger.usage_snapshot(user)
    snapshot["canGenerate"] = decision.model_dump(mode="json")
    return snapshot


@router.post("/payments/order", response_model=PaymentOrder)
async def create_payment_order(
    payload: PaymentOrderRequest,
    user_id: str = Depends(throttled(OperationClass.PAYMENT_ORDER)),
    services: Services = Depends(get_services),
) -> PaymentOrder:
    settings = services.settings
    order = await services.payments.create_order(user_id, settings.premium_price_paise, settings.premium_currency, payload.plan)
    services.store.record_order(order.id, user_id)
    logger.info("payment.order_created", user_id=user_id, order_id=order.id, simulated=order.simulated)
    return order


@router.post("/payments/verify", response_model=PaymentResult)
async def verify_payment(
    payload: PaymentVerification,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> PaymentResult:
    valid = services.payments.verify_signature(
        payload.razorpay_order_id, payload.razorpay_payment_id, payload.razorpay_signature
    )
    if not valid:
        logger.warning("payment.signature_invalid", user_id=user_id, order_id=payload.razorpay_order_id)
        raise HTTPException(status_code=400, detail={"error_code": "INVALID_SIGNATURE", "message": "Invalid signature"})

    async with services.store.user_lock(user_id):
        if services.store.order_owner(payload.razorpay_order_id) != user_id:
            logger.warning("payment.order_mismatch", user_id=user_id, order_id=payload.razorpay_order_id)
            raise HTTPException(status_code=400, detail={"error_code": "ORDER_MISMATCH", "message": "Order does not belong to this account"})
        if services.store.payment_consumed(payload.razorpay_payment_id):
            logger.warning("payment.replayed", user_id=user_id, payment_id=payload.razorpay_payment_id)
            raise HTTPException(status_code=400, detail={"error_code": "PAYMENT_ALREADY_USED", "message": "Payment has already been applied"})
        user = await _load_or_404(services, user_id)
        services.ledger.upgrade(user)
        await services.store.save(user)
        services.store.consume_payment(payload.razorpay_order_id, payload.razorpay_payment_id)
    logger.info("payment.verified", user_id=user_id, order_id=payload.razorpay_order_id)
    return PaymentResult(success=True, subscription=user.usage_stats.subscription)
