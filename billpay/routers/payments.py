import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel.ext.asyncio.session import AsyncSession

from ..config import get_settings
from ..db import get_session
from ..errors import ConfigurationError, NotFoundError, ValidationError
from ..models import Order
from ..schemas import CreatePaymentLinkIn, CreatePaymentLinkOut
from ..services.beam import BeamClient, get_beam_client, to_minor_units, verify_signature
from ..services.channels import (
    build_link_settings,
    enabled_gateway_keys,
    find_gateway_config,
    get_customer_type,
    resolve_gateway_config,
)
from ..services.reconcile import confirm_gateway_payment, record_pending_attempt

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/beam", tags=["beam"])

PAID_EVENTS = ("payment_link.paid", "charge.succeeded")


@router.post("/create-payment-link", response_model=CreatePaymentLinkOut)
async def create_payment_link(payload: CreatePaymentLinkIn,
                              session: AsyncSession = Depends(get_session),
                              beam: BeamClient = Depends(get_beam_client)):
    """Public, customer-facing: mint a Beam payment link for a pending order."""
    if not payload.order_id:
        raise ValidationError("order_id is required")

    order = await session.get(Order, payload.order_id)
    if order is None:
        raise NotFoundError("Order not found")
    order.ensure_payable()

    config = await resolve_gateway_config(session)
    customer_type = await get_customer_type(session, order.customer_id)
    keys = enabled_gateway_keys(order.total_amount, customer_type, config.channels)
    # end the read transaction; no connection is held while Beam answers
    await session.commit()

    redirect_url = f"{get_settings().public_app_url.rstrip('/')}/bills/{order.id}?payment=success"
    link = await beam.create_payment_link(
        config,
        net_amount=to_minor_units(order.total_amount),
        description=f"Order #{order.order_number}",
        reference_id=order.id,
        link_settings=build_link_settings(keys),
        redirect_url=redirect_url,
    )

    await record_pending_attempt(session, order, link)

    return CreatePaymentLinkOut(
        payment_url=link["url"],
        payment_link_id=link["paymentLinkId"],
    )


# Webhook (Beam -> POST)
@router.post("/webhook")
async def webhook(request: Request, session: AsyncSession = Depends(get_session)):
    """
    Beam posts payment events here. Anything we cannot act on is still
    acknowledged so Beam does not keep retrying; only malformed JSON and a bad
    signature are refused.
    """
    body = await request.body()
    signature = request.headers.get("x-beam-signature", "")
    event_type = request.headers.get("x-beam-event", "")
    logger.info("Beam webhook received: %s", event_type)

    try:
        event = json.loads(body)
    except ValueError:
        logger.error("Invalid JSON in webhook body")
        raise ValidationError("Invalid JSON")
    if not isinstance(event, dict):
        raise ValidationError("Invalid JSON")

    try:
        config = await find_gateway_config(session)
    except ConfigurationError:
        logger.error("Could not load gateway config for webhook verification")
        return {"success": True}
    if config is None:
        logger.error("No gateway channel configured for webhook verification")
        return {"success": True}

    hmac_key = config.webhook_secret or config.api_key
    if signature and hmac_key and not verify_signature(body, signature, hmac_key):
        logger.error("Invalid Beam webhook signature")
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    if event_type not in PAID_EVENTS:
        logger.info("Unhandled webhook event type: %s", event_type)
        return {"success": True}

    data = event.get("data") if isinstance(event.get("data"), dict) else event
    link_id = data.get("paymentLinkId") or data.get("id")
    if not link_id:
        logger.error("No paymentLinkId in webhook event: %s", json.dumps(event)[:500])
        return {"success": True}

    try:
        await confirm_gateway_payment(session, link_id, data.get("chargeId"), event)
    except Exception:
        # acknowledged anyway, Beam retries forever otherwise
        await session.rollback()
        logger.exception("Beam webhook processing failed for paymentLinkId %s", link_id)
    return {"success": True}


@router.get("/webhook")
async def webhook_probe():
    return {"status": "ok"}

