"""
Local bookkeeping of gateway payment attempts.

The order's payment_status is never touched on link creation. Only a confirmed
gateway event moves it to paid, so a customer can abandon a link and retry
without the order being marked failed.
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..errors import BillPayError, NotFoundError, StateConflictError
from ..models import (
    Order,
    OrderPaymentStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordStatus,
    utcnow,
)
from .beam import PROVIDER

logger = logging.getLogger(__name__)

VERIFY_ACTIONS = {
    "verify": PaymentRecordStatus.VERIFIED,
    "reject": PaymentRecordStatus.REJECTED,
}


async def record_pending_attempt(session: AsyncSession, order: Order, link: dict) -> PaymentRecord:
    """
    Cancel every pending gateway record of the order and insert a fresh one.

    Both steps commit together. A concurrent request that already inserted
    its own pending record trips the partial unique index and this one is
    rolled back as a StateConflictError.
    """
    order_id = order.id
    link_id = link.get("paymentLinkId")
    cancelled = PaymentRecordStatus.PENDING.transition(PaymentRecordStatus.CANCELLED)
    try:
        # only rows still pending match, so a concurrently verified row is left alone
        stmt = (
            update(PaymentRecord)
            .where(
                PaymentRecord.order_id == order_id,
                PaymentRecord.payment_method == PaymentMethod.PAYMENT_GATEWAY,
                PaymentRecord.status == PaymentRecordStatus.PENDING,
            )
            .values(status=cancelled, gateway_status="CANCELLED", updated_at=utcnow())
        )
        conn = await session.connection()
        result = await conn.execute(stmt)
        if result.rowcount:
            logger.info("Cancelled %d stale pending payment record(s) for order %s", result.rowcount, order_id)

        new = PaymentRecord(
            order_id=order_id,
            payment_method=PaymentMethod.PAYMENT_GATEWAY,
            amount=order.total_amount,
            status=PaymentRecordStatus.PENDING,
            gateway_provider=PROVIDER,
            gateway_payment_link_id=link_id,
            gateway_status=link.get("status") or "ACTIVE",
            gateway_raw_response=link,
        )
        session.add(new)
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.warning(
            "Concurrent payment link request for order %s; link %s left unrecorded",
            order_id, link_id,
        )
        raise StateConflictError("A payment link is already being created for this order")
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(
            "Failed to record payment link %s for order %s; reconcile manually",
            link_id, order_id,
        )
        raise BillPayError()

    await session.refresh(new)
    return new


async def confirm_gateway_payment(session: AsyncSession,
                                  link_id: str,
                                  charge_id: Optional[str],
                                  event: dict) -> Optional[PaymentRecord]:
    """Mark the record behind a paid link verified and its order paid."""
    q = select(PaymentRecord).where(PaymentRecord.gateway_payment_link_id == link_id)
    res = await session.exec(q)
    found = res.first()
    if found is None:
        logger.error("No payment record found for paymentLinkId %s", link_id)
        return None

    if found.status == PaymentRecordStatus.VERIFIED:
        logger.info("Payment already verified for paymentLinkId %s", link_id)
        return found

    if found.status == PaymentRecordStatus.REJECTED:
        logger.warning("Gateway confirmed payment %s that was rejected locally; marking verified", link_id)
    found.move_to(PaymentRecordStatus.VERIFIED)
    found.gateway_charge_id = charge_id
    found.gateway_status = "PAID"
    found.gateway_raw_response = event
    session.add(found)

    order = await session.get(Order, found.order_id)
    if order is not None:
        order.payment_status = OrderPaymentStatus.PAID
        order.updated_at = utcnow()
        session.add(order)

    await session.commit()
    await session.refresh(found)
    logger.info("Payment verified via webhook for order %s", found.order_id)
    return found


async def verify_payment_record(session: AsyncSession, record_id: str, action: str) -> PaymentRecord:
    """Manually verify or reject a pending payment record."""
    target = VERIFY_ACTIONS[action]
    found = await session.get(PaymentRecord, record_id)
    if found is None:
        raise NotFoundError("Payment record not found")

    found.move_to(target)
    session.add(found)
    await session.commit()
    await session.refresh(found)
    return found
