import base64
import hashlib
import hmac
import json

from billpay.models import (
    Order,
    OrderPaymentStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordStatus,
)

from .conftest import add_all

URL = "/api/beam/webhook"
SECRET = base64.b64encode(b"beam-webhook-secret").decode()


def signed_headers(body: bytes, event: str, key: str = SECRET) -> dict:
    digest = hmac.new(base64.b64decode(key), body, hashlib.sha256).digest()
    return {
        "content-type": "application/json",
        "x-beam-event": event,
        "x-beam-signature": base64.b64encode(digest).decode(),
    }


async def pending_record(db, order, link_id="pl_1"):
    (record,) = await add_all(db, PaymentRecord(
        order_id=order.id,
        payment_method=PaymentMethod.PAYMENT_GATEWAY,
        amount=order.total_amount,
        gateway_payment_link_id=link_id,
        gateway_status="ACTIVE",
    ))
    return record


async def test_paid_event_confirms_payment(client, db, make_order, make_gateway):
    order = await make_order()
    await make_gateway(webhook_secret=SECRET)
    record = await pending_record(db, order)
    body = json.dumps({"data": {"paymentLinkId": "pl_1", "chargeId": "ch_9"}}).encode()

    resp = await client.post(URL, content=body, headers=signed_headers(body, "payment_link.paid"))

    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    async with db() as session:
        fresh = await session.get(PaymentRecord, record.id)
        fresh_order = await session.get(Order, order.id)
    assert fresh.status == PaymentRecordStatus.VERIFIED
    assert fresh.gateway_charge_id == "ch_9"
    assert fresh_order.payment_status == OrderPaymentStatus.PAID


async def test_signature_falls_back_to_api_key(client, db, make_order, make_gateway):
    api_key = base64.b64encode(b"api-key-bytes").decode()
    order = await make_order()
    await make_gateway(api_key=api_key)
    record = await pending_record(db, order)
    body = json.dumps({"id": "pl_1"}).encode()

    resp = await client.post(URL, content=body, headers=signed_headers(body, "charge.succeeded", api_key))

    assert resp.status_code == 200
    async with db() as session:
        fresh = await session.get(PaymentRecord, record.id)
    assert fresh.status == PaymentRecordStatus.VERIFIED


async def test_bad_signature_is_refused(client, db, make_order, make_gateway):
    order = await make_order()
    await make_gateway(webhook_secret=SECRET)
    record = await pending_record(db, order)
    body = json.dumps({"data": {"paymentLinkId": "pl_1"}}).encode()
    headers = signed_headers(body, "payment_link.paid")
    headers["x-beam-signature"] = "forged"

    resp = await client.post(URL, content=body, headers=headers)

    assert resp.status_code == 401
    async with db() as session:
        fresh = await session.get(PaymentRecord, record.id)
    assert fresh.status == PaymentRecordStatus.PENDING


async def test_invalid_json(client, make_gateway):
    await make_gateway()
    resp = await client.post(URL, content=b"{oops", headers={"x-beam-event": "payment_link.paid"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid JSON"}


async def test_unhandled_and_unknown_events_are_acknowledged(client, db, make_order, make_gateway):
    order = await make_order()
    await make_gateway(webhook_secret=SECRET)
    record = await pending_record(db, order)

    body = json.dumps({"data": {"paymentLinkId": "pl_1"}}).encode()
    resp = await client.post(URL, content=body, headers=signed_headers(body, "payment_link.expired"))
    assert resp.json() == {"success": True}

    body = json.dumps({"data": {"paymentLinkId": "pl_unknown"}}).encode()
    resp = await client.post(URL, content=body, headers=signed_headers(body, "payment_link.paid"))
    assert resp.json() == {"success": True}

    async with db() as session:
        fresh = await session.get(PaymentRecord, record.id)
    assert fresh.status == PaymentRecordStatus.PENDING


async def test_acknowledged_without_gateway_config(client):
    resp = await client.post(URL, content=b"{}", headers={"x-beam-event": "payment_link.paid"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True}


async def test_probe(client):
    resp = await client.get(URL)
    assert resp.json() == {"status": "ok"}


async def test_unpadded_urlsafe_secret(client, db, make_order, make_gateway):
    raw = b"\xfb\xff beam secret"
    secret = base64.urlsafe_b64encode(raw).decode().rstrip("=")
    order = await make_order()
    await make_gateway(webhook_secret=secret)
    record = await pending_record(db, order)
    body = json.dumps({"data": {"paymentLinkId": "pl_1"}}).encode()
    headers = signed_headers(body, "payment_link.paid", base64.b64encode(raw).decode())

    resp = await client.post(URL, content=body, headers=headers)

    assert resp.status_code == 200
    async with db() as session:
        fresh = await session.get(PaymentRecord, record.id)
    assert fresh.status == PaymentRecordStatus.VERIFIED


async def test_paid_event_overrides_local_rejection(client, db, make_order, make_gateway):
    order = await make_order()
    await make_gateway(webhook_secret=SECRET)
    (record,) = await add_all(db, PaymentRecord(
        order_id=order.id,
        payment_method=PaymentMethod.PAYMENT_GATEWAY,
        amount=order.total_amount,
        status=PaymentRecordStatus.REJECTED,
        gateway_payment_link_id="pl_1",
    ))
    body = json.dumps({"data": {"paymentLinkId": "pl_1", "chargeId": "ch_1"}}).encode()

    resp = await client.post(URL, content=body, headers=signed_headers(body, "payment_link.paid"))

    assert resp.json() == {"success": True}
    async with db() as session:
        fresh = await session.get(PaymentRecord, record.id)
        fresh_order = await session.get(Order, order.id)
    assert fresh.status == PaymentRecordStatus.VERIFIED
    assert fresh_order.payment_status == OrderPaymentStatus.PAID
