from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel.ext.asyncio.session import AsyncSession

from billpay.db import get_session, init_db
from billpay.main import app
from billpay.models import ChannelType, Customer, Order, PaymentChannel
from billpay.services.beam import BeamClient, get_beam_client

SANDBOX = "https://sandbox.beam.test"
PRODUCTION = "https://api.beam.test"


class FakeBeam:
    """Stands in for the Beam API behind an httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.payload = {"paymentLinkId": "pl_1", "url": "https://pay/x", "status": "ACTIVE"}
        self.error = None  # an httpx.RequestError subclass to raise
        self.on_request = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)
        if self.error is not None:
            raise self.error("gateway unreachable", request=request)
        return httpx.Response(self.status_code, json=self.payload)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def db(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def beam():
    return FakeBeam()


@pytest_asyncio.fixture
async def beam_client(beam):
    http = beam.client()
    yield BeamClient(http, sandbox_base=SANDBOX, production_base=PRODUCTION)
    await http.aclose()


@pytest_asyncio.fixture
async def client(db, beam_client):
    async def _session():
        async with db() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_beam_client] = lambda: beam_client
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def add_all(db, *rows):
    async with db() as session:
        for row in rows:
            session.add(row)
        await session.commit()
        for row in rows:
            await session.refresh(row)
    return rows


@pytest_asyncio.fixture
async def make_order(db):
    async def _make(total="500", customer_type=None, **kwargs):
        customer = Customer(name="Somchai", customer_type_new=customer_type)
        await add_all(db, customer)
        order = Order(
            order_number=kwargs.pop("order_number", "ORD-0001"),
            total_amount=Decimal(total),
            customer_id=customer.id,
            **kwargs,
        )
        await add_all(db, order)
        return order
    return _make


@pytest_asyncio.fixture
async def make_gateway(db):
    async def _make(channels=None, channel_group="bill_online", is_active=True, **config):
        cfg = {"merchant_id": "m_1", "api_key": "key_1", "environment": "sandbox"}
        cfg.update(config)
        cfg["channels"] = channels if channels is not None else {"CARD": {"enabled": True}}
        channel = PaymentChannel(
            channel_group=channel_group,
            is_active=is_active,
            type=ChannelType.PAYMENT_GATEWAY,
            name="Beam Checkout",
            config=cfg,
        )
        await add_all(db, channel)
        return channel
    return _make
