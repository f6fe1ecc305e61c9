"""Shared test configuration and fixtures.

Key principles:
- In-memory SQLite session per test, schema created from the ORM models.
- The Teori API is an httpx.MockTransport; no network access.
- Backoff sleeps and clocks are injected fakes, so tests never wait.
- AnyIO is the async runner via the anyio pytest plugin (@pytest.mark.anyio).
"""

import json
from typing import Callable, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.database import Base
from app.domain.payments.client import ORDERS_PATH, TeoriApiClient
from app.domain.payments.service import TeoriCheckoutService
from app.domain.payments.settings import TeoriSettingsResolver
from app.domain.payments.signing import RequestSigner

BASE_SETTINGS = {
    "teori_enabled": "true",
    "teori_api_key": "merchant-key-1234",
    "teori_api_secret": "api-secret",
    "teori_webhook_secret": "webhook-secret",
    "public_app_url": "https://trafikskola.example",
}


class FakeClock:
    """Monotonic clock the test advances by hand"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTeoriApi:
    """In-memory stand-in for the Teori merchant API"""

    def __init__(self):
        self.orders: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.create_responses: list[httpx.Response] = []
        self.failing_orders: set[str] = set()
        self.on_create: Optional[Callable[[dict], None]] = None
        self._next_id = 1000

    @property
    def created(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    def add_order(self, order_id: str, payment_link: str, status: str = "Created") -> dict:
        order = {"OrderId": order_id, "PaymentLink": payment_link, "Status": status}
        self.orders[order_id] = order
        return order

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == ORDERS_PATH:
            body = json.loads(request.content)
            if self.on_create:
                self.on_create(body)
            if self.create_responses:
                return self.create_responses.pop(0)
            self._next_id += 1
            order_id = str(self._next_id)
            order = self.add_order(order_id, f"https://pay.teori.test/{order_id}")
            order["MerchantReference"] = body["MerchantReference"]
            return httpx.Response(201, json={"OrderId": order_id, "PaymentLink": order["PaymentLink"]})

        if request.method == "GET" and path.startswith(f"{ORDERS_PATH}/"):
            order_id = path.rsplit("/", 1)[-1]
            if order_id in self.failing_orders:
                return httpx.Response(500, text="Internal Server Error")
            if order_id not in self.orders:
                return httpx.Response(404, text='{"ErrorCode": "ORDER_NOT_FOUND"}')
            return httpx.Response(200, json=self.orders[order_id])

        return httpx.Response(404, text="Not Found")

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def anyio_backend() -> str:
    """Force the anyio plugin to use the asyncio event loop"""
    return "asyncio"


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def settings_map() -> dict:
    return dict(BASE_SETTINGS)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver(settings_map, clock) -> TeoriSettingsResolver:
    return TeoriSettingsResolver(lambda: settings_map, environ={}, clock=clock)


@pytest.fixture
def fake_api() -> FakeTeoriApi:
    return FakeTeoriApi()


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def api_client(resolver, fake_api, sleeps) -> TeoriApiClient:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return TeoriApiClient(RequestSigner(resolver), sleep=fake_sleep, transport=fake_api.transport())


@pytest.fixture
def service(db_session, resolver, api_client) -> TeoriCheckoutService:
    return TeoriCheckoutService(db_session, resolver, api_client)
