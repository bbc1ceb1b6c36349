import os

os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from urllib.parse import parse_qsl

import httpx
import pytest
from fastapi.testclient import TestClient

from src.api.dependencies import (
    get_app_settings,
    get_gateway,
    get_gateway_config,
    get_notifier,
)
from src.domain.booking_items import SeatLineItem
from src.domain.state_machine import PaymentStatus
from src.infrastructure.config import AppSettings, ChillPayConfig
from src.infrastructure.db.models import Base
from src.infrastructure.db.session import SessionLocal, engine
from src.infrastructure.gateway.chillpay import (
    ChillPayClient,
    compute_notification_checksum,
)
from src.infrastructure.notifications.email_notifier import OutboxEmailNotifier
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.catalog_repository import CatalogRepository
from src.infrastructure.repositories.seat_repository import SeatRepository
from src.main import app

PUBLIC_BASE_URL = "https://tickets.example.test"


class FakeChillPay:
    """Stands in for the ChillPay endpoint behind httpx.MockTransport."""

    def __init__(self):
        self.requests: list[dict] = []
        self.timeout = False
        self.http_status = 200
        self.body = {
            "Status": 1,
            "Code": 200,
            "Message": "Success",
            "PaymentUrl": "https://pay.chillpay.test/xyz",
            "TransactionId": 1001,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(dict(parse_qsl(request.content.decode())))
        if self.timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(self.http_status, json=self.body)


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway_config():
    return ChillPayConfig(
        merchant_code="M030000",
        api_key="test-api-key",
        md5_secret="test-md5-secret",
        api_endpoint="https://sandbox.chillpay.test/api/v2/Payment/",
    )


@pytest.fixture
def sign_notification(gateway_config):
    """Builds a webhook body signed with the test merchant secret."""

    def _sign(order_no, payment_status="0", **extra):
        fields = {"OrderNo": order_no, "PaymentStatus": payment_status, **extra}
        fields["CheckSum"] = compute_notification_checksum(
            fields, gateway_config.md5_secret
        )
        return fields

    return _sign


@pytest.fixture
def fake_chillpay():
    return FakeChillPay()


@pytest.fixture
def gateway(gateway_config, fake_chillpay):
    http_client = httpx.Client(transport=httpx.MockTransport(fake_chillpay.handler))
    client = ChillPayClient(gateway_config, http_client=http_client)
    yield client
    client.close()


@pytest.fixture
def notifier():
    return OutboxEmailNotifier()


@pytest.fixture
def settings():
    return AppSettings(public_base_url=PUBLIC_BASE_URL)


@pytest.fixture
def client(gateway_config, gateway, notifier, settings):
    app.dependency_overrides[get_gateway_config] = lambda: gateway_config
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_app_settings] = lambda: settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def event(db):
    catalog = CatalogRepository(db)
    region = catalog.create_region("Thailand")
    venue = catalog.create_venue("Rajadamnern Stadium", "Bangkok", region.id)
    start = datetime.now(timezone.utc) + timedelta(days=7)
    created = catalog.create_event(
        title="Muay Thai Fight Night",
        description="Main card",
        date_time=start,
        end_time=start + timedelta(hours=4),
        venue_id=venue.id,
        region_id=region.id,
    )
    seats = SeatRepository(db)
    seats.create_seat_type(created.id, "Standard", Decimal("500.00"), capacity=200)
    seats.create_seat_type(created.id, "Ringside", Decimal("1500.00"), capacity=20)
    db.commit()
    return created


@pytest.fixture
def make_booking(db, event):
    def _make(
        items=None,
        total=Decimal("2000.00"),
        status=PaymentStatus.PENDING,
        order_no=None,
    ):
        booking = BookingRepository(db).create_booking(
            total_amount=total,
            items=items
            or [
                SeatLineItem("Standard", 2, Decimal("500.00")),
                SeatLineItem("Ringside", 1, Decimal("1000.00")),
            ],
            customer_id=None,
            event_id=event.id,
            customer_name="Somchai Jaidee",
            customer_email="somchai@example.com",
            customer_phone="0812345678",
            event_title=event.title,
            event_date=event.date_time,
            venue_name="Rajadamnern Stadium",
            region_name="Thailand",
        )
        booking.payment_status = status
        booking.payment_order_no = order_no
        db.commit()
        return booking

    return _make
