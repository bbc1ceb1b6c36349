import json

from sqlalchemy import func, select

from src.application.external_intake_service import DEFAULT_EVENT_TITLE
from src.infrastructure.db.models import Booking, Customer, Event, EventTicket
from src.infrastructure.db.session import SessionLocal
from src.infrastructure.gateway.chillpay import compute_notification_checksum

RECEIVE_URL = "/api/external-bookings/receive"


def _payload(**overrides):
    payload = {
        "bookingId": "EXT-20261018-001",
        "amount": 3000,
        "customerName": "Anong Srisuk",
        "email": "anong@example.com",
        "phone": "0898765432",
        "seats": json.dumps([{"seatType": "VIP", "quantity": 2, "pricePaid": 1500}]),
        "eventTitle": "Lumpinee Special",
        "eventDate": "2026-11-20T19:00:00+07:00",
        "venueName": "Lumpinee Boxing Stadium",
    }
    payload.update(overrides)
    return payload


def _booking(internal_id):
    with SessionLocal() as session:
        return session.get(Booking, internal_id)


def test_intake_for_unknown_event_title_creates_event_and_seat_type(client, fake_chillpay):
    response = client.post(RECEIVE_URL, json=_payload())

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    body = response.json()
    assert body["paymentUrl"] == "https://pay.chillpay.test/xyz"

    booking = _booking(body["internalId"])
    assert booking.external_reference == "EXT-20261018-001"
    assert booking.payment_status.value == "PROCESSING"
    assert booking.venue_name_snapshot == "Lumpinee Boxing Stadium"
    assert booking.region_name_snapshot == "Thailand"
    assert booking.customer_id is not None

    with SessionLocal() as session:
        event = session.execute(
            select(Event).where(Event.title == "Lumpinee Special")
        ).scalar_one()
        seat = session.execute(
            select(EventTicket)
            .where(EventTicket.event_id == event.id)
            .where(EventTicket.seat_type == "VIP")
        ).scalar_one()
        assert booking.event_id == event.id
        assert str(seat.price) in {"1500", "1500.00"}
        assert seat.sold_count == 0

    sent = fake_chillpay.requests[0]
    assert sent["Amount"] == "300000"
    assert sent["Description"] == "Tickets for Lumpinee Special"
    assert sent["PhoneNumber"] == "0898765432"


def test_intake_without_event_uses_default_event(client):
    payload = _payload(seats=None)
    del payload["eventTitle"]
    del payload["venueName"]

    response = client.post(RECEIVE_URL, json=payload)

    assert response.status_code == 200
    booking = _booking(response.json()["internalId"])
    assert booking.event_title_snapshot == "External Booking"
    assert booking.booking_items_json[0]["seatType"] == "Standard"
    assert booking.booking_items_json[0]["quantity"] == 1

    with SessionLocal() as session:
        event = session.execute(
            select(Event).where(Event.title == DEFAULT_EVENT_TITLE)
        ).scalar_one()
        assert booking.event_id == event.id


def test_intake_reuses_existing_event_by_id(client, event):
    response = client.post(RECEIVE_URL, json=_payload(eventId=event.id, eventTitle=None))

    assert response.status_code == 200
    assert _booking(response.json()["internalId"]).event_id == event.id


def test_intake_with_unknown_event_id_falls_back(client):
    response = client.post(RECEIVE_URL, json=_payload(eventId="does-not-exist"))

    assert response.status_code == 200
    booking = _booking(response.json()["internalId"])
    assert booking.event_id is not None
    assert booking.event_id != "does-not-exist"


def test_intake_accepts_numeric_phone_and_seat_list(client, fake_chillpay):
    payload = _payload(
        phone=812345678,
        seats=[{"seatType": "VIP", "quantity": 1, "pricePaid": 3000}],
    )

    response = client.post(RECEIVE_URL, json=payload)

    assert response.status_code == 200
    assert fake_chillpay.requests[0]["PhoneNumber"] == "812345678"


def test_intake_then_webhook_issues_tickets(client, gateway_config):
    internal_id = client.post(RECEIVE_URL, json=_payload()).json()["internalId"]
    fields = {"OrderNo": _booking(internal_id).payment_order_no, "PaymentStatus": "0"}
    fields["CheckSum"] = compute_notification_checksum(fields, gateway_config.md5_secret)

    response = client.post("/api/checkout/chillpay/webhook", data=fields)

    assert response.status_code == 200
    assert response.json()["ticketsIssued"] == 2


def test_intake_get_redirects_to_payment_url(client):
    params = _payload()

    response = client.get(RECEIVE_URL, params=params, follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "https://pay.chillpay.test/xyz"


def test_intake_rejects_invalid_payload(client, fake_chillpay):
    payload = _payload()
    del payload["email"]

    response = client.post(RECEIVE_URL, json=payload)

    assert response.status_code == 400
    assert response.headers["access-control-allow-origin"] == "*"
    assert "email" in response.json()["error"]
    assert fake_chillpay.requests == []
    with SessionLocal() as session:
        assert session.execute(select(func.count(Booking.id))).scalar_one() == 0


def test_intake_rejects_malformed_seats(client):
    response = client.post(RECEIVE_URL, json=_payload(seats="[{not json"))

    assert response.status_code == 400
    assert response.json()["error"] == "seats is not valid JSON"


def test_intake_rejects_non_positive_quantity(client):
    seats = json.dumps([{"seatType": "VIP", "quantity": 0, "pricePaid": 1500}])

    response = client.post(RECEIVE_URL, json=_payload(seats=seats))

    assert response.status_code == 400


def test_intake_gateway_failure_keeps_booking_pending(client, fake_chillpay):
    fake_chillpay.timeout = True

    response = client.post(RECEIVE_URL, json=_payload())

    assert response.status_code == 504
    assert response.json()["retryable"] is True
    with SessionLocal() as session:
        booking = session.execute(select(Booking)).scalar_one()
        assert booking.payment_status.value == "PENDING"
        assert session.execute(select(func.count(Customer.id))).scalar_one() == 1


def test_intake_preflight(client):
    response = client.options(RECEIVE_URL)

    assert response.status_code == 204
    assert response.headers["access-control-allow-methods"] == "GET, POST, OPTIONS"
