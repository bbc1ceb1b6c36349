import hashlib
import json
from decimal import Decimal

import httpx
import pytest

from src.domain.exceptions import GatewayConfigurationError, GatewayError
from src.infrastructure.config import ChillPayConfig
from src.infrastructure.gateway.chillpay import (
    REQUEST_CHECKSUM_FIELDS,
    ChillPayClient,
    PaymentRequest,
    build_payment_fields,
    compute_notification_checksum,
    compute_request_checksum,
    generate_order_no,
    to_minor_units,
    verify_notification_checksum,
)

CONFIG = ChillPayConfig(
    merchant_code="M030000",
    api_key="test-api-key",
    md5_secret="test-md5-secret",
    api_endpoint="https://sandbox.chillpay.test/api/v2/Payment/",
)


def _request(**overrides):
    values = {
        "order_no": "CP3f2a9c9871234567",
        "customer_id": "cust-1",
        "amount": Decimal("250.00"),
        "phone_number": "0812345678",
        "description": "Muay Thai Fight Night",
        "customer_email": "somchai@example.com",
        "ip_address": "203.0.113.9",
        "return_url": "https://tickets.example.test/api/checkout/chillpay/callback?bookingId=b1",
        "notify_url": "https://tickets.example.test/api/checkout/chillpay/webhook",
    }
    values.update(overrides)
    return PaymentRequest(**values)


def _client(handler, config=CONFIG):
    return ChillPayClient(config, http_client=httpx.Client(transport=httpx.MockTransport(handler)))


# ---------------------
# AMOUNTS AND ORDER NUMBERS
# ---------------------

def test_minor_units_for_whole_amount():
    assert to_minor_units(Decimal("250.00")) == 25000
    assert to_minor_units("1200") == 120000


def test_minor_units_round_half_up():
    assert to_minor_units(Decimal("99.999")) == 10000
    assert to_minor_units(Decimal("0.005")) == 1
    assert to_minor_units(Decimal("10.004")) == 1000


def test_order_no_shape():
    order_no = generate_order_no("3f2a-9c1e-4b7d-a1b2", now_ms=1739871234567)

    assert order_no == "CP3f2a9c9871234567"
    assert len(order_no) <= 20


def test_order_no_is_bounded_for_any_id():
    order_no = generate_order_no("x" * 64, now_ms=99999999999999999)
    assert len(order_no) == 18
    assert order_no.startswith("CPxxxxxx")


# ---------------------
# CHECKSUMS
# ---------------------

def test_request_checksum_matches_documented_field_order():
    fields = build_payment_fields(CONFIG, _request())
    joined = "".join(fields[name] for name in REQUEST_CHECKSUM_FIELDS)
    expected = hashlib.md5((joined + "test-md5-secret").encode("utf-8")).hexdigest()

    assert fields["CheckSum"] == expected
    assert list(fields)[-1] == "CheckSum"
    assert REQUEST_CHECKSUM_FIELDS[0] == "MerchantCode"
    assert REQUEST_CHECKSUM_FIELDS[-1] == "CardType"


def test_request_checksum_is_deterministic():
    first = build_payment_fields(CONFIG, _request())
    second = build_payment_fields(CONFIG, _request())
    assert first["CheckSum"] == second["CheckSum"]


def test_changing_any_checksummed_field_changes_digest():
    base = build_payment_fields(CONFIG, _request())
    digest = compute_request_checksum(base, CONFIG.md5_secret)

    for name in REQUEST_CHECKSUM_FIELDS:
        changed = dict(base)
        changed[name] = f"{changed[name]}x"
        assert compute_request_checksum(changed, CONFIG.md5_secret) != digest, name


def test_return_and_notify_urls_are_not_checksummed():
    base = build_payment_fields(CONFIG, _request())
    other = build_payment_fields(
        CONFIG,
        _request(return_url="https://elsewhere.test/cb", notify_url="https://elsewhere.test/wh"),
    )
    assert base["CheckSum"] == other["CheckSum"]


def test_payment_fields_carry_fixed_constants():
    fields = build_payment_fields(CONFIG, _request())

    assert fields["Amount"] == "25000"
    assert fields["ChannelCode"] == "creditcard"
    assert fields["Currency"] == "764"
    assert fields["LangCode"] == "EN"
    assert fields["RouteNo"] == "1"
    assert fields["TokenFlag"] == "N"
    assert fields["CreditToken"] == ""
    assert fields["CardType"] == ""


def test_notification_checksum_round_trip():
    fields = {"TransactionId": "9001", "OrderNo": "CP1", "PaymentStatus": "0"}
    checksum = compute_notification_checksum(fields, "secret")

    assert verify_notification_checksum(fields, checksum, "secret")
    assert verify_notification_checksum(fields, checksum.upper(), "secret")
    assert not verify_notification_checksum(fields, checksum, "other-secret")
    assert not verify_notification_checksum({**fields, "PaymentStatus": "1"}, checksum, "secret")


def test_notification_checksum_ignores_key_case():
    signed = {"TransactionId": "9001", "OrderNo": "CP1", "PaymentStatus": "0"}
    camel = {"transactionId": "9001", "orderNo": "CP1", "paymentStatus": "0"}
    checksum = compute_notification_checksum(signed, "secret")

    assert compute_notification_checksum(camel, "secret") == checksum
    assert verify_notification_checksum(camel, checksum, "secret")


# ---------------------
# CLIENT
# ---------------------

def test_create_payment_success():
    seen = {}

    def handler(request):
        seen["content_type"] = request.headers["content-type"]
        return httpx.Response(
            200,
            json={
                "Status": 0,
                "Code": 200,
                "Message": "Success",
                "PaymentUrl": "https://pay.chillpay.test/abc",
                "TransactionId": 55,
                "OrderNo": "CP3f2a9c9871234567",
            },
        )

    result = _client(handler).create_payment(_request())

    assert seen["content_type"] == "application/x-www-form-urlencoded"
    assert result.payment_url == "https://pay.chillpay.test/abc"
    assert result.transaction_id == "55"
    assert result.status == 0


def test_create_payment_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayError) as exc_info:
        _client(handler).create_payment(_request())

    assert exc_info.value.http_status == 504
    assert exc_info.value.retryable is True


def test_create_payment_connection_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GatewayError) as exc_info:
        _client(handler).create_payment(_request())

    assert exc_info.value.http_status == 502


def test_create_payment_unparsable_body():
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(GatewayError) as exc_info:
        _client(handler).create_payment(_request())

    assert exc_info.value.http_status == 502
    assert exc_info.value.message == "Invalid JSON response from payment gateway"


def test_create_payment_non_object_body():
    def handler(request):
        return httpx.Response(200, content=json.dumps([1, 2]).encode())

    with pytest.raises(GatewayError):
        _client(handler).create_payment(_request())


def test_create_payment_business_failure():
    def handler(request):
        return httpx.Response(
            200,
            json={"Status": 2, "Code": 2001, "Message": "Invalid checksum"},
        )

    with pytest.raises(GatewayError) as exc_info:
        _client(handler).create_payment(_request())

    assert exc_info.value.http_status == 400
    assert exc_info.value.message == "Invalid checksum"
    assert exc_info.value.code == 2001
    assert exc_info.value.status == 2


def test_create_payment_without_payment_url_fails():
    def handler(request):
        return httpx.Response(200, json={"Status": 1, "Code": 200, "Message": "Success"})

    with pytest.raises(GatewayError):
        _client(handler).create_payment(_request())


def test_incomplete_config_never_calls_gateway():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    config = ChillPayConfig(
        merchant_code="",
        api_key="k",
        md5_secret="s",
        api_endpoint="https://sandbox.chillpay.test/api/v2/Payment/",
    )

    with pytest.raises(GatewayConfigurationError):
        _client(handler, config=config).create_payment(_request())

    assert calls == []
