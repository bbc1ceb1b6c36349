# src/infrastructure/gateway/chillpay.py

import hashlib
import hmac
import logging
import re
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping

import httpx

from src.domain.exceptions import GatewayConfigurationError, GatewayError
from src.infrastructure.config import ChillPayConfig

logger = logging.getLogger(__name__)

ORDER_NO_MAX_LENGTH = 20
ORDER_NO_PREFIX = "CP"

TOKEN_FLAG = "N"

# Order-sensitive. ChillPay rejects any other ordering with a bare
# checksum error, so every optional field keeps its slot as "".
REQUEST_CHECKSUM_FIELDS = (
    "MerchantCode",
    "OrderNo",
    "CustomerId",
    "Amount",
    "PhoneNumber",
    "Description",
    "ChannelCode",
    "Currency",
    "LangCode",
    "RouteNo",
    "IPAddress",
    "ApiKey",
    "TokenFlag",
    "CreditToken",
    "CreditMonth",
    "ShopID",
    "ProductImageUrl",
    "CustEmail",
    "CardType",
)

NOTIFICATION_CHECKSUM_FIELDS = (
    "TransactionId",
    "Amount",
    "OrderNo",
    "CustomerId",
    "BankCode",
    "PaymentDate",
    "PaymentStatus",
    "BankRefCode",
    "CurrentDate",
    "CurrentTime",
    "PaymentDescription",
    "CreditCardToken",
    "Currency",
    "CustomerName",
)

# The initiation endpoint reports success as 0 or 1 depending on route.
INIT_SUCCESS_STATUSES = {0, 1}
SUCCESS_CODE = 200


def to_minor_units(amount) -> int:
    """
    Convert a currency amount to satang, rounding half up.

    250.00 -> 25000, 99.999 -> 10000, 0.005 -> 1.
    """
    value = Decimal(str(amount))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def generate_order_no(booking_id: str, now_ms: int | None = None) -> str:
    """
    Derive a gateway order number from a booking id.

    CP + first six alphanumerics of the id + last ten digits of the
    millisecond clock, which stays within ChillPay's 20 character limit.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    alnum = re.sub(r"[^a-zA-Z0-9]", "", booking_id)[:6]
    suffix = str(now_ms)[-10:]
    order_no = f"{ORDER_NO_PREFIX}{alnum}{suffix}"
    return order_no[:ORDER_NO_MAX_LENGTH]


def md5_hex(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def compute_request_checksum(fields: Mapping[str, str], md5_secret: str) -> str:
    joined = "".join(str(fields.get(name, "")) for name in REQUEST_CHECKSUM_FIELDS)
    return md5_hex(joined + md5_secret)


def compute_notification_checksum(fields: Mapping[str, str], md5_secret: str) -> str:
    # JSON notifications may use camelCase keys (orderNo, paymentStatus).
    lowered = {str(key).lower(): value for key, value in fields.items()}
    joined = "".join(
        str(lowered.get(name.lower()) or "") for name in NOTIFICATION_CHECKSUM_FIELDS
    )
    return md5_hex(joined + md5_secret)


def verify_notification_checksum(
    fields: Mapping[str, str],
    received: str,
    md5_secret: str,
) -> bool:
    expected = compute_notification_checksum(fields, md5_secret)
    return hmac.compare_digest(expected.encode(), received.strip().lower().encode())


@dataclass(frozen=True)
class PaymentRequest:
    order_no: str
    customer_id: str
    amount: Decimal
    phone_number: str
    description: str
    customer_email: str
    ip_address: str
    return_url: str
    notify_url: str


@dataclass(frozen=True)
class PaymentInitResult:
    payment_url: str
    status: int
    code: int
    message: str
    transaction_id: str | None = None
    order_no: str | None = None


def build_payment_fields(config: ChillPayConfig, request: PaymentRequest) -> dict[str, str]:
    """
    Assemble the form body for the payment-initiation call, with the
    checksum appended last.
    """
    fields = {
        "MerchantCode": config.merchant_code,
        "OrderNo": request.order_no,
        "CustomerId": request.customer_id,
        "Amount": str(to_minor_units(request.amount)),
        "PhoneNumber": request.phone_number,
        "Description": request.description,
        "ChannelCode": config.channel_code,
        "Currency": config.currency,
        "LangCode": config.lang_code,
        "RouteNo": config.route_no,
        "IPAddress": request.ip_address,
        "ApiKey": config.api_key,
        "TokenFlag": TOKEN_FLAG,
        "CreditToken": "",
        "CreditMonth": "",
        "ShopID": "",
        "ProductImageUrl": "",
        "CustEmail": request.customer_email,
        "CardType": "",
        "ReturnUrl": request.return_url,
        "NotifyUrl": request.notify_url,
    }
    fields["CheckSum"] = compute_request_checksum(fields, config.md5_secret)
    return fields


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ChillPayClient:
    """Synchronous client for the ChillPay payment-initiation endpoint."""

    def __init__(self, config: ChillPayConfig, http_client: httpx.Client | None = None):
        self.config = config
        self._http = http_client or httpx.Client(timeout=config.timeout_seconds)

    def create_payment(self, request: PaymentRequest) -> PaymentInitResult:
        if not self.config.is_complete():
            raise GatewayConfigurationError("Missing payment gateway configuration")

        fields = build_payment_fields(self.config, request)
        logger.info(
            "Calling ChillPay. order_no=%s amount_minor=%s channel=%s",
            request.order_no,
            fields["Amount"],
            fields["ChannelCode"],
        )

        try:
            response = self._http.post(
                self.config.api_endpoint,
                data=fields,
                headers={"Cache-Control": "no-cache"},
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            logger.error("ChillPay call timed out. order_no=%s", request.order_no)
            raise GatewayError(
                "Payment gateway timed out",
                http_status=504,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error(
                "ChillPay transport error. order_no=%s error=%s",
                request.order_no,
                exc,
            )
            raise GatewayError(
                "Payment gateway unreachable",
                http_status=502,
            ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            logger.error(
                "ChillPay returned unparsable body. order_no=%s http_status=%s",
                request.order_no,
                response.status_code,
            )
            raise GatewayError(
                "Invalid JSON response from payment gateway",
                http_status=502,
            ) from exc

        if not isinstance(data, dict):
            raise GatewayError(
                "Invalid JSON response from payment gateway",
                http_status=502,
            )

        status = _as_int(data.get("Status"))
        code = _as_int(data.get("Code"))
        message = str(data.get("Message") or "")
        payment_url = data.get("PaymentUrl")

        if response.is_error:
            logger.error(
                "ChillPay HTTP error. order_no=%s http_status=%s message=%s",
                request.order_no,
                response.status_code,
                message,
            )
            raise GatewayError(
                message or f"Payment gateway returned HTTP {response.status_code}",
                code=code,
                status=status,
                http_status=502,
            )

        if status not in INIT_SUCCESS_STATUSES or code != SUCCESS_CODE or not payment_url:
            logger.error(
                "ChillPay rejected payment. order_no=%s status=%s code=%s message=%s",
                request.order_no,
                status,
                code,
                message,
            )
            raise GatewayError(
                message or "Unknown error from payment gateway",
                code=code,
                status=status,
                http_status=400,
            )

        transaction_id = data.get("TransactionId")
        return PaymentInitResult(
            payment_url=str(payment_url),
            status=status,
            code=code,
            message=message,
            transaction_id=str(transaction_id) if transaction_id is not None else None,
            order_no=data.get("OrderNo"),
        )

    def close(self) -> None:
        self._http.close()
