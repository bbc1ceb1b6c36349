# src/domain/gateway_outcome.py

from enum import Enum
from typing import Mapping

from src.domain.exceptions import PayloadValidationError
from src.domain.state_machine import PaymentStatus


class GatewayOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def target_status(self) -> PaymentStatus:
        return {
            GatewayOutcome.SUCCESS: PaymentStatus.COMPLETED,
            GatewayOutcome.FAILED: PaymentStatus.FAILED,
            GatewayOutcome.CANCELLED: PaymentStatus.CANCELLED,
        }[self]


CANCEL_LITERALS = {"cancel", "cancelled", "canceled"}


def pick(fields: Mapping[str, object], *names: str) -> str | None:
    """Case-insensitive lookup of the first non-empty field among `names`."""
    lowered = {str(key).lower(): value for key, value in fields.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value is not None and str(value).strip() != "":
            return str(value).strip()
    return None


def is_redirect_success(status: str | None, code: str | None) -> bool:
    return status == "0" and code == "200"


def is_cancel_request(fields: Mapping[str, object]) -> bool:
    literal = pick(fields, "status")
    return literal is not None and literal.lower() in CANCEL_LITERALS


def classify_notification(fields: Mapping[str, object]) -> GatewayOutcome:
    """
    Map a signed webhook notification to an outcome.

    Only the checksummed `PaymentStatus` is consulted: "0" is success,
    anything else is a failure.
    """
    payment_status = pick(fields, "PaymentStatus")
    if payment_status is None:
        raise PayloadValidationError("Notification carries no PaymentStatus")
    if payment_status == "0":
        return GatewayOutcome.SUCCESS
    return GatewayOutcome.FAILED
