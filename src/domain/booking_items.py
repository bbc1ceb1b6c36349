# src/domain/booking_items.py

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from src.domain.exceptions import PayloadValidationError

DEFAULT_SEAT_TYPE = "Standard"


@dataclass(frozen=True)
class SeatLineItem:
    """One priced seat-type line of a booking."""

    seat_type: str
    quantity: int
    price_paid: Decimal
    cost_at_booking: Decimal | None = None

    def to_json(self) -> dict:
        return {
            "seatType": self.seat_type,
            "quantity": self.quantity,
            "pricePaid": str(self.price_paid),
            "costAtBooking": (
                str(self.cost_at_booking)
                if self.cost_at_booking is not None
                else None
            ),
        }


def _to_decimal(value: Any, field: str) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise PayloadValidationError(f"{field} must be a number")
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise PayloadValidationError(f"{field} must be a number") from exc
    if not result.is_finite() or result < 0:
        raise PayloadValidationError(f"{field} must be a non-negative number")
    return result


def _to_quantity(value: Any) -> int:
    if value is None:
        return 1
    if isinstance(value, bool):
        raise PayloadValidationError("quantity must be an integer")
    try:
        quantity = int(str(value))
    except ValueError as exc:
        raise PayloadValidationError("quantity must be an integer") from exc
    if quantity < 1:
        raise PayloadValidationError("quantity must be at least 1")
    return quantity


def _line_item_from_mapping(raw: dict) -> SeatLineItem:
    seat_type = raw.get("seatType") or raw.get("seat_type") or DEFAULT_SEAT_TYPE
    if not isinstance(seat_type, str):
        raise PayloadValidationError("seatType must be a string")
    price_paid = raw.get("pricePaid", raw.get("price_paid"))
    cost = raw.get("costAtBooking", raw.get("cost_at_booking"))
    return SeatLineItem(
        seat_type=seat_type.strip() or DEFAULT_SEAT_TYPE,
        quantity=_to_quantity(raw.get("quantity")),
        price_paid=_to_decimal(price_paid, "pricePaid"),
        cost_at_booking=(
            _to_decimal(cost, "costAtBooking") if cost is not None else None
        ),
    )


def normalize_seats(raw: Any, total_amount: Decimal) -> list[SeatLineItem]:
    """
    Decode the `seats` field of an inbound payload into line items.

    Partner systems send this field as a JSON-encoded string, as an already
    decoded list, as a single object, or not at all. Absent seats become one
    Standard seat priced at the booking total.
    """
    if raw is None or raw == "":
        return [
            SeatLineItem(
                seat_type=DEFAULT_SEAT_TYPE,
                quantity=1,
                price_paid=total_amount,
            )
        ]

    if isinstance(raw, (bytes, str)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise PayloadValidationError("seats is not valid JSON") from exc

    if isinstance(raw, dict):
        raw = [raw]

    if not isinstance(raw, list):
        raise PayloadValidationError("seats must be a list of seat objects")
    if not raw:
        raise PayloadValidationError("seats must not be empty")

    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise PayloadValidationError("each seat must be an object")
        items.append(_line_item_from_mapping(entry))
    return items


def items_to_json(items: list[SeatLineItem]) -> list[dict]:
    return [item.to_json() for item in items]


def items_from_json(raw: Any) -> list[SeatLineItem]:
    """Rehydrate line items persisted on a booking row."""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = json.loads(raw)
    return [_line_item_from_mapping(entry) for entry in raw]
