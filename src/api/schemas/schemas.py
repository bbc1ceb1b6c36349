from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from src.domain.state_machine import PaymentStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ContactInfo(CamelModel):
    full_name: str = Field(alias="fullName", min_length=1)
    email: EmailStr
    phone: str | None = None


class TicketSelection(CamelModel):
    seat_type: str = Field(alias="seatType", min_length=1)
    quantity: int = Field(gt=0)
    price_paid: Decimal = Field(alias="pricePaid", ge=0)


class CheckoutBookingRequest(CamelModel):
    event_id: str = Field(alias="eventId", min_length=1)
    contact_info: ContactInfo = Field(alias="contactInfo")
    tickets: list[TicketSelection] = Field(min_length=1)
    total_cost: Decimal = Field(alias="totalCost", gt=0)


class CheckoutBookingResponse(CamelModel):
    success: bool
    booking_id: str = Field(serialization_alias="bookingId")
    customer_id: str | None = Field(serialization_alias="customerId")
    message: str


class PaymentInitiationRequest(CamelModel):
    booking_id: str = Field(alias="bookingId", min_length=1)
    amount: Decimal | None = Field(default=None, gt=0)
    email: EmailStr | None = None
    phone: str | None = None
    event_title: str | None = Field(default=None, alias="eventTitle")


class PaymentInitiationResponse(CamelModel):
    payment_url: str = Field(serialization_alias="paymentUrl")


class ExternalBookingRequest(CamelModel):
    booking_id: str = Field(alias="bookingId", min_length=1, max_length=128)
    amount: Decimal = Field(gt=0)
    customer_name: str = Field(alias="customerName", min_length=1)
    email: EmailStr
    phone: str | None = None
    seats: Any = None
    event_id: str | None = Field(default=None, alias="eventId")
    event_title: str | None = Field(default=None, alias="eventTitle")
    event_date: datetime | None = Field(default=None, alias="eventDate")
    venue_id: str | None = Field(default=None, alias="venueId")
    venue_name: str | None = Field(default=None, alias="venueName")

    @field_validator("event_date", mode="before")
    @classmethod
    def parse_event_date(cls, value: Any) -> Any:
        if isinstance(value, str):
            if not value.strip():
                return None
            return datetime.fromisoformat(value.strip())
        return value

    @field_validator("booking_id", "phone", mode="before")
    @classmethod
    def numbers_as_text(cls, value: Any) -> Any:
        # Partner systems send phone numbers and references as JSON numbers.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("phone", "event_id", "event_title", "venue_id", "venue_name")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


class ExternalBookingResponse(CamelModel):
    internal_id: str = Field(serialization_alias="internalId")
    payment_url: str = Field(serialization_alias="paymentUrl")


class BookingResponse(CamelModel):
    booking_id: str = Field(serialization_alias="bookingId")
    status: str
    payment_order_no: str | None = Field(serialization_alias="paymentOrderNo")
    total_amount: str = Field(serialization_alias="totalAmount")
    ticket_count: int = Field(serialization_alias="ticketCount")


class AdminStatusOverrideRequest(BaseModel):
    status: PaymentStatus


class ReconcileResponse(CamelModel):
    booking_id: str = Field(serialization_alias="bookingId")
    status: str
    tickets_issued: int = Field(serialization_alias="ticketsIssued")
    ticket_count: int = Field(serialization_alias="ticketCount")
