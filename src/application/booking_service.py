import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from src.domain.booking_items import SeatLineItem
from src.domain.exceptions import (
    BookingNotFoundError,
    GatewayError,
    PayloadValidationError,
)
from src.domain.state_machine import PaymentStatus
from src.infrastructure.config import AppSettings
from src.infrastructure.db.models import Booking
from src.infrastructure.gateway.chillpay import (
    ChillPayClient,
    PaymentInitResult,
    PaymentRequest,
    generate_order_no,
    to_minor_units,
)
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.catalog_repository import CatalogRepository

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/api/checkout/chillpay/callback"
WEBHOOK_PATH = "/api/checkout/chillpay/webhook"


@dataclass(frozen=True)
class TransitionResult:
    booking: Booking
    changed: bool
    status: PaymentStatus


class BookingService:
    """Application service coordinating the booking payment workflow."""

    def __init__(self, db: Session):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.catalog_repository = CatalogRepository(db)

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        return booking

    def create_checkout_booking(
        self,
        event_id: str,
        full_name: str,
        email: str,
        phone: str | None,
        items: list[SeatLineItem],
        total_amount: Decimal,
    ) -> Booking:
        """
        Direct checkout path: the event must already exist. Customer and
        booking are written in the caller's transaction.
        """
        event = self.catalog_repository.get_event(event_id)
        if not event:
            raise BookingNotFoundError(f"Event {event_id} not found")
        if total_amount <= 0:
            raise PayloadValidationError("totalCost must be positive")

        venue = (
            self.catalog_repository.get_venue(event.venue_id)
            if event.venue_id
            else None
        )
        region = (
            self.catalog_repository.get_region(event.region_id)
            if event.region_id
            else None
        )

        customer = self.booking_repository.add_customer(full_name, email, phone)
        booking = self.booking_repository.create_booking(
            total_amount=total_amount,
            items=items,
            customer_id=customer.id,
            event_id=event.id,
            customer_name=full_name,
            customer_email=email,
            customer_phone=phone,
            event_title=event.title,
            event_date=event.date_time,
            venue_name=venue.name if venue else None,
            region_name=region.name if region else None,
        )
        self.db.commit()
        logger.info(
            "Created checkout booking. booking_id=%s event_id=%s total=%s",
            booking.id,
            event.id,
            total_amount,
        )
        return booking

    def transition(
        self,
        booking_id: str,
        to_status: PaymentStatus,
        **details,
    ) -> TransitionResult:
        changed = self.booking_repository.transition_status(
            booking_id, to_status, **details
        )
        booking = self.get_booking(booking_id)
        self.booking_repository.refresh(booking)
        if changed:
            logger.info(
                "Booking status changed. booking_id=%s to=%s",
                booking_id,
                to_status.value,
            )
        else:
            logger.warning(
                "Booking status unchanged. booking_id=%s requested=%s current=%s",
                booking_id,
                to_status.value,
                booking.payment_status.value,
            )
        return TransitionResult(
            booking=booking,
            changed=changed,
            status=booking.payment_status,
        )

    def initiate_payment(
        self,
        booking_id: str,
        gateway: ChillPayClient,
        settings: AppSettings,
        base_url: str,
        client_ip: str,
        email: str | None = None,
        phone: str | None = None,
        description: str | None = None,
        expected_amount: Decimal | None = None,
    ) -> PaymentInitResult:
        """
        Sign and send the payment-initiation request for a PENDING booking.

        The order number is persisted before the outbound call. The booking
        only moves to PROCESSING once a payment URL came back, so a failed
        or timed-out call leaves it PENDING and checkout can simply be
        retried.
        """
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking or booking.payment_status != PaymentStatus.PENDING:
            raise BookingNotFoundError("Booking not found or already processed")

        if expected_amount is not None and to_minor_units(expected_amount) != to_minor_units(
            booking.total_amount
        ):
            raise PayloadValidationError("Amount does not match booking total")

        order_no = self.booking_repository.assign_order_no(
            booking.id, generate_order_no(booking.id)
        )
        self.db.commit()

        base = (settings.public_base_url or base_url).rstrip("/")
        request = PaymentRequest(
            order_no=order_no,
            customer_id=booking.customer_id or booking.id,
            amount=booking.total_amount,
            phone_number=phone or booking.customer_phone_snapshot or settings.fallback_phone_number,
            description=(
                description
                or booking.event_title_snapshot
                or f"Booking for event {booking.event_id}"
            ),
            customer_email=email or booking.customer_email_snapshot or "",
            ip_address=client_ip,
            return_url=f"{base}{CALLBACK_PATH}?bookingId={booking.id}",
            notify_url=f"{base}{WEBHOOK_PATH}",
        )

        try:
            result = gateway.create_payment(request)
        except GatewayError as exc:
            logger.error(
                "Payment initiation failed, booking stays PENDING. booking_id=%s order_no=%s error=%s",
                booking.id,
                order_no,
                exc.message,
            )
            raise

        self.transition(booking.id, PaymentStatus.PROCESSING)
        self.db.commit()
        return result

    def override_status(self, booking_id: str, new_status: PaymentStatus) -> Booking:
        booking = self.get_booking(booking_id)
        previous = booking.payment_status
        self.booking_repository.override_status(booking, new_status)
        self.db.commit()
        logger.warning(
            "Admin override of booking status. booking_id=%s from=%s to=%s",
            booking_id,
            previous.value,
            new_status.value,
        )
        return booking
