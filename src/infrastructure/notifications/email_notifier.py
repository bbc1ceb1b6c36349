# src/infrastructure/notifications/email_notifier.py

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone

from src.infrastructure.db.models import Booking

logger = logging.getLogger(__name__)

BRAND_NAME = "Teeramuaythaione"


@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str
    booking_id: str
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PaymentNotifier(ABC):
    """Collaborator told about terminal payment outcomes."""

    @abstractmethod
    def send_payment_confirmation(self, booking: Booking) -> None: ...

    @abstractmethod
    def send_payment_failure(self, booking: Booking) -> None: ...


def _format_amount(booking: Booking) -> str:
    return f"฿{booking.total_amount:,.2f}"


def confirmation_message(booking: Booking) -> EmailMessage:
    event_date = (
        booking.event_date_snapshot.strftime("%d %b %Y")
        if booking.event_date_snapshot
        else "TBA"
    )
    body = "\n".join(
        [
            f"Dear {booking.customer_name_snapshot},",
            "",
            "Thank you for your payment. Your booking for "
            f"{booking.event_title_snapshot} has been confirmed.",
            "",
            "Booking Details:",
            f"  Booking ID: {booking.id}",
            f"  Event: {booking.event_title_snapshot}",
            f"  Date: {event_date}",
            f"  Venue: {booking.venue_name_snapshot}",
            f"  Region: {booking.region_name_snapshot}",
            f"  Payment Amount: {_format_amount(booking)}",
            f"  Payment Method: {booking.payment_method or 'credit-card'}",
            f"  Transaction ID: {booking.payment_transaction_id or '-'}",
            "",
            "We look forward to seeing you at the event!",
        ]
    )
    return EmailMessage(
        to=booking.customer_email_snapshot or "",
        subject=f"Payment Confirmation - {BRAND_NAME}",
        body=body,
        booking_id=booking.id,
    )


def failure_message(booking: Booking) -> EmailMessage:
    body = "\n".join(
        [
            f"Dear {booking.customer_name_snapshot},",
            "",
            "We're sorry to inform you that your payment for "
            f"{booking.event_title_snapshot} was not successful.",
            "You can try again by visiting our website and completing the payment process.",
            "",
            "Booking Details:",
            f"  Booking ID: {booking.id}",
            f"  Event: {booking.event_title_snapshot}",
            f"  Payment Amount: {_format_amount(booking)}",
            "",
            "If you continue to experience issues, please contact our support team.",
        ]
    )
    return EmailMessage(
        to=booking.customer_email_snapshot or "",
        subject=f"Payment Failed - {BRAND_NAME}",
        body=body,
        booking_id=booking.id,
    )


class OutboxEmailNotifier(PaymentNotifier):
    """
    Renders payment emails and hands them to the mail relay by logging
    them; delivery itself belongs to the relay. Sent messages are kept
    in `sent` for inspection.
    """

    def __init__(self):
        self.sent: list[EmailMessage] = []

    def _dispatch(self, message: EmailMessage) -> None:
        if not message.to:
            logger.warning(
                "Skipping email without recipient. booking_id=%s subject=%s",
                message.booking_id,
                message.subject,
            )
            return
        self.sent.append(message)
        logger.info(
            "Email queued. to=%s subject=%s booking_id=%s",
            message.to,
            message.subject,
            message.booking_id,
        )

    def send_payment_confirmation(self, booking: Booking) -> None:
        self._dispatch(confirmation_message(booking))

    def send_payment_failure(self, booking: Booking) -> None:
        self._dispatch(failure_message(booking))
