import logging
from dataclasses import dataclass
from typing import Mapping

from sqlalchemy.orm import Session

from src.application.booking_service import BookingService
from src.application.ticket_issuer import TicketIssuer
from src.domain.exceptions import (
    ChecksumMismatchError,
    InvalidStateTransitionError,
    PayloadValidationError,
)
from src.domain.gateway_outcome import (
    GatewayOutcome,
    classify_notification,
    is_cancel_request,
    is_redirect_success,
    pick,
)
from src.domain.state_machine import PaymentStatus
from src.infrastructure.config import ChillPayConfig
from src.infrastructure.db.models import Booking
from src.infrastructure.gateway.chillpay import verify_notification_checksum
from src.infrastructure.notifications.email_notifier import PaymentNotifier
from src.infrastructure.repositories.booking_repository import BookingRepository

logger = logging.getLogger(__name__)

CONFIRMATION_SUCCESS = "success"
CONFIRMATION_FAILED = "failed"
CONFIRMATION_ERROR = "error"

PENDING_CONFIRMATION_MESSAGE = (
    "We couldn't confirm your payment yet. Please check back shortly."
)

WEBHOOK_CHANNEL = "webhook"
CALLBACK_CHANNEL = "callback"
REDIRECT_CHANNEL = "redirect"


@dataclass(frozen=True)
class ReconciliationResult:
    booking: Booking | None
    changed: bool
    status: PaymentStatus | None
    tickets_issued: int = 0


@dataclass(frozen=True)
class RedirectOutcome:
    booking_id: str | None
    status: str
    message: str | None = None


class ReconciliationService:
    """
    Folds gateway notifications into the booking state machine.

    The signed webhook is the only channel that issues tickets or sends the
    confirmation email. The browser redirect can at most record a
    provisional COMPLETED, whose side effects the webhook completes later.
    """

    def __init__(
        self,
        db: Session,
        notifier: PaymentNotifier,
        gateway_config: ChillPayConfig,
    ):
        self.db = db
        self.notifier = notifier
        self.gateway_config = gateway_config
        self.booking_service = BookingService(db)
        self.booking_repository = BookingRepository(db)
        self.ticket_issuer = TicketIssuer(db)

    def apply_outcome(
        self,
        booking: Booking,
        outcome: GatewayOutcome,
        channel: str,
        **details,
    ) -> ReconciliationResult:
        target = outcome.target_status
        notify_status = None
        try:
            transition = self.booking_service.transition(booking.id, target, **details)
            tickets = 0
            if transition.changed and channel != REDIRECT_CHANNEL:
                if target == PaymentStatus.COMPLETED:
                    tickets = self._issue_tickets(transition.booking)
                notify_status = target
            elif (
                channel == WEBHOOK_CHANNEL
                and not transition.changed
                and transition.status == PaymentStatus.COMPLETED
            ):
                if outcome == GatewayOutcome.SUCCESS:
                    # Completed earlier without side effects (redirect or admin override).
                    tickets = self._issue_tickets(transition.booking)
                    if tickets:
                        notify_status = PaymentStatus.COMPLETED
                else:
                    logger.error(
                        "Gateway reports %s for a booking already COMPLETED. booking_id=%s",
                        outcome.value,
                        booking.id,
                    )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Reconciled booking. booking_id=%s channel=%s outcome=%s status=%s changed=%s tickets=%s",
            booking.id,
            channel,
            outcome.value,
            transition.status.value,
            transition.changed,
            tickets,
        )

        if notify_status is not None:
            self._notify(transition.booking, notify_status)

        return ReconciliationResult(
            booking=transition.booking,
            changed=transition.changed,
            status=transition.status,
            tickets_issued=tickets,
        )

    def _issue_tickets(self, booking: Booking) -> int:
        if not booking.event_id:
            # Event was deleted while the payment was in flight.
            logger.error(
                "Completed booking has no event, tickets not issued. booking_id=%s",
                booking.id,
            )
            return 0
        return self.ticket_issuer.issue(booking)

    def _notify(self, booking: Booking, status: PaymentStatus) -> None:
        try:
            if status == PaymentStatus.COMPLETED:
                self.notifier.send_payment_confirmation(booking)
            elif status == PaymentStatus.FAILED:
                self.notifier.send_payment_failure(booking)
        except Exception:
            logger.exception(
                "Payment notification failed. booking_id=%s status=%s",
                booking.id,
                status.value,
            )

    # -----------------------------
    # Webhook (authoritative)
    # -----------------------------
    def _verify_checksum(self, fields: Mapping[str, str], order_no: str) -> None:
        received = pick(fields, "CheckSum")
        if received is None:
            logger.error("Webhook without checksum rejected. order_no=%s", order_no)
            raise ChecksumMismatchError("Missing checksum")
        if not verify_notification_checksum(fields, received, self.gateway_config.md5_secret):
            logger.error("Webhook checksum mismatch. order_no=%s", order_no)
            raise ChecksumMismatchError("Invalid checksum")

    def handle_webhook(self, fields: Mapping[str, str]) -> ReconciliationResult:
        order_no = pick(fields, "OrderNo")
        if not order_no:
            raise PayloadValidationError("Missing orderNo")

        self._verify_checksum(fields, order_no)
        outcome = classify_notification(fields)

        booking = self.booking_repository.get_by_order_no(order_no)
        if not booking:
            logger.error(
                "Webhook for unknown order, acknowledging without change. order_no=%s outcome=%s",
                order_no,
                outcome.value,
            )
            return ReconciliationResult(booking=None, changed=False, status=None)

        return self.apply_outcome(
            booking,
            outcome,
            channel=WEBHOOK_CHANNEL,
            payment_transaction_id=pick(fields, "TransactionId"),
            payment_bank_code=pick(fields, "BankCode"),
            payment_bank_ref_code=pick(fields, "BankRefCode"),
            payment_date=pick(fields, "PaymentDate"),
            payment_method="credit-card",
        )

    def handle_cancel_callback(self, fields: Mapping[str, str]) -> ReconciliationResult:
        """Legacy POST callback; only the user-cancel literal changes state."""
        order_no = pick(fields, "orderNo")
        if not order_no:
            raise PayloadValidationError("Missing orderNo parameter")

        booking = self.booking_repository.get_by_order_no(order_no)
        if not is_cancel_request(fields):
            return ReconciliationResult(
                booking=booking,
                changed=False,
                status=booking.payment_status if booking else None,
            )
        if not booking:
            logger.error("Cancel callback for unknown order. order_no=%s", order_no)
            return ReconciliationResult(booking=None, changed=False, status=None)

        return self.apply_outcome(booking, GatewayOutcome.CANCELLED, channel=CALLBACK_CHANNEL)

    # -----------------------------
    # Browser redirect (advisory)
    # -----------------------------
    def _locate_for_redirect(self, booking_id: str | None, order_no: str | None) -> Booking | None:
        booking = None
        if booking_id:
            booking = self.booking_repository.get_by_id(booking_id)
        if booking is None and order_no:
            booking = self.booking_repository.get_by_order_no(order_no)
        if booking and order_no and booking.payment_order_no not in (None, order_no):
            logger.warning(
                "Redirect order number does not match booking. booking_id=%s order_no=%s",
                booking.id,
                order_no,
            )
            return None
        return booking

    def handle_redirect(
        self,
        params: Mapping[str, str],
        write_status: bool,
    ) -> RedirectOutcome:
        """
        Work out which confirmation page the returning browser should see.

        With `write_status`, a reported success carrying the booking's own
        order number is recorded as a provisional COMPLETED. Failures are
        never written here, so the webhook can still complete the booking.
        """
        booking_id = pick(params, "bookingId")
        order_no = pick(params, "OrderNo")
        message = pick(params, "Message")
        reported_success = is_redirect_success(
            pick(params, "Status"), pick(params, "Code")
        )

        booking = self._locate_for_redirect(booking_id, order_no)
        if booking is None:
            logger.error(
                "Redirect for unknown booking. booking_id=%s order_no=%s",
                booking_id,
                order_no,
            )
            return RedirectOutcome(
                booking_id=booking_id,
                status=CONFIRMATION_ERROR,
                message=PENDING_CONFIRMATION_MESSAGE,
            )

        status = booking.payment_status
        if (
            write_status
            and reported_success
            and order_no
            and order_no == booking.payment_order_no
        ):
            logger.warning(
                "Provisional status write from browser redirect. booking_id=%s order_no=%s",
                booking.id,
                order_no,
            )
            result = self.apply_outcome(
                booking,
                GatewayOutcome.SUCCESS,
                channel=REDIRECT_CHANNEL,
                payment_transaction_id=pick(params, "TransactionId"),
            )
            status = result.status

        if status == PaymentStatus.COMPLETED:
            return RedirectOutcome(booking_id=booking.id, status=CONFIRMATION_SUCCESS)
        if status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            return RedirectOutcome(
                booking_id=booking.id,
                status=CONFIRMATION_FAILED,
                message=message or "Payment failed",
            )

        # Not terminal yet: show what the gateway told the browser.
        if reported_success:
            return RedirectOutcome(booking_id=booking.id, status=CONFIRMATION_SUCCESS)
        return RedirectOutcome(
            booking_id=booking.id,
            status=CONFIRMATION_FAILED,
            message=message or "Payment failed",
        )

    # -----------------------------
    # Admin reconcile / resend
    # -----------------------------
    def reconcile_completed(self, booking_id: str) -> ReconciliationResult:
        booking = self.booking_service.get_booking(booking_id)
        if booking.payment_status != PaymentStatus.COMPLETED:
            raise InvalidStateTransitionError(
                from_state=booking.payment_status.value,
                to_state=PaymentStatus.COMPLETED.value,
            )
        try:
            tickets = self.ticket_issuer.issue(booking)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self._notify(booking, PaymentStatus.COMPLETED)
        return ReconciliationResult(
            booking=booking,
            changed=False,
            status=booking.payment_status,
            tickets_issued=tickets,
        )
