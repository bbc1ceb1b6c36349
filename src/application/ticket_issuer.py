import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.domain.booking_items import items_from_json
from src.domain.exceptions import TicketIssuanceError
from src.domain.state_machine import PaymentStatus
from src.infrastructure.db.models import Booking
from src.infrastructure.repositories.seat_repository import SeatRepository
from src.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)


class TicketIssuer:
    """
    Materialises one Ticket row per unit of quantity on a completed booking.

    Safe to call any number of times: a booking that already has tickets is
    left alone, and a concurrent issuer losing the unique-constraint race is
    treated as already satisfied.
    """

    def __init__(self, db: Session):
        self.db = db
        self.seat_repository = SeatRepository(db)
        self.ticket_repository = TicketRepository(db)

    def issue(self, booking: Booking) -> int:
        """Returns the number of tickets created by this call."""
        if booking.payment_status != PaymentStatus.COMPLETED:
            raise TicketIssuanceError(
                f"Booking {booking.id} is {booking.payment_status.value}; "
                "tickets are only issued for COMPLETED bookings"
            )
        if not booking.event_id:
            raise TicketIssuanceError(f"Booking {booking.id} has no event")

        existing = self.ticket_repository.count_for_booking(booking.id)
        if existing:
            logger.info(
                "Tickets already issued. booking_id=%s count=%s",
                booking.id,
                existing,
            )
            return 0

        items = items_from_json(booking.booking_items_json)
        created = 0
        next_sequence: dict[str, int] = {}
        try:
            with self.db.begin_nested():
                for item in items:
                    seat = self.seat_repository.get_or_create_seat_type(
                        event_id=booking.event_id,
                        seat_type=item.seat_type,
                        price=item.price_paid,
                    )
                    self.ticket_repository.add_tickets(
                        booking_id=booking.id,
                        event_id=booking.event_id,
                        event_ticket_id=seat.id,
                        quantity=item.quantity,
                        first_sequence=next_sequence.get(seat.id, 1),
                    )
                    next_sequence[seat.id] = next_sequence.get(seat.id, 1) + item.quantity
                    self.seat_repository.increment_sold(seat.id, item.quantity)
                    created += item.quantity
        except IntegrityError as exc:
            if self.ticket_repository.count_for_booking(booking.id):
                logger.warning(
                    "Concurrent ticket issuance detected, treating as issued. booking_id=%s",
                    booking.id,
                )
                return 0
            # Lost a seat-type creation race with another booking; retryable.
            raise TicketIssuanceError(
                f"Could not issue tickets for booking {booking.id}"
            ) from exc

        logger.info(
            "Issued tickets. booking_id=%s event_id=%s count=%s",
            booking.id,
            booking.event_id,
            created,
        )
        return created
