import logging

from sqlalchemy.orm import Session

from src.domain.exceptions import BookingNotFoundError
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.catalog_repository import CatalogRepository
from src.infrastructure.repositories.seat_repository import SeatRepository
from src.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)


class AdminService:

    def __init__(self, db: Session):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.catalog_repository = CatalogRepository(db)
        self.seat_repository = SeatRepository(db)
        self.ticket_repository = TicketRepository(db)

    def cancel_and_delete_event(self, event_id: str) -> dict:
        """
        Remove an event with its tickets and seat types. Bookings are
        audit records and survive, detached from the event.
        """
        if not self.catalog_repository.get_event(event_id):
            raise BookingNotFoundError(f"Event {event_id} not found")

        tickets = self.ticket_repository.delete_for_event(event_id)
        seat_types = self.seat_repository.delete_for_event(event_id)
        bookings = self.booking_repository.detach_event(event_id)
        self.catalog_repository.delete_event(event_id)
        self.db.commit()

        logger.warning(
            "Deleted event. event_id=%s tickets=%s seat_types=%s detached_bookings=%s",
            event_id,
            tickets,
            seat_types,
            bookings,
        )
        return {
            "event_id": event_id,
            "deleted_tickets": tickets,
            "deleted_seat_types": seat_types,
            "detached_bookings": bookings,
        }
