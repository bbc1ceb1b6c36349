# src/infrastructure/repositories/ticket_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import delete, func, select

from src.infrastructure.db.models import Ticket


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def count_for_booking(self, booking_id: str) -> int:
        stmt = select(func.count(Ticket.id)).where(Ticket.booking_id == booking_id)
        return self.db.execute(stmt).scalar_one()

    def add_tickets(
        self,
        booking_id: str,
        event_id: str,
        event_ticket_id: str,
        quantity: int,
        first_sequence: int = 1,
    ) -> list[Ticket]:
        tickets = [
            Ticket(
                booking_id=booking_id,
                event_id=event_id,
                event_ticket_id=event_ticket_id,
                sequence=sequence,
                status="ACTIVE",
            )
            for sequence in range(first_sequence, first_sequence + quantity)
        ]
        self.db.add_all(tickets)
        self.db.flush()
        return tickets

    def delete_for_event(self, event_id: str) -> int:
        stmt = delete(Ticket).where(Ticket.event_id == event_id)
        return self.db.execute(stmt).rowcount
