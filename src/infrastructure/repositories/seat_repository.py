# src/infrastructure/repositories/seat_repository.py

from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import delete, select, update

from src.infrastructure.db.models import EventTicket

DEFAULT_SEAT_CAPACITY = 100


class SeatRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_seat_type(self, event_id: str, seat_type: str) -> EventTicket | None:
        stmt = (
            select(EventTicket)
            .where(EventTicket.event_id == event_id)
            .where(EventTicket.seat_type == seat_type)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_seat_type(
        self,
        event_id: str,
        seat_type: str,
        price: Decimal,
        capacity: int = DEFAULT_SEAT_CAPACITY,
    ) -> EventTicket:
        seat = EventTicket(
            event_id=event_id,
            seat_type=seat_type,
            price=price,
            capacity=capacity,
            sold_count=0,
        )
        self.db.add(seat)
        self.db.flush()
        return seat

    def get_or_create_seat_type(
        self,
        event_id: str,
        seat_type: str,
        price: Decimal,
    ) -> EventTicket:
        existing = self.get_seat_type(event_id, seat_type)
        if existing:
            return existing
        return self.create_seat_type(event_id, seat_type, price)

    def increment_sold(self, seat_id: str, quantity: int) -> None:
        # Arithmetic stays in SQL so concurrent issuers never lose a count.
        stmt = (
            update(EventTicket)
            .where(EventTicket.id == seat_id)
            .values(sold_count=EventTicket.sold_count + quantity)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)

    def delete_for_event(self, event_id: str) -> int:
        stmt = delete(EventTicket).where(EventTicket.event_id == event_id)
        return self.db.execute(stmt).rowcount
