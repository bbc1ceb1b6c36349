# src/infrastructure/repositories/booking_repository.py

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from src.domain.booking_items import SeatLineItem, items_to_json
from src.domain.state_machine import BookingStateMachine, PaymentStatus
from src.infrastructure.db.models import Booking, Customer

logger = logging.getLogger(__name__)


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_order_no(
        self,
        order_no: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.payment_order_no == order_no)
        return self.db.execute(stmt).scalar_one_or_none()

    def add_customer(
        self,
        name: str,
        email: str,
        phone: str | None,
    ) -> Customer:
        customer = Customer(name=name, email=email, phone=phone or None)
        self.db.add(customer)
        self.db.flush()
        return customer

    def create_booking(
        self,
        *,
        total_amount: Decimal,
        items: list[SeatLineItem],
        customer_id: str | None,
        event_id: str | None,
        customer_name: str,
        customer_email: str,
        customer_phone: str | None,
        event_title: str | None,
        event_date: datetime | None,
        venue_name: str | None,
        region_name: str | None,
        external_reference: str | None = None,
    ) -> Booking:
        # Line items live on the booking row itself, so a booking is
        # never persisted without them.
        booking = Booking(
            customer_id=customer_id,
            event_id=event_id,
            total_amount=total_amount,
            payment_status=PaymentStatus.PENDING,
            external_reference=external_reference,
            customer_name_snapshot=customer_name,
            customer_email_snapshot=customer_email,
            customer_phone_snapshot=customer_phone or None,
            event_title_snapshot=event_title,
            event_date_snapshot=event_date,
            venue_name_snapshot=venue_name,
            region_name_snapshot=region_name,
            booking_items_json=items_to_json(items),
        )

        self.db.add(booking)
        self.db.flush()
        return booking

    def assign_order_no(self, booking_id: str, order_no: str) -> str:
        """
        Set the gateway order number if none is set yet and return the
        order number the row ends up with.
        """
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.payment_order_no.is_(None))
            .values(payment_order_no=order_no)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        current = self.db.execute(
            select(Booking.payment_order_no).where(Booking.id == booking_id)
        ).scalar_one()
        return current

    def transition_status(
        self,
        booking_id: str,
        to_status: PaymentStatus,
        **details,
    ) -> bool:
        """
        Conditionally move a booking to `to_status`.

        A single UPDATE ... WHERE payment_status IN (<legal sources>) so two
        handlers racing on the same row cannot both win. Returns True only
        when this call performed the transition.
        """
        sources = BookingStateMachine.sources_for(to_status)
        values = {"payment_status": to_status}
        values.update({key: value for key, value in details.items() if value})

        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.payment_status.in_(sources))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def override_status(
        self,
        booking: Booking,
        new_status: PaymentStatus,
    ) -> None:
        # Bypasses the state machine; admin override only.
        booking.payment_status = new_status
        self.db.flush()

    def refresh(self, booking: Booking) -> Booking:
        self.db.refresh(booking)
        return booking

    def detach_event(self, event_id: str) -> int:
        stmt = (
            update(Booking)
            .where(Booking.event_id == event_id)
            .values(event_id=None)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount
