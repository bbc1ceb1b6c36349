from decimal import Decimal

import pytest
from sqlalchemy import select

from src.application.ticket_issuer import TicketIssuer
from src.domain.booking_items import SeatLineItem
from src.domain.exceptions import TicketIssuanceError
from src.domain.state_machine import PaymentStatus
from src.infrastructure.db.models import Ticket
from src.infrastructure.repositories.seat_repository import (
    DEFAULT_SEAT_CAPACITY,
    SeatRepository,
)
from src.infrastructure.repositories.ticket_repository import TicketRepository


def _sold(db, event_id, seat_type):
    db.expire_all()
    return SeatRepository(db).get_seat_type(event_id, seat_type).sold_count


def _tickets(db, booking_id):
    return db.scalars(
        select(Ticket).where(Ticket.booking_id == booking_id).order_by(Ticket.sequence)
    ).all()


def test_issues_one_ticket_per_unit(db, event, make_booking):
    booking = make_booking(status=PaymentStatus.COMPLETED)

    created = TicketIssuer(db).issue(booking)
    db.commit()

    assert created == 3
    tickets = _tickets(db, booking.id)
    assert len(tickets) == 3
    assert {ticket.status for ticket in tickets} == {"ACTIVE"}
    assert _sold(db, event.id, "Standard") == 2
    assert _sold(db, event.id, "Ringside") == 1


def test_second_issue_is_a_no_op(db, event, make_booking):
    booking = make_booking(status=PaymentStatus.COMPLETED)
    issuer = TicketIssuer(db)

    issuer.issue(booking)
    db.commit()
    again = issuer.issue(booking)
    db.commit()

    assert again == 0
    assert TicketRepository(db).count_for_booking(booking.id) == 3
    assert _sold(db, event.id, "Standard") == 2


def test_unknown_seat_type_is_created(db, event, make_booking):
    booking = make_booking(
        items=[SeatLineItem("Balcony", 2, Decimal("750.00"))],
        total=Decimal("1500.00"),
        status=PaymentStatus.COMPLETED,
    )

    assert TicketIssuer(db).issue(booking) == 2
    db.commit()

    db.expire_all()
    seat = SeatRepository(db).get_seat_type(event.id, "Balcony")
    assert seat.capacity == DEFAULT_SEAT_CAPACITY
    assert seat.price == Decimal("750.00")
    assert seat.sold_count == 2


def test_repeated_seat_type_lines_get_distinct_sequences(db, event, make_booking):
    booking = make_booking(
        items=[
            SeatLineItem("Standard", 2, Decimal("500.00")),
            SeatLineItem("Standard", 1, Decimal("450.00")),
        ],
        total=Decimal("1450.00"),
        status=PaymentStatus.COMPLETED,
    )

    assert TicketIssuer(db).issue(booking) == 3
    db.commit()

    tickets = _tickets(db, booking.id)
    assert [ticket.sequence for ticket in tickets] == [1, 2, 3]
    assert _sold(db, event.id, "Standard") == 3


@pytest.mark.parametrize(
    "status",
    [
        PaymentStatus.PENDING,
        PaymentStatus.PROCESSING,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    ],
)
def test_only_completed_bookings_get_tickets(db, make_booking, status):
    booking = make_booking(status=status)

    with pytest.raises(TicketIssuanceError):
        TicketIssuer(db).issue(booking)

    assert TicketRepository(db).count_for_booking(booking.id) == 0
