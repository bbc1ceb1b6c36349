import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.application.booking_service import BookingService
from src.domain.booking_items import SeatLineItem
from src.domain.exceptions import BookingPipelineError
from src.infrastructure.config import AppSettings
from src.infrastructure.db.models import Event, Region, Venue
from src.infrastructure.gateway.chillpay import ChillPayClient
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.catalog_repository import CatalogRepository
from src.infrastructure.repositories.seat_repository import SeatRepository

logger = logging.getLogger(__name__)

DEFAULT_REGION_NAME = "Thailand"
DEFAULT_VENUE_NAME = "External Venue"
DEFAULT_EVENT_TITLE = "External Booking Event"
FALLBACK_EVENT_TITLE = "External Booking Fallback Event"
DEFAULT_BOOKING_TITLE = "External Booking"
DEFAULT_SEAT_PRICE = Decimal("600")
EVENT_DURATION = timedelta(hours=1)


@dataclass(frozen=True)
class ExternalBooking:
    """A partner booking after boundary validation."""

    reference: str
    amount: Decimal
    customer_name: str
    email: str
    phone: str | None
    items: list[SeatLineItem]
    event_id: str | None = None
    event_title: str | None = None
    event_date: datetime | None = None
    venue_id: str | None = None
    venue_name: str | None = None


@dataclass(frozen=True)
class IntakeResult:
    internal_id: str
    payment_url: str


class ExternalIntakeService:
    """
    Accepts bookings created in partner systems.

    Region, venue, event and customer resolution are best-effort: each step
    runs in its own SAVEPOINT and degrades to a deterministic fallback, since
    the booking row is the record of truth for payment.
    """

    def __init__(self, db: Session):
        self.db = db
        self.booking_service = BookingService(db)
        self.booking_repository = BookingRepository(db)
        self.catalog_repository = CatalogRepository(db)
        self.seat_repository = SeatRepository(db)

    def _resolve_region(self) -> Region | None:
        try:
            with self.db.begin_nested():
                region = self.catalog_repository.get_region_by_name(DEFAULT_REGION_NAME)
                if region:
                    return region
                region = self.catalog_repository.create_region(DEFAULT_REGION_NAME)
                logger.info("Created default region. region_id=%s", region.id)
                return region
        except SQLAlchemyError:
            logger.exception("Region resolution failed, continuing without region")
            return None

    def _resolve_venue(self, data: ExternalBooking, region_id: str | None) -> Venue | None:
        try:
            with self.db.begin_nested():
                if data.venue_id:
                    venue = self.catalog_repository.get_venue(data.venue_id)
                    if venue:
                        return venue
                    logger.warning(
                        "Referenced venue not found, falling back. venue_id=%s",
                        data.venue_id,
                    )

                name = data.venue_name or DEFAULT_VENUE_NAME
                venue = self.catalog_repository.get_venue_by_name(name)
                if venue:
                    return venue
                address = "External venue" if data.venue_name else "External booking"
                venue = self.catalog_repository.create_venue(name, address, region_id)
                logger.info("Created venue for external booking. venue_id=%s name=%s", venue.id, name)
                return venue
        except SQLAlchemyError:
            logger.exception("Venue resolution failed, continuing without venue")
            return None

    def _create_event(
        self,
        title: str,
        description: str,
        data: ExternalBooking,
        venue_id: str | None,
        region_id: str | None,
        seat_items: list[SeatLineItem],
    ) -> Event:
        start = data.event_date or datetime.now(timezone.utc)
        event = self.catalog_repository.create_event(
            title=title,
            description=description,
            date_time=start,
            end_time=start + EVENT_DURATION,
            venue_id=venue_id,
            region_id=region_id,
        )
        for item in seat_items:
            self.seat_repository.get_or_create_seat_type(
                event_id=event.id,
                seat_type=item.seat_type,
                price=item.price_paid,
            )
        logger.info("Created event for external booking. event_id=%s title=%s", event.id, title)
        return event

    def _resolve_event(
        self,
        data: ExternalBooking,
        venue_id: str | None,
        region_id: str | None,
    ) -> Event:
        try:
            with self.db.begin_nested():
                if data.event_id:
                    event = self.catalog_repository.get_event(data.event_id)
                    if event:
                        return event
                    logger.warning(
                        "Referenced event not found, falling back. event_id=%s",
                        data.event_id,
                    )

                if data.event_title:
                    event = self.catalog_repository.get_event_by_title(data.event_title)
                    if event:
                        return event
                    return self._create_event(
                        data.event_title,
                        f"External booking for {data.event_title}",
                        data,
                        venue_id,
                        region_id,
                        data.items,
                    )

                event = self.catalog_repository.get_event_by_title(DEFAULT_EVENT_TITLE)
                if event:
                    return event
                return self._create_event(
                    DEFAULT_EVENT_TITLE,
                    "Event created for external bookings",
                    data,
                    venue_id,
                    region_id,
                    [SeatLineItem("Standard", 1, DEFAULT_SEAT_PRICE)],
                )
        except SQLAlchemyError:
            logger.exception("Event resolution failed, creating fallback event")

        try:
            with self.db.begin_nested():
                return self._create_event(
                    FALLBACK_EVENT_TITLE,
                    "Fallback event created for external bookings",
                    data,
                    venue_id,
                    region_id,
                    [SeatLineItem("Standard", 1, data.amount or DEFAULT_SEAT_PRICE)],
                )
        except SQLAlchemyError as exc:
            logger.exception("Fallback event creation failed")
            raise BookingPipelineError("Unable to create event for booking") from exc

    def _create_customer(self, data: ExternalBooking) -> str | None:
        # No dedup by email: every intake gets its own customer row.
        try:
            with self.db.begin_nested():
                customer = self.booking_repository.add_customer(
                    data.customer_name, data.email, data.phone
                )
                return customer.id
        except SQLAlchemyError:
            logger.exception(
                "Customer creation failed, booking continues without customer. reference=%s",
                data.reference,
            )
            return None

    def receive(
        self,
        data: ExternalBooking,
        gateway: ChillPayClient,
        settings: AppSettings,
        base_url: str,
        client_ip: str,
    ) -> IntakeResult:
        logger.info(
            "Received external booking. reference=%s amount=%s seats=%s",
            data.reference,
            data.amount,
            len(data.items),
        )
        region = self._resolve_region()
        region_id = region.id if region else None
        venue = self._resolve_venue(data, region_id)
        venue_id = venue.id if venue else None
        event = self._resolve_event(data, venue_id, region_id)
        customer_id = self._create_customer(data)

        booking = self.booking_repository.create_booking(
            total_amount=data.amount,
            items=data.items,
            customer_id=customer_id,
            event_id=event.id,
            customer_name=data.customer_name,
            customer_email=data.email,
            customer_phone=data.phone,
            event_title=data.event_title or DEFAULT_BOOKING_TITLE,
            event_date=data.event_date or event.date_time,
            venue_name=data.venue_name or (venue.name if venue else DEFAULT_VENUE_NAME),
            region_name=region.name if region else DEFAULT_REGION_NAME,
            external_reference=data.reference,
        )
        self.db.commit()
        logger.info(
            "External booking stored. reference=%s internal_id=%s event_id=%s",
            data.reference,
            booking.id,
            event.id,
        )

        result = self.booking_service.initiate_payment(
            booking.id,
            gateway=gateway,
            settings=settings,
            base_url=base_url,
            client_ip=client_ip,
            email=data.email,
            phone=data.phone,
            description=f"Tickets for {data.event_title or 'Event Tickets'}",
        )
        return IntakeResult(internal_id=booking.id, payment_url=result.payment_url)
