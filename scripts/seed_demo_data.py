from datetime import datetime, timedelta, timezone
from decimal import Decimal

from src.infrastructure.db.models import Base
from src.infrastructure.db.session import engine, get_db_session
from src.infrastructure.repositories.catalog_repository import CatalogRepository
from src.infrastructure.repositories.seat_repository import SeatRepository


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    bangkok = timezone(timedelta(hours=7))
    now_bkk = datetime.now(bangkok)
    target = now_bkk + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


EVENT_DEFS = [
    {
        "title": "Muay Thai Fight Night",
        "description": "Eight-bout card with a title fight main event.",
        "date_time": _dt(days_from_now=7, hour=19, minute=0),
        "hours": 4,
        "seat_types": [
            {"seat_type": "Standard", "price": "1500", "capacity": 400},
            {"seat_type": "Ringside", "price": "3500", "capacity": 60},
        ],
    },
    {
        "title": "Sunday Muay Thai Showcase",
        "description": "Afternoon showcase of rising fighters.",
        "date_time": _dt(days_from_now=10, hour=15, minute=30),
        "hours": 3,
        "seat_types": [
            {"seat_type": "Standard", "price": "900", "capacity": 300},
            {"seat_type": "VIP", "price": "2200", "capacity": 80},
        ],
    },
]


def seed_catalog(db) -> None:
    catalog = CatalogRepository(db)
    seats = SeatRepository(db)

    region = catalog.get_region_by_name("Thailand") or catalog.create_region("Thailand")
    venue = catalog.get_venue_by_name("Rajadamnern Stadium") or catalog.create_venue(
        "Rajadamnern Stadium",
        "1 Ratchadamnoen Nok Rd, Bangkok",
        region.id,
    )

    for item in EVENT_DEFS:
        event = catalog.get_event_by_title(item["title"])
        if event:
            seats.delete_for_event(event.id)
            event.description = item["description"]
            event.date_time = item["date_time"]
            event.end_time = item["date_time"] + timedelta(hours=item["hours"])
        else:
            event = catalog.create_event(
                title=item["title"],
                description=item["description"],
                date_time=item["date_time"],
                end_time=item["date_time"] + timedelta(hours=item["hours"]),
                venue_id=venue.id,
                region_id=region.id,
            )

        for seat in item["seat_types"]:
            seats.create_seat_type(
                event_id=event.id,
                seat_type=seat["seat_type"],
                price=Decimal(seat["price"]),
                capacity=seat["capacity"],
            )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_catalog(db)
    print("Seed complete: Thailand region, Rajadamnern Stadium and two events added.")


if __name__ == "__main__":
    main()
