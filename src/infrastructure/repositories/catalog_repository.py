# src/infrastructure/repositories/catalog_repository.py

import re
from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import delete, select

from src.infrastructure.db.models import Event, Region, Venue


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "region"


class CatalogRepository:
    """Regions, venues and events referenced by bookings."""

    def __init__(self, db: Session):
        self.db = db

    def get_region_by_name(self, name: str) -> Region | None:
        stmt = select(Region).where(Region.name == name)
        return self.db.execute(stmt).scalars().first()

    def get_region(self, region_id: str) -> Region | None:
        return self.db.get(Region, region_id)

    def create_region(self, name: str) -> Region:
        region = Region(name=name, slug=slugify(name))
        self.db.add(region)
        self.db.flush()
        return region

    def get_venue(self, venue_id: str) -> Venue | None:
        return self.db.get(Venue, venue_id)

    def get_venue_by_name(self, name: str) -> Venue | None:
        stmt = select(Venue).where(Venue.name == name)
        return self.db.execute(stmt).scalars().first()

    def create_venue(self, name: str, address: str, region_id: str | None) -> Venue:
        venue = Venue(name=name, address=address, region_id=region_id)
        self.db.add(venue)
        self.db.flush()
        return venue

    def get_event(self, event_id: str) -> Event | None:
        return self.db.get(Event, event_id)

    def get_event_by_title(self, title: str) -> Event | None:
        stmt = select(Event).where(Event.title == title).order_by(Event.created_at)
        return self.db.execute(stmt).scalars().first()

    def create_event(
        self,
        title: str,
        description: str,
        date_time: datetime,
        end_time: datetime | None,
        venue_id: str | None,
        region_id: str | None,
    ) -> Event:
        event = Event(
            title=title,
            description=description,
            date_time=date_time,
            end_time=end_time,
            venue_id=venue_id,
            region_id=region_id,
            status="SCHEDULED",
        )
        self.db.add(event)
        self.db.flush()
        return event

    def delete_event(self, event_id: str) -> int:
        stmt = delete(Event).where(Event.id == event_id)
        return self.db.execute(stmt).rowcount
