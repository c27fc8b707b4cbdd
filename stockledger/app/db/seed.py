from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select

from stockledger.app.core.config import get_settings
from stockledger.app.core.logging import configure_logging
from stockledger.app.db.models.core_types import LocationType, PeriodLocationStatus, PeriodStatus, Role
from stockledger.app.db.models.models_v1 import Location, Period, PeriodLocation, User
from stockledger.app.db.session import SessionLocal

logger = logging.getLogger(__name__)

LOCATIONS = (
    ("MAIN", "Main Kitchen", LocationType.kitchen),
    ("STORE", "Central Store", LocationType.central),
)

USERS = (
    ("admin", "Administrator", Role.admin),
    ("supervisor", "Supervisor", Role.supervisor),
    ("operator", "Store Operator", Role.operator),
    ("buyer", "Procurement", Role.procurement),
)


def run_seed():
    db = SessionLocal()
    try:
        # 1) Sites
        for code, name, kind in LOCATIONS:
            if not db.scalar(select(Location).where(Location.code == code)):
                db.add(Location(code=code, name=name, type=kind, is_active=True))
        db.commit()

        # 2) Utilisateurs (pas d'auth : identifiés par X-User-Id)
        for username, full_name, role in USERS:
            if not db.scalar(select(User).where(User.username == username)):
                db.add(User(username=username, full_name=full_name, role=role, is_active=True))
        db.commit()

        # 3) Période courante, ouverte sur tous les sites
        today = date.today()
        start = today.replace(day=1)
        next_month = date(start.year + (start.month // 12), start.month % 12 + 1, 1)
        name = start.strftime("%B %Y")
        period = db.scalar(select(Period).where(Period.name == name))
        if not period:
            period = Period(
                name=name,
                start_date=start,
                end_date=date.fromordinal(next_month.toordinal() - 1),
                status=PeriodStatus.open,
            )
            for loc in db.scalars(select(Location).order_by(Location.id)):
                period.period_locations.append(
                    PeriodLocation(location_id=loc.id, status=PeriodLocationStatus.open)
                )
            db.add(period)
            db.commit()

        logger.info("seed ok: %d locations, %d users, period=%s", len(LOCATIONS), len(USERS), name)
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging(get_settings())
    run_seed()
