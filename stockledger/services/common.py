"""Shared lookups used by every processor: actors, periods, document numbers."""

from __future__ import annotations

from datetime import date
from typing import Iterable, TypeVar

from sqlalchemy import Integer, cast, func, select
from sqlalchemy.orm import Session

from stockledger.app.core.errors import NotFoundError, PeriodNotOpen, PermissionDenied
from stockledger.app.db.models.core_types import PeriodLocationStatus, PeriodStatus, Role
from stockledger.app.db.models.models_v1 import Location, Period, PeriodLocation, User

T = TypeVar("T")

REVIEWER_ROLES = frozenset({Role.supervisor, Role.admin})


def get_or_404(db: Session, model: type[T], entity_id: int, label: str | None = None, *, lock: bool = False) -> T:
    if lock:
        obj = db.execute(
            select(model).where(model.id == entity_id).with_for_update()  # type: ignore[attr-defined]
        ).scalar_one_or_none()
    else:
        obj = db.get(model, entity_id)
    if obj is None:
        label = label or model.__name__
        raise NotFoundError(f"{label} {entity_id} not found", code=f"{label.upper()}_NOT_FOUND")
    return obj


def get_actor(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise PermissionDenied(f"User {user_id} is unknown or inactive", code="UNKNOWN_ACTOR")
    return user


def require_role(user: User, roles: Iterable[Role], action: str) -> None:
    roles = frozenset(roles)
    if user.role not in roles:
        allowed = ", ".join(sorted(r.value for r in roles))
        raise PermissionDenied(
            f"{user.username} ({user.role.value}) cannot {action}; requires one of: {allowed}",
            code="INSUFFICIENT_PERMISSIONS",
        )


def get_location(db: Session, location_id: int) -> Location:
    location = get_or_404(db, Location, location_id, "Location")
    if not location.is_active:
        raise NotFoundError(f"Location {location_id} is inactive", code="LOCATION_INACTIVE")
    return location


def current_open_period(db: Session) -> Period:
    period = db.execute(
        select(Period).where(Period.status == PeriodStatus.open).order_by(Period.start_date.desc())
    ).scalars().first()
    if period is None:
        raise PeriodNotOpen("No open period found", code="NO_OPEN_PERIOD")
    return period


def open_period_location(db: Session, location_id: int, period: Period | None = None) -> PeriodLocation:
    """
    The period-location row a posting runs under.

    Read FOR SHARE so a concurrent period close (FOR UPDATE) waits for
    in-flight postings and blocks new ones.
    """
    period = period or current_open_period(db)
    if period.status != PeriodStatus.open:
        raise PeriodNotOpen(f"Period {period.name} is {period.status.value}")

    pl = db.execute(
        select(PeriodLocation)
        .where(PeriodLocation.period_id == period.id)
        .where(PeriodLocation.location_id == location_id)
        .with_for_update(read=True)
    ).scalar_one_or_none()
    if pl is None or pl.status != PeriodLocationStatus.open:
        status = pl.status.value if pl else "MISSING"
        raise PeriodNotOpen(
            f"Period {period.name} is not open for location {location_id} (status={status})",
            details={"period_id": period.id, "location_id": location_id, "status": status},
        )
    return pl


def next_document_number(db: Session, column, prefix: str, *, width: int = 3, on: date | None = None) -> str:
    """
    Sequential human-readable number: PREFIX-YYYY-NNN.

    The maximum is taken on the numeric suffix: as text "999" sorts
    above "1000". The column carries a unique constraint; two concurrent
    writers that compute the same number collide there and one of them
    rolls back.
    """
    year = (on or date.today()).year
    stem = f"{prefix}-{year}-"
    last = db.execute(
        select(func.max(cast(func.substr(column, len(stem) + 1), Integer))).where(column.startswith(stem))
    ).scalar_one()

    number = (last or 0) + 1
    return f"{stem}{number:0{width}d}"
