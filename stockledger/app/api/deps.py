from __future__ import annotations

from typing import Generator

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from stockledger.app.db.models.models_v1 import User
from stockledger.app.db.session import SessionLocal
from stockledger.services.common import get_actor
from stockledger.services.notifications import Notifier
from stockledger.services.notifications import get_notifier as _default_notifier


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    x_user_id: int = Header(..., alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    # pas d'authentification : l'appelant s'identifie par en-tête
    return get_actor(db, x_user_id)


def get_notifier() -> Notifier:
    return _default_notifier()
