from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db
from stockledger.app.db.models.models_v1 import Issue, User
from stockledger.app.schemas.transactions import IssueCreate, IssueRead
from stockledger.services import issues
from stockledger.services.common import get_or_404

router = APIRouter()


@router.get("/locations/{location_id}/issues", response_model=list[IssueRead])
def list_issues(location_id: int, db: Session = Depends(get_db)):
    return db.execute(select(Issue).where(Issue.location_id == location_id).order_by(Issue.id.desc())).scalars().all()


@router.post("/locations/{location_id}/issues", response_model=IssueRead, status_code=status.HTTP_201_CREATED)
def post_issue(
    location_id: int,
    payload: IssueCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return issues.post_issue(db, location_id, payload, user.id)


@router.get("/issues/{issue_id}", response_model=IssueRead)
def get_issue(issue_id: int, db: Session = Depends(get_db)):
    return get_or_404(db, Issue, issue_id, "Issue")
