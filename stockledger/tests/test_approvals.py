from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from stockledger.app.core.errors import InvalidStateTransition, PermissionDenied, ValidationError
from stockledger.app.db.models.core_types import ApprovalEntityType, ApprovalStatus, PRFStatus
from stockledger.app.db.models.models_v1 import ApprovalRecord, Requisition
from stockledger.app.schemas.procurement import RequisitionCreate, RequisitionLineIn, RequisitionUpdate
from stockledger.services.approvals import (
    approve_requisition,
    clone_requisition,
    create_requisition,
    decide,
    delete_requisition,
    ensure_transition,
    open_approval,
    reject_requisition,
    submit_requisition,
    update_requisition,
)


def _create(world, *lines, actor=None):
    lines = lines or ((world.rice, 5, "10"),)
    return create_requisition(
        world.db,
        RequisitionCreate(
            location_id=world.kitchen.id,
            lines=[
                RequisitionLineIn(item_id=item.id, quantity=Decimal(str(qty)), estimated_price=Decimal(price))
                for item, qty, price in lines
            ],
        ),
        (actor or world.operator).id,
    )


@pytest.mark.parametrize(
    "current,target",
    [("DRAFT", "PENDING"), ("PENDING", "APPROVED"), ("PENDING", "REJECTED"), ("PENDING_APPROVAL", "APPROVED")],
)
def test_allowed_transitions(current, target):
    ensure_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [("DRAFT", "APPROVED"), ("APPROVED", "REJECTED"), ("REJECTED", "APPROVED"), ("APPROVED", "PENDING")],
)
def test_forbidden_transitions(current, target):
    with pytest.raises(InvalidStateTransition):
        ensure_transition(current, target)


def test_requisition_numbering_and_totals(world):
    first = _create(world, (world.rice, 5, "10"), (world.oil, 3, "2.50"))
    second = _create(world)

    year = date.today().year
    assert first.prf_no == f"PRF-{year}-001"
    assert second.prf_no == f"PRF-{year}-002"
    assert first.status == PRFStatus.draft
    assert first.total_value == Decimal("57.50")
    assert first.period_id == world.period.id


def test_requisition_lines_validated(world):
    with pytest.raises(ValidationError) as exc:
        create_requisition(
            world.db,
            RequisitionCreate(
                location_id=world.kitchen.id,
                lines=[RequisitionLineIn(quantity=Decimal("0")), RequisitionLineIn(item_id=world.rice.id, quantity=Decimal("1"), estimated_price=Decimal("-1"))],
            ),
            world.operator.id,
        )
    assert len(exc.value.details["problems"]) == 3


def test_full_workflow(world, notifier):
    """
    GIVEN une PRF brouillon
    WHEN soumise puis approuvée
    THEN un seul ApprovalRecord, décidé par le superviseur
    """
    prf = _create(world)

    submitted = submit_requisition(world.db, prf.id, world.operator.id, notifier)
    assert submitted.status == PRFStatus.pending
    assert submitted.submitted_at is not None

    approved = approve_requisition(world.db, prf.id, world.supervisor.id, notifier)
    assert approved.status == PRFStatus.approved

    [record] = world.db.scalars(
        select(ApprovalRecord).where(ApprovalRecord.entity_type == ApprovalEntityType.prf)
    ).all()
    assert record.entity_id == prf.id
    assert record.status == ApprovalStatus.approved
    assert record.reviewed_by == world.supervisor.id
    assert [e for e, _ in notifier.events] == ["requisition.submitted", "requisition.approved"]


def test_only_reviewers_decide(world):
    prf = _create(world)
    submit_requisition(world.db, prf.id, world.operator.id)

    with pytest.raises(PermissionDenied):
        approve_requisition(world.db, prf.id, world.operator.id)
    with pytest.raises(PermissionDenied):
        approve_requisition(world.db, prf.id, world.buyer.id)

    assert world.db.get(Requisition, prf.id).status == PRFStatus.pending


def test_rejection_needs_reason(world):
    prf = _create(world)
    submit_requisition(world.db, prf.id, world.operator.id)

    with pytest.raises(ValidationError):
        reject_requisition(world.db, prf.id, world.supervisor.id, " ")

    rejected = reject_requisition(world.db, prf.id, world.supervisor.id, "Over budget")
    assert rejected.status == PRFStatus.rejected

    with pytest.raises(InvalidStateTransition):
        approve_requisition(world.db, prf.id, world.supervisor.id)


def test_decision_is_recorded_once(world):
    record = open_approval(world.db, ApprovalEntityType.transfer, 1, world.operator.id)
    decide(world.db, record, world.supervisor, True)

    with pytest.raises(InvalidStateTransition) as exc:
        decide(world.db, record, world.admin, False, "late")
    assert exc.value.code == "ALREADY_DECIDED"
    assert record.status == ApprovalStatus.approved
    world.db.rollback()


def test_draft_edit_and_delete_by_owner_only(world):
    prf = _create(world)

    with pytest.raises(PermissionDenied):
        update_requisition(world.db, prf.id, RequisitionUpdate(notes="x"), world.supervisor.id)

    updated = update_requisition(
        world.db,
        prf.id,
        RequisitionUpdate(notes="urgent", lines=[RequisitionLineIn(item_id=world.oil.id, quantity=Decimal("4"), estimated_price=Decimal("3"))]),
        world.operator.id,
    )
    assert updated.notes == "urgent"
    assert updated.total_value == Decimal("12.00")

    submit_requisition(world.db, prf.id, world.operator.id)
    with pytest.raises(InvalidStateTransition):
        delete_requisition(world.db, prf.id, world.operator.id)

    other_id = _create(world).id
    delete_requisition(world.db, other_id, world.operator.id)
    assert world.db.get(Requisition, other_id) is None


def test_clone_rejected_requisition(world):
    prf = _create(world, (world.rice, 5, "10"), (world.oil, 2, "4"))
    submit_requisition(world.db, prf.id, world.operator.id)

    with pytest.raises(InvalidStateTransition):
        clone_requisition(world.db, prf.id, world.operator.id)

    reject_requisition(world.db, prf.id, world.supervisor.id, "Wrong supplier")
    clone = clone_requisition(world.db, prf.id, world.operator.id)

    assert clone.id != prf.id
    assert clone.status == PRFStatus.draft
    assert clone.cloned_from_id == prf.id
    assert clone.prf_no == f"PRF-{date.today().year}-002"
    assert [(ln.item_id, ln.quantity) for ln in clone.lines] == [
        (world.rice.id, Decimal("5")),
        (world.oil.id, Decimal("2")),
    ]
    assert clone.total_value == prf.total_value
    assert world.db.get(Requisition, prf.id).status == PRFStatus.rejected
