"""
Membership endpoints: fee schedule, applications, payments (including M-PESA
STK push and its callback), admin review and the renewal lifecycle.

Status changes go through foundation_api.lifecycle, which refuses transitions
the current status does not allow (HTTP 409). Payment bookkeeping goes through
foundation_api.membership_store.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Session

from foundation_api import lifecycle, membership_store
from foundation_api.auth import admin_required, get_current_user
from foundation_api.config import settings
from foundation_api.db import get_db
from foundation_api.errors import AuthorizationError
from foundation_api.lifecycle import FeeSchedule
from foundation_api.models import (
    Membership,
    MembershipStatusEnum,
    MembershipTypeEnum,
    PaymentMethodEnum,
    ProgressStatusEnum,
    User,
)
from foundation_api.mpesa import MpesaClient, get_mpesa_client, parse_stk_callback
from foundation_api.openapi_schemas import ErrorResponse
from foundation_api.pagination import paginate
from foundation_api.schemas import (
    FeeSnapshotOut,
    MembershipApply,
    MembershipListOut,
    MembershipOut,
    MembershipPaymentIn,
    MembershipPaymentOut,
    MembershipPaymentResult,
    MembershipResult,
    MembershipStatsOut,
    MembershipUpdate,
    NotesIn,
    PaymentHistoryOut,
    PaymentProgressOut,
    PlanFeesOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/membership", tags=["Membership"])

SORTABLE_FIELDS = {
    "application_date": Membership.application_date,
    "expiry_date": Membership.expiry_date,
    "membership_number": Membership.membership_number,
    "total_paid": Membership.total_paid,
}

TRANSITION_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse, "description": "Transition not allowed from the current status"},
}


def get_fee_schedule() -> FeeSchedule:
    """Dependency hook for the fee schedule applied to new applications."""
    return FeeSchedule.default(currency=settings.MEMBERSHIP_CURRENCY)


def _require_applicant(membership: Membership, user: User) -> None:
    if membership.applicant_id != user.id:
        raise AuthorizationError("Only the applicant can do this")


def _require_applicant_or_admin(membership: Membership, user: User) -> None:
    if membership.applicant_id != user.id and not user.is_admin:
        raise AuthorizationError("Not authorized to access this membership")


def _own_membership(db: Session, user: User, detail: str) -> Membership:
    membership = db.query(Membership).filter(Membership.applicant_id == user.id).first()
    if not membership:
        raise HTTPException(status_code=404, detail=detail)
    return membership


def _result(membership: Membership, message: str) -> MembershipResult:
    return MembershipResult(membership=MembershipOut.model_validate(membership), message=message)


# PUBLIC_INTERFACE
@router.get("/fees", response_model=Dict[str, PlanFeesOut], summary="Membership fees")
def membership_fees(schedule: FeeSchedule = Depends(get_fee_schedule)):
    """
    Annual and monthly fee per membership type.
    """
    return schedule.as_dict()


# PUBLIC_INTERFACE
@router.get("/", response_model=MembershipListOut, summary="List membership applications")
def list_memberships(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    membership_status: Optional[MembershipStatusEnum] = Query(None, alias="status"),
    membership_type: Optional[MembershipTypeEnum] = Query(None),
    search: Optional[str] = Query(None, description="Matches membership number, occupation or employer"),
    sort_by: str = Query("application_date"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    membership_store.refresh_due(db)
    qset = db.query(Membership)
    if membership_status:
        qset = qset.filter(Membership.status == membership_status)
    if membership_type:
        qset = qset.filter(Membership.membership_type == membership_type)
    if search:
        pattern = f"%{search}%"
        qset = qset.filter(
            or_(Membership.membership_number.ilike(pattern), cast(Membership.personal_info, String).ilike(pattern))
        )
    column = SORTABLE_FIELDS.get(sort_by, Membership.application_date)
    qset = qset.order_by(column.desc() if sort_order == "desc" else column.asc(), Membership.id)
    memberships, pagination = paginate(qset, page, limit)
    return MembershipListOut(
        memberships=[MembershipOut.model_validate(m) for m in memberships],
        pagination=pagination,
    )


# PUBLIC_INTERFACE
@router.get("/stats", response_model=MembershipStatsOut, summary="Membership statistics")
def membership_stats(db: Session = Depends(get_db), current_user: User = Depends(admin_required)):
    membership_store.refresh_due(db)
    by_status = dict(
        db.query(Membership.status, func.count(Membership.id)).group_by(Membership.status).all()
    )
    overdue = (
        db.query(func.count(Membership.id))
        .filter(Membership.payment_status == ProgressStatusEnum.overdue)
        .scalar()
    )
    revenue = (
        db.query(func.coalesce(func.sum(Membership.total_paid), 0))
        .filter(Membership.status == MembershipStatusEnum.active)
        .scalar()
    )
    return MembershipStatsOut(
        total_members=by_status.get(MembershipStatusEnum.active, 0),
        pending_applications=by_status.get(MembershipStatusEnum.pending, 0),
        suspended_members=by_status.get(MembershipStatusEnum.suspended, 0),
        expired_members=by_status.get(MembershipStatusEnum.expired, 0),
        overdue_payments=overdue,
        total_revenue=revenue or 0,
    )


# PUBLIC_INTERFACE
@router.get("/my-application", response_model=MembershipOut, summary="Current user's membership")
def my_application(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """
    The caller's membership, with expiry and overdue state brought up to date.
    """
    membership = _own_membership(db, current_user, "No membership application found")
    return membership_store.refresh_on_read(db, membership)


# PUBLIC_INTERFACE
@router.get("/payment-history", response_model=PaymentHistoryOut, summary="Current user's membership payments")
def payment_history(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    membership = _own_membership(db, current_user, "No membership found")
    membership_store.refresh_on_read(db, membership)
    progress = lifecycle.progress_of(membership)
    return PaymentHistoryOut(
        payments=[MembershipPaymentOut.model_validate(p) for p in membership.payments],
        payment_progress=PaymentProgressOut(**vars(progress)),
        fees=FeeSnapshotOut(
            monthly_amount=membership.fee_monthly_amount,
            annual_amount=membership.fee_annual_amount,
            currency=membership.fee_currency,
            selected_plan=membership.fee_selected_plan,
            selected_amount=membership.fee_selected_amount,
        ),
    )


# PUBLIC_INTERFACE
@router.post("/apply", response_model=MembershipResult, status_code=status.HTTP_201_CREATED, responses={400: {"model": ErrorResponse}}, summary="Submit membership application")
def apply(
    body: MembershipApply,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    schedule: FeeSchedule = Depends(get_fee_schedule),
):
    """
    Submit an application. Fees are fixed from the current schedule at this point.
    """
    profile = body.model_dump(mode="json", exclude={"membership_type", "payment_plan"})
    membership = membership_store.submit_application(
        db, current_user.id, body.membership_type, body.payment_plan, schedule, **profile
    )
    return _result(membership, "Membership application submitted successfully")


# PUBLIC_INTERFACE
@router.post("/mpesa-callback", summary="M-PESA membership payment callback")
def mpesa_callback(body: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    """
    Gateway notification for a membership STK push. Repeated notifications for
    the same checkout reference have no further effect.
    """
    callback = parse_stk_callback(body)
    if callback is None or not callback.checkout_request_id:
        return {"message": "No callback data"}
    if callback.succeeded:
        outcome = membership_store.confirm_payment(
            db,
            callback.checkout_request_id,
            receipt_number=callback.receipt_number,
            notes=f"Payment confirmed: {callback.result_desc}",
        )
    else:
        outcome = membership_store.fail_payment(
            db, callback.checkout_request_id, notes=f"Payment failed: {callback.result_desc}"
        )
    logger.info(
        "membership callback processed",
        extra={
            "checkout_request_id": callback.checkout_request_id,
            "result_code": callback.result_code,
            "outcome": outcome.value,
        },
    )
    return {"message": "Callback processed successfully", "outcome": outcome.value}


# PUBLIC_INTERFACE
@router.get("/{membership_id}", response_model=MembershipOut, summary="Get membership")
def get_membership(membership_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    membership = membership_store.get_membership(db, membership_id)
    _require_applicant_or_admin(membership, current_user)
    return membership_store.refresh_on_read(db, membership)


# PUBLIC_INTERFACE
@router.post("/{membership_id}/pay", response_model=MembershipPaymentResult, responses={**TRANSITION_RESPONSES, 502: {"model": ErrorResponse}}, summary="Pay membership fee")
def pay(
    membership_id: int,
    body: MembershipPaymentIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: MpesaClient = Depends(get_mpesa_client),
):
    """
    M-PESA payments are recorded as pending until the gateway callback confirms
    them. Card and bank transfer payments are recorded as completed.
    """
    membership = membership_store.get_membership(db, membership_id)
    _require_applicant(membership, current_user)
    if body.payment_method == PaymentMethodEnum.mpesa:
        payment, response = membership_store.initiate_mpesa_payment(
            db, membership, gateway, body.amount, body.phone_number, notes=body.notes
        )
        return MembershipPaymentResult(
            message="M-PESA payment initiated successfully",
            payment=MembershipPaymentOut.model_validate(payment),
            membership=MembershipOut.model_validate(membership),
            mpesa_response=response.raw,
        )
    payment = membership_store.record_payment(
        db,
        membership,
        body.amount,
        body.payment_method,
        transaction_id=body.transaction_id,
        notes=body.notes,
    )
    return MembershipPaymentResult(
        message="Payment processed successfully",
        payment=MembershipPaymentOut.model_validate(payment),
        membership=MembershipOut.model_validate(membership),
    )


# PUBLIC_INTERFACE
@router.put("/{membership_id}", response_model=MembershipResult, responses={409: {"model": ErrorResponse}}, summary="Update membership application")
def update_membership(
    membership_id: int,
    body: MembershipUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    membership = membership_store.get_membership(db, membership_id)
    _require_applicant_or_admin(membership, current_user)
    for field, value in body.model_dump(mode="json", exclude_unset=True).items():
        if value is not None:
            setattr(membership, field, value)
    membership_store.save(db, membership)
    return _result(membership, "Membership updated successfully")


# PUBLIC_INTERFACE
@router.put("/{membership_id}/approve", response_model=MembershipResult, responses=TRANSITION_RESPONSES, summary="Approve membership application")
def approve(
    membership_id: int,
    body: Optional[NotesIn] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    membership = membership_store.get_membership(db, membership_id)
    membership_store.approve(db, membership, current_user.id, body.notes if body else "")
    return _result(membership, "Membership approved successfully")


# PUBLIC_INTERFACE
@router.put("/{membership_id}/suspend", response_model=MembershipResult, responses=TRANSITION_RESPONSES, summary="Suspend membership")
def suspend(
    membership_id: int,
    body: Optional[NotesIn] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    membership = membership_store.get_membership(db, membership_id)
    notes = body.notes if body else None
    membership_store.transition(db, membership, lambda m: lifecycle.suspend(m, notes))
    return _result(membership, "Membership suspended successfully")


# PUBLIC_INTERFACE
@router.put("/{membership_id}/reactivate", response_model=MembershipResult, responses=TRANSITION_RESPONSES, summary="Reactivate suspended membership")
def reactivate(membership_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_required)):
    membership = membership_store.get_membership(db, membership_id)
    membership_store.transition(db, membership, lifecycle.reactivate)
    return _result(membership, "Membership reactivated successfully")


# PUBLIC_INTERFACE
@router.put("/{membership_id}/cancel", response_model=MembershipResult, responses=TRANSITION_RESPONSES, summary="Cancel membership")
def cancel(
    membership_id: int,
    body: Optional[NotesIn] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    membership = membership_store.get_membership(db, membership_id)
    _require_applicant_or_admin(membership, current_user)
    notes = body.notes if body else None
    membership_store.transition(db, membership, lambda m: lifecycle.cancel(m, notes))
    return _result(membership, "Membership cancelled successfully")


# PUBLIC_INTERFACE
@router.put("/{membership_id}/renew", response_model=MembershipResult, responses=TRANSITION_RESPONSES, summary="Renew membership")
def renew(membership_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """
    Extend the membership by one billing period from its current expiry.
    Only active or expired memberships can be renewed.
    """
    membership = membership_store.get_membership(db, membership_id)
    _require_applicant(membership, current_user)
    lifecycle.expire_if_lapsed(membership)
    membership_store.transition(db, membership, lifecycle.renew)
    return _result(membership, "Membership renewed successfully")
