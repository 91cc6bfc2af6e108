"""
Persistence for the membership lifecycle.

- Status transitions are written through the ORM; the membership's version_id
  column turns a concurrent stale write into ConflictError.
- Completed payments update the progress summary with one atomic UPDATE
  (total_paid = total_paid + :amount), so concurrent recordings never lose an
  increment.
- Gateway confirmations flip a payment row with a conditional UPDATE keyed on
  its transaction reference; only the request that flips the row applies the
  progress effect, which makes repeated callbacks harmless.
"""
import enum
import logging
from datetime import datetime
from typing import Callable, Optional, Tuple

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from foundation_api import lifecycle
from foundation_api.config import settings
from foundation_api.errors import ConflictError, GatewayError, NotFoundError, ValidationFailedError
from foundation_api.lifecycle import CompletedPaymentEffect, FeeSchedule
from foundation_api.models import (
    Membership,
    MembershipPayment,
    MembershipStatusEnum,
    PaymentMethodEnum,
    PaymentStatusEnum,
    ProgressStatusEnum,
)
from foundation_api.mpesa import MpesaClient, StkPushResponse

logger = logging.getLogger(__name__)

MEMBERSHIP_NUMBER_ATTEMPTS = 10


class ConfirmationOutcome(str, enum.Enum):
    applied = "applied"
    duplicate = "duplicate"
    not_found = "not_found"


def get_membership(db: Session, membership_id: int) -> Membership:
    membership = db.query(Membership).filter(Membership.id == membership_id).first()
    if not membership:
        raise NotFoundError("Membership not found")
    return membership


def save(db: Session, membership: Membership) -> Membership:
    """Commit pending changes to `membership`, surfacing stale writes as ConflictError."""
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConflictError("Membership was modified by another request; reload and retry") from exc
    db.refresh(membership)
    return membership


def submit_application(
    db: Session,
    applicant_id: int,
    membership_type,
    payment_plan,
    schedule: FeeSchedule,
    now: Optional[datetime] = None,
    **profile,
) -> Membership:
    existing = db.query(Membership).filter(Membership.applicant_id == applicant_id).first()
    if existing:
        raise ValidationFailedError(
            "You already have a membership application", {"membership_id": existing.id}
        )
    membership = lifecycle.open_application(
        applicant_id, membership_type, payment_plan, schedule, now=now, **profile
    )
    db.add(membership)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationFailedError("You already have a membership application") from exc
    db.refresh(membership)
    logger.info("membership application submitted", extra={"membership_id": membership.id})
    return membership


def _unique_membership_number(db: Session, membership: Membership, now: datetime) -> str:
    for _ in range(MEMBERSHIP_NUMBER_ATTEMPTS):
        candidate = lifecycle.generate_membership_number(settings.ORG_CODE, membership.membership_type, now)
        taken = db.query(Membership.id).filter(Membership.membership_number == candidate).first()
        if not taken:
            return candidate
    raise ConflictError("Could not allocate a unique membership number")


def approve(db: Session, membership: Membership, reviewer_id: int, notes: str = "", now: Optional[datetime] = None) -> Membership:
    now = now or lifecycle.utcnow()
    number = _unique_membership_number(db, membership, now)
    lifecycle.approve(
        membership, reviewer_id, notes, now=now, org_code=settings.ORG_CODE, membership_number=number
    )
    save(db, membership)
    logger.info(
        "membership approved",
        extra={"membership_id": membership.id, "membership_number": membership.membership_number},
    )
    return membership


def transition(db: Session, membership: Membership, apply: Callable[[Membership], Membership]) -> Membership:
    """Run a lifecycle transition and persist it."""
    previous = membership.status
    apply(membership)
    save(db, membership)
    logger.info(
        "membership status changed",
        extra={"membership_id": membership.id, "from_status": str(previous), "to_status": str(membership.status)},
    )
    return membership


def refresh_on_read(db: Session, membership: Membership, now: Optional[datetime] = None) -> Membership:
    """
    Recompute expiry and overdue state before the record is handed to a reader.
    A payment landing between load and write bumps version_id; the record is
    reloaded and recomputed once instead of failing the read.
    """
    now = now or lifecycle.utcnow()
    if not lifecycle.refresh(membership, now):
        return membership
    try:
        save(db, membership)
    except ConflictError:
        logger.info("membership changed during refresh; reloading", extra={"membership_id": membership.id})
        db.refresh(membership)
        if lifecycle.refresh(membership, now):
            save(db, membership)
    return membership


def refresh_due(db: Session, now: Optional[datetime] = None) -> int:
    """Refresh every membership whose payment is past due or whose term has lapsed."""
    now = now or lifecycle.utcnow()
    due = (
        db.query(Membership)
        .filter(
            or_(
                Membership.next_payment_date < now,
                and_(Membership.status == MembershipStatusEnum.active, Membership.expiry_date < now),
            )
        )
        .all()
    )
    for membership in due:
        refresh_on_read(db, membership, now)
    return len(due)


# =============================
# Payments
# =============================

def _apply_effect(db: Session, membership_id: int, effect: CompletedPaymentEffect) -> None:
    db.execute(
        update(Membership)
        .where(Membership.id == membership_id)
        .values(
            total_paid=Membership.total_paid + effect.amount,
            consecutive_payments=Membership.consecutive_payments + 1,
            last_payment_date=effect.paid_at,
            next_payment_date=effect.next_payment_date,
            payment_status=ProgressStatusEnum.up_to_date,
            overdue_amount=0,
            version_id=Membership.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )


def _reload(db: Session, membership: Membership) -> None:
    db.refresh(membership)
    db.expire(membership, ["payments"])


def record_payment(
    db: Session,
    membership: Membership,
    amount: float,
    payment_method: PaymentMethodEnum,
    status: PaymentStatusEnum = PaymentStatusEnum.completed,
    now: Optional[datetime] = None,
    transaction_id: Optional[str] = None,
    phone_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> MembershipPayment:
    """Append a payment; a completed one advances the progress summary atomically."""
    now = now or lifecycle.utcnow()
    payment = lifecycle.build_payment(
        membership,
        amount,
        payment_method,
        status=status,
        now=now,
        transaction_id=transaction_id,
        phone_number=phone_number,
        notes=notes,
    )
    db.add(payment)
    db.flush()
    if payment.status == PaymentStatusEnum.completed:
        effect = lifecycle.completed_payment_effect(amount, membership.fee_selected_plan, now)
        _apply_effect(db, membership.id, effect)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationFailedError("Duplicate payment reference") from exc
    _reload(db, membership)
    db.refresh(payment)
    logger.info(
        "membership payment recorded",
        extra={"membership_id": membership.id, "payment_id": payment.payment_id, "payment_status": payment.status.value},
    )
    return payment


def confirm_payment(
    db: Session,
    transaction_id: str,
    receipt_number: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ConfirmationOutcome:
    """Mark the payment with `transaction_id` completed, exactly once."""
    now = now or lifecycle.utcnow()
    payment = db.query(MembershipPayment).filter(MembershipPayment.transaction_id == transaction_id).first()
    if not payment:
        return ConfirmationOutcome.not_found
    values = {"status": PaymentStatusEnum.completed}
    if receipt_number:
        values["mpesa_transaction_code"] = receipt_number
    if notes:
        values["notes"] = notes
    result = db.execute(
        update(MembershipPayment)
        .where(
            MembershipPayment.id == payment.id,
            MembershipPayment.status.in_([PaymentStatusEnum.pending, PaymentStatusEnum.failed]),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.info("duplicate payment confirmation ignored", extra={"transaction_id": transaction_id})
        return ConfirmationOutcome.duplicate
    membership = db.query(Membership).filter(Membership.id == payment.membership_id).one()
    effect = lifecycle.completed_payment_effect(payment.amount, membership.fee_selected_plan, now)
    _apply_effect(db, membership.id, effect)
    db.commit()
    db.expire_all()
    logger.info(
        "membership payment confirmed",
        extra={"membership_id": membership.id, "transaction_id": transaction_id},
    )
    return ConfirmationOutcome.applied


def fail_payment(db: Session, transaction_id: str, notes: Optional[str] = None) -> ConfirmationOutcome:
    """Mark a still-pending payment failed; completed payments are left alone."""
    result = db.execute(
        update(MembershipPayment)
        .where(
            MembershipPayment.transaction_id == transaction_id,
            MembershipPayment.status == PaymentStatusEnum.pending,
        )
        .values(status=PaymentStatusEnum.failed, notes=notes or "Payment failed")
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.expire_all()
    if result.rowcount == 1:
        logger.info("membership payment failed", extra={"transaction_id": transaction_id})
        return ConfirmationOutcome.applied
    exists = db.query(MembershipPayment.id).filter(MembershipPayment.transaction_id == transaction_id).first()
    return ConfirmationOutcome.duplicate if exists else ConfirmationOutcome.not_found


def initiate_mpesa_payment(
    db: Session,
    membership: Membership,
    gateway: MpesaClient,
    amount: float,
    phone_number: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[MembershipPayment, StkPushResponse]:
    """
    Record a pending payment, then ask the gateway to prompt the payer. The pending
    row is committed before the gateway call, and a gateway failure marks it failed
    before the error propagates, so the record always shows the last known outcome.
    """
    payment = record_payment(
        db,
        membership,
        amount,
        PaymentMethodEnum.mpesa,
        status=PaymentStatusEnum.pending,
        now=now,
        phone_number=phone_number,
        notes=notes,
    )
    kind = membership.membership_type.value
    try:
        response = gateway.initiate_stk_push(
            amount=amount,
            phone=phone_number,
            account_reference=f"MEM-{kind.upper()}-{membership.id}",
            transaction_desc=f"{kind.capitalize()} Membership Payment",
        )
    except GatewayError as exc:
        payment.status = PaymentStatusEnum.failed
        payment.notes = exc.detail or "M-PESA payment failed"
        db.commit()
        logger.warning(
            "mpesa initiation failed",
            extra={"membership_id": membership.id, "payment_id": payment.payment_id},
        )
        raise
    payment_id = payment.id
    payment.transaction_id = response.checkout_request_id
    payment.mpesa_transaction_code = response.merchant_request_id
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        db.execute(
            update(MembershipPayment)
            .where(MembershipPayment.id == payment_id)
            .values(status=PaymentStatusEnum.failed, notes="Duplicate M-PESA checkout reference")
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.expire_all()
        logger.warning(
            "mpesa checkout reference already in use",
            extra={"membership_id": membership.id, "checkout_request_id": response.checkout_request_id},
        )
        raise ValidationFailedError("Duplicate payment reference") from exc
    db.refresh(payment)
    return payment, response
