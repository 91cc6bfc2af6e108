"""
Membership lifecycle: state transitions, fee snapshots, billing periods and the
payment-progress reducer.

Nothing in this module touches the database. Every transition validates its own
precondition and raises InvalidTransitionError without mutating the record when
the current status does not allow it. Persistence (atomic progress updates,
version checks, gateway confirmations) lives in membership_store.

Allowed transitions:
    pending   -> active      approve
    active    -> suspended   suspend
    suspended -> active      reactivate
    active    -> expired     expire_if_lapsed
    active    -> active      renew
    expired   -> active      renew
    pending | active | suspended -> cancelled   cancel
"""
import math
import random
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

from dateutil.relativedelta import relativedelta

from foundation_api.errors import InvalidTransitionError
from foundation_api.models import (
    Membership,
    MembershipPayment,
    MembershipStatusEnum,
    MembershipTypeEnum,
    PaymentMethodEnum,
    PaymentPlanEnum,
    PaymentStatusEnum,
    ProgressStatusEnum,
)

# Overdue months are counted in flat 30-day blocks, not calendar months.
OVERDUE_MONTH = timedelta(days=30)

DEFAULT_ANNUAL_FEES = {
    MembershipTypeEnum.gold: 5000,
    MembershipTypeEnum.silver: 3000,
    MembershipTypeEnum.bronze: 1500,
}


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# =============================
# Fee schedule
# =============================

@dataclass(frozen=True)
class PlanFees:
    annual: float
    monthly: float

    def for_plan(self, plan: PaymentPlanEnum) -> float:
        return self.annual if PaymentPlanEnum(plan) == PaymentPlanEnum.annual else self.monthly


class FeeSchedule:
    """
    Annual fee per membership type; the monthly fee is the annual fee over twelve,
    rounded half up. Instances are immutable and passed in where fees are needed.
    """

    def __init__(self, annual_fees: Dict[MembershipTypeEnum, float], currency: str = "KSH"):
        self._fees = {
            MembershipTypeEnum(kind): PlanFees(annual=annual, monthly=round_half_up(annual / 12))
            for kind, annual in annual_fees.items()
        }
        self.currency = currency

    @classmethod
    def default(cls, currency: str = "KSH") -> "FeeSchedule":
        return cls(DEFAULT_ANNUAL_FEES, currency=currency)

    def fees_for(self, membership_type: MembershipTypeEnum) -> PlanFees:
        return self._fees[MembershipTypeEnum(membership_type)]

    def as_dict(self) -> Dict[str, Dict[str, float]]:
        return {
            kind.value: {"annual": fees.annual, "monthly": fees.monthly}
            for kind, fees in self._fees.items()
        }


def add_billing_period(start: datetime, plan: PaymentPlanEnum) -> datetime:
    """One billing period after `start`; month ends clamp (Jan 31 -> Feb 28/29)."""
    if PaymentPlanEnum(plan) == PaymentPlanEnum.annual:
        return start + relativedelta(years=1)
    return start + relativedelta(months=1)


def generate_membership_number(org_code: str, membership_type: MembershipTypeEnum, now: datetime, rng=None) -> str:
    rng = rng or random
    type_code = MembershipTypeEnum(membership_type).value.upper()
    return f"{org_code}-{type_code}-{now.year}-{rng.randrange(10000):04d}"


def new_payment_id(now: datetime) -> str:
    return f"MEM-{int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"


# =============================
# Payment progress reducer
# =============================

@dataclass(frozen=True)
class PaymentProgress:
    total_paid: float = 0
    last_payment_date: Optional[datetime] = None
    next_payment_date: Optional[datetime] = None
    payment_status: ProgressStatusEnum = ProgressStatusEnum.pending
    overdue_amount: float = 0
    consecutive_payments: int = 0


@dataclass(frozen=True)
class CompletedPaymentEffect:
    """What a single completed payment does to the progress summary."""

    amount: float
    paid_at: datetime
    next_payment_date: datetime


def completed_payment_effect(amount: float, plan: PaymentPlanEnum, now: datetime) -> CompletedPaymentEffect:
    return CompletedPaymentEffect(amount=amount, paid_at=now, next_payment_date=add_billing_period(now, plan))


def apply_payment_effect(progress: PaymentProgress, effect: CompletedPaymentEffect) -> PaymentProgress:
    return replace(
        progress,
        total_paid=progress.total_paid + effect.amount,
        last_payment_date=effect.paid_at,
        next_payment_date=effect.next_payment_date,
        payment_status=ProgressStatusEnum.up_to_date,
        overdue_amount=0,
        consecutive_payments=progress.consecutive_payments + 1,
    )


def completed_total(payments: Iterable[MembershipPayment]) -> float:
    return sum(p.amount for p in payments if PaymentStatusEnum(p.status) == PaymentStatusEnum.completed)


def progress_of(membership: Membership) -> PaymentProgress:
    return PaymentProgress(
        total_paid=membership.total_paid or 0,
        last_payment_date=membership.last_payment_date,
        next_payment_date=membership.next_payment_date,
        payment_status=ProgressStatusEnum(membership.payment_status or ProgressStatusEnum.pending),
        overdue_amount=membership.overdue_amount or 0,
        consecutive_payments=membership.consecutive_payments or 0,
    )


def store_progress(membership: Membership, progress: PaymentProgress) -> None:
    membership.total_paid = progress.total_paid
    membership.last_payment_date = progress.last_payment_date
    membership.next_payment_date = progress.next_payment_date
    membership.payment_status = progress.payment_status
    membership.overdue_amount = progress.overdue_amount
    membership.consecutive_payments = progress.consecutive_payments


# =============================
# Application
# =============================

def open_application(
    applicant_id: int,
    membership_type: MembershipTypeEnum,
    payment_plan: PaymentPlanEnum,
    schedule: FeeSchedule,
    now: Optional[datetime] = None,
    **profile,
) -> Membership:
    """Build a pending membership with the fee snapshot taken from `schedule`."""
    now = now or utcnow()
    membership_type = MembershipTypeEnum(membership_type)
    payment_plan = PaymentPlanEnum(payment_plan)
    fees = schedule.fees_for(membership_type)
    membership = Membership(
        applicant_id=applicant_id,
        membership_type=membership_type,
        payment_plan=payment_plan,
        status=MembershipStatusEnum.pending,
        application_date=now,
        fee_monthly_amount=fees.monthly,
        fee_annual_amount=fees.annual,
        fee_currency=schedule.currency,
        fee_selected_plan=payment_plan,
        fee_selected_amount=fees.for_plan(payment_plan),
        renewal_reminder_sent=False,
        auto_renewal_enabled=False,
        is_active=True,
        **profile,
    )
    store_progress(membership, PaymentProgress())
    return membership


# =============================
# Transitions
# =============================

def _status(membership: Membership) -> MembershipStatusEnum:
    return MembershipStatusEnum(membership.status)


def _require(membership: Membership, operation: str, *allowed: MembershipStatusEnum) -> None:
    current = _status(membership)
    if current not in allowed:
        raise InvalidTransitionError(operation, current.value)


def approve(
    membership: Membership,
    reviewer_id: Optional[int],
    notes: str = "",
    now: Optional[datetime] = None,
    org_code: str = "KCE",
    membership_number: Optional[str] = None,
) -> Membership:
    _require(membership, "approve", MembershipStatusEnum.pending)
    if membership.membership_number:
        raise InvalidTransitionError("approve", _status(membership).value, "Membership number already assigned")
    now = now or utcnow()
    plan = membership.fee_selected_plan
    membership.status = MembershipStatusEnum.active
    membership.approval_date = now
    membership.start_date = now
    membership.reviewed_by_id = reviewer_id
    membership.review_notes = notes or ""
    membership.membership_number = membership_number or generate_membership_number(
        org_code, membership.membership_type, now
    )
    membership.expiry_date = add_billing_period(now, plan)
    membership.next_payment_date = add_billing_period(now, plan)
    return membership


def suspend(membership: Membership, notes: Optional[str] = None) -> Membership:
    _require(membership, "suspend", MembershipStatusEnum.active)
    membership.status = MembershipStatusEnum.suspended
    if notes:
        membership.notes = notes
    return membership


def reactivate(membership: Membership) -> Membership:
    _require(membership, "reactivate", MembershipStatusEnum.suspended)
    membership.status = MembershipStatusEnum.active
    return membership


def cancel(membership: Membership, notes: Optional[str] = None) -> Membership:
    _require(
        membership,
        "cancel",
        MembershipStatusEnum.pending,
        MembershipStatusEnum.active,
        MembershipStatusEnum.suspended,
    )
    membership.status = MembershipStatusEnum.cancelled
    if notes:
        membership.notes = notes
    return membership


def renew(membership: Membership, now: Optional[datetime] = None) -> Membership:
    _require(membership, "renew", MembershipStatusEnum.active, MembershipStatusEnum.expired)
    now = now or utcnow()
    membership.status = MembershipStatusEnum.active
    membership.last_renewal_date = now
    membership.renewal_reminder_sent = False
    membership.expiry_date = add_billing_period(membership.expiry_date or now, membership.fee_selected_plan)
    return membership


def expire_if_lapsed(membership: Membership, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    if _status(membership) != MembershipStatusEnum.active or membership.expiry_date is None:
        return False
    if now <= membership.expiry_date:
        return False
    membership.status = MembershipStatusEnum.expired
    return True


# =============================
# Overdue detection
# =============================

def overdue_progress(membership: Membership, now: datetime) -> PaymentProgress:
    """Progress as it stands at `now`; unchanged unless the next payment is past due."""
    progress = progress_of(membership)
    if progress.next_payment_date is None or now <= progress.next_payment_date:
        return progress
    if PaymentPlanEnum(membership.fee_selected_plan) == PaymentPlanEnum.monthly:
        months_overdue = (now - progress.next_payment_date) // OVERDUE_MONTH
        overdue_amount = months_overdue * membership.fee_monthly_amount
    else:
        overdue_amount = membership.fee_annual_amount - progress.total_paid
    return replace(progress, payment_status=ProgressStatusEnum.overdue, overdue_amount=overdue_amount)


def check_payment_status(membership: Membership, now: Optional[datetime] = None) -> PaymentProgress:
    progress = overdue_progress(membership, now or utcnow())
    store_progress(membership, progress)
    return progress


def refresh(membership: Membership, now: Optional[datetime] = None) -> bool:
    """Bring time-dependent fields up to date. Returns True when anything changed."""
    now = now or utcnow()
    before = (_status(membership), progress_of(membership))
    expire_if_lapsed(membership, now)
    check_payment_status(membership, now)
    return before != (_status(membership), progress_of(membership))


# =============================
# Payments
# =============================

def build_payment(
    membership: Membership,
    amount: float,
    payment_method: PaymentMethodEnum,
    status: PaymentStatusEnum = PaymentStatusEnum.completed,
    now: Optional[datetime] = None,
    transaction_id: Optional[str] = None,
    phone_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> MembershipPayment:
    """A new payment entry for `membership`, covering one billing period from now."""
    if _status(membership) == MembershipStatusEnum.cancelled:
        raise InvalidTransitionError("record a payment for", MembershipStatusEnum.cancelled.value)
    now = now or utcnow()
    method = PaymentMethodEnum(payment_method)
    return MembershipPayment(
        membership_id=membership.id,
        payment_id=new_payment_id(now),
        amount=amount,
        payment_date=now,
        payment_method=method,
        transaction_id=transaction_id,
        status=PaymentStatusEnum(status),
        mpesa_phone_number=phone_number if method == PaymentMethodEnum.mpesa else None,
        period_start=now,
        period_end=add_billing_period(now, membership.fee_selected_plan),
        notes=notes or "",
    )
