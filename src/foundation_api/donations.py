"""
Donation endpoints: public giving (with anonymous masking), M-PESA STK push
initiation and its callback, admin review and tax receipts.
"""
import logging
import random
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy import extract, func, or_, update
from sqlalchemy.orm import Session

from foundation_api.auth import admin_required, get_current_user, get_optional_user
from foundation_api.config import settings
from foundation_api.db import get_db
from foundation_api.errors import GatewayError
from foundation_api.lifecycle import utcnow
from foundation_api.models import Donation, DonationMethodEnum, DonationStatusEnum, DonationTypeEnum, User
from foundation_api.mpesa import MpesaClient, get_mpesa_client, parse_stk_callback
from foundation_api.openapi_schemas import ErrorResponse
from foundation_api.pagination import paginate
from foundation_api.schemas import (
    DonationCreate,
    DonationListOut,
    DonationOut,
    DonationPagination,
    DonationResult,
    DonationStatsOut,
    DonationStatusUpdate,
    MonthlyDonationStat,
    MpesaInitiateIn,
    PurposeDonationStat,
    ReceiptOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/donations", tags=["Donations"])

# Settled by a person or a gateway callback rather than at submission time
DEFERRED_METHODS = {DonationMethodEnum.mpesa, DonationMethodEnum.cash, DonationMethodEnum.check}
RECEIPT_NUMBER_ATTEMPTS = 10


def new_transaction_id(now: datetime) -> str:
    return f"TXN-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"


def new_receipt_number(db: Session, now: datetime) -> str:
    for _ in range(RECEIPT_NUMBER_ATTEMPTS):
        candidate = f"{settings.ORG_CODE}-{now.year}-{random.randrange(10000):04d}"
        if not db.query(Donation.id).filter(Donation.receipt_number == candidate).first():
            return candidate
    raise HTTPException(status_code=409, detail="Could not allocate a unique receipt number")


def mark_verified(db: Session, donation: Donation, now: datetime) -> None:
    donation.payment_status = DonationStatusEnum.completed
    donation.is_verified = True
    donation.verification_date = now
    if not donation.receipt_number:
        donation.receipt_number = new_receipt_number(db, now)


def _get_donation_or_404(db: Session, donation_id: int) -> Donation:
    donation = db.query(Donation).filter(Donation.id == donation_id).first()
    if not donation:
        raise HTTPException(status_code=404, detail="Donation not found")
    return donation


def _require_admin_or_donor(donation: Donation, user: User, what: str) -> None:
    if not user.is_admin and donation.donor_email != user.email:
        raise HTTPException(status_code=403, detail=f"Not authorized to view this {what}")


# PUBLIC_INTERFACE
@router.get("/", response_model=DonationListOut, summary="List donations")
def list_donations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    payment_status: Optional[DonationStatusEnum] = Query(None, alias="status"),
    payment_method: Optional[DonationMethodEnum] = Query(None),
    donation_type: Optional[DonationTypeEnum] = Query(None),
    purpose: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None, description="Matches donor name, email, transaction or receipt number"),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    filters = []
    if payment_status:
        filters.append(Donation.payment_status == payment_status)
    if payment_method:
        filters.append(Donation.payment_method == payment_method)
    if donation_type:
        filters.append(Donation.donation_type == donation_type)
    if purpose:
        filters.append(Donation.purpose == purpose)
    if start_date:
        filters.append(Donation.created_at >= start_date)
    if end_date:
        filters.append(Donation.created_at <= end_date)
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                Donation.donor_first_name.ilike(pattern),
                Donation.donor_last_name.ilike(pattern),
                Donation.donor_email.ilike(pattern),
                Donation.transaction_id.ilike(pattern),
                Donation.receipt_number.ilike(pattern),
            )
        )
    qset = db.query(Donation).filter(*filters).order_by(Donation.created_at.desc(), Donation.id.desc())
    donations, pagination = paginate(qset, page, limit)
    total_amount = db.query(func.coalesce(func.sum(Donation.amount), 0)).filter(*filters).scalar() or 0
    return DonationListOut(
        donations=[DonationOut.model_validate(d) for d in donations],
        pagination=DonationPagination(**pagination.model_dump(), total_amount=total_amount),
    )


# PUBLIC_INTERFACE
@router.get("/stats", response_model=DonationStatsOut, summary="Donation statistics")
def donation_stats(db: Session = Depends(get_db)):
    completed = Donation.payment_status == DonationStatusEnum.completed
    total_donations = db.query(func.count(Donation.id)).filter(completed).scalar()
    total_amount = db.query(func.coalesce(func.sum(Donation.amount), 0)).filter(completed).scalar() or 0
    month = extract("month", Donation.created_at)
    monthly = (
        db.query(month.label("month"), func.count(Donation.id), func.sum(Donation.amount))
        .filter(completed, extract("year", Donation.created_at) == datetime.now().year)
        .group_by(month)
        .order_by(month)
        .all()
    )
    by_purpose = (
        db.query(Donation.purpose, func.count(Donation.id), func.sum(Donation.amount))
        .filter(completed)
        .group_by(Donation.purpose)
        .all()
    )
    return DonationStatsOut(
        total_donations=total_donations,
        total_amount=total_amount,
        monthly_stats=[MonthlyDonationStat(month=int(m), count=c, amount=a or 0) for m, c, a in monthly],
        purpose_stats=[PurposeDonationStat(purpose=p, count=c, amount=a or 0) for p, c, a in by_purpose],
    )


# PUBLIC_INTERFACE
@router.post("/", response_model=DonationResult, status_code=status.HTTP_201_CREATED, summary="Create donation")
def create_donation(
    donation_in: DonationCreate,
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_optional_user),
):
    """
    Record a donation. Anonymous donors are stored under a placeholder identity.
    Card, PayPal and bank transfer donations are treated as settled on submission;
    M-PESA, cash and check donations wait for confirmation.
    """
    donor = donation_in.donor
    now = utcnow()
    donation = Donation(
        donor_first_name=donor.first_name,
        donor_last_name=donor.last_name,
        donor_email=donor.email.lower(),
        donor_phone=donor.phone,
        donor_address=donor.address,
        is_anonymous=donor.is_anonymous,
        amount=donation_in.amount,
        currency=donation_in.currency,
        payment_method=donation_in.payment_method,
        payment_status=DonationStatusEnum.pending,
        donation_type=donation_in.donation_type,
        purpose=donation_in.purpose,
        message=donation_in.message,
        processed_by_id=current_user.id if current_user else None,
        tax_receipt_sent=False,
        is_verified=False,
    )
    if donor.is_anonymous:
        donation.donor_first_name = "Anonymous"
        donation.donor_last_name = "Donor"
        donation.donor_email = settings.ANONYMOUS_DONOR_EMAIL
    if donation.payment_method not in DEFERRED_METHODS:
        donation.transaction_id = new_transaction_id(now)
        mark_verified(db, donation, now)
    db.add(donation)
    db.commit()
    db.refresh(donation)
    logger.info(
        "donation received",
        extra={"donation_id": donation.id, "payment_status": donation.payment_status.value},
    )
    completed = donation.payment_status == DonationStatusEnum.completed
    return DonationResult(
        donation=DonationOut.model_validate(donation),
        message="Donation received successfully",
        next_steps="Thank you for your donation!" if completed else "Please complete your payment to finalize the donation.",
    )


# PUBLIC_INTERFACE
@router.post("/mpesa-initiate", responses={502: {"model": ErrorResponse}}, summary="Initiate M-PESA STK push")
def mpesa_initiate(
    body: MpesaInitiateIn,
    db: Session = Depends(get_db),
    gateway: MpesaClient = Depends(get_mpesa_client),
):
    """
    Create a pending M-PESA donation, then prompt the donor's phone. The donation
    is marked failed if the gateway rejects the request.
    """
    first_name, _, last_name = body.account_reference.partition(" ")
    donation = Donation(
        donor_first_name=first_name,
        donor_last_name=last_name,
        donor_email=body.email.lower(),
        donor_phone=body.phone,
        is_anonymous=False,
        amount=body.amount,
        currency="KES",
        payment_method=DonationMethodEnum.mpesa,
        payment_status=DonationStatusEnum.pending,
        purpose=body.transaction_desc,
        tax_receipt_sent=False,
        is_verified=False,
    )
    db.add(donation)
    db.commit()
    try:
        response = gateway.initiate_stk_push(
            amount=body.amount,
            phone=body.phone,
            account_reference=body.account_reference,
            transaction_desc=body.transaction_desc,
        )
    except GatewayError as exc:
        donation.payment_status = DonationStatusEnum.failed
        donation.notes = exc.detail
        db.commit()
        logger.warning("donation stk push failed", extra={"donation_id": donation.id})
        raise
    donation.transaction_id = response.checkout_request_id
    db.commit()
    return {"donation_id": donation.id, **response.raw}


# PUBLIC_INTERFACE
@router.post("/mpesa-callback", summary="M-PESA payment callback")
def mpesa_callback(body: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    """
    Gateway notification for a donation STK push. Always acknowledged with
    ResultCode 0; only a still-pending donation is changed, so repeated
    notifications have no further effect.
    """
    callback = parse_stk_callback(body)
    if callback is None or not callback.checkout_request_id:
        return {"ResultCode": 0, "ResultDesc": "No callback data"}
    reference = callback.checkout_request_id
    if not db.query(Donation.id).filter(Donation.transaction_id == reference).first():
        logger.warning("donation callback for unknown reference", extra={"checkout_request_id": reference})
        return {"ResultCode": 0, "ResultDesc": "Donation not found"}
    now = utcnow()
    if callback.succeeded:
        values = {
            "payment_status": DonationStatusEnum.completed,
            "is_verified": True,
            "verification_date": now,
            "receipt_number": callback.receipt_number or new_receipt_number(db, now),
        }
    else:
        values = {"payment_status": DonationStatusEnum.failed, "notes": callback.result_desc}
    result = db.execute(
        update(Donation)
        .where(Donation.transaction_id == reference, Donation.payment_status == DonationStatusEnum.pending)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.expire_all()
    if result.rowcount != 1:
        logger.info("duplicate donation callback ignored", extra={"checkout_request_id": reference})
    else:
        logger.info(
            "donation callback applied",
            extra={"checkout_request_id": reference, "result_code": callback.result_code},
        )
    return {"ResultCode": 0, "ResultDesc": "Received successfully"}


# PUBLIC_INTERFACE
@router.get("/user/history", response_model=List[DonationOut], summary="Current user's donations")
def donation_history(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return (
        db.query(Donation)
        .filter(Donation.donor_email == current_user.email)
        .order_by(Donation.created_at.desc(), Donation.id.desc())
        .all()
    )


# PUBLIC_INTERFACE
@router.get("/{donation_id}", response_model=DonationOut, summary="Get donation")
def get_donation(donation_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    donation = _get_donation_or_404(db, donation_id)
    _require_admin_or_donor(donation, current_user, "donation")
    return donation


# PUBLIC_INTERFACE
@router.put("/{donation_id}/status", response_model=DonationResult, summary="Update donation status")
def update_donation_status(
    donation_id: int,
    body: DonationStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    donation = _get_donation_or_404(db, donation_id)
    donation.payment_status = body.payment_status
    if body.notes:
        donation.notes = body.notes
    if body.transaction_id:
        donation.transaction_id = body.transaction_id
    if body.payment_status == DonationStatusEnum.completed and not donation.is_verified:
        mark_verified(db, donation, utcnow())
    donation.processed_by_id = current_user.id
    db.commit()
    db.refresh(donation)
    logger.info(
        "donation status updated",
        extra={"donation_id": donation.id, "payment_status": donation.payment_status.value},
    )
    return DonationResult(donation=DonationOut.model_validate(donation), message="Donation status updated successfully")


# PUBLIC_INTERFACE
@router.post("/{donation_id}/send-receipt", response_model=DonationResult, responses={400: {"model": ErrorResponse}}, summary="Send tax receipt")
def send_tax_receipt(donation_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_required)):
    """
    Marks the tax receipt as sent. Delivery itself is handled outside this service.
    """
    donation = _get_donation_or_404(db, donation_id)
    if donation.payment_status != DonationStatusEnum.completed:
        raise HTTPException(status_code=400, detail="Can only send receipts for completed donations")
    if donation.tax_receipt_sent:
        raise HTTPException(status_code=400, detail="Tax receipt already sent")
    donation.tax_receipt_sent = True
    donation.tax_receipt_date = utcnow()
    db.commit()
    db.refresh(donation)
    return DonationResult(donation=DonationOut.model_validate(donation), message="Tax receipt sent successfully")


# PUBLIC_INTERFACE
@router.get("/{donation_id}/receipt", response_model=ReceiptOut, responses={400: {"model": ErrorResponse}}, summary="Get donation receipt")
def get_receipt(donation_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    donation = _get_donation_or_404(db, donation_id)
    _require_admin_or_donor(donation, current_user, "receipt")
    if donation.payment_status != DonationStatusEnum.completed:
        raise HTTPException(status_code=400, detail="Receipt not available for incomplete donations")
    return ReceiptOut(
        receipt_number=donation.receipt_number,
        date=donation.created_at,
        donor={
            "name": donation.donor_full_name,
            "email": donation.donor_email,
            "address": donation.donor_address,
        },
        amount=f"{donation.currency} {donation.amount:,.2f}",
        purpose=donation.purpose,
        payment_method=donation.payment_method,
        transaction_id=donation.transaction_id,
        foundation={"name": settings.FOUNDATION_NAME, "email": settings.FOUNDATION_EMAIL},
    )
