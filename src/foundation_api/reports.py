"""
Reporting endpoints for exporting donations and memberships as CSV.
Admin only.
"""
import csv
import io
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from foundation_api import membership_store
from foundation_api.auth import admin_required
from foundation_api.db import get_db
from foundation_api.models import (
    Donation,
    DonationStatusEnum,
    Membership,
    MembershipStatusEnum,
    MembershipTypeEnum,
    User,
)

router = APIRouter(prefix="/reports", tags=["Reports"])

DONATION_COLUMNS = [
    "Donation ID", "Date", "Donor", "Email", "Amount", "Currency", "Method",
    "Status", "Purpose", "Transaction ID", "Receipt Number",
]

MEMBERSHIP_COLUMNS = [
    "Membership ID", "Membership Number", "Applicant", "Email", "Type", "Plan", "Status",
    "Application Date", "Expiry Date", "Total Paid", "Payment Status", "Overdue Amount",
]


def _value(v):
    return v.value if hasattr(v, "value") else v


def csv_response(rows: Iterable[Dict], columns: List[str], filename: str) -> StreamingResponse:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=columns)
    writer.writeheader()
    for r in rows:
        writer.writerow({k: _value(v) for k, v in r.items()})
    output.seek(0)
    headers = {"Content-Disposition": f"attachment; filename={filename}"}
    return StreamingResponse(output, headers=headers, media_type="text/csv")


# PUBLIC_INTERFACE
@router.get("/donations/export", summary="Export donations as CSV", response_class=StreamingResponse)
def export_donations(
    payment_status: Optional[DonationStatusEnum] = Query(None, alias="status"),
    from_date: Optional[date] = Query(None, description="From date"),
    to_date: Optional[date] = Query(None, description="To date"),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    """
    Download donations as CSV, newest first. Anonymous donors appear masked.
    """
    q = db.query(Donation)
    if payment_status:
        q = q.filter(Donation.payment_status == payment_status)
    if from_date:
        q = q.filter(Donation.created_at >= datetime.combine(from_date, time.min))
    if to_date:
        q = q.filter(Donation.created_at <= datetime.combine(to_date, time.max))
    rows = [
        {
            "Donation ID": d.id,
            "Date": d.created_at,
            "Donor": d.donor_full_name,
            "Email": d.donor_email,
            "Amount": d.amount,
            "Currency": d.currency,
            "Method": d.payment_method,
            "Status": d.payment_status,
            "Purpose": d.purpose,
            "Transaction ID": d.transaction_id,
            "Receipt Number": d.receipt_number,
        }
        for d in q.order_by(Donation.created_at.desc(), Donation.id.desc()).all()
    ]
    return csv_response(rows, DONATION_COLUMNS, "donations.csv")


# PUBLIC_INTERFACE
@router.get("/memberships/export", summary="Export memberships as CSV", response_class=StreamingResponse)
def export_memberships(
    membership_status: Optional[MembershipStatusEnum] = Query(None, alias="status"),
    membership_type: Optional[MembershipTypeEnum] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    membership_store.refresh_due(db)
    q = db.query(Membership)
    if membership_status:
        q = q.filter(Membership.status == membership_status)
    if membership_type:
        q = q.filter(Membership.membership_type == membership_type)
    rows = []
    for m in q.order_by(Membership.application_date.desc(), Membership.id.desc()).all():
        applicant = m.applicant
        rows.append({
            "Membership ID": m.id,
            "Membership Number": m.membership_number,
            "Applicant": f"{applicant.first_name} {applicant.last_name}" if applicant else "",
            "Email": applicant.email if applicant else "",
            "Type": m.membership_type,
            "Plan": m.fee_selected_plan,
            "Status": m.status,
            "Application Date": m.application_date,
            "Expiry Date": m.expiry_date,
            "Total Paid": m.total_paid,
            "Payment Status": m.payment_status,
            "Overdue Amount": m.overdue_amount,
        })
    return csv_response(rows, MEMBERSHIP_COLUMNS, "memberships.csv")
