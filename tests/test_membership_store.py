from __future__ import annotations

from datetime import timedelta

import pytest

from foundation_api import lifecycle, membership_store
from foundation_api.errors import ConflictError, GatewayError, InvalidTransitionError, ValidationFailedError
from foundation_api.lifecycle import FeeSchedule
from foundation_api.membership_store import ConfirmationOutcome
from foundation_api.models import (
    Membership,
    MembershipPayment,
    MembershipStatusEnum,
    PaymentMethodEnum,
    PaymentStatusEnum,
    ProgressStatusEnum,
)


@pytest.fixture()
def membership(db_session, member_user, admin_user, application_payload) -> Membership:
    membership = membership_store.submit_application(
        db_session, member_user.id, "gold", "monthly", FeeSchedule.default(),
        motivation=application_payload["motivation"],
    )
    return membership_store.approve(db_session, membership, admin_user.id)


def test_second_application_is_rejected(db_session, membership, member_user):
    motivation = membership.motivation
    with pytest.raises(ValidationFailedError) as exc_info:
        membership_store.submit_application(
            db_session, member_user.id, "silver", "annual", FeeSchedule.default(), motivation=motivation
        )
    assert exc_info.value.extra["membership_id"] == membership.id


def test_approve_persists_unique_number(db_session, membership):
    db_session.expire_all()
    stored = membership_store.get_membership(db_session, membership.id)
    assert stored.status == MembershipStatusEnum.active
    assert stored.membership_number.startswith("KCE-GOLD-")


def test_completed_payments_keep_total_in_step_with_history(db_session, membership):
    membership_store.record_payment(db_session, membership, 417, PaymentMethodEnum.card)
    membership_store.record_payment(db_session, membership, 417, PaymentMethodEnum.bank_transfer)
    membership_store.record_payment(
        db_session, membership, 417, PaymentMethodEnum.card, status=PaymentStatusEnum.pending
    )
    assert membership.total_paid == 834
    assert membership.consecutive_payments == 2
    assert membership.payment_status == ProgressStatusEnum.up_to_date
    assert len(membership.payments) == 3
    assert lifecycle.completed_total(membership.payments) == membership.total_paid


def test_payment_on_cancelled_membership_is_refused(db_session, membership):
    membership_store.transition(db_session, membership, lifecycle.cancel)
    with pytest.raises(InvalidTransitionError):
        membership_store.record_payment(db_session, membership, 417, PaymentMethodEnum.card)
    assert db_session.query(MembershipPayment).count() == 0


def test_concurrent_recordings_do_not_lose_increments(db_session, session_factory, membership):
    first = session_factory()
    second = session_factory()
    try:
        seen_by_first = first.get(Membership, membership.id)
        seen_by_second = second.get(Membership, membership.id)
        membership_store.record_payment(first, seen_by_first, 100, PaymentMethodEnum.card)
        membership_store.record_payment(second, seen_by_second, 100, PaymentMethodEnum.card)
    finally:
        first.close()
        second.close()
    db_session.expire_all()
    stored = db_session.get(Membership, membership.id)
    assert stored.total_paid == 200
    assert stored.consecutive_payments == 2


def test_stale_transition_raises_conflict(db_session, session_factory, membership):
    first = session_factory()
    second = session_factory()
    try:
        seen_by_first = first.get(Membership, membership.id)
        seen_by_second = second.get(Membership, membership.id)
        membership_store.transition(first, seen_by_first, lifecycle.suspend)
        with pytest.raises(ConflictError):
            membership_store.transition(second, seen_by_second, lifecycle.cancel)
    finally:
        first.close()
        second.close()
    db_session.expire_all()
    assert db_session.get(Membership, membership.id).status == MembershipStatusEnum.suspended


def test_confirm_payment_applies_exactly_once(db_session, membership):
    payment = membership_store.record_payment(
        db_session,
        membership,
        417,
        PaymentMethodEnum.mpesa,
        status=PaymentStatusEnum.pending,
        transaction_id="ws_CO_1",
        phone_number="254712345678",
    )
    assert membership.total_paid == 0

    outcome = membership_store.confirm_payment(db_session, "ws_CO_1", receipt_number="NLJ7RT61SV")
    assert outcome == ConfirmationOutcome.applied
    repeat = membership_store.confirm_payment(db_session, "ws_CO_1", receipt_number="NLJ7RT61SV")
    assert repeat == ConfirmationOutcome.duplicate

    stored = db_session.get(Membership, membership.id)
    assert stored.total_paid == 417
    assert stored.consecutive_payments == 1
    confirmed = db_session.get(MembershipPayment, payment.id)
    assert confirmed.status == PaymentStatusEnum.completed
    assert confirmed.mpesa_transaction_code == "NLJ7RT61SV"


def test_confirm_unknown_reference(db_session, membership):
    assert membership_store.confirm_payment(db_session, "ws_CO_missing") == ConfirmationOutcome.not_found


def test_fail_payment_only_touches_pending(db_session, membership):
    membership_store.record_payment(
        db_session, membership, 417, PaymentMethodEnum.mpesa, status=PaymentStatusEnum.pending,
        transaction_id="ws_CO_2", phone_number="254712345678",
    )
    assert membership_store.fail_payment(db_session, "ws_CO_2", "Request cancelled by user") == ConfirmationOutcome.applied
    assert membership_store.fail_payment(db_session, "ws_CO_2") == ConfirmationOutcome.duplicate
    assert membership_store.fail_payment(db_session, "ws_CO_3") == ConfirmationOutcome.not_found
    payment = db_session.query(MembershipPayment).filter_by(transaction_id="ws_CO_2").one()
    assert payment.status == PaymentStatusEnum.failed
    assert payment.notes == "Request cancelled by user"


def test_late_success_after_failure_is_still_applied(db_session, membership):
    membership_store.record_payment(
        db_session, membership, 417, PaymentMethodEnum.mpesa, status=PaymentStatusEnum.pending,
        transaction_id="ws_CO_4", phone_number="254712345678",
    )
    membership_store.fail_payment(db_session, "ws_CO_4")
    assert membership_store.confirm_payment(db_session, "ws_CO_4") == ConfirmationOutcome.applied
    assert db_session.get(Membership, membership.id).total_paid == 417


def test_initiate_mpesa_payment_stores_checkout_reference(db_session, membership, gateway):
    payment, response = membership_store.initiate_mpesa_payment(
        db_session, membership, gateway.client(), 417, "254712345678"
    )
    assert payment.status == PaymentStatusEnum.pending
    assert payment.transaction_id == response.checkout_request_id
    assert payment.mpesa_transaction_code == "29115-34620561-1"
    stk = gateway.stk_payloads()[0]
    assert stk["AccountReference"] == f"MEM-GOLD-{membership.id}"
    assert stk["TransactionDesc"] == "Gold Membership Payment"


def test_gateway_failure_marks_payment_failed(db_session, membership, gateway):
    gateway.stk_status = 500
    gateway.stk_body = {"errorMessage": "Internal Server Error"}
    with pytest.raises(GatewayError):
        membership_store.initiate_mpesa_payment(db_session, membership, gateway.client(), 417, "254712345678")
    payment = db_session.query(MembershipPayment).one()
    assert payment.status == PaymentStatusEnum.failed
    assert "HTTP 500" in payment.notes
    assert db_session.get(Membership, membership.id).total_paid == 0


def test_refresh_on_read_persists_overdue_state(db_session, membership):
    later = membership.next_payment_date + timedelta(days=400)
    membership_store.refresh_on_read(db_session, membership, now=later)
    db_session.expire_all()
    stored = db_session.get(Membership, membership.id)
    assert stored.status == MembershipStatusEnum.expired
    assert stored.payment_status == ProgressStatusEnum.overdue
    assert stored.overdue_amount > 0


def test_refresh_on_read_without_changes_keeps_version(db_session, membership):
    version = membership.version_id
    membership_store.refresh_on_read(db_session, membership, now=lifecycle.utcnow())
    assert membership.version_id == version


def test_refresh_on_read_survives_concurrent_payment(db_session, session_factory, membership):
    later = membership.next_payment_date + timedelta(days=65)
    reader = session_factory()
    writer = session_factory()
    try:
        seen_by_reader = reader.get(Membership, membership.id)
        membership_store.record_payment(writer, writer.get(Membership, membership.id), 100, PaymentMethodEnum.card)
        refreshed = membership_store.refresh_on_read(reader, seen_by_reader, now=later)
        assert refreshed.total_paid == 100
        assert refreshed.payment_status == ProgressStatusEnum.overdue
    finally:
        reader.close()
        writer.close()
    db_session.expire_all()
    stored = db_session.get(Membership, membership.id)
    assert stored.total_paid == 100
    assert stored.payment_status == ProgressStatusEnum.overdue


def test_refresh_due_only_touches_lapsed_records(db_session, membership):
    assert membership_store.refresh_due(db_session, now=lifecycle.utcnow()) == 0
    later = membership.next_payment_date + timedelta(days=65)
    assert membership_store.refresh_due(db_session, now=later) == 1
    db_session.expire_all()
    assert db_session.get(Membership, membership.id).payment_status == ProgressStatusEnum.overdue
