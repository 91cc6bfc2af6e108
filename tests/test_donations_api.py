from __future__ import annotations

import re

import pytest


def _donation_payload(**overrides) -> dict:
    payload = {
        "donor": {"first_name": "Mary", "last_name": "Test", "email": "member@example.com", "phone": "254712345678"},
        "amount": 1500,
        "currency": "USD",
        "payment_method": "credit_card",
        "purpose": "education",
        "message": "For the school fees fund",
    }
    payload.update(overrides)
    return payload


def _stk_callback(checkout_id: str, result_code: int = 0) -> dict:
    stk = {"CheckoutRequestID": checkout_id, "ResultCode": result_code, "ResultDesc": "Processed"}
    if result_code == 0:
        stk["CallbackMetadata"] = {"Item": [{"Name": "MpesaReceiptNumber", "Value": "QKJ9XY12AB"}]}
    return {"Body": {"stkCallback": stk}}


@pytest.fixture()
def card_donation(client) -> dict:
    resp = client.post("/donations/", json=_donation_payload())
    assert resp.status_code == 201, resp.text
    return resp.json()["donation"]


def test_card_donation_is_settled_on_submission(client):
    resp = client.post("/donations/", json=_donation_payload())
    assert resp.status_code == 201
    body = resp.json()
    donation = body["donation"]
    assert donation["payment_status"] == "completed"
    assert donation["is_verified"] is True
    assert re.match(r"^TXN-\d+-[0-9a-f]{9}$", donation["transaction_id"])
    assert re.match(r"^KCE-\d{4}-\d{4}$", donation["receipt_number"])
    assert body["next_steps"] == "Thank you for your donation!"


def test_cash_donation_waits_for_confirmation(client):
    resp = client.post("/donations/", json=_donation_payload(payment_method="cash"))
    donation = resp.json()["donation"]
    assert donation["payment_status"] == "pending"
    assert donation["receipt_number"] is None
    assert resp.json()["next_steps"] == "Please complete your payment to finalize the donation."


def test_anonymous_donor_is_masked(client):
    donor = {"first_name": "Secret", "last_name": "Giver", "email": "secret@example.com", "is_anonymous": True}
    donation = client.post("/donations/", json=_donation_payload(donor=donor)).json()["donation"]
    assert donation["donor_first_name"] == "Anonymous"
    assert donation["donor_last_name"] == "Donor"
    assert donation["donor_email"] == "anonymous@kamune-elites.org"
    assert donation["donor_full_name"] == "Anonymous Donor"


def test_donation_validation(client):
    assert client.post("/donations/", json=_donation_payload(amount=0)).status_code == 422
    assert client.post("/donations/", json=_donation_payload(currency="JPY")).status_code == 422
    assert client.post("/donations/", json=_donation_payload(purpose="parties")).status_code == 422


def test_mpesa_donation_confirmed_by_callback(client, authorize, admin_user, mpesa):
    resp = client.post(
        "/donations/mpesa-initiate",
        json={"amount": 500, "phone": "254712345678", "email": "giver@example.com"},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    checkout_id = body["CheckoutRequestID"]
    assert mpesa.stk_payloads()[0]["AccountReference"] == "Donation"

    ack = client.post("/donations/mpesa-callback", json=_stk_callback(checkout_id))
    assert ack.json() == {"ResultCode": 0, "ResultDesc": "Received successfully"}
    client.post("/donations/mpesa-callback", json=_stk_callback(checkout_id, result_code=1))

    authorize(admin_user)
    donation = client.get(f"/donations/{body['donation_id']}").json()
    assert donation["payment_status"] == "completed"
    assert donation["receipt_number"] == "QKJ9XY12AB"
    assert donation["transaction_id"] == checkout_id
    assert donation["is_verified"] is True


def test_failed_mpesa_callback(client, authorize, admin_user, mpesa):
    body = client.post(
        "/donations/mpesa-initiate",
        json={"amount": 500, "phone": "254712345678", "email": "giver@example.com"},
    ).json()
    client.post("/donations/mpesa-callback", json=_stk_callback(body["CheckoutRequestID"], result_code=1032))
    authorize(admin_user)
    donation = client.get(f"/donations/{body['donation_id']}").json()
    assert donation["payment_status"] == "failed"
    assert donation["notes"] == "Processed"


def test_callback_for_unknown_reference_is_acknowledged(client):
    resp = client.post("/donations/mpesa-callback", json=_stk_callback("ws_CO_unknown"))
    assert resp.status_code == 200
    assert resp.json()["ResultCode"] == 0


def test_mpesa_initiate_rejects_bad_phone(client, mpesa):
    resp = client.post(
        "/donations/mpesa-initiate",
        json={"amount": 500, "phone": "0712345678", "email": "giver@example.com"},
    )
    assert resp.status_code == 422
    assert mpesa.requests == []


def test_mpesa_gateway_failure_marks_donation_failed(client, authorize, admin_user, mpesa):
    mpesa.stk_status = 503
    mpesa.stk_body = {"errorMessage": "Service Unavailable"}
    resp = client.post(
        "/donations/mpesa-initiate",
        json={"amount": 500, "phone": "254712345678", "email": "giver@example.com"},
    )
    assert resp.status_code == 502
    authorize(admin_user)
    listing = client.get("/donations/", params={"status": "failed"}).json()
    assert listing["pagination"]["total"] == 1
    assert listing["donations"][0]["payment_method"] == "mpesa"


def test_admin_list_includes_total_amount(client, authorize, admin_user, member_user):
    client.post("/donations/", json=_donation_payload(amount=1000))
    client.post("/donations/", json=_donation_payload(amount=250, payment_method="paypal"))
    authorize(member_user)
    assert client.get("/donations/").status_code == 403
    authorize(admin_user)
    listing = client.get("/donations/").json()
    assert listing["pagination"]["total"] == 2
    assert listing["pagination"]["total_amount"] == 1250
    assert client.get("/donations/", params={"payment_method": "paypal"}).json()["pagination"]["total"] == 1


def test_admin_completes_pending_donation(client, authorize, admin_user):
    pending = client.post("/donations/", json=_donation_payload(payment_method="check")).json()["donation"]
    authorize(admin_user)
    resp = client.put(f"/donations/{pending['id']}/status", json={"payment_status": "completed", "notes": "Cheque cleared"})
    assert resp.status_code == 200
    donation = resp.json()["donation"]
    assert donation["payment_status"] == "completed"
    assert donation["is_verified"] is True
    assert donation["receipt_number"] is not None
    assert donation["processed_by"]["id"] == admin_user.id


def test_tax_receipt_sent_once(client, authorize, admin_user, card_donation):
    authorize(admin_user)
    first = client.post(f"/donations/{card_donation['id']}/send-receipt")
    assert first.status_code == 200
    assert first.json()["donation"]["tax_receipt_sent"] is True
    second = client.post(f"/donations/{card_donation['id']}/send-receipt")
    assert second.status_code == 400
    assert second.json()["detail"] == "Tax receipt already sent"


def test_tax_receipt_needs_completed_donation(client, authorize, admin_user):
    pending = client.post("/donations/", json=_donation_payload(payment_method="cash")).json()["donation"]
    authorize(admin_user)
    resp = client.post(f"/donations/{pending['id']}/send-receipt")
    assert resp.status_code == 400


def test_donor_reads_own_receipt(client, authorize, member_user, other_member, card_donation):
    authorize(member_user)
    receipt = client.get(f"/donations/{card_donation['id']}/receipt")
    assert receipt.status_code == 200
    body = receipt.json()
    assert body["amount"] == "USD 1,500.00"
    assert body["receipt_number"] == card_donation["receipt_number"]
    assert body["donor"]["name"] == "Mary Test"
    assert body["foundation"]["name"] == "Kamune Cluster Elites Foundation"

    history = client.get("/donations/user/history").json()
    assert [d["id"] for d in history] == [card_donation["id"]]

    authorize(other_member)
    assert client.get(f"/donations/{card_donation['id']}").status_code == 403
    assert client.get(f"/donations/{card_donation['id']}/receipt").status_code == 403


def test_stats_count_completed_only(client, card_donation):
    client.post("/donations/", json=_donation_payload(payment_method="cash", amount=99))
    stats = client.get("/donations/stats").json()
    assert stats["total_donations"] == 1
    assert stats["total_amount"] == 1500
    assert stats["purpose_stats"] == [{"purpose": "education", "count": 1, "amount": 1500}]
