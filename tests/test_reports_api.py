from __future__ import annotations

import csv
import io


def _rows(resp) -> list[dict]:
    return list(csv.DictReader(io.StringIO(resp.text)))


def test_donation_export(client, authorize, admin_user):
    client.post(
        "/donations/",
        json={
            "donor": {"first_name": "Mary", "last_name": "Test", "email": "mary@example.com"},
            "amount": 1500,
            "payment_method": "credit_card",
        },
    )
    client.post(
        "/donations/",
        json={
            "donor": {"first_name": "Hidden", "last_name": "Giver", "email": "hidden@example.com", "is_anonymous": True},
            "amount": 200,
            "payment_method": "cash",
        },
    )
    authorize(admin_user)
    resp = client.get("/reports/donations/export")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "donations.csv" in resp.headers["content-disposition"]
    rows = _rows(resp)
    assert {r["Donor"] for r in rows} == {"Mary Test", "Anonymous Donor"}

    completed = _rows(client.get("/reports/donations/export", params={"status": "completed"}))
    assert [r["Status"] for r in completed] == ["completed"]
    assert completed[0]["Method"] == "credit_card"


def test_membership_export(client, authorize, admin_user, member_user, application_payload):
    authorize(member_user)
    client.post("/membership/apply", json=application_payload)
    authorize(admin_user)
    rows = _rows(client.get("/reports/memberships/export"))
    assert len(rows) == 1
    assert rows[0]["Applicant"] == "Mary Test"
    assert rows[0]["Type"] == "gold"
    assert rows[0]["Status"] == "pending"
    assert _rows(client.get("/reports/memberships/export", params={"status": "active"})) == []


def test_exports_are_admin_only(client, authorize, member_user):
    authorize(member_user)
    assert client.get("/reports/donations/export").status_code == 403
    assert client.get("/reports/memberships/export").status_code == 403
