from __future__ import annotations


def test_member_cannot_list_users(client, authorize, member_user):
    authorize(member_user)
    assert client.get("/users/").status_code == 403


def test_admin_lists_and_filters_users(client, authorize, admin_user, member_user, guest_user):
    authorize(admin_user)
    listing = client.get("/users/").json()
    assert listing["pagination"]["total"] == 3
    members = client.get("/users/", params={"role": "member"}).json()
    assert [u["email"] for u in members["users"]] == ["member@example.com"]
    assert members["users"][0]["roles"] == ["member"]
    by_name = client.get("/users/", params={"sort_by": "first_name", "sort_order": "asc"}).json()
    assert [u["first_name"] for u in by_name["users"]] == ["Admin", "Gitau", "Mary"]
    paged = client.get("/users/", params={"limit": 2, "page": 2}).json()["pagination"]
    assert paged["total_pages"] == 2
    assert paged["has_prev_page"] is True
    assert paged["has_next_page"] is False


def test_search_needs_two_characters(client, authorize, admin_user, member_user):
    authorize(admin_user)
    assert client.get("/users/search", params={"q": "m"}).status_code == 400
    found = client.get("/users/search", params={"q": "mar"}).json()
    assert [u["id"] for u in found] == [member_user.id]


def test_user_stats(client, authorize, admin_user, member_user, other_member):
    authorize(admin_user)
    stats = client.get("/users/stats/overview").json()
    assert stats["total_users"] == 3
    assert stats["active_users"] == 3
    assert stats["users_by_role"]["member"] == 2
    assert stats["users_by_role"]["admin"] == 1


def test_bulk_role_update(client, authorize, admin_user, member_user, other_member):
    authorize(admin_user)
    refused = client.put("/users/bulk-update-roles", json={"user_ids": [admin_user.id, member_user.id], "role": "guest"})
    assert refused.status_code == 400

    resp = client.put("/users/bulk-update-roles", json={"user_ids": [member_user.id, other_member.id], "role": "admin"})
    assert resp.status_code == 200
    assert resp.json()["modified_count"] == 2
    assert client.get(f"/users/{other_member.id}").json()["roles"] == ["admin"]


def test_user_reads_own_profile_only(client, authorize, member_user, other_member):
    authorize(member_user)
    assert client.get(f"/users/{member_user.id}").json()["email"] == "member@example.com"
    assert client.get(f"/users/{other_member.id}").status_code == 403


def test_admin_updates_user(client, authorize, admin_user, member_user, other_member):
    authorize(admin_user)
    taken = client.put(f"/users/{member_user.id}", json={"email": "other@example.com"})
    assert taken.status_code == 400
    resp = client.put(f"/users/{member_user.id}", json={"first_name": "Maryanne", "role": "guest"})
    assert resp.status_code == 200
    assert resp.json()["first_name"] == "Maryanne"
    assert resp.json()["roles"] == ["guest"]


def test_admin_cannot_delete_or_deactivate_self(client, authorize, admin_user):
    authorize(admin_user)
    assert client.delete(f"/users/{admin_user.id}").status_code == 400
    assert client.put(f"/users/{admin_user.id}/toggle-status").status_code == 400


def test_toggle_status_and_delete(client, authorize, admin_user, member_user):
    authorize(admin_user)
    toggled = client.put(f"/users/{member_user.id}/toggle-status").json()
    assert toggled["user"]["is_active"] is False
    assert toggled["message"] == "User deactivated successfully"
    assert client.get("/users/", params={"is_active": False}).json()["pagination"]["total"] == 1

    assert client.delete(f"/users/{member_user.id}").json()["success"] is True
    assert client.get(f"/users/{member_user.id}").status_code == 404


def test_deleting_user_removes_their_membership(client, authorize, admin_user, member_user, application_payload):
    authorize(member_user)
    assert client.post("/membership/apply", json=application_payload).status_code == 201
    authorize(admin_user)
    assert client.delete(f"/users/{member_user.id}").status_code == 200
    assert client.get("/membership/").json()["pagination"]["total"] == 0
