from __future__ import annotations

IMAGE = {
    "url": "https://cdn.example.org/gallery/outreach-2024.jpg",
    "title": "Outreach 2024",
    "description": "Volunteers at the annual outreach day",
}


def test_gallery_listing_is_public(client, authorize, admin_user):
    authorize(admin_user)
    client.post("/gallery/", json=IMAGE)
    client.post("/gallery/", json={**IMAGE, "title": "Graduation"})
    authorize(None)
    images = client.get("/gallery/").json()
    assert {i["title"] for i in images} == {"Outreach 2024", "Graduation"}


def test_only_admin_manages_gallery(client, authorize, member_user):
    authorize(member_user)
    assert client.post("/gallery/", json=IMAGE).status_code == 403


def test_admin_creates_updates_and_deletes_image(client, authorize, admin_user):
    authorize(admin_user)
    created = client.post("/gallery/", json=IMAGE)
    assert created.status_code == 201
    image = created.json()
    assert image["uploaded_by_id"] == admin_user.id

    updated = client.put(f"/gallery/{image['id']}", json={"title": "Outreach Day"})
    assert updated.json()["title"] == "Outreach Day"
    assert updated.json()["description"] == IMAGE["description"]

    assert client.delete(f"/gallery/{image['id']}").json()["success"] is True
    assert client.delete(f"/gallery/{image['id']}").status_code == 404
    assert client.get("/gallery/").json() == []


def test_image_requires_url_and_title(client, authorize, admin_user):
    authorize(admin_user)
    assert client.post("/gallery/", json={"title": "No url"}).status_code == 422
