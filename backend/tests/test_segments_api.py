def _contact(client, phone_number):
    return client.post("/api/contacts", json={"phone_number": phone_number}).json()


def test_create_list_and_duplicate_segment(client):
    created = client.post("/api/segments", json={"name": "Leads", "description": "Inbound leads"})
    duplicate = client.post("/api/segments", json={"name": "Leads"})

    assert created.status_code == 201
    assert created.json()["name"] == "Leads"
    assert created.json()["contact_count"] == 0
    assert duplicate.status_code == 409
    listed = client.get("/api/segments").json()
    assert [item["name"] for item in listed] == ["Leads"]


def test_update_segment_and_rename_conflict(client):
    first = client.post("/api/segments", json={"name": "First"}).json()
    client.post("/api/segments", json={"name": "Second"})

    renamed = client.put(f"/api/segments/{first['id']}", json={"name": "Renamed", "description": "d"})
    conflict = client.put(f"/api/segments/{first['id']}", json={"name": "Second"})
    missing = client.put("/api/segments/999", json={"name": "Nope"})

    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Renamed"
    assert renamed.json()["description"] == "d"
    assert conflict.status_code == 409
    assert missing.status_code == 404


def test_members_by_id_and_phone_with_not_found(client):
    segment = client.post("/api/segments", json={"name": "Members"}).json()
    first = _contact(client, "15559001")
    _contact(client, "15559002")

    response = client.post(
        f"/api/segments/{segment['id']}/contacts",
        json={"contact_ids": [first["id"], 4242], "phone_numbers": ["15559002", "15559999"]},
    )
    repeat = client.post(f"/api/segments/{segment['id']}/contacts", json={"contact_ids": [first["id"]]})

    assert response.status_code == 200
    assert response.json()["added"] == 2
    assert sorted(response.json()["not_found"]) == ["15559999", "4242"]
    assert repeat.json()["added"] == 0
    assert client.get(f"/api/segments/{segment['id']}").json()["contact_count"] == 2


def test_members_request_requires_targets(client):
    segment = client.post("/api/segments", json={"name": "Empty request"}).json()

    response = client.post(f"/api/segments/{segment['id']}/contacts", json={})

    assert response.status_code == 422


def test_remove_member(client):
    segment = client.post("/api/segments", json={"name": "Shrinking"}).json()
    contact = _contact(client, "15559010")
    client.post(f"/api/segments/{segment['id']}/contacts", json={"contact_ids": [contact["id"]]})

    removed = client.delete(f"/api/segments/{segment['id']}/contacts/{contact['id']}")
    again = client.delete(f"/api/segments/{segment['id']}/contacts/{contact['id']}")

    assert removed.status_code == 200
    assert again.status_code == 404
    assert client.get(f"/api/segments/{segment['id']}/contacts").json() == []


def test_delete_segment_keeps_contacts(client):
    segment = client.post("/api/segments", json={"name": "Temporary"}).json()
    contact = _contact(client, "15559020")
    client.post(f"/api/segments/{segment['id']}/contacts", json={"contact_ids": [contact["id"]]})

    response = client.delete(f"/api/segments/{segment['id']}")

    assert response.status_code == 200
    assert client.get(f"/api/segments/{segment['id']}").status_code == 404
    assert [item["phone_number"] for item in client.get("/api/contacts").json()] == ["15559020"]
    assert client.get("/api/contacts/15559020/segments").json() == []
