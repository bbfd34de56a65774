from bson import ObjectId

import riders
from conftest import CDN

PNG = b"\x89PNG\r\n\x1a\nfake"
PDF = b"%PDF-1.4 fake"


def rider_form(**fields):
    return {
        "fullName": "Ali Khan",
        "phone": "+92 300 1234567",
        "address": "12 Mall Road",
        "vehicleType": "bike",
        "longitude": "74.3587",
        "latitude": "31.5204",
        **fields,
    }


def make_rider(client, auth, **fields):
    res = client.post("/api/riders", data=rider_form(**fields), headers=auth)
    assert res.status_code == 201, res.text
    return res.json()["data"]


def test_create_rider_with_documents(client, auth, s3):
    res = client.post(
        "/api/riders",
        data=rider_form(email="ali@shopmail.com"),
        files={
            "image": ("face.png", PNG, "image/png"),
            "bikeDocument": ("papers.pdf", PDF, "application/pdf"),
        },
        headers=auth,
    )
    assert res.status_code == 201, res.text
    rider = res.json()["data"]
    assert rider["location"] == {"type": "Point", "coordinates": [74.3587, 31.5204]}
    assert rider["isAvailable"] is True
    assert rider["image"].startswith(f"{CDN}/riders/{rider['_id']}_image")
    assert rider["bikeDocument"].startswith(f"{CDN}/riders/{rider['_id']}_bikeDocument")
    assert len(s3.objects) == 2


def test_pdf_only_allowed_for_bike_document(client, auth):
    res = client.post("/api/riders", data=rider_form(), files={"image": ("face.pdf", PDF, "application/pdf")},
                      headers=auth)
    assert res.status_code == 400


def test_duplicate_phone_is_rejected(client, auth):
    make_rider(client, auth)
    res = client.post("/api/riders", data=rider_form(), headers=auth)
    assert res.status_code == 400
    assert res.json()["message"] == "Rider with this phone already exists"


def test_riders_without_email_do_not_collide(client, auth):
    make_rider(client, auth)
    make_rider(client, auth, phone="+92 300 7654321")


def test_invalid_vehicle_type(client, auth):
    res = client.post("/api/riders", data=rider_form(vehicleType="rocket"), headers=auth)
    assert res.status_code == 400
    assert res.json()["message"] == "Validation error"


def test_update_replaces_image(client, auth, s3):
    res = client.post("/api/riders", data=rider_form(), files={"image": ("a.png", PNG, "image/png")}, headers=auth)
    rider = res.json()["data"]
    old_key = rider["image"][len(CDN) + 1:]

    res = client.put(f"/api/riders/{rider['_id']}", data={"address": "99 Canal Bank"},
                     files={"image": ("b.png", PNG, "image/png")}, headers=auth)
    assert res.status_code == 200
    updated = res.json()["data"]
    assert updated["address"] == "99 Canal Bank"
    assert updated["image"] != rider["image"]
    assert old_key in s3.deleted


def test_rider_with_assigned_orders_cannot_be_deleted(client, auth, db):
    rider = make_rider(client, auth)
    db["rider"].update_one({"phone": rider["phone"]}, {"$set": {"assignedOrders": [ObjectId()]}})
    res = client.delete(f"/api/riders/{rider['_id']}", headers=auth)
    assert res.status_code == 400
    assert res.json()["message"].startswith("Cannot delete rider with assigned orders")


def test_toggle_availability(client, auth):
    rider = make_rider(client, auth)
    res = client.patch(f"/api/riders/{rider['_id']}/availability", headers=auth)
    assert res.json()["data"] == {"id": rider["_id"], "isAvailable": False}
    assert res.json()["message"] == "Rider made unavailable successfully"
    res = client.patch(f"/api/riders/{rider['_id']}/availability", headers=auth)
    assert res.json()["data"]["isAvailable"] is True


def test_list_filters(client, auth):
    make_rider(client, auth)
    make_rider(client, auth, fullName="Sara Ahmed", phone="+92 300 0000000", vehicleType="car")
    body = client.get("/api/riders", params={"vehicleType": "car"}).json()
    assert [r["fullName"] for r in body["data"]] == ["Sara Ahmed"]
    body = client.get("/api/riders", params={"vehicleType": "all", "fullName": "ali"}).json()
    assert [r["fullName"] for r in body["data"]] == ["Ali Khan"]


def test_nearby_requires_coordinates(client):
    res = client.get("/api/riders/available/nearby", params={"longitude": "74.3"})
    assert res.status_code == 400
    assert res.json()["message"] == "Longitude and latitude are required"


def test_update_leaves_omitted_fields_intact(client, auth):
    rider = make_rider(client, auth, email="ali@shopmail.com")
    res = client.put(f"/api/riders/{rider['_id']}", data={"address": "99 Canal Road"}, headers=auth)
    assert res.status_code == 200
    updated = res.json()["data"]
    assert updated["address"] == "99 Canal Road"
    for field in ("fullName", "phone", "email", "vehicleType", "location", "isAvailable"):
        assert updated[field] == rider[field]


def test_nearby_rejects_non_numeric_values(client):
    res = client.get("/api/riders/available/nearby", params={"longitude": "east", "latitude": "31.5"})
    assert res.status_code == 400
    assert res.json()["message"] == "Longitude, latitude and maxDistance must be numbers"

    res = client.get("/api/riders/available/nearby",
                     params={"longitude": "74.3", "latitude": "31.5", "maxDistance": "far"})
    assert res.status_code == 400

    res = client.get("/api/riders/available/nearby", params={"longitude": "274.3", "latitude": "31.5"})
    assert res.status_code == 400
    assert res.json()["message"] == "Coordinates are out of range"


def test_nearby_honours_limit(client, monkeypatch):
    calls = []

    def fake_find_all(collection, q, limit=None, **kwargs):
        calls.append((q, limit))
        return []

    monkeypatch.setattr(riders, "find_all", fake_find_all)
    res = client.get("/api/riders/available/nearby",
                     params={"longitude": "74.3587", "latitude": "31.5204", "maxDistance": "5000", "limit": "3"})
    assert res.status_code == 200
    q, limit = calls[0]
    assert limit == 3
    assert q["location"]["$near"] == {
        "$geometry": {"type": "Point", "coordinates": [74.3587, 31.5204]},
        "$maxDistance": 5000,
    }

    client.get("/api/riders/available/nearby", params={"longitude": "74.3587", "latitude": "31.5204"})
    assert calls[1][1] == 10
