from bson import ObjectId

from conftest import CDN

PNG = b"\x89PNG\r\n\x1a\nfake"


def make_category(client, auth, name="Pets", **fields):
    res = client.post("/api/categories", data={"name": name, **fields}, headers=auth)
    assert res.status_code == 201, res.text
    return res.json()["data"]


def test_create_category_defaults(client, auth):
    category = make_category(client, auth)
    assert category["slug"] == "pets"
    assert category["color"] == "#6B7280"
    assert category["is_active"] is True
    assert category["is_featured"] is False
    assert "product_count" not in category


def test_create_category_requires_name(client, auth):
    res = client.post("/api/categories", data={"description": "no name"}, headers=auth)
    assert res.status_code == 400
    assert res.json()["errors"] == ["Category name is required"]


def test_update_replaces_image_and_deletes_old_one(client, auth, s3):
    res = client.post("/api/categories", data={"name": "Pets"},
                      files={"image": ("old.png", PNG, "image/png")}, headers=auth)
    category = res.json()["data"]
    old_key = category["image"][len(CDN) + 1:]

    res = client.put(f"/api/categories/{category['_id']}", data={"description": "All pets"},
                     files={"image": ("new.png", PNG, "image/png")}, headers=auth)
    assert res.status_code == 200
    updated = res.json()["data"]
    assert updated["image"] != category["image"]
    assert updated["description"] == "All pets"
    assert s3.deleted == [old_key]


def test_all_lists_active_categories_in_order(client, auth):
    make_category(client, auth, "Toys", sort_order="2")
    make_category(client, auth, "Food", sort_order="1")
    make_category(client, auth, "Hidden", is_active="")
    names = [c["name"] for c in client.get("/api/categories/all").json()["data"]]
    assert names == ["Food", "Toys"]


def test_list_filters_by_string_flags(client, auth):
    make_category(client, auth, "Toys", is_featured="true")
    make_category(client, auth, "Food")
    body = client.get("/api/categories", params={"is_featured": "true"}).json()
    assert [c["name"] for c in body["data"]] == ["Toys"]
    assert body["pagination"]["limit"] == 10


def test_delete_category(client, auth):
    category = make_category(client, auth)
    res = client.delete(f"/api/categories/{category['_id']}", headers=auth)
    assert res.json()["data"]["deletedId"] == category["_id"]
    assert client.get(f"/api/categories/{category['_id']}").status_code == 404


def test_subcategory_requires_existing_parent(client, auth):
    res = client.post("/api/subcategories", data={"name": "Balls"}, headers=auth)
    assert res.status_code == 400
    assert res.json()["message"] == "Name and parent_id are required fields"

    res = client.post("/api/subcategories", data={"name": "Balls", "parent_id": str(ObjectId())}, headers=auth)
    assert res.status_code == 400
    assert res.json()["message"] == "Parent category not found"


def test_subcategory_inherits_parent_color_and_literal_flags(client, auth):
    parent = make_category(client, auth, color="#FF0000")
    res = client.post("/api/subcategories",
                      data={"name": "Balls", "parent_id": parent["_id"], "is_active": "false"}, headers=auth)
    sub = res.json()["data"]
    assert sub["color"] == "#FF0000"
    assert sub["is_active"] is False
    assert sub["is_featured"] is False
    assert sub["parent_id"] == parent["_id"]


def test_subcategory_lookup_and_hierarchy(client, auth):
    parent = make_category(client, auth)
    client.post("/api/subcategories", data={"name": "Balls", "parent_id": parent["_id"]}, headers=auth)
    client.post("/api/subcategories", data={"name": "Ropes", "parent_id": parent["_id"], "is_active": "false"},
                headers=auth)

    active = client.get(f"/api/subcategories/by-parent/{parent['_id']}").json()["data"]
    assert [s["name"] for s in active] == ["Balls"]
    everything = client.get(f"/api/subcategories/by-parent/{parent['_id']}", params={"is_active": "all"}).json()
    assert len(everything["data"]) == 2

    hierarchy = client.get("/api/subcategories/hierarchy/all").json()["data"]
    assert hierarchy[0]["name"] == "Pets"
    assert [s["name"] for s in hierarchy[0]["subcategories"]] == ["Balls"]

    sub_id = active[0]["_id"]
    populated = client.get(f"/api/subcategories/{sub_id}").json()["data"]
    assert populated["parent_id"]["name"] == "Pets"


def test_update_leaves_omitted_fields_intact(client, auth):
    category = make_category(client, auth, description="All pets", color="#FF0000", sort_order="3")
    res = client.put(f"/api/categories/{category['_id']}", data={"is_featured": "true"}, headers=auth)
    assert res.status_code == 200
    updated = res.json()["data"]
    assert updated["is_featured"] is True
    for field in ("name", "slug", "description", "color", "sort_order", "is_active"):
        assert updated[field] == category[field]
