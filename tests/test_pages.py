import json

from conftest import CDN

PNG = b"\x89PNG\r\n\x1a\nfake"


def make_page(client, auth, base="/api/pages-content", **fields):
    res = client.post(base, data={"pageName": "About Us", **fields}, headers=auth)
    assert res.status_code == 201, res.text
    return res.json()["data"]


def test_create_page_with_featured_image(client, auth):
    res = client.post(
        "/api/pages-content",
        data={"pageName": "About Us", "pageContent": json.dumps({"htmlContent": "<p>Hi</p>"}), "status": "published"},
        files={"image": ("hero.png", PNG, "image/png")},
        headers=auth,
    )
    assert res.status_code == 201
    page = res.json()["data"]
    assert page["slug"] == "about-us"
    assert page["pageTitle"] == "About Us"
    assert page["pageContent"] == {"htmlContent": "<p>Hi</p>"}
    assert page["featuredImage"].startswith(f"{CDN}/pages/")


def test_page_requires_name(client, auth):
    res = client.post("/api/pages-content", data={"pageTitle": "Nameless"}, headers=auth)
    assert res.status_code == 400
    assert res.json()["errors"] == ["pageName is required"]


def test_lookup_by_slug(client, auth):
    make_page(client, auth)
    res = client.get("/api/pages-content/slug/about-us")
    assert res.json()["data"]["pageName"] == "About Us"
    assert client.get("/api/pages-content/slug/missing").status_code == 404


def test_all_defaults_to_published(client, auth):
    make_page(client, auth, status="published")
    make_page(client, auth, pageName="Draft Page")
    names = [p["pageName"] for p in client.get("/api/pages-content/all").json()["data"]]
    assert names == ["About Us"]


def test_status_update_and_invalid_status(client, auth):
    page = make_page(client, auth)
    res = client.patch(f"/api/pages-content/{page['_id']}/status", json={"status": "archived"}, headers=auth)
    assert res.json()["message"] == "Page status updated to archived"
    res = client.patch(f"/api/pages-content/{page['_id']}/status", json={"status": "gone"}, headers=auth)
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid status. Must be: draft, published, or archived"


def test_bulk_status_and_delete(client, auth, db):
    ids = [make_page(client, auth, pageName=f"Page {i}")["_id"] for i in range(3)]
    res = client.patch("/api/pages-content/bulk/status", json={"pageIds": ids[:2], "status": "published"},
                       headers=auth)
    assert res.json()["data"]["modifiedCount"] == 2

    stats = client.get("/api/pages-content/stats/overview").json()["data"]
    assert stats["total"] == 3
    assert stats["published"] == 2
    assert stats["percentage"] == {"published": 67, "draft": 33, "archived": 0}

    res = client.request("DELETE", "/api/pages-content/bulk/delete", json={"pageIds": ids}, headers=auth)
    assert res.json()["data"]["deletedCount"] == 3
    assert db["pagecontent"].count_documents({}) == 0

    res = client.request("DELETE", "/api/pages-content/bulk/delete", json={"pageIds": []}, headers=auth)
    assert res.status_code == 400
    assert res.json()["message"] == "pageIds must be a non-empty array"


def test_search(client, auth):
    make_page(client, auth)
    make_page(client, auth, pageName="Shipping Policy")
    body = client.get("/api/pages-content", params={"search": "shipping"}).json()
    assert [p["pageName"] for p in body["data"]] == ["Shipping Policy"]


def test_contact_page_show_form_flag(client, auth):
    page = make_page(client, auth, base="/api/contact", pageName="Contact", showForm="false")
    assert page["showForm"] is False

    res = client.put(f"/api/contact/{page['_id']}", data={"showForm": "1"}, headers=auth)
    assert res.json()["data"]["showForm"] is True

    default = make_page(client, auth, base="/api/contact", pageName="Support")
    assert default["showForm"] is True


def test_replacing_featured_image_deletes_the_old_one(client, auth, s3):
    res = client.post("/api/contact", data={"pageName": "Contact"},
                      files={"image": ("a.png", PNG, "image/png")}, headers=auth)
    page = res.json()["data"]
    old_key = page["featuredImage"][len(CDN) + 1:]
    res = client.put(f"/api/contact/{page['_id']}", files={"image": ("b.png", PNG, "image/png")}, headers=auth)
    assert res.status_code == 200
    assert old_key in s3.deleted
    assert res.json()["data"]["featuredImage"].startswith(f"{CDN}/contact/")


def test_update_leaves_omitted_fields_intact(client, auth):
    page = make_page(client, auth, pageTitle="About", status="published",
                     pageContent=json.dumps({"htmlContent": "<p>Hi</p>"}))
    res = client.put(f"/api/pages-content/{page['_id']}", data={"pageDescription": "Who we are"}, headers=auth)
    assert res.status_code == 200
    updated = res.json()["data"]
    assert updated["pageDescription"] == "Who we are"
    for field in ("pageName", "slug", "pageTitle", "status", "pageContent"):
        assert updated[field] == page[field]
