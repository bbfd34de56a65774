import pytest
from bson import ObjectId
from bson.errors import InvalidId

from database import (
    Database,
    DatabaseUnavailable,
    NotFoundError,
    count_documents,
    delete_by_id,
    find_all,
    find_by_id,
    insert_one,
    require,
    to_object_id,
    update_by_id,
)
from responses import ok, page_window, pagination


def test_missing_url_is_unavailable(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("MONGODB_URI", raising=False)
    with pytest.raises(DatabaseUnavailable):
        Database().connect()


def test_to_object_id():
    oid = ObjectId()
    assert to_object_id(str(oid)) == oid
    with pytest.raises(InvalidId):
        to_object_id("nope")


def test_crud_helpers(db):
    col = db["product"]
    doc = insert_one(col, {"name": "Bowl", "slug": "bowl", "price": 3})
    assert isinstance(doc["_id"], ObjectId)

    updated = update_by_id(col, str(doc["_id"]), {"price": 4})
    assert updated["price"] == 4
    assert updated["name"] == "Bowl"

    bumped = update_by_id(col, doc["_id"], {"$inc": {"price": 1}})
    assert bumped["price"] == 5

    assert find_by_id(col, doc["_id"], select="name")["name"] == "Bowl"
    assert "price" not in find_by_id(col, doc["_id"], select="-price")

    assert delete_by_id(col, doc["_id"])["name"] == "Bowl"
    assert count_documents(col) == 0
    assert update_by_id(col, doc["_id"], {"price": 1}) is None


def test_find_all_sorts_and_pages(db):
    col = db["product"]
    for i in range(5):
        col.insert_one({"slug": f"p{i}", "price": i})
    prices = [p["price"] for p in find_all(col, {}, sort={"price": -1}, skip=1, limit=2)]
    assert prices == [3, 2]


def test_require():
    assert require({"a": 1}, "missing") == {"a": 1}
    with pytest.raises(NotFoundError, match="Thing not found"):
        require(None, "Thing not found")


def test_page_window_and_pagination():
    assert page_window("2", "10", 12) == (2, 10, 10)
    assert page_window("zero", "-3", 12) == (1, 12, 0)
    assert pagination(1, 10, 0) == {"currentPage": 1, "totalPages": 0, "total": 0, "hasNext": False, "hasPrev": False}


def test_ok_serializes_object_ids():
    oid = ObjectId()
    body = ok({"_id": oid, "items": [oid]}, "Done", extra=None)
    assert body == {"success": True, "message": "Done", "data": {"_id": str(oid), "items": [str(oid)]}, "extra": None}
