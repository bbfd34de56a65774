import pytest
from bson import ObjectId

from builders import (
    ValidationFailed,
    build_category,
    build_order,
    build_page,
    build_product,
    build_product_update,
    build_subcategory,
    cast_bool,
    order_transition,
    parse_float,
    parse_int,
    reject_operators,
    slugify,
    split_csv,
    truthy,
    unique_slug,
)


def test_slugify_collapses_punctuation():
    assert slugify("Dog Leash!") == "dog-leash"
    assert slugify("  Summer -- Sale 2024 ") == "summer-sale-2024"


def test_unique_slug_appends_timestamp_on_collision(db):
    db["product"].insert_one({"slug": "dog-leash"})
    slug = unique_slug(db["product"], "Dog Leash")
    assert slug.startswith("dog-leash-")
    assert slug[len("dog-leash-"):].isdigit()


def test_unique_slug_ignores_the_document_being_updated(db):
    _id = db["product"].insert_one({"slug": "dog-leash"}).inserted_id
    assert unique_slug(db["product"], "Dog Leash", exclude_id=_id) == "dog-leash"


def test_numbers_parse_leniently():
    assert parse_float("19.99abc") == 19.99
    assert parse_float("abc") is None
    assert parse_float(True) is None
    assert parse_int("7 items") == 7
    assert parse_int("") is None


def test_truthy_treats_the_string_false_as_true():
    assert truthy("false") is True
    assert truthy("") is False
    assert truthy(0) is False
    assert truthy([]) is True


def test_cast_bool_understands_form_strings():
    assert cast_bool("false") is False
    assert cast_bool("0") is False
    assert cast_bool("yes") is True
    assert cast_bool(True) is True


def test_split_csv_trims_parts():
    assert split_csv("a, b,c") == ["a", "b", "c"]
    assert split_csv(["x"]) == ["x"]
    assert split_csv(None) == []


def test_build_product_defaults(db):
    doc = build_product(db["product"], {"price": "12.50", "category": "Pets"}, [])
    assert doc["name"] == "Untitled Product"
    assert doc["sku"].startswith("SKU-")
    assert doc["currency"] == "USD"
    assert doc["categories"] == ["Pets"]
    assert doc["price"] == 12.5
    assert doc["quantity_in_stock"] == 0
    assert doc["stock_status"] == "out_of_stock"
    assert doc["is_active"] is True
    assert doc["meta_title"] == "Untitled Product"


def test_build_product_meta_description_falls_back(db):
    doc = build_product(db["product"], {"name": "Bowl", "description": "Steel bowl"}, [])
    assert doc["meta_description"] == "Steel bowl"
    doc = build_product(db["product"], {"name": "Bowl", "short_description": "Short", "description": "Long"}, [])
    assert doc["meta_description"] == "Short"


def test_product_update_only_touches_present_fields(db):
    existing = {"_id": ObjectId(), "name": "Dog Leash", "price": 10.0}
    update = build_product_update(db["product"], {"quantity_in_stock": "5"}, existing)
    assert update["quantity_in_stock"] == 5
    assert update["stock_status"] == "in_stock"
    assert "name" not in update
    assert "slug" not in update


def test_product_update_regenerates_slug_on_rename(db):
    existing = {"_id": ObjectId(), "name": "Dog Leash"}
    update = build_product_update(db["product"], {"name": "Cat Collar"}, existing)
    assert update["slug"] == "cat-collar"


def test_category_requires_name(db):
    with pytest.raises(ValidationFailed) as exc:
        build_category(db["category"], {})
    assert exc.value.errors == ["Category name is required"]


def test_category_active_flag_uses_truthiness(db):
    doc = build_category(db["category"], {"name": "Toys", "is_active": "false"})
    assert doc["is_active"] is True
    assert doc["color"] == "#6B7280"
    assert doc["is_featured"] is False


def test_subcategory_flags_compare_literal_strings(db):
    parent = {"_id": ObjectId(), "color": "#FF0000"}
    doc = build_subcategory(db["subcategory"], {"name": "Balls", "is_active": "false", "is_featured": "yes"}, parent)
    assert doc["is_active"] is False
    assert doc["is_featured"] is False
    assert doc["color"] == "#FF0000"
    assert doc["parent_id"] == parent["_id"]


def test_contact_page_show_form_is_cast(db):
    doc = build_page(db["contactpage"], {"pageName": "Contact", "showForm": "false"}, with_form_flag=True)
    assert doc["showForm"] is False
    doc = build_page(db["contactpage"], {"pageName": "Contact Us"}, with_form_flag=True)
    assert doc["showForm"] is True


def test_page_content_falls_back_on_bad_json(db):
    doc = build_page(db["pagecontent"], {"pageName": "About", "pageContent": "{not json"})
    assert doc["pageContent"] == {"htmlContent": ""}
    assert doc["status"] == "draft"


def test_build_order_collects_every_error():
    with pytest.raises(ValidationFailed) as exc:
        build_order({"customer": {"name": "Jane"}, "items": [{"product": "x", "price": 0, "quantity": 1}]})
    errors = exc.value.errors
    assert "Customer email is required" in errors
    assert "Shipping address information is missing" in errors
    assert "Item 1: Product name is required" in errors
    assert "Item 1: Valid price is required (got: 0)" in errors
    assert "Total amount is missing" in errors
    assert exc.value.extra["receivedData"]["itemsCount"] == 1


def test_build_order_reports_non_object_sections():
    with pytest.raises(ValidationFailed) as exc:
        build_order({"customer": "bob", "shippingAddress": "1 Main St", "items": ["oops"], "totalAmount": 5})
    assert exc.value.errors == [
        "Customer information must be an object",
        "Shipping address must be an object",
        "Item 1: must be an object",
    ]


def test_operator_keys_are_refused():
    assert reject_operators({"name": "Bowl"}) == {"name": "Bowl"}
    with pytest.raises(ValidationFailed) as exc:
        reject_operators({"name": "Bowl", "$inc": {"price": 1}})
    assert exc.value.errors == ["$inc: field names cannot start with '$'"]


def test_cancel_records_default_reason():
    update = order_transition({"status": "Pending"}, "Cancelled")
    assert update["cancellationReason"] == "No reason provided"
    assert "cancelledAt" in update


def test_delivered_orders_cannot_be_cancelled():
    with pytest.raises(ValidationFailed, match="Cannot cancel delivered orders"):
        order_transition({"status": "Delivered"}, "Cancelled")


def test_unknown_status_is_rejected():
    with pytest.raises(ValidationFailed, match="Invalid status"):
        order_transition({"status": "Pending"}, "Lost")
