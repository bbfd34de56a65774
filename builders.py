"""
Entity update builders.

Incoming payloads come either from JSON bodies or from multipart forms, so every value may be a
string. Each builder maps such a payload to a typed document (create) or a partial update
(update). Update builders only emit keys that were present in the payload.

Coercion follows the storefront admin's historical behaviour:

* numbers are parsed leniently (``"19.99abc"`` is 19.99, garbage becomes ``None``)
* ``truthy`` is plain truthiness, so the string ``"false"`` is true
* subcategory creation compares against the literal strings ``"false"`` / ``"true"`` instead
* ``cast_bool`` understands ``"false"``, ``"0"`` and ``"no"`` and is used for contact-page flags
"""
import json
import math
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId

from database import exists

NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")
FLOAT_PREFIX = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
INT_PREFIX = re.compile(r"^\s*[+-]?\d+")

ORDER_STATUSES = ("Pending", "Dispatched", "Delivered", "Cancelled")
PAGE_STATUSES = ("draft", "published", "archived")


class ValidationFailed(Exception):
    def __init__(self, message: str, errors: Optional[List[str]] = None, **extra):
        super().__init__(message)
        self.message = message
        self.errors = errors or []
        self.extra = extra


def reject_operators(data: Dict[str, Any]) -> Dict[str, Any]:
    """Refuse body keys the driver would read as update operators."""
    bad = [key for key in data if str(key).startswith("$")]
    if bad:
        raise ValidationFailed("Validation error", [f"{key}: field names cannot start with '$'" for key in bad])
    return data


# ---------------------- Coercion helpers ----------------------

def now() -> datetime:
    # Mongo hands datetimes back as naive UTC; keep ours comparable
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_ms() -> int:
    return int(time.time() * 1000)


def parse_float(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else float(value)
    if isinstance(value, str):
        m = FLOAT_PREFIX.match(value)
        if m:
            return float(m.group(0))
    return None


def parse_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else int(value)
    if isinstance(value, str):
        m = INT_PREFIX.match(value)
        if m:
            return int(m.group(0))
    return None


def truthy(value) -> bool:
    if isinstance(value, (list, dict)):
        return True
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def cast_bool(value):
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("true", "1", "yes"):
            return True
        if v in ("false", "0", "no", ""):
            return False
        return value
    return value


def split_csv(value) -> List[str]:
    if isinstance(value, list):
        return value
    if value is None:
        return []
    return [part.strip() for part in str(value).split(",")]


def as_list(value) -> list:
    if isinstance(value, list):
        return value
    return [value]


def parse_json(value, fallback=None):
    """Decode a JSON string sent through a form field; non-strings pass through."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return fallback


def json_list(value) -> list:
    value = parse_json(value, [])
    return value if isinstance(value, list) else []


def slugify(text: str) -> str:
    return NON_SLUG_CHARS.sub("-", str(text).lower()).strip("-")


def unique_slug(collection, text: str, exclude_id=None) -> str:
    slug = slugify(text)
    query = {"slug": slug}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if exists(collection, query):
        return f"{slug}-{epoch_ms()}"
    return slug


def stock_status_for(quantity) -> str:
    return "in_stock" if quantity and quantity > 0 else "out_of_stock"


def _pick(data: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: coerce(data[key]) for key, coerce in fields.items() if key in data}


def _same(value):
    return value


def _float_or_none(value):
    return parse_float(value) if truthy(value) else None


def _dict_value(value):
    return parse_json(value, value)


# ---------------------- Products ----------------------

PRODUCT_UPDATE_FIELDS = {
    "name": _same,
    "description": _same,
    "short_description": _same,
    "sku": _same,
    "brand_id": _same,
    "categories": as_list,
    "tags": split_csv,
    "price": parse_float,
    "sale_price": _float_or_none,
    "currency": _same,
    "quantity_in_stock": parse_int,
    "stock_status": _same,
    "weight": _float_or_none,
    "dimensions": _dict_value,
    "shipping_class": _same,
    "videos": json_list,
    "attributes": json_list,
    "variants": json_list,
    "meta_title": _same,
    "meta_description": _same,
    "meta_keywords": split_csv,
    "rating_average": parse_float,
    "rating_count": parse_int,
    "reviews": json_list,
    "featured": truthy,
    "is_active": truthy,
}


def build_product(collection, data: Dict[str, Any], images: List[str]) -> Dict[str, Any]:
    name = data.get("name") or "Untitled Product"
    if data.get("categories"):
        categories = as_list(data["categories"])
    elif data.get("category"):
        categories = [data["category"]]
    else:
        categories = []

    dimensions = _dict_value(data["dimensions"]) if data.get("dimensions") else {
        "length": _float_or_none(data.get("length")),
        "width": _float_or_none(data.get("width")),
        "height": _float_or_none(data.get("height")),
    }
    quantity = parse_int(data["quantity_in_stock"]) if truthy(data.get("quantity_in_stock")) else 0
    stamp = now()

    doc = {
        "name": name,
        "description": data.get("description") or "",
        "short_description": data.get("short_description") or "",
        "sku": data.get("sku") or f"SKU-{epoch_ms()}",
        "brand_id": data.get("brand_id") or None,
        "categories": categories,
        "tags": split_csv(data["tags"]) if data.get("tags") else [],
        "price": parse_float(data["price"]) if truthy(data.get("price")) else 0,
        "sale_price": _float_or_none(data.get("sale_price")),
        "currency": data.get("currency") or "USD",
        "quantity_in_stock": quantity,
        "stock_status": stock_status_for(quantity),
        "weight": _float_or_none(data.get("weight")),
        "dimensions": dimensions,
        "shipping_class": data.get("shipping_class") or None,
        "images": images,
        "videos": json_list(data.get("videos")),
        "attributes": json_list(data.get("attributes")),
        "variants": json_list(data.get("variants")),
        "meta_title": data.get("meta_title") or name,
        "meta_description": data.get("meta_description") or data.get("short_description") or data.get("description") or "",
        "meta_keywords": split_csv(data["meta_keywords"]) if data.get("meta_keywords") else [],
        "rating_average": parse_float(data["rating_average"]) if truthy(data.get("rating_average")) else 0,
        "rating_count": parse_int(data["rating_count"]) if truthy(data.get("rating_count")) else 0,
        "reviews": json_list(data.get("reviews")),
        "featured": truthy(data.get("featured")),
        "is_active": truthy(data["is_active"]) if "is_active" in data else True,
        "created_at": stamp,
        "updated_at": stamp,
    }
    doc["slug"] = unique_slug(collection, name)
    return doc


def build_product_update(collection, data: Dict[str, Any], existing: Dict[str, Any]) -> Dict[str, Any]:
    update = {"updated_at": now()}
    update.update(_pick(data, PRODUCT_UPDATE_FIELDS))
    if "category" in data:
        update["categories"] = [data["category"]]

    name = update.get("name")
    if name and name != existing.get("name"):
        update["slug"] = unique_slug(collection, name, exclude_id=existing["_id"])

    if "quantity_in_stock" in update:
        update["stock_status"] = stock_status_for(update["quantity_in_stock"])
    return update


def build_bulk_product_update(data: Dict[str, Any]) -> Dict[str, Any]:
    update = dict(reject_operators(data))
    update["updated_at"] = now()
    for key, coerce in (("price", parse_float), ("sale_price", parse_float),
                        ("quantity_in_stock", parse_int), ("weight", parse_float)):
        if truthy(update.get(key)):
            update[key] = coerce(update[key])
    for key in ("featured", "is_active"):
        if key in update:
            update[key] = truthy(update[key])
    if "quantity_in_stock" in update:
        update["stock_status"] = stock_status_for(update["quantity_in_stock"])
    update.pop("_id", None)
    update.pop("slug", None)
    return update


# ---------------------- Categories ----------------------

CATEGORY_UPDATE_FIELDS = {
    "name": _same,
    "description": _same,
    "icon": _same,
    "color": _same,
    "sort_order": parse_int,
    "is_active": truthy,
    "is_featured": truthy,
    "meta_title": _same,
    "meta_description": _same,
    "meta_keywords": split_csv,
}


def build_category(collection, data: Dict[str, Any], image: Optional[str] = None, icon: Optional[str] = None) -> Dict[str, Any]:
    name = data.get("name")
    if not name:
        raise ValidationFailed("Validation error", ["Category name is required"])
    stamp = now()
    return {
        "name": name,
        "slug": unique_slug(collection, name),
        "description": data.get("description") or "",
        "image": image,
        "icon": icon or data.get("icon") or None,
        "color": data.get("color") or "#6B7280",
        "sort_order": parse_int(data["sort_order"]) if truthy(data.get("sort_order")) else 0,
        "is_active": truthy(data["is_active"]) if "is_active" in data else True,
        "is_featured": truthy(data["is_featured"]) if "is_featured" in data else False,
        "meta_title": data.get("meta_title") or name,
        "meta_description": data.get("meta_description") or data.get("description") or "",
        "meta_keywords": split_csv(data["meta_keywords"]) if data.get("meta_keywords") else [],
        "created_at": stamp,
        "updated_at": stamp,
    }


def build_category_update(collection, data: Dict[str, Any], existing: Dict[str, Any]) -> Dict[str, Any]:
    update = {"updated_at": now()}
    update.update(_pick(data, CATEGORY_UPDATE_FIELDS))
    name = data.get("name")
    if name and name != existing.get("name"):
        update["slug"] = unique_slug(collection, name, exclude_id=existing["_id"])
    return update


def build_subcategory(collection, data: Dict[str, Any], parent: Dict[str, Any], image: Optional[str] = None,
                      icon: Optional[str] = None) -> Dict[str, Any]:
    name = data["name"]
    stamp = now()
    return {
        "name": name,
        "slug": unique_slug(collection, name),
        "description": data.get("description") or "",
        "parent_id": parent["_id"],
        "image": image,
        "icon": icon or data.get("icon") or None,
        "color": data.get("color") or parent.get("color") or "#6B7280",
        "sort_order": parse_int(data["sort_order"]) if truthy(data.get("sort_order")) else 0,
        # literal string comparison: a JSON false still yields an active subcategory
        "is_active": False if data.get("is_active") == "false" else True,
        "is_featured": True if data.get("is_featured") == "true" else False,
        "meta_title": data.get("meta_title") or name,
        "meta_description": data.get("meta_description") or data.get("description") or "",
        "meta_keywords": split_csv(data["meta_keywords"]) if data.get("meta_keywords") else [],
        "created_at": stamp,
        "updated_at": stamp,
    }


def build_subcategory_update(collection, data: Dict[str, Any], existing: Dict[str, Any]) -> Dict[str, Any]:
    update = build_category_update(collection, data, existing)
    parent_id = data.get("parent_id")
    if parent_id and parent_id != "null":
        update["parent_id"] = ObjectId(str(parent_id))
    return update


# ---------------------- Riders ----------------------

RIDER_UPDATE_FIELDS = {
    "fullName": _same,
    "phone": _same,
    "email": _same,
    "address": _same,
    "vehicleType": _same,
    "licenseNumber": _same,
    "isAvailable": truthy,
}


def rider_location(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    lng, lat = data.get("longitude"), data.get("latitude")
    if not (truthy(lng) and truthy(lat)):
        return None
    return {"type": "Point", "coordinates": [parse_float(lng), parse_float(lat)]}


def build_rider(data: Dict[str, Any], assets: Dict[str, str]) -> Dict[str, Any]:
    stamp = now()
    doc = {
        "fullName": data.get("fullName") or "",
        "phone": data.get("phone") or "",
        "address": data.get("address") or "",
        "vehicleType": data.get("vehicleType") or "bike",
        "licenseNumber": data.get("licenseNumber") or "",
        "image": assets.get("image", ""),
        "cnicFrontImage": assets.get("cnicFrontImage", ""),
        "cnicBackImage": assets.get("cnicBackImage", ""),
        "bikeDocument": assets.get("bikeDocument", ""),
        "isAvailable": truthy(data["isAvailable"]) if "isAvailable" in data else True,
        "assignedOrders": [],
        "createdAt": stamp,
        "updatedAt": stamp,
    }
    # email has a sparse unique index, so an absent email must stay absent
    if data.get("email"):
        doc["email"] = data["email"]
    location = rider_location(data)
    if location:
        doc["location"] = location
    return doc


def build_rider_update(data: Dict[str, Any]) -> Dict[str, Any]:
    update = _pick(data, RIDER_UPDATE_FIELDS)
    update["updatedAt"] = now()
    location = rider_location(data)
    if location:
        update["location"] = location
    return update


# ---------------------- Pages ----------------------

def page_content_value(value) -> Dict[str, Any]:
    if isinstance(value, str):
        parsed = parse_json(value, None)
        return parsed if isinstance(parsed, dict) else {"htmlContent": ""}
    return value or {}


def build_page(collection, data: Dict[str, Any], featured_image: Optional[str] = None,
               with_form_flag: bool = False) -> Dict[str, Any]:
    page_name = data.get("pageName")
    if not page_name:
        raise ValidationFailed("Validation error", ["pageName is required"])
    stamp = now()
    doc = {
        "pageName": page_name,
        "slug": unique_slug(collection, page_name),
        "pageTitle": data.get("pageTitle") or page_name,
        "pageDescription": data.get("pageDescription") or "",
        "status": data.get("status") or "draft",
        "pageContent": page_content_value(data.get("pageContent")),
        "createdAt": stamp,
        "updatedAt": stamp,
    }
    if with_form_flag:
        doc["showForm"] = cast_bool(data["showForm"]) if "showForm" in data else True
    if featured_image:
        doc["featuredImage"] = featured_image
    return doc


def build_page_update(collection, data: Dict[str, Any], existing: Dict[str, Any], with_form_flag: bool = False) -> Dict[str, Any]:
    update = _pick(data, {"pageName": _same, "pageTitle": _same, "pageDescription": _same, "status": _same})
    if "pageContent" in data:
        update["pageContent"] = page_content_value(data["pageContent"])
    if with_form_flag and "showForm" in data:
        update["showForm"] = cast_bool(data["showForm"])
    page_name = data.get("pageName")
    if page_name and page_name != existing.get("pageName"):
        update["slug"] = unique_slug(collection, page_name, exclude_id=existing["_id"])
    update["updatedAt"] = now()
    return update


# ---------------------- CMS ----------------------

def parse_form_json(data: Dict[str, Any]) -> Dict[str, Any]:
    """Form fields carry nested CMS sections as JSON strings."""
    return {key: parse_json(value, value) for key, value in data.items()}


def strip_extension(filename: str) -> str:
    return re.sub(r"\.[^/.]+$", "", filename or "")


def banner_entry(result: Dict[str, Any], index: int) -> Dict[str, Any]:
    title = strip_extension(result.get("originalName", ""))
    return {
        "id": f"banner-{epoch_ms()}-{index}-{ObjectId()}",
        "url": result["url"],
        "alt": title,
        "title": title,
        "originalName": result.get("originalName", ""),
        "order": index,
    }


def build_cms_save(data: Dict[str, Any], theme: str, banners: List[Dict[str, Any]],
                   logo: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    doc = parse_form_json(reject_operators(data))
    doc.pop("themeName", None)
    if banners:
        banner = doc.get("banner") if isinstance(doc.get("banner"), dict) else {}
        banner["images"] = list(banner.get("images") or []) + banners
        doc["banner"] = banner
    if logo:
        current = doc.get("logo") if isinstance(doc.get("logo"), dict) else {}
        current.update(logo)
        doc["logo"] = current
    doc["theme_name"] = theme
    doc["isActive"] = True
    doc["updated_at"] = now()
    return doc


# ---------------------- Orders ----------------------

def _blank(value) -> bool:
    return not value or (isinstance(value, str) and not value.strip())


def _positive(value) -> bool:
    n = parse_float(value)
    return n is not None and n > 0


def order_errors(body: Dict[str, Any]) -> List[str]:
    errors = []
    customer = body.get("customer")
    if not customer:
        errors.append("Customer information is missing")
    elif not isinstance(customer, dict):
        errors.append("Customer information must be an object")
    else:
        for field, label in (("name", "Customer name"), ("email", "Customer email"), ("phone", "Customer phone")):
            if _blank(customer.get(field)):
                errors.append(f"{label} is required")

    address = body.get("shippingAddress")
    if not address:
        errors.append("Shipping address information is missing")
    elif not isinstance(address, dict):
        errors.append("Shipping address must be an object")
    else:
        for field, label in (("street", "Shipping street address"), ("city", "Shipping city"),
                             ("state", "Shipping state"), ("zipCode", "Shipping ZIP code")):
            if _blank(address.get(field)):
                errors.append(f"{label} is required")

    items = body.get("items")
    if items is None:
        errors.append("Order items are missing")
    elif not isinstance(items, list):
        errors.append("Order items must be an array")
    elif not items:
        errors.append("At least one order item is required")
    else:
        for index, item in enumerate(items, start=1):
            if not isinstance(item, dict):
                errors.append(f"Item {index}: must be an object")
                continue
            if not item.get("product"):
                errors.append(f"Item {index}: Product ID is required")
            if _blank(item.get("productName")):
                errors.append(f"Item {index}: Product name is required")
            if not _positive(item.get("price")):
                errors.append(f"Item {index}: Valid price is required (got: {item.get('price')})")
            if not _positive(item.get("quantity")):
                errors.append(f"Item {index}: Valid quantity is required (got: {item.get('quantity')})")

    total = body.get("totalAmount")
    if not total:
        errors.append("Total amount is missing")
    elif not _positive(total):
        errors.append(f"Total amount must be greater than 0 (got: {total})")
    return errors


def build_order(body: Dict[str, Any]) -> Dict[str, Any]:
    reject_operators(body)
    errors = order_errors(body)
    if errors:
        items = body.get("items")
        raise ValidationFailed("Order validation failed", errors, receivedData={
            "hasCustomer": bool(body.get("customer")),
            "hasShippingAddress": bool(body.get("shippingAddress")),
            "hasItems": items is not None,
            "itemsCount": len(items) if isinstance(items, list) else 0,
            "totalAmount": body.get("totalAmount"),
        })
    stamp = now()
    doc = {k: v for k, v in body.items() if k not in ("_id", "status", "createdAt", "updatedAt")}
    doc["items"] = [
        {**item, "product": ObjectId(str(item["product"])), "price": parse_float(item["price"]),
         "quantity": parse_int(item["quantity"])}
        for item in body["items"]
    ]
    doc["totalAmount"] = parse_float(body["totalAmount"])
    doc["status"] = "Pending"
    doc["createdAt"] = stamp
    doc["updatedAt"] = stamp
    return doc


def order_transition(order: Dict[str, Any], status: str, reason: Optional[str] = None,
                     tracking: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build the update that moves an order into ``status``.

    Cancelling a delivered order is the one transition that is refused.
    """
    if status not in ORDER_STATUSES:
        raise ValidationFailed("Invalid status. Must be one of: " + ", ".join(ORDER_STATUSES))
    if status == "Cancelled" and order.get("status") == "Delivered":
        raise ValidationFailed("Cannot cancel delivered orders")

    stamp = now()
    update = {"status": status, "updatedAt": stamp}
    if status == "Dispatched":
        update["dispatchedAt"] = stamp
        if tracking is not None:
            update["tracking"] = tracking
    elif status == "Delivered":
        update["deliveredAt"] = stamp
    elif status == "Cancelled":
        update["cancelledAt"] = stamp
        update["cancellationReason"] = reason or "No reason provided"
    return update
