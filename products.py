import os
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from builders import (
    build_bulk_product_update,
    build_product,
    build_product_update,
    json_list,
    parse_float,
    split_csv,
    truthy,
)
from database import (
    Database,
    count_documents,
    distinct,
    find_all,
    find_by_id,
    get_db,
    insert_one,
    require,
    to_object_id,
    update_by_id,
    update_many,
    delete_by_id,
)
from responses import ok, page_window, pagination
from schemas import Product, validate_document, validate_update
from security import require_admin
from storage import ImageStorage, best_effort_cleanup, get_storage
from uploads import ParsedBody, parsed_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

SORTS = {
    "price-low": {"price": 1},
    "price-high": {"price": -1},
    "name": {"name": 1},
    "newest": {"created_at": -1},
}

FIELDS_INFO = {
    "basic_info": {
        "name": {"type": "String", "required": True, "description": "Product name"},
        "description": {"type": "String", "required": False, "description": "Full product description"},
        "short_description": {"type": "String", "required": False, "description": "Brief product description"},
        "sku": {"type": "String", "required": False, "description": "Stock keeping unit"},
        "brand_id": {"type": "String", "required": False, "description": "Brand identifier"},
        "slug": {"type": "String", "required": True, "description": "URL-friendly product identifier (auto-generated)"},
    },
    "categories_tags": {
        "categories": {"type": "Array[String]", "required": False, "description": "Product categories"},
        "tags": {"type": "Array[String]", "required": False, "description": "Product tags"},
    },
    "pricing": {
        "price": {"type": "Number", "required": True, "description": "Regular price"},
        "sale_price": {"type": "Number", "required": False, "description": "Sale price (optional)"},
        "currency": {"type": "String", "required": False, "default": "USD", "description": "Currency code"},
    },
    "stock": {
        "quantity_in_stock": {"type": "Number", "required": False, "default": 0, "description": "Available quantity"},
        "stock_status": {"type": "String", "enum": ["in_stock", "out_of_stock", "preorder"], "default": "in_stock",
                         "description": "Derived from quantity_in_stock on every write"},
    },
    "physical": {
        "weight": {"type": "Number", "required": False, "description": "Product weight"},
        "dimensions": {"type": "Object", "required": False, "description": "Product dimensions (length, width, height)"},
        "shipping_class": {"type": "String", "required": False, "description": "Shipping class"},
    },
    "media": {
        "images": {"type": "Array[String]", "required": False, "description": "Product image URLs"},
        "videos": {"type": "Array[String]", "required": False, "description": "Product video URLs"},
    },
    "attributes": {
        "attributes": {"type": "Array[Object]", "required": False, "description": "Product attributes (color, size, etc.)"},
        "variants": {"type": "Array[Object]", "required": False, "description": "Product variants"},
    },
    "seo": {
        "meta_title": {"type": "String", "required": False, "description": "SEO title"},
        "meta_description": {"type": "String", "required": False, "description": "SEO description"},
        "meta_keywords": {"type": "Array[String]", "required": False, "description": "SEO keywords"},
    },
    "ratings": {
        "rating_average": {"type": "Number", "required": False, "default": 0, "description": "Average rating"},
        "rating_count": {"type": "Number", "required": False, "default": 0, "description": "Number of ratings"},
        "reviews": {"type": "Array[Object]", "required": False, "description": "Product reviews"},
    },
    "status": {
        "featured": {"type": "Boolean", "required": False, "default": False, "description": "Featured product"},
        "is_active": {"type": "Boolean", "required": False, "default": True, "description": "Product visibility"},
    },
    "timestamps": {
        "created_at": {"type": "Date", "required": False, "description": "Creation timestamp (auto-generated)"},
        "updated_at": {"type": "Date", "required": False, "description": "Last update timestamp (auto-generated)"},
    },
}

ENDPOINTS = {
    "create": "POST /api/products",
    "update": "PUT /api/products/:id",
    "patch": "PATCH /api/products/:id",
    "delete": "DELETE /api/products/:id",
    "get_single": "GET /api/products/:id",
    "get_all": "GET /api/products",
    "categories": "GET /api/products/categories/list",
    "featured": "GET /api/products/featured/list",
}


# ---------------------- Listing ----------------------

@router.get("")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    minPrice: Optional[str] = None,
    maxPrice: Optional[str] = None,
    sort: str = Query(default="newest"),
    page: Optional[str] = None,
    limit: Optional[str] = None,
    db: Database = Depends(get_db),
):
    q = {"is_active": True}
    if category and category != "all":
        q["categories"] = category
    if search:
        q["$or"] = [
            {"name": {"$regex": search, "$options": "i"}},
            {"description": {"$regex": search, "$options": "i"}},
            {"categories": {"$regex": search, "$options": "i"}},
        ]
    if minPrice or maxPrice:
        q["price"] = {}
        if minPrice:
            q["price"]["$gte"] = parse_float(minPrice)
        if maxPrice:
            q["price"]["$lte"] = parse_float(maxPrice)

    page, limit, skip = page_window(page, limit, 12)
    items = find_all(db["product"], q, sort=SORTS.get(sort, SORTS["newest"]), skip=skip, limit=limit)
    total = count_documents(db["product"], q)
    return ok(items, "Products fetched successfully", pagination=pagination(page, limit, total))


@router.get("/debug")
def debug_products(db: Database = Depends(get_db)):
    return ok({
        "database": "connected" if db.connected else "disconnected",
        "environment": os.getenv("APP_ENV", "development"),
        "totalProducts": count_documents(db["product"]),
        "activeProducts": count_documents(db["product"], {"is_active": True}),
        "imageUploadsEnabled": True,
        "sample": find_all(db["product"], {}, select="name slug price stock_status", limit=1),
    }, "Debug info")


@router.get("/categories/list")
def list_product_categories(db: Database = Depends(get_db)):
    return ok(distinct(db["product"], "categories", {"is_active": True}), "Categories fetched successfully")


@router.get("/featured/list")
def list_featured(db: Database = Depends(get_db)):
    items = find_all(db["product"], {"is_active": True, "featured": True}, sort={"created_at": -1}, limit=8)
    return ok(items, "Featured products fetched successfully")


@router.get("/fields/info")
def fields_info():
    return ok(FIELDS_INFO, "Product fields information", endpoints=ENDPOINTS)


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = require(find_by_id(db["product"], product_id), "Product not found")
    return ok(product, "Product fetched successfully")


# ---------------------- Writes ----------------------

@router.post("", status_code=201)
def create_product(
    body: ParsedBody = Depends(parsed_body("products")),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    uploads = storage.upload_multiple_images(body.files_for("images"), "products")
    images = [u["url"] for u in uploads]
    if not images and isinstance(body.fields.get("images"), list):
        images = body.fields["images"]

    doc = validate_document(Product, build_product(db["product"], body.fields, images))
    product = insert_one(db["product"], doc)
    logger.info("Product %s created with %d images", product["_id"], len(images))
    return ok(product, "Product created successfully with all fields", created_fields=list(doc))


@router.patch("/bulk/update")
def bulk_update_products(body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                         db: Database = Depends(get_db)):
    ids = body.fields.get("productIds")
    update = body.fields.get("updateData")
    if not ids or not isinstance(ids, list):
        raise HTTPException(status_code=400, detail="Product IDs array is required")
    if not update or not isinstance(update, dict):
        raise HTTPException(status_code=400, detail="Update data is required")

    result = update_many(db["product"], {"_id": {"$in": [to_object_id(i) for i in ids]}}, build_bulk_product_update(update))
    return ok({
        "matched": result.matched_count,
        "modified": result.modified_count,
        "acknowledged": result.acknowledged,
    }, "Bulk update completed")


@router.put("/{product_id}")
def update_product(
    product_id: str,
    body: ParsedBody = Depends(parsed_body("products")),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    existing = require(find_by_id(db["product"], product_id), "Product not found")
    data = body.fields

    images = list(existing.get("images") or [])
    removed = []
    if data.get("deletedImages"):
        deleted = data["deletedImages"]
        deleted = json_list(deleted) if isinstance(deleted, str) and deleted.startswith("[") else split_csv(deleted)
        removed = [url for url in images if url in deleted]
        images = [url for url in images if url not in deleted]

    uploads = storage.upload_multiple_images(body.files_for("images"), "products", str(existing["_id"]))
    images.extend(u["url"] for u in uploads)

    if isinstance(data.get("images"), list):
        images = data["images"]

    update = build_product_update(db["product"], data, existing)
    update["images"] = images
    validate_update(Product, existing, update)
    product = require(update_by_id(db["product"], existing["_id"], update), "Product not found after update")

    best_effort_cleanup(storage, removed)
    return ok(product, "Product updated successfully with all fields", updated_fields=list(update))


@router.patch("/{product_id}")
def patch_product(product_id: str, body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                  db: Database = Depends(get_db)):
    existing = require(find_by_id(db["product"], product_id), "Product not found")
    update = build_product_update(db["product"], body.fields, existing)
    if isinstance(body.fields.get("images"), list):
        update["images"] = body.fields["images"]
    validate_update(Product, existing, update)
    product = update_by_id(db["product"], existing["_id"], update)
    return ok(product, "Product partially updated successfully", updated_fields=list(update))


@router.patch("/{product_id}/status")
def update_product_status(product_id: str, body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                          db: Database = Depends(get_db)):
    if "is_active" not in body.fields:
        raise HTTPException(status_code=400, detail="is_active is required")
    product = update_by_id(db["product"], product_id, {"is_active": truthy(body.fields["is_active"])})
    return ok(require(product, "Product not found"), "Product status updated successfully")


@router.delete("/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), db: Database = Depends(get_db),
                   storage: ImageStorage = Depends(get_storage)):
    product = require(delete_by_id(db["product"], product_id), "Product not found")
    best_effort_cleanup(storage, product.get("images") or [])
    return ok(message="Product deleted successfully")
