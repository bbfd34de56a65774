import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from builders import build_category, build_category_update
from database import (
    Database,
    count_documents,
    delete_by_id,
    find_all,
    find_by_id,
    get_db,
    insert_one,
    require,
    update_by_id,
)
from responses import ok, page_window, pagination
from schemas import Category, validate_document, validate_update
from security import require_admin
from storage import ImageStorage, best_effort_cleanup, get_storage
from uploads import ParsedBody, parsed_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])

IMAGE_FIELDS = ("image", "icon")


def catalog_filter(name: Optional[str], is_active: Optional[str], is_featured: Optional[str]) -> dict:
    q = {}
    if name and name.strip():
        q["name"] = {"$regex": name.strip(), "$options": "i"}
    if is_active:
        q["is_active"] = is_active == "true"
    if is_featured:
        q["is_featured"] = is_featured == "true"
    return q


def upload_assets(storage: ImageStorage, body: ParsedBody, folder: str, owner: str = "") -> dict:
    """Upload the image/icon files of a catalog form; returns field -> URL."""
    urls = {}
    for field in IMAGE_FIELDS:
        file = body.file(field)
        if file is not None:
            urls[field] = storage.upload_single_image(file, folder, owner)["url"]
    return urls


def replaced_assets(existing: dict, urls: dict) -> list:
    old = [existing.get(field) for field in urls if existing.get(field) != urls[field]]
    return [url for url in old if url and str(url).startswith("http")]


# ---------------------- Categories ----------------------

@router.get("")
def list_categories(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    sort: str = Query(default="created_at"),
    order: str = Query(default="desc"),
    name: Optional[str] = None,
    search: Optional[str] = None,
    is_active: Optional[str] = None,
    is_featured: Optional[str] = None,
    db: Database = Depends(get_db),
):
    q = catalog_filter(name or search, is_active, is_featured)
    page, limit, skip = page_window(page, limit, 10)
    items = find_all(db["category"], q, sort={sort: 1 if order == "asc" else -1}, skip=skip, limit=limit)
    total = count_documents(db["category"], q)
    return ok(items, "Categories fetched successfully", pagination=pagination(page, limit, total, include_limit=True))


@router.get("/all")
def all_categories(db: Database = Depends(get_db)):
    items = find_all(db["category"], {"is_active": True}, select="_id name slug color", sort={"sort_order": 1, "name": 1})
    return ok(items, "Categories fetched successfully")


@router.get("/{category_id}")
def get_category(category_id: str, db: Database = Depends(get_db)):
    return ok(require(find_by_id(db["category"], category_id), "Category not found"), "Category fetched successfully")


@router.post("", status_code=201)
def create_category(
    body: ParsedBody = Depends(parsed_body("categories")),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    urls = upload_assets(storage, body, "categories")
    doc = build_category(db["category"], body.fields, image=urls.get("image"), icon=urls.get("icon"))
    category = insert_one(db["category"], validate_document(Category, doc))
    logger.info("Category %s created", category["slug"])
    return ok(category, "Category created successfully")


@router.put("/{category_id}")
def update_category(
    category_id: str,
    body: ParsedBody = Depends(parsed_body("categories")),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    existing = require(find_by_id(db["category"], category_id), "Category not found")
    urls = upload_assets(storage, body, "categories", str(existing["_id"]))

    update = build_category_update(db["category"], body.fields, existing)
    update.update(urls)
    validate_update(Category, existing, update)
    category = update_by_id(db["category"], existing["_id"], update)

    best_effort_cleanup(storage, replaced_assets(existing, urls))
    return ok(category, "Category updated successfully")


@router.delete("/{category_id}")
def delete_category(category_id: str, admin=Depends(require_admin), db: Database = Depends(get_db),
                    storage: ImageStorage = Depends(get_storage)):
    category = require(delete_by_id(db["category"], category_id), "Category not found")
    best_effort_cleanup(storage, replaced_assets(category, dict.fromkeys(IMAGE_FIELDS)))
    return ok({"deletedId": category["_id"]}, "Category deleted successfully")
