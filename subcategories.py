import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from builders import build_subcategory, build_subcategory_update
from categories import catalog_filter, replaced_assets, upload_assets, IMAGE_FIELDS
from database import (
    Database,
    count_documents,
    delete_by_id,
    find_all,
    find_by_id,
    get_db,
    insert_one,
    require,
    to_object_id,
    update_by_id,
)
from responses import ok, page_window, pagination
from schemas import Subcategory, validate_document, validate_update
from security import require_admin
from storage import ImageStorage, best_effort_cleanup, get_storage
from uploads import ParsedBody, parsed_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subcategories", tags=["subcategories"])

ORDERED = {"sort_order": 1, "name": 1}


def _parent_or_400(db: Database, parent_id) -> dict:
    parent = find_by_id(db["category"], parent_id)
    if parent is None:
        raise HTTPException(status_code=400, detail="Parent category not found")
    return parent


@router.get("")
def list_subcategories(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    sort: str = Query(default="created_at"),
    order: str = Query(default="desc"),
    name: Optional[str] = None,
    search: Optional[str] = None,
    is_active: Optional[str] = None,
    is_featured: Optional[str] = None,
    parent_id: Optional[str] = None,
    db: Database = Depends(get_db),
):
    q = catalog_filter(name or search, is_active, is_featured)
    if parent_id:
        q["parent_id"] = to_object_id(parent_id)
    page, limit, skip = page_window(page, limit, 10)
    items = find_all(db["subcategory"], q, sort={sort: 1 if order == "asc" else -1}, skip=skip, limit=limit)
    total = count_documents(db["subcategory"], q)
    return ok(items, "Subcategories fetched successfully", pagination=pagination(page, limit, total, include_limit=True))


@router.get("/by-parent/{parent_id}")
def subcategories_by_parent(parent_id: str, is_active: str = Query(default="true"), db: Database = Depends(get_db)):
    q = {"parent_id": to_object_id(parent_id)}
    if is_active != "all":
        q["is_active"] = is_active == "true"
    return ok(find_all(db["subcategory"], q, sort=ORDERED), "Subcategories fetched successfully")


@router.get("/all")
def all_subcategories(parent_id: Optional[str] = None, db: Database = Depends(get_db)):
    q = {"is_active": True}
    if parent_id:
        q["parent_id"] = to_object_id(parent_id)
    items = find_all(db["subcategory"], q, select="_id name slug parent_id sort_order", sort=ORDERED)
    return ok(items, "Subcategories fetched successfully")


@router.get("/hierarchy/all")
def category_hierarchy(db: Database = Depends(get_db)):
    parents = find_all(db["category"], {"is_active": True}, select="_id name slug color sort_order", sort=ORDERED)
    children = find_all(db["subcategory"], {"is_active": True}, select="_id name slug color parent_id sort_order",
                        sort=ORDERED)
    hierarchy = [
        {**parent, "subcategories": [c for c in children if c.get("parent_id") == parent["_id"]]}
        for parent in parents
    ]
    return ok(hierarchy, "Category hierarchy fetched successfully")


@router.get("/{subcategory_id}")
def get_subcategory(subcategory_id: str, db: Database = Depends(get_db)):
    subcategory = require(find_by_id(db["subcategory"], subcategory_id), "Subcategory not found")
    parent = find_by_id(db["category"], subcategory["parent_id"], select="name slug color")
    if parent is not None:
        subcategory["parent_id"] = parent
    return ok(subcategory, "Subcategory fetched successfully")


@router.post("", status_code=201)
def create_subcategory(
    body: ParsedBody = Depends(parsed_body("subcategories")),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    data = body.fields
    if not data.get("name") or not data.get("parent_id"):
        raise HTTPException(status_code=400, detail="Name and parent_id are required fields")
    parent = _parent_or_400(db, data["parent_id"])

    urls = upload_assets(storage, body, "subcategories")
    doc = build_subcategory(db["subcategory"], data, parent, image=urls.get("image"), icon=urls.get("icon"))
    subcategory = insert_one(db["subcategory"], validate_document(Subcategory, doc))
    logger.info("Subcategory %s created under %s", subcategory["slug"], parent["slug"])
    return ok(subcategory, "Subcategory created successfully")


@router.put("/{subcategory_id}")
def update_subcategory(
    subcategory_id: str,
    body: ParsedBody = Depends(parsed_body("subcategories")),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    existing = require(find_by_id(db["subcategory"], subcategory_id), "Subcategory not found")
    parent_id = body.fields.get("parent_id")
    if parent_id and parent_id != "null":
        _parent_or_400(db, parent_id)

    urls = upload_assets(storage, body, "subcategories", str(existing["_id"]))
    update = build_subcategory_update(db["subcategory"], body.fields, existing)
    update.update(urls)
    validate_update(Subcategory, existing, update)
    subcategory = update_by_id(db["subcategory"], existing["_id"], update)

    best_effort_cleanup(storage, replaced_assets(existing, urls))
    return ok(subcategory, "Subcategory updated successfully")


@router.delete("/{subcategory_id}")
def delete_subcategory(subcategory_id: str, admin=Depends(require_admin), db: Database = Depends(get_db),
                       storage: ImageStorage = Depends(get_storage)):
    subcategory = require(delete_by_id(db["subcategory"], subcategory_id), "Subcategory not found")
    best_effort_cleanup(storage, replaced_assets(subcategory, dict.fromkeys(IMAGE_FIELDS)))
    return ok({"deletedId": subcategory["_id"]}, "Subcategory deleted successfully")
