"""
Routers for slug-addressed content pages.

Static content pages and contact pages share one shape and one route set; contact
pages add the ``showForm`` flag. ``page_router`` builds the router for either kind.
"""
import os
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from builders import PAGE_STATUSES, build_page, build_page_update
from database import (
    Database,
    count_documents,
    delete_by_id,
    find_all,
    find_by_id,
    find_one,
    get_db,
    insert_one,
    require,
    to_object_id,
    update_by_id,
    update_many,
)
from responses import ok, page_window, pagination
from schemas import ContactPage, PageContent, validate_document, validate_update
from security import require_admin
from storage import ImageStorage, best_effort_cleanup, get_storage
from uploads import ParsedBody, parsed_body

logger = logging.getLogger(__name__)

INVALID_STATUS = "Invalid status. Must be: draft, published, or archived"


def _ids_or_400(value) -> list:
    if not isinstance(value, list) or not value:
        raise HTTPException(status_code=400, detail="pageIds must be a non-empty array")
    return [to_object_id(v) for v in value]


def page_router(prefix: str, collection: str, model, label: str, folder: str, with_form_flag: bool = False) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[folder])
    plural = f"{label}s"
    not_found = f"{label} not found"

    @router.get("")
    def list_pages(
        page: Optional[str] = None,
        limit: Optional[str] = None,
        sort: str = Query(default="createdAt"),
        order: str = Query(default="desc"),
        status: Optional[str] = None,
        search: Optional[str] = None,
        pageName: Optional[str] = None,
        db: Database = Depends(get_db),
    ):
        q = {}
        if status and status != "all":
            q["status"] = status
        if search and search.strip():
            term = {"$regex": search.strip(), "$options": "i"}
            q["$or"] = [{"pageName": term}, {"pageTitle": term}, {"pageDescription": term}, {"slug": term}]
        if pageName and pageName.strip():
            q["pageName"] = {"$regex": pageName.strip(), "$options": "i"}

        page, limit, skip = page_window(page, limit, 10)
        items = find_all(db[collection], q, sort={sort: 1 if order == "asc" else -1}, skip=skip, limit=limit)
        total = count_documents(db[collection], q)
        return ok(items, f"{plural} fetched successfully", pagination=pagination(page, limit, total, include_limit=True))

    @router.get("/debug")
    def debug_pages(db: Database = Depends(get_db)):
        return ok({
            "database": "connected" if db.connected else "disconnected",
            "environment": os.getenv("APP_ENV", "development"),
            "totalPages": count_documents(db[collection]),
            "publishedPages": count_documents(db[collection], {"status": "published"}),
        }, "Debug info")

    @router.get("/all")
    def all_pages(status: str = Query(default="published"), db: Database = Depends(get_db)):
        q = {"status": status} if status != "all" else {}
        items = find_all(db[collection], q, select="_id pageName slug pageTitle", sort={"pageName": 1})
        return ok(items, f"{plural} fetched successfully")

    @router.get("/stats/overview")
    def page_stats(db: Database = Depends(get_db)):
        total = count_documents(db[collection])
        counts = {status: count_documents(db[collection], {"status": status}) for status in PAGE_STATUSES}
        percentage = {status: int(n / total * 100 + 0.5) if total else 0 for status, n in counts.items()}
        return ok({
            "total": total,
            "published": counts["published"],
            "draft": counts["draft"],
            "archived": counts["archived"],
            "percentage": {k: percentage[k] for k in ("published", "draft", "archived")},
        }, "Page statistics fetched successfully")

    @router.get("/slug/{slug}")
    def get_page_by_slug(slug: str, db: Database = Depends(get_db)):
        return ok(require(find_one(db[collection], {"slug": slug}), not_found), f"{label} fetched successfully")

    @router.get("/{page_id}")
    def get_page(page_id: str, db: Database = Depends(get_db)):
        return ok(require(find_by_id(db[collection], page_id), not_found), f"{label} fetched successfully")

    @router.post("", status_code=201)
    def create_page(
        body: ParsedBody = Depends(parsed_body("single")),
        admin=Depends(require_admin),
        db: Database = Depends(get_db),
        storage: ImageStorage = Depends(get_storage),
    ):
        image = body.file("image")
        featured = storage.upload_single_image(image, folder)["url"] if image else None
        doc = build_page(db[collection], body.fields, featured, with_form_flag=with_form_flag)
        created = insert_one(db[collection], validate_document(model, doc))
        logger.info("%s %s created", label, created["slug"])
        return ok(created, f"{label} created successfully")

    @router.patch("/bulk/status")
    def bulk_page_status(body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                         db: Database = Depends(get_db)):
        ids = _ids_or_400(body.fields.get("pageIds"))
        status = body.fields.get("status")
        if status not in PAGE_STATUSES:
            raise HTTPException(status_code=400, detail=INVALID_STATUS)
        result = update_many(db[collection], {"_id": {"$in": ids}}, {"status": status})
        return ok({"modifiedCount": result.modified_count, "matchedCount": result.matched_count},
                  f"Updated {result.modified_count} {plural.lower()} to {status} status")

    @router.delete("/bulk/delete")
    def bulk_delete_pages(body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                          db: Database = Depends(get_db), storage: ImageStorage = Depends(get_storage)):
        ids = _ids_or_400(body.fields.get("pageIds"))
        doomed = find_all(db[collection], {"_id": {"$in": ids}}, select="featuredImage")
        result = db[collection].delete_many({"_id": {"$in": ids}})
        best_effort_cleanup(storage, [p.get("featuredImage") for p in doomed])
        return ok({"deletedCount": result.deleted_count},
                  f"Deleted {result.deleted_count} {plural.lower()} successfully")

    @router.put("/{page_id}")
    def update_page(
        page_id: str,
        body: ParsedBody = Depends(parsed_body("single")),
        admin=Depends(require_admin),
        db: Database = Depends(get_db),
        storage: ImageStorage = Depends(get_storage),
    ):
        existing = require(find_by_id(db[collection], page_id), not_found)
        update = build_page_update(db[collection], body.fields, existing, with_form_flag=with_form_flag)
        validate_update(model, existing, update)

        image = body.file("image")
        old_image = None
        if image:
            update["featuredImage"] = storage.upload_single_image(image, folder)["url"]
            old_image = existing.get("featuredImage")
        updated = update_by_id(db[collection], existing["_id"], update)

        best_effort_cleanup(storage, [old_image])
        return ok(updated, f"{label} updated successfully")

    @router.patch("/{page_id}/status")
    def update_page_status(page_id: str, body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                           db: Database = Depends(get_db)):
        status = body.fields.get("status")
        if status not in PAGE_STATUSES:
            raise HTTPException(status_code=400, detail=INVALID_STATUS)
        updated = require(update_by_id(db[collection], page_id, {"status": status}), not_found)
        return ok(updated, f"{label} status updated to {status}")

    @router.delete("/{page_id}")
    def delete_page(page_id: str, admin=Depends(require_admin), db: Database = Depends(get_db),
                    storage: ImageStorage = Depends(get_storage)):
        deleted = require(delete_by_id(db[collection], page_id), not_found)
        best_effort_cleanup(storage, [deleted.get("featuredImage")])
        return ok(message=f"{label} deleted successfully")

    return router


pages_router = page_router("/api/pages-content", "pagecontent", PageContent, "Page", "pages")
contact_router = page_router("/api/contact", "contactpage", ContactPage, "Contact page", "contact", with_form_flag=True)
