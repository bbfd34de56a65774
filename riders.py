import os
import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query

from builders import build_rider, build_rider_update, parse_float, parse_int
from database import (
    Database,
    count_documents,
    delete_by_id,
    exists,
    find_all,
    find_by_id,
    get_db,
    insert_one,
    require,
    update_by_id,
)
from responses import ok, page_window, pagination
from schemas import Rider, validate_document, validate_update
from security import require_admin
from storage import ImageStorage, best_effort_cleanup, get_storage
from uploads import ParsedBody, parsed_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/riders", tags=["riders"])

ASSET_FIELDS = ("image", "cnicFrontImage", "cnicBackImage", "bikeDocument")
SORTABLE = ("fullName", "phone", "address", "vehicleType", "isAvailable", "createdAt")
UNIQUE_FIELDS = ("phone", "email")
NEARBY_LIMIT = 10


def _check_unique(db: Database, data: dict, exclude_id=None):
    for field in UNIQUE_FIELDS:
        value = data.get(field)
        if not value:
            continue
        q = {field: value}
        if exclude_id is not None:
            q["_id"] = {"$ne": exclude_id}
        if exists(db["rider"], q):
            raise HTTPException(status_code=400, detail=f"Rider with this {field} already exists")


def _upload_assets(storage: ImageStorage, body: ParsedBody, rider_id: ObjectId) -> dict:
    urls = {}
    for field in ASSET_FIELDS:
        file = body.file(field)
        if file is not None:
            urls[field] = storage.upload_single_image(file, "riders", f"{rider_id}_{field}")["url"]
    return urls


@router.get("")
def list_riders(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    sort: str = Query(default="createdAt"),
    order: str = Query(default="desc"),
    fullName: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
    vehicleType: Optional[str] = None,
    isAvailable: Optional[str] = None,
    db: Database = Depends(get_db),
):
    q = {}
    for field, value in (("fullName", fullName), ("phone", phone), ("email", email), ("address", address)):
        if value:
            q[field] = {"$regex": value, "$options": "i"}
    if vehicleType and vehicleType != "all":
        q["vehicleType"] = vehicleType
    if isAvailable:
        q["isAvailable"] = isAvailable == "true"

    sort_field = sort if sort in SORTABLE else "createdAt"
    page, limit, skip = page_window(page, limit, 12)
    items = find_all(db["rider"], q, sort={sort_field: 1 if order == "asc" else -1}, skip=skip, limit=limit)
    total = count_documents(db["rider"], q)
    return ok(items, "Riders fetched successfully", pagination=pagination(page, limit, total))


@router.get("/debug")
def debug_riders(db: Database = Depends(get_db)):
    return ok({
        "database": "connected" if db.connected else "disconnected",
        "environment": os.getenv("APP_ENV", "development"),
        "totalRiders": count_documents(db["rider"]),
        "availableRiders": count_documents(db["rider"], {"isAvailable": True}),
        "imageUploadsEnabled": True,
    }, "Debug info")


@router.get("/available/nearby")
def nearby_riders(longitude: Optional[str] = None, latitude: Optional[str] = None,
                  maxDistance: str = Query(default="10000"), limit: Optional[str] = None,
                  db: Database = Depends(get_db)):
    if not longitude or not latitude:
        raise HTTPException(status_code=400, detail="Longitude and latitude are required")
    lng, lat, distance = parse_float(longitude), parse_float(latitude), parse_int(maxDistance)
    if lng is None or lat is None or distance is None:
        raise HTTPException(status_code=400, detail="Longitude, latitude and maxDistance must be numbers")
    if not (-180 <= lng <= 180 and -90 <= lat <= 90):
        raise HTTPException(status_code=400, detail="Coordinates are out of range")
    count = parse_int(limit) if limit else NEARBY_LIMIT
    if count is None or count < 1:
        count = NEARBY_LIMIT
    q = {
        "isAvailable": True,
        "location": {
            "$near": {
                "$geometry": {"type": "Point", "coordinates": [lng, lat]},
                "$maxDistance": distance,
            }
        },
    }
    return ok(find_all(db["rider"], q, limit=count), "Nearby available riders fetched successfully")


@router.get("/{rider_id}")
def get_rider(rider_id: str, db: Database = Depends(get_db)):
    return ok(require(find_by_id(db["rider"], rider_id), "Rider not found"), "Rider fetched successfully")


@router.post("", status_code=201)
def create_rider(
    body: ParsedBody = Depends(parsed_body("riders")),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    _check_unique(db, body.fields)
    rider_id = ObjectId()
    doc = build_rider(body.fields, {})
    doc["_id"] = rider_id
    validate_document(Rider, doc)

    doc.update(_upload_assets(storage, body, rider_id))
    rider = insert_one(db["rider"], doc)
    logger.info("Rider %s created", rider_id)
    return ok(rider, "Rider created successfully")


@router.put("/{rider_id}")
def update_rider(
    rider_id: str,
    body: ParsedBody = Depends(parsed_body("riders")),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    existing = require(find_by_id(db["rider"], rider_id), "Rider not found")
    _check_unique(db, body.fields, exclude_id=existing["_id"])

    update = build_rider_update(body.fields)
    validate_update(Rider, existing, update)
    urls = _upload_assets(storage, body, existing["_id"])
    update.update(urls)
    rider = update_by_id(db["rider"], existing["_id"], update)

    best_effort_cleanup(storage, [existing.get(field) for field in urls if existing.get(field) != urls[field]])
    return ok(rider, "Rider updated successfully")


@router.delete("/{rider_id}")
def delete_rider(rider_id: str, admin=Depends(require_admin), db: Database = Depends(get_db),
                 storage: ImageStorage = Depends(get_storage)):
    rider = require(find_by_id(db["rider"], rider_id), "Rider not found")
    if rider.get("assignedOrders"):
        raise HTTPException(status_code=400, detail="Cannot delete rider with assigned orders. Please reassign orders first.")
    delete_by_id(db["rider"], rider["_id"])
    best_effort_cleanup(storage, [rider.get(field) for field in ASSET_FIELDS])
    return ok(message="Rider deleted successfully")


@router.patch("/{rider_id}/availability")
def toggle_availability(rider_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    rider = require(find_by_id(db["rider"], rider_id), "Rider not found")
    available = not rider.get("isAvailable", True)
    update_by_id(db["rider"], rider["_id"], {"isAvailable": available})
    state = "made available" if available else "made unavailable"
    return ok({"id": rider["_id"], "isAvailable": available}, f"Rider {state} successfully")
