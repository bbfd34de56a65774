import logging

from fastapi import APIRouter, Depends, HTTPException

from builders import banner_entry, build_cms_save, epoch_ms, now, reject_operators, strip_extension
from database import Database, find_one, get_db, update_many, update_one
from responses import ok
from schemas import Cms, validate_update
from security import require_admin
from storage import ImageStorage, get_storage
from uploads import ParsedBody, parsed_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cms", tags=["cms"])

DEFAULT_THEME = "theme2"


def _active(theme: str) -> dict:
    return {"theme_name": theme, "isActive": True}


def _upsert(db: Database, theme: str, doc: dict) -> dict:
    doc.pop("_id", None)
    existing = find_one(db["cms"], _active(theme)) or {}
    validate_update(Cms, existing, doc)
    return update_one(db["cms"], _active(theme), doc, upsert=True)


# ---------------------- Read ----------------------

def _theme_document(db: Database, theme: str):
    cms = find_one(db["cms"], {"theme_name": theme})
    if cms is None:
        logger.info("No CMS data found for theme %s", theme)
        return {"success": False, "message": "No CMS data found for theme", "data": None}
    cms.setdefault("menus", {"headerMenu": [], "footerMenu": []})
    return ok(cms)


def _admin_document(db: Database, theme: str):
    cms = find_one(db["cms"], _active(theme))
    if cms is None:
        return {"success": True, "message": "No CMS configuration found", "data": None}
    return ok(cms, "CMS configuration retrieved successfully")


@router.get("")
def get_default_cms(db: Database = Depends(get_db)):
    return _theme_document(db, DEFAULT_THEME)


@router.get("/update")
def get_default_cms_config(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return _admin_document(db, DEFAULT_THEME)


@router.get("/update/{theme_name}")
def get_cms_config(theme_name: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    return _admin_document(db, theme_name)


@router.get("/{theme_name}")
def get_cms(theme_name: str, db: Database = Depends(get_db)):
    return _theme_document(db, theme_name)


# ---------------------- Write ----------------------

@router.post("/save")
def save_cms(
    body: ParsedBody = Depends(parsed_body("cms")),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    theme = body.fields.get("themeName") or DEFAULT_THEME

    results = storage.upload_multiple_images(body.files_for("bannerImages"), "cms", "banners")
    banners = [banner_entry(result, index) for index, result in enumerate(results)]
    logo = {}
    if body.file("logoImage"):
        logo["logoUrl"] = storage.upload_single_image(body.file("logoImage"), "cms", "logo")["url"]
    if body.file("faviconImage"):
        logo["faviconUrl"] = storage.upload_single_image(body.file("faviconImage"), "cms", "favicon")["url"]

    cms = _upsert(db, theme, build_cms_save(body.fields, theme, banners, logo))
    logger.info("CMS for %s saved with %d new banners", theme, len(banners))
    return ok(cms, "CMS data saved successfully", uploadedFiles={"banners": banners, "logo": logo or None})


def _update(db: Database, theme: str, fields: dict) -> dict:
    doc = {k: v for k, v in reject_operators(fields).items() if k not in ("theme_name", "isActive")}
    doc["updated_at"] = now()
    return ok(_upsert(db, theme, doc), "CMS data updated successfully")


@router.put("/update")
def update_default_cms(body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                       db: Database = Depends(get_db)):
    return _update(db, DEFAULT_THEME, body.fields)


@router.put("/update/{theme_name}")
def update_cms(theme_name: str, body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
               db: Database = Depends(get_db)):
    return _update(db, theme_name, body.fields)


@router.post("/upload/banner")
def upload_banner(body: ParsedBody = Depends(parsed_body("cms_banner")), admin=Depends(require_admin),
                  storage: ImageStorage = Depends(get_storage)):
    file = body.file("banner")
    if file is None:
        raise HTTPException(status_code=400, detail="No banner file provided")
    result = storage.upload_single_image(file, "cms", f"banner_{epoch_ms()}")
    entry = banner_entry(result, 0)
    entry.update({"size": file.size, "mimetype": file.content_type, "type": "banner"})
    return ok(entry, "Banner uploaded successfully to R2")


@router.post("/upload/banners")
def upload_banners(body: ParsedBody = Depends(parsed_body("cms_banners")), admin=Depends(require_admin),
                   storage: ImageStorage = Depends(get_storage)):
    files = body.files_for("files")
    if not files:
        raise HTTPException(status_code=400, detail="No banner files provided")
    results = storage.upload_multiple_images(files, "cms", "banners")
    entries = []
    for index, (file, result) in enumerate(zip(files, results)):
        entry = banner_entry(result, index)
        entry.update({"size": file.size, "mimetype": file.content_type})
        entries.append(entry)
    return ok({"files": entries, "count": len(entries), "type": "banners"},
              f"{len(entries)} banners uploaded successfully to R2")


@router.post("/upload/logo")
def upload_logo(body: ParsedBody = Depends(parsed_body("cms_logo")), admin=Depends(require_admin),
                storage: ImageStorage = Depends(get_storage)):
    file = body.file("logo")
    if file is None:
        raise HTTPException(status_code=400, detail="No logo file provided")
    result = storage.upload_single_image(file, "cms", "logo")
    return ok({
        "url": result["url"],
        "alt": strip_extension(file.filename),
        "originalName": result["originalName"],
        "size": file.size,
        "mimetype": file.content_type,
        "type": "logo",
    }, "Logo uploaded successfully to R2")


@router.post("/reset")
def reset_cms(admin=Depends(require_admin), db: Database = Depends(get_db)):
    update_many(db["cms"], {}, {"isActive": False, "updated_at": now()})
    logger.info("All CMS configurations deactivated")
    return {"success": True, "message": "CMS configuration reset successfully. Static config will be used.", "data": None}
