import os
import logging

from fastapi import APIRouter, Depends, HTTPException

from builders import now
from responses import ok
from security import require_admin
from storage import ImageStorage, get_storage
from uploads import ParsedBody, parsed_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/r2-images", tags=["images"])


@router.post("/upload")
def upload_image(body: ParsedBody = Depends(parsed_body("single")), admin=Depends(require_admin),
                 storage: ImageStorage = Depends(get_storage)):
    file = body.file("image")
    if file is None:
        raise HTTPException(status_code=400, detail="No image file provided")
    result = storage.upload_single_image(file, body.fields.get("category") or "general",
                                         body.fields.get("subCategory") or "")
    return ok(result, "Image uploaded successfully")


@router.post("/upload-multiple")
def upload_images(body: ParsedBody = Depends(parsed_body("multiple")), admin=Depends(require_admin),
                  storage: ImageStorage = Depends(get_storage)):
    files = body.files_for("images")
    if not files:
        raise HTTPException(status_code=400, detail="No image files provided")
    results = storage.upload_multiple_images(files, body.fields.get("category") or "general",
                                             body.fields.get("subCategory") or "")
    return ok(results, f"{len(results)} images uploaded successfully")


@router.delete("/delete")
def delete_images(body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                  storage: ImageStorage = Depends(get_storage)):
    urls = body.fields.get("imageUrls")
    if isinstance(urls, list) and urls:
        result = storage.delete_multiple_images(urls)
        return ok(result, f"{result['successful']} of {result['total']} images deleted")

    url = body.fields.get("imageUrl")
    if not url:
        raise HTTPException(status_code=400, detail="Image URL is required")
    if not storage.delete_image(url):
        raise HTTPException(status_code=500, detail="Failed to delete image")
    return ok({"deletedUrl": url}, "Image deleted successfully")


@router.get("/status")
def storage_status(storage: ImageStorage = Depends(get_storage)):
    return ok({
        "r2Connected": storage.test_connection(),
        "timestamp": now().isoformat() + "Z",
        "bucketName": os.getenv("CLOUDFLARE_R2_BUCKET_NAME") or storage.bucket or "Not configured",
        "domain": os.getenv("CLOUDFLARE_R2_DOMAIN") or "Not configured",
    }, "R2 service status retrieved")


@router.get("/health")
def storage_health(storage: ImageStorage = Depends(get_storage)):
    healthy = storage.test_connection()
    if not healthy:
        logger.warning("R2 health probe failed for bucket %s", storage.bucket)
    return ok({"healthy": healthy, "timestamp": now().isoformat() + "Z", "version": "1.0.0"},
              "R2 Images API is healthy" if healthy else "R2 Images API is unhealthy")
