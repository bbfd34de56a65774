import os
import re
import logging
from contextlib import asynccontextmanager

from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import admin
import auth
import categories
import cms
import images
import orders
import products
import riders
import subcategories
from builders import ValidationFailed, now
from database import Database, DatabaseUnavailable, NotFoundError
from pages import contact_router, pages_router
from responses import fail
from schemas import COLLECTION_MODELS
from storage import StorageError

load_dotenv()

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    app.state.db.close()
    logger.info("Database connection closed")


app = FastAPI(title="Storefront Admin API", lifespan=lifespan)

origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.db = Database()

for router in (
    products.router,
    categories.router,
    subcategories.router,
    orders.router,
    riders.router,
    cms.router,
    pages_router,
    contact_router,
    auth.router,
    admin.router,
    images.router,
):
    app.include_router(router)


def is_production() -> bool:
    return os.getenv("APP_ENV") == "production"


# ---------------------- Error handlers ----------------------

DUP_COLLECTION = re.compile(r"collection: [^.\s]+\.(\w+)")
DUP_INDEX = re.compile(r"index: (\w+?)_-?1")
DUP_LABELS = {
    "product": "Product",
    "category": "Category",
    "subcategory": "Subcategory",
    "rider": "Rider",
    "pagecontent": "Page",
    "contactpage": "Contact page",
    "admin": "Admin",
}


def duplicate_key_message(error: DuplicateKeyError) -> str:
    details = error.details or {}
    message = details.get("errmsg") or str(error)
    field = next(iter(details.get("keyValue") or details.get("keyPattern") or {}), None)
    if field is None:
        match = DUP_INDEX.search(message)
        field = match.group(1) if match else None
    match = DUP_COLLECTION.search(message)
    label = DUP_LABELS.get(match.group(1), "Record") if match else "Record"
    if field is None:
        return "Duplicate value violates a unique constraint"
    return f"{label} with this {field} already exists"


async def http_error(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return JSONResponse(status_code=404, content=fail("Route not found"))
    return JSONResponse(status_code=exc.status_code, content=fail(str(exc.detail)), headers=exc.headers)


async def not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content=fail(exc.message))


async def invalid_id(request: Request, exc: InvalidId):
    return JSONResponse(status_code=400, content=fail("Invalid ID"))


async def duplicate_key(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=400, content=fail(duplicate_key_message(exc)))


async def validation_error(request: Request, exc: ValidationError):
    errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
    return JSONResponse(status_code=400, content=fail("Validation error", errors=errors))


async def request_validation_error(request: Request, exc: RequestValidationError):
    errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
    return JSONResponse(status_code=400, content=fail("Validation error", errors=errors))


async def validation_failed(request: Request, exc: ValidationFailed):
    return JSONResponse(status_code=400, content=fail(exc.message, errors=exc.errors or None, **exc.extra))


async def storage_error(request: Request, exc: StorageError):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    message = str(exc) if str(exc).startswith("Failed to upload image") else f"Failed to upload image: {exc}"
    return JSONResponse(status_code=500, content=fail(message, kind=exc.kind))


async def database_unavailable(request: Request, exc: DatabaseUnavailable):
    return JSONResponse(status_code=503, content=fail(
        "Database connection failed",
        error=None if is_production() else str(exc),
    ))


async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=fail(
        "Internal server error",
        error=None if is_production() else str(exc),
    ))


app.add_exception_handler(StarletteHTTPException, http_error)
app.add_exception_handler(NotFoundError, not_found)
app.add_exception_handler(InvalidId, invalid_id)
app.add_exception_handler(DuplicateKeyError, duplicate_key)
app.add_exception_handler(ValidationError, validation_error)
app.add_exception_handler(RequestValidationError, request_validation_error)
app.add_exception_handler(ValidationFailed, validation_failed)
app.add_exception_handler(StorageError, storage_error)
app.add_exception_handler(DatabaseUnavailable, database_unavailable)
app.add_exception_handler(Exception, unhandled_error)


# ---------------------- Schema endpoint ----------------------
@app.get("/schema")
def get_schema():
    return {name: model.model_json_schema() for name, model in COLLECTION_MODELS.items()}


# ---------------------- Health ----------------------
@app.get("/")
def root():
    return {"brand": "Storefront Admin", "status": "ok"}


@app.get("/api/health")
def health():
    return {
        "status": "OK",
        "timestamp": now().isoformat() + "Z",
        "db": "connected" if app.state.db.connected else "disconnected",
        "environment": os.getenv("APP_ENV", "development"),
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") or os.getenv("MONGODB_URI") else "❌ Not Set",
        "database_name": app.state.db.name,
        "r2_bucket": "✅ Set" if os.getenv("CLOUDFLARE_R2_BUCKET_NAME") else "❌ Not Set",
        "jwt_secret": "✅ Set" if os.getenv("JWT_SECRET") else "❌ Not Set",
        "collections": [],
    }
    try:
        response["collections"] = app.state.db.list_collection_names()
        response["database"] = "✅ Connected"
    except DatabaseUnavailable as e:
        response["database"] = f"⚠️ Error: {str(e)[:120]}"
    return response


@app.get("/api/placeholder/{width}/{height}")
def placeholder(width: str, height: str):
    w = int(width) if width.isdigit() and int(width) else 64
    h = int(height) if height.isdigit() and int(height) else 64
    svg = (
        f'<svg width="{w}" height="{h}" xmlns="http://www.w3.org/2000/svg">'
        f'<rect width="{w}" height="{h}" fill="#E5E7EB"/>'
        f'<rect x="{w / 4:g}" y="{h / 4:g}" width="{w / 2:g}" height="{h / 2:g}" rx="4" fill="#9CA3AF"/>'
        f'</svg>'
    )
    return Response(content=svg, media_type="image/svg+xml", headers={"Cache-Control": "public, max-age=86400"})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
