"""
Request body parsing with a declarative upload schema.

Every route that accepts files names one schema below. The schema maps each multipart
file field to how many files it may carry and which content types are accepted. Forms
and JSON bodies both come out as a ParsedBody: plain fields in ``fields`` (repeated
form keys become lists) and validated files in ``files``.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException, Request
from starlette.datastructures import UploadFile

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024
IMAGES = ("image/",)
IMAGES_AND_PDF = ("image/", "application/pdf")


@dataclass
class FieldRule:
    max_count: int = 1
    mime_types: Tuple[str, ...] = IMAGES


@dataclass
class UploadedFile:
    field: str
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


UPLOAD_SCHEMAS: Dict[str, Dict[str, FieldRule]] = {
    "none": {},
    "products": {"images": FieldRule(10)},
    "categories": {"image": FieldRule(), "icon": FieldRule()},
    "subcategories": {"image": FieldRule(), "icon": FieldRule()},
    "riders": {
        "image": FieldRule(),
        "cnicFrontImage": FieldRule(),
        "cnicBackImage": FieldRule(),
        "bikeDocument": FieldRule(1, IMAGES_AND_PDF),
    },
    "cms": {"bannerImages": FieldRule(5), "logoImage": FieldRule(), "faviconImage": FieldRule()},
    "cms_banner": {"banner": FieldRule()},
    "cms_banners": {"files": FieldRule(5)},
    "cms_logo": {"logo": FieldRule()},
    "single": {"image": FieldRule()},
    "multiple": {"images": FieldRule(10)},
}


@dataclass
class ParsedBody:
    fields: Dict[str, Any] = field(default_factory=dict)
    files: Dict[str, List[UploadedFile]] = field(default_factory=dict)

    def file(self, name: str) -> Optional[UploadedFile]:
        found = self.files.get(name)
        return found[0] if found else None

    def files_for(self, name: str) -> List[UploadedFile]:
        return self.files.get(name, [])


def _accepts(rule: FieldRule, content_type: str) -> bool:
    return any(content_type == t or (t.endswith("/") and content_type.startswith(t)) for t in rule.mime_types)


async def _read_file(name: str, value: UploadFile, rule: Optional[FieldRule]) -> UploadedFile:
    if rule is None:
        raise HTTPException(status_code=400, detail=f"Unexpected field: {name}")
    content_type = value.content_type or ""
    if not _accepts(rule, content_type):
        raise HTTPException(status_code=400, detail="Invalid file type. Only images and PDFs (for documents) are allowed.")
    data = await value.read()
    await value.close()
    if len(data) > MAX_FILE_SIZE:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 10MB")
    return UploadedFile(field=name, filename=value.filename, content_type=content_type, data=data)


async def parse_request(request: Request, rules: Dict[str, FieldRule]) -> ParsedBody:
    parsed = ParsedBody()
    content_type = request.headers.get("content-type", "")

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        for name, value in form.multi_items():
            if isinstance(value, UploadFile):
                # an empty file input still posts a part with no filename
                if not value.filename:
                    continue
                uploaded = await _read_file(name, value, rules.get(name))
                bucket = parsed.files.setdefault(name, [])
                bucket.append(uploaded)
                if len(bucket) > rules[name].max_count:
                    raise HTTPException(status_code=400, detail=f"Too many files for field {name}. Maximum is {rules[name].max_count}")
            elif name in parsed.fields:
                current = parsed.fields[name]
                parsed.fields[name] = (current if isinstance(current, list) else [current]) + [value]
            else:
                parsed.fields[name] = value
        if parsed.files:
            logger.info("Files received for upload: %s", list(parsed.files))
        return parsed

    body = await request.body()
    if body:
        try:
            data = json.loads(body)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if isinstance(data, dict):
            parsed.fields = data
    return parsed


def parsed_body(schema_name: str = "none"):
    """Dependency factory: ``body: ParsedBody = Depends(parsed_body("products"))``."""
    rules = UPLOAD_SCHEMAS[schema_name]

    async def dependency(request: Request) -> ParsedBody:
        return await parse_request(request, rules)

    return dependency
