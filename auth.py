import os
import secrets
import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from builders import now
from database import Database, exists, find_by_id, find_one, get_db, insert_one, require, update_by_id
from mailer import MailError, Mailer, get_mailer
from responses import ok
from schemas import Admin, PasswordReset, validate_document
from security import (
    TOKEN_COOKIE,
    create_token,
    decode_token,
    hash_password,
    require_admin,
    token_lifetime,
    verify_password,
)
from uploads import ParsedBody, parsed_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_CODE_TTL = timedelta(minutes=10)
RESET_TOKEN_TTL = timedelta(hours=1)
MAX_RESET_ATTEMPTS = 5
MIN_PASSWORD_LENGTH = 6


def _public(admin: dict) -> dict:
    return {
        "_id": admin["_id"],
        "id": admin["_id"],
        "name": admin.get("username"),
        "username": admin.get("username"),
        "email": admin.get("email"),
        "role": admin.get("role"),
        "permissions": admin.get("permissions") or [],
        "lastLogin": admin.get("lastLogin"),
    }


def _secure_cookie() -> bool:
    return os.getenv("APP_ENV") == "production"


# ---------------------- Session ----------------------

@router.post("/login")
def login(response: Response, body: ParsedBody = Depends(parsed_body()), db: Database = Depends(get_db)):
    email = body.fields.get("email")
    password = body.fields.get("password")
    if not email or not password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    admin = find_one(db["admin"], {"email": email})
    if admin is None or not verify_password(password, admin.get("password", "")):
        logger.info("Failed login attempt for %s", email)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_token(admin)
    admin = update_by_id(db["admin"], admin["_id"], {"lastLogin": now()})
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        httponly=True,
        secure=_secure_cookie(),
        samesite="strict",
        max_age=int(token_lifetime().total_seconds()),
    )
    logger.info("Login successful for %s", email)
    return ok(message="Login successful", token=token, admin=_public(admin))


@router.post("/register", status_code=201)
def register(body: ParsedBody = Depends(parsed_body()), db: Database = Depends(get_db)):
    data = body.fields
    username, password, email, role = (data.get(k) for k in ("username", "password", "email", "role"))
    if not username or not password or not email or not role:
        raise HTTPException(status_code=400, detail="All fields are required")
    if exists(db["admin"], {"$or": [{"username": username}, {"email": email}]}):
        raise HTTPException(status_code=400, detail="Username or email already exists")

    doc = validate_document(Admin, {
        "username": username,
        "email": email,
        "password": hash_password(password),
        "role": role,
        "permissions": data.get("permissions") or [],
        "createdAt": now(),
    })
    admin = insert_one(db["admin"], doc)
    logger.info("Admin account %s created", username)
    return ok(message="Admin account created successfully", admin={
        "id": admin["_id"], "username": admin["username"], "email": admin["email"], "role": admin["role"],
    })


@router.get("/profile")
def profile(admin=Depends(require_admin), db: Database = Depends(get_db)):
    record = require(find_by_id(db["admin"], admin["id"], select="-password"), "Admin not found")
    return ok(message="Profile fetched successfully", admin=_public(record))


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE, httponly=True, secure=_secure_cookie(), samesite="strict")
    return ok(message="Logged out successfully")


@router.post("/validate")
def validate(request: Request, db: Database = Depends(get_db)):
    header = request.headers.get("authorization") or ""
    token = header.split(" ", 1)[1] if header.startswith("Bearer ") else None
    if not token:
        raise HTTPException(status_code=401, detail="Access token required")
    claims = decode_token(token)
    admin = require(find_by_id(db["admin"], claims["id"], select="-password"), "Admin not found")
    return ok(valid=True, admin=_public(admin))


@router.get("/test")
def test_auth(request: Request, admin=Depends(require_admin)):
    return ok(message="Authentication working!", admin=admin, tokenSource=request.state.token_source)


# ---------------------- Password reset ----------------------

def cleanup_old_records(db: Database, email: str):
    stamp = now()
    db["passwordreset"].delete_many({
        "email": email,
        "$or": [
            {"expiresAt": {"$lt": stamp}},
            {"isVerified": True, "createdAt": {"$lt": stamp - RESET_TOKEN_TTL}},
        ],
    })


@router.post("/forgot-password")
def forgot_password(body: ParsedBody = Depends(parsed_body()), db: Database = Depends(get_db),
                    mailer: Mailer = Depends(get_mailer)):
    email = body.fields.get("email")
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")

    generic = ok(message="If an account with that email exists, a reset code has been sent")
    if not exists(db["admin"], {"email": email}):
        logger.info("Password reset requested for unknown email %s", email)
        return generic

    cleanup_old_records(db, email)
    db["passwordreset"].delete_many({"email": email, "isVerified": False})
    try:
        code = mailer.send_password_reset_email(email)
    except MailError:
        raise HTTPException(status_code=500, detail="Failed to send password reset email")

    stamp = now()
    insert_one(db["passwordreset"], validate_document(PasswordReset, {
        "email": email,
        "code": code,
        "isVerified": False,
        "attempts": 0,
        "expiresAt": stamp + RESET_CODE_TTL,
        "createdAt": stamp,
    }))
    return generic


@router.post("/verify-reset-code")
def verify_reset_code(body: ParsedBody = Depends(parsed_body()), db: Database = Depends(get_db)):
    email = body.fields.get("email")
    code = body.fields.get("code")
    if not email or not code:
        raise HTTPException(status_code=400, detail="Email and code are required")

    record = db["passwordreset"].find_one({"email": email, "isVerified": False}, sort=[("createdAt", -1)])
    if record is None or record["expiresAt"] < now():
        raise HTTPException(status_code=400, detail="Invalid or expired reset code")
    if record.get("attempts", 0) >= MAX_RESET_ATTEMPTS:
        raise HTTPException(status_code=400, detail="Too many attempts. Please request a new code.")
    if str(code).strip().upper() != record["code"]:
        db["passwordreset"].update_one({"_id": record["_id"]}, {"$inc": {"attempts": 1}})
        raise HTTPException(status_code=400, detail="Invalid reset code")

    token = secrets.token_hex(32)
    update_by_id(db["passwordreset"], record["_id"], {"isVerified": True, "token": token})
    return ok({"resetToken": token}, "Code verified successfully")


@router.post("/reset-password")
def reset_password(body: ParsedBody = Depends(parsed_body()), db: Database = Depends(get_db)):
    token = body.fields.get("resetToken") or body.fields.get("token")
    password = body.fields.get("newPassword") or body.fields.get("password")
    if not token or not password:
        raise HTTPException(status_code=400, detail="Reset token and new password are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    record = find_one(db["passwordreset"], {
        "token": token,
        "isVerified": True,
        "createdAt": {"$gte": now() - RESET_TOKEN_TTL},
    })
    if record is None:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")

    admin = find_one(db["admin"], {"email": record["email"]})
    if admin is None:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    update_by_id(db["admin"], admin["_id"], {"password": hash_password(password)})
    db["passwordreset"].delete_one({"_id": record["_id"]})
    logger.info("Password reset completed for %s", record["email"])
    return ok(message="Password reset successfully")
