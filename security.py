import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Header, HTTPException, Request

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
TOKEN_COOKIE = "token"


# ---------------------- Helpers ----------------------

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        logger.error("JWT_SECRET not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    return secret


def token_lifetime() -> timedelta:
    return timedelta(hours=int(os.getenv("JWT_EXPIRES_HOURS", "24")))


def create_token(admin: dict) -> str:
    payload = {
        "id": str(admin["_id"]),
        "username": admin.get("username"),
        "role": admin.get("role", "admin"),
        "email": admin.get("email"),
        "exp": datetime.now(timezone.utc) + token_lifetime(),
    }
    return jwt.encode(payload, jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    secret = jwt_secret()
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired. Please login again.")
    except jwt.DecodeError:
        raise HTTPException(status_code=401, detail="Invalid token format. Please login again.")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Token verification failed. Please login again.")


# ---------------------- Auth guard ----------------------

def token_from_request(request: Request, authorization: Optional[str]):
    """Cookie first, then the Authorization header. Returns (token, source)."""
    token = request.cookies.get(TOKEN_COOKIE)
    if token:
        return token, "cookie"
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1], "header"
    return None, None


async def require_admin(request: Request, authorization: Optional[str] = Header(default=None)) -> dict:
    token, source = token_from_request(request, authorization)
    if not token:
        logger.info("No token found in cookies or headers for %s %s", request.method, request.url.path)
        raise HTTPException(status_code=401, detail="Access token required. Please login again.")
    admin = decode_token(token)
    request.state.admin = admin
    request.state.token_source = source
    return admin
