import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from config import ACCESS_TOKEN_MINUTES, JWT_SECRET, REFRESH_SECRET, REFRESH_TOKEN_DAYS
from database import get_db
from errors import ForbiddenError, UnauthorizedError
from models import User, UserRole

ALGORITHM = "HS256"
ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


# ---------- Passwords ----------

def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    if salt is None:
        salt = secrets.token_hex(16)
    pwd_hash = hashlib.pbkdf2_hmac(
        'sha256', password.encode('utf-8'), salt.encode('utf-8'), 100000
    ).hex()
    return pwd_hash, salt


def verify_password(password: str, user: User) -> bool:
    pwd_hash, _ = hash_password(password, user.salt)
    return hmac.compare_digest(pwd_hash, user.password_hash)


# ---------- Tokens ----------

def create_access_token(user: User) -> str:
    payload = {
        "sub": str(user.id),
        "role": user.type,
        "type": "access",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_MINUTES),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=ALGORITHM)


def create_refresh_token(user: User) -> str:
    payload = {
        "sub": str(user.id),
        "type": "refresh",
        # jti keeps two tokens minted in the same second distinct
        "jti": secrets.token_hex(8),
        "exp": datetime.now(timezone.utc) + timedelta(days=REFRESH_TOKEN_DAYS),
    }
    return jwt.encode(payload, REFRESH_SECRET, algorithm=ALGORITHM)


def decode_token(token: str, secret: str, expected_type: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")
    if payload.get("type") != expected_type:
        raise UnauthorizedError("Invalid token")
    return payload


def decode_refresh_token(token: str) -> dict:
    return decode_token(token, REFRESH_SECRET, "refresh")


# ---------- Dependencies ----------

def _token_from_request(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith('Bearer '):
        return authorization.split(' ', 1)[1]
    return request.cookies.get(ACCESS_COOKIE)


def get_current_user(request: Request, authorization: Optional[str] = Header(None),
                     db: Session = Depends(get_db)) -> User:
    token = _token_from_request(request, authorization)
    if not token:
        raise UnauthorizedError("Authentication required")
    payload = decode_token(token, JWT_SECRET, "access")
    user = db.get(User, int(payload["sub"]))
    if not user:
        raise UnauthorizedError("User not found")
    return user


def require_seller(user: User = Depends(get_current_user)) -> User:
    if user.type != UserRole.SELLER:
        raise ForbiddenError("Seller account required")
    return user


def require_buyer(user: User = Depends(get_current_user)) -> User:
    if user.type != UserRole.BUYER:
        raise ForbiddenError("Buyer account required")
    return user


def get_optional_user(request: Request, authorization: Optional[str] = Header(None),
                      db: Session = Depends(get_db)) -> Optional[User]:
    """Like `get_current_user` but anonymous callers get None instead of a 401."""
    token = _token_from_request(request, authorization)
    if not token:
        return None
    try:
        payload = decode_token(token, JWT_SECRET, "access")
    except UnauthorizedError:
        return None
    return db.get(User, int(payload["sub"]))
