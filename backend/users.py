import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from config import ACCESS_TOKEN_MINUTES, REFRESH_TOKEN_DAYS
from database import get_db, transaction
from errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from models import CartItem, FavoriteStore, Inquiry, InquiryReply, Notification, Order, Review, Store, User
from points import ensure_user_point
from schemas import LoginPayload, RefreshPayload, SignupPayload, UpdateUserPayload
from security import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    get_current_user,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])
auth_router = APIRouter(prefix="/auth", tags=["auth"])


def serialize_user(user: User) -> dict:
    data = {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "type": user.type,
        "image": user.image,
        "createdAt": user.created_at.isoformat(),
        "updatedAt": user.updated_at.isoformat(),
        "points": None,
    }
    if user.point:
        data["points"] = {"points": user.point.points, "grade": user.point.grade}
    return data


# ========== USERS ==========

def signup(db: Session, body: SignupPayload) -> User:
    existing = db.scalars(select(User).where(or_(User.email == body.email, User.name == body.name))).first()
    if existing:
        raise ConflictError("User already exists")
    pwd_hash, salt = hash_password(body.password)
    with transaction(db):
        user = User(type=body.type, name=body.name, email=body.email, password_hash=pwd_hash, salt=salt)
        db.add(user)
        db.flush()
        ensure_user_point(db, user.id)
    logger.info("New %s account %s", user.type.lower(), user.id)
    return user


def update_user(db: Session, user: User, body: UpdateUserPayload) -> User:
    if not verify_password(body.current_password, user):
        raise UnauthorizedError("Current password does not match")
    if body.name and body.name != user.name:
        taken = db.scalars(select(User).where(User.name == body.name, User.id != user.id)).first()
        if taken:
            raise ConflictError("Name already in use")
    with transaction(db):
        if body.name:
            user.name = body.name
        if body.image:
            user.image = body.image
        if body.new_password:
            user.password_hash, user.salt = hash_password(body.new_password)
    return user


def delete_user(db: Session, user: User) -> dict:
    """Remove an account that never traded; history keeps referencing the user row."""
    history = (
        exists().where(Order.user_id == user.id),
        exists().where(Review.user_id == user.id),
        exists().where(Inquiry.user_id == user.id),
        exists().where(InquiryReply.seller_id == user.id),
        exists().where(Store.seller_id == user.id),
    )
    if any(db.scalar(select(clause)) for clause in history):
        raise ConflictError("Accounts with trading history cannot be deleted")
    snapshot = serialize_user(user)
    with transaction(db):
        db.query(CartItem).filter(CartItem.user_id == user.id).delete()
        db.query(FavoriteStore).filter(FavoriteStore.user_id == user.id).delete()
        db.query(Notification).filter(Notification.user_id == user.id).delete()
        db.delete(user)
    logger.info("Deleted account %s", snapshot["id"])
    return snapshot


@router.post("", status_code=201)
def create_user(body: SignupPayload, db: Session = Depends(get_db)):
    return serialize_user(signup(db, body))


@router.get("/me")
def get_me(user: User = Depends(get_current_user)):
    return serialize_user(user)


@router.patch("/me")
def patch_me(body: UpdateUserPayload, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return serialize_user(update_user(db, user, body))


@router.delete("/delete")
def delete_me(response: Response, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    data = delete_user(db, user)
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
    return data


# ========== AUTH ==========

def _set_auth_cookies(response: Response, access_token: str, refresh_token: Optional[str] = None):
    response.set_cookie(ACCESS_COOKIE, access_token, httponly=True, samesite="lax",
                        max_age=ACCESS_TOKEN_MINUTES * 60)
    if refresh_token:
        response.set_cookie(REFRESH_COOKIE, refresh_token, httponly=True, samesite="lax",
                            max_age=REFRESH_TOKEN_DAYS * 24 * 3600)


def login(db: Session, email: str, password: str) -> tuple[User, str, str]:
    user = db.scalars(select(User).where(User.email == email)).first()
    if not user:
        raise NotFoundError("User not found")
    if not verify_password(password, user):
        raise UnauthorizedError("Invalid email or password")
    access_token = create_access_token(user)
    refresh_token = create_refresh_token(user)
    with transaction(db):
        user.refresh_token = refresh_token
    return user, access_token, refresh_token


def reload_access_token(db: Session, refresh_token: str) -> str:
    user = db.scalars(select(User).where(User.refresh_token == refresh_token)).first()
    if not user:
        raise ForbiddenError("Invalid refresh token")
    decode_refresh_token(refresh_token)
    return create_access_token(user)


@auth_router.post("/login")
def login_route(body: LoginPayload, response: Response, db: Session = Depends(get_db)):
    user, access_token, refresh_token = login(db, body.email, body.password)
    _set_auth_cookies(response, access_token, refresh_token)
    return {"user": serialize_user(user), "accessToken": access_token}


@auth_router.post("/refresh")
def refresh_route(request: Request, response: Response, body: Optional[RefreshPayload] = None,
                  db: Session = Depends(get_db)):
    token = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    if not token:
        raise UnauthorizedError("Refresh token required")
    access_token = reload_access_token(db, token)
    _set_auth_cookies(response, access_token)
    return {"accessToken": access_token}


@auth_router.post("/logout")
def logout_route(response: Response, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    with transaction(db):
        user.refresh_token = None
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
    return {"message": "Logged out"}
