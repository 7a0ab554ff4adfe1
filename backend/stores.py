from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import get_db, transaction
from errors import ConflictError, ForbiddenError, NotFoundError
from models import FavoriteStore, Product, Store, User
from schemas import StorePayload, StoreUpdatePayload
from security import get_current_user, require_seller

router = APIRouter(prefix="/stores", tags=["stores"])


def serialize_store(db: Session, store: Store) -> dict:
    product_count = db.scalar(select(func.count(Product.id)).where(Product.store_id == store.id))
    favorite_count = db.scalar(select(func.count(FavoriteStore.id)).where(FavoriteStore.store_id == store.id))
    return {
        "id": store.id,
        "userId": store.seller_id,
        "name": store.name,
        "address": store.address,
        "phoneNumber": store.phone_number,
        "content": store.description,
        "image": store.image,
        "productCount": product_count,
        "favoriteCount": favorite_count,
        "createdAt": store.created_at.isoformat(),
        "updatedAt": store.updated_at.isoformat(),
    }


def get_store_or_404(db: Session, store_id: int) -> Store:
    store = db.get(Store, store_id)
    if not store:
        raise NotFoundError("Store not found")
    return store


def get_seller_store(db: Session, seller_id: int) -> Store:
    store = db.scalars(select(Store).where(Store.seller_id == seller_id)).first()
    if not store:
        raise NotFoundError("No store registered for this seller")
    return store


def create_store(db: Session, seller: User, body: StorePayload) -> Store:
    if db.scalars(select(Store).where(Store.seller_id == seller.id)).first():
        raise ConflictError("This seller already has a store")
    with transaction(db):
        store = Store(seller_id=seller.id, name=body.name, address=body.address,
                      phone_number=body.phone_number, description=body.description, image=body.image)
        db.add(store)
    return store


def update_store(db: Session, seller: User, store_id: int, body: StoreUpdatePayload) -> Store:
    store = get_store_or_404(db, store_id)
    if store.seller_id != seller.id:
        raise ForbiddenError("Not the owner of this store")
    changes = body.model_dump(exclude_unset=True)
    with transaction(db):
        for field in ("name", "address", "phone_number", "image"):
            if changes.get(field) is not None:
                setattr(store, field, changes[field])
        if "description" in changes:
            store.description = changes["description"]
    return store


def add_favorite(db: Session, user: User, store_id: int) -> FavoriteStore:
    get_store_or_404(db, store_id)
    existing = db.scalars(
        select(FavoriteStore).where(FavoriteStore.user_id == user.id, FavoriteStore.store_id == store_id)
    ).first()
    if existing:
        raise ConflictError("Store already in favorites")
    with transaction(db):
        favorite = FavoriteStore(user_id=user.id, store_id=store_id)
        db.add(favorite)
    return favorite


def remove_favorite(db: Session, user: User, store_id: int):
    favorite = db.scalars(
        select(FavoriteStore).where(FavoriteStore.user_id == user.id, FavoriteStore.store_id == store_id)
    ).first()
    if not favorite:
        raise NotFoundError("Store is not in favorites")
    with transaction(db):
        db.delete(favorite)


# ========== ROUTES ==========

@router.post("", status_code=201)
def post_store(body: StorePayload, seller: User = Depends(require_seller), db: Session = Depends(get_db)):
    return serialize_store(db, create_store(db, seller, body))


@router.get("/my-store")
def get_my_store(seller: User = Depends(require_seller), db: Session = Depends(get_db)):
    return serialize_store(db, get_seller_store(db, seller.id))


@router.get("/favorites")
def list_favorites(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    favorites = db.scalars(
        select(FavoriteStore).where(FavoriteStore.user_id == user.id).order_by(FavoriteStore.created_at.desc())
    ).all()
    return [{"storeId": f.store_id, "store": serialize_store(db, f.store)} for f in favorites]


@router.get("/{store_id}")
def get_store(store_id: int, db: Session = Depends(get_db)):
    return serialize_store(db, get_store_or_404(db, store_id))


@router.put("/{store_id}")
def put_store(store_id: int, body: StoreUpdatePayload, seller: User = Depends(require_seller),
              db: Session = Depends(get_db)):
    return serialize_store(db, update_store(db, seller, store_id, body))


@router.post("/{store_id}/favorite", status_code=201)
def post_favorite(store_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    add_favorite(db, user, store_id)
    return {"type": "register", "store": serialize_store(db, get_store_or_404(db, store_id))}


@router.delete("/{store_id}/favorite")
def delete_favorite(store_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    remove_favorite(db, user, store_id)
    return {"type": "delete", "store": serialize_store(db, get_store_or_404(db, store_id))}
