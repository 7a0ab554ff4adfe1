from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from database import get_db, transaction
from errors import BadRequestError, NotFoundError
from models import CartItem, Product, ProductStock, User, utcnow
from schemas import CartItemPayload, CartQuantityPayload
from security import get_current_user

router = APIRouter(prefix="/api/cart", tags=["cart"])


def serialize_cart_item(item: CartItem, now=None) -> dict:
    product = item.product
    unit_price = product.current_price(now)
    stock = next((s for s in product.stocks if s.size == item.size), None)
    return {
        "id": item.id,
        "productId": item.product_id,
        "size": item.size,
        "quantity": item.quantity,
        "product": {
            "id": product.id,
            "name": product.name,
            "image": product.image,
            "price": product.price,
            "discountPrice": product.discount_price(now),
            "storeId": product.store_id,
            "storeName": product.store.name,
        },
        "unitPrice": unit_price,
        "lineTotal": unit_price * item.quantity,
        "stockQuantity": stock.quantity if stock else 0,
    }


def get_cart(db: Session, user_id: int) -> dict:
    items = db.scalars(
        select(CartItem).where(CartItem.user_id == user_id)
        .options(selectinload(CartItem.product).selectinload(Product.stocks))
        .order_by(CartItem.created_at.desc(), CartItem.id.desc())
    ).all()
    now = utcnow()
    lines = [serialize_cart_item(i, now) for i in items]
    return {
        "userId": user_id,
        "items": lines,
        "totalQuantity": sum(line["quantity"] for line in lines),
        "totalPrice": sum(line["lineTotal"] for line in lines),
    }


def add_to_cart(db: Session, user_id: int, body: CartItemPayload) -> CartItem:
    """Upsert on (user, product, size); an existing row has its quantity increased."""
    product = db.get(Product, body.product_id)
    if not product:
        raise NotFoundError("Product not found")
    has_size = db.scalars(
        select(ProductStock).where(ProductStock.product_id == product.id, ProductStock.size == body.size)
    ).first()
    if not has_size:
        raise BadRequestError(f"Size {body.size} is not offered for this product")
    with transaction(db):
        item = db.scalars(
            select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product.id,
                                   CartItem.size == body.size)
        ).first()
        if item:
            item.quantity += body.quantity
        else:
            item = CartItem(user_id=user_id, product_id=product.id, size=body.size, quantity=body.quantity)
            db.add(item)
    return item


def _own_item(db: Session, user_id: int, item_id: int) -> CartItem:
    item = db.get(CartItem, item_id)
    if not item or item.user_id != user_id:
        raise NotFoundError("Cart item not found")
    return item


def set_quantity(db: Session, user_id: int, item_id: int, quantity: int) -> CartItem:
    item = _own_item(db, user_id, item_id)
    with transaction(db):
        item.quantity = quantity
    return item


def remove_from_cart(db: Session, user_id: int, item_id: int):
    item = _own_item(db, user_id, item_id)
    with transaction(db):
        db.delete(item)


# ========== ROUTES ==========

@router.post("", status_code=201)
def post_cart_item(body: CartItemPayload, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return serialize_cart_item(add_to_cart(db, user.id, body))


@router.get("")
def get_my_cart(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return get_cart(db, user.id)


@router.patch("/{item_id}")
def patch_cart_item(item_id: int, body: CartQuantityPayload, user: User = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    return serialize_cart_item(set_quantity(db, user.id, item_id, body.quantity))


@router.delete("/{item_id}")
def delete_cart_item(item_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    remove_from_cart(db, user.id, item_id)
    return {"message": "Removed"}
