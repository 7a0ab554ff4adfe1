"""
Orders

Placing an order is one database transaction: stock is checked and
decremented line by line, the order is written with a price snapshot per
line, the buyer's points and membership grade are updated and the cart is
emptied. Any failure (short stock, too many points redeemed, a database
error) rolls the whole thing back.
"""
import logging
import secrets
import time

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from database import get_db, transaction
from errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InsufficientPointsError,
    NotFoundError,
    OutOfStockError,
)
from models import CartItem, Order, OrderItem, OrderStatus, ProductStock, User, utcnow
from notifications import create_cancel_notification, create_order_notification, create_sold_out_notifications
from points import earned_points, ensure_user_point, regrade
from schemas import OrderCreatePayload, OrderUpdatePayload
from security import get_current_user, require_buyer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/purchase", tags=["purchase"])


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.randbelow(1000):03d}"


def _locked_stock(db: Session, product_id: int, size: str):
    return db.scalars(
        select(ProductStock)
        .where(ProductStock.product_id == product_id, ProductStock.size == size)
        .with_for_update()
    ).first()


def place_order(db: Session, buyer_id: int, body: OrderCreatePayload) -> Order:
    buyer = db.get(User, buyer_id)
    if not buyer:
        raise NotFoundError("Buyer not found")

    now = utcnow()
    with transaction(db):
        subtotal = 0
        lines = []
        for item in body.order_items:
            stock = _locked_stock(db, item.product_id, item.size)
            if stock is None or stock.quantity < item.quantity:
                raise OutOfStockError(item.product_id, item.size)

            product = stock.product
            unit_price = product.current_price(now)
            stock.quantity -= item.quantity
            product.total_sales += item.quantity
            subtotal += unit_price * item.quantity
            lines.append(OrderItem(product_id=product.id, size=item.size, quantity=item.quantity, price=unit_price))

            if stock.quantity == 0:
                create_sold_out_notifications(db, product, item.size, exclude_user_id=buyer.id)

        user_point = ensure_user_point(db, buyer.id)
        if body.use_point > user_point.points:
            raise InsufficientPointsError("Not enough points")
        if body.use_point > subtotal:
            raise InsufficientPointsError("Redeemed points exceed the order amount")

        payable = subtotal - body.use_point
        earned = earned_points(payable, user_point.grade)
        order = Order(
            order_number=generate_order_number(),
            user_id=buyer.id,
            status=OrderStatus.PAID,
            subtotal=subtotal,
            used_points=body.use_point,
            earned_points=earned,
            total_amount=payable,
            recipient_name=body.name,
            recipient_phone=body.phone,
            delivery_address=body.address,
            payment_date=now,
            items=lines,
        )
        db.add(order)

        user_point.points = user_point.points - body.use_point + earned
        user_point.accumulated_amount += payable
        if regrade(user_point):
            logger.info("User %s promoted to %s", buyer.id, user_point.grade)

        db.query(CartItem).filter(CartItem.user_id == buyer.id).delete()
        db.flush()
        create_order_notification(db, buyer.id, order.order_number)

    logger.info("Order %s placed by user %s (total %s)", order.order_number, buyer.id, payable)
    return order


def get_own_order(db: Session, user_id: int, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    if order.user_id != user_id:
        raise ForbiddenError("Not your order")
    return order


def list_orders(db: Session, user_id: int, page: int = 1, limit: int = 10) -> dict:
    orders = db.scalars(
        select(Order).where(Order.user_id == user_id)
        .options(selectinload(Order.items).selectinload(OrderItem.product))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit).limit(limit)
    ).all()
    total = db.scalar(select(func.count(Order.id)).where(Order.user_id == user_id))
    return {"list": [serialize_order(o) for o in orders], "totalCount": total}


def update_order(db: Session, user_id: int, order_id: int, body: OrderUpdatePayload) -> Order:
    """Edit recipient details; allowed only before the order ships."""
    if not (body.name or body.phone or body.address):
        raise BadRequestError("Nothing to update")
    order = get_own_order(db, user_id, order_id)
    if order.status != OrderStatus.PAID:
        raise ConflictError("Orders that are shipping, delivered or canceled cannot be changed")
    with transaction(db):
        if body.name:
            order.recipient_name = body.name
        if body.phone:
            order.recipient_phone = body.phone
        if body.address:
            order.delivery_address = body.address
    return order


def cancel_order(db: Session, user_id: int, order_id: int) -> Order:
    """Cancel a paid order.

    Stock goes back to every line, redeemed points are refunded, and the
    points earned plus the spend credited by the order are taken back so the
    grade is recomputed from real spend.
    """
    order = get_own_order(db, user_id, order_id)
    if order.status == OrderStatus.CANCELED:
        raise ConflictError("Order already canceled")
    if order.status != OrderStatus.PAID:
        raise ConflictError("Orders that are shipping or delivered cannot be canceled")

    with transaction(db):
        for item in order.items:
            stock = _locked_stock(db, item.product_id, item.size)
            if stock is None:
                stock = ProductStock(product_id=item.product_id, size=item.size, quantity=0)
                db.add(stock)
            stock.quantity += item.quantity
            item.product.total_sales = max(item.product.total_sales - item.quantity, 0)

        user_point = ensure_user_point(db, order.user_id)
        user_point.points = max(user_point.points + order.used_points - order.earned_points, 0)
        user_point.accumulated_amount = max(user_point.accumulated_amount - order.total_amount, 0)
        regrade(user_point)

        order.status = OrderStatus.CANCELED
        order.canceled_at = utcnow()
        create_cancel_notification(db, order.user_id, order.order_number)

    logger.info("Order %s canceled by user %s", order.order_number, user_id)
    return order


def serialize_order(order: Order) -> dict:
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "userId": order.user_id,
        "status": order.status,
        "subtotal": order.subtotal,
        "usePoint": order.used_points,
        "earnedPoint": order.earned_points,
        "totalAmount": order.total_amount,
        "name": order.recipient_name,
        "phoneNumber": order.recipient_phone,
        "address": order.delivery_address,
        "paymentDate": order.payment_date.isoformat() if order.payment_date else None,
        "canceledAt": order.canceled_at.isoformat() if order.canceled_at else None,
        "createdAt": order.created_at.isoformat(),
        "orderItems": [
            {
                "id": item.id,
                "productId": item.product_id,
                "productName": item.product.name,
                "image": item.product.image,
                "size": item.size,
                "quantity": item.quantity,
                "price": item.price,
                "isReviewed": item.review is not None,
            }
            for item in order.items
        ],
    }


# ========== ROUTES ==========

@router.post("", status_code=201)
def create_order(body: OrderCreatePayload, user: User = Depends(require_buyer), db: Session = Depends(get_db)):
    return serialize_order(place_order(db, user.id, body))


@router.get("")
def get_purchases(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return list_orders(db, user.id, page, limit)


@router.get("/{order_id}")
def get_purchase(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return serialize_order(get_own_order(db, user.id, order_id))


@router.patch("/{order_id}")
def patch_purchase(order_id: int, body: OrderUpdatePayload, user: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    return serialize_order(update_order(db, user.id, order_id, body))


@router.delete("/{order_id}")
def cancel_purchase(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return serialize_order(cancel_order(db, user.id, order_id))
