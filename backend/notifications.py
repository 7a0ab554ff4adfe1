import asyncio
import logging
from typing import Iterable, Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import after_commit, get_db, transaction
from errors import ForbiddenError, NotFoundError
from models import CartItem, Notification, Product, User
from security import get_current_user
from sse import format_event, sse_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

KEEPALIVE_SECONDS = 15


class NotificationType:
    ORDER_COMPLETED = "ORDER_COMPLETED"
    ORDER_CANCELED = "ORDER_CANCELED"
    SOLD_OUT = "SOLD_OUT"
    INQUIRY_REPLY = "INQUIRY_REPLY"


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "userId": notification.user_id,
        "content": notification.message,
        "isChecked": notification.is_read,
        "createdAt": notification.created_at.isoformat(),
        "updatedAt": notification.created_at.isoformat(),
    }


def create_notification(db: Session, user_id: int, message: str, type_: str) -> Notification:
    """Persist a notification and push it to the user's open streams after commit.

    Must run inside `transaction(db)`.
    """
    notification = Notification(user_id=user_id, message=message, type=type_, is_read=False)
    db.add(notification)
    db.flush()
    payload = serialize_notification(notification)
    after_commit(db, lambda: sse_manager.send_notification(user_id, payload))
    return notification


def create_order_notification(db: Session, user_id: int, order_number: str) -> Notification:
    return create_notification(
        db, user_id, f"Your order has been placed. Order number: {order_number}",
        NotificationType.ORDER_COMPLETED,
    )


def create_cancel_notification(db: Session, user_id: int, order_number: str) -> Notification:
    return create_notification(
        db, user_id, f"Your order {order_number} has been canceled.", NotificationType.ORDER_CANCELED,
    )


def sold_out_recipients(db: Session, product: Product, size: str, exclude_user_id: int = None) -> list:
    cart_users = db.scalars(
        select(CartItem.user_id).where(CartItem.product_id == product.id, CartItem.size == size).distinct()
    ).all()
    recipients = [product.store.seller_id]
    recipients += [uid for uid in cart_users if uid not in recipients]
    return [uid for uid in recipients if uid != exclude_user_id]


def create_sold_out_notifications(db: Session, product: Product, size: str,
                                  exclude_user_id: int = None) -> list:
    """Tell the seller and every buyer holding the item in a cart that it sold out."""
    recipients = sold_out_recipients(db, product, size, exclude_user_id)
    message = f"[{product.name}] size {size} is sold out."
    return [create_notification(db, uid, message, NotificationType.SOLD_OUT) for uid in recipients]


def create_inquiry_reply_notification(db: Session, user_id: int, product_name: str) -> Notification:
    return create_notification(
        db, user_id, f"Your inquiry about [{product_name}] has been answered.",
        NotificationType.INQUIRY_REPLY,
    )


def get_notifications(db: Session, user_id: int, page: int, page_size: int,
                      sort: str = "recent", filter_: str = "all") -> dict:
    conditions = [Notification.user_id == user_id]
    if filter_ == "checked":
        conditions.append(Notification.is_read.is_(True))
    elif filter_ == "unChecked":
        conditions.append(Notification.is_read.is_(False))

    order = Notification.created_at.desc() if sort == "recent" else Notification.created_at.asc()
    tiebreak = Notification.id.desc() if sort == "recent" else Notification.id.asc()
    notis: Iterable[Notification] = db.scalars(
        select(Notification).where(*conditions).order_by(order, tiebreak)
        .offset((page - 1) * page_size).limit(page_size)
    ).all()
    total = db.scalar(select(func.count(Notification.id)).where(*conditions))
    return {"list": [serialize_notification(n) for n in notis], "totalCount": total}


def mark_as_read(db: Session, user_id: int, notification_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    if not notification:
        raise NotFoundError("Notification not found")
    if notification.user_id != user_id:
        raise ForbiddenError("Not your notification")
    with transaction(db):
        notification.is_read = True
    return notification


# ========== ROUTES ==========

@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    sort: Literal["recent", "old"] = "recent",
    filter: Literal["all", "unChecked", "checked"] = "all",
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_notifications(db, user.id, page, page_size, sort, filter)


@router.patch("/{notification_id}/read")
def read_notification(notification_id: int, user: User = Depends(get_current_user),
                      db: Session = Depends(get_db)):
    return serialize_notification(mark_as_read(db, user.id, notification_id))


@router.get("/sse")
async def stream_notifications(request: Request, user: User = Depends(get_current_user)):
    user_id = user.id

    async def event_stream():
        queue: asyncio.Queue = asyncio.Queue()
        sse_manager.add_client(user_id, queue)
        try:
            yield format_event({"message": "connected"})
            while True:
                if await request.is_disconnected():
                    break
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield message
        finally:
            sse_manager.remove_client(user_id, queue)

    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}
    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=headers)
