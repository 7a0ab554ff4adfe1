from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import get_db, transaction
from errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from models import Inquiry, InquiryReply, InquiryStatus, Product, Store, User, UserRole
from notifications import create_inquiry_reply_notification
from products import get_product_or_404
from schemas import InquiryPayload, InquiryUpdatePayload, ReplyPayload
from security import get_current_user, get_optional_user

router = APIRouter(tags=["inquiries"])

SECRET_PLACEHOLDER = "This is a secret inquiry."

STATUSES = Literal["WaitingAnswer", "CompletedAnswer"]


def can_view(inquiry: Inquiry, user_id: Optional[int]) -> bool:
    if not inquiry.is_secret:
        return True
    return user_id is not None and user_id in (inquiry.user_id, inquiry.product.store.seller_id)


def serialize_reply(reply: Optional[InquiryReply]) -> Optional[dict]:
    if reply is None:
        return None
    return {
        "id": reply.id,
        "inquiryId": reply.inquiry_id,
        "userId": reply.seller_id,
        "content": reply.content,
        "user": {"id": reply.seller.id, "name": reply.seller.name},
        "createdAt": reply.created_at.isoformat(),
        "updatedAt": reply.updated_at.isoformat(),
    }


def serialize_inquiry(inquiry: Inquiry, viewer_id: Optional[int] = None) -> dict:
    visible = can_view(inquiry, viewer_id)
    product = inquiry.product
    return {
        "id": inquiry.id,
        "userId": inquiry.user_id,
        "productId": inquiry.product_id,
        "title": inquiry.title if visible else SECRET_PLACEHOLDER,
        "content": inquiry.content if visible else SECRET_PLACEHOLDER,
        "isSecret": inquiry.is_secret,
        "status": inquiry.status,
        "user": {"name": inquiry.user.name},
        "product": {
            "id": product.id,
            "name": product.name,
            "image": product.image,
            "store": {"id": product.store.id, "name": product.store.name},
        },
        "reply": serialize_reply(inquiry.reply) if visible else None,
        "createdAt": inquiry.created_at.isoformat(),
        "updatedAt": inquiry.updated_at.isoformat(),
    }


def get_inquiry_or_404(db: Session, inquiry_id: int) -> Inquiry:
    inquiry = db.get(Inquiry, inquiry_id)
    if not inquiry:
        raise NotFoundError("Inquiry not found")
    return inquiry


def create_inquiry(db: Session, user: User, product_id: int, body: InquiryPayload) -> Inquiry:
    get_product_or_404(db, product_id)
    with transaction(db):
        inquiry = Inquiry(user_id=user.id, product_id=product_id, title=body.title, content=body.content,
                          is_secret=body.is_secret, status=InquiryStatus.WAITING)
        db.add(inquiry)
    return inquiry


def list_product_inquiries(db: Session, product_id: int, page: int, page_size: int,
                           viewer_id: Optional[int] = None, status: Optional[str] = None) -> dict:
    get_product_or_404(db, product_id)
    conditions = [Inquiry.product_id == product_id]
    if status:
        conditions.append(Inquiry.status == status)
    inquiries = db.scalars(
        select(Inquiry).where(*conditions).order_by(Inquiry.created_at.desc(), Inquiry.id.desc())
        .offset((page - 1) * page_size).limit(page_size)
    ).all()
    total = db.scalar(select(func.count(Inquiry.id)).where(*conditions))
    return {"list": [serialize_inquiry(i, viewer_id) for i in inquiries], "totalCount": total}


def list_my_inquiries(db: Session, user: User, page: int, page_size: int, status: Optional[str] = None) -> dict:
    """Buyers see what they asked; sellers see what was asked about their products."""
    if user.type == UserRole.SELLER:
        conditions = [Inquiry.product_id.in_(
            select(Product.id).join(Store, Product.store_id == Store.id).where(Store.seller_id == user.id)
        )]
    else:
        conditions = [Inquiry.user_id == user.id]
    if status:
        conditions.append(Inquiry.status == status)
    inquiries = db.scalars(
        select(Inquiry).where(*conditions).order_by(Inquiry.created_at.desc(), Inquiry.id.desc())
        .offset((page - 1) * page_size).limit(page_size)
    ).all()
    total = db.scalar(select(func.count(Inquiry.id)).where(*conditions))
    return {"list": [serialize_inquiry(i, user.id) for i in inquiries], "totalCount": total}


def get_inquiry_detail(db: Session, user_id: Optional[int], inquiry_id: int) -> Inquiry:
    inquiry = get_inquiry_or_404(db, inquiry_id)
    if not can_view(inquiry, user_id):
        raise ForbiddenError("This inquiry is secret")
    return inquiry


def update_inquiry(db: Session, user_id: int, inquiry_id: int, body: InquiryUpdatePayload) -> Inquiry:
    inquiry = get_inquiry_or_404(db, inquiry_id)
    if inquiry.user_id != user_id:
        raise ForbiddenError("You can only edit your own inquiry")
    if inquiry.reply:
        raise BadRequestError("Answered inquiries cannot be edited")
    with transaction(db):
        if body.title is not None:
            inquiry.title = body.title
        if body.content is not None:
            inquiry.content = body.content
        if body.is_secret is not None:
            inquiry.is_secret = body.is_secret
    return inquiry


def delete_inquiry(db: Session, user_id: int, inquiry_id: int) -> dict:
    inquiry = get_inquiry_or_404(db, inquiry_id)
    if inquiry.user_id != user_id:
        raise ForbiddenError("You can only delete your own inquiry")
    snapshot = serialize_inquiry(inquiry, user_id)
    with transaction(db):
        db.delete(inquiry)
    return snapshot


def create_reply(db: Session, seller: User, inquiry_id: int, body: ReplyPayload) -> InquiryReply:
    inquiry = get_inquiry_or_404(db, inquiry_id)
    if inquiry.product.store.seller_id != seller.id:
        raise ForbiddenError("Only the seller of this product can answer")
    if inquiry.reply:
        raise ConflictError("This inquiry has already been answered")
    with transaction(db):
        reply = InquiryReply(inquiry_id=inquiry.id, seller_id=seller.id, content=body.content)
        db.add(reply)
        inquiry.status = InquiryStatus.COMPLETED
        create_inquiry_reply_notification(db, inquiry.user_id, inquiry.product.name)
    return reply


def update_reply(db: Session, seller_id: int, reply_id: int, body: ReplyPayload) -> InquiryReply:
    reply = db.get(InquiryReply, reply_id)
    if not reply:
        raise NotFoundError("Reply not found")
    if reply.seller_id != seller_id:
        raise ForbiddenError("You can only edit your own reply")
    with transaction(db):
        reply.content = body.content
    return reply


# ========== ROUTES ==========

@router.post("/products/{product_id}/inquiries", status_code=201)
def post_inquiry(product_id: int, body: InquiryPayload, user: User = Depends(get_current_user),
                 db: Session = Depends(get_db)):
    return serialize_inquiry(create_inquiry(db, user, product_id, body), user.id)


@router.get("/products/{product_id}/inquiries")
def get_product_inquiries(
    product_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    status: Optional[STATUSES] = None,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    return list_product_inquiries(db, product_id, page, page_size, user.id if user else None, status)


@router.get("/inquiries")
def get_my_inquiries(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    status: Optional[STATUSES] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return list_my_inquiries(db, user, page, page_size, status)


@router.get("/inquiries/{inquiry_id}")
def get_inquiry(inquiry_id: int, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
    viewer_id = user.id if user else None
    return serialize_inquiry(get_inquiry_detail(db, viewer_id, inquiry_id), viewer_id)


@router.patch("/inquiries/{inquiry_id}")
def patch_inquiry(inquiry_id: int, body: InquiryUpdatePayload, user: User = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    return serialize_inquiry(update_inquiry(db, user.id, inquiry_id, body), user.id)


@router.delete("/inquiries/{inquiry_id}")
def remove_inquiry(inquiry_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return delete_inquiry(db, user.id, inquiry_id)


@router.post("/inquiries/{inquiry_id}/replies", status_code=201)
def post_reply(inquiry_id: int, body: ReplyPayload, user: User = Depends(get_current_user),
               db: Session = Depends(get_db)):
    return serialize_reply(create_reply(db, user, inquiry_id, body))


@router.patch("/inquiries/{reply_id}/replies")
def patch_reply(reply_id: int, body: ReplyPayload, user: User = Depends(get_current_user),
                db: Session = Depends(get_db)):
    return serialize_reply(update_reply(db, user.id, reply_id, body))
