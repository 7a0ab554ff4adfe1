from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import get_db, transaction
from errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from models import OrderItem, OrderStatus, Review, User
from products import get_product_or_404
from schemas import ReviewCreatePayload, ReviewUpdatePayload
from security import get_current_user

router = APIRouter(tags=["reviews"])


def serialize_review(review: Review) -> dict:
    return {
        "id": review.id,
        "userId": review.user_id,
        "productId": review.product_id,
        "orderItemId": review.order_item_id,
        "rating": review.rating,
        "content": review.content,
        "user": {"name": review.user.name},
        "size": review.order_item.size,
        "createdAt": review.created_at.isoformat(),
        "updatedAt": review.updated_at.isoformat(),
    }


def get_own_review(db: Session, user_id: int, review_id: int) -> Review:
    review = db.get(Review, review_id)
    if not review:
        raise NotFoundError("Review not found")
    if review.user_id != user_id:
        raise ForbiddenError("Not your review")
    return review


def create_review(db: Session, user_id: int, product_id: int, body: ReviewCreatePayload) -> Review:
    get_product_or_404(db, product_id)
    order_item = db.get(OrderItem, body.order_item_id)
    if not order_item:
        raise NotFoundError("Order item not found")
    if order_item.product_id != product_id:
        raise BadRequestError("Order item does not belong to this product")
    if order_item.order.user_id != user_id:
        raise ForbiddenError("You can only review your own purchases")
    if order_item.order.status == OrderStatus.CANCELED:
        raise BadRequestError("Canceled orders cannot be reviewed")
    if db.scalars(select(Review).where(Review.order_item_id == order_item.id)).first():
        raise ConflictError("This purchase has already been reviewed")
    with transaction(db):
        review = Review(user_id=user_id, product_id=product_id, order_item_id=order_item.id,
                        rating=body.rating, content=body.content)
        db.add(review)
    return review


def list_reviews(db: Session, product_id: int, page: int = 1, limit: int = 5) -> dict:
    get_product_or_404(db, product_id)
    reviews = db.scalars(
        select(Review).where(Review.product_id == product_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .offset((page - 1) * limit).limit(limit)
    ).all()
    total, average = db.execute(
        select(func.count(Review.id), func.avg(Review.rating)).where(Review.product_id == product_id)
    ).one()
    counts = dict(db.execute(
        select(Review.rating, func.count(Review.id)).where(Review.product_id == product_id).group_by(Review.rating)
    ).all())
    return {
        "items": [serialize_review(r) for r in reviews],
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "hasNextPage": page * limit < total,
        },
        "summary": {
            "averageRating": round(float(average or 0), 1),
            "ratingCounts": {str(score): counts.get(score, 0) for score in range(1, 6)},
        },
    }


def update_review(db: Session, user_id: int, review_id: int, body: ReviewUpdatePayload) -> Review:
    review = get_own_review(db, user_id, review_id)
    with transaction(db):
        if body.rating is not None:
            review.rating = body.rating
        if body.content is not None:
            review.content = body.content
    return review


def delete_review(db: Session, user_id: int, review_id: int):
    review = get_own_review(db, user_id, review_id)
    with transaction(db):
        db.delete(review)


# ========== ROUTES ==========

@router.get("/product/{product_id}/reviews")
def get_product_reviews(product_id: int, page: int = Query(1, ge=1), limit: int = Query(5, ge=1, le=50),
                        db: Session = Depends(get_db)):
    return list_reviews(db, product_id, page, limit)


@router.post("/product/{product_id}/reviews", status_code=201)
def post_product_review(product_id: int, body: ReviewCreatePayload, user: User = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    return serialize_review(create_review(db, user.id, product_id, body))


@router.get("/review/{review_id}")
def get_review(review_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return serialize_review(get_own_review(db, user.id, review_id))


@router.patch("/review/{review_id}")
def patch_review(review_id: int, body: ReviewUpdatePayload, user: User = Depends(get_current_user),
                 db: Session = Depends(get_db)):
    return serialize_review(update_review(db, user.id, review_id, body))


@router.delete("/review/{review_id}", status_code=204)
def remove_review(review_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    delete_review(db, user.id, review_id)
