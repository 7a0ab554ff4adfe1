import logging
from typing import Dict, Iterable, Literal, Optional, Tuple

from fastapi import APIRouter, Depends, Query
from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session, selectinload

from database import get_db, transaction
from errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from models import (
    CartItem,
    Category,
    Inquiry,
    InquiryReply,
    OrderItem,
    Product,
    ProductStock,
    Review,
    User,
    to_naive_utc,
    utcnow,
)
from schemas import ProductCreatePayload, ProductUpdatePayload, StockPayload
from security import require_seller
from stores import get_seller_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["products"])

SORTS = Literal["salesRanking", "newest", "priceAsc", "priceDesc", "highRating", "mostReviewed"]


def _iso(value):
    return value.isoformat() if value else None


def review_stats(db: Session, product_ids: Iterable[int]) -> Dict[int, Tuple[int, float]]:
    """product id -> (review count, average rating rounded to one decimal)."""
    product_ids = list(product_ids)
    if not product_ids:
        return {}
    rows = db.execute(
        select(Review.product_id, func.count(Review.id), func.avg(Review.rating))
        .where(Review.product_id.in_(product_ids))
        .group_by(Review.product_id)
    ).all()
    return {pid: (count, round(float(avg or 0), 1)) for pid, count, avg in rows}


def serialize_product(product: Product, stats: Tuple[int, float] = (0, 0.0), now=None) -> dict:
    now = now or utcnow()
    active = product.discount_active(now)
    return {
        "id": product.id,
        "storeId": product.store_id,
        "storeName": product.store.name,
        "name": product.name,
        "image": product.image,
        "price": product.price,
        "discountPrice": product.discount_price(now),
        "discountRate": product.discount_rate if active else 0,
        "discountStartTime": _iso(product.discount_start),
        "discountEndTime": _iso(product.discount_end),
        "reviewsCount": stats[0],
        "reviewsRating": stats[1],
        "sales": product.total_sales,
        "isSoldOut": product.is_sold_out,
        "createdAt": product.created_at.isoformat(),
        "updatedAt": product.updated_at.isoformat(),
    }


def serialize_product_detail(db: Session, product: Product) -> dict:
    data = serialize_product(product, review_stats(db, [product.id]).get(product.id, (0, 0.0)))
    data.update({
        "content": product.content,
        "category": {"id": product.category.id, "name": product.category.name},
        "stocks": [{"id": s.id, "size": s.size, "quantity": s.quantity} for s in product.stocks],
    })
    return data


def get_product_or_404(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def get_owned_product(db: Session, seller: User, product_id: int) -> Product:
    product = get_product_or_404(db, product_id)
    if product.store.seller_id != seller.id:
        raise ForbiddenError("Not the owner of this product")
    return product


def get_or_create_category(db: Session, name: str) -> Category:
    category = db.scalars(select(Category).where(Category.name == name)).first()
    if category is None:
        category = Category(name=name)
        db.add(category)
        db.flush()
    return category


def _merge_stocks(product: Product, stocks: Iterable[StockPayload]):
    """Make the product's stock rows match `stocks`, keeping rows whose size survives."""
    wanted = {}
    for stock in stocks:
        wanted[stock.size] = stock.quantity
    for row in list(product.stocks):
        if row.size in wanted:
            row.quantity = wanted.pop(row.size)
        else:
            product.stocks.remove(row)
    for size, quantity in wanted.items():
        product.stocks.append(ProductStock(size=size, quantity=quantity))


def create_product(db: Session, seller: User, body: ProductCreatePayload) -> Product:
    store = get_seller_store(db, seller.id)
    duplicate = db.scalars(select(Product).where(Product.store_id == store.id, Product.name == body.name)).first()
    if duplicate:
        raise ConflictError("A product with this name already exists in the store")
    with transaction(db):
        category = get_or_create_category(db, body.category_name)
        product = Product(
            store_id=store.id, category_id=category.id, name=body.name, content=body.content,
            image=body.image, price=body.price, discount_rate=body.discount_rate,
            discount_start=to_naive_utc(body.discount_start_time),
            discount_end=to_naive_utc(body.discount_end_time),
        )
        _merge_stocks(product, body.stocks)
        db.add(product)
    logger.info("Product %s created in store %s", product.id, store.id)
    return product


def update_product(db: Session, seller: User, product_id: int, body: ProductUpdatePayload) -> Product:
    product = get_owned_product(db, seller, product_id)
    changes = body.model_dump(exclude_unset=True)
    with transaction(db):
        for field in ("name", "price", "content", "image", "discount_rate"):
            if field in changes and changes[field] is not None:
                setattr(product, field, changes[field])
        if "discount_start_time" in changes:
            product.discount_start = to_naive_utc(changes["discount_start_time"])
        if "discount_end_time" in changes:
            product.discount_end = to_naive_utc(changes["discount_end_time"])
        if product.discount_start and product.discount_end and product.discount_start > product.discount_end:
            raise BadRequestError("discountStartTime must not be after discountEndTime")
        if body.category_name:
            product.category_id = get_or_create_category(db, body.category_name).id
        if body.stocks is not None:
            _merge_stocks(product, body.stocks)
    return product


def delete_product(db: Session, seller: User, product_id: int):
    product = get_owned_product(db, seller, product_id)
    ordered = db.scalar(select(exists().where(OrderItem.product_id == product.id)))
    if ordered:
        raise ConflictError("Products with order history cannot be deleted")
    with transaction(db):
        db.query(CartItem).filter(CartItem.product_id == product.id).delete()
        inquiry_ids = select(Inquiry.id).where(Inquiry.product_id == product.id)
        db.query(InquiryReply).filter(InquiryReply.inquiry_id.in_(inquiry_ids)).delete(synchronize_session=False)
        db.query(Inquiry).filter(Inquiry.product_id == product.id).delete()
        db.delete(product)


def list_products(db: Session, page: int = 1, page_size: int = 16, search: Optional[str] = None,
                  sort: str = "newest", price_min: Optional[int] = None, price_max: Optional[int] = None,
                  size: Optional[str] = None, category_name: Optional[str] = None,
                  favorite_store: Optional[int] = None, store_id: Optional[int] = None) -> dict:
    conditions = []
    if search:
        conditions.append(Product.name.ilike(f"%{search}%"))
    if price_min is not None:
        conditions.append(Product.price >= price_min)
    if price_max is not None:
        conditions.append(Product.price <= price_max)
    if size:
        conditions.append(exists().where(ProductStock.product_id == Product.id, ProductStock.size == size))
    if category_name:
        conditions.append(Product.category.has(Category.name == category_name))
    if favorite_store is not None:
        conditions.append(Product.store_id == favorite_store)
    if store_id is not None:
        conditions.append(Product.store_id == store_id)

    ratings = (
        select(Review.product_id, func.avg(Review.rating).label("avg_rating"), func.count(Review.id).label("n"))
        .group_by(Review.product_id)
        .subquery()
    )
    query = select(Product).outerjoin(ratings, ratings.c.product_id == Product.id).where(*conditions)
    order_by = {
        "salesRanking": [Product.total_sales.desc()],
        "priceAsc": [Product.price.asc()],
        "priceDesc": [Product.price.desc()],
        "highRating": [func.coalesce(ratings.c.avg_rating, 0).desc()],
        "mostReviewed": [func.coalesce(ratings.c.n, 0).desc()],
    }.get(sort, [Product.created_at.desc()])
    query = query.order_by(*order_by, Product.id.desc())

    products = db.scalars(
        query.options(selectinload(Product.stocks), selectinload(Product.store))
        .offset((page - 1) * page_size).limit(page_size)
    ).all()
    total = db.scalar(select(func.count(Product.id)).where(*conditions))
    stats = review_stats(db, (p.id for p in products))
    now = utcnow()
    return {
        "list": [serialize_product(p, stats.get(p.id, (0, 0.0)), now) for p in products],
        "totalCount": total,
    }


# ========== ROUTES ==========

@router.get("/products")
def get_products(
    page: int = Query(1, ge=1),
    page_size: int = Query(16, ge=1, le=100, alias="pageSize"),
    search: Optional[str] = None,
    sort: SORTS = "newest",
    price_min: Optional[int] = Query(None, ge=0, alias="priceMin"),
    price_max: Optional[int] = Query(None, ge=0, alias="priceMax"),
    size: Optional[str] = None,
    category_name: Optional[str] = Query(None, alias="categoryName"),
    favorite_store: Optional[int] = Query(None, alias="favoriteStore"),
    db: Session = Depends(get_db),
):
    return list_products(db, page, page_size, search, sort, price_min, price_max, size,
                         category_name, favorite_store)


@router.post("/products", status_code=201)
def post_product(body: ProductCreatePayload, seller: User = Depends(require_seller),
                 db: Session = Depends(get_db)):
    return serialize_product_detail(db, create_product(db, seller, body))


@router.get("/products/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    return serialize_product_detail(db, get_product_or_404(db, product_id))


@router.patch("/products/{product_id}")
def patch_product(product_id: int, body: ProductUpdatePayload, seller: User = Depends(require_seller),
                  db: Session = Depends(get_db)):
    return serialize_product_detail(db, update_product(db, seller, product_id, body))


@router.delete("/products/{product_id}", status_code=204)
def remove_product(product_id: int, seller: User = Depends(require_seller), db: Session = Depends(get_db)):
    delete_product(db, seller, product_id)


@router.get("/stores/my-store/products")
def get_my_store_products(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    seller: User = Depends(require_seller),
    db: Session = Depends(get_db),
):
    store = get_seller_store(db, seller.id)
    return list_products(db, page, page_size, store_id=store.id)


@router.get("/stores/{store_id}/products")
def get_store_products(
    store_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(16, ge=1, le=100, alias="pageSize"),
    db: Session = Depends(get_db),
):
    return list_products(db, page, page_size, store_id=store_id)
