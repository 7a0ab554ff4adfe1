"""
Seller dashboard

Read-only aggregation over order items of the seller's store. Canceled
orders never count; revenue uses the unit price captured on each order line.
"""
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import get_db
from errors import BadRequestError
from models import Order, OrderItem, OrderStatus, Product, Store, User, to_naive_utc, utcnow
from security import require_seller

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

TOP_PRODUCTS = 5
DEFAULT_WINDOW_DAYS = 30

# (label, lowest unit price, highest unit price or None for no ceiling)
PRICE_RANGES = (
    ("~10,000", 0, 10000),
    ("10,001~30,000", 10001, 30000),
    ("30,001~50,000", 30001, 50000),
    ("50,001~100,000", 50001, 100000),
    ("100,001~", 100001, None),
)


def _seller_store_id(db: Session, seller_id: int) -> Optional[int]:
    return db.scalar(select(Store.id).where(Store.seller_id == seller_id))


def _window(store_id: int, start: datetime, end: datetime) -> list:
    return [
        Product.store_id == store_id,
        Order.status != OrderStatus.CANCELED,
        Order.payment_date >= start,
        Order.payment_date < end,
    ]


def sales_summary(db: Session, store_id: Optional[int], start: datetime, end: datetime) -> dict:
    if store_id is None:
        return {"totalOrders": 0, "totalSales": 0}
    orders, sales = db.execute(
        select(func.count(func.distinct(OrderItem.order_id)), func.sum(OrderItem.price * OrderItem.quantity))
        .select_from(OrderItem)
        .join(Order, OrderItem.order_id == Order.id)
        .join(Product, OrderItem.product_id == Product.id)
        .where(*_window(store_id, start, end))
    ).one()
    return {"totalOrders": orders or 0, "totalSales": int(sales or 0)}


def change_rate(current: int, previous: int) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 2)


def top_products(db: Session, store_id: Optional[int], start: datetime, end: datetime) -> list:
    if store_id is None:
        return []
    sold = func.sum(OrderItem.quantity).label("sold")
    rows = db.execute(
        select(Product, sold)
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, OrderItem.order_id == Order.id)
        .where(*_window(store_id, start, end))
        .group_by(Product.id)
        .order_by(sold.desc(), Product.id)
        .limit(TOP_PRODUCTS)
    ).all()
    return [
        {"totalOrders": int(count), "products": {"id": product.id, "name": product.name, "price": product.price}}
        for product, count in rows
    ]


def _price_range_label(price: int) -> str:
    for label, low, high in PRICE_RANGES:
        if price >= low and (high is None or price <= high):
            return label
    return PRICE_RANGES[0][0]


def sales_by_price(db: Session, store_id: Optional[int], start: datetime, end: datetime) -> list:
    revenue = {label: 0 for label, _, _ in PRICE_RANGES}
    if store_id is not None:
        rows = db.execute(
            select(OrderItem.price, OrderItem.quantity)
            .select_from(OrderItem)
            .join(Order, OrderItem.order_id == Order.id)
            .join(Product, OrderItem.product_id == Product.id)
            .where(*_window(store_id, start, end))
        ).all()
        for price, quantity in rows:
            revenue[_price_range_label(price)] += price * quantity
    total = sum(revenue.values())
    return [
        {
            "priceRange": label,
            "totalSales": revenue[label],
            "percentage": round(revenue[label] / total * 100, 2) if total else 0,
        }
        for label, _, _ in PRICE_RANGES
    ]


def period_bounds(now: datetime) -> dict:
    """Current and previous calendar period for each dashboard tile."""
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week = today - timedelta(days=today.weekday())
    month = today.replace(day=1)
    prev_month = (month - timedelta(days=1)).replace(day=1)
    year = today.replace(month=1, day=1)
    return {
        "today": (today, today + timedelta(days=1), today - timedelta(days=1)),
        "week": (week, week + timedelta(days=7), week - timedelta(days=7)),
        "month": (month, _next_month(month), prev_month),
        "year": (year, year.replace(year=year.year + 1), year.replace(year=year.year - 1)),
    }


def _next_month(first_day: datetime) -> datetime:
    if first_day.month == 12:
        return first_day.replace(year=first_day.year + 1, month=1)
    return first_day.replace(month=first_day.month + 1)


def period_data(db: Session, store_id: Optional[int], start: datetime, end: datetime,
                previous_start: datetime) -> dict:
    current = sales_summary(db, store_id, start, end)
    previous = sales_summary(db, store_id, previous_start, start)
    return {
        "current": current,
        "previous": previous,
        "changeRate": {
            "totalOrders": change_rate(current["totalOrders"], previous["totalOrders"]),
            "totalSales": change_rate(current["totalSales"], previous["totalSales"]),
        },
    }


def build_dashboard(db: Session, seller_id: int, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    store_id = _seller_store_id(db, seller_id)
    data = {
        name: period_data(db, store_id, start, end, previous_start)
        for name, (start, end, previous_start) in period_bounds(now).items()
    }
    # rankings cover the whole history of the store
    since, until = datetime.min, now + timedelta(days=1)
    data["topSales"] = top_products(db, store_id, since, until)
    data["priceRange"] = sales_by_price(db, store_id, since, until)
    return data


def resolve_window(start_date: Optional[datetime], end_date: Optional[datetime]) -> tuple:
    end = to_naive_utc(end_date) or utcnow()
    start = to_naive_utc(start_date) or end - timedelta(days=DEFAULT_WINDOW_DAYS)
    if start > end:
        raise BadRequestError("startDate must be before endDate")
    return start, end


# ========== ROUTES ==========

@router.get("")
def get_dashboard(seller: User = Depends(require_seller), db: Session = Depends(get_db)):
    return build_dashboard(db, seller.id)


@router.get("/summary")
def get_summary(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    seller: User = Depends(require_seller),
    db: Session = Depends(get_db),
):
    start, end = resolve_window(start_date, end_date)
    return sales_summary(db, _seller_store_id(db, seller.id), start, end)


@router.get("/top-products")
def get_top_products(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    seller: User = Depends(require_seller),
    db: Session = Depends(get_db),
):
    start, end = resolve_window(start_date, end_date)
    return top_products(db, _seller_store_id(db, seller.id), start, end)


@router.get("/sales-by-price")
def get_sales_by_price(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    seller: User = Depends(require_seller),
    db: Session = Depends(get_db),
):
    start, end = resolve_window(start_date, end_date)
    return sales_by_price(db, _seller_store_id(db, seller.id), start, end)
