"""
Admin dashboard and analytics.

The analytics endpoints are public and read-only; everything else requires an admin token.
Date buckets are built from $year/$month/$dayOfMonth groups and formatted here.
"""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from builders import now, parse_int
from database import Database, count_documents, find_all, find_by_id, get_db, require
from orders import transition_order
from responses import ok, page_window, pagination
from security import require_admin
from uploads import ParsedBody, parsed_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

NOT_CANCELLED = {"$ne": "Cancelled"}
DAY = {"year": {"$year": "$createdAt"}, "month": {"$month": "$createdAt"}, "day": {"$dayOfMonth": "$createdAt"}}


def _since(days) -> dict:
    n = parse_int(days)
    return {"$gte": now() - timedelta(days=n if n is not None else 30)}


def _day_label(key: dict) -> str:
    return f"{key['year']:04d}-{key['month']:02d}-{key['day']:02d}"


def _sum(collection, match: dict, op: str = "$sum") -> float:
    rows = list(collection.aggregate([
        {"$match": match},
        {"$group": {"_id": None, "value": {op: "$totalAmount"}}},
    ]))
    return rows[0]["value"] if rows and rows[0]["value"] is not None else 0


def _populate_products(db: Database, orders: list) -> list:
    ids = {item.get("product") for order in orders for item in order.get("items", [])}
    products = {p["_id"]: p for p in find_all(db["product"], {"_id": {"$in": [i for i in ids if i]}})}
    for order in orders:
        for item in order.get("items", []):
            item["product"] = products.get(item.get("product"), item.get("product"))
    return orders


# ---------------------- Analytics ----------------------

@router.get("/analytics")
def analytics(days: str = Query(default="30"), db: Database = Depends(get_db)):
    orders = db["order"]
    since = _since(days)
    window = {"createdAt": since, "status": NOT_CANCELLED}

    customers = list(orders.aggregate([
        {"$match": {"createdAt": since}},
        {"$group": {"_id": "$customer.email"}},
    ]))
    daily = list(orders.aggregate([
        {"$match": window},
        {"$group": {"_id": DAY, "revenue": {"$sum": "$totalAmount"}, "orders": {"$sum": 1}}},
    ]))
    daily.sort(key=lambda row: _day_label(row["_id"]))

    top_products = list(orders.aggregate([
        {"$match": window},
        {"$unwind": "$items"},
        {"$group": {"_id": "$items.product", "sales": {"$sum": "$items.quantity"}}},
        {"$lookup": {"from": "product", "localField": "_id", "foreignField": "_id", "as": "product"}},
        {"$unwind": "$product"},
        {"$project": {"name": "$product.name", "sales": 1}},
        {"$sort": {"sales": -1}},
        {"$limit": 5},
    ]))
    category_data = list(orders.aggregate([
        {"$match": window},
        {"$unwind": "$items"},
        {"$lookup": {"from": "product", "localField": "items.product", "foreignField": "_id", "as": "product"}},
        {"$unwind": "$product"},
        {"$unwind": "$product.categories"},
        {"$group": {"_id": "$product.categories", "value": {"$sum": "$items.quantity"}}},
        {"$project": {"name": "$_id", "value": 1}},
        {"$sort": {"value": -1}},
    ]))

    return ok(
        summary={
            "totalOrders": count_documents(orders),
            "totalRevenue": _sum(orders, {"status": NOT_CANCELLED}),
            "averageOrderValue": _sum(orders, {"status": NOT_CANCELLED}, "$avg"),
            "newCustomers": len(customers),
        },
        revenueData=[{"date": _day_label(row["_id"]), "revenue": row["revenue"]} for row in daily],
        ordersData=[{"date": _day_label(row["_id"]), "orders": row["orders"]} for row in daily],
        topProducts=top_products,
        categoryData=category_data,
    )


@router.get("/analytics/sales")
def sales_analytics(period: str = Query(default="daily"), days_range: str = Query(default="30", alias="range"),
                    db: Database = Depends(get_db)):
    if period == "yearly":
        group, label = {"year": {"$year": "$createdAt"}}, lambda k: f"{k['year']:04d}"
    elif period == "monthly":
        group = {"year": {"$year": "$createdAt"}, "month": {"$month": "$createdAt"}}
        label = lambda k: f"{k['year']:04d}-{k['month']:02d}"
    else:
        group, label = DAY, _day_label

    rows = list(db["order"].aggregate([
        {"$match": {"createdAt": _since(days_range), "status": NOT_CANCELLED}},
        {"$group": {"_id": group, "totalSales": {"$sum": "$totalAmount"}, "orderCount": {"$sum": 1}}},
    ]))
    data = sorted(({**row, "_id": label(row["_id"])} for row in rows), key=lambda row: row["_id"])
    return ok(data, period=period, range=parse_int(days_range) or 30)


@router.get("/analytics/orders")
def order_analytics(days: str = Query(default="30"), db: Database = Depends(get_db)):
    since = _since(days)
    status_data = list(db["order"].aggregate([
        {"$match": {"createdAt": since}},
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
        {"$project": {"status": "$_id", "count": 1}},
        {"$sort": {"count": -1}},
    ]))
    daily = list(db["order"].aggregate([
        {"$match": {"createdAt": since}},
        {"$group": {"_id": {**DAY, "status": "$status"}, "count": {"$sum": 1}}},
    ]))
    daily_orders = sorted(
        ({"_id": {"date": _day_label(row["_id"]), "status": row["_id"]["status"]}, "count": row["count"]}
         for row in daily),
        key=lambda row: row["_id"]["date"],
    )
    return ok({"statusData": status_data, "dailyOrders": daily_orders})


# ---------------------- Dashboard ----------------------

@router.get("/dashboard")
def dashboard(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return ok(
        stats={
            "totalProducts": count_documents(db["product"]),
            "totalOrders": count_documents(db["order"]),
            "pendingOrders": count_documents(db["order"], {"status": "Pending"}),
            "totalRevenue": _sum(db["order"], {}),
        },
        recentOrders=find_all(db["order"], sort={"createdAt": -1}, limit=5),
        lowStockProducts=find_all(db["product"], {"stock_status": "out_of_stock"}, limit=5),
    )


@router.get("/products")
def admin_products(page: Optional[str] = None, limit: Optional[str] = None, category: Optional[str] = None,
                   featured: Optional[str] = None, admin=Depends(require_admin), db: Database = Depends(get_db)):
    q = {}
    if category:
        q["categories"] = category
    if featured is not None:
        q["featured"] = featured == "true"
    page, limit, skip = page_window(page, limit, 20)
    items = find_all(db["product"], q, sort={"created_at": -1}, skip=skip, limit=limit)
    return ok(products=items, pagination=pagination(page, limit, count_documents(db["product"], q)))


@router.get("/orders")
def admin_orders(page: Optional[str] = None, limit: Optional[str] = None, status: Optional[str] = None,
                 admin=Depends(require_admin), db: Database = Depends(get_db)):
    q = {"status": status} if status else {}
    page, limit, skip = page_window(page, limit, 20)
    items = _populate_products(db, find_all(db["order"], q, sort={"createdAt": -1}, skip=skip, limit=limit))
    return ok(orders=items, pagination=pagination(page, limit, count_documents(db["order"], q)))


@router.patch("/orders/{order_id}/status")
def admin_order_status(order_id: str, body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                       db: Database = Depends(get_db)):
    status = body.fields.get("status")
    order = require(find_by_id(db["order"], order_id), "Order not found")
    updated = transition_order(db, order, status, reason=body.fields.get("reason"))
    logger.info("Admin %s set order %s to %s", admin.get("username"), order_id, status)
    return ok(_populate_products(db, [updated])[0], f"Order {status.lower()} successfully")
