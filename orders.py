import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from builders import build_order, order_transition
from database import (
    Database,
    count_documents,
    delete_by_id,
    find_all,
    find_by_id,
    get_db,
    insert_one,
    require,
    update_by_id,
)
from responses import ok, page_window, pagination
from schemas import Order, validate_document, validate_update
from security import require_admin
from uploads import ParsedBody, parsed_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


def transition_order(db: Database, order: dict, status: str, **kwargs) -> dict:
    update = order_transition(order, status, **kwargs)
    validate_update(Order, order, update)
    updated = update_by_id(db["order"], order["_id"], update)
    logger.info("Order %s moved from %s to %s", order["_id"], order.get("status"), status)
    return updated


@router.get("")
def list_orders(status: Optional[str] = None, page: Optional[str] = None, limit: Optional[str] = None,
                db: Database = Depends(get_db)):
    q = {"status": status} if status else {}
    page, limit, skip = page_window(page, limit, 20)
    items = find_all(db["order"], q, sort={"createdAt": -1}, skip=skip, limit=limit)
    total = count_documents(db["order"], q)
    return ok(items, "Orders fetched successfully", pagination=pagination(page, limit, total))


@router.get("/stats/summary")
def order_stats(db: Database = Depends(get_db)):
    col = db["order"]
    revenue = list(col.aggregate([
        {"$match": {"status": {"$ne": "Cancelled"}}},
        {"$group": {"_id": None, "total": {"$sum": "$totalAmount"}}},
    ]))
    return ok({
        "totalOrders": count_documents(col),
        "pendingOrders": count_documents(col, {"status": "Pending"}),
        "dispatchedOrders": count_documents(col, {"status": "Dispatched"}),
        "deliveredOrders": count_documents(col, {"status": "Delivered"}),
        "cancelledOrders": count_documents(col, {"status": "Cancelled"}),
        "totalRevenue": revenue[0]["total"] if revenue else 0,
    }, "Order statistics fetched successfully")


@router.get("/{order_id}")
def get_order(order_id: str, db: Database = Depends(get_db)):
    return ok(require(find_by_id(db["order"], order_id), "Order not found"), "Order fetched successfully")


@router.post("", status_code=201)
def create_order(body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                 db: Database = Depends(get_db)):
    doc = validate_document(Order, build_order(body.fields))
    order = insert_one(db["order"], doc)
    logger.info("Order %s created for %s", order["_id"], order["customer"].get("email"))
    return ok(order, "Order created successfully")


@router.patch("/{order_id}/status")
def update_order_status(order_id: str, body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                        db: Database = Depends(get_db)):
    status = body.fields.get("status")
    order = require(find_by_id(db["order"], order_id), "Order not found")
    updated = transition_order(db, order, status, reason=body.fields.get("reason"), tracking=body.fields.get("tracking"))
    return ok(updated, f"Order {status.lower()} successfully")


@router.patch("/{order_id}/dispatch")
def dispatch_order(order_id: str, body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                   db: Database = Depends(get_db)):
    order = require(find_by_id(db["order"], order_id), "Order not found")
    if order.get("status") != "Pending":
        raise HTTPException(status_code=400, detail="Only pending orders can be dispatched")
    tracking = {key: body.fields.get(key) for key in ("trackingNumber", "carrier", "estimatedDelivery")}
    return ok(transition_order(db, order, "Dispatched", tracking=tracking), "Order dispatched successfully")


@router.patch("/{order_id}/cancel")
def cancel_order(order_id: str, body: ParsedBody = Depends(parsed_body()), admin=Depends(require_admin),
                 db: Database = Depends(get_db)):
    order = require(find_by_id(db["order"], order_id), "Order not found")
    return ok(transition_order(db, order, "Cancelled", reason=body.fields.get("reason")), "Order cancelled successfully")


@router.delete("/{order_id}")
def delete_order(order_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    require(delete_by_id(db["order"], order_id), "Order not found")
    return ok(message="Order deleted successfully")
