"""
Checkout and order history.

Placing an order turns the user's cart into an immutable order: stock is
debited, the order with its item snapshots is written and the cart emptied,
all inside one transaction. Stock is decremented with the quantity check in
the update filter, so two checkouts racing for the last units cannot both
succeed.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo.client_session import ClientSession
from pymongo.database import Database

import config
from database import get_db, page_params, paginate, run_in_transaction, serialize_doc, to_object_id, utcnow
from errors import BadRequestError, NotFoundError
from schemas import ORDER_STATUSES, Order as OrderSchema, OrderLine, ShippingAddress
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

CENT = Decimal("0.01")


class ShippingAddressIn(BaseModel):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def is_complete(self) -> bool:
        return all([self.line1, self.city, self.state, self.postal_code, self.country])


class OrderIn(BaseModel):
    shipping_address: Optional[ShippingAddressIn] = None


def _round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(lines: Iterable[Tuple[float, int]]) -> Dict[str, float]:
    """Price a list of (unit price, quantity) pairs.

    Free shipping from FREE_SHIPPING_THRESHOLD up, flat rate below it;
    tax is TAX_RATE of the subtotal. Every amount is rounded to cents.
    """
    subtotal = _round2(sum((Decimal(str(price)) * quantity for price, quantity in lines), Decimal("0")))
    shipping = Decimal("0") if subtotal >= Decimal(str(config.FREE_SHIPPING_THRESHOLD)) else Decimal(str(config.FLAT_SHIPPING))
    tax = _round2(subtotal * Decimal(str(config.TAX_RATE)))
    total = _round2(subtotal + shipping + tax)
    return {
        "subtotal": float(subtotal),
        "shipping": float(shipping),
        "tax": float(tax),
        "total": float(total),
    }


def release_stock(db: Database, lines: List[Tuple[ObjectId, int]], session: Optional[ClientSession] = None) -> None:
    for product_id, quantity in lines:
        db["product"].update_one(
            {"_id": product_id},
            {"$inc": {"stock_count": quantity}, "$set": {"in_stock": True, "updated_at": utcnow()}},
            session=session,
        )
    if lines:
        logger.warning("Restored stock for %d product(s) after failed checkout", len(lines))


def reserve_stock(db: Database, lines: List[Tuple[ObjectId, int, str]], session: Optional[ClientSession] = None) -> List[Tuple[ObjectId, int]]:
    """Debit ``quantity`` units of each product, or none of them.

    Each line is (product id, quantity, product name). Without a session the
    decrements already applied are given back before the error propagates.
    """
    reserved: List[Tuple[ObjectId, int]] = []
    try:
        for product_id, quantity, name in lines:
            res = db["product"].update_one(
                {"_id": product_id, "stock_count": {"$gte": quantity}},
                {"$inc": {"stock_count": -quantity}, "$set": {"updated_at": utcnow()}},
                session=session,
            )
            if res.modified_count == 0:
                raise BadRequestError(f'"{name}" is out of stock or has insufficient quantity')
            reserved.append((product_id, quantity))
            db["product"].update_one(
                {"_id": product_id, "stock_count": {"$lte": 0}},
                {"$set": {"in_stock": False}},
                session=session,
            )
    except Exception:
        if session is None:
            release_stock(db, reserved)
        raise
    return reserved


def _product_summaries(db: Database, product_ids: Iterable[ObjectId]) -> Dict[ObjectId, Dict[str, Any]]:
    fields = {"slug": 1, "images": 1, "in_stock": 1}
    return {
        p["_id"]: {"id": str(p["_id"]), "slug": p.get("slug"), "images": p.get("images", []), "in_stock": p.get("in_stock")}
        for p in db["product"].find({"_id": {"$in": list(product_ids)}}, fields)
    }


def render_orders(db: Database, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Serialize orders, linking each item snapshot to its live product (None if deleted)."""
    summaries = _product_summaries(db, {it["product_id"] for o in orders for it in o.get("items", [])})
    out = []
    for order in orders:
        item = serialize_doc(order)
        for line, raw in zip(item["items"], order.get("items", [])):
            line["product"] = summaries.get(raw["product_id"])
        out.append(item)
    return out


def render_order(db: Database, order: Dict[str, Any]) -> Dict[str, Any]:
    return render_orders(db, [order])[0]


def create_order(db: Database, user: Dict[str, Any], address: ShippingAddress) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user["_id"]})
    if not cart or not cart.get("items"):
        raise BadRequestError("Cart is empty")

    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": [line["product_id"] for line in cart["items"]]}})}
    lines = []
    for line in cart["items"]:
        product = products.get(line["product_id"])
        if not product:
            raise BadRequestError("A product in your cart is no longer available")
        if not product.get("in_stock") or product.get("stock_count", 0) < line["quantity"]:
            raise BadRequestError(f'"{product["name"]}" is out of stock or has insufficient quantity')
        lines.append((product, line["quantity"]))

    totals = compute_totals((p["price"], qty) for p, qty in lines)
    order = OrderSchema(
        user_id=user["_id"],
        status="pending",
        shipping_address=address,
        items=[OrderLine(product_id=p["_id"], name=p["name"], price=p["price"], quantity=qty) for p, qty in lines],
        **totals,
    )
    doc = order.model_dump(by_alias=True)
    doc["_id"] = ObjectId()
    stock_lines = [(p["_id"], qty, p["name"]) for p, qty in lines]

    def place(session: Optional[ClientSession]) -> ObjectId:
        reserved = reserve_stock(db, stock_lines, session)
        try:
            db["order"].insert_one(dict(doc), session=session)
            db["cart"].update_one(
                {"_id": cart["_id"]},
                {"$set": {"items": [], "updated_at": utcnow()}},
                session=session,
            )
        except Exception:
            if session is None:
                db["order"].delete_one({"_id": doc["_id"]})
                release_stock(db, reserved)
            raise
        return doc["_id"]

    try:
        order_id = run_in_transaction(db, place)
    except BadRequestError as exc:
        logger.info("Checkout rejected for user %s: %s", user["_id"], exc.detail)
        raise
    logger.info("Order %s placed by user %s, total %.2f", order_id, user["_id"], totals["total"])
    return db["order"].find_one({"_id": order_id})


def set_order_status(db: Database, order_id: str, status: Optional[str]) -> Dict[str, Any]:
    """Overwrite an order's status; any of the known statuses may follow any other."""
    if not status or status not in ORDER_STATUSES:
        raise BadRequestError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
    obj_id = to_object_id(order_id)
    order = db["order"].find_one({"_id": obj_id}) if obj_id else None
    if not order:
        raise NotFoundError("Order not found")
    db["order"].update_one({"_id": obj_id}, {"$set": {"status": status, "updated_at": utcnow()}})
    logger.info("Order %s status %s -> %s", obj_id, order.get("status"), status)
    return db["order"].find_one({"_id": obj_id})


# Routes
@router.get("")
def get_user_orders(page: int = 1, limit: int = 10, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    page, limit = page_params(page, limit, 10, 50)
    envelope = paginate(db["order"], {"user_id": current_user["_id"]}, [("created_at", -1), ("_id", -1)], page, limit, transform=lambda d: d)
    envelope["data"] = render_orders(db, envelope["data"])
    return envelope


@router.get("/{order_id}")
def get_order_by_id(order_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    obj_id = to_object_id(order_id)
    order = db["order"].find_one({"_id": obj_id}) if obj_id else None
    # other customers' orders are reported as missing
    if not order or (order["user_id"] != current_user["_id"] and current_user.get("role") != "admin"):
        raise NotFoundError("Order not found")
    return render_order(db, order)


@router.post("", status_code=201)
def place_order(data: OrderIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    if not data.shipping_address or not data.shipping_address.is_complete():
        raise BadRequestError("Complete shipping address is required")
    address = ShippingAddress(**data.shipping_address.model_dump())
    return render_order(db, create_order(db, current_user, address))
