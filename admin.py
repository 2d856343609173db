"""
Admin back-office: analytics, catalog management, order moderation and the
customer list. Every route requires the admin role.
"""

import logging
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo.client_session import ClientSession
from pymongo.database import Database

from database import get_db, page_params, paginate, run_in_transaction, serialize_doc, to_object_id, utcnow
from errors import NotFoundError
from orders import render_orders, set_order_status
from schemas import Product as ProductSchema
from security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])

NOT_CANCELLED = {"status": {"$ne": "cancelled"}}


def slugify(text: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def unique_slug(db: Database, name: str, exclude_id: Optional[ObjectId] = None) -> str:
    slug = slugify(name) or "product"
    query: Dict[str, Any] = {"slug": slug}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if db["product"].find_one(query):
        slug = f"{slug}-{int(time.time() * 1000):x}"
    return slug


def months_ago(now: datetime, months: int) -> datetime:
    """First instant of the month ``months`` before ``now``'s month."""
    index = now.year * 12 + (now.month - 1) - months
    return now.replace(year=index // 12, month=index % 12 + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


def user_summary(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {
        "id": str(user["_id"]),
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "email": user.get("email"),
    }


def _users_by_id(db: Database, user_ids) -> Dict[ObjectId, Dict[str, Any]]:
    return {u["_id"]: u for u in db["user"].find({"_id": {"$in": list(user_ids)}})}


def _orders_with_users(db: Database, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    users = _users_by_id(db, {o["user_id"] for o in orders})
    rendered = render_orders(db, orders)
    for item, order in zip(rendered, orders):
        item["user"] = user_summary(users.get(order["user_id"]))
    return rendered


def _category_summary(category: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not category:
        return None
    return {"id": str(category["_id"]), "name": category["name"], "slug": category["slug"]}


def _products_with_category(db: Database, products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    categories = {c["_id"]: c for c in db["category"].find({"_id": {"$in": list({p["category_id"] for p in products})}})}
    out = []
    for p in products:
        item = serialize_doc(p)
        item["category"] = _category_summary(categories.get(p["category_id"]))
        out.append(item)
    return out


# Analytics
@router.get("/analytics")
def get_analytics(db: Database = Depends(get_db)):
    revenue_row = next(iter(db["order"].aggregate([
        {"$match": NOT_CANCELLED},
        {"$group": {"_id": None, "total": {"$sum": "$total"}}},
    ])), None)

    status_distribution = {
        row["_id"]: row["count"]
        for row in db["order"].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])
    }

    recent = list(db["order"].find().sort([("created_at", -1), ("_id", -1)]).limit(5))
    users = _users_by_id(db, {o["user_id"] for o in recent})
    recent_orders = [
        {
            "id": str(o["_id"]),
            "status": o["status"],
            "total": o["total"],
            "item_count": sum(it["quantity"] for it in o.get("items", [])),
            "created_at": o.get("created_at"),
            "user": user_summary(users.get(o["user_id"])),
        }
        for o in recent
    ]

    sold = list(db["order"].aggregate([
        {"$unwind": "$items"},
        {"$group": {"_id": "$items.product_id", "total_sold": {"$sum": "$items.quantity"}}},
        {"$sort": {"total_sold": -1}},
        {"$limit": 5},
    ]))
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": [row["_id"] for row in sold]}})}
    top_products = []
    for row in sold:
        product = products.get(row["_id"])
        top_products.append({
            "product_id": str(row["_id"]),
            "total_sold": row["total_sold"],
            "name": product["name"] if product else "Unknown Product",
            "image": (product.get("images") or [None])[0] if product else None,
            "price": product["price"] if product else 0,
        })

    since = months_ago(utcnow(), 11)
    monthly = db["order"].aggregate([
        {"$match": {"created_at": {"$gte": since}, "status": {"$ne": "cancelled"}}},
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
            "revenue": {"$sum": "$total"},
            "orders": {"$sum": 1},
        }},
    ])
    monthly_sales = sorted(
        (
            {"month": f"{row['_id']['year']:04d}-{row['_id']['month']:02d}", "revenue": round(row["revenue"], 2), "orders": row["orders"]}
            for row in monthly
        ),
        key=lambda m: m["month"],
    )

    return {
        "total_revenue": round(revenue_row["total"], 2) if revenue_row else 0,
        "total_orders": db["order"].count_documents({}),
        "total_customers": db["user"].count_documents({"role": "customer"}),
        "total_products": db["product"].count_documents({}),
        "status_distribution": status_distribution,
        "recent_orders": recent_orders,
        "top_products": top_products,
        "monthly_sales": monthly_sales,
    }


# Products
class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    compare_at_price: Optional[float] = Field(default=None, ge=0)
    category_id: str
    brand: str = Field(..., min_length=1)
    images: List[str] = []
    in_stock: bool = True
    stock_count: int = Field(0, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    compare_at_price: Optional[float] = Field(default=None, ge=0)
    category_id: Optional[str] = None
    brand: Optional[str] = None
    images: Optional[List[str]] = None
    in_stock: Optional[bool] = None
    stock_count: Optional[int] = Field(default=None, ge=0)


def _require_category(db: Database, category_id: str) -> ObjectId:
    obj_id = to_object_id(category_id)
    if not obj_id or not db["category"].find_one({"_id": obj_id}):
        raise NotFoundError("Category not found")
    return obj_id


@router.get("/products")
def get_admin_products(
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    category: Optional[str] = None,
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit, 20, 50)
    query: Dict[str, Any] = {}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"brand": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        cat = db["category"].find_one({"slug": category})
        query["category_id"] = cat["_id"] if cat else None
    envelope = paginate(db["product"], query, [("created_at", -1), ("_id", -1)], page, limit, transform=lambda d: d)
    envelope["data"] = _products_with_category(db, envelope["data"])
    return envelope


@router.post("/products", status_code=201)
def create_product(data: ProductIn, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    category_id = _require_category(db, data.category_id)
    product = ProductSchema(
        **data.model_dump(exclude={"category_id"}),
        slug=unique_slug(db, data.name),
        category_id=category_id,
    )
    res = db["product"].insert_one(product.model_dump())
    logger.info("Admin %s created product %s (%s)", admin["_id"], res.inserted_id, product.slug)
    return _products_with_category(db, [db["product"].find_one({"_id": res.inserted_id})])[0]


@router.put("/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    obj_id = to_object_id(product_id)
    existing = db["product"].find_one({"_id": obj_id}) if obj_id else None
    if not existing:
        raise NotFoundError("Product not found")

    update_dict = data.model_dump(exclude_unset=True)
    for key in ("name", "description", "price", "brand", "images", "in_stock", "stock_count", "category_id"):
        # these cannot be unset
        if key in update_dict and update_dict[key] is None:
            update_dict.pop(key)
    if "category_id" in update_dict:
        update_dict["category_id"] = _require_category(db, update_dict["category_id"])
    if "name" in update_dict and update_dict["name"] != existing["name"]:
        update_dict["slug"] = unique_slug(db, update_dict["name"], exclude_id=obj_id)
    update_dict["updated_at"] = utcnow()

    db["product"].update_one({"_id": obj_id}, {"$set": update_dict})
    logger.info("Admin %s updated product %s: %s", admin["_id"], obj_id, sorted(update_dict))
    return _products_with_category(db, [db["product"].find_one({"_id": obj_id})])[0]


@router.delete("/products/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    obj_id = to_object_id(product_id)
    if not obj_id or not db["product"].find_one({"_id": obj_id}):
        raise NotFoundError("Product not found")

    def purge(session: Optional[ClientSession]) -> None:
        db["cart"].update_many({"items.product_id": obj_id}, {"$pull": {"items": {"product_id": obj_id}}}, session=session)
        db["wishlist_item"].delete_many({"product_id": obj_id}, session=session)
        db["review"].delete_many({"product_id": obj_id}, session=session)
        db["product"].delete_one({"_id": obj_id}, session=session)

    run_in_transaction(db, purge)
    logger.info("Admin %s deleted product %s", admin["_id"], obj_id)
    return {"message": "Product deleted successfully"}


# Orders
class OrderStatusIn(BaseModel):
    status: Optional[str] = None


@router.get("/orders")
def get_admin_orders(
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    search: Optional[str] = None,
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit, 20, 50)
    query: Dict[str, Any] = {}
    if status and status != "all":
        query["status"] = status
    if search:
        pattern = re.escape(search)
        user_ids = [u["_id"] for u in db["user"].find({"$or": [
            {"email": {"$regex": pattern, "$options": "i"}},
            {"first_name": {"$regex": pattern, "$options": "i"}},
            {"last_name": {"$regex": pattern, "$options": "i"}},
        ]}, {"_id": 1})]
        clauses: List[Dict[str, Any]] = [{"user_id": {"$in": user_ids}}]
        order_id = to_object_id(search.strip())
        if order_id:
            clauses.append({"_id": order_id})
        query["$or"] = clauses
    envelope = paginate(db["order"], query, [("created_at", -1), ("_id", -1)], page, limit, transform=lambda d: d)
    envelope["data"] = _orders_with_users(db, envelope["data"])
    return envelope


@router.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, data: OrderStatusIn, db: Database = Depends(get_db)):
    order = set_order_status(db, order_id, data.status)
    return _orders_with_users(db, [order])[0]


# Customers
@router.get("/customers")
def get_admin_customers(page: int = 1, limit: int = 20, search: Optional[str] = None, db: Database = Depends(get_db)):
    page, limit = page_params(page, limit, 20, 50)
    query: Dict[str, Any] = {"role": "customer"}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"email": {"$regex": pattern, "$options": "i"}},
            {"first_name": {"$regex": pattern, "$options": "i"}},
            {"last_name": {"$regex": pattern, "$options": "i"}},
        ]
    envelope = paginate(db["user"], query, [("created_at", -1), ("_id", -1)], page, limit, transform=lambda d: d)
    customers = envelope["data"]
    ids = [c["_id"] for c in customers]

    def per_user(collection: str, match: Dict[str, Any], accumulator: Dict[str, Any]) -> Dict[ObjectId, Any]:
        pipeline = [
            {"$match": {"user_id": {"$in": ids}, **match}},
            {"$group": {"_id": "$user_id", "value": accumulator}},
        ]
        return {row["_id"]: row["value"] for row in db[collection].aggregate(pipeline)}

    order_counts = per_user("order", {}, {"$sum": 1})
    review_counts = per_user("review", {}, {"$sum": 1})
    totals = per_user("order", NOT_CANCELLED, {"$sum": "$total"})

    envelope["data"] = [
        {
            "id": str(c["_id"]),
            "email": c["email"],
            "first_name": c.get("first_name"),
            "last_name": c.get("last_name"),
            "role": c.get("role"),
            "created_at": c.get("created_at"),
            "order_count": order_counts.get(c["_id"], 0),
            "review_count": review_counts.get(c["_id"], 0),
            "total_spent": round(totals.get(c["_id"], 0), 2),
        }
        for c in customers
    ]
    return envelope
