"""
Per-user shopping cart.

A cart is one document per user with its lines embedded. Every route
returns the full cart, reloaded after the change.
"""

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from catalog import attach_categories
from database import get_db, serialize_doc, to_object_id, utcnow
from errors import BadRequestError, ConflictError, NotFoundError
from schemas import Cart as CartSchema, CartLine
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])

ADD_ATTEMPTS = 3


class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=0)


class CartMergeIn(BaseModel):
    items: List[CartItemIn] = Field(default_factory=list, max_length=100)


def get_or_create_cart(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    if cart:
        return cart
    try:
        db["cart"].insert_one(CartSchema(user_id=user_id).model_dump())
    except DuplicateKeyError:
        # created by a concurrent request
        pass
    return db["cart"].find_one({"user_id": user_id})


def _require_cart(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        raise NotFoundError("Cart not found")
    return cart


def _find_line(cart: Dict[str, Any], line_id: Optional[ObjectId] = None, product_id: Optional[ObjectId] = None):
    for line in cart.get("items", []):
        if line_id is not None and line["_id"] == line_id:
            return line
        if product_id is not None and line["product_id"] == product_id:
            return line
    return None


def render_cart(db: Database, cart: Dict[str, Any]) -> Dict[str, Any]:
    lines = cart.get("items", [])
    products = list(db["product"].find({"_id": {"$in": [line["product_id"] for line in lines]}}))
    serialized = {p["id"]: p for p in attach_categories(db, products)}
    items = []
    subtotal = 0.0
    for line in lines:
        entry = serialize_doc(line)
        product = serialized.get(str(line["product_id"]))
        entry["product"] = product
        if product:
            subtotal += product["price"] * line["quantity"]
        items.append(entry)
    return {
        "id": str(cart["_id"]),
        "user_id": str(cart["user_id"]),
        "items": items,
        "item_count": sum(line["quantity"] for line in lines),
        "subtotal": round(subtotal, 2),
        "created_at": cart.get("created_at"),
        "updated_at": cart.get("updated_at"),
    }


def add_item(db: Database, user_id: ObjectId, product_id: str, quantity: int) -> None:
    if quantity < 1:
        raise BadRequestError("quantity must be at least 1")
    obj_id = to_object_id(product_id)
    product = db["product"].find_one({"_id": obj_id}) if obj_id else None
    if not product:
        raise NotFoundError("Product not found")
    if not product.get("in_stock") or product.get("stock_count", 0) < quantity:
        raise BadRequestError("Product is out of stock")

    cart = get_or_create_cart(db, user_id)
    for _ in range(ADD_ATTEMPTS):
        line = _find_line(cart, product_id=product["_id"])
        if line:
            if line["quantity"] + quantity > product["stock_count"]:
                raise BadRequestError(f"Only {product['stock_count']} units available")
            res = db["cart"].update_one(
                {"_id": cart["_id"], "items._id": line["_id"]},
                {"$inc": {"items.$.quantity": quantity}, "$set": {"updated_at": utcnow()}},
            )
        else:
            new_line = CartLine(product_id=product["_id"], quantity=quantity).model_dump(by_alias=True)
            # the $ne guard keeps one line per product if two adds race
            res = db["cart"].update_one(
                {"_id": cart["_id"], "items.product_id": {"$ne": product["_id"]}},
                {"$push": {"items": new_line}, "$set": {"updated_at": utcnow()}},
            )
        if res.modified_count:
            return
        # lost a race with another request on this cart; re-read and try again
        logger.info("Retrying add of product %s to cart of %s", product["_id"], user_id)
        cart = _require_cart(db, user_id)
    raise ConflictError("Cart was modified concurrently, please retry")


def update_item(db: Database, user_id: ObjectId, item_id: str, quantity: int) -> None:
    if quantity < 0:
        raise BadRequestError("quantity must be a non-negative number")
    cart = _require_cart(db, user_id)
    line_id = to_object_id(item_id)
    line = _find_line(cart, line_id=line_id) if line_id else None
    if not line:
        raise NotFoundError("Cart item not found")

    if quantity == 0:
        db["cart"].update_one({"_id": cart["_id"]}, {"$pull": {"items": {"_id": line_id}}, "$set": {"updated_at": utcnow()}})
        return
    product = db["product"].find_one({"_id": line["product_id"]})
    if not product:
        raise NotFoundError("Product not found")
    if quantity > product.get("stock_count", 0):
        raise BadRequestError(f"Only {product.get('stock_count', 0)} units available")
    db["cart"].update_one(
        {"_id": cart["_id"], "items._id": line_id},
        {"$set": {"items.$.quantity": quantity, "updated_at": utcnow()}},
    )


def remove_item(db: Database, user_id: ObjectId, item_id: str) -> None:
    cart = _require_cart(db, user_id)
    line_id = to_object_id(item_id)
    if not line_id or not _find_line(cart, line_id=line_id):
        raise NotFoundError("Cart item not found")
    db["cart"].update_one({"_id": cart["_id"]}, {"$pull": {"items": {"_id": line_id}}, "$set": {"updated_at": utcnow()}})


def merge_items(db: Database, user_id: ObjectId, items: List[CartItemIn]) -> Dict[str, List[Dict[str, Any]]]:
    """Add guest-cart lines one by one; a line that cannot be added is skipped."""
    merged, skipped = [], []
    for item in items:
        try:
            add_item(db, user_id, item.product_id, item.quantity)
        except (BadRequestError, ConflictError, NotFoundError) as exc:
            logger.debug("Skipped merging product %s into cart of %s: %s", item.product_id, user_id, exc.detail)
            skipped.append({"product_id": item.product_id, "quantity": item.quantity, "error": exc.detail})
        else:
            merged.append({"product_id": item.product_id, "quantity": item.quantity})
    return {"merged": merged, "skipped": skipped}


# Routes
@router.get("")
def get_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return render_cart(db, get_or_create_cart(db, current_user["_id"]))


@router.post("/items")
def add_cart_item(item: CartItemIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    add_item(db, current_user["_id"], item.product_id, item.quantity)
    return render_cart(db, _require_cart(db, current_user["_id"]))


@router.patch("/items/{item_id}")
def update_cart_item(item_id: str, data: CartItemUpdate, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    update_item(db, current_user["_id"], item_id, data.quantity)
    return render_cart(db, _require_cart(db, current_user["_id"]))


@router.delete("/items/{item_id}")
def remove_cart_item(item_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    remove_item(db, current_user["_id"], item_id)
    return render_cart(db, _require_cart(db, current_user["_id"]))


@router.delete("")
def clear_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = _require_cart(db, current_user["_id"])
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": [], "updated_at": utcnow()}})
    return render_cart(db, _require_cart(db, current_user["_id"]))


@router.post("/merge")
def merge_cart(data: CartMergeIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    result = merge_items(db, current_user["_id"], data.items)
    cart = render_cart(db, get_or_create_cart(db, current_user["_id"]))
    cart.update(result)
    return cart
