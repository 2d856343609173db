from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from catalog import attach_categories
from database import get_db, serialize_doc, to_object_id
from errors import ConflictError, NotFoundError
from schemas import WishlistItem as WishlistItemSchema
from security import get_current_user

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"])


class WishlistIn(BaseModel):
    product_id: str


def _with_products(db: Database, items):
    items = list(items)
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": [i["product_id"] for i in items]}})}
    serialized = {p["id"]: p for p in attach_categories(db, products.values())}
    out = []
    for it in items:
        entry = serialize_doc(it)
        entry["product"] = serialized.get(str(it["product_id"]))
        out.append(entry)
    return out


@router.get("")
def get_wishlist(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    items = db["wishlist_item"].find({"user_id": current_user["_id"]}).sort([("created_at", -1), ("_id", -1)])
    return _with_products(db, items)


@router.post("", status_code=201)
def add_to_wishlist(data: WishlistIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    product_id = to_object_id(data.product_id)
    if not product_id or not db["product"].find_one({"_id": product_id}):
        raise NotFoundError("Product not found")
    if db["wishlist_item"].find_one({"user_id": current_user["_id"], "product_id": product_id}):
        raise ConflictError("Product is already in your wishlist")
    item = WishlistItemSchema(user_id=current_user["_id"], product_id=product_id)
    try:
        res = db["wishlist_item"].insert_one(item.model_dump())
    except DuplicateKeyError:
        raise ConflictError("Product is already in your wishlist")
    return _with_products(db, [db["wishlist_item"].find_one({"_id": res.inserted_id})])[0]


@router.get("/check/{product_id}")
def check_wishlist_item(product_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    obj_id = to_object_id(product_id)
    found = obj_id is not None and db["wishlist_item"].count_documents({"user_id": current_user["_id"], "product_id": obj_id}) > 0
    return {"in_wishlist": found}


@router.delete("/{product_id}")
def remove_from_wishlist(product_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    obj_id = to_object_id(product_id)
    res = db["wishlist_item"].delete_one({"user_id": current_user["_id"], "product_id": obj_id}) if obj_id else None
    if not res or res.deleted_count == 0:
        raise NotFoundError("Item not found in wishlist")
    return {"message": "Removed from wishlist"}
