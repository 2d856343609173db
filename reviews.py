import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import get_db, serialize_doc, to_object_id, utcnow
from errors import ConflictError, NotFoundError, PermissionDeniedError
from schemas import Review as ReviewSchema
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


class ReviewIn(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    body: Optional[str] = None


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    title: Optional[str] = None
    body: Optional[str] = None


def author_summary(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {"id": str(user["_id"]), "first_name": user.get("first_name"), "last_name": user.get("last_name")}


def _with_authors(db: Database, reviews: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    user_ids = list({r["user_id"] for r in reviews})
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": user_ids}})}
    out = []
    for r in reviews:
        item = serialize_doc(r)
        item["user"] = author_summary(users.get(r["user_id"]))
        out.append(item)
    return out


def reviews_with_authors(db: Database, product_id: ObjectId) -> List[Dict[str, Any]]:
    reviews = list(db["review"].find({"product_id": product_id}).sort([("created_at", -1), ("_id", -1)]))
    return _with_authors(db, reviews)


def recalc_product_rating(db: Database, product_id: ObjectId) -> None:
    """Recompute and persist the average rating and review count for a product."""
    pipeline = [
        {"$match": {"product_id": product_id}},
        {"$group": {"_id": "$product_id", "avg": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]
    row = next(iter(db["review"].aggregate(pipeline)), None)
    rating = row["avg"] if row else 0
    count = row["count"] if row else 0
    db["product"].update_one({"_id": product_id}, {"$set": {"rating": rating, "review_count": count}})


def _owned_review(db: Database, review_id: str, user: Dict[str, Any], action: str) -> Dict[str, Any]:
    obj_id = to_object_id(review_id)
    review = db["review"].find_one({"_id": obj_id}) if obj_id else None
    if not review:
        raise NotFoundError("Review not found")
    if review["user_id"] != user["_id"]:
        raise PermissionDeniedError(f"You can only {action} your own reviews")
    return review


@router.get("/product/{product_id}")
def get_product_reviews(product_id: str, db: Database = Depends(get_db)):
    obj_id = to_object_id(product_id)
    if not obj_id:
        return []
    return reviews_with_authors(db, obj_id)


@router.post("", status_code=201)
def create_review(data: ReviewIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    product_id = to_object_id(data.product_id)
    if not product_id or not db["product"].find_one({"_id": product_id}):
        raise NotFoundError("Product not found")
    if db["review"].find_one({"user_id": current_user["_id"], "product_id": product_id}):
        raise ConflictError("You have already reviewed this product")
    review = ReviewSchema(
        user_id=current_user["_id"],
        product_id=product_id,
        rating=data.rating,
        title=data.title or None,
        body=data.body or None,
    )
    try:
        res = db["review"].insert_one(review.model_dump())
    except DuplicateKeyError:
        raise ConflictError("You have already reviewed this product")
    recalc_product_rating(db, product_id)
    return _with_authors(db, [db["review"].find_one({"_id": res.inserted_id})])[0]


@router.patch("/{review_id}")
def update_review(review_id: str, data: ReviewUpdate, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    review = _owned_review(db, review_id, current_user, "edit")
    update_dict = data.model_dump(exclude_unset=True)
    if update_dict.get("rating") is None:
        update_dict.pop("rating", None)
    for key in ("title", "body"):
        if key in update_dict:
            update_dict[key] = update_dict[key] or None
    update_dict["updated_at"] = utcnow()
    db["review"].update_one({"_id": review["_id"]}, {"$set": update_dict})
    recalc_product_rating(db, review["product_id"])
    return _with_authors(db, [db["review"].find_one({"_id": review["_id"]})])[0]


@router.delete("/{review_id}")
def delete_review(review_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    review = _owned_review(db, review_id, current_user, "delete")
    db["review"].delete_one({"_id": review["_id"]})
    recalc_product_rating(db, review["product_id"])
    return {"message": "Review deleted"}
