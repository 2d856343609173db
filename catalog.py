"""
Catalog browsing: products, categories and the shop sidebar filters.

Product listing filters are collected into a ``ProductFilter`` and compiled
to a Mongo query in one place, so every filter combination goes through the
same code path.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from pymongo.database import Database

from database import get_db, page_params, paginate, serialize_doc, to_object_id
from errors import NotFoundError
from reviews import reviews_with_authors

router = APIRouter(prefix="/api/products", tags=["catalog"])

DEFAULT_SORT = "newest"
SORT_OPTIONS = {
    "newest": [("created_at", -1), ("_id", -1)],
    "oldest": [("created_at", 1), ("_id", 1)],
    "price-asc": [("price", 1), ("_id", 1)],
    "price-desc": [("price", -1), ("_id", -1)],
    "name-asc": [("name", 1), ("_id", 1)],
    "name-desc": [("name", -1), ("_id", -1)],
    "rating": [("rating", -1), ("_id", -1)],
}


class ProductFilter(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    # None means "any category"; an empty list matches nothing
    category_ids: Optional[List[ObjectId]] = None
    brand: Optional[str] = None
    search: Optional[str] = None
    in_stock_only: bool = False
    min_price: Optional[float] = None
    max_price: Optional[float] = None

    def to_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if self.category_ids is not None:
            query["category_id"] = {"$in": self.category_ids}
        if self.brand:
            query["brand"] = self.brand
        if self.in_stock_only:
            query["in_stock"] = True
        price: Dict[str, float] = {}
        if self.min_price is not None:
            price["$gte"] = float(self.min_price)
        if self.max_price is not None:
            price["$lte"] = float(self.max_price)
        if price:
            query["price"] = price
        if self.search:
            pattern = re.escape(self.search)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
                {"brand": {"$regex": pattern, "$options": "i"}},
            ]
        return query


def resolve_category_ids(db: Database, slug: str) -> List[ObjectId]:
    """A category slug selects the category itself plus its subcategories."""
    category = db["category"].find_one({"slug": slug})
    if not category:
        return []
    children = db["category"].find({"parent_id": category["_id"]}, {"_id": 1})
    return [category["_id"]] + [c["_id"] for c in children]


def attach_categories(db: Database, products: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Serialize products with their category embedded under ``category``."""
    products = list(products)
    category_ids = list({p["category_id"] for p in products if p.get("category_id")})
    categories = {c["_id"]: serialize_doc(c) for c in db["category"].find({"_id": {"$in": category_ids}})}
    out = []
    for p in products:
        item = serialize_doc(p)
        item["category"] = categories.get(p.get("category_id"))
        out.append(item)
    return out


def product_with_category(db: Database, product: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not product:
        return None
    return attach_categories(db, [product])[0]


def _product_detail(db: Database, product: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not product:
        raise NotFoundError("Product not found")
    detail = product_with_category(db, product)
    detail["reviews"] = reviews_with_authors(db, product["_id"])
    return detail


def _product_counts(db: Database) -> Dict[ObjectId, int]:
    pipeline = [{"$group": {"_id": "$category_id", "count": {"$sum": 1}}}]
    return {row["_id"]: row["count"] for row in db["product"].aggregate(pipeline)}


def list_products(db: Database, product_filter: ProductFilter, sort: str, page: int, limit: int) -> Dict[str, Any]:
    order = SORT_OPTIONS.get(sort, SORT_OPTIONS[DEFAULT_SORT])
    envelope = paginate(db["product"], product_filter.to_query(), order, page, limit, transform=lambda d: d)
    envelope["data"] = attach_categories(db, envelope["data"])
    return envelope


# Routes
@router.get("")
def get_products(
    page: int = 1,
    limit: int = 12,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    search: Optional[str] = None,
    sort: str = DEFAULT_SORT,
    in_stock: Optional[bool] = None,
    min_price: Optional[float] = Query(default=None, ge=0),
    max_price: Optional[float] = Query(default=None, ge=0),
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit, 12, 100)
    product_filter = ProductFilter(
        category_ids=resolve_category_ids(db, category) if category else None,
        brand=brand,
        search=search,
        in_stock_only=bool(in_stock),
        min_price=min_price,
        max_price=max_price,
    )
    return list_products(db, product_filter, sort, page, limit)


@router.get("/categories")
def get_categories(db: Database = Depends(get_db)):
    counts = _product_counts(db)
    top_level = list(db["category"].find({"parent_id": None}).sort("name", 1))
    children = list(db["category"].find({"parent_id": {"$in": [c["_id"] for c in top_level]}}).sort("name", 1))
    out = []
    for cat in top_level:
        item = serialize_doc(cat)
        item["children"] = [serialize_doc(c) for c in children if c["parent_id"] == cat["_id"]]
        item["product_count"] = counts.get(cat["_id"], 0)
        out.append(item)
    return out


@router.get("/categories/{slug}")
def get_category_by_slug(slug: str, db: Database = Depends(get_db)):
    category = db["category"].find_one({"slug": slug})
    if not category:
        raise NotFoundError("Category not found")
    item = serialize_doc(category)
    item["children"] = [serialize_doc(c) for c in db["category"].find({"parent_id": category["_id"]}).sort("name", 1)]
    parent = db["category"].find_one({"_id": category["parent_id"]}) if category.get("parent_id") else None
    item["parent"] = serialize_doc(parent)
    item["product_count"] = db["product"].count_documents({"category_id": category["_id"]})
    return item


@router.get("/filters")
def get_filter_options(db: Database = Depends(get_db)):
    brands = sorted(b for b in db["product"].distinct("brand") if b)
    price_range = {"min": 0, "max": 1000}
    if db["product"].count_documents({}):
        pipeline = [{"$group": {"_id": None, "min": {"$min": "$price"}, "max": {"$max": "$price"}}}]
        row = next(iter(db["product"].aggregate(pipeline)), None)
        if row:
            price_range = {"min": row["min"], "max": row["max"]}
    return {"brands": brands, "price_range": price_range}


@router.get("/slug/{slug}")
def get_product_by_slug(slug: str, db: Database = Depends(get_db)):
    return _product_detail(db, db["product"].find_one({"slug": slug}))


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    obj_id = to_object_id(product_id)
    return _product_detail(db, db["product"].find_one({"_id": obj_id}) if obj_id else None)
