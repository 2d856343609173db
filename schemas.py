"""
Database Schemas

MongoDB collection documents defined as Pydantic models.
Each model represents a collection in the database; the model name in
snake_case is the collection name. References to other documents are
stored as ObjectIds.
"""

from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from database import utcnow

ROLES = ("customer", "admin")
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class User(Document):
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    password_hash: str = Field(..., description="BCrypt hashed password")
    first_name: str
    last_name: str
    role: str = Field("customer", description="Role: customer | admin")


class Category(Document):
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[ObjectId] = None


class Product(Document):
    name: str
    slug: str
    description: str
    price: float = Field(..., ge=0)
    compare_at_price: Optional[float] = Field(default=None, ge=0)
    brand: str
    images: List[str] = Field(default_factory=list)
    category_id: ObjectId
    stock_count: int = Field(default=0, ge=0)
    in_stock: bool = True
    rating: float = Field(default=0, ge=0, le=5)
    review_count: int = Field(default=0, ge=0)


class CartLine(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    product_id: ObjectId
    quantity: int = Field(..., ge=1)
    created_at: datetime = Field(default_factory=utcnow)


class Cart(Document):
    user_id: ObjectId
    items: List[dict] = Field(default_factory=list, description="[{_id, product_id, quantity, created_at}]")


class ShippingAddress(BaseModel):
    line1: str
    line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str


class OrderLine(BaseModel):
    """Snapshot of a purchased product; never updated after checkout."""

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    product_id: ObjectId
    name: str
    price: float
    quantity: int = Field(..., ge=1)


class Order(Document):
    user_id: ObjectId
    status: str = "pending"
    subtotal: float
    tax: float
    shipping: float
    total: float
    shipping_address: ShippingAddress
    items: List[OrderLine]


class Review(Document):
    user_id: ObjectId
    product_id: ObjectId
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    body: Optional[str] = None


class WishlistItem(Document):
    user_id: ObjectId
    product_id: ObjectId
