"""
Seed the database with an admin account, the category tree and a starter
catalog. Safe to run repeatedly: existing documents are left untouched.

    python seed.py
"""

import logging
import os
from typing import Dict

from bson import ObjectId
from pymongo.database import Database

import config
from database import ensure_indexes
from schemas import Category, Product, User
from security import hash_password

logger = logging.getLogger(__name__)

ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@guitarshop.com")
ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "admin123")

TOP_LEVEL_CATEGORIES = [
    ("Effects Pedals", "pedals", "Overdrive, delay, reverb, fuzz, modulation and more."),
    ("Accessories", "accessories", "Cables, power supplies, pedalboards, picks and straps."),
    ("Strings", "strings", "Electric and acoustic strings in every gauge."),
    ("Parts & Hardware", "parts", "Pickups, knobs, switches, bridges and tuners."),
]

PEDAL_SUBCATEGORIES = [
    ("Overdrive", "overdrive"),
    ("Distortion", "distortion"),
    ("Fuzz", "fuzz"),
    ("Delay", "delay"),
    ("Reverb", "reverb"),
    ("Modulation", "modulation"),
    ("Compression", "compression"),
    ("Boost", "boost"),
    ("Looper", "looper"),
    ("Tuner", "tuner"),
]

# (name, slug, description, price, category slug, brand, stock)
PRODUCTS = [
    ("Classic Overdrive Pedal", "classic-overdrive-pedal", "Warm, amp-like overdrive for blues and rock.", 149.99, "overdrive", "ToneForge", 25),
    ("Digital Delay Pro", "digital-delay-pro", "Crystal-clear repeats with tap tempo.", 199.99, "delay", "ToneForge", 15),
    ("Spring Reverb Tank", "spring-reverb-tank", "Vintage spring reverb in a compact enclosure.", 179.99, "reverb", "EchoWave", 20),
    ("Fuzz Factory Pedal", "fuzz-factory-pedal", "Gated, sputtering, wildly tweakable fuzz.", 229.99, "fuzz", "EchoWave", 8),
    ("Premium Instrument Cable 10ft", "premium-instrument-cable-10ft", "Low-capacitance cable with braided shielding.", 29.99, "accessories", "CableCraft", 100),
    ("Isolated Power Supply 8-Output", "isolated-power-supply-8-output", "Eight isolated outputs for a quiet pedalboard.", 129.99, "accessories", "PowerTone", 30),
    ("Nickel Wound Electric Strings .010-.046", "nickel-wound-electric-010-046", "Balanced tension nickel wound set.", 7.99, "strings", "StringKing", 200),
    ("Humbucker Pickup Set - Classic PAF", "humbucker-pickup-set-classic-paf", "Vintage-voiced alnico humbuckers.", 189.99, "parts", "PickupLab", 12),
]


def _upsert(db: Database, collection: str, key: Dict, document: Dict) -> ObjectId:
    db[collection].update_one(key, {"$setOnInsert": document}, upsert=True)
    return db[collection].find_one(key, {"_id": 1})["_id"]


def seed(db: Database) -> Dict[str, int]:
    ensure_indexes(db)

    admin = User(
        email=ADMIN_EMAIL,
        password_hash=hash_password(ADMIN_PASSWORD),
        first_name="Admin",
        last_name="User",
        role="admin",
    )
    _upsert(db, "user", {"email": ADMIN_EMAIL}, admin.model_dump())

    category_ids: Dict[str, ObjectId] = {}
    for name, slug, description in TOP_LEVEL_CATEGORIES:
        category = Category(name=name, slug=slug, description=description)
        category_ids[slug] = _upsert(db, "category", {"slug": slug}, category.model_dump())
    for name, slug in PEDAL_SUBCATEGORIES:
        category = Category(name=name, slug=slug, parent_id=category_ids["pedals"])
        category_ids[slug] = _upsert(db, "category", {"slug": slug}, category.model_dump())

    for name, slug, description, price, category_slug, brand, stock in PRODUCTS:
        product = Product(
            name=name,
            slug=slug,
            description=description,
            price=price,
            brand=brand,
            category_id=category_ids[category_slug],
            stock_count=stock,
            in_stock=stock > 0,
        )
        _upsert(db, "product", {"slug": slug}, product.model_dump())

    counts = {
        "users": db["user"].count_documents({}),
        "categories": db["category"].count_documents({}),
        "products": db["product"].count_documents({}),
    }
    logger.info("Seed complete: %s", counts)
    return counts


if __name__ == "__main__":
    from database import db

    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    seed(db)
