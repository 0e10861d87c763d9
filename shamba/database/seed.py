"""
shamba.database.seed — Default Taxonomy Seeder
===============================================

Baseline forum categories and tags seeded on first startup so the
community pages are immediately usable.

Idempotent: only inserts rows whose slug doesn't already exist.  Rows
created or edited later are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select

from shamba.constants import slugify
from shamba.database.engine import get_session
from shamba.database.models import Category, Tag

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default catalogue
# ---------------------------------------------------------------------------
DEFAULT_CATEGORIES: list[tuple[str, str, str]] = [
    ("Crop Farming", "#4caf50", "Planting, fertilizers, pests and harvests"),
    ("Livestock", "#8d6e63", "Cattle, poultry, goats, pigs and animal health"),
    ("Market & Prices", "#ff9800", "Selling produce, prices and buyers"),
    ("Weather & Climate", "#03a9f4", "Rainfall patterns, seasons and climate adaptation"),
    ("Equipment & Tools", "#607d8b", "Machinery, irrigation and farm tools"),
    ("Finance & Grants", "#9c27b0", "Loans, savings groups, grants and insurance"),
    ("General Discussion", "#9e9e9e", "Everything else"),
]

DEFAULT_TAGS: list[str] = [
    "Coffee", "Maize", "Beans", "Bananas", "Cassava", "Tomatoes",
    "Dairy", "Poultry", "Organic Farming", "Irrigation", "Soil Health",
    "Pest Control", "Fertilizer", "Post-Harvest", "Market Access",
]


def seed_taxonomy(engine: Engine) -> int:
    """Insert default categories and tags that are missing.

    Returns the number of rows inserted.
    """
    inserted = 0
    with get_session(engine) as session:
        category_slugs = set(session.scalars(select(Category.slug)).all())
        for name, color, description in DEFAULT_CATEGORIES:
            slug = slugify(name)
            if slug in category_slugs:
                continue
            session.add(Category(name=name, slug=slug, color=color, description=description))
            inserted += 1

        tag_slugs = set(session.scalars(select(Tag.slug)).all())
        for name in DEFAULT_TAGS:
            slug = slugify(name)
            if slug in tag_slugs:
                continue
            session.add(Tag(name=name, slug=slug, usage_count=0))
            inserted += 1

    if inserted:
        logger.info("Seeded %d default taxonomy rows.", inserted)
    return inserted
