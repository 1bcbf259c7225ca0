import logging

from app.db.session import engine, SessionLocal
from app.models.base import Base
from app.models.banner import Banner
from app.services import banners as banner_service

logger = logging.getLogger(__name__)

SEED_CREATOR = "system"

DEMO_BANNERS = [
    {
        "title": "Summer Sale",
        "description": "Up to 20% off on long stays booked this month",
        "image": "https://cdn.example.com/banners/summer-sale.jpg",
        "link": "https://example.com/offers/summer",
        "category": "hero",
        "display_location": ["home", "search"],
    },
    {
        "title": "Verified owners only",
        "image": "https://cdn.example.com/banners/verified.jpg",
        "category": "informational",
        "order": 1,
        "display_location": ["home", "property_detail"],
    },
    {
        "title": "Premium members: free visit scheduling",
        "image": "https://cdn.example.com/banners/premium.jpg",
        "category": "featured",
        "audience": "premium_users",
        "order": 2,
        "display_location": "booking",
    },
]

def create_tables():
    Base.metadata.create_all(bind=engine)

def seed_demo_banners() -> int:
    """Insert the demo banners once; a non-empty table is left alone."""
    db = SessionLocal()
    try:
        if db.query(Banner).count() > 0:
            return 0
        for data in DEMO_BANNERS:
            banner_service.create_banner(db, data, creator_id=SEED_CREATOR)
        logger.info("seeded %d demo banners", len(DEMO_BANNERS))
        return len(DEMO_BANNERS)
    finally:
        db.close()
