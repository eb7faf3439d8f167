"""Seed the database with the default promotion package catalog."""

from sqlalchemy import select

from promo_credits.core.database import SessionLocal
from promo_credits.models import PromotionPackage

SEED_PACKAGES = [
    {
        "name": "Basic Boost",
        "slug": "basic-boost",
        "description": "Basic visibility boost for 7 days",
        "duration_days": 7,
        "cost_in_credits": 200_000,
        "features": {
            "priority_boost": 10,
            "show_featured_badge": True,
            "use_custom_marker": False,
            "homepage_spotlight": False,
            "search_boost": 0,
        },
        "sort_order": 1,
    },
    {
        "name": "Standard Boost",
        "slug": "standard-boost",
        "description": "Enhanced visibility for 14 days with custom marker",
        "duration_days": 14,
        "cost_in_credits": 350_000,
        "features": {
            "priority_boost": 20,
            "show_featured_badge": True,
            "use_custom_marker": True,
            "homepage_spotlight": False,
            "search_boost": 5,
        },
        "badge": {"text": "Most Popular", "color": "#2563eb"},
        "sort_order": 2,
    },
    {
        "name": "Professional",
        "slug": "professional",
        "description": "Comprehensive visibility boost for 30 days",
        "duration_days": 30,
        "cost_in_credits": 600_000,
        "features": {
            "priority_boost": 30,
            "show_featured_badge": True,
            "use_custom_marker": True,
            "homepage_spotlight": False,
            "search_boost": 10,
        },
        "auto_renewal_default": True,
        "sort_order": 3,
    },
]


def seed_packages() -> list[PromotionPackage]:
    """Insert any seed packages whose slug is not already present."""
    db = SessionLocal()
    created: list[PromotionPackage] = []
    try:
        existing = set(db.execute(select(PromotionPackage.slug)).scalars())
        for data in SEED_PACKAGES:
            if data["slug"] in existing:
                continue
            package = PromotionPackage(is_active=True, **data)
            db.add(package)
            created.append(package)

        db.commit()
        for p in created:
            db.refresh(p)
        return created
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    packages = seed_packages()
    for p in packages:
        print(f"Created: {p.name} (slug={p.slug}, {p.cost_in_credits} credits / {p.duration_days} days)")
    print(f"\nSeeded {len(packages)} packages.")
