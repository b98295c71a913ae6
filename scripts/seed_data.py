from __future__ import annotations

import argparse
from datetime import date, timedelta
from decimal import Decimal

from services.api.app.db.database import db_session
from services.api.app.db.init_db import init_db
from services.api.app.db.models import Product

# (name, category, original price, discount price, stock, days until expiry)
_DEMO_CATALOGUE = (
    ("Whole milk 1L", "Dairy", "6.49", "3.99", 24, 1),
    ("Greek yogurt 4-pack", "Dairy", "12.90", "7.50", 10, 3),
    ("Chicken breast 1kg", "Meat and Poultry", "24.90", "14.90", 8, 0),
    ("Sliced ham 200g", "Deli", "9.90", "5.90", 12, 5),
    ("Sourdough loaf", "Bakery", "14.00", "7.00", 6, 1),
    ("Bananas 1kg", "Produce", "5.99", "2.99", 30, 2),
    ("Canned tomatoes", "Pantry", "4.50", "3.90", 40, 45),
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed a demo SaveUp supermarket catalogue")
    parser.add_argument("--supermarket", default="SaveUp Demo Market")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Add the catalogue even if the supermarket already has products",
    )
    args = parser.parse_args()

    init_db()

    db = db_session()
    try:
        existing = (
            db.query(Product).filter(Product.supermarket_name == args.supermarket).limit(1).count()
        )
        if existing and not args.force:
            print(f"Supermarket {args.supermarket!r} already seeded")
            return 0

        today = date.today()
        for name, category, original, discount, stock, days in _DEMO_CATALOGUE:
            db.add(
                Product(
                    name=name,
                    category=category,
                    supermarket_name=args.supermarket,
                    original_price=Decimal(original),
                    discount_price=Decimal(discount),
                    quantity=stock,
                    expiration_date=today + timedelta(days=days),
                    is_active=True,
                )
            )

        db.commit()
        print(f"Seeded {len(_DEMO_CATALOGUE)} products for supermarket={args.supermarket}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
