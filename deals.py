"""
Deal engine: the single store-wide deal and the product prices it rewrites.

A product under a deal carries `old_price` (its pre-discount price, written
once and never overwritten while the deal stays applied) plus `deal_id`,
`deal_discount` and `deal_title`. Removing the deal restores `price` from
`old_price` and leaves `old_price` itself in place.

Discounted prices are computed in Decimal and rounded once, half-up, to a
whole currency unit.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional

import structlog
from pymongo import UpdateOne
from pymongo.database import Database

from database import utcnow
from errors import NotFound
from schemas import Deal

log = structlog.get_logger(__name__)


def discounted_price(price: float, discount: int) -> int:
    value = Decimal(str(price)) * (Decimal(100) - Decimal(discount)) / Decimal(100)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class DealEngine:
    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.deals = db["deal"]
        self.products = db["product"]
        self.clock = clock

    def count_applicable(self, deal: Dict[str, Any]) -> int:
        categories = deal.get("categories") or []
        if not categories:
            return 0
        return self.products.count_documents({"category": {"$in": categories}})

    def get_active_deal(self) -> Optional[Dict[str, Any]]:
        deal = self.deals.find_one({"is_active": True})
        if not deal:
            return None

        if self.clock() > deal["end_date"]:
            self.deactivate(deal)
            return None

        return {**deal, "applicable_products": self.count_applicable(deal)}

    def list_categories(self) -> List[str]:
        return [c for c in self.products.distinct("category") if c]

    def upsert_deal(self, fields: Dict[str, Any], image_url: Optional[str] = None) -> Dict[str, Any]:
        """Replace the store's deal; discounts of the previous terms are always undone first."""
        current = self.deals.find_one()

        if current:
            self.remove_from_products(current["_id"])

        deal = Deal(
            title=fields["title"],
            description=fields["description"],
            discount=fields["discount"],
            image_url=image_url or (current or {}).get("image_url"),
            end_date=fields["end_date"],
            categories=fields.get("categories") or [],
            is_active=fields["is_active"] if fields.get("is_active") is not None else True,
        )
        doc = deal.model_dump()
        doc["end_date"] = _naive_utc(deal.end_date)

        if current:
            self.deals.replace_one({"_id": current["_id"]}, doc)
            doc["_id"] = current["_id"]
        else:
            doc["_id"] = self.deals.insert_one(doc).inserted_id
        log.info("deal_saved", deal_id=str(doc["_id"]), title=doc["title"], is_active=doc["is_active"])

        applicable = self.count_applicable(doc)
        if doc["is_active"] and doc["categories"]:
            self.apply_to_products(doc)

        return {**doc, "applicable_products": applicable}

    def apply_to_products(self, deal: Dict[str, Any]) -> int:
        if not deal.get("is_active") or not deal.get("categories"):
            return 0

        products = self.products.find({
            "category": {"$in": deal["categories"]},
            "deal_id": {"$ne": deal["_id"]},
        })
        ops = []
        for product in products:
            old_price = product.get("old_price")
            ops.append(UpdateOne(
                {"_id": product["_id"]},
                {"$set": {
                    "old_price": old_price if old_price is not None else product["price"],
                    "price": discounted_price(product["price"], deal["discount"]),
                    "deal_id": deal["_id"],
                    "deal_discount": deal["discount"],
                    "deal_title": deal["title"],
                }},
            ))

        if ops:
            self.products.bulk_write(ops, ordered=False)
            log.info("deal_applied", title=deal["title"], count=len(ops))
        return len(ops)

    def remove_from_products(self, deal_id: Any) -> int:
        ops = []
        for product in self.products.find({"deal_id": deal_id}):
            old_price = product.get("old_price")
            ops.append(UpdateOne(
                {"_id": product["_id"]},
                {
                    "$set": {"price": old_price if old_price is not None else product["price"]},
                    "$unset": {"deal_id": "", "deal_discount": "", "deal_title": ""},
                },
            ))

        if ops:
            self.products.bulk_write(ops, ordered=False)
            log.info("deal_removed", deal_id=str(deal_id), count=len(ops))
        return len(ops)

    def deactivate(self, deal: Dict[str, Any]) -> None:
        self.remove_from_products(deal["_id"])
        self.deals.update_one({"_id": deal["_id"]}, {"$set": {"is_active": False}})
        log.info("deal_deactivated", deal_id=str(deal["_id"]), title=deal.get("title"))

    def apply_current(self) -> Dict[str, Any]:
        deal = self.deals.find_one({"is_active": True})
        if not deal:
            raise NotFound("No active deal found")
        self.apply_to_products(deal)
        return {
            "message": "Deal applied to products successfully",
            "affected_products": self.count_applicable(deal),
            "deal_title": deal["title"],
            "categories": deal.get("categories", []),
        }

    def remove_current(self) -> Dict[str, Any]:
        deal = self.deals.find_one()
        if not deal:
            raise NotFound("No deal found")
        self.remove_from_products(deal["_id"])
        return {
            "message": "Deal removed from all products successfully",
            "deal_title": deal["title"],
        }

    def expiry_sweep(self) -> int:
        expired = list(self.deals.find({"end_date": {"$lt": self.clock()}, "is_active": True}))
        for deal in expired:
            self.deactivate(deal)
        return len(expired)
