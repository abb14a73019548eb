"""
Order persistence.

An order's payment_details sub-document is always replaced wholesale by
cancel() and mark_paid(); callers must not expect earlier payment fields to
survive a status change.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import utcnow
from errors import NotFound, ValidationFailed
from schemas import ORDER_STATUSES, Order

log = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("products", "amount", "email", "payment_method", "shipping_address")
ADDRESS_FIELDS = ("address", "city", "state", "pincode")


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationFailed("Invalid order ID")


class OrderStore:
    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.collection = db["order"]
        self.clock = clock

    def create(self, draft: Dict[str, Any]) -> Dict[str, Any]:
        if any(not draft.get(field) for field in REQUIRED_FIELDS):
            raise ValidationFailed("All fields including shipping address are required")
        address = draft["shipping_address"]
        if not isinstance(address, dict) or any(not address.get(f) for f in ADDRESS_FIELDS):
            raise ValidationFailed("Complete shipping address is required")

        try:
            order = Order(
                products=draft["products"],
                amount=draft["amount"],
                email=draft["email"],
                payment_method=draft["payment_method"],
                shipping_address=address,
            )
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first["loc"])
            raise ValidationFailed(f"Invalid order field {field}: {first['msg']}")

        order.payment_details.payment_gateway = "paytm" if order.payment_method == "UPI" else "manual"
        doc = order.model_dump()
        doc["payment_details"] = order.payment_details.model_dump(exclude_none=True)
        now = self.clock()
        doc["created_at"] = now
        doc["updated_at"] = now
        doc["_id"] = self.collection.insert_one(doc).inserted_id
        log.info("order_created", order_id=str(doc["_id"]), payment_method=order.payment_method)
        return doc

    def get(self, order_id: str) -> Dict[str, Any]:
        order = self.collection.find_one({"_id": oid(order_id)})
        if not order:
            raise NotFound("Order not found")
        return order

    def list_by_email(self, email: str) -> List[Dict[str, Any]]:
        return list(self.collection.find({"email": email}).sort("created_at", DESCENDING))

    def list_all(self) -> List[Dict[str, Any]]:
        return list(self.collection.find().sort("created_at", DESCENDING))

    def update_status(self, order_id: str, status: Optional[str]) -> Dict[str, Any]:
        # Operator override: any of the known states, from any state
        if not status or status not in ORDER_STATUSES:
            raise ValidationFailed("Invalid or missing status")
        order = self.collection.find_one_and_update(
            {"_id": oid(order_id)},
            {"$set": {"status": status, "updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER,
        )
        if not order:
            raise NotFound("Order not found")
        log.info("order_status_updated", order_id=order_id, status=status)
        return order

    def delete(self, order_id: str) -> Dict[str, Any]:
        order = self.collection.find_one_and_delete({"_id": oid(order_id)})
        if not order:
            raise NotFound("Order not found")
        log.info("order_deleted", order_id=order_id)
        return order

    def cancel(self, order_id: Any, reason: str) -> Optional[Dict[str, Any]]:
        """Mark an order cancelled with a failed payment. Returns None if nothing was cancelled."""
        if not order_id:
            log.error("order_cancel_missing_id", reason=reason)
            return None
        now = self.clock()
        try:
            order = self.collection.find_one_and_update(
                {"_id": order_id if isinstance(order_id, ObjectId) else ObjectId(order_id)},
                {
                    "$set": {
                        "status": "cancelled",
                        "payment_details": {
                            "payment_status": "failed",
                            "payment_date": now,
                            "failure_reason": reason,
                        },
                        "updated_at": now,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        except (InvalidId, TypeError):
            log.error("order_cancel_invalid_id", order_id=str(order_id), reason=reason)
            return None
        except PyMongoError:
            log.exception("order_cancel_failed", order_id=str(order_id), reason=reason)
            return None

        if not order:
            log.error("order_cancel_not_found", order_id=str(order_id), reason=reason)
            return None
        log.info("order_cancelled", order_id=str(order_id), reason=reason)
        return order

    def mark_paid(self, order_id: str, transaction_id: Optional[str], amount: Any) -> Optional[Dict[str, Any]]:
        now = self.clock()
        return self.collection.find_one_and_update(
            {"_id": ObjectId(order_id)},
            {
                "$set": {
                    "status": "processing",
                    "payment_details": {
                        "transaction_id": transaction_id,
                        "payment_method": "UPI",
                        "payment_status": "completed",
                        "amount": amount,
                        "payment_date": now,
                        "payment_gateway": "paytm",
                    },
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER,
        )

    def find_abandoned(self, cutoff: datetime) -> List[Dict[str, Any]]:
        return list(
            self.collection.find(
                {"status": "pending", "payment_method": "UPI", "created_at": {"$lt": cutoff}}
            )
        )

    def present(self, order: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """Add display fields computed at read time; nothing here is stored."""
        now = now or self.clock()
        created = order.get("created_at") or now
        return {
            **order,
            "item_count": len(order.get("products") or []),
            "formatted_amount": f"{float(order.get('amount', 0)):.2f}",
            "hours_since_created": int((now - created).total_seconds() // 3600),
        }


def _derived_payment_status(order: Dict[str, Any]) -> str:
    status = order.get("status")
    if status == "completed":
        return "completed"
    if status == "cancelled":
        return "failed"
    if order.get("payment_method") == "UPI" and status != "pending":
        return "completed"
    return "pending"


def payment_history(orders: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Turn a customer's orders (newest first) into payment records plus a summary."""
    payments = []
    for order in orders:
        order_id = str(order["_id"])
        method = order.get("payment_method")
        payments.append({
            "id": order_id,
            "order_id": order_id,
            "amount": order.get("amount", 0),
            "method": "Cash on Delivery" if method == "COD" else method,
            "status": _derived_payment_status(order),
            "date": order.get("created_at"),
            "transaction_id": f"TXN{order_id[-8:].upper()}",
            "product_count": len(order.get("products") or []),
        })

    completed = [p for p in payments if p["status"] == "completed"]
    total_paid = sum(float(p["amount"]) for p in completed)
    method_summary: Dict[str, int] = {}
    for p in payments:
        method_summary[p["method"]] = method_summary.get(p["method"], 0) + 1

    return {
        "payments": payments,
        "summary": {
            "total_paid": f"{total_paid:.2f}",
            "total_transactions": len(payments),
            "success_rate": round(len(completed) / len(payments) * 100) if payments else 0,
            "method_summary": method_summary,
        },
    }
