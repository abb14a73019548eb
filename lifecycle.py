"""
Order lifecycle: the gateway callback state machine and abandoned-order reaping.

    pending    -> processing | cancelled
    processing -> shipped | completed | cancelled
    shipped    -> completed | cancelled

Callbacks and the reaper both cancel through OrderStore.cancel(). The admin
status endpoint is deliberately outside this table.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import structlog
from bson.errors import InvalidId
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import utcnow
from errors import NotFound, ValidationFailed
from orders import OrderStore
from paytm import PaytmGateway

log = structlog.get_logger(__name__)

TXN_SUCCESS = "TXN_SUCCESS"


class OrderLifecycle:
    def __init__(
        self,
        orders: OrderStore,
        gateway: PaytmGateway,
        db: Database,
        frontend_url: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.orders = orders
        self.gateway = gateway
        self.users = db["user"]
        self.carts = db["cart"]
        self.frontend_url = frontend_url.rstrip("/")
        self.clock = clock

    def _failed(self, reason: str) -> str:
        return f"{self.frontend_url}/payment-failed?{urlencode({'reason': reason})}"

    def _succeeded(self, order_id: str, txn_id: Optional[str]) -> str:
        query = urlencode({"session_id": order_id, "txn_id": txn_id or ""})
        return f"{self.frontend_url}/payment-success?{query}"

    def _cancel_from_payload(self, received: Dict[str, Any], reason: str) -> None:
        # The payload may be unverified here; the order id is only a best guess
        gateway_order_id = received.get("ORDERID")
        if gateway_order_id:
            self.orders.cancel(self.gateway.parse_order_id(str(gateway_order_id)), reason)

    def handle_callback(self, received: Dict[str, Any]) -> str:
        """Apply a gateway callback and return the frontend URL to redirect the browser to."""
        try:
            return self._apply_callback(received)
        except Exception:
            log.exception("paytm_callback_error", gateway_order_id=received.get("ORDERID"))
            try:
                self._cancel_from_payload(received, "Callback processing error")
            except Exception:
                log.exception("paytm_callback_cancel_failed", gateway_order_id=received.get("ORDERID"))
            return self._failed("callback_error")

    def _apply_callback(self, received: Dict[str, Any]) -> str:
        if not self.gateway.verify_callback(received):
            log.error("paytm_checksum_failed", gateway_order_id=received.get("ORDERID"))
            self._cancel_from_payload(received, "Checksum verification failed")
            return self._failed("checksum_failed")

        txn_id = received.get("TXNID")
        status = received.get("STATUS")
        message = received.get("RESPMSG")
        log.info(
            "paytm_callback_received",
            gateway_order_id=received.get("ORDERID"),
            txn_id=txn_id,
            status=status,
            amount=received.get("TXNAMOUNT"),
        )
        order_id = self.gateway.parse_order_id(str(received["ORDERID"]))

        if status != TXN_SUCCESS:
            log.info("paytm_payment_failed", order_id=order_id, message=message)
            self.orders.cancel(order_id, message or "Payment failed")
            return self._failed(message or "Payment failed")

        try:
            order = self.orders.mark_paid(order_id, txn_id, received.get("TXNAMOUNT"))
        except (PyMongoError, InvalidId):
            log.exception("paytm_order_update_failed", order_id=order_id)
            self.orders.cancel(order_id, "Database error during payment processing")
            return self._failed("db_error")

        if not order:
            log.error("paytm_order_not_found", order_id=order_id)
            return self._failed("order_not_found")

        log.info("paytm_order_paid", order_id=order_id, txn_id=txn_id)
        self.clear_cart(order)
        return self._succeeded(order_id, txn_id)

    def clear_cart(self, order: Dict[str, Any]) -> int:
        """Best effort: a failure here never undoes the payment."""
        try:
            user = self.users.find_one({"email": order.get("email")})
            if not user:
                return 0
            deleted = self.carts.delete_many({"user_id": str(user["_id"])}).deleted_count
            log.info("cart_cleared", user_id=str(user["_id"]), count=deleted)
            return deleted
        except PyMongoError:
            log.exception("cart_clear_failed", email=order.get("email"))
            return 0

    def cancel_abandoned(self, order_id: Optional[str], reason: Optional[str] = None) -> Dict[str, Any]:
        if not order_id:
            raise ValidationFailed("Order ID is required")
        order = self.orders.cancel(order_id, reason or "Order abandoned - payment not completed")
        if not order:
            raise NotFound("Order not found")
        return order

    def reap_abandoned(self, timeout_minutes: int = 30) -> List[Dict[str, Any]]:
        """Cancel pending UPI orders that have waited longer than timeout_minutes for payment."""
        cutoff = self.clock() - timedelta(minutes=timeout_minutes)
        reason = f"Payment timeout - order abandoned after {timeout_minutes} minutes"
        cancelled = []
        for order in self.orders.find_abandoned(cutoff):
            result = self.orders.cancel(order["_id"], reason)
            if result:
                cancelled.append(result)
        if cancelled:
            log.info("abandoned_orders_cancelled", count=len(cancelled), timeout_minutes=timeout_minutes)
        return cancelled
