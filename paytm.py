"""
Paytm gateway adapter.

Builds the signed parameter set for the redirect checkout, verifies the
signed callback the gateway posts back, and issues signed status queries.
Interpreting a callback or status response is the caller's job.
"""
import time
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import requests
import structlog
from paytmchecksum import PaytmChecksum

from config import PaytmConfig
from errors import GatewayError, ValidationFailed

log = structlog.get_logger(__name__)

CHECKSUM_FIELD = "CHECKSUMHASH"


def _signing_params(params: Dict[str, Any]) -> Dict[str, Optional[str]]:
    # PaytmChecksum only accepts string (or None) values
    fields = {}
    for key, value in params.items():
        if key == CHECKSUM_FIELD:
            continue
        if value is not None and not isinstance(value, (str, int, float, Decimal)):
            raise GatewayError(f"Cannot sign parameter {key} of type {type(value).__name__}")
        fields[key] = None if value is None else str(value)
    return fields


def generate_signature(params: Dict[str, Any], key: str) -> str:
    if not isinstance(key, str) or not key:
        raise GatewayError("Merchant key is not configured")
    fields = _signing_params(params)
    try:
        return PaytmChecksum.generateSignature(fields, key)
    except Exception as e:
        # the library raises bare Exception/ValueError for bad input or key size
        log.error("paytm_checksum_generation_failed", error=str(e))
        raise GatewayError("Failed to generate checksum")


def verify_signature(params: Dict[str, Any], key: str, signature: Optional[str]) -> bool:
    if not signature:
        return False
    fields = _signing_params(params)
    try:
        return bool(PaytmChecksum.verifySignature(fields, key, str(signature)))
    except Exception as e:
        # an undecryptable checksum is a mismatch, not a crash
        log.warning("paytm_checksum_unreadable", error=str(e))
        return False


def format_amount(amount: Any) -> str:
    value = Decimal(str(amount))
    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return str(value)


class PaytmGateway:
    def __init__(
        self,
        config: PaytmConfig,
        clock: Callable[[], float] = time.time,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.clock = clock
        self.session = session or requests.Session()

    def new_txn_id(self, order_id: str) -> str:
        return f"{self.config.order_id_prefix}{order_id}_{int(self.clock() * 1000)}"

    def build_initiation_params(
        self, order_id: Optional[str], amount: Any, customer_info: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        if not order_id or not amount or not customer_info or not customer_info.get("email"):
            raise ValidationFailed("Missing required fields: orderId, amount, customerInfo")

        txn_id = self.new_txn_id(order_id)
        params = {
            "MID": self.config.mid,
            "WEBSITE": self.config.website,
            "CHANNEL_ID": self.config.channel_id,
            "INDUSTRY_TYPE_ID": self.config.industry_type_id,
            "ORDER_ID": txn_id,
            "CUST_ID": customer_info["email"],
            "TXN_AMOUNT": format_amount(amount),
            "CALLBACK_URL": self.config.callback_url,
            "EMAIL": customer_info["email"],
            "MOBILE_NO": customer_info.get("phone") or "",
        }
        signature = generate_signature(params, self.config.merchant_key)
        params[CHECKSUM_FIELD] = signature

        log.info("paytm_initiated", txn_id=txn_id, amount=params["TXN_AMOUNT"], customer=customer_info["email"])
        return {
            "params": params,
            "signature": signature,
            "transaction_url": self.config.transaction_url,
            "txn_id": txn_id,
        }

    def verify_callback(self, received: Dict[str, Any]) -> bool:
        fields = {k: v for k, v in received.items() if k != CHECKSUM_FIELD}
        return verify_signature(fields, self.config.merchant_key, received.get(CHECKSUM_FIELD))

    def parse_order_id(self, gateway_order_id: str) -> str:
        """AARAMB_<order id>_<millis> -> <order id>"""
        stripped = gateway_order_id.replace(self.config.order_id_prefix, "", 1)
        return stripped.split("_")[0]

    def query_status(self, order_id: Optional[str]) -> Dict[str, Any]:
        if not order_id:
            raise ValidationFailed("Order ID is required")

        if order_id.startswith(self.config.order_id_prefix):
            gateway_order_id = order_id
        else:
            gateway_order_id = self.new_txn_id(order_id)
        params = {"MID": self.config.mid, "ORDERID": gateway_order_id}
        params[CHECKSUM_FIELD] = generate_signature(params, self.config.merchant_key)

        try:
            response = self.session.post(
                self.config.status_query_url,
                json={"body": params},
                timeout=15,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            log.error("paytm_status_query_failed", order_id=gateway_order_id, error=str(e))
            raise GatewayError("Failed to check payment status")
        except ValueError:
            raise GatewayError("Failed to parse status response")
