import pytest
from bson import ObjectId

from errors import NotFound, ValidationFailed
from orders import payment_history


@pytest.mark.parametrize("method, gateway", [("UPI", "paytm"), ("COD", "manual")])
def test_create_starts_pending(orders, draft, method, gateway):
    draft["payment_method"] = method
    order = orders.create(draft)

    assert order["status"] == "pending"
    assert order["payment_details"] == {"payment_status": "pending", "payment_gateway": gateway}
    stored = orders.get(str(order["_id"]))
    assert stored["email"] == "asha@gmail.com"
    assert stored["created_at"] == stored["updated_at"]


@pytest.mark.parametrize("field", ["products", "amount", "email", "payment_method", "shipping_address"])
def test_create_rejects_missing_field(orders, draft, field):
    del draft[field]
    with pytest.raises(ValidationFailed, match="All fields including shipping address are required"):
        orders.create(draft)
    assert orders.list_all() == []


@pytest.mark.parametrize("field", ["address", "city", "state", "pincode"])
def test_create_rejects_incomplete_address(orders, draft, field):
    draft["shipping_address"][field] = ""
    with pytest.raises(ValidationFailed, match="Complete shipping address is required"):
        orders.create(draft)


def test_create_rejects_bad_quantity_and_method(orders, draft):
    draft["products"][0]["quantity"] = 0
    with pytest.raises(ValidationFailed):
        orders.create(draft)

    draft["products"][0]["quantity"] = 1
    draft["payment_method"] = "Card"
    with pytest.raises(ValidationFailed):
        orders.create(draft)


def test_get_invalid_and_unknown_ids(orders):
    with pytest.raises(ValidationFailed, match="Invalid order ID"):
        orders.get("not-an-id")
    with pytest.raises(NotFound):
        orders.get(str(ObjectId()))


def test_listing_is_newest_first(orders, draft, clock):
    first = orders.create(draft)
    clock.advance(minutes=5)
    second = orders.create(draft)
    clock.advance(minutes=5)
    other = dict(draft, email="ravi@gmail.com")
    third = orders.create(other)

    assert [o["_id"] for o in orders.list_by_email("asha@gmail.com")] == [second["_id"], first["_id"]]
    assert [o["_id"] for o in orders.list_all()] == [third["_id"], second["_id"], first["_id"]]


def test_update_status_is_an_unchecked_override(orders, draft, clock):
    order = orders.create(draft)
    order_id = str(order["_id"])
    orders.cancel(order_id, "Payment failed")

    clock.advance(minutes=1)
    updated = orders.update_status(order_id, "processing")
    assert updated["status"] == "processing"
    assert updated["updated_at"] == clock.now


def test_update_status_validates(orders, draft):
    order = orders.create(draft)
    with pytest.raises(ValidationFailed, match="Invalid or missing status"):
        orders.update_status(str(order["_id"]), "delivered")
    with pytest.raises(ValidationFailed):
        orders.update_status(str(order["_id"]), None)
    with pytest.raises(NotFound):
        orders.update_status(str(ObjectId()), "shipped")


def test_delete(orders, draft):
    order = orders.create(draft)
    deleted = orders.delete(str(order["_id"]))
    assert deleted["_id"] == order["_id"]
    with pytest.raises(NotFound):
        orders.get(str(order["_id"]))
    with pytest.raises(NotFound):
        orders.delete(str(order["_id"]))


def test_cancel_replaces_payment_details(orders, draft, clock):
    order = orders.create(draft)
    orders.mark_paid(str(order["_id"]), "TXN1", "1000.00")

    cancelled = orders.cancel(str(order["_id"]), "Customer changed mind")
    assert cancelled["status"] == "cancelled"
    assert cancelled["payment_details"] == {
        "payment_status": "failed",
        "payment_date": clock.now,
        "failure_reason": "Customer changed mind",
    }


def test_cancel_returns_none_when_nothing_matches(orders):
    assert orders.cancel(str(ObjectId()), "gone") is None
    assert orders.cancel("garbage", "gone") is None
    assert orders.cancel(None, "gone") is None


def test_present_adds_display_fields(orders, draft, clock):
    order = orders.create(draft)
    clock.advance(hours=3, minutes=20)
    shown = orders.present(order)
    assert shown["item_count"] == 1
    assert shown["formatted_amount"] == "1000.00"
    assert shown["hours_since_created"] == 3
    assert "item_count" not in orders.get(str(order["_id"]))


def test_payment_history(orders, draft, clock):
    paid = orders.create(draft)
    orders.mark_paid(str(paid["_id"]), "TXN1", "1000")
    clock.advance(minutes=1)
    failed = orders.create(draft)
    orders.cancel(str(failed["_id"]), "Payment failed")
    clock.advance(minutes=1)
    orders.create(dict(draft, payment_method="COD", amount=250))

    history = payment_history(orders.list_by_email("asha@gmail.com"))
    statuses = [(p["method"], p["status"]) for p in history["payments"]]
    assert statuses == [("Cash on Delivery", "pending"), ("UPI", "failed"), ("UPI", "completed")]
    assert history["payments"][2]["transaction_id"] == "TXN" + str(paid["_id"])[-8:].upper()
    assert history["summary"] == {
        "total_paid": "1000.00",
        "total_transactions": 3,
        "success_rate": 33,
        "method_summary": {"Cash on Delivery": 1, "UPI": 2},
    }


def test_payment_history_empty():
    assert payment_history([])["summary"]["success_rate"] == 0
