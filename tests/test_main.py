import time
from datetime import timedelta

from database import utcnow
from main import start_background_tasks
from orders import OrderStore


def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


def test_background_tasks_sweep_on_start(db, settings, draft):
    settings = settings.model_copy(
        update={
            "deal_sweep_interval_seconds": 3600,
            "order_reaper_interval_seconds": 900,
            "order_timeout_minutes": 30,
        }
    )
    deal_id = db["deal"].insert_one(
        {
            "title": "Diwali Sale",
            "description": "Festive offers",
            "discount": 20,
            "end_date": utcnow() - timedelta(hours=1),
            "categories": ["Lighting"],
            "is_active": True,
        }
    ).inserted_id
    db["product"].insert_one(
        {"name": "Brass Lamp", "category": "Lighting", "price": 400, "old_price": 500, "deal_id": deal_id}
    )
    stale = OrderStore(db, clock=lambda: utcnow() - timedelta(minutes=45)).create(draft)
    fresh = OrderStore(db, clock=lambda: utcnow() - timedelta(minutes=10)).create(draft)

    tasks = start_background_tasks(db, settings)
    try:
        assert [(t.name, t.interval_seconds) for t in tasks] == [
            ("deal-expiry-sweep", 3600),
            ("abandoned-order-reaper", 900),
        ]
        assert wait_for(lambda: db["deal"].find_one({"_id": deal_id})["is_active"] is False)
        assert wait_for(lambda: db["order"].find_one({"_id": stale["_id"]})["status"] == "cancelled")
    finally:
        for task in tasks:
            task.stop()

    assert not any(task.running for task in tasks)
    lamp = db["product"].find_one({"name": "Brass Lamp"})
    assert lamp["price"] == 500
    assert "deal_id" not in lamp
    reaped = db["order"].find_one({"_id": stale["_id"]})
    assert reaped["payment_details"]["failure_reason"] == "Payment timeout - order abandoned after 30 minutes"
    assert db["order"].find_one({"_id": fresh["_id"]})["status"] == "pending"
