from datetime import datetime, timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from auth import require_admin
from config import PaytmConfig, Settings, get_settings
from database import get_db
from orders import OrderStore
from paytm import PaytmGateway

MERCHANT_KEY = "kbzk1DSbJiV_O3p5"
FRONTEND = "http://shop.test"


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def db():
    return mongomock.MongoClient()["decor_test"]


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 1, 12, 0, 0))


@pytest.fixture
def settings():
    return Settings(
        frontend_url=FRONTEND,
        jwt_secret="test-secret",
        paytm=PaytmConfig(mid="DECOR0001", merchant_key=MERCHANT_KEY),
    )


@pytest.fixture
def gateway(settings):
    return PaytmGateway(settings.paytm, clock=lambda: 1709294400.0)


@pytest.fixture
def orders(db, clock):
    return OrderStore(db, clock)


@pytest.fixture
def draft():
    return {
        "products": [{"product_id": "65f1c0ffee0000000000aaaa", "quantity": 2}],
        "amount": 1000,
        "email": "asha@gmail.com",
        "payment_method": "UPI",
        "shipping_address": {
            "address": "12 MG Road",
            "city": "Pune",
            "state": "Maharashtra",
            "pincode": "411001",
        },
    }


@pytest.fixture
def client(db, settings):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_settings] = lambda: settings
    main.app.dependency_overrides[require_admin] = lambda: {"id": "admin", "is_admin": True}
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
