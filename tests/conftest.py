import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from main import app
from tests.helpers import auth, register


@pytest.fixture(autouse=True)
def mongo():
    return database.init_db(mongomock.MongoClient(), "guitarstore_test")


@pytest.fixture
def client(mongo):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin(client):
    return register(client, "ada@knavetone.com", first_name="Ada")


@pytest.fixture
def admin_headers(admin):
    return auth(admin["token"])


@pytest.fixture
def customer(client, admin):
    return register(client, "jimi@knavetone.com", first_name="Jimi")


@pytest.fixture
def customer_headers(customer):
    return auth(customer["token"])


@pytest.fixture
def other_headers(client, admin):
    return auth(register(client, "carlos@knavetone.com", first_name="Carlos")["token"])


@pytest.fixture
def make_product(client, admin_headers):
    def _make(**overrides):
        body = {
            "name": "Stratocaster",
            "brand": "Fender",
            "type": "Electric",
            "price": 899.0,
            "stock": 5,
            "image": "https://cdn.knavetone.com/strat.png",
            "description": "Three single coils",
        }
        body.update(overrides)
        res = client.post("/api/products", json=body, headers=admin_headers)
        assert res.status_code == 200, res.text
        return res.json()
    return _make


@pytest.fixture
def set_qty(client):
    def _set(headers, product_id, quantity):
        return client.post("/api/cart", json={"product_id": product_id, "quantity": quantity}, headers=headers)
    return _set
