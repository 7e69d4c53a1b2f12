import pytest

import database
import inventory
from errors import Conflict
from tests.helpers import stock_of


def cart_of(client, headers):
    return {line["product_id"]: line["quantity"] for line in client.get("/api/cart", headers=headers).json()}


def test_reserve_reject_and_release(client, customer_headers, make_product, set_qty):
    product = make_product(stock=5)
    pid = product["id"]

    assert set_qty(customer_headers, pid, 3).status_code == 200
    assert stock_of(pid) == 2

    res = set_qty(customer_headers, pid, 6)
    assert res.status_code == 409
    assert res.json()["available"] == 2
    assert "2" in res.json()["detail"]
    assert cart_of(client, customer_headers) == {pid: 3}
    assert stock_of(pid) == 2

    assert client.delete(f"/api/cart/{pid}", headers=customer_headers).status_code == 200
    assert stock_of(pid) == 5
    assert cart_of(client, customer_headers) == {}


def test_stock_plus_reserved_is_constant(client, customer_headers, other_headers, make_product, set_qty):
    pid = make_product(stock=10)["id"]
    steps = [
        (customer_headers, 4), (other_headers, 3), (customer_headers, 1),
        (other_headers, 6), (customer_headers, 2), (other_headers, 0),
    ]
    for headers, qty in steps:
        assert set_qty(headers, pid, qty).status_code == 200
        reserved = sum(cart_of(client, h).get(pid, 0) for h in (customer_headers, other_headers))
        assert stock_of(pid) + reserved == 10


def test_zero_quantity_is_the_same_as_remove(client, customer_headers, make_product, set_qty):
    a = make_product(name="Telecaster", stock=4)["id"]
    b = make_product(name="Jazzmaster", stock=4)["id"]
    set_qty(customer_headers, a, 3)
    set_qty(customer_headers, b, 3)

    assert set_qty(customer_headers, a, 0).status_code == 200
    assert client.delete(f"/api/cart/{b}", headers=customer_headers).status_code == 200

    assert cart_of(client, customer_headers) == {}
    assert stock_of(a) == stock_of(b) == 4


def test_removing_a_missing_line(client, customer_headers, make_product, set_qty):
    pid = make_product()["id"]
    assert client.delete(f"/api/cart/{pid}", headers=customer_headers).status_code == 404
    assert set_qty(customer_headers, pid, 0).status_code == 404
    assert stock_of(pid) == 5


def test_remove_accepts_id_in_any_case(client, customer_headers, make_product, set_qty):
    pid = make_product(stock=5)["id"]
    set_qty(customer_headers, pid, 2)
    assert stock_of(pid) == 3

    assert client.delete(f"/api/cart/{pid.upper()}", headers=customer_headers).status_code == 200
    assert cart_of(client, customer_headers) == {}
    assert stock_of(pid) == 5


def test_unknown_product_and_bad_quantity(client, customer_headers, make_product, set_qty):
    assert set_qty(customer_headers, "65f000000000000000000000", 1).status_code == 404
    assert set_qty(customer_headers, "garbage", 1).status_code == 404
    pid = make_product()["id"]
    assert set_qty(customer_headers, pid, -1).status_code == 400


def test_cart_is_joined_with_live_product(client, admin_headers, customer_headers, make_product, set_qty):
    pid = make_product(price=899, stock=5)["id"]
    set_qty(customer_headers, pid, 2)
    client.put(f"/api/products/{pid}", json={"price": 749}, headers=admin_headers)

    [line] = client.get("/api/cart", headers=customer_headers).json()
    assert line["quantity"] == 2
    assert line["available"] is True
    assert line["product"]["price"] == 749
    assert line["product"]["stock"] == 3


def test_deleted_product_is_flagged_not_fatal(client, admin_headers, customer_headers, make_product, set_qty):
    gone = make_product(name="Discontinued", stock=2)["id"]
    kept = make_product(name="Stratocaster", stock=2)["id"]
    set_qty(customer_headers, gone, 1)
    set_qty(customer_headers, kept, 1)
    client.delete(f"/api/products/{gone}", headers=admin_headers)

    res = client.get("/api/cart", headers=customer_headers)
    assert res.status_code == 200
    lines = {line["product_id"]: line for line in res.json()}
    assert lines[gone]["available"] is False
    assert lines[gone]["product"] is None
    assert lines[kept]["available"] is True

    assert client.delete(f"/api/cart/{gone}", headers=customer_headers).status_code == 200
    assert list(cart_of(client, customer_headers)) == [kept]


def test_carts_are_per_user(client, customer_headers, other_headers, make_product, set_qty):
    pid = make_product(stock=5)["id"]
    set_qty(customer_headers, pid, 2)
    assert cart_of(client, other_headers) == {}
    assert client.delete(f"/api/cart/{pid}", headers=other_headers).status_code == 404


def test_lost_cart_race_undoes_reservation(client, customer, make_product, monkeypatch):
    pid = make_product(stock=5)["id"]
    user_id = customer["user"]["id"]
    inventory.set_cart_quantity(user_id, pid, 2)

    monkeypatch.setattr(inventory, "_save_cart", lambda user, lines: False)
    with pytest.raises(Conflict):
        inventory.set_cart_quantity(user_id, pid, 4)
    assert stock_of(pid) == 3

    with pytest.raises(Conflict):
        inventory.remove_cart_line(user_id, pid)
    assert stock_of(pid) == 3


def test_stale_cart_version_is_rejected(client, customer, make_product):
    pid = make_product(stock=5)["id"]
    user_id = customer["user"]["id"]
    stale = database.get_document_by_id("user", user_id)
    inventory.set_cart_quantity(user_id, pid, 1)

    assert inventory._save_cart(stale, []) is False
    assert database.get_document_by_id("user", user_id)["cart"] == [{"product_id": pid, "quantity": 1}]
