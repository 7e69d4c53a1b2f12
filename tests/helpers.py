import database


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def register(client, email, password="secret123", first_name="Test", last_name="User"):
    res = client.post("/api/users", json={
        "first_name": first_name,
        "last_name": last_name,
        "email": email,
        "password": password,
    })
    assert res.status_code == 200, res.text
    return res.json()


def stock_of(product_id: str) -> int:
    return database.db["product"].find_one({"_id": database.object_id(product_id)})["stock"]
