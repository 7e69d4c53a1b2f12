import database
import settings
from security import create_access_token, verify_password
from tests.helpers import auth, register


def test_first_registrant_is_admin(client):
    first = register(client, "ada@knavetone.com")
    second = register(client, "jimi@knavetone.com")
    assert first["user"]["is_admin"] is True
    assert second["user"]["is_admin"] is False
    assert "password_hash" not in first["user"]
    assert first["token_type"] == "bearer"


def test_first_registrant_admin_can_be_disabled(client, monkeypatch):
    monkeypatch.setattr(settings, "FIRST_USER_IS_ADMIN", False)
    first = register(client, "ada@knavetone.com")
    assert first["user"]["is_admin"] is False


def test_duplicate_email_is_conflict(client, admin):
    res = client.post("/api/users", json={
        "first_name": "Ada", "last_name": "Again", "email": "ADA@knavetone.com", "password": "another1",
    })
    assert res.status_code == 409
    assert database.db["user"].count_documents({}) == 1


def test_password_is_stored_hashed(client, admin):
    stored = database.db["user"].find_one({"email": "ada@knavetone.com"})
    assert stored["password_hash"] != "secret123"
    assert verify_password("secret123", stored["password_hash"])
    assert not verify_password("wrong", stored["password_hash"])


def test_login_returns_usable_token(client, admin):
    res = client.post("/api/users/login", json={"email": "ada@knavetone.com", "password": "secret123"})
    assert res.status_code == 200
    profile = client.get("/api/users/profile", headers=auth(res.json()["token"]))
    assert profile.status_code == 200
    assert profile.json()["email"] == "ada@knavetone.com"


def test_login_with_wrong_password(client, admin):
    res = client.post("/api/users/login", json={"email": "ada@knavetone.com", "password": "nope"})
    assert res.status_code == 401
    res = client.post("/api/users/login", json={"email": "ghost@knavetone.com", "password": "secret123"})
    assert res.status_code == 401


def test_missing_and_bad_tokens(client, admin):
    assert client.get("/api/cart").status_code == 401
    assert client.get("/api/cart", headers=auth("not-a-jwt")).status_code == 401


def test_expired_token(client, admin):
    token = create_access_token({"sub": admin["user"]["id"]}, expires_minutes=-5)
    res = client.get("/api/users/profile", headers=auth(token))
    assert res.status_code == 401
    assert res.json()["detail"] == "Token expired"


def test_token_of_deleted_user(client, admin_headers, customer):
    res = client.delete(f"/api/users/{customer['user']['id']}", headers=admin_headers)
    assert res.status_code == 200
    assert client.get("/api/users/profile", headers=auth(customer["token"])).status_code == 401


def test_malformed_body_is_bad_request(client):
    res = client.post("/api/users", json={"first_name": "No", "last_name": "Password", "email": "x@knavetone.com"})
    assert res.status_code == 400
    res = client.post("/api/users", json={
        "first_name": "Bad", "last_name": "Email", "email": "not-an-email", "password": "secret123",
    })
    assert res.status_code == 400
