import json

import pytest
from fastapi.testclient import TestClient

import settings
from database import MemoryStore
from main import app, get_store


@pytest.fixture
def client():
    store = MemoryStore()
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _register_user(client, username="asha", email="asha@example.com"):
    res = client.post(
        "/api/v1/users/register",
        json={
            "full_name": "Asha Rao",
            "email": email,
            "username": username,
            "password": "password123",
            "phone": "9876543210",
        },
    )
    assert res.status_code == 201, res.text
    return res.json()["data"]


def _register_chef(client):
    res = client.post(
        "/api/v1/chefs/register",
        json={
            "full_name": "Vikram Chef",
            "email": "chef@example.com",
            "password": "password123",
            "phone": "9123456780",
            "avatar": "https://img.example.com/vikram.png",
            "specialization": json.dumps(["Indian", "Desserts"]),
            "experience": 8,
            "price_per_hour": 500,
            "service_locations": json.dumps([{"city": "Pune"}]),
        },
    )
    assert res.status_code == 201, res.text
    return res.json()["data"]


def _admin_token(client):
    assert client.post("/init/bootstrap").status_code == 201
    res = client.post(
        "/api/v1/admin/login", json={"email": settings.ADMIN_EMAIL, "password": settings.ADMIN_PASSWORD}
    )
    assert res.status_code == 200, res.text
    return res.json()["data"]["access_token"]


def test_health_endpoints(client):
    assert client.get("/").json() == {"message": "Chef Marketplace API running"}
    body = client.get("/test").json()
    assert body["backend"] == "ok"
    assert body["database"] == "ok"


def test_register_returns_envelope_without_secrets(client):
    data = _register_user(client)
    assert data["token_type"] == "bearer"
    assert "password_hash" not in data["account"]
    assert "refresh_token_hash" not in data["account"]
    assert data["account"]["profile"]["username"] == "asha"


def test_duplicate_email_conflicts(client):
    _register_user(client)
    res = client.post(
        "/api/v1/users/register",
        json={
            "full_name": "Other",
            "email": "asha@example.com",
            "username": "other",
            "password": "password123",
            "phone": "9876543211",
        },
    )
    assert res.status_code == 409
    assert res.json()["success"] is False


def test_validation_failure_envelope(client):
    res = client.post("/api/v1/users/register", json={"email": "not-an-email"})
    body = res.json()
    assert res.status_code == 400
    assert body["message"] == "Validation failed"
    assert body["data"] is None
    assert body["errors"]


def test_protected_route_requires_token(client):
    res = client.get("/api/v1/users/profile")
    assert res.status_code == 401
    assert res.json() == {
        "status_code": 401,
        "data": None,
        "message": "Unauthorized request",
        "success": False,
        "errors": [],
    }


def test_role_is_enforced(client):
    chef = _register_chef(client)
    res = client.get("/api/v1/users/profile", headers=_auth(chef["access_token"]))
    assert res.status_code == 403


def test_refresh_token_rotates(client):
    data = _register_user(client)
    first = client.post("/api/v1/users/refresh-token", json={"refresh_token": data["refresh_token"]})
    assert first.status_code == 200
    reused = client.post("/api/v1/users/refresh-token", json={"refresh_token": data["refresh_token"]})
    assert reused.status_code == 401


def test_booking_round_trip(client):
    user = _register_user(client)
    chef = _register_chef(client)
    chef_id = chef["account"]["profile"]["id"]
    assert chef["account"]["profile"]["specialization"] == ["Indian", "Desserts"]
    user_headers = _auth(user["access_token"])
    chef_headers = _auth(chef["access_token"])

    assert client.get("/api/v1/public/chefs").json()["data"]["chefs"] == []

    admin_headers = _auth(_admin_token(client))
    assert client.get("/api/v1/admin/chefs/pending", headers=admin_headers).json()["data"][0]["id"] == chef_id
    approved = client.patch(f"/api/v1/admin/chefs/{chef_id}/approve", headers=admin_headers)
    assert approved.json()["data"]["account_status"] == "active"

    dish_ids = []
    for name, price in (("Paneer Curry", 200), ("Dal Tadka", 150)):
        res = client.post(
            "/api/v1/chefs/dishes",
            headers=chef_headers,
            json={
                "name": name,
                "description": "Home style",
                "category": "Main Course",
                "cuisine": "Indian",
                "preparation_time": 10,
                "cooking_time": 25,
                "price": price,
                "tags": json.dumps(["veg"]),
            },
        )
        assert res.status_code == 201, res.text
        dish_ids.append(res.json()["data"]["id"])

    listed = client.get("/api/v1/public/chefs", params={"city": "pune"}).json()["data"]
    assert [c["id"] for c in listed["chefs"]] == [chef_id]

    res = client.post(
        "/api/v1/bookings",
        headers=user_headers,
        json={
            "chef_id": chef_id,
            "dishes": [{"dish_id": dish_ids[0], "quantity": 2}, {"dish_id": dish_ids[1], "quantity": 1}],
            "booking_date": "2026-12-24",
            "booking_time": "19:30",
            "guest_count": 6,
            "service_location": {"address": "12 MG Road", "city": "Pune"},
        },
    )
    assert res.status_code == 201, res.text
    booking = res.json()["data"]
    assert booking["total_amount"] == 1857

    for status in ("confirmed", "in-progress", "completed"):
        res = client.patch(
            f"/api/v1/chefs/bookings/{booking['id']}/status", headers=chef_headers, json={"status": status}
        )
        assert res.status_code == 200, res.text

    res = client.post(f"/api/v1/bookings/{booking['id']}/review", headers=user_headers, json={"rating": 4})
    assert res.status_code == 201, res.text
    again = client.post(f"/api/v1/bookings/{booking['id']}/review", headers=user_headers, json={"rating": 5})
    assert again.status_code == 400

    cancel = client.patch(f"/api/v1/bookings/{booking['id']}/cancel", headers=user_headers)
    assert cancel.status_code == 400
    assert "completed" in cancel.json()["message"]

    detail = client.get(f"/api/v1/public/chefs/{chef_id}").json()["data"]
    assert detail["chef"]["average_rating"] == 4.0
    assert detail["chef"]["total_reviews"] == 1

    stats = client.get("/api/v1/chefs/stats", headers=chef_headers).json()["data"]
    assert stats["completed_bookings"] == 1
    assert stats["total_bookings"] == 1


def test_unknown_booking_is_404(client):
    user = _register_user(client)
    res = client.get("/api/v1/bookings/65a000000000000000000001", headers=_auth(user["access_token"]))
    assert res.status_code == 404
    assert res.json()["message"] == "Booking not found"


def test_malformed_id_is_400(client):
    user = _register_user(client)
    res = client.get("/api/v1/bookings/not-an-id", headers=_auth(user["access_token"]))
    assert res.status_code == 400
