from datetime import timedelta

import pytest

from database import utcnow
from security import RateLimiter, create_access_token

from conftest import PASSWORD


def test_register_returns_token_and_hides_secrets(client):
    resp = client.post(
        "/api/auth/register",
        json={"name": "Asha Patel", "email": "Asha@School.edu", "password": PASSWORD},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["token"]
    teacher = body["teacher"]
    assert teacher["email"] == "asha@school.edu"
    assert teacher["role"] == "teacher"
    assert "passwordHash" not in teacher
    assert "otp" not in teacher


def test_register_duplicate_email(client, register):
    register()
    resp = client.post(
        "/api/auth/register",
        json={"name": "Other", "email": "ASHA@school.edu", "password": PASSWORD},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "DUPLICATE_EMAIL"


@pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "NoDigits!!", "NoSpecial123"])
def test_register_rejects_weak_passwords(client, password):
    resp = client.post("/api/auth/register", json={"name": "Asha", "email": "a@school.edu", "password": password})
    assert resp.status_code == 400
    body = resp.json()
    assert body["message"] == "Validation failed"
    assert body["errors"][0]["field"] == "password"


def test_login(client, register):
    register()
    resp = client.post("/api/auth/login", json={"email": "asha@school.edu", "password": PASSWORD})
    assert resp.status_code == 200
    assert resp.json()["token"]
    assert resp.json()["teacher"]["lastLogin"] is not None


def test_login_wrong_password(client, register):
    register()
    resp = client.post("/api/auth/login", json={"email": "asha@school.edu", "password": "Wrong123!"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid credentials"


def test_me_requires_token(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json()["message"] == "No token provided, authorization denied"


def test_me_rejects_bad_and_expired_tokens(client, register, mongo):
    register()
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer nonsense"}).json()["message"] == "Invalid token"

    teacher_id = str(mongo["teacher"].find_one()["_id"])
    expired = create_access_token(teacher_id, expires_delta=timedelta(seconds=-10))
    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Token expired"


def test_inactive_teacher_is_rejected(client, headers, mongo):
    mongo["teacher"].update_many({}, {"$set": {"is_active": False}})
    resp = client.get("/api/auth/me", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["message"] == "Token is not valid or user is inactive"


def test_update_name(client, headers):
    resp = client.put("/api/auth/profile", json={"name": "  Asha P  "}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["teacher"]["name"] == "Asha P"


def test_forgot_password_does_not_reveal_unknown_email(client, mailer):
    resp = client.post("/api/auth/forgot-password", json={"email": "nobody@school.edu"})
    assert resp.status_code == 200
    assert mailer.sent == []


def test_password_reset_flow(client, register, mailer):
    register()
    resp = client.post("/api/auth/forgot-password", json={"email": "asha@school.edu"})
    assert resp.status_code == 200
    otp = mailer.sent[-1]["otp"]
    assert len(otp) == 6

    wrong = "000000" if otp != "000000" else "111111"
    resp = client.post("/api/auth/verify-otp", json={"email": "asha@school.edu", "otp": wrong})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid OTP"

    resp = client.post("/api/auth/verify-otp", json={"email": "asha@school.edu", "otp": otp})
    assert resp.status_code == 200

    resp = client.post(
        "/api/auth/reset-password",
        json={"email": "asha@school.edu", "otp": otp, "newPassword": "N3wSecret!"},
    )
    assert resp.status_code == 200

    assert client.post("/api/auth/login", json={"email": "asha@school.edu", "password": PASSWORD}).status_code == 401
    assert client.post("/api/auth/login", json={"email": "asha@school.edu", "password": "N3wSecret!"}).status_code == 200

    # the OTP is single use
    resp = client.post("/api/auth/verify-otp", json={"email": "asha@school.edu", "otp": otp})
    assert resp.json()["message"] == "No OTP requested"


def test_expired_otp(client, register, mailer, mongo):
    register()
    client.post("/api/auth/resend-otp", json={"email": "asha@school.edu"})
    otp = mailer.sent[-1]["otp"]
    mongo["teacher"].update_many({}, {"$set": {"otp_expires": utcnow() - timedelta(minutes=1)}})

    resp = client.post("/api/auth/verify-otp", json={"email": "asha@school.edu", "otp": otp})
    assert resp.status_code == 400
    assert resp.json()["message"] == "OTP has expired"


def test_rate_limiter_window():
    now = [0.0]
    limiter = RateLimiter(max_requests=2, window_seconds=60, clock=lambda: now[0])
    assert limiter.hit("1.2.3.4")
    assert limiter.hit("1.2.3.4")
    assert not limiter.hit("1.2.3.4")
    assert limiter.hit("5.6.7.8")

    now[0] = 61.0
    assert limiter.hit("1.2.3.4")


def test_rate_limiter_forgets_idle_clients():
    now = [0.0]
    limiter = RateLimiter(max_requests=2, window_seconds=60, clock=lambda: now[0])
    limiter.hit("a")
    limiter.hit("b")
    assert limiter.client_count() == 2

    now[0] = 61.0
    limiter.hit("c")
    assert limiter.client_count() == 1


def test_auth_routes_are_rate_limited(client, monkeypatch):
    from security import auth_rate_limiter

    monkeypatch.setattr(auth_rate_limiter, "max_requests", 2)
    for _ in range(2):
        client.post("/api/auth/login", json={"email": "x@school.edu", "password": "x"})
    resp = client.post("/api/auth/login", json={"email": "x@school.edu", "password": "x"})
    assert resp.status_code == 429
    assert resp.json()["message"] == "Too many requests from this IP, please try again later."
