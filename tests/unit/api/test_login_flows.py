"""End-to-end login flows over HTTP."""

from __future__ import annotations

STRONG_PASSWORD = "Sunrise!Harbor42"


def test_hotel_login_then_me(api, hotel):
    response = api.login("hotel", hotel.email)

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert len(body["sessionToken"]) == 64
    assert body["user"]["hotelId"] == hotel.id
    assert "passwordHash" not in body["user"]

    cookie = response.headers["Set-Cookie"]
    assert cookie.startswith("session_token=")
    assert "HttpOnly" in cookie
    assert "SameSite=Strict" in cookie

    me = api.get("/api/auth/me", token=body["sessionToken"])
    assert me.status_code == 200
    assert me.get_json()["email"] == hotel.email


def test_session_cookie_authenticates(app, hotel):
    browser = app.test_client()
    login = browser.post("/api/auth/login/hotel", json={"email": hotel.email, "password": STRONG_PASSWORD})
    assert login.status_code == 200

    assert browser.get("/api/auth/me").status_code == 200


def test_admin_must_enrol_before_protected_routes(api, admin, clock):
    login = api.login("admin", admin.email)
    body = login.get_json()

    assert login.status_code == 200
    assert body["requiresMfaSetup"] is True
    assert "user" not in body
    token = body["sessionToken"]

    blocked = api.get("/api/auth/me", token=token)
    assert blocked.status_code == 403
    assert blocked.get_json()["requiresMfa"] is True

    api.enrol_mfa(token, clock)

    assert api.get("/api/auth/me", token=token).status_code == 200


def test_sixth_attempt_is_locked(api, hotel, runtime):
    for _ in range(5):
        response = api.login("hotel", hotel.email, "Wrong!Password1")
        assert response.status_code == 401
        assert response.get_json()["code"] == "AUTH_ERROR"

    locked = api.login("hotel", hotel.email)

    assert locked.status_code == 423
    assert locked.get_json()["code"] == "ACCOUNT_LOCKED"
    assert runtime.identities_table.get("hotel", hotel.id).locked_until is not None


def test_lock_expires(api, hotel, clock):
    for _ in range(5):
        api.login("hotel", hotel.email, "Wrong!Password1")

    clock.advance(30 * 60)

    assert api.login("hotel", hotel.email).status_code == 200


def test_unknown_email_matches_wrong_password(api, hotel):
    unknown = api.login("hotel", "nobody@example.com")
    wrong = api.login("hotel", hotel.email, "Wrong!Password1")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.get_json() == wrong.get_json()


def test_hotel_login_is_not_an_admin_login(api, hotel):
    assert api.login("admin", hotel.email).status_code == 401


def test_new_login_supersedes_previous_session(api, hotel):
    first = api.login("hotel", hotel.email).get_json()["sessionToken"]
    second = api.login("hotel", hotel.email).get_json()["sessionToken"]

    assert api.get("/api/auth/me", token=first).status_code == 401
    assert api.get("/api/auth/me", token=second).status_code == 200


def test_hotel_without_password_is_sent_to_setup(api, runtime):
    pending = runtime.identity_manager.register("hotel", "new@hotel.example")

    response = api.login("hotel", pending.email, "anything-at-all")

    assert response.status_code == 400
    body = response.get_json()
    assert body["requiresSetup"] is True
    assert body["hotelId"] == pending.id

    setup = api.post("/api/auth/setup-password", {"hotelId": pending.id, "password": STRONG_PASSWORD})
    assert setup.status_code == 200
    assert api.login("hotel", pending.email).status_code == 200

    again = api.post("/api/auth/setup-password", {"hotelId": pending.id, "password": STRONG_PASSWORD})
    assert again.status_code == 400


def test_setup_password_enforces_strength(api, runtime):
    pending = runtime.identity_manager.register("hotel", "weak@hotel.example")

    response = api.post("/api/auth/setup-password", {"hotelId": pending.id, "password": "short"})

    assert response.status_code == 400


def test_logout_ends_session(api, hotel, runtime):
    token = api.login("hotel", hotel.email).get_json()["sessionToken"]

    response = api.post("/api/auth/logout", token=token)

    assert response.status_code == 200
    assert "session_token=;" in response.headers["Set-Cookie"]
    assert api.get("/api/auth/me", token=token).status_code == 401
    assert runtime.audit_logger.recent(action="logout")


def test_session_expires_after_two_hours(api, hotel, clock):
    token = api.login("hotel", hotel.email).get_json()["sessionToken"]

    clock.advance(2 * 60 * 60)

    assert api.get("/api/auth/me", token=token).status_code == 401
