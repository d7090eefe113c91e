import anyio

from app.domain.users.schemas import user_key


def test_login_sets_session_cookie(client):
    response = client.post("/v1/auth/login", json={"username": "a0001", "password": "1234"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["user"]["username"] == "a0001"
    assert body["user"]["branchName"] == "울산"
    assert "session" in response.cookies
    assert "httponly" in response.headers["set-cookie"].lower()


def test_login_normalizes_branch_account_code(client):
    response = client.post("/v1/auth/login", json={"username": "울산 a0001", "password": "1234"})

    assert response.status_code == 200
    assert response.json()["user"]["username"] == "a0001"


def test_login_rejects_bad_credentials(client):
    wrong_password = client.post("/v1/auth/login", json={"username": "a0001", "password": "nope"})
    unknown_user = client.post("/v1/auth/login", json={"username": "ghost", "password": "1234"})

    assert wrong_password.status_code == 401
    assert wrong_password.headers["content-type"].startswith("application/problem+json")
    assert unknown_user.status_code == 401


def test_login_stores_hashed_password(client, store, login):
    login("a0001")

    record = anyio.run(store.get, user_key("a0001"))
    assert record["password"] != "1234"
    assert record["password"].startswith("bcrypt$")


def test_me_reflects_session(client, login):
    assert client.get("/v1/auth/me").json() == {"user": None}

    login("commander")
    me = client.get("/v1/auth/me").json()

    assert me["user"]["role"] == "COMMANDER"


def test_logout_ends_session(client, login):
    login("staff")

    assert client.post("/v1/auth/logout").json() == {"success": True}
    client.cookies.clear()
    assert client.get("/v1/refunds").status_code == 401


def test_change_password_flow(client, login):
    login("a0002")

    wrong = client.post(
        "/v1/auth/change-password", json={"currentPassword": "bad", "newPassword": "5678"}
    )
    assert wrong.status_code == 401

    changed = client.post(
        "/v1/auth/change-password", json={"currentPassword": "1234", "newPassword": "5678"}
    )
    assert changed.status_code == 200

    client.cookies.clear()
    assert client.post("/v1/auth/login", json={"username": "a0002", "password": "1234"}).status_code == 401
    assert client.post("/v1/auth/login", json={"username": "a0002", "password": "5678"}).status_code == 200


def test_protected_routes_require_session(client):
    response = client.get("/v1/refunds")

    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication required"
    assert "X-Request-ID" in response.headers
