from app.settings import settings


def test_upload_then_read(client, login):
    login("a0001")

    response = client.post(
        "/v1/uploads",
        data={"folder": "receipts"},
        files={"file": ("receipt.JPG", b"\xff\xd8jpeg-bytes", "image/jpeg")},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["key"].startswith("receipts/")
    assert body["key"].endswith(".jpg")
    assert body["url"] == f"/v1/uploads/{body['key']}"

    fetched = client.get(body["url"])
    assert fetched.status_code == 200
    assert fetched.content == b"\xff\xd8jpeg-bytes"
    assert fetched.headers["content-type"] == "image/jpeg"


def test_upload_requires_session(client):
    response = client.post("/v1/uploads", files={"file": ("a.png", b"png", "image/png")})
    assert response.status_code == 401


def test_upload_rejects_unknown_types_and_folders(client, login):
    login("a0001")

    wrong_type = client.post("/v1/uploads", files={"file": ("a.exe", b"MZ", "application/x-msdownload")})
    wrong_folder = client.post(
        "/v1/uploads", data={"folder": "../etc"}, files={"file": ("a.png", b"png", "image/png")}
    )

    assert wrong_type.status_code == 415
    assert wrong_folder.status_code == 400


def test_upload_enforces_size_limit(client, login, storage, monkeypatch):
    monkeypatch.setattr(settings, "upload_max_bytes", 8)
    login("a0001")

    response = client.post("/v1/uploads", files={"file": ("big.png", b"x" * 64, "image/png")})

    assert response.status_code == 413
    assert storage._objects == {}


def test_missing_upload_is_not_found(client, login):
    login("a0001")
    assert client.get("/v1/uploads/receipts/missing.jpg").status_code == 404
