REFUND = {
    "type": "single",
    "refundDate": "2024-05-01",
    "vehicleNumber": "12가3456",
    "companyName": "ABC Motors",
    "dealerName": "홍길동",
    "managerName": "김담당",
    "refundMethod": "card",
    "claimAmount": 100000,
    "refundReason": "중복결제",
    "receiptDate": "2024-04-30",
    "receiptPhotos": ["/v1/uploads/receipts/a.jpg"],
}


def _create_as(client, login, username: str, **fields) -> str:
    login(username)
    response = client.post("/v1/refunds", json={**REFUND, **fields})
    assert response.status_code == 200, response.text
    return response.json()["refundId"]


def test_branch_sees_only_its_claims(client, login):
    mine = _create_as(client, login, "a0001")
    _create_as(client, login, "a0002", vehicleNumber="99다9999")

    login("a0001")
    response = client.get("/v1/branch/refunds")

    assert response.status_code == 200
    assert [item["id"] for item in response.json()["refunds"]] == [mine]


def test_branch_routes_require_branch_role(client, login):
    login("staff")
    assert client.get("/v1/branch/refunds").status_code == 403


def test_branch_update_switches_method(client, login):
    refund_id = _create_as(client, login, "a0001")

    response = client.patch(
        f"/v1/branch/refunds/{refund_id}",
        json={
            "refundMethod": "account",
            "bankName": "국민",
            "accountNumber": "123-456",
            "accountHolder": "홍길동",
        },
    )

    assert response.status_code == 200
    refund = response.json()["refund"]
    assert refund["refundMethod"] == "account"
    assert "receiptDate" not in refund


def test_branch_cannot_touch_other_branch_claims(client, login):
    refund_id = _create_as(client, login, "a0001")

    login("a0002")
    assert client.patch(f"/v1/branch/refunds/{refund_id}", json={"dealerName": "x"}).status_code == 403
    assert client.delete(f"/v1/branch/refunds/{refund_id}").status_code == 403


def test_branch_cannot_edit_approved_claim(client, login):
    refund_id = _create_as(client, login, "a0001")
    login("commander")
    client.post("/v1/refunds/action", json={"refundId": refund_id, "action": "approve"})

    login("a0001")
    response = client.patch(f"/v1/branch/refunds/{refund_id}", json={"dealerName": "x"})

    assert response.status_code == 400


def test_branch_delete_reports_blobs(client, login):
    refund_id = _create_as(client, login, "a0001")

    response = client.delete(f"/v1/branch/refunds/{refund_id}")

    assert response.json() == {
        "success": True,
        "deletedId": refund_id,
        "deletedPhotos": 1,
        "failedPhotos": 0,
    }
    assert client.get("/v1/branch/refunds").json() == {"refunds": []}
