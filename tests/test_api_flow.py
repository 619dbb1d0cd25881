from __future__ import annotations


class _FakeOcr:
    def __init__(self, text: str) -> None:
        self.text = text

    def extract_text(self, *, body: bytes, filename: str, content_type: str | None) -> str:
        return self.text


def _login(client, email: str) -> dict[str, str]:
    res = client.post("/api/auth/token", data={"username": email, "password": "pw"})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


def test_health_endpoints() -> None:
    from fastapi.testclient import TestClient

    from slipsafe.main import app

    client = TestClient(app)
    assert client.get("/healthz").json() == {"status": "ok"}

    res = client.get("/healthz/storage", params={"write_test": True})
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["backend"] == "local"


def test_login_and_role_enforcement(consumer, staff) -> None:
    from fastapi.testclient import TestClient

    from slipsafe.main import app

    client = TestClient(app)

    bad = client.post("/api/auth/token", data={"username": consumer.email, "password": "nope"})
    assert bad.status_code == 401
    assert client.get("/api/auth/me").status_code == 401

    consumer_headers = _login(client, "Shopper@Example.com")
    me = client.get("/api/auth/me", headers=consumer_headers)
    assert me.json()["role"] == "CONSUMER"

    # Consumers cannot reach the merchant desk.
    res = client.get("/api/merchant/claims/ABCD2345", headers=consumer_headers)
    assert res.status_code == 403

    staff_headers = _login(client, staff.email)
    res = client.get("/api/merchant/claims/ABCD2345", headers=staff_headers)
    assert res.status_code == 404
    assert res.json()["detail"]["error"] == "not_found"

    res = client.post(
        "/api/users",
        json={"email": "new@example.com", "password": "pw"},
        headers=staff_headers,
    )
    assert res.status_code == 403


def test_receipt_to_refund_over_http(consumer, staff) -> None:
    from fastapi.testclient import TestClient

    from slipsafe.main import app
    from slipsafe.modules.extraction.ocr import set_ocr_engine

    set_ocr_engine(
        _FakeOcr(
            "BEST BUY\n"
            "Date: 2026-03-14\n"
            "USB-C Hub  199.99\n"
            "TOTAL USD 245.99\n"
            "Returns accepted with receipt for a full refund\n"
        )
    )
    client = TestClient(app)
    consumer_headers = _login(client, consumer.email)
    staff_headers = _login(client, staff.email)

    res = client.post(
        "/api/receipts/preview",
        files={"upload": ("slip.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
        headers=consumer_headers,
    )
    assert res.status_code == 200, res.text
    preview = res.json()
    assert preview["merchant"] == "BEST BUY"
    assert preview["date"] == "2026-03-14"
    assert preview["confidence"] == "high"
    assert preview["refund_type"] == "full"
    assert preview["return_by"] == "2026-04-13"

    confirm_body = {
        "merchant": preview["merchant"],
        "date": preview["date"],
        "total": preview["total"],
        "currency": preview["currency"],
        "category": "Electronics",
        "refund_type": preview["refund_type"],
        "preview_token": preview["preview_token"],
        "raw_text": preview["raw_text"],
    }
    res = client.post("/api/receipts/confirm", json=confirm_body, headers=consumer_headers)
    assert res.status_code == 200, res.text
    confirmed = res.json()
    assert confirmed["duplicate"] is False
    receipt = confirmed["receipt"]
    assert receipt["has_image"] is True

    again = client.post("/api/receipts/confirm", json=confirm_body, headers=consumer_headers)
    assert again.json()["duplicate"] is True
    assert again.json()["receipt"]["id"] == receipt["id"]

    image = client.get(f"/api/receipts/{receipt['id']}/image", headers=consumer_headers)
    assert image.status_code == 200
    assert image.headers["content-type"] == "image/png"

    listed = client.get("/api/receipts", params={"q": "best"}, headers=consumer_headers)
    assert [r["id"] for r in listed.json()] == [receipt["id"]]

    # Another shopper cannot see it.
    assert client.get(f"/api/receipts/{receipt['id']}", headers=staff_headers).status_code == 403

    res = client.post(
        f"/api/receipts/{receipt['id']}/claims",
        json={"claim_type": "return"},
        headers=consumer_headers,
    )
    assert res.status_code == 201, res.text
    issued = res.json()
    code, pin = issued["claim_code"], issued["pin"]
    assert issued["claim"]["state"] == "issued"

    dup = client.post(
        f"/api/receipts/{receipt['id']}/claims", json={}, headers=consumer_headers
    )
    assert dup.status_code == 409
    assert dup.json()["detail"]["error"] == "claim_conflict"

    qr = client.get(f"/api/claims/{code}/qr.png", headers=consumer_headers)
    assert qr.status_code == 200
    assert qr.content.startswith(b"\x89PNG")

    inspected = client.post(
        "/api/claims/token/inspect", json={"token": issued["token"]}, headers=staff_headers
    )
    assert inspected.status_code == 200
    assert inspected.json()["claim"]["claim_code"] == code

    lookup = client.get(f"/api/merchant/claims/{code}", headers=staff_headers)
    assert lookup.json()["valid"] is True

    early = client.post(
        "/api/merchant/claims/redeem",
        json={"claim_code": code, "pin": pin, "amount": "10.00"},
        headers=staff_headers,
    )
    assert early.status_code == 409
    assert early.json()["detail"]["error"] == "not_verified"

    verified = client.post(
        "/api/merchant/claims/verify", json={"claim_code": code, "pin": pin}, headers=staff_headers
    )
    assert verified.status_code == 200
    assert verified.json()["state"] == "verified"

    too_much = client.post(
        "/api/merchant/claims/redeem",
        json={"claim_code": code, "pin": pin, "amount": "300.00"},
        headers=staff_headers,
    )
    assert too_much.status_code == 400
    assert too_much.json()["detail"]["error"] == "invalid_amount"

    redeemed = client.post(
        "/api/merchant/claims/redeem",
        json={"claim_code": code, "pin": pin, "amount": "100.00", "notes": "hub only"},
        headers=staff_headers,
    )
    assert redeemed.status_code == 200
    assert redeemed.json()["state"] == "partial"

    again = client.post(
        "/api/merchant/claims/redeem",
        json={"claim_code": code, "pin": pin, "amount": "100.00"},
        headers=staff_headers,
    )
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "already_used"

    attempts = client.get(f"/api/merchant/claims/{code}/attempts", headers=staff_headers)
    assert [a["result"] for a in attempts.json()] == [
        "looked_up",
        "not_verified",
        "verified",
        "invalid_amount",
        "partial_approved",
        "already_used",
    ]

    claims = client.get(
        "/api/claims", params={"receipt_id": receipt["id"]}, headers=consumer_headers
    )
    assert [c["state"] for c in claims.json()] == ["partial"]

    activity = client.get("/api/activity", headers=consumer_headers)
    types = {e["event_type"] for e in activity.json()}
    assert {"receipt.confirmed", "claim.issued"} <= types

    blocked = client.delete(f"/api/receipts/{receipt['id']}", headers=consumer_headers)
    assert blocked.status_code == 409


def test_wrong_pin_over_http_reports_remaining_attempts(consumer, staff, receipt) -> None:
    from fastapi.testclient import TestClient

    from slipsafe.main import app

    client = TestClient(app)
    consumer_headers = _login(client, consumer.email)
    staff_headers = _login(client, staff.email)

    issued = client.post(
        f"/api/receipts/{receipt.id}/claims", json={}, headers=consumer_headers
    ).json()
    wrong = "000000" if issued["pin"] != "000000" else "111111"

    res = client.post(
        "/api/merchant/claims/verify",
        json={"claim_code": issued["claim_code"], "pin": wrong},
        headers=staff_headers,
    )
    assert res.status_code == 403
    assert res.json()["detail"] == {
        "error": "pin_mismatch",
        "message": "PIN does not match",
        "remaining_attempts": 4,
    }


def test_category_update_and_delete(consumer, receipt) -> None:
    from fastapi.testclient import TestClient

    from slipsafe.main import app

    client = TestClient(app)
    headers = _login(client, consumer.email)

    res = client.patch(
        f"/api/receipts/{receipt.id}", json={"category": "Home"}, headers=headers
    )
    assert res.status_code == 200
    assert res.json()["category"] == "Home"

    filtered = client.get("/api/receipts", params={"category": "Home"}, headers=headers)
    assert len(filtered.json()) == 1

    assert client.delete(f"/api/receipts/{receipt.id}", headers=headers).status_code == 204
    assert client.get(f"/api/receipts/{receipt.id}", headers=headers).status_code == 404
