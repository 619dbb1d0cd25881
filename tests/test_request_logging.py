from __future__ import annotations

import json
import logging


def _format(**fields) -> dict:
    from slipsafe.core.logging import JsonFormatter

    record = logging.LogRecord("slipsafe.test", logging.INFO, __file__, 1, "claim.verify", None, None)
    record.event = "claim.verify"
    record.fields = fields
    return json.loads(JsonFormatter().format(record))


def test_secrets_are_masked() -> None:
    line = _format(pin="123456", preview_token="abc", claim_id="c1", notes=None)
    assert line["event"] == "claim.verify"
    assert line["service"] == "slipsafe"
    assert line["pin"] == "***"
    assert line["preview_token"] == "***"
    assert line["claim_id"] == "c1"
    assert "notes" not in line


def test_request_id_is_echoed() -> None:
    from fastapi.testclient import TestClient

    from slipsafe.main import app

    client = TestClient(app)
    res = client.get("/healthz", headers={"X-Request-Id": "req-42"})
    assert res.headers["x-request-id"] == "req-42"
    assert client.get("/healthz").headers["x-request-id"]
