from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from sales_import.api.app import MAX_UPLOAD_BYTES, create_app
from sales_import.models.config_models import ImportOptions

SALES_MAPPING = json.dumps({"Invoice": "invoice_id", "Date": "date", "Net": "item_net"})


@pytest.fixture()
def client(provider, tmp_path):
    app = create_app(provider=provider, options=ImportOptions(error_log_dir=str(tmp_path / "logs")))
    with TestClient(app) as c:
        yield c


def _upload(content: bytes, content_type: str = "text/csv"):
    return {"file": ("sales.csv", content, content_type)}


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_import_success(client, fake_db):
    resp = client.post(
        "/api/import",
        files=_upload(b"Invoice,Date,Net\nINV1,2025-03-01,10\n"),
        data={"mappings": SALES_MAPPING, "type": "sales"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "importedCount": 1, "errorCount": 0, "totalRows": 1}
    assert fake_db.find("sales", invoice_id="INV1")


def test_import_validation_failure_is_400(client, fake_db):
    resp = client.post(
        "/api/import",
        files=_upload(b"Invoice,Date,Net\nINV1,2025-03-01,\n"),
        data={"mappings": SALES_MAPPING, "type": "sales"},
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["invalidRows"][0]["errors"] == ["Missing required field: item_net"]
    assert fake_db.statements == []


def test_import_without_file(client):
    resp = client.post("/api/import", data={"mappings": SALES_MAPPING, "type": "sales"})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "No file uploaded"}


def test_import_rejects_content_type(client):
    resp = client.post(
        "/api/import",
        files=_upload(b"%PDF-1.4", "application/pdf"),
        data={"mappings": SALES_MAPPING, "type": "sales"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Invalid file type")


def test_import_rejects_large_file(client, fake_db):
    resp = client.post(
        "/api/import",
        files=_upload(b"x" * (MAX_UPLOAD_BYTES + 1)),
        data={"mappings": SALES_MAPPING, "type": "sales"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "File too large. Maximum size is 10MB."


def test_import_rejects_bad_mapping_json(client):
    resp = client.post(
        "/api/import",
        files=_upload(b"Invoice\nINV1\n"),
        data={"mappings": "{not json", "type": "sales"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Invalid mappings JSON")


def test_import_dry_run(client, fake_db):
    resp = client.post(
        "/api/import",
        files=_upload(b"Invoice,Date,Net\nINV1,2025-03-01,10\n"),
        data={"mappings": SALES_MAPPING, "type": "sales", "dryRun": "true"},
    )
    assert resp.status_code == 200
    assert resp.json()["importedCount"] == 0
    assert fake_db.acquired == 0


def test_import_unknown_type(client):
    resp = client.post(
        "/api/import",
        files=_upload(b"a\n1\n"),
        data={"mappings": "{}", "type": "invoices"},
    )
    assert resp.status_code == 400
    assert "unknown import type" in resp.json()["error"]


def test_lifespan_closes_provider(provider, tmp_path):
    app = create_app(provider=provider, options=ImportOptions(error_log_dir=str(tmp_path)))
    with TestClient(app):
        pass
    assert provider.closed is True


def test_import_writes_one_error_log_per_request(client, fake_db, tmp_path):
    fake_db.reject_row = lambda table, row: row["invoice_id"] == "INV2"
    for _ in range(2):
        resp = client.post(
            "/api/import",
            files=_upload(b"Invoice,Date,Net\nINV1,2025-03-01,10\nINV2,2025-03-02,20\n"),
            data={"mappings": SALES_MAPPING, "type": "sales"},
        )
        assert resp.status_code == 200
        assert resp.json()["errorCount"] == 1
    lines = [
        json.loads(line)
        for path in (tmp_path / "logs").glob("errors-*.log")
        for line in path.read_text(encoding="utf-8").splitlines()
    ]
    assert [(r["source"], r["error_type"], r["row"]) for r in lines] == [
        ("sales.csv", "ROW_PERSISTENCE_ERROR", 1),
        ("sales.csv", "ROW_PERSISTENCE_ERROR", 1),
    ]
