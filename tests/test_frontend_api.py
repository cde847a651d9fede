from __future__ import annotations

import csv
import io
import os
import sys
from pathlib import Path

import pytest
from starlette.testclient import TestClient

sys.path.insert(0, os.path.abspath("src"))

from receipt_scanner.domain.models import ExtractedData
from receipt_scanner.extraction.errors import ProviderError
from receipt_scanner.frontend import create_app
from receipt_scanner.orchestrator.lifecycle import ReceiptManager
from receipt_scanner.preferences import PreferencesStore


RESULTS = {
    b"netto": ExtractedData(shop_name="Netto", purchase_date="2025-12-23", total_amount=80.0, moms=20.0),
    b"fotex": ExtractedData(shop_name='Føtex "City"', purchase_date="2025-12-24", total_amount=250.0, moms=50.0),
}


def _fake_extractor(source, settings):
    if source.content not in RESULTS:
        raise ProviderError("Gemini failed: 500", status_code=500)
    return RESULTS[source.content]


@pytest.fixture()
def app_parts(tmp_path: Path):
    (tmp_path / "README.md").write_text("test marker", encoding="utf-8")
    preferences = PreferencesStore(str(tmp_path / "var" / "preferences.json"))
    manager = ReceiptManager(preferences.extraction_settings, extractor=_fake_extractor, preprocessor=lambda s: s)
    app = create_app(
        root_dir=str(tmp_path),
        manager=manager,
        preferences=preferences,
        serve_static=False,
        allow_origins=["*"],
    )
    return app, manager, preferences


def _upload(client: TestClient, *contents: bytes):
    files = [("files", (f"receipt{i}.jpg", content, "image/jpeg")) for i, content in enumerate(contents)]
    return client.post("/api/receipts", files=files)


def test_settings_roundtrip_never_returns_key(app_parts) -> None:
    app, _, preferences = app_parts
    with TestClient(app) as client:
        initial = client.get("/api/settings").json()
        assert initial == {"provider": "GEMINI", "hasApiKey": False}

        updated = client.put("/api/settings", json={"apiKey": "secret-key", "provider": "openrouter"})
        assert updated.status_code == 200
        assert updated.json() == {"provider": "OPENROUTER", "hasApiKey": True}
        assert "secret-key" not in updated.text
        assert preferences.load().api_key == "secret-key"

        bad = client.put("/api/settings", json={"provider": "nope"})
        assert bad.status_code == 400


def test_upload_requires_credential(app_parts) -> None:
    app, manager, _ = app_parts
    with TestClient(app) as client:
        resp = _upload(client, b"netto")
    assert resp.status_code == 409
    assert "API key" in resp.json()["detail"]
    assert manager.items() == []


def test_upload_extracts_and_reports(app_parts) -> None:
    app, _, preferences = app_parts
    preferences.save(api_key="k")
    with TestClient(app) as client:
        resp = _upload(client, b"netto", b"garbage", b"fotex")
        assert resp.status_code == 202
        queued = resp.json()["items"]
        assert [i["status"] for i in queued] == ["IDLE", "IDLE", "IDLE"]
        assert queued[0]["previewUrl"] == f"/api/receipts/{queued[0]['id']}/preview"

        items = client.get("/api/receipts").json()["items"]
        assert [i["status"] for i in items] == ["COMPLETED", "ERROR", "COMPLETED"]
        assert items[0]["data"]["totalAmount"] == 100.0
        assert items[1]["error"] == "Gemini failed: 500"

        preview = client.get(queued[0]["previewUrl"])
        assert preview.content == b"netto"
        assert preview.headers["content-type"].startswith("image/jpeg")

        stats = client.get("/api/stats").json()
        assert stats["count"] == 2
        assert stats["totalSpent"] == 350.0
        assert stats["totalVat"] == 70.0
        assert stats["perShop"][0] == {"name": 'Føtex "City"', "value": 250.0}

        export = client.get("/api/export.csv")
        assert export.status_code == 200
        assert export.headers["content-type"].startswith("text/csv")
        assert "receipts_export_" in export.headers["content-disposition"]
        text = export.content.decode("utf-8-sig")
        assert text.split("\n") == [
            "Date (YYYY-MM-DD),Total Amount (DKK),MOMS (DKK),Shop Name",
            '2025-12-23,100.00,20.00,"Netto"',
            '2025-12-24,250.00,50.00,"Føtex ""City"""',
        ]


def test_edit_and_delete(app_parts) -> None:
    app, _, preferences = app_parts
    preferences.save(api_key="k")
    with TestClient(app) as client:
        ok_id, failed_id = [i["id"] for i in _upload(client, b"netto", b"garbage").json()["items"]]

        edit = {"shopName": "Netto Amager", "purchaseDate": "2025-12-22", "totalAmount": "80", "moms": 20}
        resp = client.patch(f"/api/receipts/{ok_id}", json=edit)
        assert resp.status_code == 200
        assert resp.json()["data"] == {
            "shopName": "Netto Amager",
            "purchaseDate": "2025-12-22",
            "totalAmount": 80.0,
            "moms": 20.0,
        }

        assert client.patch(f"/api/receipts/{failed_id}", json=edit).status_code == 409
        assert client.patch(f"/api/receipts/{ok_id}", json={"shopName": "x"}).status_code == 400
        assert client.patch("/api/receipts/unknown", json=edit).status_code == 404

        assert client.delete(f"/api/receipts/{failed_id}").status_code == 204
        assert client.delete(f"/api/receipts/{failed_id}").status_code == 204
        remaining = client.get("/api/receipts").json()["items"]
        assert [i["id"] for i in remaining] == [ok_id]
        assert client.get(f"/api/receipts/{failed_id}").status_code == 404


@pytest.mark.parametrize("bad_amount", ["NaN", "inf", "-Infinity"])
def test_edit_rejects_non_finite_amounts(app_parts, bad_amount) -> None:
    app, _, preferences = app_parts
    preferences.save(api_key="k")
    with TestClient(app) as client:
        (item,) = _upload(client, b"netto").json()["items"]
        edit = {"shopName": "Netto", "purchaseDate": "2025-12-23", "totalAmount": bad_amount, "moms": 20}
        resp = client.patch(f"/api/receipts/{item['id']}", json=edit)
        assert resp.status_code == 400
        assert "finite" in resp.json()["detail"]

        listing = client.get("/api/receipts")
        assert listing.status_code == 200
        assert listing.json()["items"][0]["data"]["totalAmount"] == 100.0


def test_edited_date_with_separators_keeps_csv_columns(app_parts) -> None:
    app, _, preferences = app_parts
    preferences.save(api_key="k")
    with TestClient(app) as client:
        (item,) = _upload(client, b"netto").json()["items"]
        edit = {"shopName": "Netto", "purchaseDate": "23,12\n2025", "totalAmount": 100, "moms": 20}
        assert client.patch(f"/api/receipts/{item['id']}", json=edit).status_code == 200
        text = client.get("/api/export.csv").content.decode("utf-8-sig")

    rows = list(csv.reader(io.StringIO(text)))
    assert rows[1] == ["23,12\n2025", "100.00", "20.00", "Netto"]


def test_export_without_completed_items_is_refused(app_parts) -> None:
    app, _, _ = app_parts
    with TestClient(app) as client:
        resp = client.get("/api/export.csv")
    assert resp.status_code == 409
    assert resp.json()["detail"] == "No processed data available to export."


def test_removing_key_clears_receipts(app_parts) -> None:
    app, manager, preferences = app_parts
    preferences.save(api_key="k")
    with TestClient(app) as client:
        _upload(client, b"netto")
        resp = client.delete("/api/settings")
        assert resp.json() == {"provider": "GEMINI", "hasApiKey": False, "cleared": 1}
        assert client.get("/api/health").json() == {"status": "ok", "receipts": 0}
    assert manager.items() == []


def test_api_only_root(app_parts) -> None:
    app, _, _ = app_parts
    with TestClient(app) as client:
        resp = client.get("/")
    assert resp.status_code == 200
    assert "Static frontend disabled" in resp.json()["detail"]
