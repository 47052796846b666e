from __future__ import annotations

from pathlib import Path

from starlette.testclient import TestClient

from equipment_stock.domain.errors import AnalysisFailed
from equipment_stock.domain.models import Candidate, ItemDraft
from equipment_stock.inventory.frontend import create_app
from equipment_stock.inventory.ledger import InventoryLedger
from equipment_stock.inventory.store import MemoryKeyValueStore


class FakePipeline:
    def __init__(self, candidate=None, fail: bool = False) -> None:
        self.candidate = candidate or Candidate(
            name="HP LaserJet Pro M404dn", description="LaserJet", serial_number="CN1", device_type="Printer"
        )
        self.fail = fail
        self.images = []

    async def analyze(self, image):
        self.images.append(image)
        if self.fail:
            raise AnalysisFailed()
        return self.candidate


def _client(root: Path, pipeline=None, *, enable_scan: bool = True):
    (root / "README.md").write_text("test marker", encoding="utf-8")
    ledger = InventoryLedger(MemoryKeyValueStore())
    ledger.add_item(ItemDraft(name="Portátil", quantity=4, device_type="Laptop", serial_number="LP-1"))
    ledger.add_item(ItemDraft(name="Cable, HDMI", quantity=10, location="Armario"))
    app = create_app(root_dir=str(root), ledger=ledger, pipeline=pipeline, enable_scan=enable_scan)
    return TestClient(app), ledger


def test_health_and_listing(tmp_path: Path):
    client, _ = _client(tmp_path, enable_scan=False)

    health = client.get("/api/health").json()
    assert health == {"status": "ok", "items": 2, "transactions": 2, "scan_enabled": False}

    listing = client.get("/api/items").json()
    assert listing["total"] == 2
    assert [it["name"] for it in listing["items"]] == ["Cable, HDMI", "Portátil"]

    filtered = client.get("/api/items", params={"search": "laptop"}).json()
    assert [it["serialNumber"] for it in filtered["items"]] == ["LP-1"]


def test_add_adjust_and_error_statuses(tmp_path: Path):
    client, ledger = _client(tmp_path, enable_scan=False)

    created = client.post("/api/items", json={"name": "Switch", "quantity": "2", "serialNumber": "SW-1"})
    assert created.status_code == 201
    item_id = created.json()["id"]

    assert client.post("/api/items", json={"name": "", "quantity": 1}).status_code == 400
    dup = client.post("/api/items", json={"name": "Otro", "quantity": 1, "serialNumber": "sw-1"})
    assert dup.status_code == 409
    assert dup.json()["error"] == "DuplicateSerial"

    adjusted = client.post(f"/api/items/{item_id}/adjust", json={"delta": -1})
    assert adjusted.status_code == 200
    assert adjusted.json()["quantity"] == 1

    too_many = client.post(f"/api/items/{item_id}/adjust", json={"delta": -5})
    assert too_many.status_code == 409
    assert too_many.json()["error"] == "InsufficientStock"
    assert client.post(f"/api/items/{item_id}/adjust", json={"delta": "x"}).status_code == 400
    assert client.post("/api/items/id_missing/adjust", json={"delta": 1}).status_code == 404
    assert client.post(f"/api/items/{item_id}/adjust", content=b"not json").status_code == 400

    assert ledger.get_item(item_id).quantity == 1


def test_decommission_routes(tmp_path: Path):
    client, ledger = _client(tmp_path, enable_scan=False)

    by_serial = client.get("/api/items/by-serial/lp-1")
    assert by_serial.status_code == 200
    item_id = by_serial.json()["id"]

    removed = client.post("/api/decommission", json={"serialNumber": "LP-1"})
    assert removed.status_code == 200
    assert removed.json()["type"] == "Baja"
    assert removed.json()["quantity"] == 4
    assert client.get(f"/api/items/{item_id}").status_code == 404
    assert client.get("/api/items/by-serial/LP-1").status_code == 404

    other = ledger.search("hdmi")[0]
    assert client.delete(f"/api/items/{other.id}").status_code == 200
    assert client.delete(f"/api/items/{other.id}").status_code == 404

    log = client.get("/api/transactions", params={"limit": 2}).json()
    assert log["total"] == 4
    assert [tx["type"] for tx in log["items"]] == ["Baja", "Baja"]


def test_export_csv(tmp_path: Path):
    client, _ = _client(tmp_path, enable_scan=False)

    resp = client.get("/api/export.csv")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "informe_stock_" in resp.headers["content-disposition"]
    text = resp.content.decode("utf-8")
    assert text.startswith("\ufeffNombre,")
    assert '"Cable, HDMI"' in text

    assert client.get("/api/export.csv", params={"search": "nothing-matches"}).status_code == 400


def test_scan_endpoint(tmp_path: Path):
    pipeline = FakePipeline()
    client, _ = _client(tmp_path, pipeline)

    resp = client.post("/api/scan", content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"})
    assert resp.status_code == 200
    assert resp.json() == {
        "name": "HP LaserJet Pro M404dn",
        "description": "LaserJet",
        "serialNumber": "CN1",
        "deviceType": "Printer",
    }
    assert pipeline.images[0].mime_type == "image/jpeg"

    assert client.post("/api/scan", content=b"hi", headers={"content-type": "text/plain"}).status_code == 415
    assert client.post("/api/scan", content=b"", headers={"content-type": "image/png"}).status_code == 400


def test_scan_failures(tmp_path: Path):
    client, _ = _client(tmp_path, FakePipeline(fail=True))
    resp = client.post("/api/scan", content=b"img", headers={"content-type": "image/jpeg"})
    assert resp.status_code == 502
    assert resp.json()["detail"] == "Could not analyze the image. Please try again."

    disabled, _ = _client(tmp_path, enable_scan=False)
    assert disabled.post("/api/scan", content=b"img", headers={"content-type": "image/jpeg"}).status_code == 503
