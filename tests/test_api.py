import os

import pytest
from fastapi.testclient import TestClient

from commission_ledger.config import settings
from commission_ledger.main import app


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture
def client(database, upload_dir):
    app.state.database = database
    with TestClient(app) as test_client:
        yield test_client
    app.state.database = None


def _import(client, content, rate="5", filename="nota.xml"):
    return client.post(
        "/invoices/import",
        files={"file": (filename, content, "application/octet-stream")},
        data={"commission_rate": rate}
    )


def _uploads_left(upload_dir):
    return os.listdir(upload_dir) if upload_dir.exists() else []


class TestInvoiceEndpoints:

    def test_import_xml(self, client, nfe_xml_factory, upload_dir):
        response = _import(client, nfe_xml_factory())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["request_id"]
        assert body["data"]["title_count"] == 2
        assert [t["commission_value"] for t in body["data"]["titles"]] == [25.0, 50.0]
        assert _uploads_left(upload_dir) == []

    def test_import_duplicate_returns_conflict(self, client, nfe_xml_factory):
        assert _import(client, nfe_xml_factory()).status_code == 200
        response = _import(client, nfe_xml_factory())
        assert response.status_code == 409
        assert response.json()["detail"]["kind"] == "duplicate_error"

    def test_import_malformed_xml(self, client, upload_dir):
        response = _import(client, b"<NFe><infNFe>")
        assert response.status_code == 422
        assert response.json()["detail"]["kind"] == "structural_parse_error"
        assert _uploads_left(upload_dir) == []

    def test_import_invalid_rate(self, client, nfe_xml_factory, upload_dir):
        response = _import(client, nfe_xml_factory(), rate="abc")
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "validation_error"
        assert _uploads_left(upload_dir) == []
        assert client.get("/invoices").json()["data"] == []

    def test_import_text_document(self, client, nfe_text):
        response = _import(client, nfe_text.encode("utf-8"), rate="10", filename="nota.txt")
        assert response.status_code == 200
        assert [t["commission_value"] for t in response.json()["data"]["titles"]] == [50.0, 100.0]

    def test_preview_does_not_persist(self, client, nfe_text):
        response = client.post(
            "/invoices/preview",
            files={"file": ("nota.txt", nfe_text.encode("utf-8"), "text/plain")}
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["issuer"]["name"] == "ACME COMERCIO LTDA"
        assert data["total_value"] == 1500.0
        assert client.get("/invoices").json()["data"] == []

    def test_delete_invoice(self, client, nfe_xml_factory):
        invoice_id = _import(client, nfe_xml_factory()).json()["data"]["invoice_id"]

        assert client.delete(f"/invoices/{invoice_id}").status_code == 200
        assert client.get("/titles").json()["data"] == []
        assert client.delete(f"/invoices/{invoice_id}").status_code == 404


class TestOrderEndpoints:

    def test_order_flow(self, client, nfe_xml_factory):
        imported = _import(client, nfe_xml_factory()).json()["data"]
        title_ids = [t["id"] for t in imported["titles"]]

        response = client.post("/orders", json={"description": "Janeiro", "title_ids": title_ids})
        assert response.status_code == 200
        order = response.json()["data"]
        assert order["total"] == 75.0
        assert order["title_count"] == 2

        detail = client.get(f"/orders/{order['order_id']}").json()["data"]
        assert len(detail["titles"]) == 2
        assert len(client.get("/orders").json()["data"]) == 1

        # 已归入结算单：金额冻结，付款状态可改，发票不可删除
        frozen = client.put(f"/titles/{title_ids[0]}", json={"value": 1})
        assert frozen.status_code == 409
        assert frozen.json()["detail"]["kind"] == "conflict_error"

        paid = client.put(f"/titles/{title_ids[0]}", json={"payment_status": "paid"})
        assert paid.status_code == 200
        assert paid.json()["data"]["payment_status"] == "paid"

        assert client.delete(f"/invoices/{imported['invoice_id']}").status_code == 409

    def test_empty_order_rejected(self, client):
        response = client.post("/orders", json={"description": "vazio", "title_ids": []})
        assert response.status_code == 400

    def test_unknown_resources(self, client):
        assert client.get("/orders/999").status_code == 404
        assert client.get("/titles/999").status_code == 404
        assert client.get("/service-invoices/999").status_code == 404


class TestServiceInvoiceEndpoints:

    def test_crud(self, client):
        created = client.post("/service-invoices", json={
            "number": "NFSE-9",
            "issue_date": "2024-02-01",
            "value": "120.50"
        })
        assert created.status_code == 200
        service_invoice_id = created.json()["data"]["id"]
        assert created.json()["data"]["payment_status"] == "awaiting"

        updated = client.put(f"/service-invoices/{service_invoice_id}", json={"payment_status": "paid"})
        assert updated.status_code == 200
        assert updated.json()["data"]["payment_status"] == "paid"
        assert updated.json()["data"]["value"] == 120.5

        assert len(client.get("/service-invoices").json()["data"]) == 1
        assert client.delete(f"/service-invoices/{service_invoice_id}").status_code == 200
        assert client.get(f"/service-invoices/{service_invoice_id}").status_code == 404

    def test_unknown_order_rejected(self, client):
        response = client.post("/service-invoices", json={
            "order_id": 999,
            "number": "NFSE-9",
            "issue_date": "2024-02-01",
            "value": "10"
        })
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "validation_error"

    def test_schema_validation(self, client):
        response = client.post("/service-invoices", json={"number": "", "issue_date": "2024-02-01", "value": 0})
        assert response.status_code == 422
