from datetime import date
from decimal import Decimal

import pytest

from commission_ledger.exceptions import NotFoundError, ValidationError
from commission_ledger.models import ServiceInvoiceCreateRequest
from commission_ledger.services import InvoiceImportService, LedgerService, ServiceInvoiceService


@pytest.fixture
def order_id(db, nfe_xml_factory):
    imported = InvoiceImportService(db).import_document(nfe_xml_factory(), "5", "nota.xml")
    return LedgerService(db).create_order("Janeiro", [t["id"] for t in imported["titles"]])["order_id"]


def _request(**overrides):
    fields = {"number": "NFSE-1", "issue_date": date(2024, 2, 1), "value": Decimal("75.00")}
    fields.update(overrides)
    return ServiceInvoiceCreateRequest(**fields)


class TestServiceInvoiceService:

    def test_create_linked_to_order(self, db, order_id):
        created = ServiceInvoiceService(db).create_service_invoice(_request(order_id=order_id))

        assert created["number"] == "NFSE-1"
        assert created["value"] == 75.0
        assert created["payment_status"] == "awaiting"
        assert created["order_id"] == order_id
        assert created["order_description"] == "Janeiro"
        assert created["order_total"] == 75.0
        assert created["order_title_count"] == 2

    def test_create_without_order(self, db):
        created = ServiceInvoiceService(db).create_service_invoice(_request())
        assert created["order_id"] is None
        assert created["order_description"] is None

    def test_create_with_unknown_order_rejected(self, db):
        with pytest.raises(ValidationError):
            ServiceInvoiceService(db).create_service_invoice(_request(order_id=999))
        assert ServiceInvoiceService(db).list_service_invoices() == []

    def test_partial_update(self, db, order_id):
        service = ServiceInvoiceService(db)
        created = service.create_service_invoice(_request(order_id=order_id, notes="primeira"))

        updated = service.update_service_invoice(created["id"], {
            "payment_status": "paid",
            "payment_date": date(2024, 3, 1)
        })
        assert updated["payment_status"] == "paid"
        assert updated["payment_date"] == "2024-03-01"
        assert updated["notes"] == "primeira"
        assert updated["order_id"] == order_id

    def test_update_can_unlink_order(self, db, order_id):
        service = ServiceInvoiceService(db)
        created = service.create_service_invoice(_request(order_id=order_id))
        updated = service.update_service_invoice(created["id"], {"order_id": None})
        assert updated["order_id"] is None

    @pytest.mark.parametrize("changes", [{}, {"number": None}, {"unknown": 1}])
    def test_invalid_updates_rejected(self, db, changes):
        service = ServiceInvoiceService(db)
        created = service.create_service_invoice(_request())
        with pytest.raises(ValidationError):
            service.update_service_invoice(created["id"], changes)

    def test_update_unknown(self, db):
        with pytest.raises(NotFoundError):
            ServiceInvoiceService(db).update_service_invoice(999, {"notes": "x"})

    def test_delete(self, db):
        service = ServiceInvoiceService(db)
        created = service.create_service_invoice(_request())
        service.delete_service_invoice(created["id"])

        with pytest.raises(NotFoundError):
            service.get_service_invoice(created["id"])
        with pytest.raises(NotFoundError):
            service.delete_service_invoice(created["id"])

    def test_list(self, db, order_id):
        service = ServiceInvoiceService(db)
        service.create_service_invoice(_request(number="A"))
        service.create_service_invoice(_request(number="B", order_id=order_id))
        assert sorted(si["number"] for si in service.list_service_invoices()) == ["A", "B"]
