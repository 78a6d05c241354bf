from datetime import date
from decimal import Decimal

import pytest

from commission_ledger.exceptions import ValidationError
from commission_ledger.models import Installment, InvoiceRecord, PaymentStatus, TitleStatus
from commission_ledger.services import derive_commission_titles, detect_document_kind, validate_commission_rate


def _record(*installments):
    return InvoiceRecord(
        number="1234",
        total_value=sum((i.value for i in installments), Decimal("0")),
        installments=list(installments)
    )


class TestDeriveCommissionTitles:

    def test_one_title_per_installment(self):
        record = _record(
            Installment(number="001", due_date=date(2024, 2, 15), value=Decimal("100")),
            Installment(number="002", due_date=date(2024, 12, 5), value=Decimal("250.50")),
            Installment(number="003", due_date=None, value=Decimal("333.33")),
        )
        drafts = derive_commission_titles(record, Decimal("7.5"))

        assert len(drafts) == 3
        assert [d.commission_value for d in drafts] == [
            Decimal("100") * Decimal("7.5") / 100,
            Decimal("250.50") * Decimal("7.5") / 100,
            Decimal("333.33") * Decimal("7.5") / 100,
        ]
        assert [d.forecast_date for d in drafts] == [date(2024, 3, 20), date(2025, 1, 20), None]
        assert all(d.status == TitleStatus.PENDING for d in drafts)
        assert all(d.payment_status == PaymentStatus.PENDING for d in drafts)
        assert all(d.commission_rate == Decimal("7.5") for d in drafts)

    def test_no_installments_gives_no_titles(self):
        assert derive_commission_titles(InvoiceRecord(), Decimal("5")) == []


class TestValidateCommissionRate:

    @pytest.mark.parametrize("rate, expected", [
        ("5", Decimal("5")),
        ("2.5", Decimal("2.5")),
        (100, Decimal("100")),
        (Decimal("0.01"), Decimal("0.01")),
    ])
    def test_accepts_rates_in_range(self, rate, expected):
        assert validate_commission_rate(rate) == expected

    @pytest.mark.parametrize("rate", [None, "", "abc", "0", 0, "-1", "100.01", "NaN", "Infinity"])
    def test_rejects_invalid_rates(self, rate):
        with pytest.raises(ValidationError):
            validate_commission_rate(rate)


class TestDetectDocumentKind:

    @pytest.mark.parametrize("content, filename, expected", [
        (b"<?xml version='1.0'?><NFe/>", None, "xml"),
        (b"qualquer", "nota.XML", "xml"),
        (b"%PDF-1.7 ...", None, "pdf"),
        (b"qualquer", "nota.pdf", "pdf"),
        (b"NF-e N 000001234", "nota.txt", "text"),
    ])
    def test_detects_kind(self, content, filename, expected):
        assert detect_document_kind(content, filename) == expected
