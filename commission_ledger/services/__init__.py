from .commission_service import derive_commission_titles, validate_commission_rate
from .import_service import InvoiceImportService, detect_document_kind
from .ledger_service import LedgerService
from .service_invoice_service import ServiceInvoiceService

__all__ = [
    "derive_commission_titles",
    "validate_commission_rate",
    "InvoiceImportService",
    "detect_document_kind",
    "LedgerService",
    "ServiceInvoiceService"
]
