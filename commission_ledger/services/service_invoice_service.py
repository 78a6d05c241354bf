import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..exceptions import NotFoundError, ValidationError
from ..models import ServiceInvoiceCreateRequest
from ..orm_models import Order, ServiceInvoice
from ..repository import LedgerRepository
from ..utils import iso_or_none, money_to_float

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("order_id", "number", "issue_date", "value", "payment_status", "payment_date", "notes")


def service_invoice_to_dict(service_invoice: ServiceInvoice, order: Optional[Order] = None) -> Dict[str, Any]:
    return {
        "id": service_invoice.id,
        "order_id": service_invoice.order_id,
        "number": service_invoice.number,
        "issue_date": iso_or_none(service_invoice.issue_date),
        "value": money_to_float(service_invoice.value),
        "payment_status": service_invoice.payment_status,
        "payment_date": iso_or_none(service_invoice.payment_date),
        "notes": service_invoice.notes or "",
        "order_description": order.description if order else None,
        "order_total": money_to_float(order.total_value) if order else None,
        "order_title_count": order.title_count if order else None,
        "created_at": service_invoice.created_at.isoformat() if service_invoice.created_at else None
    }


class ServiceInvoiceService:
    """服务发票（NFS-e）管理，与结算单只是弱关联"""

    def __init__(self, db: Session):
        self.db = db
        self.repository = LedgerRepository(db)

    def _check_order(self, order_id: Optional[int]):
        if order_id is not None and self.repository.get_order(order_id) is None:
            raise ValidationError(f"结算单不存在: {order_id}")

    def list_service_invoices(self) -> List[Dict[str, Any]]:
        return [service_invoice_to_dict(si, order) for si, order in self.repository.list_service_invoices()]

    def get_service_invoice(self, service_invoice_id: int) -> Dict[str, Any]:
        row = self.repository.get_service_invoice_detail(service_invoice_id)
        if row is None:
            raise NotFoundError(f"服务发票不存在: {service_invoice_id}")
        return service_invoice_to_dict(*row)

    def create_service_invoice(self, request: ServiceInvoiceCreateRequest) -> Dict[str, Any]:
        fields = request.model_dump()
        fields["payment_status"] = request.payment_status.value
        try:
            self._check_order(request.order_id)
            service_invoice = self.repository.create_service_invoice(fields)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"服务发票 {service_invoice.id} 创建成功: 编号={request.number}, 结算单={request.order_id}")
        return self.get_service_invoice(service_invoice.id)

    def update_service_invoice(self, service_invoice_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        """部分更新，changes 只包含调用方显式提交的字段"""
        changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        for required in ("number", "issue_date", "value", "payment_status"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"字段 {required} 不能为空")
        if not changes:
            raise ValidationError("没有需要更新的字段")
        if "payment_status" in changes:
            changes["payment_status"] = getattr(changes["payment_status"], "value", changes["payment_status"])
        if "notes" in changes and changes["notes"] is None:
            changes["notes"] = ""

        try:
            service_invoice = self.repository.get_service_invoice(service_invoice_id)
            if service_invoice is None:
                raise NotFoundError(f"服务发票不存在: {service_invoice_id}")
            if "order_id" in changes:
                self._check_order(changes["order_id"])
            self.repository.update_service_invoice(service_invoice, changes)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"服务发票 {service_invoice_id} 已更新: {list(changes.keys())}")
        return self.get_service_invoice(service_invoice_id)

    def delete_service_invoice(self, service_invoice_id: int) -> None:
        try:
            if not self.repository.delete_service_invoice(service_invoice_id):
                raise NotFoundError(f"服务发票不存在: {service_invoice_id}")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"服务发票 {service_invoice_id} 已删除")
