"""
台账存储端口

封装对发票、分期、佣金单据、结算单和服务发票表的读写。
本类只负责数据访问，不提交事务；事务边界由各服务控制。
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import InvoiceRecord, CommissionTitleDraft, TitleStatus
from .orm_models import Invoice, Installment, CommissionTitle, Order, ServiceInvoice

logger = logging.getLogger(__name__)


class LedgerRepository:
    def __init__(self, db: Session):
        self.db = db

    # ---------- 发票 ----------
    def find_invoice_by_access_key(self, access_key: str) -> Optional[Invoice]:
        return self.db.query(Invoice).filter(Invoice.access_key == access_key).first()

    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        return self.db.query(Invoice).filter(Invoice.id == invoice_id).first()

    def list_invoices(self) -> List[Invoice]:
        return self.db.query(Invoice).order_by(Invoice.imported_at.desc(), Invoice.id.desc()).all()

    def create_invoice(self, record: InvoiceRecord, raw_document: Optional[str] = None) -> Invoice:
        invoice = Invoice(
            number=record.number,
            series=record.series,
            issue_date=record.issue_date,
            access_key=record.access_key,
            issuer_name=record.issuer.name,
            issuer_tax_id=record.issuer.tax_id,
            recipient_name=record.recipient.name,
            recipient_tax_id=record.recipient.tax_id,
            total_value=record.total_value,
            source=record.source,
            raw_document=raw_document
        )
        self.db.add(invoice)
        self.db.flush()
        return invoice

    def count_grouped_titles_by_invoice(self, invoice_id: int) -> int:
        return self.db.query(func.count(CommissionTitle.id)).filter(
            CommissionTitle.invoice_id == invoice_id,
            CommissionTitle.order_id.isnot(None)
        ).scalar() or 0

    def delete_invoice_cascade(self, invoice_id: int) -> bool:
        """
        删除发票及其分期、佣金单据（先子后父）
        存在已归入结算单的单据时不删除任何数据，返回False
        """
        if self.count_grouped_titles_by_invoice(invoice_id) > 0:
            return False

        deleted_titles = self.db.query(CommissionTitle).filter(
            CommissionTitle.invoice_id == invoice_id,
            CommissionTitle.order_id.is_(None)
        ).delete(synchronize_session=False)
        remaining = self.db.query(func.count(CommissionTitle.id)).filter(
            CommissionTitle.invoice_id == invoice_id
        ).scalar()
        if remaining:
            # 检查之后有单据被并发归入结算单
            return False

        self.db.query(Installment).filter(
            Installment.invoice_id == invoice_id
        ).delete(synchronize_session=False)
        self.db.query(Invoice).filter(Invoice.id == invoice_id).delete(synchronize_session=False)
        logger.info(f"发票 {invoice_id} 已级联删除，佣金单据 {deleted_titles} 条")
        return True

    # ---------- 分期与佣金单据 ----------
    def create_installment(self, invoice_id: int, draft: CommissionTitleDraft) -> Installment:
        installment = Installment(
            invoice_id=invoice_id,
            number=draft.installment.number,
            value=draft.installment.value,
            due_date=draft.installment.due_date
        )
        self.db.add(installment)
        self.db.flush()
        return installment

    def create_title(self, invoice_id: int, installment_id: int, draft: CommissionTitleDraft) -> CommissionTitle:
        title = CommissionTitle(
            installment_id=installment_id,
            invoice_id=invoice_id,
            commission_rate=draft.commission_rate,
            commission_value=draft.commission_value,
            status=draft.status.value,
            payment_status=draft.payment_status.value,
            forecast_date=draft.forecast_date
        )
        self.db.add(title)
        self.db.flush()
        return title

    def get_title(self, title_id: int) -> Optional[CommissionTitle]:
        return self.db.query(CommissionTitle).filter(CommissionTitle.id == title_id).first()

    def update_title(self, title: CommissionTitle, changes: Dict[str, Any]) -> CommissionTitle:
        for field, value in changes.items():
            setattr(title, field, value)
        self.db.flush()
        return title

    def update_pending_title_value(self, title_id: int, value: Decimal) -> bool:
        """仅当单据仍未归入结算单时修改佣金金额，返回是否修改成功"""
        updated = self.db.query(CommissionTitle).filter(
            CommissionTitle.id == title_id,
            CommissionTitle.order_id.is_(None)
        ).update({CommissionTitle.commission_value: value}, synchronize_session=False)
        return updated > 0

    def _title_detail_query(self):
        return self.db.query(CommissionTitle, Installment, Invoice).join(
            Installment, CommissionTitle.installment_id == Installment.id
        ).join(
            Invoice, CommissionTitle.invoice_id == Invoice.id
        )

    def list_titles_by_invoice(self, invoice_id: int) -> list:
        return self._title_detail_query().filter(
            CommissionTitle.invoice_id == invoice_id
        ).order_by(Installment.number, CommissionTitle.id).all()

    def list_titles_by_order(self, order_id: int) -> list:
        return self._title_detail_query().filter(
            CommissionTitle.order_id == order_id
        ).order_by(CommissionTitle.id).all()

    def list_titles(self) -> list:
        return self._title_detail_query().order_by(
            CommissionTitle.created_at.desc(), CommissionTitle.id.desc()
        ).all()

    def get_title_detail(self, title_id: int):
        return self._title_detail_query().filter(CommissionTitle.id == title_id).first()

    def list_pending_titles_by_ids(self, title_ids: List[int]) -> List[CommissionTitle]:
        if not title_ids:
            return []
        return self.db.query(CommissionTitle).filter(
            CommissionTitle.id.in_(title_ids),
            CommissionTitle.order_id.is_(None)
        ).with_for_update().all()

    def sum_commission_by_ids(self, title_ids: List[int]) -> Decimal:
        if not title_ids:
            return Decimal("0")
        total = self.db.query(func.sum(CommissionTitle.commission_value)).filter(
            CommissionTitle.id.in_(title_ids)
        ).scalar()
        return Decimal(str(total)) if total is not None else Decimal("0")

    # ---------- 结算单 ----------
    def create_order(self, description: str) -> Order:
        order = Order(description=description, total_value=Decimal("0"), title_count=0, status="open")
        self.db.add(order)
        self.db.flush()
        return order

    def mark_titles_grouped(self, order_id: int, title_ids: List[int]) -> List[int]:
        """
        将仍未归入结算单的单据标记为已归入，返回本次实际标记的单据ID
        条件更新保证同一单据只会被一个结算单占用
        """
        if not title_ids:
            return []
        self.db.query(CommissionTitle).filter(
            CommissionTitle.id.in_(title_ids),
            CommissionTitle.order_id.is_(None)
        ).update({
            CommissionTitle.order_id: order_id,
            CommissionTitle.status: TitleStatus.GROUPED.value
        }, synchronize_session=False)
        rows = self.db.query(CommissionTitle.id).filter(
            CommissionTitle.id.in_(title_ids),
            CommissionTitle.order_id == order_id
        ).all()
        return [row.id for row in rows]

    def set_order_totals(self, order: Order, total_value: Decimal, title_count: int) -> Order:
        order.total_value = total_value
        order.title_count = title_count
        self.db.flush()
        return order

    def get_order(self, order_id: int) -> Optional[Order]:
        return self.db.query(Order).filter(Order.id == order_id).first()

    def list_orders(self) -> List[Order]:
        return self.db.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).all()

    # ---------- 服务发票 ----------
    def create_service_invoice(self, fields: Dict[str, Any]) -> ServiceInvoice:
        service_invoice = ServiceInvoice(**fields)
        self.db.add(service_invoice)
        self.db.flush()
        return service_invoice

    def get_service_invoice(self, service_invoice_id: int) -> Optional[ServiceInvoice]:
        return self.db.query(ServiceInvoice).filter(ServiceInvoice.id == service_invoice_id).first()

    def get_service_invoice_detail(self, service_invoice_id: int):
        return self.db.query(ServiceInvoice, Order).outerjoin(
            Order, ServiceInvoice.order_id == Order.id
        ).filter(ServiceInvoice.id == service_invoice_id).first()

    def list_service_invoices(self) -> list:
        return self.db.query(ServiceInvoice, Order).outerjoin(
            Order, ServiceInvoice.order_id == Order.id
        ).order_by(ServiceInvoice.created_at.desc(), ServiceInvoice.id.desc()).all()

    def update_service_invoice(self, service_invoice: ServiceInvoice, changes: Dict[str, Any]) -> ServiceInvoice:
        for field, value in changes.items():
            setattr(service_invoice, field, value)
        self.db.flush()
        return service_invoice

    def delete_service_invoice(self, service_invoice_id: int) -> bool:
        deleted = self.db.query(ServiceInvoice).filter(
            ServiceInvoice.id == service_invoice_id
        ).delete(synchronize_session=False)
        return deleted > 0
