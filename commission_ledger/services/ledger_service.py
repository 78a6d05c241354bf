import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..models import NO_NUMBER, UNIDENTIFIED_NAME, PaymentStatus
from ..orm_models import CommissionTitle, Installment, Invoice, Order
from ..repository import LedgerRepository
from ..utils import iso_or_none, money_to_float

logger = logging.getLogger(__name__)


def _parse_title_value(value) -> Decimal:
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"佣金金额无效: {value}")
    if not parsed.is_finite():
        raise ValidationError(f"佣金金额无效: {value}")
    if parsed < 0:
        raise ValidationError("佣金金额不能为负数")
    return parsed


def title_to_dict(title: CommissionTitle, installment: Installment, invoice: Invoice) -> Dict[str, Any]:
    return {
        "id": title.id,
        "invoice_id": invoice.id,
        "invoice_number": invoice.number if invoice.number is not None else NO_NUMBER,
        "issuer_name": invoice.issuer_name if invoice.issuer_name is not None else UNIDENTIFIED_NAME,
        "customer_name": invoice.recipient_name if invoice.recipient_name is not None else UNIDENTIFIED_NAME,
        "installment_id": installment.id,
        "installment_number": installment.number,
        "installment_value": money_to_float(installment.value),
        "due_date": iso_or_none(installment.due_date),
        "forecast_date": iso_or_none(title.forecast_date),
        "commission_rate": money_to_float(title.commission_rate),
        "commission_value": money_to_float(title.commission_value),
        "status": title.status,
        "payment_status": title.payment_status,
        "order_id": title.order_id,
        "created_at": title.created_at.isoformat() if title.created_at else None
    }


def invoice_to_dict(invoice: Invoice) -> Dict[str, Any]:
    return {
        "id": invoice.id,
        "number": invoice.number if invoice.number is not None else NO_NUMBER,
        "series": invoice.series,
        "issue_date": iso_or_none(invoice.issue_date),
        "access_key": invoice.access_key,
        "issuer_name": invoice.issuer_name if invoice.issuer_name is not None else UNIDENTIFIED_NAME,
        "issuer_tax_id": invoice.issuer_tax_id or "",
        "recipient_name": invoice.recipient_name if invoice.recipient_name is not None else UNIDENTIFIED_NAME,
        "recipient_tax_id": invoice.recipient_tax_id or "",
        "total_value": money_to_float(invoice.total_value),
        "source": invoice.source,
        "imported_at": invoice.imported_at.isoformat() if invoice.imported_at else None
    }


def order_to_dict(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "description": order.description,
        "total_value": money_to_float(order.total_value),
        "title_count": order.title_count,
        "status": order.status,
        "created_at": order.created_at.isoformat() if order.created_at else None
    }


class LedgerService:
    """
    佣金台账状态机
    单据状态：pending（未归入结算单）-> grouped（已归入），单向不可逆；
    付款状态独立变化；结算单创建后成员与金额不再改变。
    """

    def __init__(self, db: Session):
        self.db = db
        self.repository = LedgerRepository(db)

    # ---------- 佣金单据 ----------
    def list_titles(self) -> List[Dict[str, Any]]:
        return [title_to_dict(*row) for row in self.repository.list_titles()]

    def get_title(self, title_id: int) -> Dict[str, Any]:
        row = self.repository.get_title_detail(title_id)
        if row is None:
            raise NotFoundError(f"佣金单据不存在: {title_id}")
        return title_to_dict(*row)

    def update_title(self, title_id: int, value: Optional[Decimal] = None,
                     payment_status: Optional[PaymentStatus] = None) -> Dict[str, Any]:
        """更新佣金金额或付款状态；已归入结算单的单据只允许修改付款状态"""
        try:
            title = self.repository.get_title(title_id)
            if title is None:
                raise NotFoundError(f"佣金单据不存在: {title_id}")
            if value is None and payment_status is None:
                raise ValidationError("没有需要更新的字段")

            changes = {}
            if value is not None:
                if title.order_id is not None:
                    raise ConflictError(f"佣金单据 {title_id} 已归入结算单 {title.order_id}，不能修改金额")
                new_value = _parse_title_value(value)
                # 条件更新：读取之后被并发归入结算单的单据不会被修改
                if not self.repository.update_pending_title_value(title_id, new_value):
                    raise ConflictError(f"佣金单据 {title_id} 已归入结算单，不能修改金额")
                changes["commission_value"] = new_value
            if payment_status is not None:
                changes["payment_status"] = PaymentStatus(payment_status).value
                self.repository.update_title(title, {"payment_status": changes["payment_status"]})

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"佣金单据 {title_id} 已更新: {list(changes.keys())}")
        return self.get_title(title_id)

    # ---------- 结算单 ----------
    def create_order(self, description: str, title_ids: List[int]) -> Dict[str, Any]:
        """
        在一个事务内创建结算单：
        读取仍未归入的单据 -> 插入结算单 -> 条件标记这些单据 -> 按实际标记的单据汇总金额
        请求中已归入其他结算单的单据被静默排除
        """
        if not title_ids:
            raise ValidationError("请至少选择一条佣金单据")
        requested_ids = list(dict.fromkeys(title_ids))

        try:
            pending = self.repository.list_pending_titles_by_ids(requested_ids)
            order = self.repository.create_order(description or "")
            claimed_ids = self.repository.mark_titles_grouped(order.id, [t.id for t in pending])
            total = self.repository.sum_commission_by_ids(claimed_ids)
            self.repository.set_order_totals(order, total, len(claimed_ids))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"创建结算单失败，已回滚: {str(e)}")
            raise

        skipped = len(requested_ids) - len(claimed_ids)
        logger.info(
            f"结算单 {order.id} 创建成功: 单据 {len(claimed_ids)} 条, 总额 {total}"
            + (f", 跳过已归入或不存在的单据 {skipped} 条" if skipped else "")
        )
        return {
            "order_id": order.id,
            "total": money_to_float(total),
            "title_count": len(claimed_ids),
            "title_ids": claimed_ids
        }

    def list_orders(self) -> List[Dict[str, Any]]:
        return [order_to_dict(order) for order in self.repository.list_orders()]

    def get_order(self, order_id: int) -> Dict[str, Any]:
        order = self.repository.get_order(order_id)
        if order is None:
            raise NotFoundError(f"结算单不存在: {order_id}")
        return {
            "order": order_to_dict(order),
            "titles": [title_to_dict(*row) for row in self.repository.list_titles_by_order(order_id)]
        }

    # ---------- 发票 ----------
    def list_invoices(self) -> List[Dict[str, Any]]:
        return [invoice_to_dict(invoice) for invoice in self.repository.list_invoices()]

    def delete_invoice(self, invoice_id: int) -> None:
        """删除发票及其分期和佣金单据；存在已归入结算单的单据时拒绝删除"""
        try:
            if self.repository.get_invoice(invoice_id) is None:
                raise NotFoundError(f"发票不存在: {invoice_id}")
            if not self.repository.delete_invoice_cascade(invoice_id):
                raise ConflictError("不能删除：该发票存在已归入结算单的佣金单据")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"发票 {invoice_id} 及其佣金单据已删除")
