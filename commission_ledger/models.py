from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field
from typing import List, Optional, Any, Literal

# 展示层使用的占位文本，核心记录中对应字段为 None
UNIDENTIFIED_NAME = "NÃO IDENTIFICADO"
NO_NUMBER = "SEM_NUMERO"


class TitleStatus(str, Enum):
    PENDING = "pending"
    GROUPED = "grouped"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class ServicePaymentStatus(str, Enum):
    AWAITING = "awaiting"
    PAID = "paid"
    CANCELLED = "cancelled"


class Party(BaseModel):
    """发票参与方（开票方 / 收票方）"""
    name: Optional[str] = Field(None, description="名称，未识别时为空")
    tax_id: str = Field("", description="CNPJ/CPF，仅数字")

    @property
    def display_name(self) -> str:
        return self.name if self.name is not None else UNIDENTIFIED_NAME


class Installment(BaseModel):
    """分期（duplicata）"""
    number: str = Field(..., description="分期编号")
    due_date: Optional[date] = Field(None, description="到期日")
    value: Decimal = Field(..., description="分期金额")


class InvoiceRecord(BaseModel):
    """解析器输出的标准发票记录"""
    number: Optional[str] = Field(None, description="发票号，未识别时为空")
    series: Optional[str] = Field(None, description="系列")
    issue_date: Optional[date] = Field(None, description="开票日期")
    access_key: Optional[str] = Field(None, description="44位访问密钥")
    issuer: Party = Field(default_factory=Party, description="开票方")
    recipient: Party = Field(default_factory=Party, description="收票方")
    total_value: Decimal = Field(Decimal("0"), description="发票总额")
    installments: List[Installment] = Field(default_factory=list, description="分期列表")
    source: Literal["xml", "pdf", "text"] = Field("xml", description="文档来源")
    degraded_fields: List[str] = Field(default_factory=list, description="启发式解析未识别、已降级的字段")

    @property
    def display_number(self) -> str:
        return self.number if self.number is not None else NO_NUMBER

    def to_display(self) -> dict:
        """预览接口使用的展示结构"""
        return {
            "number": self.display_number,
            "series": self.series,
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "access_key": self.access_key,
            "issuer": {"name": self.issuer.display_name, "tax_id": self.issuer.tax_id},
            "recipient": {"name": self.recipient.display_name, "tax_id": self.recipient.tax_id},
            "total_value": float(self.total_value),
            "installments": [
                {
                    "number": inst.number,
                    "due_date": inst.due_date.isoformat() if inst.due_date else None,
                    "value": float(inst.value)
                } for inst in self.installments
            ],
            "source": self.source,
            "degraded_fields": self.degraded_fields
        }


class CommissionTitleDraft(BaseModel):
    """由分期推导出的佣金单据（尚未入库）"""
    installment: Installment
    commission_rate: Decimal
    commission_value: Decimal
    forecast_date: Optional[date] = None
    status: TitleStatus = TitleStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING


class TitleUpdateRequest(BaseModel):
    """佣金单据更新请求"""
    value: Optional[Decimal] = Field(None, description="新的佣金金额，仅未归入结算单时可修改")
    payment_status: Optional[PaymentStatus] = Field(None, description="付款状态")


class OrderCreateRequest(BaseModel):
    """结算单创建请求"""
    description: str = Field("", description="结算单描述")
    title_ids: List[int] = Field(default_factory=list, description="选中的佣金单据ID")


class ServiceInvoiceCreateRequest(BaseModel):
    """服务发票（NFS-e）创建请求"""
    order_id: Optional[int] = Field(None, description="关联结算单ID")
    number: str = Field(..., min_length=1, description="NFS-e 编号")
    issue_date: date = Field(..., description="开票日期")
    value: Decimal = Field(..., gt=0, description="金额")
    payment_status: ServicePaymentStatus = Field(ServicePaymentStatus.AWAITING, description="付款状态")
    payment_date: Optional[date] = Field(None, description="付款日期")
    notes: str = Field("", description="备注")


class ServiceInvoiceUpdateRequest(BaseModel):
    """服务发票更新请求，仅提交需要修改的字段"""
    order_id: Optional[int] = Field(None, description="关联结算单ID，传 null 解除关联")
    number: Optional[str] = Field(None, min_length=1, description="NFS-e 编号")
    issue_date: Optional[date] = Field(None, description="开票日期")
    value: Optional[Decimal] = Field(None, gt=0, description="金额")
    payment_status: Optional[ServicePaymentStatus] = Field(None, description="付款状态")
    payment_date: Optional[date] = Field(None, description="付款日期")
    notes: Optional[str] = Field(None, description="备注")


class LedgerResponse(BaseModel):
    """通用响应模型"""
    success: bool = Field(..., description="是否成功")
    message: str = Field(..., description="处理信息")
    data: Optional[Any] = Field(None, description="结果数据")
    request_id: str = Field(..., description="请求ID，用于追踪")
