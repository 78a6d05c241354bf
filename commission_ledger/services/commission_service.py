import logging
from decimal import Decimal, InvalidOperation
from typing import List, Union

from ..exceptions import ValidationError
from ..models import CommissionTitleDraft, InvoiceRecord
from ..utils import calculate_forecast_date

logger = logging.getLogger(__name__)

MAX_COMMISSION_RATE = Decimal("100")


def validate_commission_rate(rate: Union[Decimal, float, int, str, None]) -> Decimal:
    """校验佣金比例，须在 (0, 100] 区间内"""
    if rate is None:
        raise ValidationError("佣金比例无效")
    try:
        value = Decimal(str(rate).strip())
    except InvalidOperation:
        raise ValidationError(f"佣金比例无效: {rate}")
    if not value.is_finite() or value <= 0 or value > MAX_COMMISSION_RATE:
        raise ValidationError(f"佣金比例无效: {rate}，须大于0且不超过100")
    return value


def derive_commission_titles(record: InvoiceRecord, rate: Decimal) -> List[CommissionTitleDraft]:
    """
    按分期生成佣金单据：每个分期一条，佣金 = 分期金额 * 比例 / 100
    使用默认精度计算，不做舍入；比例由调用方预先校验
    """
    drafts = []
    for installment in record.installments:
        drafts.append(CommissionTitleDraft(
            installment=installment,
            commission_rate=rate,
            commission_value=installment.value * rate / 100,
            forecast_date=calculate_forecast_date(installment.due_date)
        ))
    logger.info(f"发票 {record.display_number} 生成佣金单据 {len(drafts)} 条，比例 {rate}%")
    return drafts
