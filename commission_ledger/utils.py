# commission_ledger/utils.py
import logging
import os
import re
import tempfile
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from .models import Installment, InvoiceRecord

logger = logging.getLogger(__name__)

# 预计到账日：到期月份的次月20日
FORECAST_DAY = 20
# 无分期时默认分期的到期天数
DEFAULT_DUE_DAYS = 30
DEFAULT_INSTALLMENT_NUMBER = "001"

DMY_DATE_RE = re.compile(r"^\s*(\d{1,2})[/\\\-](\d{1,2})[/\\\-](\d{4})\s*$")


def parse_money(value: object) -> Decimal:
    """
    解析巴西格式金额（千分位点、小数逗号），如 "1.234,56" -> Decimal("1234.56")
    无法解析时返回0
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).strip().rstrip(".,")
    if not text:
        return Decimal("0")
    text = text.replace(".", "").replace(",", ".")
    try:
        return Decimal(text)
    except InvalidOperation:
        return Decimal("0")


def parse_plain_decimal(value: object, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """解析点号小数格式（XML中的数值），失败返回 default"""
    if value is None:
        return default
    text = str(value).strip()
    if not text:
        return default
    try:
        result = Decimal(text)
    except InvalidOperation:
        return default
    if not result.is_finite():
        return default
    return result


def parse_dmy_date(value: object) -> Optional[date]:
    """解析 日/月/年 格式日期（斜杠或横杠分隔），非法日期返回None"""
    if value is None:
        return None
    match = DMY_DATE_RE.match(str(value))
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_iso_date(value: object) -> Optional[date]:
    """解析ISO日期或日期时间字符串，只取日期部分"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) < 10:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def calculate_forecast_date(due_date: Union[date, datetime, str, None]) -> Optional[date]:
    """计算预计到账日：到期日所在月份的次月20日；到期日缺失或无法解析时返回None"""
    due = parse_iso_date(due_date)
    if due is None:
        return None
    if due.month == 12:
        return date(due.year + 1, 1, FORECAST_DAY)
    return date(due.year, due.month + 1, FORECAST_DAY)


def ensure_installments(record: InvoiceRecord, import_date: Optional[date] = None) -> InvoiceRecord:
    """没有分期但总额大于0时，补一条默认分期：编号001，导入日+30天到期，金额为发票总额"""
    if record.installments or record.total_value <= 0:
        return record
    import_date = import_date or date.today()
    record.installments.append(Installment(
        number=DEFAULT_INSTALLMENT_NUMBER,
        due_date=import_date + timedelta(days=DEFAULT_DUE_DAYS),
        value=record.total_value
    ))
    logger.info(f"发票 {record.display_number} 无分期信息，已按总额生成默认分期")
    return record


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def digits_only(text: Optional[str]) -> str:
    if not text:
        return ""
    return re.sub(r"\D", "", text)


def money_to_float(value: Optional[Decimal]) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def iso_or_none(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


@contextmanager
def temporary_upload(content: bytes, suffix: str = "", directory: Optional[str] = None):
    """
    将上传内容写入临时文件并返回路径
    无论成功、校验失败还是解析失败，退出时都会删除该文件
    """
    if directory:
        os.makedirs(directory, exist_ok=True)
    fd, path = tempfile.mkstemp(suffix=suffix, dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        yield path
    finally:
        if os.path.exists(path):
            os.remove(path)
