"""
NF-e 文本启发式解析

从PDF提取出的文本（或纯文本）中按规则列表逐字段匹配，生成 InvoiceRecord。
每个字段按顺序尝试多条规则，第一条命中的规则生效；字段未识别时降级为空值，
并记录在 degraded_fields 中，不抛出异常。
"""
import io
import logging
import re
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pypdf import PdfReader

from .exceptions import ExtractionError
from .models import Installment, InvoiceRecord, Party
from .utils import (
    DMY_DATE_RE, collapse_whitespace, digits_only, ensure_installments, parse_dmy_date, parse_money
)

logger = logging.getLogger(__name__)

FLAGS = re.IGNORECASE

# ===================== 字段规则（按优先级排列） =====================
NUMBER_PATTERNS = [
    re.compile(r"(?:NF-e|NOTA\s*FISCAL|N\.?\s*F\.?)[:\s]*N[ºª°]?\.?\s*(\d{6,})", FLAGS),
    re.compile(r"N[ºª°]\.?\s*(\d{6,})", FLAGS),
    re.compile(r"(?:N[ÚU]MERO|NUM)[:\s]*(\d{6,})", FLAGS),
]

SERIES_PATTERNS = [
    re.compile(r"S[ÉE]RIE[:\s]*(\d+)", FLAGS),
]

ISSUE_DATE_PATTERNS = [
    re.compile(r"(?:DATA\s*(?:DE\s*)?EMISS[ÃA]O|EMISS[ÃA]O)[:\s]*(\d{2}[/\-]\d{2}[/\-]\d{4})", FLAGS),
]

ACCESS_KEY_PATTERNS = [
    re.compile(r"(\d{4}(?:\s*\d{4}){10})"),
]

ISSUER_NAME_PATTERNS = [
    re.compile(r"(?:RAZ[ÃA]O\s*SOCIAL|NOME\s*(?:EMPRESARIAL)?)[:\s]*([^\n]{5,100})", FLAGS),
    re.compile(r"EMITENTE[:\s]*([^\n]{5,100})", FLAGS),
]

RECIPIENT_NAME_PATTERNS = [
    re.compile(r"(?:DESTINAT[ÁA]RIO\s*[/\\]?\s*REMETENTE|DESTINAT[ÁA]RIO)[:\s]*([^\n]{5,100})", FLAGS),
    re.compile(r"(?:CLIENTE|TOMADOR)[:\s]*([^\n]{5,100})", FLAGS),
]

# 第一个匹配为开票方，第二个为收票方
TAX_ID_RE = re.compile(r"(?:CNPJ|CPF)[:\s]*(\d{2}\.?\d{3}\.?\d{3}[/\\]?\d{4}-?\d{2})", FLAGS)

TOTAL_VALUE_PATTERNS = [
    re.compile(r"(?:VALOR\s*TOTAL|TOTAL\s*(?:DA\s*)?(?:NOTA|NF)|VL\.?\s*TOTAL)[:\s]*R?\$?\s*([\d.,]*\d)", FLAGS),
]

# 分期规则一：紧凑格式 "001 15/01/2024 R$ 1.000,00"
INSTALLMENT_COMPACT_RE = re.compile(
    r"(\d{3}|\d{2}[/\\]\d{3})\s+(\d{2}[/\\\-]\d{2}[/\\\-]\d{4})\s+R?\$?\s*([\d.,]*\d)", FLAGS
)
# 分期规则二：带标签格式 "DUPLICATA 1 ... 15/01/2024 ... 1.000,00"
INSTALLMENT_LABELLED_RE = re.compile(
    r"(?:DUPLICATA|PARC(?:ELA)?)[:\s]*(\d+)[^\d]+([\d/\\\-]+)[^\d]+([\d.,]*\d)", FLAGS
)


def _first_match(patterns: List[re.Pattern], text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def _clean_name(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    return collapse_whitespace(raw) or None


def _compact_installments(text: str) -> List[Installment]:
    installments = []
    for match in INSTALLMENT_COMPACT_RE.finditer(text):
        number = re.sub(r"[/\\]", "", match.group(1))
        installments.append(Installment(
            number=number,
            due_date=parse_dmy_date(match.group(2)),
            value=parse_money(match.group(3))
        ))
    return installments


def _labelled_installments(text: str) -> List[Installment]:
    installments = []
    for match in INSTALLMENT_LABELLED_RE.finditer(text):
        raw_date = match.group(2)
        # 日期必须是 日/月/年 三段，否则跳过
        if not DMY_DATE_RE.match(raw_date):
            continue
        installments.append(Installment(
            number=match.group(1).zfill(3),
            due_date=parse_dmy_date(raw_date),
            value=parse_money(match.group(3))
        ))
    return installments


def extract_installments(text: str) -> List[Installment]:
    """先用紧凑格式匹配，无结果时才尝试带标签格式，两类结果不合并"""
    installments = _compact_installments(text)
    if installments:
        return installments
    return _labelled_installments(text)


def parse_invoice_text(text: str, import_date: Optional[date] = None, source: str = "text") -> InvoiceRecord:
    """解析NF-e文本，字段缺失时降级，不抛出异常"""
    import_date = import_date or date.today()
    degraded = []
    logger.debug(f"开始解析文本，长度: {len(text)}")

    number = _first_match(NUMBER_PATTERNS, text)
    if number is None:
        degraded.append("number")

    series = _first_match(SERIES_PATTERNS, text) or "1"

    issue_date = parse_dmy_date(_first_match(ISSUE_DATE_PATTERNS, text))
    if issue_date is None:
        degraded.append("issue_date")
        issue_date = import_date

    raw_key = _first_match(ACCESS_KEY_PATTERNS, text)
    access_key = re.sub(r"\s", "", raw_key) if raw_key else None

    issuer_name = _clean_name(_first_match(ISSUER_NAME_PATTERNS, text))
    if issuer_name is None:
        degraded.append("issuer.name")
    recipient_name = _clean_name(_first_match(RECIPIENT_NAME_PATTERNS, text))
    if recipient_name is None:
        degraded.append("recipient.name")

    tax_ids = [digits_only(m.group(1)) for m in TAX_ID_RE.finditer(text)]
    issuer_tax_id = tax_ids[0] if tax_ids else ""
    recipient_tax_id = tax_ids[1] if len(tax_ids) > 1 else ""
    if not issuer_tax_id:
        degraded.append("issuer.tax_id")
    if not recipient_tax_id:
        degraded.append("recipient.tax_id")

    raw_total = _first_match(TOTAL_VALUE_PATTERNS, text)
    total_value = parse_money(raw_total) if raw_total else Decimal("0")
    if raw_total is None:
        degraded.append("total_value")

    installments = extract_installments(text)
    if not installments:
        degraded.append("installments")

    record = InvoiceRecord(
        number=number,
        series=series,
        issue_date=issue_date,
        access_key=access_key,
        issuer=Party(name=issuer_name, tax_id=issuer_tax_id),
        recipient=Party(name=recipient_name, tax_id=recipient_tax_id),
        total_value=total_value,
        installments=installments,
        source=source,
        degraded_fields=degraded
    )
    logger.info(
        f"文本解析完成: 发票号={record.display_number}, 开票方={record.issuer.display_name}, "
        f"总额={record.total_value}, 分期数={len(record.installments)}, 未识别字段={degraded}"
    )
    return ensure_installments(record, import_date)


def extract_pdf_text(content: bytes) -> str:
    """使用pypdf提取PDF全部页面文本，文件无法读取时抛出 ExtractionError"""
    try:
        reader = PdfReader(io.BytesIO(content))
        text = "\n".join((page.extract_text() or "") for page in reader.pages)
    except Exception as e:
        logger.error(f"PDF文本提取失败: {str(e)}")
        raise ExtractionError(f"无法处理PDF：{str(e)}，请确认是有效的NF-e PDF文件") from e
    logger.debug(f"PDF文本提取完成，长度: {len(text)}")
    return text
