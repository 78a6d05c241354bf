"""
NF-e XML 解析

将结构良好的 NF-e 文档（nfeProc/NFe/infNFe 或 NFe/infNFe）解析为 InvoiceRecord。
按本地名称匹配节点，不依赖命名空间前缀；缺少必需结构时抛出 StructuralParseError。
"""
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Union

from lxml import etree

from .exceptions import StructuralParseError
from .models import Installment, InvoiceRecord, Party
from .utils import digits_only, ensure_installments, parse_iso_date, parse_plain_decimal

logger = logging.getLogger(__name__)

XML_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)


def _local_name(element) -> str:
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname


def _child(element, name: str):
    """返回第一个本地名称匹配的直接子节点"""
    if element is None:
        return None
    for child in element:
        if _local_name(child) == name:
            return child
    return None


def _children(element, name: str) -> list:
    if element is None:
        return []
    return [child for child in element if _local_name(child) == name]


def _text(element, *path: str) -> Optional[str]:
    node = element
    for name in path:
        node = _child(node, name)
        if node is None:
            return None
    text = (node.text or "").strip()
    return text or None


def _find_inf_nfe(root):
    """定位 infNFe：支持 nfeProc/NFe/infNFe 与 NFe/infNFe 两种结构"""
    root_name = _local_name(root)
    if root_name == "nfeProc":
        return _child(_child(root, "NFe"), "infNFe")
    if root_name == "NFe":
        return _child(root, "infNFe")
    return None


def _parse_installments(inf_nfe) -> List[Installment]:
    # dup 节点无论一个还是多个都按列表处理
    installments = []
    for dup in _children(_child(inf_nfe, "cobr"), "dup"):
        installments.append(Installment(
            number=_text(dup, "nDup") or "",
            due_date=parse_iso_date(_text(dup, "dVenc")),
            value=parse_plain_decimal(_text(dup, "vDup"))
        ))
    return installments


def parse_nfe_xml(content: Union[bytes, str], import_date: Optional[date] = None) -> InvoiceRecord:
    """解析 NF-e XML 文档"""
    if isinstance(content, str):
        content = content.encode("utf-8")
    try:
        root = etree.fromstring(content, parser=XML_PARSER)
    except etree.XMLSyntaxError as e:
        raise StructuralParseError(f"XML格式错误: {e}") from e

    inf_nfe = _find_inf_nfe(root)
    if inf_nfe is None:
        raise StructuralParseError("XML结构无效：未找到 infNFe 节点")

    ide = _child(inf_nfe, "ide")
    emit = _child(inf_nfe, "emit")
    if ide is None or emit is None:
        raise StructuralParseError("XML结构无效：缺少 ide 或 emit 节点")
    dest = _child(inf_nfe, "dest")

    access_key = (inf_nfe.get("Id") or "").replace("NFe", "").strip() or None
    total_value = parse_plain_decimal(_text(inf_nfe, "total", "ICMSTot", "vNF"), default=Decimal("0"))

    record = InvoiceRecord(
        number=_text(ide, "nNF"),
        series=_text(ide, "serie"),
        issue_date=parse_iso_date(_text(ide, "dhEmi") or _text(ide, "dEmi")),
        access_key=access_key,
        issuer=Party(
            name=_text(emit, "xNome"),
            tax_id=digits_only(_text(emit, "CNPJ") or _text(emit, "CPF"))
        ),
        recipient=Party(
            name=_text(dest, "xNome") or "",
            tax_id=digits_only(_text(dest, "CNPJ") or _text(dest, "CPF"))
        ),
        total_value=total_value,
        installments=_parse_installments(inf_nfe),
        source="xml"
    )
    logger.info(f"XML解析完成: 发票号={record.number}, 分期数={len(record.installments)}, 总额={record.total_value}")
    return ensure_installments(record, import_date)
