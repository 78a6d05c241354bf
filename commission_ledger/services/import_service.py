import logging
import os
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import DuplicateError, LedgerError
from ..models import InvoiceRecord
from ..repository import LedgerRepository
from ..text_parser import extract_pdf_text, parse_invoice_text
from ..xml_parser import parse_nfe_xml
from .commission_service import derive_commission_titles, validate_commission_rate
from .ledger_service import title_to_dict

logger = logging.getLogger(__name__)


def detect_document_kind(content: bytes, filename: Optional[str] = None) -> str:
    """根据文件名后缀或内容判断文档类型：xml / pdf / text"""
    extension = os.path.splitext(filename or "")[1].lower()
    if extension == ".pdf" or content[:5] == b"%PDF-":
        return "pdf"
    if extension == ".xml" or content.lstrip()[:1] == b"<":
        return "xml"
    return "text"


def _decode_text(content: bytes) -> str:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return content.decode("latin-1")


class InvoiceImportService:
    """发票导入服务：解析文档、生成佣金单据并在一个事务内写入"""

    def __init__(self, db: Session):
        self.db = db
        self.repository = LedgerRepository(db)

    def parse_document(self, content: bytes, filename: Optional[str] = None,
                       import_date: Optional[date] = None) -> InvoiceRecord:
        """只解析不入库（预览）"""
        kind = detect_document_kind(content, filename)
        logger.info(f"解析文档: 文件={filename}, 类型={kind}, 大小={len(content)}字节")
        if kind == "xml":
            return parse_nfe_xml(content, import_date)
        if kind == "pdf":
            return parse_invoice_text(extract_pdf_text(content), import_date, source="pdf")
        return parse_invoice_text(_decode_text(content), import_date, source="text")

    def import_document(self, content: bytes, rate, filename: Optional[str] = None,
                        import_date: Optional[date] = None) -> Dict[str, Any]:
        """导入发票：校验比例 -> 解析 -> 重复校验 -> 单事务写入发票、分期与佣金单据"""
        commission_rate = validate_commission_rate(rate)
        record = self.parse_document(content, filename, import_date)

        if record.access_key and self.repository.find_invoice_by_access_key(record.access_key):
            raise DuplicateError(f"发票已导入: 访问密钥 {record.access_key}")

        drafts = derive_commission_titles(record, commission_rate)
        raw_document = _decode_text(content) if record.source == "xml" else None

        try:
            invoice = self.repository.create_invoice(record, raw_document)
            for draft in drafts:
                installment = self.repository.create_installment(invoice.id, draft)
                self.repository.create_title(invoice.id, installment.id, draft)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"发票写入冲突，已回滚: {str(e)}")
            if record.access_key and self.repository.find_invoice_by_access_key(record.access_key):
                raise DuplicateError(f"发票已导入: 访问密钥 {record.access_key}") from e
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"发票导入失败，已回滚: {str(e)}")
            raise

        titles = [title_to_dict(*row) for row in self.repository.list_titles_by_invoice(invoice.id)]
        logger.info(f"发票导入成功: ID={invoice.id}, 发票号={record.display_number}, 佣金单据 {len(titles)} 条")
        return {
            "invoice_id": invoice.id,
            "title_count": len(titles),
            "degraded_fields": record.degraded_fields,
            "titles": titles
        }

    def import_upload(self, path: str, rate, filename: Optional[str] = None,
                      import_date: Optional[date] = None) -> Dict[str, Any]:
        """从已保存的上传文件导入"""
        with open(path, "rb") as f:
            content = f.read()
        try:
            return self.import_document(content, rate, filename or os.path.basename(path), import_date)
        except LedgerError as e:
            logger.warning(f"导入被拒绝 [{e.kind}]: 文件={filename}, 原因={e.message}")
            raise
