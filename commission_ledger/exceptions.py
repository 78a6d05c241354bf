"""
业务异常定义

每类异常带有稳定的 kind 与对应的 HTTP 状态码，供接口层统一转换。
"""


class LedgerError(Exception):
    kind = "ledger_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class StructuralParseError(LedgerError):
    """结构化文档缺少必需节点或无法解析，导入中止"""
    kind = "structural_parse_error"
    status_code = 422


class ExtractionError(LedgerError):
    """无法从上传文件中提取文本（如损坏的PDF）"""
    kind = "extraction_error"
    status_code = 422


class ValidationError(LedgerError):
    kind = "validation_error"
    status_code = 400


class DuplicateError(LedgerError):
    kind = "duplicate_error"
    status_code = 409


class ConflictError(LedgerError):
    kind = "conflict_error"
    status_code = 409


class NotFoundError(LedgerError):
    kind = "not_found"
    status_code = 404
