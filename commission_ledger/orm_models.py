from datetime import datetime

from sqlalchemy import Column, Integer, String, DECIMAL, Date, DateTime, Text, ForeignKey
from .database import Base

# 金额字段统一 DECIMAL(20, 6)：台账精度为6位小数，写入时按此精度量化


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    number = Column(String(32))  # 未识别时为空
    series = Column(String(8))
    issue_date = Column(Date)
    access_key = Column(String(44), unique=True)
    issuer_name = Column(String(255))
    issuer_tax_id = Column(String(20), default="")
    recipient_name = Column(String(255))
    recipient_tax_id = Column(String(20), default="")
    total_value = Column(DECIMAL(20, 6), default=0)
    source = Column(String(8))  # xml, pdf, text
    raw_document = Column(Text)
    imported_at = Column(DateTime, default=datetime.now)


class Installment(Base):
    __tablename__ = "installments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), index=True, nullable=False)
    number = Column(String(16))
    value = Column(DECIMAL(20, 6))
    due_date = Column(Date)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    description = Column(String(255))
    total_value = Column(DECIMAL(20, 6), default=0)
    title_count = Column(Integer, default=0)
    status = Column(String(16), default="open")
    created_at = Column(DateTime, default=datetime.now)


class CommissionTitle(Base):
    __tablename__ = "commission_titles"

    id = Column(Integer, primary_key=True, index=True)
    installment_id = Column(Integer, ForeignKey("installments.id"), index=True, nullable=False)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), index=True, nullable=False)
    commission_rate = Column(DECIMAL(20, 6))
    commission_value = Column(DECIMAL(20, 6))
    status = Column(String(16), default="pending")  # pending, grouped
    payment_status = Column(String(16), default="pending")  # pending, paid, overdue
    forecast_date = Column(Date)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True)
    created_at = Column(DateTime, default=datetime.now)


class ServiceInvoice(Base):
    __tablename__ = "service_invoices"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"))  # 弱引用，仅关联不归属
    number = Column(String(32), nullable=False)
    issue_date = Column(Date, nullable=False)
    value = Column(DECIMAL(20, 6), nullable=False)
    payment_status = Column(String(16), default="awaiting")  # awaiting, paid, cancelled
    payment_date = Column(Date)
    notes = Column(Text, default="")
    created_at = Column(DateTime, default=datetime.now)


class SchemaVersion(Base):
    __tablename__ = "schema_version"

    version = Column(Integer, primary_key=True)
    description = Column(String(255))
    applied_at = Column(DateTime, default=datetime.now)
