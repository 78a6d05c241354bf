"""
版本化数据库迁移

在应用启动（或执行 migrate_db.py）时运行一次，按版本号顺序执行尚未应用的迁移，
已应用的版本记录在 schema_version 表中。
"""
import logging

from sqlalchemy import func, insert, select

from .database import Base
from .orm_models import SchemaVersion, Invoice, Installment, Order, CommissionTitle, ServiceInvoice

logger = logging.getLogger(__name__)


def _create_ledger_tables(connection):
    tables = [t.__table__ for t in (Invoice, Installment, Order, CommissionTitle, ServiceInvoice)]
    Base.metadata.create_all(bind=connection, tables=tables)


# (版本号, 描述, 迁移函数)
MIGRATIONS = [
    (1, "创建发票、分期、佣金单据、结算单与服务发票表", _create_ledger_tables),
]


def current_version(connection) -> int:
    return connection.execute(select(func.max(SchemaVersion.version))).scalar() or 0


def run_migrations(engine) -> int:
    """执行未应用的迁移，返回迁移后的版本号"""
    with engine.begin() as connection:
        SchemaVersion.__table__.create(bind=connection, checkfirst=True)
        version = current_version(connection)
        for number, description, migrate in MIGRATIONS:
            if number <= version:
                continue
            logger.info(f"执行数据库迁移 v{number}: {description}")
            migrate(connection)
            connection.execute(insert(SchemaVersion).values(version=number, description=description))
            version = number
    logger.info(f"数据库结构版本: v{version}")
    return version
