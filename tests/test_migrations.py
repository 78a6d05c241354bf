from sqlalchemy import inspect

from commission_ledger.database import Database
from commission_ledger.migrations import MIGRATIONS, current_version, run_migrations
from commission_ledger.orm_models import SchemaVersion


def test_migrations_create_tables(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'fresh.db'}")
    try:
        version = run_migrations(database.engine)
        assert version == MIGRATIONS[-1][0]
        tables = set(inspect(database.engine).get_table_names())
        assert {"invoices", "installments", "orders", "commission_titles",
                "service_invoices", "schema_version"} <= tables
    finally:
        database.dispose()


def test_migrations_are_applied_once(database):
    # database 夹具已执行过一次迁移
    assert run_migrations(database.engine) == MIGRATIONS[-1][0]
    with database.session() as session:
        assert session.query(SchemaVersion).count() == len(MIGRATIONS)
    with database.engine.connect() as connection:
        assert current_version(connection) == MIGRATIONS[-1][0]
