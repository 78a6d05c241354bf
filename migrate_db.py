import argparse
import logging

from commission_ledger.config import settings
from commission_ledger.database import Database
from commission_ledger.migrations import run_migrations


def migrate(environment: str = None):
    url = settings.get_database_url(environment)
    print(f"Starting ledger schema migration ({settings.resolve_environment(environment)})...")
    database = Database(url)
    try:
        version = run_migrations(database.engine)
        print(f"Migration completed successfully, schema version v{version}")
    except Exception as e:
        print(f"Migration failed: {e}")
        raise
    finally:
        database.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    parser = argparse.ArgumentParser(description="执行佣金台账数据库迁移")
    parser.add_argument("--env", type=str, default=None, choices=["test", "prod", "local"], help="目标环境")
    args = parser.parse_args()
    migrate(args.env)
