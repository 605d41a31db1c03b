#!/usr/bin/env python
"""Create the grant payroll tables that do not exist yet.

Usage:
    python scripts/migrate.py
    python scripts/migrate.py --database-url postgresql+asyncpg://...
    python scripts/migrate.py --dry-run
"""

import argparse
import asyncio
import sys

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from grant_payroll.config import get_settings
from grant_payroll.models import Base


def _existing_tables(sync_conn) -> set[str]:
    return set(inspect(sync_conn).get_table_names())


async def migrate(database_url: str, dry_run: bool) -> int:
    engine = create_async_engine(database_url)
    try:
        async with engine.begin() as conn:
            existing = await conn.run_sync(_existing_tables)
            pending = [t for t in Base.metadata.sorted_tables if t.name not in existing]

            print(f"Already present: {len(existing)}")
            if not pending:
                print("No pending tables.")
                return 0

            print(f"Pending tables: {len(pending)}")
            for table in pending:
                print(f"  {'[DRY RUN] ' if dry_run else ''}{table.name}")

            if not dry_run:
                await conn.run_sync(Base.metadata.create_all, tables=pending)
    except SQLAlchemyError as e:
        print(f"FAILED: {e}")
        return 1
    finally:
        await engine.dispose()

    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Create grant payroll tables")
    parser.add_argument(
        "--database-url",
        default=get_settings().database_url,
        help="Async database URL",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be created without executing",
    )
    args = parser.parse_args()

    print("Grant Payroll Schema")
    print("=" * 50)
    print(f"Database: {args.database_url.split('@')[-1]}")
    print()

    return asyncio.run(migrate(args.database_url, args.dry_run))


if __name__ == "__main__":
    sys.exit(main())
