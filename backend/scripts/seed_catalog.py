#!/usr/bin/env python3
"""
Seed the default feature catalog and plans.

Idempotent: re-running inserts missing features and plans. A plan whose
current version differs from the catalog gets a new version; existing
versions are never rewritten because subscriptions may reference them.

Usage:
    # Seed the database configured by DATABASE_URL
    python scripts/seed_catalog.py

    # Local SQLite database without migrations
    DATABASE_URL=sqlite+aiosqlite:///./entitlements.db python scripts/seed_catalog.py --create-tables
"""

import argparse
import asyncio
import sys

import structlog

from entitlements.database import AsyncSessionLocal, Base, engine
from entitlements.middleware.logging import setup_logging
from entitlements.services.plan_catalog import PlanCatalog
import entitlements.models  # noqa: F401

logger = structlog.get_logger(__name__)


async def seed(create_tables: bool = False) -> dict[str, int]:
    """Create tables if asked, then upsert the default catalog in one transaction."""
    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("tables_created")

    async with AsyncSessionLocal() as db:
        counts = await PlanCatalog(db).seed_default_catalog()
        await db.commit()

    await engine.dispose()
    return counts


def main() -> int:
    """CLI entry point for catalog seeding."""
    parser = argparse.ArgumentParser(description="Seed the default entitlement catalog")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables first (local development without Alembic)",
    )
    args = parser.parse_args()

    setup_logging()
    try:
        counts = asyncio.run(seed(create_tables=args.create_tables))
    except Exception:
        logger.exception("catalog_seed_failed")
        return 1

    logger.info("catalog_seed_completed", **counts)
    return 0


if __name__ == "__main__":
    sys.exit(main())
