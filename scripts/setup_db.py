#!/usr/bin/env python3
"""Database setup script.

Applies pending SQL migrations (price_alerts, alert_history,
chart_drawings) in file-name order and records them in
schema_migrations.

Usage:
    python scripts/setup_db.py [--clear-history]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.adapters.repositories.alert_repository import PostgresAlertRepository
from src.infrastructure.config import get_settings
from src.infrastructure.database import close_pool, get_connection
from src.infrastructure.logging import configure_logging, get_logger

logger = get_logger("setup_db")

MIGRATIONS_DIR = Path(__file__).parent.parent / "src" / "infrastructure" / "migrations"


async def run_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """Apply migrations not yet recorded in schema_migrations.

    Returns:
        Versions applied by this run
    """
    migration_files = sorted(migrations_dir.glob("*.sql"))
    if not migration_files:
        logger.warning(f"No migration files found in {migrations_dir}")
        return []

    applied_now = []
    async with get_connection() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version VARCHAR(100) PRIMARY KEY,
                applied_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
            )
        """)

        rows = await conn.fetch("SELECT version FROM schema_migrations")
        applied = {row["version"] for row in rows}

        for migration_file in migration_files:
            version = migration_file.stem  # e.g., "001_create_alerts_table"
            if version in applied:
                logger.info(f"Skipping {version} (already applied)")
                continue

            async with conn.transaction():
                await conn.execute(migration_file.read_text())
                await conn.execute(
                    "INSERT INTO schema_migrations (version) VALUES ($1)", version
                )
            applied_now.append(version)
            logger.info(f"Applied {version}")

    return applied_now


async def main() -> int:
    parser = argparse.ArgumentParser(description="Create or upgrade the alert database schema")
    parser.add_argument("--clear-history", action="store_true", help="Delete all alert history records")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, "text")

    try:
        applied = await run_migrations()
        logger.info(f"Migrations complete ({len(applied)} applied)")
        if args.clear_history:
            await PostgresAlertRepository().clear_alert_history()
            logger.info("Alert history cleared")
    finally:
        await close_pool()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
