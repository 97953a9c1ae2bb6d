# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Database Initialization — Create tables from ORM metadata.

    python -m hookflow.storage.init_db [--drop]
"""

import asyncio
import sys

from hookflow.storage.database import close_db, create_all_tables, drop_all_tables

# Ensure models are imported so Base.metadata knows about them
import hookflow.storage.models  # noqa: F401


async def main(drop: bool = False):
    """Create all HookFlow tables, optionally dropping them first."""
    if drop:
        print("[init_db] Dropping tables...")
        await drop_all_tables()
    print("[init_db] Creating tables...")
    await create_all_tables()
    print("[init_db] Done.")
    await close_db()


if __name__ == "__main__":
    asyncio.run(main(drop="--drop" in sys.argv[1:]))
