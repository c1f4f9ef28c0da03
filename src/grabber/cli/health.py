"""
Health check - exits non-zero when the ledger cannot be read. Never writes to it.
"""
import asyncio
import os
import sys

from grabber.services.ledger import Ledger


async def check(path: str) -> int:
    try:
        total = await Ledger(path, read_only=True).count()
    except Exception as e:
        print(f"Health check failed: {e}", file=sys.stderr)
        return 1

    print(f"OK: {total} records")
    return 0


def _database_path() -> str:
    path = os.getenv("DATABASE_PATH")
    if path:
        return path

    from grabber.services.config import load_config
    return load_config().DATABASE_PATH


def main() -> None:
    sys.exit(asyncio.run(check(_database_path())))


if __name__ == "__main__":
    main()
