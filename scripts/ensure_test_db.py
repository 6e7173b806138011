from __future__ import annotations

import asyncio
import re

import asyncpg
from sqlalchemy.engine import make_url

from app.core.config import get_settings
from app.core.integration_db_safety import assess_integration_db_safety

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def resolve_test_database(database_url: str) -> tuple[str, str, int, str | None, str | None]:
    """Returns (db_name, host, port, user, password) for a safe local test database."""
    safety = assess_integration_db_safety(database_url)
    if not safety.is_safe:
        raise RuntimeError(f"Refusing to prepare database '{safety.database_name}': {safety.reason}")
    if IDENTIFIER_RE.fullmatch(safety.database_name) is None:
        raise RuntimeError(
            f"Unsupported database name '{safety.database_name}'. Only [A-Za-z0-9_] identifiers are supported."
        )

    parsed = make_url(database_url)
    if parsed.username is None:
        raise RuntimeError("DATABASE_URL username is required.")
    return safety.database_name, safety.host, int(parsed.port or 5432), parsed.username, parsed.password


async def _ensure_database_exists(database_url: str) -> None:
    db_name, host, port, user, password = resolve_test_database(database_url)
    conn = await asyncpg.connect(host=host, port=port, user=user, password=password, database="postgres")
    try:
        exists = await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", db_name)
        if exists:
            print(f"ensure_test_db: exists db={db_name} host={host}:{port}")  # noqa: T201
            return

        await conn.execute(f'CREATE DATABASE "{db_name}"')
        print(f"ensure_test_db: created db={db_name} host={host}:{port}")  # noqa: T201
    finally:
        await conn.close()


def main() -> int:
    asyncio.run(_ensure_database_exists(get_settings().database_url))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
