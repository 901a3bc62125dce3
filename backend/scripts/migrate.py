#!/usr/bin/env python
"""
Apply Alembic migrations without the alembic CLI.

Usage:
    python scripts/migrate.py upgrade [revision]
    python scripts/migrate.py downgrade [revision]
    python scripts/migrate.py current

The database URL always comes from application settings (``DATABASE_URL``),
never from alembic.ini, so deployments configure it in one place.
"""

from __future__ import annotations

import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from loguru import logger

ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_INI = ROOT / "alembic.ini"


def get_config() -> Config:
    cfg = Config(str(ALEMBIC_INI) if ALEMBIC_INI.exists() else None)
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    return cfg


def upgrade(rev: str = "head") -> None:
    logger.info(f"Upgrading schema to {rev}")
    command.upgrade(get_config(), rev)


def downgrade(rev: str = "-1") -> None:
    # Downgrading past the initial revision drops the audit trail
    logger.warning(f"Downgrading schema to {rev}")
    command.downgrade(get_config(), rev)


def current() -> None:
    command.current(get_config(), verbose=True)


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    if not argv:
        print("Usage: python scripts/migrate.py <upgrade|downgrade|current> [revision]")
        return 2

    op, rev = argv[0], (argv[1] if len(argv) > 1 else None)
    if op == "upgrade":
        upgrade(rev or "head")
    elif op == "downgrade":
        downgrade(rev or "-1")
    elif op == "current":
        current()
    else:
        print(f"Unknown operation {op!r}. Use upgrade, downgrade or current")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
