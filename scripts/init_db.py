from __future__ import annotations

import argparse
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import func, inspect, select

from lotteryengine.db.engine import make_engine
from lotteryengine.models import Base

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def alembic_config() -> Config:
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    return cfg


def upgrade_db(target_revision: str = "head") -> None:
    """Apply the lottery schema migrations up to ``target_revision``."""
    command.upgrade(alembic_config(), target_revision)


def report_tables() -> None:
    """Print every lottery table with its row count."""
    engine = make_engine()
    try:
        present = set(inspect(engine).get_table_names())
        with engine.connect() as conn:
            for name, table in sorted(Base.metadata.tables.items()):
                if name not in present:
                    print(f"{name}: MISSING")
                    continue
                count = conn.scalar(select(func.count()).select_from(table))
                print(f"{name}: {count} row(s)")
    finally:
        engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create or upgrade the lottery database.")
    parser.add_argument("revision", nargs="?", default="head")
    args = parser.parse_args()
    upgrade_db(args.revision)
    report_tables()


if __name__ == "__main__":
    main()
