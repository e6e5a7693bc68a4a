from __future__ import annotations

import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv

# Migrations run from the repo root without installing the package.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))
load_dotenv(ROOT_DIR / ".env")

from lotteryengine.db.engine import DEFAULT_SQLITE_URL, make_engine  # noqa: E402
from lotteryengine.models import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# DB_URL (already resolved against the repo root) wins over alembic.ini.
DATABASE_URL = DEFAULT_SQLITE_URL
config.set_main_option("sqlalchemy.url", DATABASE_URL.replace("%", "%%"))


def include_object(obj, name, type_, reflected, compare_to):
    """Leave tables owned by other services alone when sharing a database."""
    if type_ == "table" and reflected and compare_to is None:
        return name in target_metadata.tables
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the lottery schema as SQL without connecting."""
    _configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=DATABASE_URL.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations through the engine used by the lottery services."""
    engine = make_engine(database_url=DATABASE_URL)
    try:
        with engine.connect() as connection:
            # SQLite cannot ALTER constraints in place.
            _configure(
                connection=connection,
                render_as_batch=connection.dialect.name == "sqlite",
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
