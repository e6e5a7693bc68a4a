"""Exit non-zero when the database is behind the migrations or differs from the models.

Exit codes: 0 in sync, 1 drift or pending migrations, 2 could not check.
"""

from __future__ import annotations

import sys

from alembic.autogenerate import compare_metadata
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from lotteryengine.db.engine import make_engine
from lotteryengine.models import Base

from init_db import alembic_config


def main() -> int:
    engine = make_engine()
    url = engine.url.render_as_string(hide_password=True)
    head = ScriptDirectory.from_config(alembic_config()).get_current_head()
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={"compare_type": True, "compare_server_default": True},
            )
            current = context.get_current_revision()
            diffs = [
                diff
                for diff in compare_metadata(context, Base.metadata)
                # Tables of other services sharing the database are not ours.
                if not (diff[0] == "remove_table" and diff[1].name not in Base.metadata.tables)
            ]
    except Exception as exc:
        print(f"Schema check: ERROR for {url}: {exc}", file=sys.stderr)
        return 2
    finally:
        engine.dispose()

    status = 0
    if current != head:
        print(f"Schema check: database at revision {current}, migrations head is {head}.")
        status = 1
    if diffs:
        print(f"Schema check: models differ from {url}:")
        for diff in diffs:
            print(f"  - {diff}")
        status = 1
    if status == 0:
        print(f"Schema check: OK ({url} at {head}).")
    return status


if __name__ == "__main__":
    raise SystemExit(main())
