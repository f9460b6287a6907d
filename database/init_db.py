"""Database initialization helper.

Creates the schema catalog in the configured database (``DATABASE_URL`` or
the local SQLite file) and writes its DDL to ``database/schema.sql``.
Physical tables of custom tables are not part of the catalog DDL; they are
created at runtime.

Copyright (c) Bryn Gwalad 2025
"""

import sys
from pathlib import Path

# Ensure project root is on sys.path so `from utils import ...` works when
# running this script directly (python database/init_db.py).
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlalchemy.schema import CreateTable  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from utils.database import get_engine, init_db  # noqa: E402


def write_schema(engine, schema_path: Path) -> None:
    """Write CREATE TABLE statements for every catalog table to ``schema_path``."""
    schema_path.parent.mkdir(parents=True, exist_ok=True)
    with open(schema_path, "w", encoding="utf-8") as f:
        for table in SQLModel.metadata.sorted_tables:
            f.write(str(CreateTable(table).compile(engine)).strip())
            f.write(";\n\n")


def main() -> None:
    engine = get_engine()
    print(f"Using database URL: {engine.url.render_as_string(hide_password=True)}")

    print("Creating catalog tables...")
    init_db()
    print("Tables created.")

    schema_path = ROOT / "database" / "schema.sql"
    print(f"Writing SQL DDL to {schema_path}")
    write_schema(engine, schema_path)
    print("Done.\n")


if __name__ == "__main__":
    main()
