"""Create the parties, interests, matches and messages tables in PostgreSQL."""

from __future__ import annotations

import logging
from pathlib import Path

from swipematch.backend.config import configure_logging, load_settings

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")


def apply_schema(database_url: str, schema_path: Path = SCHEMA_PATH) -> None:
    import psycopg

    schema_sql = schema_path.read_text(encoding="utf-8")
    logger.info("Applying schema %s", schema_path)
    with psycopg.connect(database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
        conn.commit()
    logger.info("Schema applied")


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    if not settings.database_url:
        raise RuntimeError("SWIPEMATCH_DATABASE_URL is required to apply the schema")
    apply_schema(settings.database_url)


if __name__ == "__main__":
    main()
