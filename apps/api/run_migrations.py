#!/usr/bin/env python3
"""Database bootstrap: run Alembic migrations (production-safe).

- Always run `alembic upgrade head` on startup.
- If migrations fail on a non-empty database, fail fast (don't start with an unknown schema).
- An empty database that cannot replay migrations is created from the models
  and stamped at head.
"""

import os
import sys
import time
from dotenv import load_dotenv

load_dotenv()


def check_db_ready():
    """Check if database is ready"""
    import psycopg2
    try:
        conn = psycopg2.connect(
            host=os.getenv('POSTGRES_HOST', 'postgres'),
            port=os.getenv('POSTGRES_PORT', '5432'),
            user=os.getenv('POSTGRES_USER', 'postgres'),
            password=os.getenv('POSTGRES_PASSWORD', 'postgres'),
            database=os.getenv('POSTGRES_DB', 'afya_intake')
        )
        conn.close()
        return True
    except Exception:
        return False


def _get_alembic_config():
    """Load Alembic config for programmatic migrations."""
    from alembic.config import Config

    here = os.path.dirname(os.path.abspath(__file__))
    cfg = Config(os.path.join(here, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(here, "alembic"))
    return cfg


def alembic_upgrade_head() -> None:
    """Apply all pending migrations."""
    from alembic import command

    command.upgrade(_get_alembic_config(), "head")


def alembic_stamp_head() -> None:
    """Stamp alembic_version as head (no schema changes)."""
    from alembic import command

    command.stamp(_get_alembic_config(), "head")


def create_schema_directly():
    """Fallback: create schema directly from SQLAlchemy models.

    Refuses to touch a database that already holds clients; those must be
    migrated with Alembic.
    """
    from sqlalchemy import inspect, text
    from core.database import engine, init_db

    if inspect(engine).has_table("client"):
        with engine.connect() as conn:
            count = conn.execute(text("SELECT COUNT(*) FROM client")).scalar()
        if count:
            raise RuntimeError(
                f"Refusing direct schema creation on non-empty DB (clients={count}). "
                f"Run Alembic migrations instead."
            )

    print("Creating schema directly from models...")
    init_db()

    # Mark as up to date so future runs can upgrade incrementally.
    alembic_stamp_head()

    print("Schema created successfully!")


def main():
    uses_postgres = not os.getenv('DATABASE_URL', '').startswith('sqlite')

    if uses_postgres:
        print("Waiting for database to be ready...")
        max_retries = 30
        retry_count = 0

        while retry_count < max_retries:
            if check_db_ready():
                print("Database is ready!")
                break
            retry_count += 1
            print(f"Database is unavailable - sleeping (attempt {retry_count}/{max_retries})")
            time.sleep(1)
        else:
            print("ERROR: Database is not ready after maximum retries")
            sys.exit(1)

    try:
        alembic_upgrade_head()
        print("Migrations completed successfully!")
        return
    except Exception as e:
        print(f"ERROR: Alembic upgrade failed: {e}")

    try:
        create_schema_directly()
    except Exception as e:
        print(f"ERROR: Schema bootstrap failed: {e}")
        sys.exit(1)
    print("Schema bootstrap completed via create_all fallback.")


if __name__ == '__main__':
    main()
