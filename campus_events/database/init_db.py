"""
Database bootstrap.

Applies schema.sql and makes sure the default admin account exists.
Run directly to prepare a fresh database:

    python -m campus_events.database.init_db
"""

import logging
import os
import sys
from pathlib import Path

from argon2 import PasswordHasher
from dotenv import load_dotenv

from campus_events.database.db_connection import Database

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

DEFAULT_ADMIN_NAME = "Admin"


def apply_schema(database: Database) -> None:
    """Execute schema.sql in a single transaction."""
    sql = SCHEMA_PATH.read_text(encoding="utf-8")
    with database.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(sql)
    logger.info("Schema applied")


def ensure_default_admin(database: Database, email: str, password: str) -> bool:
    """
    Create the default admin account unless a user with `email` exists.

    Returns:
        bool: True if the account was created, False if it already existed.
    """
    email = email.strip().lower()
    with database.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id FROM users WHERE email = %s;", (email,))
            if cur.fetchone():
                logger.info(f"Default admin already exists: {email}")
                return False

            password_hash = PasswordHasher().hash(password)
            cur.execute(
                """
                INSERT INTO users (name, email, password_hash, role)
                VALUES (%s, %s, %s, 'admin')
                ON CONFLICT (email) DO NOTHING;
                """,
                (DEFAULT_ADMIN_NAME, email, password_hash),
            )
            created = cur.rowcount == 1

    if created:
        logger.info(f"Created default admin: {email}")
    return created


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(asctime)s - %(message)s")

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("DATABASE_URL is not set. Please set the environment variable.")
        sys.exit(1)

    database = Database(database_url, min_connections=1, max_connections=1)
    database.open()
    try:
        apply_schema(database)
        ensure_default_admin(
            database,
            os.getenv("ADMIN_EMAIL", "admin@college.edu"),
            os.getenv("ADMIN_PASSWORD", "admin123"),
        )
    finally:
        database.close()

    print("Database initialised.")


if __name__ == "__main__":
    main()
