"""
Database migration script for Community Mail

Creates the secrets, accounts and audit_logs tables, plus a trigger that
rejects UPDATE and DELETE on audit_logs.

Run: python migrations.py
"""
import asyncio
import logging
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import text

# Load environment
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from database import get_engine, dispose_engine

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


STATEMENTS = [
    ("secrets", """
        CREATE TABLE IF NOT EXISTS secrets (
            id SERIAL PRIMARY KEY,
            community_type VARCHAR(20) NOT NULL UNIQUE,
            secret_hash VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("accounts", """
        CREATE TABLE IF NOT EXISTS accounts (
            id SERIAL PRIMARY KEY,
            email VARCHAR(255) NOT NULL UNIQUE,
            community_type VARCHAR(20) NOT NULL,
            local_part VARCHAR(100) NOT NULL,
            primary_name VARCHAR(100) NOT NULL,
            secondary_name VARCHAR(100),
            phone VARCHAR(20),
            contact_email VARCHAR(255) NOT NULL,
            provider_display_name VARCHAR(255),
            provider_id VARCHAR(100),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            bio TEXT,
            location VARCHAR(100),
            avatar TEXT,
            company VARCHAR(100),
            job_title VARCHAR(100),
            linkedin VARCHAR(255),
            twitter VARCHAR(255),
            github VARCHAR(255),
            instagram VARCHAR(255),
            facebook VARCHAR(255),
            youtube VARCHAR(255),
            website VARCHAR(255)
        )
    """),
    ("accounts indexes", """
        CREATE INDEX IF NOT EXISTS ix_accounts_community_type ON accounts (community_type)
    """),
    ("audit_logs", """
        CREATE TABLE IF NOT EXISTS audit_logs (
            id SERIAL PRIMARY KEY,
            action VARCHAR(50) NOT NULL,
            actor VARCHAR(255) NOT NULL,
            details JSONB DEFAULT '{}'::jsonb,
            source_address VARCHAR(45),
            severity VARCHAR(10) NOT NULL DEFAULT 'info',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("audit_logs indexes", """
        CREATE INDEX IF NOT EXISTS ix_audit_logs_action ON audit_logs (action)
    """),
    ("audit_logs indexes", """
        CREATE INDEX IF NOT EXISTS ix_audit_logs_created_at ON audit_logs (created_at)
    """),
    ("audit_logs append-only function", """
        CREATE OR REPLACE FUNCTION audit_logs_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_logs is append-only';
        END;
        $$ LANGUAGE plpgsql
    """),
    ("audit_logs append-only trigger", """
        DO $$ BEGIN
            CREATE TRIGGER audit_logs_no_mutation
                BEFORE UPDATE OR DELETE ON audit_logs
                FOR EACH ROW EXECUTE FUNCTION audit_logs_append_only();
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$
    """),
]


async def create_tables():
    """Create all tables in the database"""
    async with get_engine().begin() as conn:
        for name, statement in STATEMENTS:
            logger.info(f"Applying: {name}")
            await conn.execute(text(statement))
    logger.info("All tables created successfully")


async def main():
    try:
        await create_tables()
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
