"""
SupplementScribe Ingestion Schema
=================================
DDL for the tables the ingestion pipeline reads and writes.

The UNIQUE constraints back the bulk writer's conflict keys; the upsert tier
only resolves conflicts on these exact column lists. user_snps uses
NULLS NOT DISTINCT (PostgreSQL 15+) because matched variants leave
snp_id/gene_name NULL and unmatched ones leave supported_snp_id NULL.

Usage:
    python -m ingestion_engine.schema          # uses DATABASE_URL
"""

import logging
import os
import sys
from typing import List, Optional

import psycopg2

from .mapping import BIOMARKER_CONFLICT_KEY, SNP_CONFLICT_KEY

logger = logging.getLogger(__name__)


def _unique_columns(conflict_key: str) -> str:
    return ", ".join(c.strip() for c in conflict_key.split(","))


SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS user_lab_reports (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        filename TEXT,
        report_type VARCHAR(32) DEFAULT 'lab_report',
        status VARCHAR(32) DEFAULT 'uploaded',
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS supported_snps (
        id SERIAL PRIMARY KEY,
        rsid VARCHAR(50),
        gene VARCHAR(50)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS user_biomarkers (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        report_id TEXT,
        marker_name TEXT NOT NULL,
        original_name TEXT,
        value NUMERIC,
        unit TEXT DEFAULT 'not specified',
        reference_range TEXT,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        CONSTRAINT user_biomarkers_conflict_key UNIQUE ({_unique_columns(BIOMARKER_CONFLICT_KEY)})
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS user_snps (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        report_id TEXT,
        supported_snp_id INTEGER REFERENCES supported_snps(id),
        snp_id VARCHAR(50),
        gene_name VARCHAR(50),
        genotype VARCHAR(10) NOT NULL,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        CONSTRAINT user_snps_conflict_key UNIQUE NULLS NOT DISTINCT ({_unique_columns(SNP_CONFLICT_KEY)})
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_user_biomarkers_user ON user_biomarkers(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_user_snps_user ON user_snps(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_supported_snps_rsid ON supported_snps(LOWER(rsid))",
    "CREATE INDEX IF NOT EXISTS idx_user_lab_reports_user ON user_lab_reports(user_id)",
]


def apply_schema(database_url: Optional[str] = None) -> bool:
    """Create all ingestion tables. Idempotent. Returns True on success."""
    database_url = database_url or os.getenv("DATABASE_URL")
    if not database_url:
        logger.error("DATABASE_URL not configured")
        return False

    try:
        conn = psycopg2.connect(database_url)
    except psycopg2.Error as e:
        logger.error(f"Failed to connect to database: {e}")
        return False

    try:
        with conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)
        conn.commit()
        logger.info(f"Applied {len(SCHEMA_STATEMENTS)} schema statements")
        return True
    except psycopg2.Error as e:
        conn.rollback()
        logger.error(f"Schema migration failed: {e}")
        return False
    finally:
        conn.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    sys.exit(0 if apply_schema() else 1)
