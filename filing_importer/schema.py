"""DDL for the tables the filing importer writes to.

The importer normally runs against an existing ``website`` schema. ``create_schema``
is an opt-in bootstrap for fresh databases and test runs: every statement is
``IF NOT EXISTS`` and existing tables are never altered.
"""

from __future__ import annotations

import logging

from psycopg2 import sql

from .database import DEFAULT_SCHEMA


LOGGER = logging.getLogger("filing_importer.schema")

# Dependent rows cascade when their organisation is deleted.
SCHEMA_DDL = """
CREATE SCHEMA IF NOT EXISTS {schema};

CREATE TABLE IF NOT EXISTS {schema}.organisations (
  id SERIAL PRIMARY KEY,
  name TEXT NOT NULL,
  ein TEXT NOT NULL,
  dln TEXT NOT NULL,
  xml_batch_id TEXT,
  website TEXT,
  description TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS organisations_ein_dln_key
  ON {schema}.organisations (ein, dln);

CREATE TABLE IF NOT EXISTS {schema}.organisation_locations (
  organisation_id INTEGER NOT NULL REFERENCES {schema}.organisations (id) ON DELETE CASCADE,
  address_line_1 TEXT,
  city TEXT,
  state TEXT,
  zip_code TEXT
);

CREATE TABLE IF NOT EXISTS {schema}.organisation_metadata (
  organisation_id INTEGER NOT NULL REFERENCES {schema}.organisations (id) ON DELETE CASCADE,
  gross_receipts_amt BIGINT,
  total_revenue_amt BIGINT,
  total_expenses_amt BIGINT,
  excess_or_deficit_for_year_amt BIGINT
);

CREATE TABLE IF NOT EXISTS {schema}.organisation_form_990 (
  organisation_id INTEGER NOT NULL REFERENCES {schema}.organisations (id) ON DELETE CASCADE,
  principal_officer_name TEXT,
  principal_officer_address_line_1 TEXT,
  principal_officer_city TEXT,
  principal_officer_state TEXT,
  principal_officer_zip_code TEXT,
  gross_receipts_amount BIGINT,
  website_address TEXT,
  mission_description TEXT,
  formation_year INTEGER,
  total_assets_end_of_year_amount BIGINT,
  total_liabilities_end_of_year_amount BIGINT
);

CREATE TABLE IF NOT EXISTS {schema}.people (
  id SERIAL PRIMARY KEY,
  organisation_id INTEGER NOT NULL REFERENCES {schema}.organisations (id) ON DELETE CASCADE,
  bookkeeper BOOLEAN NOT NULL DEFAULT FALSE,
  name TEXT NOT NULL,
  title TEXT,
  phone_number TEXT,
  average_hours DOUBLE PRECISION,
  compensation BIGINT
);

CREATE TABLE IF NOT EXISTS {schema}.people_locations (
  person_id INTEGER NOT NULL REFERENCES {schema}.people (id) ON DELETE CASCADE,
  address_line_1 TEXT,
  city TEXT,
  state TEXT,
  zip_code TEXT
);
"""


def create_schema(conn, schema: str = DEFAULT_SCHEMA) -> None:
    statement = sql.SQL(SCHEMA_DDL).format(schema=sql.Identifier(schema))
    with conn, conn.cursor() as cur:
        cur.execute(statement)
    LOGGER.info("Ensured schema %s and its tables exist", schema)


def drop_schema(conn, schema: str) -> None:
    statement = sql.SQL("DROP SCHEMA IF EXISTS {schema} CASCADE").format(
        schema=sql.Identifier(schema)
    )
    with conn, conn.cursor() as cur:
        cur.execute(statement)
    LOGGER.info("Dropped schema %s", schema)
