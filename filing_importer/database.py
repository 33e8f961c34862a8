"""PostgreSQL access for the filing importer.

``FilingDatabase`` keeps the connection in manual-commit mode; the importer
decides when a record's statements are committed or rolled back.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import psycopg2
from psycopg2 import sql

from .records import Address, FilingRecord, Form990, Form990EZ, Person


LOGGER = logging.getLogger("filing_importer.database")

DEFAULT_SCHEMA = "website"
FORM_990_TABLE = "organisation_form_990"


class FilingDatabase:
    """Minimal database helper around psycopg2."""

    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        schema: str = DEFAULT_SCHEMA,
        connection=None,
        application_name: str = "filing_importer",
    ):
        if connection is None:
            if not dsn:
                raise ValueError("A DSN or an open connection is required")
            connection = psycopg2.connect(dsn, application_name=application_name)
        self._conn = connection
        self._conn.autocommit = False
        self.schema = schema
        self._stores_form_990: Optional[bool] = None

    @property
    def connection(self):
        return self._conn

    def close(self) -> None:
        self._conn.close()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def _table(self, name: str) -> "sql.Identifier":
        return sql.Identifier(self.schema, name)

    def table_exists(self, name: str) -> bool:
        with self._conn.cursor() as cur:
            cur.execute("SELECT to_regclass(format('%%I.%%I', %s, %s))", (self.schema, name))
            return cur.fetchone()[0] is not None

    @property
    def stores_form_990(self) -> bool:
        """Whether the schema has the optional Form 990 summary table.

        Looked up on first use and cached. Without the table the Form 990
        summary is skipped on insert and delete.
        """
        if self._stores_form_990 is None:
            self._stores_form_990 = self.table_exists(FORM_990_TABLE)
            if not self._stores_form_990:
                LOGGER.warning(
                    "Table %s.%s not found, Form 990 summaries will not be stored",
                    self.schema,
                    FORM_990_TABLE,
                )
        return self._stores_form_990

    def find_organisation_ids(self, ein: str, dln: str) -> List[int]:
        query = sql.SQL(
            "SELECT id FROM {table} WHERE ein = %s AND dln = %s ORDER BY id"
        ).format(table=self._table("organisations"))
        with self._conn.cursor() as cur:
            cur.execute(query, (ein, dln))
            rows = cur.fetchall()
        return [row[0] for row in rows]

    def delete_organisations(self, organisation_ids: Sequence[int]) -> int:
        """Delete organisations and every row that hangs off them.

        Dependents go first so this works on schemas without ``ON DELETE
        CASCADE``. Returns the number of organisation rows removed.
        """
        ids = list(organisation_ids)
        if not ids:
            return 0

        statements = [
            sql.SQL(
                "DELETE FROM {people_locations} WHERE person_id IN "
                "(SELECT id FROM {people} WHERE organisation_id = ANY(%s))"
            ).format(
                people_locations=self._table("people_locations"),
                people=self._table("people"),
            ),
            sql.SQL("DELETE FROM {table} WHERE organisation_id = ANY(%s)").format(
                table=self._table("people")
            ),
            sql.SQL("DELETE FROM {table} WHERE organisation_id = ANY(%s)").format(
                table=self._table("organisation_metadata")
            ),
            sql.SQL("DELETE FROM {table} WHERE organisation_id = ANY(%s)").format(
                table=self._table("organisation_locations")
            ),
        ]
        if self.stores_form_990:
            statements.append(
                sql.SQL("DELETE FROM {table} WHERE organisation_id = ANY(%s)").format(
                    table=self._table(FORM_990_TABLE)
                )
            )
        with self._conn.cursor() as cur:
            for statement in statements:
                cur.execute(statement, (ids,))
            cur.execute(
                sql.SQL("DELETE FROM {table} WHERE id = ANY(%s)").format(
                    table=self._table("organisations")
                ),
                (ids,),
            )
            deleted = cur.rowcount
        LOGGER.debug("Deleted organisations %s", ids)
        return deleted

    def insert_organisation(self, record: FilingRecord) -> int:
        summary = record.form_990_ez
        website = summary.website if summary is not None else None
        description = summary.primary_exempt_purpose_txt if summary is not None else None

        query = sql.SQL(
            """
            INSERT INTO {table}
            (name, ein, dln, xml_batch_id, website, description)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id
            """
        ).format(table=self._table("organisations"))
        with self._conn.cursor() as cur:
            cur.execute(
                query,
                (
                    record.name,
                    record.ein,
                    record.dln,
                    record.xml_batch_id,
                    website,
                    description,
                ),
            )
            organisation_id = cur.fetchone()[0]
        LOGGER.debug("Created organisation %s for EIN %s", organisation_id, record.ein)
        return organisation_id

    def insert_organisation_location(self, organisation_id: int, location: Address) -> None:
        query = sql.SQL(
            """
            INSERT INTO {table}
            (organisation_id, address_line_1, city, state, zip_code)
            VALUES (%s, %s, %s, %s, %s)
            """
        ).format(table=self._table("organisation_locations"))
        with self._conn.cursor() as cur:
            cur.execute(
                query,
                (
                    organisation_id,
                    location.address_line_1,
                    location.city,
                    location.state,
                    location.zip_code,
                ),
            )

    def insert_organisation_metadata(self, organisation_id: int, summary: Form990EZ) -> None:
        query = sql.SQL(
            """
            INSERT INTO {table}
            (organisation_id, gross_receipts_amt, total_revenue_amt,
             total_expenses_amt, excess_or_deficit_for_year_amt)
            VALUES (%s, %s, %s, %s, %s)
            """
        ).format(table=self._table("organisation_metadata"))
        with self._conn.cursor() as cur:
            cur.execute(
                query,
                (
                    organisation_id,
                    summary.gross_receipts_amt,
                    summary.total_revenue_amt,
                    summary.total_expenses_amt,
                    summary.excess_or_deficit_for_year_amt,
                ),
            )

    def insert_organisation_form_990(self, organisation_id: int, form: Form990) -> bool:
        if not self.stores_form_990:
            return False
        officer_address = form.principal_officer_address
        if officer_address is not None:
            officer_fields = (
                officer_address.address_line_1,
                officer_address.city,
                officer_address.state,
                officer_address.zip_code,
            )
        else:
            officer_fields = (None, None, None, None)
        query = sql.SQL(
            """
            INSERT INTO {table}
            (organisation_id, principal_officer_name,
             principal_officer_address_line_1, principal_officer_city,
             principal_officer_state, principal_officer_zip_code,
             gross_receipts_amount, website_address, mission_description,
             formation_year, total_assets_end_of_year_amount,
             total_liabilities_end_of_year_amount)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """
        ).format(table=self._table(FORM_990_TABLE))
        with self._conn.cursor() as cur:
            cur.execute(
                query,
                (
                    organisation_id,
                    form.principal_officer_name,
                    *officer_fields,
                    form.gross_receipts_amount,
                    form.website_address,
                    form.mission_description,
                    form.formation_year,
                    form.total_assets_end_of_year_amount,
                    form.total_liabilities_end_of_year_amount,
                ),
            )
        return True

    def insert_person(self, organisation_id: int, person: Person) -> int:
        query = sql.SQL(
            """
            INSERT INTO {table}
            (organisation_id, bookkeeper, name, title, phone_number,
             average_hours, compensation)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """
        ).format(table=self._table("people"))
        with self._conn.cursor() as cur:
            cur.execute(
                query,
                (
                    organisation_id,
                    person.bookkeeper,
                    person.person_name,
                    person.person_title,
                    person.phone_number,
                    person.average_hours,
                    person.compensation,
                ),
            )
            person_id = cur.fetchone()[0]
        return person_id

    def insert_person_location(self, person_id: int, address: Address) -> None:
        query = sql.SQL(
            """
            INSERT INTO {table}
            (person_id, address_line_1, city, state, zip_code)
            VALUES (%s, %s, %s, %s, %s)
            """
        ).format(table=self._table("people_locations"))
        with self._conn.cursor() as cur:
            cur.execute(
                query,
                (
                    person_id,
                    address.address_line_1,
                    address.city,
                    address.state,
                    address.zip_code,
                ),
            )
