"""Per-record transactional import of filing records.

Each record is written in its own transaction:

1. Look up organisations already stored under the record's (EIN, DLN).
2. Delete them together with their locations, metadata, Form 990 summary,
   people and people locations.
3. Insert the organisation, its location, the Form 990-EZ metadata and Form
   990 summary when present, then every person and their address.
4. Commit.

A database error while deleting or inserting rolls back only that record. By
default the run carries on with the next record and the failure is reported
in the returned ``ImportResult``; with ``stop_on_error`` the first failure ends
the run. Lookup and commit failures end the run regardless, as does a lost
connection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import psycopg2

from .database import FilingDatabase
from .records import FilingRecord


LOGGER = logging.getLogger("filing_importer.importer")

STATUS_INSERTED = "inserted"
STATUS_REPLACED = "replaced"
STATUS_FAILED = "failed"

CONNECTION_ERRORS = (psycopg2.InterfaceError, psycopg2.OperationalError)


@dataclass
class RecordOutcome:
    ein: str
    dln: str
    status: str
    organisation_id: Optional[int] = None
    person_ids: List[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAILED


@dataclass
class ImportResult:
    outcomes: List[RecordOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> List[RecordOutcome]:
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failed(self) -> List[RecordOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def replaced(self) -> List[RecordOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == STATUS_REPLACED]

    @property
    def ok(self) -> bool:
        return not self.failed

    def error_messages(self) -> List[str]:
        return [outcome.error or "unknown error" for outcome in self.failed]


class FatalImportError(RuntimeError):
    """Raised when the import cannot continue past the current record."""

    def __init__(self, message: str, outcome: RecordOutcome):
        super().__init__(message)
        self.outcome = outcome
        self.result: Optional[ImportResult] = None


class RecordImporter:
    """Replaces and inserts filing records one transaction at a time."""

    def __init__(self, db: FilingDatabase, *, stop_on_error: bool = False):
        self.db = db
        self.stop_on_error = stop_on_error

    def run(self, records: Iterable[FilingRecord], progress=None) -> ImportResult:
        """Import ``records`` in order.

        ``progress`` is anything with an ``update(n)`` method (a tqdm bar in
        the CLI); it advances once per record, failed or not.
        """
        result = ImportResult()
        for record in records:
            try:
                outcome = self.import_record(record)
            except FatalImportError as exc:
                result.outcomes.append(exc.outcome)
                exc.result = result
                raise
            result.outcomes.append(outcome)
            if progress is not None:
                progress.update(1)

        LOGGER.info(
            "Import finished: %s succeeded (%s replaced), %s failed",
            len(result.succeeded),
            len(result.replaced),
            len(result.failed),
        )
        return result

    def import_record(self, record: FilingRecord) -> RecordOutcome:
        LOGGER.info("Checking record with %s", record.key)
        try:
            existing_ids = self.db.find_organisation_ids(record.ein, record.dln)
        except psycopg2.Error as exc:
            self._abort()
            raise self._fatal(record, "check exists", exc) from exc

        outcome = RecordOutcome(
            ein=record.ein,
            dln=record.dln,
            status=STATUS_REPLACED if existing_ids else STATUS_INSERTED,
        )

        stage = "delete existing record"
        try:
            if existing_ids:
                LOGGER.info("Record with %s already exists, overwriting", record.key)
                self.db.delete_organisations(existing_ids)
                LOGGER.info("Deleted existing record with %s", record.key)

            LOGGER.info("Inserting record with %s", record.key)
            stage = "org insert"
            outcome.organisation_id = self.db.insert_organisation(record)

            stage = "location insert"
            self.db.insert_organisation_location(outcome.organisation_id, record.location)

            if record.form_990_ez is not None:
                stage = "metadata insert"
                self.db.insert_organisation_metadata(outcome.organisation_id, record.form_990_ez)

            if record.form_990 is not None:
                stage = "form 990 insert"
                self.db.insert_organisation_form_990(outcome.organisation_id, record.form_990)

            for person in record.people:
                stage = "person insert"
                person_id = self.db.insert_person(outcome.organisation_id, person)
                outcome.person_ids.append(person_id)
                if person.address is not None:
                    stage = "person location insert"
                    self.db.insert_person_location(person_id, person.address)
        except CONNECTION_ERRORS as exc:
            self._abort()
            raise self._fatal(record, stage, exc) from exc
        except psycopg2.Error as exc:
            self._abort()
            if self.stop_on_error:
                raise self._fatal(record, stage, exc) from exc
            message = _describe_failure(record, stage, exc)
            LOGGER.warning("Rolled back %s", message)
            return RecordOutcome(
                ein=record.ein,
                dln=record.dln,
                status=STATUS_FAILED,
                error=message,
            )

        try:
            self.db.commit()
        except psycopg2.Error as exc:
            self._abort()
            raise self._fatal(record, "commit", exc) from exc

        LOGGER.info("Successfully inserted record with %s", record.key)
        return outcome

    def _abort(self) -> None:
        try:
            self.db.rollback()
        except CONNECTION_ERRORS as exc:
            # Broken connection: the server already discarded the transaction.
            LOGGER.debug("Rollback skipped, connection unusable: %s", exc)

    @staticmethod
    def _fatal(record: FilingRecord, stage: str, exc: Exception) -> FatalImportError:
        message = _describe_failure(record, stage, exc)
        LOGGER.error("Stopping import: %s", message)
        outcome = RecordOutcome(
            ein=record.ein,
            dln=record.dln,
            status=STATUS_FAILED,
            error=message,
        )
        return FatalImportError(message, outcome)


def _describe_failure(record: FilingRecord, stage: str, exc: Exception) -> str:
    detail = str(exc).strip() or exc.__class__.__name__
    return f"{stage} failed for {record.key}: {detail}"
