import copy
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from filing_importer.records import parse_records


TABLES = (
    "organisations",
    "organisation_locations",
    "organisation_metadata",
    "organisation_form_990",
    "people",
    "people_locations",
)


class FakeFilingDatabase:
    """In-memory stand-in for FilingDatabase.

    Writes are staged until ``commit``; ``rollback`` discards them. Ids come
    from counters that, like Postgres sequences, are not rolled back.
    """

    def __init__(self):
        self.tables = {name: [] for name in TABLES}
        self._staged = None
        self._next_id = {"organisations": 1, "people": 1}
        self._failures = []
        self._current_ein = None
        self.calls = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self.connection = object()
        self.stores_form_990 = True
        self.rollback_error = None

    # failure injection

    def fail_on(self, method, exc, ein=None):
        self._failures.append((method, exc, ein))

    def _maybe_fail(self, method):
        self.calls.append(method)
        for name, exc, ein in self._failures:
            if name == method and (ein is None or ein == self._current_ein):
                raise exc

    # transaction handling

    def _rows(self):
        if self._staged is None:
            self._staged = copy.deepcopy(self.tables)
        return self._staged

    def commit(self):
        self._maybe_fail("commit")
        if self._staged is not None:
            self.tables = self._staged
        self._staged = None
        self.commits += 1

    def rollback(self):
        self._staged = None
        self.rollbacks += 1
        if self.rollback_error is not None:
            raise self.rollback_error

    def close(self):
        self.closed = True

    def _new_id(self, table):
        value = self._next_id[table]
        self._next_id[table] += 1
        return value

    # FilingDatabase interface

    def find_organisation_ids(self, ein, dln):
        self._current_ein = ein
        self._maybe_fail("find_organisation_ids")
        return [
            row["id"]
            for row in self._rows()["organisations"]
            if row["ein"] == ein and row["dln"] == dln
        ]

    def delete_organisations(self, organisation_ids):
        self._maybe_fail("delete_organisations")
        rows = self._rows()
        ids = set(organisation_ids)
        person_ids = {row["id"] for row in rows["people"] if row["organisation_id"] in ids}
        rows["people_locations"] = [
            row for row in rows["people_locations"] if row["person_id"] not in person_ids
        ]
        tables = ["people", "organisation_metadata", "organisation_locations"]
        if self.stores_form_990:
            tables.append("organisation_form_990")
        for table in tables:
            rows[table] = [row for row in rows[table] if row["organisation_id"] not in ids]
        before = len(rows["organisations"])
        rows["organisations"] = [row for row in rows["organisations"] if row["id"] not in ids]
        return before - len(rows["organisations"])

    def insert_organisation(self, record):
        self._maybe_fail("insert_organisation")
        summary = record.form_990_ez
        organisation_id = self._new_id("organisations")
        self._rows()["organisations"].append(
            {
                "id": organisation_id,
                "name": record.name,
                "ein": record.ein,
                "dln": record.dln,
                "xml_batch_id": record.xml_batch_id,
                "website": summary.website if summary is not None else None,
                "description": summary.primary_exempt_purpose_txt if summary is not None else None,
            }
        )
        return organisation_id

    def insert_organisation_location(self, organisation_id, location):
        self._maybe_fail("insert_organisation_location")
        self._rows()["organisation_locations"].append(
            {"organisation_id": organisation_id, **location.model_dump()}
        )

    def insert_organisation_metadata(self, organisation_id, summary):
        self._maybe_fail("insert_organisation_metadata")
        self._rows()["organisation_metadata"].append(
            {
                "organisation_id": organisation_id,
                "gross_receipts_amt": summary.gross_receipts_amt,
                "total_revenue_amt": summary.total_revenue_amt,
                "total_expenses_amt": summary.total_expenses_amt,
                "excess_or_deficit_for_year_amt": summary.excess_or_deficit_for_year_amt,
            }
        )

    def insert_organisation_form_990(self, organisation_id, form):
        self._maybe_fail("insert_organisation_form_990")
        if not self.stores_form_990:
            return False
        self._rows()["organisation_form_990"].append(
            {"organisation_id": organisation_id, **form.model_dump(exclude={"principal_officer_address"})}
        )
        return True

    def insert_person(self, organisation_id, person):
        self._maybe_fail("insert_person")
        rows = self._rows()
        assert any(row["id"] == organisation_id for row in rows["organisations"])
        person_id = self._new_id("people")
        rows["people"].append(
            {
                "id": person_id,
                "organisation_id": organisation_id,
                "bookkeeper": person.bookkeeper,
                "name": person.person_name,
                "title": person.person_title,
                "phone_number": person.phone_number,
                "average_hours": person.average_hours,
                "compensation": person.compensation,
            }
        )
        return person_id

    def insert_person_location(self, person_id, address):
        self._maybe_fail("insert_person_location")
        rows = self._rows()
        assert any(row["id"] == person_id for row in rows["people"])
        rows["people_locations"].append({"person_id": person_id, **address.model_dump()})


def acme_payload(**overrides):
    payload = {
        "ein": "12-3456789",
        "dln": "X1",
        "name": "Acme Foundation",
        "object_id": "202301234567890",
        "xml_batch_id": "2023_TEOS_XML_01A",
        "location": {
            "address_line_1": "1 Main St",
            "city": "Springfield",
            "state": "IL",
            "zip_code": "62701",
        },
        "people": [
            {
                "person_name": "Jane Doe",
                "person_title": "Treasurer",
                "phone_number": "555-0100",
                "average_hours": 10.5,
                "bookkeeper": True,
                "compensation": 52000,
                "address": {
                    "address_line_1": "2 Elm St",
                    "city": "Springfield",
                    "state": "IL",
                    "zip_code": "62702",
                },
            }
        ],
        "form_990_ez": {
            "gross_receipts_amt": 1000,
            "total_revenue_amt": 900,
            "total_expenses_amt": 800,
            "excess_or_deficit_for_year_amt": 100,
            "primary_exempt_purpose_txt": "Community arts education",
            "website": "acme.example.org",
        },
    }
    payload.update(overrides)
    return payload


def make_record(**overrides):
    return parse_records([acme_payload(**overrides)])[0]


@pytest.fixture
def fake_db():
    return FakeFilingDatabase()
