"""Filing record model and JSON loading for the nonprofit filing importer.

Records arrive as a JSON array produced by the 990 extraction step. Each entry
describes one filing (keyed by EIN + DLN) together with the organisation
address, the listed officers/employees and the summary financials of either a
Form 990 or a Form 990-EZ.

Optional text fields share one convention: surrounding whitespace is dropped
and an empty string is treated as absent, so the database never receives ``''``
where ``NULL`` is meant.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, ValidationError


LOGGER = logging.getLogger("filing_importer.records")


class RecordFileError(ValueError):
    """Raised when the input file cannot be turned into filing records."""


def null_if_empty(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _blank_if_null(value: Any) -> Any:
    return "" if value is None else value


def _zero_if_null(value: Any) -> Any:
    return 0 if value is None else value


def _false_if_null(value: Any) -> Any:
    return False if value is None else value


def _empty_if_null(factory):
    def _convert(value: Any) -> Any:
        return factory() if value is None else value

    return _convert


OptionalText = Annotated[Optional[str], BeforeValidator(null_if_empty)]
Text = Annotated[str, BeforeValidator(_blank_if_null)]
Amount = Annotated[int, BeforeValidator(_zero_if_null)]
Key = Annotated[str, BeforeValidator(_strip)]


class Address(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address_line_1: Text = ""
    city: Text = ""
    state: Text = ""
    zip_code: Text = ""


class Person(BaseModel):
    model_config = ConfigDict(extra="ignore")

    person_name: Text = ""
    person_title: Text = ""
    phone_number: OptionalText = None
    average_hours: Optional[float] = None
    bookkeeper: Annotated[bool, BeforeValidator(_false_if_null)] = False
    compensation: Optional[int] = None
    address: Optional[Address] = None


class Form990EZ(BaseModel):
    model_config = ConfigDict(extra="ignore")

    gross_receipts_amt: Amount = 0
    total_revenue_amt: Amount = 0
    total_expenses_amt: Amount = 0
    excess_or_deficit_for_year_amt: Amount = 0
    primary_exempt_purpose_txt: OptionalText = None
    website: OptionalText = None


class Form990(BaseModel):
    model_config = ConfigDict(extra="ignore")

    principal_officer_name: OptionalText = None
    principal_officer_address: Optional[Address] = None
    gross_receipts_amount: Optional[int] = None
    website_address: OptionalText = None
    mission_description: OptionalText = None
    formation_year: Optional[int] = None
    total_assets_end_of_year_amount: Optional[int] = None
    total_liabilities_end_of_year_amount: Optional[int] = None


class FilingRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ein: Key = Field(..., min_length=1, description="Employer identification number.")
    name: Text = ""
    dln: Key = Field(..., min_length=1, description="IRS document locator number.")
    object_id: Text = ""
    xml_batch_id: Text = ""
    # The extractor writes null for a missing address or an empty people list.
    location: Annotated[Address, BeforeValidator(_empty_if_null(dict))] = Field(default_factory=Address)
    people: Annotated[List[Person], BeforeValidator(_empty_if_null(list))] = Field(default_factory=list)
    form_990: Optional[Form990] = None
    form_990_ez: Optional[Form990EZ] = None

    @property
    def key(self) -> str:
        return f"EIN {self.ein} and DLN {self.dln}"


_RECORDS_ADAPTER = TypeAdapter(List[FilingRecord])


def parse_records(payload: Any) -> List[FilingRecord]:
    """Validate decoded JSON into filing records.

    Only presence is checked (``ein`` and ``dln`` must be non-empty); any
    failure rejects the whole batch so nothing is written from a bad file.
    """
    if not isinstance(payload, list):
        raise RecordFileError(
            f"Expected a JSON array of filing records, got {type(payload).__name__}"
        )
    try:
        return _RECORDS_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise RecordFileError(f"Invalid filing records: {exc}") from exc


def load_records(path: Union[str, Path]) -> List[FilingRecord]:
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError as exc:
        raise RecordFileError(f"Input file not found: {source}") from exc
    except json.JSONDecodeError as exc:
        raise RecordFileError(f"Failed to decode {source}: {exc}") from exc

    records = parse_records(payload)
    LOGGER.info("Loaded %s filing records from %s", len(records), source)
    return records
