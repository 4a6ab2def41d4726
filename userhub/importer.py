"""Bulk import of users from uploaded spreadsheets."""
from __future__ import annotations

import logging
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from io import BytesIO
from typing import Callable, Dict, List, Literal, Optional
from xml.etree.ElementTree import ParseError

from openpyxl import load_workbook
from openpyxl.utils.datetime import from_excel
from openpyxl.utils.exceptions import InvalidFileException

from .database import Database, current_timestamp

logger = logging.getLogger("userhub.importer")

NAME_COLUMN = "Name"
EMAIL_COLUMN = "Email"
CREATED_AT_COLUMN = "Created At"

RowStatus = Literal["inserted", "skipped"]

# XML parsers raise SyntaxError subclasses on truncated or malformed parts.
_UNREADABLE = (
    InvalidFileException,
    zipfile.BadZipFile,
    ParseError,
    SyntaxError,
    KeyError,
    ValueError,
    OSError,
)


class MissingFileError(ValueError):
    """Raised when an import request carries no file."""


class DecodeError(ValueError):
    """Raised when the payload cannot be read as a spreadsheet."""


@dataclass(frozen=True)
class SheetRow:
    """One data row of the first worksheet, keyed by header text."""

    number: int
    values: Dict[str, object]


@dataclass(frozen=True)
class UserRecord:
    row: int
    name: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class RowOutcome:
    """What happened to a single spreadsheet row."""

    row: int
    status: RowStatus
    reason: Optional[str] = None
    user_id: Optional[int] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"row": self.row, "status": self.status}
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.user_id is not None:
            payload["id"] = self.user_id
        return payload


@dataclass
class ImportReport:
    outcomes: List[RowOutcome] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.outcomes)

    @property
    def inserted(self) -> List[RowOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == "inserted"]

    @property
    def skipped(self) -> List[RowOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == "skipped"]

    @property
    def total_inserted(self) -> int:
        return len(self.inserted)

    def to_dict(self) -> Dict[str, object]:
        return {
            "totalInserted": self.total_inserted,
            "totalRows": self.total_rows,
            "skipped": [outcome.to_dict() for outcome in self.skipped],
        }


def _header_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def read_first_sheet(payload: bytes) -> List[SheetRow]:
    """Parse the first worksheet of an ``.xlsx`` payload into header-keyed rows.

    The first row holds the headers. Rows with no values at all are dropped.
    Read-only workbooks parse sheet XML lazily, so malformed parts surface
    while iterating and are translated the same way as an unreadable archive.
    """

    if not payload:
        raise DecodeError("Uploaded file is empty")

    try:
        workbook = load_workbook(BytesIO(payload), read_only=True, data_only=True)
    except _UNREADABLE as exc:
        raise DecodeError(f"Unable to read spreadsheet: {exc}") from exc

    try:
        if not workbook.worksheets:
            raise DecodeError("Workbook contains no worksheets")
        return _collect_rows(workbook.worksheets[0])
    except DecodeError:
        raise
    except _UNREADABLE as exc:
        raise DecodeError(f"Unable to read spreadsheet: {exc}") from exc
    finally:
        workbook.close()


def _collect_rows(sheet) -> List[SheetRow]:
    rows = sheet.iter_rows(values_only=True)

    header_row = next(rows, None)
    if header_row is None:
        return []
    headers = [_header_text(cell) for cell in header_row]

    parsed: List[SheetRow] = []
    for number, raw in enumerate(rows, start=2):
        values = {
            header: cell
            for header, cell in zip(headers, raw)
            if header is not None and not _is_blank(cell)
        }
        if values:
            parsed.append(SheetRow(number=number, values=values))
    return parsed


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_created_at(value: object, row: int, now: Callable[[], datetime]) -> datetime:
    """Normalise a "Created At" cell, falling back to ``now()`` when blank."""

    if _is_blank(value):
        return now()
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            converted = from_excel(value)
        except (OverflowError, ValueError) as exc:
            raise DecodeError(f"Row {row}: invalid {CREATED_AT_COLUMN} value {value!r}") from exc
        if isinstance(converted, datetime):
            return converted
        raise DecodeError(f"Row {row}: invalid {CREATED_AT_COLUMN} value {value!r}")
    try:
        return _to_naive_utc(datetime.fromisoformat(str(value).strip()))
    except ValueError as exc:
        raise DecodeError(f"Row {row}: invalid {CREATED_AT_COLUMN} value {value!r}") from exc


def extract_records(
    rows: List[SheetRow],
    *,
    now: Callable[[], datetime] = current_timestamp,
) -> tuple[List[UserRecord], List[RowOutcome]]:
    """Split parsed rows into insertable records and skipped outcomes."""

    records: List[UserRecord] = []
    skipped: List[RowOutcome] = []
    for sheet_row in rows:
        name = _cell_text(sheet_row.values.get(NAME_COLUMN))
        email = _cell_text(sheet_row.values.get(EMAIL_COLUMN))

        missing = [column for column, value in ((NAME_COLUMN, name), (EMAIL_COLUMN, email)) if not value]
        if missing:
            reason = f"missing {' and '.join(missing)}"
            logger.warning("Skipping row %s: %s", sheet_row.number, reason)
            skipped.append(RowOutcome(row=sheet_row.number, status="skipped", reason=reason))
            continue

        created_at = parse_created_at(sheet_row.values.get(CREATED_AT_COLUMN), sheet_row.number, now)
        records.append(UserRecord(row=sheet_row.number, name=name, email=email, created_at=created_at))
    return records, skipped


def import_users(
    database: Database,
    payload: Optional[bytes],
    *,
    now: Callable[[], datetime] = current_timestamp,
) -> ImportReport:
    """Insert every valid row of ``payload`` inside one transaction.

    The workbook is decoded completely before a connection is taken from the
    pool. Any database failure rolls back the whole import and surfaces as
    :class:`~userhub.database.StoreError`.
    """

    if payload is None:
        raise MissingFileError("No file provided")

    rows = read_first_sheet(payload)
    records, skipped = extract_records(rows, now=now)

    inserted: List[RowOutcome] = []
    if records:
        with database.transaction() as conn:
            for record in records:
                user_id = database.insert_user(conn, record.name, record.email, record.created_at)
                inserted.append(RowOutcome(row=record.row, status="inserted", user_id=user_id))

    report = ImportReport(outcomes=sorted(inserted + skipped, key=lambda outcome: outcome.row))
    logger.info(
        "Imported %s of %s rows (%s skipped)",
        report.total_inserted,
        report.total_rows,
        len(report.skipped),
    )
    return report


__all__ = [
    "DecodeError",
    "ImportReport",
    "MissingFileError",
    "RowOutcome",
    "SheetRow",
    "UserRecord",
    "extract_records",
    "import_users",
    "parse_created_at",
    "read_first_sheet",
]
