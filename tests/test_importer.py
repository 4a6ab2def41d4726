"""Tests for decoding spreadsheets and importing their rows."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from sqlalchemy.pool import QueuePool

from userhub.database import Database, StoreError
from userhub.importer import (
    DecodeError,
    MissingFileError,
    SheetRow,
    extract_records,
    import_users,
    parse_created_at,
    read_first_sheet,
)


FIXED_NOW = datetime(2025, 1, 2, 3, 4, 5)


def _fixed_now() -> datetime:
    return FIXED_NOW


def test_read_first_sheet_maps_headers_to_values(make_workbook) -> None:
    payload = make_workbook(
        [
            ("Ada", "ada@example.com", None),
            (None, None, None),
            ("Grace", "grace@example.com", datetime(2020, 1, 1, 12, 0)),
        ]
    )

    rows = read_first_sheet(payload)

    assert rows == [
        SheetRow(number=2, values={"Name": "Ada", "Email": "ada@example.com"}),
        SheetRow(
            number=4,
            values={"Name": "Grace", "Email": "grace@example.com", "Created At": datetime(2020, 1, 1, 12, 0)},
        ),
    ]


def test_read_first_sheet_uses_first_sheet_by_position(make_workbook) -> None:
    payload = make_workbook(
        [("First", "first@example.com")],
        headers=("Name", "Email"),
        extra_sheets=[("Users 2", [("Name", "Email"), ("Second", "second@example.com")])],
    )

    rows = read_first_sheet(payload)

    assert [row.values["Name"] for row in rows] == ["First"]


def test_read_first_sheet_header_only(make_workbook) -> None:
    assert read_first_sheet(make_workbook([])) == []


@pytest.mark.parametrize(
    "payload",
    [b"", b"definitely not a workbook", b"PK\x03\x04broken", b"Name,Email\nAda,ada@example.com\n"],
)
def test_read_first_sheet_rejects_unreadable_payload(payload: bytes) -> None:
    with pytest.raises(DecodeError):
        read_first_sheet(payload)


def test_extract_records_skips_rows_missing_required_fields() -> None:
    rows = [
        SheetRow(2, {"Name": "Ada", "Email": "ada@example.com"}),
        SheetRow(3, {"Name": "No Email"}),
        SheetRow(4, {"Email": "nobody@example.com"}),
        SheetRow(5, {"Name": "  ", "Email": "  "}),
    ]

    records, skipped = extract_records(rows, now=_fixed_now)

    assert [(record.row, record.name, record.created_at) for record in records] == [
        (2, "Ada", FIXED_NOW)
    ]
    assert [(outcome.row, outcome.reason) for outcome in skipped] == [
        (3, "missing Email"),
        (4, "missing Name"),
        (5, "missing Name and Email"),
    ]
    assert all(outcome.status == "skipped" for outcome in skipped)


def test_extract_records_stringifies_numeric_cells() -> None:
    records, _ = extract_records([SheetRow(2, {"Name": 1234.0, "Email": "n@example.com"})], now=_fixed_now)

    assert records[0].name == "1234"


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, FIXED_NOW),
        ("", FIXED_NOW),
        (datetime(2021, 6, 1, 8, 0), datetime(2021, 6, 1, 8, 0)),
        (datetime(2021, 6, 1, 8, 0, tzinfo=timezone.utc), datetime(2021, 6, 1, 8, 0)),
        (date(2021, 6, 1), datetime(2021, 6, 1)),
        ("2022-03-04T05:06:07", datetime(2022, 3, 4, 5, 6, 7)),
        ("2022-03-04", datetime(2022, 3, 4)),
        (45000, datetime(2023, 3, 15)),
    ],
)
def test_parse_created_at(value, expected) -> None:
    assert parse_created_at(value, 2, _fixed_now) == expected


def test_parse_created_at_rejects_free_text() -> None:
    with pytest.raises(DecodeError) as excinfo:
        parse_created_at("last tuesday", 7, _fixed_now)

    assert "Row 7" in str(excinfo.value)


def test_import_skips_row_with_empty_email(database: Database, make_workbook) -> None:
    payload = make_workbook(
        [
            ("User 1", "one@example.com", None),
            ("User 2", "two@example.com", None),
            ("User 3", "", None),
            ("User 4", "four@example.com", None),
            ("User 5", "five@example.com", None),
        ]
    )

    report = import_users(database, payload, now=_fixed_now)

    assert report.total_rows == 5
    assert report.total_inserted == 4
    assert [(outcome.row, outcome.reason) for outcome in report.skipped] == [(4, "missing Email")]
    assert [user.name for user in database.list_users()] == ["User 1", "User 2", "User 4", "User 5"]
    assert all(user.created_at == FIXED_NOW for user in database.list_users())


def test_import_keeps_supplied_created_at(database: Database, make_workbook) -> None:
    stamp = datetime(2019, 11, 5, 14, 15)
    payload = make_workbook([("Linus", "linus@example.com", stamp)])

    import_users(database, payload, now=_fixed_now)

    assert database.list_users()[0].created_at == stamp


def test_import_header_only_sheet_inserts_nothing(database: Database, make_workbook) -> None:
    report = import_users(database, make_workbook([]))

    assert report.total_inserted == 0
    assert report.total_rows == 0
    assert report.to_dict() == {"totalInserted": 0, "totalRows": 0, "skipped": []}
    assert database.list_users() == []


def test_import_rolls_back_every_row_when_an_insert_fails(database: Database, make_workbook) -> None:
    database.query(
        "CREATE TRIGGER reject_blocked_email BEFORE INSERT ON users "
        "WHEN NEW.email = 'blocked@example.com' "
        "BEGIN SELECT RAISE(ABORT, 'email is blocked'); END"
    )
    payload = make_workbook(
        [
            ("User 1", "one@example.com", None),
            ("User 2", "two@example.com", None),
            ("User 3", "", None),
            ("User 4", "blocked@example.com", None),
            ("User 5", "five@example.com", None),
        ]
    )

    with pytest.raises(StoreError) as excinfo:
        import_users(database, payload)

    assert "email is blocked" in str(excinfo.value)
    assert database.list_users() == []


def test_import_rejects_bad_created_at_before_writing(database: Database, make_workbook) -> None:
    payload = make_workbook(
        [
            ("User 1", "one@example.com", None),
            ("User 2", "two@example.com", "not a date"),
        ]
    )

    with pytest.raises(DecodeError):
        import_users(database, payload)

    assert database.list_users() == []


def test_import_without_payload(database: Database) -> None:
    with pytest.raises(MissingFileError):
        import_users(database, None)


def test_read_first_sheet_rejects_truncated_worksheet_xml(truncated_workbook: bytes) -> None:
    with pytest.raises(DecodeError) as excinfo:
        read_first_sheet(truncated_workbook)

    assert "Unable to read spreadsheet" in str(excinfo.value)


def test_import_of_truncated_worksheet_writes_nothing(database: Database, truncated_workbook: bytes) -> None:
    with pytest.raises(DecodeError):
        import_users(database, truncated_workbook)

    assert database.list_users() == []


def test_import_returns_every_connection_to_the_pool(database: Database, make_workbook) -> None:
    pool = database.pool.engine.pool
    assert isinstance(pool, QueuePool)

    import_users(database, make_workbook([("Ada", "ada@example.com", None)]))
    assert pool.checkedout() == 0

    database.query(
        "CREATE TRIGGER reject_blocked_email BEFORE INSERT ON users "
        "WHEN NEW.email = 'blocked@example.com' "
        "BEGIN SELECT RAISE(ABORT, 'email is blocked'); END"
    )
    with pytest.raises(StoreError):
        import_users(database, make_workbook([("Eve", "blocked@example.com", None)]))
    assert pool.checkedout() == 0

    with pytest.raises(DecodeError):
        import_users(database, b"not a workbook")
    assert pool.checkedout() == 0

    assert [user.name for user in database.list_users()] == ["Ada"]
