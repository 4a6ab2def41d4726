from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Callable, Iterable, Iterator, Sequence

import pytest
from openpyxl import Workbook

from userhub.database import Database
from userhub.pool import reset_pool


DEFAULT_HEADERS = ("Name", "Email", "Created At")

WorkbookBuilder = Callable[..., bytes]


def build_workbook(
    rows: Iterable[Sequence[object]],
    *,
    headers: Sequence[object] = DEFAULT_HEADERS,
    extra_sheets: Iterable[tuple[str, Sequence[Sequence[object]]]] = (),
) -> bytes:
    """Serialise ``rows`` as the first sheet of an in-memory .xlsx file."""

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Users"
    sheet.append(list(headers))
    for row in rows:
        sheet.append(list(row))

    for title, extra_rows in extra_sheets:
        extra = workbook.create_sheet(title)
        for row in extra_rows:
            extra.append(list(row))

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def truncate_sheet_xml(payload: bytes, part: str = "xl/worksheets/sheet1.xml") -> bytes:
    """Rewrite ``payload`` with ``part`` cut off mid-document."""

    source = io.BytesIO(payload)
    target = io.BytesIO()
    with zipfile.ZipFile(source) as original, zipfile.ZipFile(target, "w") as rewritten:
        for info in original.infolist():
            data = original.read(info.filename)
            if info.filename == part:
                data = data[: len(data) // 2]
            rewritten.writestr(info, data)
    return target.getvalue()


@pytest.fixture()
def make_workbook() -> WorkbookBuilder:
    return build_workbook


@pytest.fixture()
def truncated_workbook(make_workbook: WorkbookBuilder) -> bytes:
    return truncate_sheet_xml(
        make_workbook([(f"User {index}", f"user{index}@example.com", None) for index in range(50)])
    )


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'users.sqlite3'}"


@pytest.fixture()
def database(database_url: str) -> Iterator[Database]:
    db = Database.from_url(database_url)
    db.initialize()
    yield db
    db.close()


@pytest.fixture()
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[pytest.MonkeyPatch]:
    """Strip database variables and forget the process-wide pool."""

    for name in (
        "DATABASE_URL",
        "DB_HOST",
        "DB_USER",
        "DB_PASSWORD",
        "DB_NAME",
        "DB_PORT",
        "DB_DRIVER",
        "DB_POOL_SIZE",
        "USERHUB_CONFIG",
        "USERHUB_INIT_DB",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_pool()
    yield monkeypatch
    reset_pool()
