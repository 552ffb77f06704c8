"""Excel workbook reading and student record normalization."""

import logging
from io import BytesIO
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from student_dashboard.models import IngestionResult, SkippedSheet, StudentRecord

logger = logging.getLogger(__name__)


# Recognized header labels per record role (exact match after trimming).
# Swap this table to support another export's label set.
HEADER_LABELS: Dict[str, Tuple[str, ...]] = {
    "student_id": ("รหัสนักศึกษา",),
    "title": ("คำนำหน้า",),
    "first_name": ("ชื่อ",),
    "last_name": ("นามสกุล",),
    "status": ("สถานะ",),
    "year": ("ชั้นปี",),
    "gpax": ("GPAX",),
    "program": ("หลักสูตร",),
    "program_secondary": ("หลักสูตร2",),
    "room": ("ห้อง",),
    "curriculum": ("หลักสูตร3",),
}

REQUIRED_ROLES = ("student_id", "status", "gpax")

DEFAULT_STATUS = "Unknown"
DEFAULT_CURRICULUM = "N/A"


class Sheet(NamedTuple):
    """A named grid of untyped cells; the first row holds the headers."""
    name: str
    rows: List[List[Any]]


class IngestionError(ValueError):
    """Base class for errors raised while turning a workbook into records."""


class WorkbookReadError(IngestionError):
    """The uploaded bytes could not be read as a tabular workbook."""


class EmptyDatasetError(IngestionError):
    """No sheet produced a single valid student record."""

    def __init__(self, message: str = "No valid student data found in the Excel file. "
                                      "Please check headers and content."):
        super().__init__(message)


class MissingHeadersError(IngestionError):
    """A sheet lacks one or more required header labels."""

    def __init__(self, sheet_name: str, missing_labels: List[str]):
        self.sheet_name = sheet_name
        self.missing_labels = missing_labels
        super().__init__(
            f"Sheet '{sheet_name}' is missing required headers: {', '.join(missing_labels)}"
        )


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def clean_text(value: Any, default: str = "") -> str:
    """
    Coerce a cell to a trimmed string.

    Blank cells (None, NaN, whitespace) give ``default``. Integral floats such as
    ``65010001.0`` are rendered without the trailing ``.0`` so that numeric ids
    read back the way they were typed.
    """
    if _is_blank(value):
        return default
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        value = int(value)
    text = str(value).strip()
    return text or default


def clean_numeric_value(value: Any) -> float:
    """
    Parse a cell as a number.
    Replaces blanks, NaN, Infinity and unparsable text with 0.0.
    """
    if _is_blank(value):
        return 0.0
    if isinstance(value, bool):
        return float(value)
    try:
        val = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (ValueError, TypeError):
        return 0.0
    if np.isnan(val) or np.isinf(val):
        return 0.0
    return val


def clean_year(value: Any) -> int:
    """Parse a cell as a whole year level, 0 when unparsable."""
    return int(clean_numeric_value(value))


def resolve_headers(
    header_row: Sequence[Any],
    labels: Mapping[str, Iterable[str]] = HEADER_LABELS,
) -> Dict[str, int]:
    """
    Map each record role to the index of its column in ``header_row``.

    Roles with no matching label are left out of the result. When a label
    appears more than once the first column wins.
    """
    headers = [clean_text(h) for h in header_row]
    columns: Dict[str, int] = {}
    for role, accepted in labels.items():
        for idx, header in enumerate(headers):
            if header in accepted:
                columns[role] = idx
                break
    return columns


def missing_required_roles(
    columns: Mapping[str, int],
    required: Sequence[str] = REQUIRED_ROLES,
) -> List[str]:
    return [role for role in required if role not in columns]


def _cell(row: Sequence[Any], columns: Mapping[str, int], role: str) -> Any:
    idx = columns.get(role)
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def normalize_row(
    row: Sequence[Any],
    columns: Mapping[str, int],
    sheet_name: str,
) -> Optional[StudentRecord]:
    """
    Build a StudentRecord from one data row.

    Returns None when the row has no student id, which is how blank and
    trailing rows are dropped.
    """
    student_id = clean_text(_cell(row, columns, "student_id"))
    if not student_id:
        return None

    program = " ".join([
        clean_text(_cell(row, columns, "program")),
        clean_text(_cell(row, columns, "program_secondary")),
    ]).strip()

    return StudentRecord(
        student_id=student_id,
        title=clean_text(_cell(row, columns, "title")),
        first_name=clean_text(_cell(row, columns, "first_name")),
        last_name=clean_text(_cell(row, columns, "last_name")),
        status=clean_text(_cell(row, columns, "status"), default=DEFAULT_STATUS),
        year=clean_year(_cell(row, columns, "year")),
        gpax=clean_numeric_value(_cell(row, columns, "gpax")),
        program=program,
        room=clean_text(_cell(row, columns, "room")),
        curriculum=clean_text(_cell(row, columns, "curriculum"), default=DEFAULT_CURRICULUM),
        academic_year=sheet_name,
    )


def normalize_sheet(
    name: str,
    rows: Sequence[Sequence[Any]],
    labels: Mapping[str, Iterable[str]] = HEADER_LABELS,
) -> List[StudentRecord]:
    """
    Normalize one sheet: first row is the header row, the rest are data rows.

    Raises:
        MissingHeadersError: if a required role has no column in the header row.
    """
    if not rows:
        return []

    columns = resolve_headers(rows[0], labels)
    missing = missing_required_roles(columns)
    if missing:
        missing_labels = [" / ".join(labels.get(role, (role,))) for role in missing]
        raise MissingHeadersError(name, missing_labels)

    records = []
    for row in rows[1:]:
        record = normalize_row(row, columns, name)
        if record is not None:
            records.append(record)
    return records


def _sheet_parts(sheet: Any) -> Tuple[str, Sequence[Sequence[Any]]]:
    if isinstance(sheet, Mapping):
        try:
            return str(sheet["name"]), sheet["rows"]
        except KeyError as e:
            raise TypeError(f"Sheet mapping is missing the {e} key") from e
    name, rows = sheet
    return name, rows


def normalize_sheets(
    sheets: Iterable[Union[Sheet, Tuple[str, Sequence[Sequence[Any]]], Mapping[str, Any]]],
    labels: Mapping[str, Iterable[str]] = HEADER_LABELS,
) -> IngestionResult:
    """
    Merge every sheet into one ordered record list.

    Sheets are processed in the given order and rows top to bottom. A sheet
    missing required headers is skipped and reported in ``skipped_sheets``.
    Each sheet is a ``Sheet``, a ``(name, rows)`` pair or a mapping with
    ``name`` and ``rows`` keys.

    Raises:
        EmptyDatasetError: if no sheet yields a record.
    """
    records: List[StudentRecord] = []
    skipped: List[SkippedSheet] = []

    for sheet in sheets:
        name, rows = _sheet_parts(sheet)
        try:
            sheet_records = normalize_sheet(name, rows, labels)
        except MissingHeadersError as e:
            logger.warning("Skipping sheet %r due to missing required headers: %s",
                           name, e.missing_labels)
            skipped.append(SkippedSheet(name=name, missing_labels=e.missing_labels))
            continue
        logger.debug("Sheet %r: %d records", name, len(sheet_records))
        records.extend(sheet_records)

    if not records:
        raise EmptyDatasetError()

    logger.info("Ingested %d records (%d sheets skipped)", len(records), len(skipped))
    return IngestionResult(records=records, skipped_sheets=skipped)


def normalize(
    sheets: Iterable[Union[Sheet, Tuple[str, Sequence[Sequence[Any]]], Mapping[str, Any]]],
    labels: Mapping[str, Iterable[str]] = HEADER_LABELS,
) -> List[StudentRecord]:
    """Records only; see normalize_sheets for the skipped-sheet report."""
    return normalize_sheets(sheets, labels).records


def load_workbook_sheets(file_bytes: bytes) -> List[Sheet]:
    """
    Read every sheet of an Excel workbook as a raw cell grid.

    Sheets keep workbook order. No header inference is done here: the first
    row of each grid is whatever the first row of the sheet is.

    Raises:
        WorkbookReadError: if the bytes are not a readable workbook.
    """
    try:
        frames = pd.read_excel(BytesIO(file_bytes), sheet_name=None, header=None, dtype=object)
    except Exception as e:
        raise WorkbookReadError(f"Error loading Excel file: {e}") from e

    sheets = []
    for name, df in frames.items():
        df = df.astype(object).where(pd.notna(df), None)
        sheets.append(Sheet(name=str(name), rows=df.values.tolist()))
    return sheets


def ingest_workbook(
    file_bytes: bytes,
    labels: Mapping[str, Iterable[str]] = HEADER_LABELS,
) -> IngestionResult:
    """Read a workbook and normalize all of its sheets."""
    return normalize_sheets(load_workbook_sheets(file_bytes), labels)
