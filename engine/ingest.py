"""Contact file ingestion: validation, header detection and row normalization.

Accepts csv/xlsx exports whose header row may sit below a title block and may
repeat mid-file (concatenated exports). Every kept row gets a stable zero-based
row_id; rows missing a domain or both names are kept for output but skipped
for enrichment.
"""

import csv
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from . import config
from .errors import UploadValidationError
from .models import Contact

logger = logging.getLogger("enricher.ingest")

ALLOWED_EXTENSIONS = (".csv", ".xls", ".xlsx")

COLUMN_ALIASES = {
    "first_name": ["first name", "firstname", "first"],
    "last_name": ["last name", "lastname", "last"],
    "website": ["website", "domain", "company website", "company domain"],
}

SKIP_MISSING_DOMAIN = "Missing website/domain"
SKIP_MISSING_NAMES = "Missing first and last name"


def normalize_key(value: Any) -> str:
    """Lowercase and keep [a-z0-9] only, for alias matching."""
    return re.sub(r"[^a-z0-9]", "", str(value if value is not None else "").lower())


_ALIAS_KEYS = {
    field_name: [normalize_key(alias) for alias in aliases]
    for field_name, aliases in COLUMN_ALIASES.items()
}


def validate_extension(filename: str) -> None:
    if Path(filename or "").suffix.lower() not in ALLOWED_EXTENSIONS:
        raise UploadValidationError("Unsupported file type. Please upload a CSV, XLS, or XLSX file.")


def enforce_row_limit(row_count: int, max_rows: Optional[int] = None) -> None:
    max_rows = config.MAX_ROWS if max_rows is None else max_rows
    if row_count > max_rows:
        raise UploadValidationError(f"Row limit exceeded. Maximum supported rows: {max_rows}.")


# ── Workbook parsing ────────────────────────────────────────────────────────


@dataclass
class ParsedWorkbook:
    headers: list[str]
    rows: list[list[str]]
    header_row_index: int


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _read_matrix(path: Path) -> list[list[str]]:
    if path.suffix.lower() == ".csv":
        with open(path, encoding="utf-8-sig", newline="") as f:
            return [[_cell_text(c) for c in row] for row in csv.reader(f)]

    if path.suffix.lower() == ".xls":
        # Legacy BIFF workbooks; openpyxl only reads the xlsx format.
        import xlrd

        book = xlrd.open_workbook(str(path))
        try:
            if book.nsheets == 0:
                raise UploadValidationError("Uploaded file does not contain any sheets.")
            sheet = book.sheet_by_index(0)
            return [[_cell_text(c) for c in sheet.row_values(i)] for i in range(sheet.nrows)]
        finally:
            book.release_resources()

    import openpyxl

    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        if not wb.sheetnames:
            raise UploadValidationError("Uploaded file does not contain any sheets.")
        ws = wb[wb.sheetnames[0]]
        return [[_cell_text(c) for c in row] for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _sanitize_headers(row: list[str]) -> list[str]:
    return [cell if str(cell).strip() else f"column_{idx + 1}" for idx, cell in enumerate(row)]


def _is_header_row(row: list[str]) -> bool:
    keys = {normalize_key(cell) for cell in row}
    return all(any(alias in keys for alias in aliases) for aliases in _ALIAS_KEYS.values())


def detect_header_row(matrix: list[list[str]]) -> tuple[int, list[str]]:
    for index, row in enumerate(matrix):
        if _is_header_row(row):
            return index, _sanitize_headers(row)
    raise UploadValidationError(
        "Could not locate required columns (First Name, Last Name, Website). "
        "Ensure the file contains a header row."
    )


def parse_workbook(path: Path | str) -> ParsedWorkbook:
    """Read the first sheet, find the header row and return the data rows under it."""
    path = Path(path)
    try:
        matrix = _read_matrix(path)
        if not matrix:
            raise UploadValidationError("Uploaded file is empty.")
        header_row_index, headers = detect_header_row(matrix)
        rows = [
            row for row in matrix[header_row_index + 1:]
            if any(str(cell).strip() for cell in row)
        ]
        if not rows:
            raise UploadValidationError("Uploaded file does not contain any data rows under the header.")
    except UploadValidationError:
        raise
    except Exception as e:
        raise UploadValidationError(f"Failed to parse uploaded file: {e}") from e

    logger.info("Parsed %s: header at row %d, %d data rows", path.name, header_row_index + 1, len(rows))
    return ParsedWorkbook(headers=headers, rows=rows, header_row_index=header_row_index)


# ── Row normalization ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ColumnMap:
    first_name: str
    last_name: str
    website: str


@dataclass
class NormalizedRow:
    row_id: int
    row_number: int
    sanitized_row: dict[str, str]
    contact: Optional[Contact]
    skip_reason: Optional[str]
    profile: dict = field(default_factory=dict)


def _find_column(headers: list[str], aliases: list[str]) -> Optional[str]:
    by_key = {}
    for header in headers:
        by_key.setdefault(normalize_key(header), header)
    for alias in aliases:
        if alias in by_key:
            return by_key[alias]
    return None


def resolve_columns(headers: list[str]) -> ColumnMap:
    first = _find_column(headers, _ALIAS_KEYS["first_name"])
    last = _find_column(headers, _ALIAS_KEYS["last_name"])
    website = _find_column(headers, _ALIAS_KEYS["website"])
    if not first or not last or not website:
        raise UploadValidationError("File must include First Name, Last Name, and Website columns.")
    return ColumnMap(first_name=first, last_name=last, website=website)


def clean_name(value: Any) -> str:
    return " ".join(str(value or "").split())


def clean_domain(value: Any) -> str:
    """Reduce a website/URL/email-ish cell to a bare lowercase domain."""
    text = str(value or "").strip().lower()
    if not text:
        return ""
    if "@" in text and "://" not in text:
        text = text.rsplit("@", 1)[1]
    text = re.sub(r"^[a-z][a-z0-9+.-]*://", "", text)
    text = text.split("/")[0].split("?")[0].split("#")[0].split(":")[0]
    if text.startswith("www."):
        text = text[4:]
    return text.strip(".").strip()


def sanitize_row(
    row_object: dict[str, str], column_map: ColumnMap
) -> Optional[tuple[dict[str, str], Optional[Contact], Optional[str], dict]]:
    """Clean the name/domain cells; None means the row is blank and dropped."""
    first_name = clean_name(row_object.get(column_map.first_name))
    last_name = clean_name(row_object.get(column_map.last_name))
    domain = clean_domain(row_object.get(column_map.website))

    sanitized = dict(row_object)
    sanitized[column_map.first_name] = first_name
    sanitized[column_map.last_name] = last_name
    sanitized[column_map.website] = domain
    profile = {"firstName": first_name, "lastName": last_name, "domain": domain}

    if not first_name and not last_name and not domain:
        return None
    if not domain:
        return sanitized, None, SKIP_MISSING_DOMAIN, profile
    if not first_name and not last_name:
        return sanitized, None, SKIP_MISSING_NAMES, profile
    contact = Contact(first_name=first_name, last_name=last_name, domain=domain)
    return sanitized, contact, None, profile


def normalize_rows(
    rows: list[list[str]],
    column_map: ColumnMap,
    header_row_index: int,
    headers: list[str],
) -> list[NormalizedRow]:
    """Turn data rows into NormalizedRows, following repeated header rows."""
    normalized: list[NormalizedRow] = []
    current_headers = list(headers)
    current_map = column_map

    for offset, values in enumerate(rows):
        row_number = header_row_index + 2 + offset   # 1-based sheet row

        if _is_header_row(values):
            current_headers = _sanitize_headers(values)
            current_map = resolve_columns(current_headers)
            continue

        row_object = {
            header: (values[i] if i < len(values) else "")
            for i, header in enumerate(current_headers)
        }
        sanitized = sanitize_row(row_object, current_map)
        if sanitized is None:
            continue

        sanitized_row, contact, skip_reason, profile = sanitized
        row_id = len(normalized)
        if contact is not None:
            contact = contact.model_copy(update={"row_id": row_id})
        normalized.append(
            NormalizedRow(
                row_id=row_id,
                row_number=row_number,
                sanitized_row=sanitized_row,
                contact=contact,
                skip_reason=skip_reason,
                profile=profile,
            )
        )

    return normalized


def load_rows(path: Path | str) -> list[NormalizedRow]:
    """parse_workbook + row limit + normalize_rows."""
    parsed = parse_workbook(path)
    enforce_row_limit(len(parsed.rows))
    return normalize_rows(
        parsed.rows,
        resolve_columns(parsed.headers),
        parsed.header_row_index,
        parsed.headers,
    )
