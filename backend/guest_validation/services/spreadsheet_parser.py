"""
Spreadsheet parser for guest uploads.

Turns the raw bytes of a .csv, .xlsx or .xls upload into ordered headers and
row mappings. Pure transform: size and extension checks belong to the
caller (see utils.files.validate_upload).

Usage:
    kind = detect_kind("guests.xlsx")
    table = parse_upload(content, kind)
    table.headers, table.rows
"""
import csv
import io
import logging
from datetime import date, datetime, time
from enum import Enum
from pathlib import PurePath
from typing import Any, List, NamedTuple, Sequence

import chardet
import openpyxl
import xlrd

from guest_validation.core.errors import (
    EmptyWorkbook,
    InsufficientRows,
    InvalidFileType,
    NoHeadersDetected,
    NoValidDataRows,
    ParseFailure,
)
from guest_validation.services.normalizer import GuestRow, normalize, normalize_headers

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")
SNIFF_LINES = 20

# Leading bytes of a zip container (xlsx) and of an OLE2 compound document (xls)
XLSX_SIGNATURE = b"PK\x03\x04"
XLS_SIGNATURE = b"\xd0\xcf\x11\xe0"


class FileKind(str, Enum):
    DELIMITED = "delimited"
    XLSX = "xlsx"
    XLS = "xls"


EXTENSION_KINDS = {
    ".csv": FileKind.DELIMITED,
    ".xlsx": FileKind.XLSX,
    ".xls": FileKind.XLS,
}


class ParsedTable(NamedTuple):
    headers: List[str]
    rows: List[GuestRow]


def detect_kind(filename: str) -> FileKind:
    suffix = PurePath(filename or "").suffix.lower()
    kind = EXTENSION_KINDS.get(suffix)
    if kind is None:
        raise InvalidFileType()
    return kind


# ══════════════════════════════════════════════════════════════════════════════
# DELIMITED TEXT
# ══════════════════════════════════════════════════════════════════════════════

def _decode_text(content: bytes) -> str:
    """UTF-8 first (BOM tolerated), then whatever chardet guesses, then latin-1"""
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        guess = chardet.detect(content).get("encoding")
        text = None
        if guess:
            try:
                text = content.decode(guess)
            except (LookupError, UnicodeDecodeError):
                text = None
        if text is None:
            text = content.decode("latin-1")
        logger.info(f"Upload is not UTF-8, decoded as {guess or 'latin-1'}")

    if "\x00" in text:
        raise ParseFailure("The file does not look like delimited text")
    return text


def detect_delimiter(text: str) -> str:
    lines = [line for line in text.splitlines() if line.strip()][:SNIFF_LINES]
    if not lines:
        return ","

    sample = "\n".join(lines)
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters="".join(CANDIDATE_DELIMITERS))
        if dialect.delimiter in CANDIDATE_DELIMITERS:
            return dialect.delimiter
    except csv.Error:
        pass

    # Sniffer gave up: take the candidate splitting the header most often,
    # as long as it appears on every sampled line
    best, best_count = ",", 0
    for delimiter in CANDIDATE_DELIMITERS:
        counts = [line.count(delimiter) for line in lines]
        if min(counts) > 0 and counts[0] > best_count:
            best, best_count = delimiter, counts[0]
    return best


def _is_empty_line(cells: Sequence[str]) -> bool:
    return len(cells) == 0 or (len(cells) == 1 and not cells[0].strip())


def read_delimited_grid(content: bytes) -> List[List[Any]]:
    text = _decode_text(content)
    delimiter = detect_delimiter(text)
    logger.debug(f"Detected delimiter {delimiter!r}")

    try:
        reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
        return [cells for cells in reader if not _is_empty_line(cells)]
    except csv.Error as e:
        raise ParseFailure(f"Could not read delimited file: {e}", cause=e)


# ══════════════════════════════════════════════════════════════════════════════
# SPREADSHEETS
# ══════════════════════════════════════════════════════════════════════════════

def cell_text(value: Any) -> Any:
    """Render a spreadsheet cell the way it reads on screen"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        if value.time() == time(0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value)


def _trim_trailing_blank_rows(grid: List[List[Any]]) -> List[List[Any]]:
    end = len(grid)
    while end and all(str(cell).strip() == "" for cell in grid[end - 1]):
        end -= 1
    return grid[:end]


def read_xlsx_grid(content: bytes) -> List[List[Any]]:
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ParseFailure(f"Could not open Excel file: {e}", cause=e)

    try:
        if not workbook.worksheets:
            raise EmptyWorkbook()
        sheet = workbook.worksheets[0]
        grid = [[cell_text(value) for value in row] for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()

    return _trim_trailing_blank_rows(grid)


def read_xls_grid(content: bytes) -> List[List[Any]]:
    try:
        book = xlrd.open_workbook(file_contents=content)
    except Exception as e:
        raise ParseFailure(f"Could not open Excel file: {e}", cause=e)

    if book.nsheets == 0:
        raise EmptyWorkbook()

    sheet = book.sheet_by_index(0)
    grid = []
    for index in range(sheet.nrows):
        line = []
        for cell in sheet.row(index):
            if cell.ctype == xlrd.XL_CELL_DATE:
                line.append(cell_text(xlrd.xldate.xldate_as_datetime(cell.value, book.datemode)))
            elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                line.append(cell_text(bool(cell.value)))
            else:
                line.append(cell_text(cell.value))
        grid.append(line)

    return _trim_trailing_blank_rows(grid)


# ══════════════════════════════════════════════════════════════════════════════
# TABLE ASSEMBLY
# ══════════════════════════════════════════════════════════════════════════════

def grid_to_table(grid: List[List[Any]]) -> ParsedTable:
    """
    First row is the header row; every other row is zipped positionally
    against it. Checks run in order: row count, headers, data rows.
    """
    if len(grid) < 2:
        raise InsufficientRows()

    raw_headers = [cell_text(value).strip() for value in grid[0]]
    if not normalize_headers(raw_headers):
        raise NoHeadersDetected()

    rows = []
    for line in grid[1:]:
        row = {}
        for position, header in enumerate(raw_headers):
            if not header:
                continue
            value = line[position] if position < len(line) else ""
            row.setdefault(header, value)
        rows.append(row)

    headers, rows = normalize(raw_headers, rows)
    if not rows:
        raise NoValidDataRows()

    return ParsedTable(headers, rows)


def sniff_spreadsheet_kind(content: bytes, kind: FileKind) -> FileKind:
    """
    Workbook format from the leading bytes. Exports are often saved as .xls
    while holding xlsx content (and the other way round), so the extension
    only decides when the signature is unknown.
    """
    if content.startswith(XLSX_SIGNATURE):
        sniffed = FileKind.XLSX
    elif content.startswith(XLS_SIGNATURE):
        sniffed = FileKind.XLS
    else:
        return kind

    if sniffed is not kind:
        logger.info(f"Upload named as {kind.value} holds {sniffed.value} content, reading it as {sniffed.value}")
    return sniffed


def parse_upload(content: bytes, kind: FileKind) -> ParsedTable:
    if kind is FileKind.DELIMITED:
        grid = read_delimited_grid(content)
    elif kind in (FileKind.XLSX, FileKind.XLS):
        kind = sniff_spreadsheet_kind(content, kind)
        if kind is FileKind.XLSX:
            grid = read_xlsx_grid(content)
        else:
            grid = read_xls_grid(content)
    else:
        raise InvalidFileType()

    table = grid_to_table(grid)
    logger.info(f"📄 Parsed {kind.value} upload: {len(table.rows)} rows, {len(table.headers)} columns")
    return table
