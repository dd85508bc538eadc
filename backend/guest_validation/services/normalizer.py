"""
Row normalization and guest identifier derivation.

normalize() is idempotent: feeding its own output back in returns the same
headers and rows.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

GuestRow = Dict[str, Any]

# Substrings that mark a header as the guest identifier column
ID_HEADER_MARKERS = ("id", "código", "codigo")


def is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def is_blank_row(row: GuestRow) -> bool:
    return all(is_blank(value) for value in row.values())


def normalize_headers(headers: Iterable[Any]) -> List[str]:
    """Trim headers, dropping blanks and repeated names (first one wins)"""
    seen = set()
    cleaned = []
    for header in headers:
        if header is None:
            continue
        name = str(header).strip()
        if not name or name in seen:
            continue
        seen.add(name)
        cleaned.append(name)
    return cleaned


def normalize(headers: Iterable[Any], rows: Iterable[GuestRow]) -> Tuple[List[str], List[GuestRow]]:
    clean_headers = normalize_headers(headers)
    rows = list(rows)

    clean_rows = []
    for row in rows:
        by_name = {}
        for key, value in row.items():
            if key is None:
                continue
            # first occurrence of a trimmed key wins, same as for headers
            by_name.setdefault(str(key).strip(), value)

        clean = {}
        for header in clean_headers:
            value = by_name.get(header)
            clean[header] = "" if value is None else value

        if not is_blank_row(clean):
            clean_rows.append(clean)

    dropped = len(rows) - len(clean_rows)
    if dropped:
        logger.debug(f"Dropped {dropped} blank rows during normalization")

    return clean_headers, clean_rows


def find_id_header(headers: Iterable[str]) -> Optional[str]:
    """First header whose name looks like an identifier column"""
    for header in headers:
        lowered = header.lower()
        if any(marker in lowered for marker in ID_HEADER_MARKERS):
            return header
    return None


def derive_guest_id(
    row: GuestRow,
    headers: Iterable[str],
    position: int,
    remote_id: Optional[str] = None,
) -> str:
    """
    Resolve the Guest Identifier of a row.

    `position` is the 1-based position of the row in its parsed batch.
    A remote identifier always wins; then the value of the identifier
    column; then a synthetic `guest_{position}`.
    """
    if remote_id:
        return str(remote_id)

    id_header = find_id_header(headers)
    if id_header is not None:
        value = row.get(id_header)
        if not is_blank(value):
            return str(value)

    return f"guest_{position}"
