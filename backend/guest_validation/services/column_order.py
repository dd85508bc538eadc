from typing import Iterable, List, Optional, Sequence

from guest_validation.core.config import settings


def _key(name: str) -> str:
    return name.strip().lower()


def order_columns(present: Sequence[str], preferred: Optional[Iterable[str]] = None) -> List[str]:
    """
    Order the headers of the guest table for display.

    Three passes over `preferred`:
      1. exact matches, ignoring case and surrounding whitespace
      2. substring matches in either direction (first preferred entry wins)
      3. whatever is left, in its original order

    Every header in `present` appears exactly once in the result.
    """
    if preferred is None:
        preferred = settings.PREFERRED_COLUMN_ORDER
    wanted = [_key(name) for name in preferred if name and name.strip()]

    ordered: List[str] = []
    placed = set()

    def place(index: int):
        placed.add(index)
        ordered.append(present[index])

    # 1. Exact matches
    for target in wanted:
        for index, header in enumerate(present):
            if index not in placed and _key(header) == target:
                place(index)
                break

    # 2. Partial matches
    for target in wanted:
        for index, header in enumerate(present):
            if index in placed:
                continue
            key = _key(header)
            if target in key or key in target:
                place(index)

    # 3. Everything else
    for index in range(len(present)):
        if index not in placed:
            place(index)

    return ordered
