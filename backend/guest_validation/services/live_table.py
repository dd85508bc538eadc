"""
Live view of the guest table.

GuestTableView keeps the latest snapshot of the guests table and rebuilds
everything it shows from that snapshot whenever the table changes:

    async with GuestTableView() as view:
        send(view.snapshot())
        async for update in view.changes():
            send(update.snapshot)

The confirmed set and display rows are pure functions of the loaded
records; the only local state layered on top is the most recent parsed
batch (shown until the store has rows) and optimistic toggles.
"""
import logging
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Sequence

from fastapi.concurrency import run_in_threadpool

from guest_validation.core.config import settings
from guest_validation.core.errors import GuestValidationError, LoadFailed
from guest_validation.schemas import DisplayRow, GuestRecord, TableSnapshot
from guest_validation.services.column_order import order_columns
from guest_validation.services.guest_store import load_guest_records
from guest_validation.services.normalizer import derive_guest_id
from guest_validation.services.realtime import ChangeBroker, GuestChange, Subscription, change_broker

logger = logging.getLogger(__name__)

Loader = Callable[[], List[GuestRecord]]


# ══════════════════════════════════════════════════════════════════════════════
# DERIVED VIEWS
# ══════════════════════════════════════════════════════════════════════════════

def confirmed_set(records: Iterable[GuestRecord]) -> FrozenSet[str]:
    return frozenset(record.guest_id for record in records if record.confirmed)


def collect_headers(records: Iterable[GuestRecord]) -> List[str]:
    """Every key found in guest_data, in first-seen order"""
    headers: Dict[str, None] = {}
    for record in records:
        for key in record.guest_data:
            headers.setdefault(key, None)
    return list(headers)


def remote_rows(records: Iterable[GuestRecord], confirmed: FrozenSet[str]) -> List[DisplayRow]:
    return [
        DisplayRow(
            guest_id=record.guest_id,
            record_id=record.id,
            confirmed=record.guest_id in confirmed,
            data=dict(record.guest_data),
        )
        for record in records
    ]


def local_rows(
    headers: Sequence[str], rows: Sequence[Dict[str, Any]], confirmed: FrozenSet[str]
) -> List[DisplayRow]:
    display = []
    for position, row in enumerate(rows, start=1):
        guest_id = derive_guest_id(row, headers, position)
        display.append(DisplayRow(guest_id=guest_id, confirmed=guest_id in confirmed, data=dict(row)))
    return display


def row_matches(row: DisplayRow, needle: str) -> bool:
    if needle in row.guest_id.lower():
        return True
    return any(
        value is not None and needle in str(value).lower()
        for value in row.data.values()
    )


def filter_rows(rows: Sequence[DisplayRow], term: Optional[str]) -> List[DisplayRow]:
    """Case-insensitive match of the term as typed; a blank term keeps everything"""
    term = term or ""
    if not term.strip():
        return list(rows)
    needle = term.lower()
    return [row for row in rows if row_matches(row, needle)]


# ══════════════════════════════════════════════════════════════════════════════
# VIEW
# ══════════════════════════════════════════════════════════════════════════════

class ViewUpdate(NamedTuple):
    changes: List[GuestChange]
    snapshot: TableSnapshot
    error: Optional[GuestValidationError] = None


class GuestTableView:
    def __init__(
        self,
        loader: Loader = load_guest_records,
        broker: Optional[ChangeBroker] = None,
        preferred_order: Optional[Sequence[str]] = None,
    ):
        self.loader = loader
        self.broker = broker if broker is not None else change_broker
        self.preferred_order = list(preferred_order) if preferred_order is not None else settings.PREFERRED_COLUMN_ORDER

        self.records: List[GuestRecord] = []
        self.confirmed: FrozenSet[str] = frozenset()
        self.local_headers: List[str] = []
        self.local_rows: List[Dict[str, Any]] = []
        self.search_term = ""
        self.subscription: Optional[Subscription] = None

    # --------------------------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------------------------
    @property
    def active(self) -> bool:
        return self.subscription is not None

    async def activate(self) -> TableSnapshot:
        """Subscribe to guest changes, then load the current rows"""
        if self.subscription is None:
            self.subscription = self.broker.subscribe()
        return await self.refresh()

    async def deactivate(self):
        if self.subscription is not None:
            self.subscription.unsubscribe()
            self.subscription = None

    async def __aenter__(self) -> "GuestTableView":
        try:
            await self.activate()
        except BaseException:
            await self.deactivate()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.deactivate()

    # --------------------------------------------------------------------------
    # Reconciliation
    # --------------------------------------------------------------------------
    def apply(self, records: Iterable[GuestRecord]):
        """Replace the view state with a full snapshot of the store"""
        self.records = list(records)
        self.confirmed = confirmed_set(self.records)

    async def refresh(self) -> TableSnapshot:
        records = await run_in_threadpool(self.loader)
        self.apply(records)
        return self.snapshot()

    async def changes(self):
        """
        Yield a ViewUpdate after every change to the guests table.

        Changes already queued when one arrives are folded into the same
        reload. A failed reload is reported in the update and leaves the
        previous state untouched.
        """
        if self.subscription is None:
            raise RuntimeError("GuestTableView is not active")

        while self.subscription is not None:
            first = await self.subscription.get()
            batch = [first] + self.subscription.drain()
            try:
                await self.refresh()
            except LoadFailed as e:
                logger.error(f"❌ Reload after {len(batch)} changes failed: {e}")
                yield ViewUpdate(batch, self.snapshot(), e)
                continue
            yield ViewUpdate(batch, self.snapshot())

    # --------------------------------------------------------------------------
    # Local state
    # --------------------------------------------------------------------------
    def set_local_batch(self, headers: Sequence[str], rows: Sequence[Dict[str, Any]]):
        """Show a parsed upload until the store has rows of its own"""
        self.local_headers = list(headers)
        self.local_rows = [dict(row) for row in rows]
        self.search_term = ""

    def mark_toggled(self, guest_id: str) -> bool:
        """Flip a guest locally ahead of the store; returns the new state"""
        if guest_id in self.confirmed:
            self.confirmed = self.confirmed - {guest_id}
            return False
        self.confirmed = self.confirmed | {guest_id}
        return True

    # --------------------------------------------------------------------------
    # Output
    # --------------------------------------------------------------------------
    def display_rows(self) -> List[DisplayRow]:
        if self.records:
            return remote_rows(self.records, self.confirmed)
        return local_rows(self.local_headers, self.local_rows, self.confirmed)

    def snapshot(self, term: Optional[str] = None) -> TableSnapshot:
        if term is None:
            term = self.search_term

        if self.records:
            source, headers = "remote", collect_headers(self.records)
        elif self.local_rows:
            source, headers = "local", self.local_headers
        else:
            source, headers = "none", []

        rows = self.display_rows()
        visible = filter_rows(rows, term)

        if not rows:
            state = "empty"
        elif not visible:
            state = "no_matches"
        else:
            state = "ok"

        confirmed_count = sum(1 for row in rows if row.confirmed)
        return TableSnapshot(
            state=state,
            source=source,
            search=term or "",
            headers=order_columns(headers, self.preferred_order),
            rows=visible,
            confirmed_ids=sorted(self.confirmed),
            total=len(rows),
            confirmed_count=confirmed_count,
            unconfirmed_count=len(rows) - confirmed_count,
        )
