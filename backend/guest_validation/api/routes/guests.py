import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from guest_validation.api.deps import get_db, get_table_view, http_error
from guest_validation.core.errors import GuestValidationError, LoadFailed
from guest_validation.db.session import SessionLocal
from guest_validation.schemas import ConfirmedResponse, GuestRecord, TableSnapshot
from guest_validation.services.guest_store import GuestRepository
from guest_validation.services.live_table import GuestTableView

router = APIRouter()
logger = logging.getLogger(__name__)

# ==============================================================================
# 1. TABLE SNAPSHOT (With Search)
# ==============================================================================
@router.get("/guests", response_model=TableSnapshot)
async def list_guests(
    search: Optional[str] = None,
    view: GuestTableView = Depends(get_table_view),
):
    """
    Current guest table: ordered columns, rows and confirmation counts.
    Optional: ?search=ana to keep rows where any cell contains the term.
    """
    try:
        await view.refresh()
    except LoadFailed as e:
        raise http_error(e)
    return view.snapshot(search or "")


@router.get("/guests/confirmed", response_model=ConfirmedResponse)
def list_confirmed(db: Session = Depends(get_db)):
    try:
        confirmed_ids = GuestRepository(db).confirmed_ids()
    except LoadFailed as e:
        raise http_error(e)
    return ConfirmedResponse(confirmed_ids=confirmed_ids, count=len(confirmed_ids))


# ==============================================================================
# 2. CONFIRMATION TOGGLE
# ==============================================================================
@router.post("/guests/{guest_id}/toggle", response_model=GuestRecord)
def toggle_guest(guest_id: str, db: Session = Depends(get_db)):
    """Confirm a guest, or cancel the confirmation if already confirmed"""
    try:
        guest = GuestRepository(db).toggle_confirmed(guest_id)
    except GuestValidationError as e:
        raise http_error(e)
    return GuestRecord.model_validate(guest)


# ==============================================================================
# 3. LIVE TABLE (WebSocket)
# ==============================================================================
def _toggle_in_store(guest_id: str) -> GuestRecord:
    db = SessionLocal()
    try:
        return GuestRecord.model_validate(GuestRepository(db).toggle_confirmed(guest_id))
    finally:
        db.close()


class LiveTableConnection:
    """One browser tab watching the guest table"""

    def __init__(self, websocket: WebSocket, view: GuestTableView):
        self.websocket = websocket
        self.view = view
        self.send_lock = asyncio.Lock()

    async def send_snapshot(self):
        async with self.send_lock:
            await self.websocket.send_json({
                "type": "snapshot",
                "data": self.view.snapshot().model_dump(mode="json"),
            })

    async def send_error(self, code: str, message: str):
        async with self.send_lock:
            await self.websocket.send_json({"type": "error", "code": code, "message": message})

    async def push_updates(self):
        async for update in self.view.changes():
            if update.error is not None:
                await self.send_error(update.error.code, update.error.message)
            await self.send_snapshot()

    async def toggle(self, guest_id: str):
        # Optimistic: staff see the new state before the store answers
        self.view.mark_toggled(guest_id)
        await self.send_snapshot()
        try:
            await run_in_threadpool(_toggle_in_store, guest_id)
        except GuestValidationError as e:
            await self.send_error(e.code, e.message)
            # nothing changed in the store, so no notification will correct us
            try:
                await self.view.refresh()
            except LoadFailed as load_error:
                await self.send_error(load_error.code, load_error.message)
            await self.send_snapshot()

    async def handle(self, raw: str):
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            await self.send_error("invalid_message", "Messages must be JSON objects")
            return
        if not isinstance(message, dict):
            await self.send_error("invalid_message", "Messages must be JSON objects")
            return

        action = message.get("action")
        if action == "search":
            self.view.search_term = str(message.get("term") or "")
            await self.send_snapshot()
        elif action == "toggle" and message.get("guest_id"):
            await self.toggle(str(message["guest_id"]))
        elif action == "refresh":
            try:
                await self.view.refresh()
            except LoadFailed as e:
                await self.send_error(e.code, e.message)
            await self.send_snapshot()
        else:
            await self.send_error("invalid_message", f"Unknown action: {action!r}")


async def stop_pump(pump: asyncio.Task) -> Optional[BaseException]:
    """Cancel the update pump and collect whatever killed it, if anything"""
    pump.cancel()
    (outcome,) = await asyncio.gather(pump, return_exceptions=True)
    if isinstance(outcome, BaseException) and not isinstance(outcome, asyncio.CancelledError):
        logger.error(f"❌ Live table updates stopped: {outcome!r}")
        return outcome
    return None


@router.websocket("/guests/live")
async def guests_live(websocket: WebSocket):
    """
    Push the guest table on connect and after every change.

    Client messages:
        {"action": "search", "term": "ana"}
        {"action": "toggle", "guest_id": "A1"}
        {"action": "refresh"}
    """
    await websocket.accept()

    shared: GuestTableView = websocket.app.state.guest_view
    view = GuestTableView(loader=shared.loader, broker=shared.broker, preferred_order=shared.preferred_order)
    view.set_local_batch(shared.local_headers, shared.local_rows)
    view.search_term = websocket.query_params.get("search", "")
    connection = LiveTableConnection(websocket, view)

    pump = None
    try:
        try:
            await view.activate()
        except LoadFailed as e:
            # subscription stays open, the next change reloads
            logger.error(f"❌ Live table initial load failed: {e}")
            await connection.send_error(e.code, e.message)
        await connection.send_snapshot()

        pump = asyncio.create_task(connection.push_updates())
        while True:
            await connection.handle(await websocket.receive_text())
    except WebSocketDisconnect:
        logger.info("Live table client disconnected")
    finally:
        if pump is not None:
            await stop_pump(pump)
        await view.deactivate()
