from fastapi import APIRouter, UploadFile, File, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
import logging

from guest_validation.api.deps import get_db, get_table_view, http_error
from guest_validation.core.config import settings
from guest_validation.core.errors import GuestValidationError, ParseError, PersistenceFailed
from guest_validation.schemas import GuestRecord, UploadResponse
from guest_validation.services.guest_store import GuestRepository
from guest_validation.services.live_table import GuestTableView
from guest_validation.services.spreadsheet_parser import parse_upload
from guest_validation.utils.files import validate_upload

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/guests/upload", response_model=UploadResponse)
async def upload_guests(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    view: GuestTableView = Depends(get_table_view),
):
    """
    Replace the guest list with the rows of an uploaded CSV, XLS or XLSX file.
    The first row must hold the column names.
    """
    # 1. Pre-checks (nothing is parsed or written if they fail)
    try:
        if file.size is not None:
            validate_upload(file.filename, file.size)
        # read one byte past the limit so oversize streams are still caught
        content = await file.read(settings.max_upload_bytes + 1)
        kind = validate_upload(file.filename, len(content))
    except GuestValidationError as e:
        raise http_error(e)

    # 2. Parse
    try:
        table = await run_in_threadpool(parse_upload, content, kind)
    except ParseError as e:
        logger.warning(f"Upload {file.filename!r} rejected: {e.code} ({e})")
        raise http_error(e)

    # 3. Show the batch right away, then persist it
    view.set_local_batch(table.headers, table.rows)
    repository = GuestRepository(db)
    try:
        guests = await run_in_threadpool(repository.replace_all, table.rows, table.headers)
    except PersistenceFailed as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"❌ Unexpected error saving {file.filename!r}: {e}")
        raise HTTPException(status_code=500, detail="Database error while saving guests.")

    logger.info(f"✅ Upload {file.filename!r}: {len(guests)} guests saved")
    return UploadResponse(
        filename=file.filename,
        total_saved=len(guests),
        headers=table.headers,
        guests=[GuestRecord.model_validate(guest) for guest in guests],
    )
