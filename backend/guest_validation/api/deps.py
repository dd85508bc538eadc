from fastapi import HTTPException, Request

from guest_validation.core.errors import GuestValidationError
from guest_validation.db.session import get_db
from guest_validation.services.live_table import GuestTableView

__all__ = ["get_db", "get_table_view", "http_error"]

def get_table_view(request: Request) -> GuestTableView:
    """The application-wide table view (holds the last parsed batch)"""
    return request.app.state.guest_view

def http_error(error: GuestValidationError) -> HTTPException:
    """Translate a pipeline error into the response shown to staff"""
    return HTTPException(
        status_code=error.status_code,
        detail=error.message,
        headers={"X-Error-Code": error.code},
    )
