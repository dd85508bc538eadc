import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from guest_validation.core.errors import LoadFailed, PersistenceFailed, RecordNotFound, UpdateFailed
from guest_validation.db.session import SessionLocal
from guest_validation.models.guest import Guest
from guest_validation.schemas import GuestRecord
from guest_validation.services.normalizer import derive_guest_id
from guest_validation.services.realtime import ChangeBroker, GuestChange, change_broker

logger = logging.getLogger(__name__)

class GuestRepository:
    """Reads and writes the guests table, announcing every committed change"""

    def __init__(self, db: Session, broker: Optional[ChangeBroker] = None):
        self.db = db
        self.broker = broker if broker is not None else change_broker

    # ==========================================================================
    # BULK REPLACE
    # ==========================================================================
    def replace_all(self, rows: Sequence[Dict[str, Any]], headers: Sequence[str]) -> List[Guest]:
        """
        Swap the whole table for a freshly uploaded batch.

        Delete and insert share one transaction: if anything fails the
        previous guests are kept and PersistenceFailed is raised.
        """
        try:
            previous = [guest.to_dict() for guest in self.db.query(Guest).all()]
            self.db.query(Guest).delete(synchronize_session=False)

            guests = []
            for position, row in enumerate(rows, start=1):
                guests.append(Guest(
                    guest_id=derive_guest_id(row, headers, position),
                    guest_data=dict(row),
                    confirmed=False,
                    row_number=position,
                ))
            self.db.add_all(guests)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Guest replace failed, previous rows kept: {e}")
            raise PersistenceFailed(cause=e)

        for guest in guests:
            self.db.refresh(guest)

        logger.info(f"✅ Replaced {len(previous)} guests with {len(guests)} uploaded rows")

        changes = [GuestChange(event="DELETE", old=old) for old in previous]
        changes.extend(GuestChange(event="INSERT", new=guest.to_dict()) for guest in guests)
        self.broker.publish_many(changes)
        return guests

    # ==========================================================================
    # CONFIRMATION TOGGLE
    # ==========================================================================
    def toggle_confirmed(self, guest_id: str) -> Guest:
        """
        Flip the confirmed flag of one guest.

        Plain read-modify-write: two clients toggling the same guest at once
        race and the last commit wins.
        """
        try:
            guest = self.db.query(Guest).filter(Guest.guest_id == guest_id).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Guest lookup failed for {guest_id}: {e}")
            raise UpdateFailed(cause=e)

        if guest is None:
            raise RecordNotFound(f"Guest {guest_id} not found")

        old = guest.to_dict()
        try:
            guest.confirmed = not guest.confirmed
            guest.confirmed_at = datetime.now(timezone.utc) if guest.confirmed else None
            self.db.commit()
            self.db.refresh(guest)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Toggle failed for {guest_id}: {e}")
            raise UpdateFailed(cause=e)

        logger.info(f"{'✅ Confirmed' if guest.confirmed else '↩️ Unconfirmed'} guest {guest_id}")
        self.broker.publish(GuestChange(event="UPDATE", old=old, new=guest.to_dict()))
        return guest

    # ==========================================================================
    # LOAD
    # ==========================================================================
    def load_all(self) -> List[Guest]:
        try:
            return (
                self.db.query(Guest)
                .order_by(Guest.created_at.asc(), Guest.row_number.asc())
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Loading guests failed: {e}")
            raise LoadFailed(cause=e)

    def confirmed_ids(self) -> List[str]:
        try:
            rows = (
                self.db.query(Guest.guest_id)
                .filter(Guest.confirmed.is_(True))
                .order_by(Guest.created_at.asc(), Guest.row_number.asc())
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LoadFailed(cause=e)
        return [guest_id for (guest_id,) in rows]


def load_guest_records() -> List[GuestRecord]:
    """Load every guest with a short-lived session, detached from the ORM"""
    db = SessionLocal()
    try:
        return [GuestRecord.model_validate(guest) for guest in GuestRepository(db).load_all()]
    finally:
        db.close()
