from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, false

from guest_validation.db.base import Base, BaseModel

class Guest(Base, BaseModel):
    __tablename__ = "guests"

    # Identifier derived from the uploaded row
    guest_id = Column(String, nullable=False)
    # Plain JSON everywhere: JSONB reorders keys and the column order comes from them
    guest_data = Column(JSON, nullable=False)

    # Check-in status
    confirmed = Column(Boolean, nullable=False, default=False, server_default=false())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    # 1-based position in the upload batch, tiebreak for equal created_at
    row_number = Column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_guests_guest_id", "guest_id", unique=True),
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id) if self.id is not None else None,
            "guest_id": self.guest_id,
            "guest_data": dict(self.guest_data or {}),
            "confirmed": bool(self.confirmed),
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Guest {self.guest_id} (confirmed={self.confirmed})>"
