"""Availability model definitions."""

from sqlalchemy import Column, Integer, Date, DateTime, Boolean, ForeignKey, JSON, String, UniqueConstraint, func
from backend.database import Base


class Availability(Base):
    """Represents one recurring weekday pattern or one single-date override."""
    __tablename__ = "availability"
    __table_args__ = (
        UniqueConstraint("doctor_id", "kind", "day_of_week", name="uq_availability_recurring_day"),
        UniqueConstraint("doctor_id", "kind", "date", name="uq_availability_single_date"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    kind = Column(String, nullable=False)  # Recurring/Single
    day_of_week = Column(String)
    date = Column(Date)
    time_slots = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_by = Column(Integer, ForeignKey("users.id"))
    updated_by = Column(Integer, ForeignKey("users.id"))
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
