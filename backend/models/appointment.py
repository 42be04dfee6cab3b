"""Appointment model definitions."""

from sqlalchemy import Column, Integer, Date, DateTime, ForeignKey, String, Time, func
from backend.database import Base


class Appointment(Base):
    """Represents a scheduled appointment."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, default="Scheduled")
    summary = Column(String)
    notes = Column(String)
    cancel_reason = Column(String)
    created_at = Column(DateTime, server_default=func.now())
