"""Doctor model definitions."""

from sqlalchemy import Column, Integer, ForeignKey, String
from sqlalchemy.orm import relationship
from backend.database import Base
from backend.models.user import User


class Doctor(Base):
    """Represents a doctor profile attached to a user."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    speciality = Column(String)

    user = relationship(User, lazy="joined")

    @property
    def display_name(self) -> str:
        return self.user.full_name if self.user is not None else ""
