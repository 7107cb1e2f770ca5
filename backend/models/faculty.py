"""Faculty profile model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from backend.database import Base
from backend.models.department import Department
from backend.models.user import User


class Faculty(Base):
    """Faculty profile wrapping one user.

    Slots and appointments reference the faculty member through indexed
    foreign keys and are queried from there.
    """
    __tablename__ = "faculty"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    name = Column(String(120), nullable=False)
    phone_number = Column(String(10))
    department_id = Column(Integer, ForeignKey("departments.id"), index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship(User)
    department = relationship(Department)
