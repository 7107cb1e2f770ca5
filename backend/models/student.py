"""Student profile model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from backend.database import Base
from backend.models.user import User


class Student(Base):
    """Student profile wrapping one user.

    The student's appointments are looked up by ``appointments.student_id``;
    no id list is stored here.
    """
    __tablename__ = "students"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    name = Column(String(120), nullable=False)
    registration_number = Column(String(50))
    course = Column(String(100))
    branch = Column(String(100))
    current_year = Column(Integer)
    current_semester = Column(Integer)
    phone_number = Column(String(10))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship(User)
