# backend/studyplanner/models.py
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship

from .database import Base
from .utils import utcnow


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")


class RefreshToken(Base):
    """One row per outstanding refresh token; deleting the row revokes the token."""

    __tablename__ = "refresh_tokens"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="refresh_tokens")


class ResetCode(Base):
    __tablename__ = "reset_codes"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    code = Column(String, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    def is_valid(self, code: str, now: datetime) -> bool:
        return self.code == code and now <= self.expires_at


class StudyPlan(Base):
    """
    Study plan written by the syllabus workflow. Read-only for this service.

    ``courses`` holds the workflow output as-is:
    [{"course": ..., "entries": [{"assessmentName", "assessmentType", "dueDate",
    "studyPeriod": {"start", "end"}, "tasks": [...]}]}]
    """

    __tablename__ = "study_plans"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    courses = Column(JSON, nullable=False, default=list)
    total_courses = Column(Integer, nullable=True)
    saved_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (Index("ix_study_plans_user_saved", "user_id", "saved_at"),)
