# backend/schooldb/apps/roster/models.py

from __future__ import annotations

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, String

from schooldb.clock import utcnow
from schooldb.database import Base
from schooldb.ids import generate_id


class SchoolClass(Base):
    __tablename__ = "classes"
    __table_args__ = (
        Index("idx_classes_school_active", "school_id", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    school_id = Column(
        String(36),
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(64), nullable=False)
    stream = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Pupil(Base):
    __tablename__ = "pupils"
    __table_args__ = (
        Index("idx_pupils_school_active", "school_id", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    school_id = Column(
        String(36),
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    class_id = Column(
        String(36),
        ForeignKey("classes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    admission_number = Column(String(32), nullable=True)
    first_name = Column(String(128), nullable=False)
    last_name = Column(String(128), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
