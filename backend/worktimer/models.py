from __future__ import annotations

import datetime as dt
import uuid

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

UUID_TYPE = sa.Uuid(as_uuid=True)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_modified_utc = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    projects = relationship("Project", back_populates="customer", cascade="all, delete-orphan", passive_deletes=True)


class Project(Base):
    __tablename__ = "projects"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID_TYPE, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_modified_utc = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    customer = relationship("Customer", back_populates="projects")
    time_entries = relationship("TimeEntry", back_populates="project", cascade="all, delete-orphan", passive_deletes=True)


class TimeEntry(Base):
    __tablename__ = "time_entries"
    __table_args__ = (
        Index("ix_time_entries_start_local", "start_local"),
        Index("ix_time_entries_open", "end_utc", "is_deleted"),
    )

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID_TYPE, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(UUID_TYPE, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    # Wall-clock time in the configured zone, stored naive.
    start_local = Column(DateTime(), nullable=False)
    end_local = Column(DateTime(), nullable=True)
    start_utc = Column(DateTime(timezone=True), nullable=False, index=True)
    end_utc = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=False, default="")
    billable = Column(Boolean, nullable=False, default=True)
    tag = Column(String(50), nullable=True)
    server_id = Column(String(100), nullable=True)
    pending_sync = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    last_modified_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    project = relationship("Project", back_populates="time_entries")
    customer = relationship("Customer")

    def touch(self) -> None:
        self.last_modified_utc = utcnow()
