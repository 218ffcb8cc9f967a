from typing import Any, Dict, List, Optional
from datetime import datetime, date
from sqlalchemy import (
    JSON,
    String,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    UniqueConstraint,
    CheckConstraint,
    DateTime,
    Date,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import enum

from rooster.db.custom_types import StringUUID, new_uuid
from rooster.utils.datetime_utils import naive_utc_now


class Base(DeclarativeBase):
    pass


# Enums
class EventType(str, enum.Enum):
    """Built-in event types. The column is a plain string so new triggers need no migration."""

    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"


class EventLogStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    RETRY = "retry"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now, nullable=False
    )


# Models
class User(Base, AuditMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(StringUUID, primary_key=True, default=new_uuid)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    birthday: Mapped[date] = mapped_column(Date, nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False)
    anniversary_date: Mapped[Optional[date]] = mapped_column(Date)

    # Relationships
    event_logs: Mapped[List["EventLog"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    # Constraints
    __table_args__ = (
        Index("idx_users_birthday_timezone", "birthday", "timezone"),
        Index("idx_users_timezone", "timezone"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class EventLog(Base, AuditMixin):
    __tablename__ = "event_logs"

    id: Mapped[str] = mapped_column(StringUUID, primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(
        StringUUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    event_year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[EventLogStatus] = mapped_column(
        Enum(EventLogStatus), default=EventLogStatus.PENDING, nullable=False
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    event_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="event_logs")

    # Constraints
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "event_type",
            "event_year",
            name="uq_event_logs_user_event_year",
        ),
        CheckConstraint("retry_count >= 0", name="ck_event_logs_retry_count"),
        Index("idx_event_logs_status_created", "status", "created_at"),
        Index("idx_event_logs_status_updated", "status", "updated_at"),
        Index("idx_event_logs_created_at", "created_at"),
    )

    @property
    def cached_message(self) -> Optional[str]:
        if not self.event_metadata:
            return None
        return self.event_metadata.get("message")
