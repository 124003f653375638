"""SQLAlchemy 2.0 ORM models backing SqlUsageStore.

Tables:
- usage_events: one row per assistant request
- cycle_spend: cycle-to-date spend per member and billing cycle
- anomalies: detected deviations, never deleted
- incidents: one lifecycle record per anomaly
- config: typed key-value rows of the detection config
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class UTCDateTime(TypeDecorator):
    """Stores datetimes as naive UTC and returns them timezone-aware.

    SQLite has no timezone support, so values are normalised on the way in
    and tagged as UTC on the way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    """Shared declarative base for every ORM model."""
    pass


class UsageEventModel(Base):
    __tablename__ = "usage_events"
    __table_args__ = (
        Index("ix_usage_events_user_ts", "user_email", "timestamp"),
        Index("ix_usage_events_ts", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_email: Mapped[str] = mapped_column(String(320), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[str] = mapped_column(String(64), nullable=False, default="usage_based")
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_cents: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class CycleSpendModel(Base):
    __tablename__ = "cycle_spend"

    email: Mapped[str] = mapped_column(String(320), primary_key=True)
    cycle_start: Mapped[date] = mapped_column(Date, primary_key=True)
    spend_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AnomalyModel(Base):
    """A detected deviation. Rows are resolved, never deleted."""

    __tablename__ = "anomalies"
    __table_args__ = (
        Index("ix_anomalies_subject", "subject_kind", "subject_id"),
        Index("ix_anomalies_resolved_at", "resolved_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    metric: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    alerted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    diagnosis_model: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    diagnosis_kind: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    diagnosis_delta: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<Anomaly(id={self.id!r}, subject={self.subject_id!r}, type={self.type!r})>"


class IncidentModel(Base):
    __tablename__ = "incidents"
    __table_args__ = (Index("ix_incidents_status", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    anomaly_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("anomalies.id"), nullable=False, unique=True
    )
    subject_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    detected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    alerted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    mttd_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    mtti_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    mttr_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<Incident(id={self.id!r}, anomaly_id={self.anomaly_id!r}, status={self.status!r})>"


class ConfigEntryModel(Base):
    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
