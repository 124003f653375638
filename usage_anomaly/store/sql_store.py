"""SQLAlchemy-backed store implementation."""

from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator, Sequence

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from usage_anomaly.config.settings import DetectionConfig
from usage_anomaly.exceptions import StoreError
from usage_anomaly.logging_config import get_logger
from usage_anomaly.models.anomaly_record import (
    Anomaly,
    AnomalyMetric,
    AnomalyType,
    Severity,
    Subject,
    SubjectKind,
    utcnow,
)
from usage_anomaly.models.incident import Incident, IncidentStatus
from usage_anomaly.models.usage import (
    CycleSpend,
    DailyTotals,
    ModelUsage,
    UsageEvent,
    UsageTotals,
)
from usage_anomaly.store.interface import AnomalyStoreFilter, BaseUsageStore
from usage_anomaly.store.tables import (
    AnomalyModel,
    Base,
    ConfigEntryModel,
    CycleSpendModel,
    IncidentModel,
    UsageEventModel,
)

logger = get_logger(__name__)


def _to_anomaly(row: AnomalyModel) -> Anomaly:
    return Anomaly(
        id=row.id,
        subject=Subject(kind=SubjectKind(row.subject_kind), id=row.subject_id),
        anomaly_type=AnomalyType(row.type),
        severity=Severity(row.severity),
        metric=AnomalyMetric(row.metric),
        value=row.value,
        threshold=row.threshold,
        message=row.message,
        detected_at=row.detected_at,
        resolved_at=row.resolved_at,
        alerted_at=row.alerted_at,
        diagnosis_model=row.diagnosis_model,
        diagnosis_kind=row.diagnosis_kind,
        diagnosis_delta=row.diagnosis_delta,
    )


def _from_anomaly(anomaly: Anomaly) -> AnomalyModel:
    return AnomalyModel(
        subject_kind=anomaly.subject.kind.value,
        subject_id=anomaly.subject.id,
        type=anomaly.anomaly_type.value,
        severity=anomaly.severity.value,
        metric=anomaly.metric.value,
        value=anomaly.value,
        threshold=anomaly.threshold,
        message=anomaly.message,
        detected_at=anomaly.detected_at,
        resolved_at=anomaly.resolved_at,
        alerted_at=anomaly.alerted_at,
        diagnosis_model=anomaly.diagnosis_model,
        diagnosis_kind=anomaly.diagnosis_kind,
        diagnosis_delta=anomaly.diagnosis_delta,
    )


def _to_incident(row: IncidentModel) -> Incident:
    return Incident(
        id=row.id,
        anomaly_id=row.anomaly_id,
        subject=Subject(kind=SubjectKind(row.subject_kind), id=row.subject_id),
        status=IncidentStatus(row.status),
        detected_at=row.detected_at,
        alerted_at=row.alerted_at,
        acknowledged_at=row.acknowledged_at,
        resolved_at=row.resolved_at,
        mttd_minutes=row.mttd_minutes,
        mtti_minutes=row.mtti_minutes,
        mttr_minutes=row.mttr_minutes,
    )


class SqlUsageStore(BaseUsageStore):
    """Relational implementation of UsageStore on SQLAlchemy.

    Every public method runs in its own session; multi-row writes such as
    ``insert_anomalies`` commit once or roll back entirely. Driver errors
    surface as :class:`StoreError`.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, create_tables: bool = True) -> "SqlUsageStore":
        """Build a store from a database URL.

        Args:
            url: SQLAlchemy URL, e.g. ``sqlite:///./data/usage.db``
            create_tables: Create missing tables on start-up

        Returns:
            A ready-to-use store
        """
        kwargs: dict[str, Any] = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise each session sees an empty database
                kwargs["poolclass"] = StaticPool
            else:
                db_path = url.split("///", 1)[-1]
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        engine = create_engine(url, **kwargs)
        store = cls(engine)
        if create_tables:
            store.create_tables()
        return store

    def create_tables(self) -> None:
        Base.metadata.create_all(self._engine)
        logger.debug("store_tables_ready", url=str(self._engine.url))

    def dispose(self) -> None:
        self._engine.dispose()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("store_operation_failed", error=str(e))
            raise StoreError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # --- Configuration ---

    def get_config(self) -> DetectionConfig:
        with self._session() as session:
            rows = session.scalars(select(ConfigEntryModel)).all()
            flat = {row.key: row.value for row in rows}
        return DetectionConfig.from_flat(flat)

    def save_config(self, config: DetectionConfig) -> None:
        with self._session() as session:
            for key, value in config.to_flat().items():
                session.merge(ConfigEntryModel(key=key, value=value))

    # --- Usage reads ---

    def get_cycle_spend(self) -> list[CycleSpend]:
        latest = select(func.max(CycleSpendModel.cycle_start)).scalar_subquery()
        stmt = (
            select(CycleSpendModel)
            .where(CycleSpendModel.cycle_start == latest)
            .order_by(CycleSpendModel.email)
        )
        with self._session() as session:
            return [
                CycleSpend(email=row.email, cycle_start=row.cycle_start, spend_cents=row.spend_cents)
                for row in session.scalars(stmt)
            ]

    def get_usage_totals(self, start: datetime, end: datetime) -> list[UsageTotals]:
        stmt = (
            select(
                UsageEventModel.user_email,
                func.count(UsageEventModel.id),
                func.coalesce(func.sum(UsageEventModel.total_tokens), 0),
            )
            .where(UsageEventModel.timestamp > start, UsageEventModel.timestamp <= end)
            .group_by(UsageEventModel.user_email)
            .order_by(UsageEventModel.user_email)
        )
        with self._session() as session:
            return [
                UsageTotals(email=email, requests=int(req), tokens=int(tok))
                for email, req, tok in session.execute(stmt)
            ]

    def get_daily_totals(
        self,
        end: datetime,
        days: int,
        email: str | None = None,
    ) -> list[DailyTotals]:
        stmt = select(
            UsageEventModel.user_email,
            UsageEventModel.timestamp,
            UsageEventModel.total_tokens,
        ).where(
            UsageEventModel.timestamp > end - timedelta(days=days),
            UsageEventModel.timestamp <= end,
        )
        if email is not None:
            stmt = stmt.where(UsageEventModel.user_email == email)
        with self._session() as session:
            rows = [tuple(row) for row in session.execute(stmt)]
        return self._bucket_daily(rows, end, days)

    def get_model_usage(
        self,
        start: datetime,
        end: datetime,
        email: str | None = None,
    ) -> list[ModelUsage]:
        stmt = (
            select(
                UsageEventModel.user_email,
                UsageEventModel.model,
                func.count(UsageEventModel.id),
                func.coalesce(func.sum(UsageEventModel.total_tokens), 0),
            )
            .where(UsageEventModel.timestamp > start, UsageEventModel.timestamp <= end)
            .group_by(UsageEventModel.user_email, UsageEventModel.model)
            .order_by(UsageEventModel.user_email, UsageEventModel.model)
        )
        if email is not None:
            stmt = stmt.where(UsageEventModel.user_email == email)
        with self._session() as session:
            return [
                ModelUsage(email=user, model=model, requests=int(req), tokens=int(tok))
                for user, model, req, tok in session.execute(stmt)
            ]

    # --- Usage ingestion ---

    def add_usage_events(self, events: Sequence[UsageEvent]) -> int:
        with self._session() as session:
            session.add_all(
                UsageEventModel(
                    user_email=e.user_email,
                    timestamp=e.timestamp,
                    model=e.model,
                    kind=e.kind,
                    total_tokens=e.total_tokens,
                    cost_cents=e.cost_cents,
                )
                for e in events
            )
        return len(events)

    def upsert_cycle_spend(self, rows: Sequence[CycleSpend]) -> int:
        with self._session() as session:
            for row in rows:
                session.merge(
                    CycleSpendModel(
                        email=row.email,
                        cycle_start=row.cycle_start,
                        spend_cents=row.spend_cents,
                    )
                )
        return len(rows)

    # --- Anomalies ---

    def get_open_anomalies(self) -> list[Anomaly]:
        return self.list_anomalies(AnomalyStoreFilter(open_only=True))

    def list_anomalies(self, filter_criteria: AnomalyStoreFilter) -> list[Anomaly]:
        stmt = select(AnomalyModel)
        if filter_criteria.open_only:
            stmt = stmt.where(AnomalyModel.resolved_at.is_(None))
        if filter_criteria.since:
            stmt = stmt.where(AnomalyModel.detected_at >= filter_criteria.since)
        if filter_criteria.anomaly_types:
            stmt = stmt.where(
                AnomalyModel.type.in_([t.value for t in filter_criteria.anomaly_types])
            )
        if filter_criteria.subject:
            stmt = stmt.where(
                AnomalyModel.subject_kind == filter_criteria.subject.kind.value,
                AnomalyModel.subject_id == filter_criteria.subject.id,
            )
        stmt = stmt.order_by(AnomalyModel.detected_at.desc(), AnomalyModel.id.desc())
        if filter_criteria.limit:
            stmt = stmt.limit(filter_criteria.limit)
        with self._session() as session:
            return [_to_anomaly(row) for row in session.scalars(stmt)]

    def get_anomaly(self, anomaly_id: int) -> Anomaly | None:
        with self._session() as session:
            row = session.get(AnomalyModel, anomaly_id)
            return _to_anomaly(row) if row else None

    def insert_anomaly(self, anomaly: Anomaly) -> int:
        return self.insert_anomalies([anomaly])[0]

    def insert_anomalies(self, anomalies: Sequence[Anomaly]) -> list[int]:
        with self._session() as session:
            rows = [_from_anomaly(a) for a in anomalies]
            session.add_all(rows)
            session.flush()
            ids = [row.id for row in rows]
        logger.debug("anomalies_inserted", count=len(ids))
        return ids

    def resolve_anomaly(self, anomaly_id: int, resolved_at: datetime | None = None) -> bool:
        with self._session() as session:
            row = session.get(AnomalyModel, anomaly_id)
            if row is None or row.resolved_at is not None:
                return False
            row.resolved_at = resolved_at or utcnow()
            return True

    def mark_anomaly_alerted(self, anomaly_id: int, alerted_at: datetime | None = None) -> None:
        with self._session() as session:
            row = session.get(AnomalyModel, anomaly_id)
            if row is not None:
                row.alerted_at = alerted_at or utcnow()

    # --- Incidents ---

    def insert_incident(self, incident: Incident) -> int:
        row = IncidentModel(
            anomaly_id=incident.anomaly_id,
            subject_kind=incident.subject.kind.value,
            subject_id=incident.subject.id,
            status=incident.status.value,
            detected_at=incident.detected_at,
            alerted_at=incident.alerted_at,
            acknowledged_at=incident.acknowledged_at,
            resolved_at=incident.resolved_at,
            mttd_minutes=incident.mttd_minutes,
            mtti_minutes=incident.mtti_minutes,
            mttr_minutes=incident.mttr_minutes,
        )
        with self._session() as session:
            session.add(row)
            session.flush()
            return row.id

    def update_incident_status(
        self,
        incident_id: int,
        status: IncidentStatus,
        **fields: Any,
    ) -> None:
        self._validate_incident_fields(fields)
        with self._session() as session:
            row = session.get(IncidentModel, incident_id)
            if row is None:
                return
            row.status = status.value
            for name, value in fields.items():
                setattr(row, name, value)

    def get_incident(self, incident_id: int) -> Incident | None:
        with self._session() as session:
            row = session.get(IncidentModel, incident_id)
            return _to_incident(row) if row else None

    def get_open_incidents(self) -> list[Incident]:
        stmt = (
            select(IncidentModel)
            .where(IncidentModel.status != IncidentStatus.RESOLVED.value)
            .order_by(IncidentModel.detected_at.desc(), IncidentModel.id.desc())
        )
        with self._session() as session:
            return [_to_incident(row) for row in session.scalars(stmt)]

    def list_incidents(self, limit: int | None = None) -> list[Incident]:
        stmt = select(IncidentModel).order_by(
            IncidentModel.detected_at.desc(), IncidentModel.id.desc()
        )
        if limit:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return [_to_incident(row) for row in session.scalars(stmt)]
