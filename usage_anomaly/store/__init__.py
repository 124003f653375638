"""Usage, anomaly and incident storage module."""

from usage_anomaly.store.interface import (
    DAY,
    AnomalyStoreFilter,
    BaseUsageStore,
    UsageStore,
)
from usage_anomaly.store.memory_store import MemoryUsageStore
from usage_anomaly.store.sql_store import SqlUsageStore

__all__ = [
    "DAY",
    "AnomalyStoreFilter",
    "BaseUsageStore",
    "MemoryUsageStore",
    "SqlUsageStore",
    "UsageStore",
]
