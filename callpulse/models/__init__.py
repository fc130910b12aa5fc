"""
Package initialization file for CallPulse models.

Re-exports all Pydantic schemas and enumerations so other modules can write:

    from callpulse.models import CallRecord, CallStatus, OperatorMetrics
"""

# =============================================================================
# Enums
# =============================================================================

from callpulse.models.enums import (
    CallStatus,
    PeriodOfDay,
    FieldKind,
    Trend,
    CachePriority,
    SyncState,
)

# =============================================================================
# Schemas
# =============================================================================

from callpulse.models.schemas import (
    RawRow,
    WEEKDAY_NAMES,
    # Normalization
    NormalizationResult,
    # Records
    ColumnMap,
    CallRecord,
    BuildResult,
    # Metrics
    MetricsConfig,
    TimeWindow,
    OperatorMetrics,
    GeneralMetrics,
    QueueMetrics,
    PeriodComparison,
    # Data quality
    RowIssue,
    IssueCounts,
    SimilarNameGroup,
    QualityReport,
    # Sources and sync
    SourceInfo,
    SyncStats,
    SyncStatus,
    SyncResult,
    # Cache
    CacheStats,
)

__all__ = [
    # Enums
    "CallStatus",
    "PeriodOfDay",
    "FieldKind",
    "Trend",
    "CachePriority",
    "SyncState",
    # Schemas
    "RawRow",
    "WEEKDAY_NAMES",
    "NormalizationResult",
    "ColumnMap",
    "CallRecord",
    "BuildResult",
    "MetricsConfig",
    "TimeWindow",
    "OperatorMetrics",
    "GeneralMetrics",
    "QueueMetrics",
    "PeriodComparison",
    "RowIssue",
    "IssueCounts",
    "SimilarNameGroup",
    "QualityReport",
    "SourceInfo",
    "SyncStats",
    "SyncStatus",
    "SyncResult",
    "CacheStats",
]
