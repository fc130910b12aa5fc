"""
Pydantic models for the CallPulse pipeline and its API.

Groups:
- Normalization: NormalizationResult
- Records: ColumnMap, CallRecord, BuildResult
- Metrics: MetricsConfig, TimeWindow, OperatorMetrics, GeneralMetrics,
  QueueMetrics, PeriodComparison
- Data quality: RowIssue, IssueCounts, SimilarNameGroup, QualityReport
- Sources and sync: SourceInfo, SyncStats, SyncStatus, SyncResult
- Cache: CacheStats

All models use Pydantic v2 syntax. CallRecord is frozen: records are created once
by CallRecordBuilder and never mutated afterwards.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from callpulse.models.enums import (
    CallStatus,
    FieldKind,
    PeriodOfDay,
    SyncState,
    Trend,
)


# A spreadsheet data row: cell strings in source column order.
RawRow = List[str]

WEEKDAY_NAMES: List[str] = [
    'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday',
]


# =============================================================================
# Normalization
# =============================================================================


class NormalizationResult(BaseModel):
    """
    Outcome of normalizing one raw field value.

    Never raised as an error: an unusable value yields is_valid=False with
    warnings and suggestions aimed at a human reviewer.
    """
    kind: FieldKind
    original_value: str
    normalized_value: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    is_valid: bool
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


# =============================================================================
# Records
# =============================================================================


class ColumnMap(BaseModel):
    """
    Field name -> column index, built once per dataset from its header row.

    None means the dataset has no column for that field.
    """
    date: Optional[int] = None
    time: Optional[int] = None
    operator: Optional[int] = None
    status: Optional[int] = None
    queue: Optional[int] = None
    duration: Optional[int] = None
    wait: Optional[int] = None
    satisfaction: Optional[int] = None
    customer: Optional[int] = None
    notes: Optional[int] = None
    id: Optional[int] = None

    def cell(self, row: RawRow, field: str) -> str:
        """Return the trimmed cell for `field`, or '' when unmapped or absent."""
        index = getattr(self, field)
        if index is None or index >= len(row):
            return ''
        value = row[index]
        return '' if value is None else str(value).strip()

    def missing_columns(self, fields: List[str]) -> List[str]:
        return [name for name in fields if getattr(self, name) is None]


class CallRecord(BaseModel):
    """
    One normalized call event.

    Attributes:
        id: Source id when present, else derived from row index and timestamp.
        timestamp: Local date and time of the call.
        operator: Canonical operator name.
        queue: Canonical queue name ("General" when absent).
        status: Canonical outcome, never the raw string.
        duration_seconds: Talk time; typically 0 when not answered.
        wait_seconds: Time in queue before pickup or hang-up.
        satisfaction: Optional rating in [1, 5].
        row_index: 1-based data row position in the source grid.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    operator: str = Field(..., min_length=1)
    queue: str = 'General'
    status: CallStatus
    duration_seconds: int = Field(default=0, ge=0)
    wait_seconds: int = Field(default=0, ge=0)
    satisfaction: Optional[float] = Field(default=None, ge=1.0, le=5.0)
    customer: Optional[str] = None
    notes: Optional[str] = None
    row_index: int = Field(default=0, ge=0)

    @computed_field
    @property
    def period_of_day(self) -> PeriodOfDay:
        hour = self.timestamp.hour
        if 6 <= hour < 12:
            return PeriodOfDay.MORNING
        if 12 <= hour < 18:
            return PeriodOfDay.AFTERNOON
        return PeriodOfDay.EVENING

    @computed_field
    @property
    def day_of_week(self) -> str:
        return WEEKDAY_NAMES[self.timestamp.weekday()]

    @computed_field
    @property
    def is_weekend(self) -> bool:
        return self.timestamp.weekday() >= 5


class BuildResult(BaseModel):
    """Records built from a grid, in source order, plus rejection counts."""
    records: List[CallRecord] = Field(default_factory=list)
    rows_processed: int = Field(default=0, ge=0)
    rows_rejected: int = Field(default=0, ge=0)
    column_map: ColumnMap = Field(default_factory=ColumnMap)


# =============================================================================
# Metrics
# =============================================================================


class MetricsConfig(BaseModel):
    """Runtime-mutable metric configuration."""
    model_config = ConfigDict(validate_assignment=True)

    service_level_target_seconds: int = Field(default=30, ge=0)
    working_hours: float = Field(default=8.0, ge=0)
    break_hours: float = Field(default=1.0, ge=0)


class TimeWindow(BaseModel):
    """Half-open [start, end) window. A None bound is unbounded."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment >= self.end:
            return False
        return True


class OperatorMetrics(BaseModel):
    """
    KPIs for one operator over a window.

    All ratios are percentages in [0, 100] except productivity (calls/hour).
    Every ratio is 0 when its denominator is 0.
    """
    operator: str = ''
    total_calls: int = 0
    answered_calls: int = 0
    missed_calls: int = 0
    abandoned_calls: int = 0
    waiting_calls: int = 0
    total_talk_seconds: int = 0
    average_talk_seconds: float = 0.0
    total_wait_seconds: int = 0
    average_wait_seconds: float = 0.0
    service_level: float = 0.0
    efficiency: float = 0.0
    availability: float = 0.0
    productivity: float = 0.0
    adherence: float = 0.0
    first_call_resolution: float = 0.0
    satisfaction_proxy: float = 0.0
    average_satisfaction: Optional[float] = None
    score: float = 0.0
    ranking: int = Field(default=0, ge=0, description="1-based rank; 0 when unranked")
    percentile: int = Field(default=0, ge=0, le=100)
    trend: Trend = Trend.STABLE
    improvement: float = 0.0


class GeneralMetrics(BaseModel):
    """Aggregate KPIs over every call in a window."""
    total_calls: int = 0
    answered_calls: int = 0
    missed_calls: int = 0
    abandoned_calls: int = 0
    waiting_calls: int = 0
    answer_rate: float = 0.0
    abandonment_rate: float = 0.0
    service_level: float = 0.0
    average_talk_seconds: float = 0.0
    average_wait_seconds: float = 0.0
    average_satisfaction: Optional[float] = None
    active_operators: int = 0
    active_queues: int = 0
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    peak_hour: Optional[int] = Field(default=None, ge=0, le=23)
    hourly_distribution: List[int] = Field(default_factory=lambda: [0] * 24)
    period_distribution: Dict[str, int] = Field(default_factory=dict)
    weekday_distribution: Dict[str, int] = Field(default_factory=dict)
    volume_change: float = Field(
        default=0.0,
        description="Percent change in call volume from the first half of the window to the second",
    )


class QueueMetrics(BaseModel):
    """Per-queue totals and ratios."""
    queue: str
    total_calls: int = 0
    answered_calls: int = 0
    missed_calls: int = 0
    abandoned_calls: int = 0
    answer_rate: float = 0.0
    service_level: float = 0.0
    average_wait_seconds: float = 0.0
    average_talk_seconds: float = 0.0
    operators: int = 0


class PeriodComparison(BaseModel):
    """Deltas between a current and a previous window."""
    current_total: int = 0
    previous_total: int = 0
    total_calls_change: float = Field(default=0.0, description="Percent change")
    answer_rate_change: float = Field(default=0.0, description="Percentage points")
    average_talk_change: float = Field(default=0.0, description="Seconds")
    average_satisfaction_change: Optional[float] = None


# =============================================================================
# Data Quality
# =============================================================================


class RowIssue(BaseModel):
    """Why a specific row was flagged."""
    field: str = Field(..., description="Field with the issue")
    message: str = Field(..., description="Human-readable explanation")
    row_number: Optional[int] = Field(
        default=None,
        ge=1,
        description="1-based data row number (header excluded)",
    )


class IssueCounts(BaseModel):
    duplicates: int = 0
    inconsistencies: int = 0
    missing: int = 0
    format_errors: int = 0
    out_of_range: int = 0

    @property
    def scored_total(self) -> int:
        """Issues that count against the quality score."""
        return self.duplicates + self.inconsistencies + self.missing + self.format_errors


class SimilarNameGroup(BaseModel):
    """Distinct operator spellings that likely refer to the same person."""
    canonical: str
    variants: List[str] = Field(default_factory=list)
    similarity: float = Field(..., ge=0.0, le=1.0)


class QualityReport(BaseModel):
    """Result of one DataQualityAuditor run; never updated incrementally."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total_records": 10,
                "valid_records": 9,
                "invalid_records": 1,
                "quality_score": 86.0,
                "issue_counts": {
                    "duplicates": 1,
                    "inconsistencies": 0,
                    "missing": 1,
                    "format_errors": 0,
                    "out_of_range": 0,
                },
                "recommendations": [
                    "Consolidate duplicate call entries",
                    "Enforce required fields (date, time, operator, status) at the source",
                ],
            }
        }
    )

    total_records: int = Field(default=0, ge=0)
    valid_records: int = Field(default=0, ge=0)
    invalid_records: int = Field(default=0, ge=0)
    quality_score: float = Field(default=0.0, ge=0.0, le=100.0)
    issue_counts: IssueCounts = Field(default_factory=IssueCounts)
    recommendations: List[str] = Field(default_factory=list)
    row_issues: List[RowIssue] = Field(default_factory=list)
    suspected_duplicate_names: List[SimilarNameGroup] = Field(default_factory=list)
    audited_at: datetime = Field(default_factory=datetime.now)


# =============================================================================
# Sources and Sync
# =============================================================================


class SourceInfo(BaseModel):
    """An upstream dataset the sync can pull from."""
    id: str
    name: str = ''
    modified_at: Optional[datetime] = None


class SyncStats(BaseModel):
    source_id: str
    rows_fetched: int = 0
    records_built: int = 0
    rows_rejected: int = 0
    operators: int = 0
    quality_score: float = 0.0
    duration_ms: int = 0
    finished_at: datetime = Field(default_factory=datetime.now)


class SyncStatus(BaseModel):
    """What the UI shows next to its last good snapshot."""
    state: SyncState = SyncState.IDLE
    last_sync_at: Optional[datetime] = Field(default=None, description="Last successful run")
    last_attempt_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    auto_sync: bool = False
    interval_minutes: float = 5.0
    errors: List[str] = Field(default_factory=list)
    last_stats: Optional[SyncStats] = None
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0

    @computed_field
    @property
    def is_running(self) -> bool:
        return self.state == SyncState.RUNNING


class SyncResult(BaseModel):
    """Outcome of one sync_now() call: stats on success, errors otherwise."""
    success: bool
    stats: Optional[SyncStats] = None
    errors: List[str] = Field(default_factory=list)


# =============================================================================
# Cache
# =============================================================================


class CacheStats(BaseModel):
    size: int = 0
    max_size: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    pending_writes: int = 0
    hit_rate: float = 0.0
    keys: List[str] = Field(default_factory=list)
