"""
CallPulse Services Module

Business logic for the call analytics pipeline. Components are plain classes
and functions with no module-level state; the Pipeline context object wires
them together.

Services:
- duration: multi-format duration parsing and formatting
- similarity: Levenshtein similarity and near-duplicate lookup
- normalization: operator/status/queue/duration normalization with alias tables
- records: header-driven column mapping and CallRecord building
- metrics: operator, queue and aggregate KPIs
- quality: dataset quality audit
- cache: tiered TTL cache with single-flight fetches and a durable mirror
- sources: upstream row sources (Google Sheets, in-memory)
- ingestion: CSV uploads into raw grids
- export: CSV rendering of KPI tables
- pipeline: the Pipeline context object
- sync: SyncOrchestrator (manual and timed runs)
"""

# =============================================================================
# Leaf utilities
# =============================================================================

from callpulse.services.duration import (
    parse_duration,
    format_duration,
    detect_duration_format,
)
from callpulse.services.similarity import (
    levenshtein_distance,
    similarity,
    find_similar,
)

# =============================================================================
# Normalization and records
# =============================================================================

from callpulse.services.normalization import (
    FieldNormalizer,
    NormalizationRules,
)
from callpulse.services.records import (
    CallRecordBuilder,
    build_column_map,
    parse_timestamp,
)

# =============================================================================
# Metrics and quality
# =============================================================================

from callpulse.services.metrics import (
    MetricsEngine,
    filter_window,
)
from callpulse.services.quality import DataQualityAuditor
from callpulse.services.export import operators_to_csv, queues_to_csv

# =============================================================================
# Cache, sources, orchestration
# =============================================================================

from callpulse.services.cache import TieredCache, MISSING
from callpulse.services.sources import (
    RowSource,
    GoogleSheetsSource,
    StaticRowSource,
)
from callpulse.services.ingestion import parse_csv
from callpulse.services.pipeline import Pipeline, ProcessedDataset
from callpulse.services.sync import SyncOrchestrator

__all__ = [
    "parse_duration",
    "format_duration",
    "detect_duration_format",
    "levenshtein_distance",
    "similarity",
    "find_similar",
    "FieldNormalizer",
    "NormalizationRules",
    "CallRecordBuilder",
    "build_column_map",
    "parse_timestamp",
    "MetricsEngine",
    "filter_window",
    "DataQualityAuditor",
    "operators_to_csv",
    "queues_to_csv",
    "TieredCache",
    "MISSING",
    "RowSource",
    "GoogleSheetsSource",
    "StaticRowSource",
    "parse_csv",
    "Pipeline",
    "ProcessedDataset",
    "SyncOrchestrator",
]
