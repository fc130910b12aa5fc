"""
Pipeline context object.

Owns one instance of each pipeline component, wired by constructor injection.
The application keeps a single Pipeline on app.state; tests build isolated
ones with Pipeline.from_settings(Settings(...), MemoryCacheStore()).

Data flow for one grid:
    raw rows -> CallRecordBuilder -> CallRecords -> MetricsEngine -> KPIs
    raw rows -> DataQualityAuditor -> QualityReport        (independent path)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import TypeAdapter

from callpulse.core.config import Settings, get_settings
from callpulse.core.storage import CacheStore
from callpulse.models import (
    BuildResult,
    CachePriority,
    CallRecord,
    GeneralMetrics,
    MetricsConfig,
    OperatorMetrics,
    QualityReport,
    QueueMetrics,
    RawRow,
)
from callpulse.services.cache import TieredCache
from callpulse.services.metrics import MetricsEngine
from callpulse.services.normalization import FieldNormalizer, NormalizationRules
from callpulse.services.quality import DataQualityAuditor
from callpulse.services.records import CallRecordBuilder

logger = logging.getLogger(__name__)


# =============================================================================
# Cache keys written by SyncOrchestrator
# =============================================================================

CACHE_KEY_RECORDS = 'records'
CACHE_KEY_OPERATOR_METRICS = 'operator_metrics'
CACHE_KEY_GENERAL_METRICS = 'general_metrics'
CACHE_KEY_QUEUE_METRICS = 'queue_metrics'
CACHE_KEY_QUALITY_REPORT = 'quality_report'
CACHE_KEY_ROWS_PREFIX = 'rows:'

_ADAPTERS = {
    CACHE_KEY_RECORDS: TypeAdapter(List[CallRecord]),
    CACHE_KEY_OPERATOR_METRICS: TypeAdapter(List[OperatorMetrics]),
    CACHE_KEY_GENERAL_METRICS: TypeAdapter(GeneralMetrics),
    CACHE_KEY_QUEUE_METRICS: TypeAdapter(List[QueueMetrics]),
    CACHE_KEY_QUALITY_REPORT: TypeAdapter(QualityReport),
}


@dataclass
class ProcessedDataset:
    """Everything derived from one raw grid."""
    build: BuildResult
    operator_metrics: List[OperatorMetrics]
    general: GeneralMetrics
    queues: List[QueueMetrics]
    quality: QualityReport
    recommendations: List[str] = field(default_factory=list)

    @property
    def records(self) -> List[CallRecord]:
        return self.build.records


@dataclass
class Pipeline:
    normalizer: FieldNormalizer
    builder: CallRecordBuilder
    engine: MetricsEngine
    auditor: DataQualityAuditor
    cache: TieredCache
    # last value published per key; outlives cache expiry until replaced
    snapshot: Dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[CacheStore] = None,
    ) -> 'Pipeline':
        """
        Build a Pipeline from Settings.

        Args:
            settings: Defaults to get_settings().
            store: Durable store for the cache; None keeps it process-local.
        """
        settings = settings or get_settings()

        if settings.normalization_rules_path:
            rules = NormalizationRules.from_file(settings.normalization_rules_path)
        else:
            rules = NormalizationRules()

        normalizer = FieldNormalizer(rules)
        return cls(
            normalizer=normalizer,
            builder=CallRecordBuilder(normalizer),
            engine=MetricsEngine(MetricsConfig(
                service_level_target_seconds=settings.service_level_target_seconds,
                working_hours=settings.working_hours,
                break_hours=settings.break_hours,
            )),
            auditor=DataQualityAuditor(rules),
            cache=TieredCache.from_settings(settings, store),
        )

    def process(self, grid: Sequence[RawRow]) -> ProcessedDataset:
        """Run the synchronous path over a grid (header first)."""
        build = self.builder.build_all(grid)
        general = self.engine.compute_aggregate(build.records)
        return ProcessedDataset(
            build=build,
            operator_metrics=self.engine.rank_operators(build.records),
            general=general,
            queues=self.engine.compute_queue_metrics(build.records),
            quality=self.auditor.audit_grid(grid),
            recommendations=self.engine.build_recommendations(general),
        )

    def publish(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        priority: CachePriority = CachePriority.MEDIUM,
    ) -> None:
        """Write a sync output to the cache and remember it as the last good value."""
        self.cache.set(key, value, ttl, priority)
        self.snapshot[key] = value

    def read_cached(self, key: str) -> Any:
        """
        Return a cached pipeline output as typed models, or None.

        Values rehydrated from the durable store come back as plain JSON and
        are validated into their models here. Once the cache entry expires the
        last published value is served until a later publish replaces it.
        """
        value = self.cache.get(key)
        if value is None:
            value = self.snapshot.get(key)
        if value is None:
            return None
        adapter = _ADAPTERS.get(key)
        return adapter.validate_python(value) if adapter is not None else value
