"""
Sync Orchestrator

Pulls rows from an upstream RowSource, runs them through the Pipeline and
publishes the outputs into the TieredCache, on demand and on a fixed timer.

Run state machine: Idle -> Running -> Idle. A sync_now() issued while a run
is in progress returns immediately with "Sync already running"; it is not
queued.

Each run:
1. Connectivity check (UpstreamUnavailable when it fails)
2. Resolve the source id (explicit, configured default, or first listed)
3. Fetch rows, bounded by the upstream timeout (FetchTimeout)
4. Pipeline.process(grid): records, operator/queue/aggregate KPIs, quality
5. Write outputs to the cache and flush the durable tier

Any failure ends the run in Idle with the error recorded on SyncStatus.
Outputs go through Pipeline.publish, so they are only replaced by a
successful run and stay readable after their cache entries expire.

Auto-sync sleeps a fixed interval between runs. Manual runs do not reset the
timer. stop_auto_sync() cancels the timer; a run already in progress is
shielded and finishes normally.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from callpulse.core.config import Settings
from callpulse.core.errors import CallPulseError, UpstreamUnavailable, with_timeout
from callpulse.models import (
    CachePriority,
    RawRow,
    SyncResult,
    SyncState,
    SyncStats,
    SyncStatus,
)
from callpulse.services.pipeline import (
    CACHE_KEY_GENERAL_METRICS,
    CACHE_KEY_OPERATOR_METRICS,
    CACHE_KEY_QUALITY_REPORT,
    CACHE_KEY_QUEUE_METRICS,
    CACHE_KEY_RECORDS,
    CACHE_KEY_ROWS_PREFIX,
    Pipeline,
    ProcessedDataset,
)
from callpulse.services.sources import RowSource

logger = logging.getLogger(__name__)

ALREADY_RUNNING = 'Sync already running'
MAX_STATUS_ERRORS = 20
# published outputs outlive this many auto-sync intervals in the cache
SNAPSHOT_TTL_INTERVALS = 3


class SyncOrchestrator:
    """
    Drives the pipeline from an upstream source.

    Args:
        pipeline: Components and cache to run and publish into.
        source: Upstream RowSource.
        default_source_id: Source used when sync_now() gets none.
        interval_minutes: Auto-sync interval.
        upstream_timeout: Seconds allowed for each upstream call.
        cache_ttl: TTL of published outputs (cache default when None).
        clock: Returns the current local time; injectable for tests.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        source: RowSource,
        default_source_id: Optional[str] = None,
        interval_minutes: float = 5.0,
        upstream_timeout: Optional[float] = 20.0,
        cache_ttl: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.pipeline = pipeline
        self.source = source
        self.default_source_id = default_source_id
        self.upstream_timeout = upstream_timeout
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._auto_task: Optional[asyncio.Task] = None
        self.status = SyncStatus(interval_minutes=interval_minutes)

    @classmethod
    def from_settings(cls, pipeline: Pipeline, source: RowSource, settings: Settings) -> 'SyncOrchestrator':
        snapshot_ttl = settings.snapshot_ttl_seconds
        if snapshot_ttl is None:
            snapshot_ttl = settings.sync_interval_minutes * 60 * SNAPSHOT_TTL_INTERVALS
        return cls(
            pipeline=pipeline,
            source=source,
            default_source_id=settings.spreadsheet_id,
            interval_minutes=settings.sync_interval_minutes,
            upstream_timeout=settings.upstream_timeout_seconds,
            cache_ttl=snapshot_ttl,
        )

    @property
    def is_running(self) -> bool:
        return self.status.state == SyncState.RUNNING

    @property
    def auto_sync_active(self) -> bool:
        return self._auto_task is not None and not self._auto_task.done()

    def get_status(self) -> SyncStatus:
        return self.status.model_copy(deep=True)

    # =========================================================================
    # Manual runs
    # =========================================================================

    async def sync_now(self, source_id: Optional[str] = None) -> SyncResult:
        """
        Run one sync. Never raises; failures come back in SyncResult.errors.

        Args:
            source_id: Upstream source to pull; defaults as described above.
        """
        if self.is_running:
            logger.info("Sync requested while another run is in progress; rejected")
            return SyncResult(success=False, errors=[ALREADY_RUNNING])

        self.status.state = SyncState.RUNNING
        self.status.total_runs += 1
        self.status.last_attempt_at = self._clock()
        started = time.perf_counter()
        logger.info(f"Sync started (source={source_id or self.default_source_id or 'auto'})")

        errors: List[str] = []
        stats: Optional[SyncStats] = None
        try:
            stats = await self._run(source_id, started)
        except CallPulseError as e:
            logger.warning(f"Sync failed: {e}")
            errors.append(str(e))
        except Exception as e:
            logger.error(f"Sync failed with unexpected error: {e}", exc_info=True)
            errors.append(f"Unexpected sync error: {e}")
        finally:
            self.status.state = SyncState.IDLE

        if stats is not None:
            self.status.successful_runs += 1
            self.status.last_sync_at = stats.finished_at
            self.status.last_stats = stats
            self.status.errors = []
            logger.info(
                f"Sync finished: {stats.records_built} records from {stats.rows_fetched} rows, "
                f"{stats.operators} operators, quality {stats.quality_score:.1f} "
                f"in {stats.duration_ms}ms"
            )
            return SyncResult(success=True, stats=stats)

        self.status.failed_runs += 1
        self.status.errors = (self.status.errors + errors)[-MAX_STATUS_ERRORS:]
        return SyncResult(success=False, errors=errors)

    async def _run(self, source_id: Optional[str], started: float) -> SyncStats:
        connected = await with_timeout(
            self.source.check_connectivity(),
            self.upstream_timeout,
            'Upstream connectivity check',
        )
        if not connected:
            raise UpstreamUnavailable(source_id=source_id)

        source_id = source_id or self.default_source_id or await self._first_source_id()

        grid = await with_timeout(
            self.source.get_rows(source_id),
            self.upstream_timeout,
            f"Fetching rows for source '{source_id}'",
        )
        if len(grid) < 2:
            raise UpstreamUnavailable(f"Source '{source_id}' returned no data rows", source_id=source_id)

        dataset = self.pipeline.process(grid)
        self._publish(source_id, grid, dataset)
        await self.pipeline.cache.flush()

        return SyncStats(
            source_id=source_id,
            rows_fetched=len(grid) - 1,
            records_built=len(dataset.records),
            rows_rejected=dataset.build.rows_rejected,
            operators=len(dataset.operator_metrics),
            quality_score=dataset.quality.quality_score,
            duration_ms=int((time.perf_counter() - started) * 1000),
            finished_at=self._clock(),
        )

    async def _first_source_id(self) -> str:
        sources = await with_timeout(
            self.source.list_sources(),
            self.upstream_timeout,
            'Listing upstream sources',
        )
        if not sources:
            raise UpstreamUnavailable("No upstream sources available")
        return sources[0].id

    def _publish(self, source_id: str, grid: List[RawRow], dataset: ProcessedDataset) -> None:
        publish = self.pipeline.publish
        ttl = self.cache_ttl
        publish(CACHE_KEY_OPERATOR_METRICS, dataset.operator_metrics, ttl, CachePriority.HIGH)
        publish(CACHE_KEY_GENERAL_METRICS, dataset.general, ttl, CachePriority.HIGH)
        publish(CACHE_KEY_QUEUE_METRICS, dataset.queues, ttl, CachePriority.HIGH)
        publish(CACHE_KEY_RECORDS, dataset.records, ttl, CachePriority.MEDIUM)
        publish(CACHE_KEY_QUALITY_REPORT, dataset.quality, ttl, CachePriority.MEDIUM)
        # raw rows are not served by the API; cache only
        self.pipeline.cache.set(f"{CACHE_KEY_ROWS_PREFIX}{source_id}", grid, ttl, CachePriority.LOW)

    # =========================================================================
    # Auto-sync
    # =========================================================================

    def start_auto_sync(self, interval_minutes: Optional[float] = None) -> None:
        """
        Start the fixed-interval timer. Must be called with a running event loop.

        A timer that is already running is left untouched; use
        update_interval() to change its interval.
        """
        if interval_minutes is not None:
            if interval_minutes <= 0:
                raise ValueError("interval_minutes must be positive")
            self.status.interval_minutes = interval_minutes

        if self.auto_sync_active:
            logger.info("Auto-sync already running")
            return

        self._auto_task = asyncio.get_running_loop().create_task(self._auto_loop())
        self.status.auto_sync = True
        logger.info(f"Auto-sync started every {self.status.interval_minutes:g} minutes")

    def stop_auto_sync(self) -> None:
        """Cancel the timer. An in-flight run is not aborted."""
        if self._auto_task is not None:
            self._auto_task.cancel()
            self._auto_task = None
            logger.info("Auto-sync stopped")
        self.status.auto_sync = False
        self.status.next_sync_at = None

    def update_interval(self, interval_minutes: float) -> None:
        """Change the interval, restarting the timer when it is running."""
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        was_active = self.auto_sync_active
        self.status.interval_minutes = interval_minutes
        if was_active:
            self.stop_auto_sync()
            self.start_auto_sync()

    async def _auto_loop(self) -> None:
        interval = self.status.interval_minutes * 60
        while True:
            self.status.next_sync_at = self._clock() + timedelta(seconds=interval)
            await asyncio.sleep(interval)
            # a cancelled timer lets the in-flight run finish
            await asyncio.shield(self.sync_now())
