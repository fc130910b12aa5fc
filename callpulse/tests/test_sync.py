"""
Tests for SyncOrchestrator.

Upstream collaborators are StaticRowSource instances or AsyncMocks, so no
network access is needed. Auto-sync tests use sub-second intervals.
"""

import asyncio

import pytest

from callpulse.core.config import Settings
from callpulse.models import SyncState
from callpulse.services.cache import TieredCache
from callpulse.services.pipeline import (
    CACHE_KEY_GENERAL_METRICS,
    CACHE_KEY_OPERATOR_METRICS,
    CACHE_KEY_QUALITY_REPORT,
    CACHE_KEY_QUEUE_METRICS,
    CACHE_KEY_RECORDS,
)
from callpulse.services.sources import StaticRowSource
from callpulse.services.sync import ALREADY_RUNNING, SNAPSHOT_TTL_INTERVALS, SyncOrchestrator
from callpulse.tests.conftest import SAMPLE_HEADER


@pytest.fixture
def orchestrator(pipeline, static_source):
    return SyncOrchestrator(pipeline, static_source, default_source_id='calls')


class TestSyncNow:

    @pytest.mark.asyncio
    async def test_successful_run_publishes_outputs(self, orchestrator, pipeline):
        result = await orchestrator.sync_now()

        assert result.success is True
        assert result.errors == []
        assert result.stats.source_id == 'calls'
        assert result.stats.rows_fetched == 6
        assert result.stats.records_built == 6
        assert result.stats.rows_rejected == 0
        assert result.stats.operators == 4
        assert result.stats.quality_score == 100.0

        for key in (
            CACHE_KEY_RECORDS,
            CACHE_KEY_OPERATOR_METRICS,
            CACHE_KEY_GENERAL_METRICS,
            CACHE_KEY_QUEUE_METRICS,
            CACHE_KEY_QUALITY_REPORT,
            'rows:calls',
        ):
            assert pipeline.cache.has(key), key

        general = pipeline.read_cached(CACHE_KEY_GENERAL_METRICS)
        assert general.total_calls == 6
        ranked = pipeline.read_cached(CACHE_KEY_OPERATOR_METRICS)
        assert ranked[0].operator == 'João Oliveira'

    @pytest.mark.asyncio
    async def test_status_after_success(self, orchestrator):
        await orchestrator.sync_now()
        status = orchestrator.get_status()

        assert status.state == SyncState.IDLE
        assert status.total_runs == 1
        assert status.successful_runs == 1
        assert status.failed_runs == 0
        assert status.last_sync_at is not None
        assert status.last_stats.records_built == 6
        assert status.errors == []

    @pytest.mark.asyncio
    async def test_outputs_are_flushed_to_durable_store(self, orchestrator, memory_store):
        await orchestrator.sync_now()
        assert 'callpulse:general_metrics' in memory_store.data
        assert 'callpulse:operator_metrics' in memory_store.data

    @pytest.mark.asyncio
    async def test_first_listed_source_is_used_by_default(self, pipeline, mock_source):
        orchestrator = SyncOrchestrator(pipeline, mock_source)
        result = await orchestrator.sync_now()

        assert result.success is True
        mock_source.list_sources.assert_awaited_once()
        mock_source.get_rows.assert_awaited_once_with('calls')

    @pytest.mark.asyncio
    async def test_explicit_source_id(self, pipeline, mock_source):
        orchestrator = SyncOrchestrator(pipeline, mock_source, default_source_id='calls')
        await orchestrator.sync_now('february')
        mock_source.get_rows.assert_awaited_once_with('february')
        mock_source.list_sources.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_request_is_rejected(self, pipeline, mock_source, sample_grid):
        gate = asyncio.Event()

        async def slow_rows(source_id):
            await gate.wait()
            return sample_grid

        mock_source.get_rows.side_effect = slow_rows
        orchestrator = SyncOrchestrator(pipeline, mock_source, default_source_id='calls')

        first = asyncio.create_task(orchestrator.sync_now())
        await asyncio.sleep(0)
        assert orchestrator.is_running
        assert orchestrator.get_status().state == SyncState.RUNNING

        rejected = await orchestrator.sync_now()
        assert rejected.success is False
        assert rejected.errors == [ALREADY_RUNNING]

        gate.set()
        result = await first
        assert result.success is True
        assert orchestrator.get_status().total_runs == 1
        assert mock_source.get_rows.await_count == 1


class TestSyncFailures:

    @pytest.mark.asyncio
    async def test_unreachable_upstream(self, orchestrator, static_source):
        static_source.available = False
        result = await orchestrator.sync_now()

        assert result.success is False
        assert result.errors == ['Upstream source is unavailable']
        status = orchestrator.get_status()
        assert status.failed_runs == 1
        assert status.last_sync_at is None
        assert status.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_failure_keeps_last_good_snapshot(self, orchestrator, static_source, pipeline):
        await orchestrator.sync_now()
        last_sync = orchestrator.get_status().last_sync_at

        static_source.available = False
        result = await orchestrator.sync_now()

        assert result.success is False
        assert pipeline.read_cached(CACHE_KEY_GENERAL_METRICS).total_calls == 6
        status = orchestrator.get_status()
        assert status.last_sync_at == last_sync
        assert status.successful_runs == 1
        assert status.failed_runs == 1
        assert status.errors == ['Upstream source is unavailable']

    @pytest.mark.asyncio
    async def test_snapshot_outlives_cache_expiry(
        self, pipeline, static_source, settings, memory_store, fake_clock,
    ):
        pipeline.cache = TieredCache(
            default_ttl=settings.cache_default_ttl_seconds, store=memory_store, clock=fake_clock,
        )
        orchestrator = SyncOrchestrator.from_settings(pipeline, static_source, settings)
        await orchestrator.sync_now()

        fake_clock.advance(settings.sync_interval_minutes * 60 * SNAPSHOT_TTL_INTERVALS + 1)
        assert not pipeline.cache.has(CACHE_KEY_OPERATOR_METRICS)

        static_source.available = False
        result = await orchestrator.sync_now()

        assert result.success is False
        ranked = pipeline.read_cached(CACHE_KEY_OPERATOR_METRICS)
        assert ranked[0].operator == 'João Oliveira'
        assert pipeline.read_cached(CACHE_KEY_GENERAL_METRICS).total_calls == 6
        assert pipeline.read_cached(CACHE_KEY_QUALITY_REPORT).quality_score == 100.0

    @pytest.mark.asyncio
    async def test_published_outputs_outlive_the_sync_interval(
        self, pipeline, static_source, settings, fake_clock,
    ):
        pipeline.cache = TieredCache(default_ttl=settings.cache_default_ttl_seconds, clock=fake_clock)
        orchestrator = SyncOrchestrator.from_settings(pipeline, static_source, settings)
        await orchestrator.sync_now()

        fake_clock.advance(settings.sync_interval_minutes * 60 * 2)
        assert pipeline.cache.has(CACHE_KEY_GENERAL_METRICS)

    @pytest.mark.asyncio
    async def test_upstream_timeout(self, pipeline, mock_source):
        async def hanging_rows(source_id):
            await asyncio.sleep(1)
            return []

        mock_source.get_rows.side_effect = hanging_rows
        orchestrator = SyncOrchestrator(
            pipeline, mock_source, default_source_id='calls', upstream_timeout=0.01,
        )
        result = await orchestrator.sync_now()

        assert result.success is False
        assert 'timed out' in result.errors[0]
        assert not orchestrator.is_running

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded(self, pipeline, mock_source):
        mock_source.get_rows.side_effect = RuntimeError('sheet exploded')
        orchestrator = SyncOrchestrator(pipeline, mock_source, default_source_id='calls')
        result = await orchestrator.sync_now()

        assert result.success is False
        assert result.errors == ['Unexpected sync error: sheet exploded']

    @pytest.mark.asyncio
    async def test_header_only_grid_is_a_failure(self, pipeline):
        source = StaticRowSource({'calls': [list(SAMPLE_HEADER)]})
        orchestrator = SyncOrchestrator(pipeline, source, default_source_id='calls')
        result = await orchestrator.sync_now()

        assert result.success is False
        assert 'no data rows' in result.errors[0]
        assert not pipeline.cache.has(CACHE_KEY_GENERAL_METRICS)

    @pytest.mark.asyncio
    async def test_no_sources_listed(self, pipeline, mock_source):
        mock_source.list_sources.return_value = []
        orchestrator = SyncOrchestrator(pipeline, mock_source)
        result = await orchestrator.sync_now()

        assert result.success is False
        assert result.errors == ['No upstream sources available']

    @pytest.mark.asyncio
    async def test_status_errors_reset_after_success(self, orchestrator, static_source):
        static_source.available = False
        await orchestrator.sync_now()
        await orchestrator.sync_now()
        assert len(orchestrator.get_status().errors) == 2

        static_source.available = True
        await orchestrator.sync_now()
        assert orchestrator.get_status().errors == []


class TestAutoSync:

    @pytest.mark.asyncio
    async def test_runs_on_interval_until_stopped(self, pipeline, static_source):
        # 0.0005 minutes = 30ms
        orchestrator = SyncOrchestrator(
            pipeline, static_source, default_source_id='calls', interval_minutes=0.0005,
        )
        orchestrator.start_auto_sync()
        assert orchestrator.auto_sync_active
        assert orchestrator.get_status().auto_sync is True

        await asyncio.sleep(0.15)
        orchestrator.stop_auto_sync()
        # let a shielded in-flight run settle
        await asyncio.sleep(0.05)

        status = orchestrator.get_status()
        assert status.successful_runs >= 1
        assert status.auto_sync is False
        assert status.next_sync_at is None
        assert not orchestrator.auto_sync_active

    @pytest.mark.asyncio
    async def test_next_sync_is_scheduled(self, orchestrator):
        orchestrator.start_auto_sync(interval_minutes=10)
        await asyncio.sleep(0)
        status = orchestrator.get_status()
        assert status.interval_minutes == 10
        assert status.next_sync_at is not None
        orchestrator.stop_auto_sync()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, orchestrator):
        orchestrator.start_auto_sync()
        task = orchestrator._auto_task
        orchestrator.start_auto_sync()
        assert orchestrator._auto_task is task
        orchestrator.stop_auto_sync()

    @pytest.mark.asyncio
    async def test_update_interval_restarts_timer(self, orchestrator):
        orchestrator.start_auto_sync()
        task = orchestrator._auto_task

        orchestrator.update_interval(15)

        assert orchestrator.get_status().interval_minutes == 15
        assert orchestrator.auto_sync_active
        assert orchestrator._auto_task is not task
        orchestrator.stop_auto_sync()

    def test_update_interval_while_stopped(self, orchestrator):
        orchestrator.update_interval(2)
        assert orchestrator.get_status().interval_minutes == 2
        assert not orchestrator.auto_sync_active

    @pytest.mark.parametrize('interval', [0, -1])
    def test_invalid_interval(self, orchestrator, interval):
        with pytest.raises(ValueError):
            orchestrator.update_interval(interval)

    def test_from_settings(self, pipeline, static_source, settings):
        orchestrator = SyncOrchestrator.from_settings(pipeline, static_source, settings)
        assert orchestrator.get_status().interval_minutes == settings.sync_interval_minutes
        assert orchestrator.upstream_timeout == settings.upstream_timeout_seconds
        assert orchestrator.cache_ttl == settings.sync_interval_minutes * 60 * SNAPSHOT_TTL_INTERVALS

    def test_explicit_snapshot_ttl(self, pipeline, static_source):
        settings = Settings(database_url=None, snapshot_ttl_seconds=42)
        orchestrator = SyncOrchestrator.from_settings(pipeline, static_source, settings)
        assert orchestrator.cache_ttl == 42
