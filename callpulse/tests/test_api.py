"""
Test Module for the HTTP API.

Requests go through FastAPI's TestClient without entering the lifespan; each
test wires its own Pipeline and SyncOrchestrator onto app.state. Auto-sync
endpoints use a MagicMock orchestrator so no timer outlives a request.
"""

from io import StringIO
from unittest.mock import AsyncMock, MagicMock

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from callpulse.main import app
from callpulse.models import SyncResult, SyncStatus
from callpulse.services.sources import StaticRowSource
from callpulse.services.sync import ALREADY_RUNNING, SyncOrchestrator
from callpulse.tests.conftest import grid_to_csv


@pytest.fixture
def orchestrator(pipeline, static_source) -> SyncOrchestrator:
    return SyncOrchestrator(pipeline, static_source, default_source_id='calls')


@pytest.fixture
def client(pipeline, orchestrator):
    app.state.pipeline = pipeline
    app.state.orchestrator = orchestrator
    yield TestClient(app)
    app.state.pipeline = None
    app.state.orchestrator = None


@pytest.fixture
def synced_client(client):
    response = client.post('/sync/run')
    assert response.status_code == 200
    assert response.json()['success'] is True
    return client


@pytest.fixture
def mock_orchestrator():
    orchestrator = MagicMock()
    orchestrator.auto_sync_active = False
    orchestrator.get_status.return_value = SyncStatus(auto_sync=True, interval_minutes=10)
    return orchestrator


# =============================================================================
# TEST CLASS: Service endpoints
# =============================================================================

class TestServiceEndpoints:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json() == {'status': 'healthy'}

    def test_root(self, client):
        body = client.get('/').json()
        assert body['name'] == 'CallPulse API'
        assert body['docs'] == '/docs'

    def test_uninitialized_pipeline(self, client):
        app.state.pipeline = None
        assert client.get('/metrics/general').status_code == 503


# =============================================================================
# TEST CLASS: Metrics endpoints
# =============================================================================

class TestMetricsEndpoints:

    @pytest.mark.parametrize('path', [
        '/metrics/operators',
        '/metrics/general',
        '/metrics/queues',
        '/metrics/recommendations',
        '/metrics/operators/Ana Silva',
        '/metrics/operators/export',
        '/metrics/queues/export',
        '/quality/report',
    ])
    def test_not_found_before_first_sync(self, client, path):
        assert client.get(path).status_code == 404

    def test_operator_ranking(self, synced_client):
        body = synced_client.get('/metrics/operators').json()
        assert [item['operator'] for item in body] == [
            'João Oliveira', 'Carlos Santos', 'Ana Silva', 'Maria Costa',
        ]
        assert [item['ranking'] for item in body] == [1, 2, 3, 4]

    def test_single_operator_is_case_insensitive(self, synced_client):
        response = synced_client.get('/metrics/operators/ana silva')
        assert response.status_code == 200
        assert response.json()['operator'] == 'Ana Silva'
        assert response.json()['total_calls'] == 2

    def test_unknown_operator(self, synced_client):
        assert synced_client.get('/metrics/operators/Nobody').status_code == 404

    def test_general(self, synced_client):
        body = synced_client.get('/metrics/general').json()
        assert body['total_calls'] == 6
        assert body['answered_calls'] == 4
        assert body['service_level'] == pytest.approx(75.0)

    def test_windowed_general(self, synced_client):
        response = synced_client.get('/metrics/general', params={'start': '2024-01-16T00:00:00'})
        assert response.status_code == 200
        assert response.json()['total_calls'] == 2

    def test_windowed_operators(self, synced_client):
        response = synced_client.get('/metrics/operators', params={'end': '2024-01-16T00:00:00'})
        assert [item['operator'] for item in response.json()] == ['Carlos Santos', 'Ana Silva']

    def test_inverted_window(self, synced_client):
        response = synced_client.get('/metrics/general', params={
            'start': '2024-01-16T00:00:00',
            'end': '2024-01-15T00:00:00',
        })
        assert response.status_code == 400

    def test_queues(self, synced_client):
        body = synced_client.get('/metrics/queues').json()
        assert {item['queue'] for item in body} == {
            'Technical Support', 'Sales', 'Finance', 'General',
        }

    def test_recommendations(self, synced_client):
        body = synced_client.get('/metrics/recommendations').json()
        assert len(body) == 3

    def test_comparison(self, synced_client):
        response = synced_client.get('/metrics/comparison', params={
            'current_start': '2024-01-16T00:00:00',
            'current_end': '2024-01-17T00:00:00',
            'previous_start': '2024-01-15T00:00:00',
            'previous_end': '2024-01-16T00:00:00',
        })
        assert response.status_code == 200
        body = response.json()
        assert body['current_total'] == 2
        assert body['previous_total'] == 4
        assert body['total_calls_change'] == pytest.approx(-50.0)

    def test_comparison_requires_all_bounds(self, synced_client):
        response = synced_client.get('/metrics/comparison', params={
            'current_start': '2024-01-16T00:00:00',
        })
        assert response.status_code == 422


class TestExportEndpoints:

    def test_operator_export(self, synced_client):
        response = synced_client.get('/metrics/operators/export')

        assert response.status_code == 200
        assert response.headers['content-type'].startswith('text/csv')
        disposition = response.headers['content-disposition']
        assert disposition.startswith('attachment; filename="operator_metrics_')
        assert disposition.endswith('.csv"')

        df = pd.read_csv(StringIO(response.text))
        assert df['operator'].tolist() == [
            'João Oliveira', 'Carlos Santos', 'Ana Silva', 'Maria Costa',
        ]
        assert df['ranking'].tolist() == [1, 2, 3, 4]

    def test_windowed_operator_export(self, synced_client):
        response = synced_client.get('/metrics/operators/export', params={'end': '2024-01-16T00:00:00'})
        df = pd.read_csv(StringIO(response.text))
        assert df['operator'].tolist() == ['Carlos Santos', 'Ana Silva']

    def test_queue_export(self, synced_client):
        response = synced_client.get('/metrics/queues/export')

        assert response.status_code == 200
        assert 'queue_metrics_' in response.headers['content-disposition']
        df = pd.read_csv(StringIO(response.text))
        assert set(df['queue']) == {'Technical Support', 'Sales', 'Finance', 'General'}
        assert df['total_calls'].sum() == 6

    def test_export_rejects_inverted_window(self, synced_client):
        response = synced_client.get('/metrics/queues/export', params={
            'start': '2024-01-16T00:00:00',
            'end': '2024-01-15T00:00:00',
        })
        assert response.status_code == 400


class TestMetricsConfigEndpoints:

    def test_get_config(self, client, settings):
        body = client.get('/metrics/config').json()
        assert body['service_level_target_seconds'] == settings.service_level_target_seconds
        assert body['working_hours'] == settings.working_hours

    def test_update_config(self, client, pipeline):
        response = client.put('/metrics/config', json={'service_level_target_seconds': 60})
        assert response.status_code == 200
        assert response.json()['service_level_target_seconds'] == 60
        assert pipeline.engine.config.service_level_target_seconds == 60

    def test_update_applies_to_windowed_requests(self, synced_client):
        synced_client.put('/metrics/config', json={'service_level_target_seconds': 60})

        cached = synced_client.get('/metrics/general').json()
        windowed = synced_client.get('/metrics/general', params={'start': '2024-01-01T00:00:00'}).json()

        assert cached['service_level'] == pytest.approx(75.0)
        assert windowed['service_level'] == pytest.approx(100.0)

    @pytest.mark.parametrize('body', [{}, {'shift_hours': 6}])
    def test_empty_update(self, client, body):
        assert client.put('/metrics/config', json=body).status_code == 400

    def test_negative_value(self, client):
        assert client.put('/metrics/config', json={'working_hours': -1}).status_code == 422


# =============================================================================
# TEST CLASS: Quality endpoints
# =============================================================================

class TestQualityEndpoints:

    def test_report_after_sync(self, synced_client):
        body = synced_client.get('/quality/report').json()
        assert body['total_records'] == 6
        assert body['quality_score'] == 100.0

    def test_audit_upload(self, client, sample_grid):
        rows = sample_grid + [list(sample_grid[1])]
        response = client.post(
            '/quality/audit',
            files={'file': ('calls.csv', grid_to_csv(rows), 'text/csv')},
        )
        assert response.status_code == 200
        body = response.json()
        assert body['total_records'] == 7
        assert body['issue_counts']['duplicates'] == 1
        assert body['quality_score'] == pytest.approx(98.0)

    def test_audit_does_not_touch_cache(self, client, sample_grid, pipeline):
        client.post('/quality/audit', files={'file': ('calls.csv', grid_to_csv(sample_grid), 'text/csv')})
        assert pipeline.cache.keys() == []

    def test_audit_rejects_unparseable_file(self, client):
        response = client.post('/quality/audit', files={'file': ('empty.csv', b'', 'text/csv')})
        assert response.status_code == 400
        assert response.json()['detail'][0]['field'] == 'file'

    def test_known_values(self, client):
        body = client.get('/quality/known-values').json()
        assert 'General' in body['queues']
        assert body['statuses']['atendida'] == 'Answered'

    def test_register_known_values(self, client, sample_grid):
        response = client.post('/quality/known-values', json={
            'statuses': {'Transferida': 'Perdida'},
            'queues': ['Marketing'],
            'operators': ['Fernanda Lima'],
        })
        assert response.status_code == 200
        body = response.json()
        assert body['statuses']['transferida'] == 'Missed'
        assert 'Marketing' in body['queues']
        assert 'Fernanda Lima' in body['operators']

        rows = sample_grid + [['17/01/2024', '10:00', 'Ana Silva', 'Transferida', 'Marketing', '0', '5', '']]
        audit = client.post('/quality/audit', files={'file': ('calls.csv', grid_to_csv(rows), 'text/csv')})
        assert audit.json()['issue_counts']['format_errors'] == 0

    def test_register_unknown_status_target(self, client):
        response = client.post('/quality/known-values', json={'statuses': {'Transferida': 'Transferred'}})
        assert response.status_code == 400
        assert 'Transferred' in response.json()['detail']


# =============================================================================
# TEST CLASS: Sync endpoints
# =============================================================================

class TestSyncEndpoints:

    def test_status(self, client):
        body = client.get('/sync/status').json()
        assert body['state'] == 'idle'
        assert body['is_running'] is False
        assert body['last_sync_at'] is None

    def test_run(self, client):
        response = client.post('/sync/run')
        body = response.json()
        assert response.status_code == 200
        assert body['success'] is True
        assert body['stats']['records_built'] == 6
        assert client.get('/sync/status').json()['successful_runs'] == 1

    def test_run_failure_is_reported(self, client):
        response = client.post('/sync/run', json={'source_id': 'missing'})
        body = response.json()
        assert response.status_code == 200
        assert body['success'] is False
        assert body['errors'][0].startswith('Unexpected sync error')

    def test_run_while_busy(self, client, mock_orchestrator):
        mock_orchestrator.sync_now = AsyncMock(
            return_value=SyncResult(success=False, errors=[ALREADY_RUNNING])
        )
        app.state.orchestrator = mock_orchestrator
        response = client.post('/sync/run')
        assert response.status_code == 409
        assert response.json()['detail'] == ALREADY_RUNNING

    def test_upload(self, client, pipeline, sample_grid):
        app.state.orchestrator = SyncOrchestrator(pipeline, StaticRowSource())
        response = client.post(
            '/sync/upload',
            files={'file': ('january.csv', grid_to_csv(sample_grid), 'text/csv')},
        )
        body = response.json()
        assert response.status_code == 200
        assert body['success'] is True
        assert body['stats']['source_id'] == 'upload'
        assert client.get('/metrics/general').json()['total_calls'] == 6

    def test_upload_rejected_for_remote_source(self, client, mock_orchestrator, sample_grid):
        app.state.orchestrator = mock_orchestrator
        response = client.post(
            '/sync/upload',
            files={'file': ('january.csv', grid_to_csv(sample_grid), 'text/csv')},
        )
        assert response.status_code == 400

    def test_upload_rejects_header_only_file(self, client):
        response = client.post(
            '/sync/upload',
            files={'file': ('empty.csv', b'Data,Hora,Operador,Status\n', 'text/csv')},
        )
        assert response.status_code == 400

    def test_start_auto_sync(self, client, mock_orchestrator):
        app.state.orchestrator = mock_orchestrator
        response = client.post('/sync/auto', json={'interval_minutes': 10})
        assert response.status_code == 200
        assert response.json()['auto_sync'] is True
        mock_orchestrator.start_auto_sync.assert_called_once_with(10)

    def test_change_interval_while_running(self, client, mock_orchestrator):
        mock_orchestrator.auto_sync_active = True
        app.state.orchestrator = mock_orchestrator
        client.post('/sync/auto', json={'interval_minutes': 15})
        mock_orchestrator.update_interval.assert_called_once_with(15)
        mock_orchestrator.start_auto_sync.assert_not_called()

    def test_invalid_interval(self, client, mock_orchestrator):
        app.state.orchestrator = mock_orchestrator
        assert client.post('/sync/auto', json={'interval_minutes': 0}).status_code == 422

    def test_stop_auto_sync(self, client, mock_orchestrator):
        app.state.orchestrator = mock_orchestrator
        response = client.delete('/sync/auto')
        assert response.status_code == 200
        mock_orchestrator.stop_auto_sync.assert_called_once()


class TestCacheEndpoints:

    def test_stats_after_sync(self, synced_client, settings):
        body = synced_client.get('/cache/stats').json()
        assert body['size'] == 6
        assert body['max_size'] == settings.cache_max_size
        assert 'general_metrics' in body['keys']
        assert 'rows:calls' in body['keys']
