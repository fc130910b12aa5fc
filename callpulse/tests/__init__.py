'''
CallPulse Test Suite

Test Modules:
-------------
- test_duration.py: duration shapes, detection and formatting
- test_similarity.py: Levenshtein distance and similarity lookup
- test_normalization.py: alias tables, fuzzy matches, status keyword fallback
- test_records.py: header mapping and CallRecord building
- test_metrics.py: operator KPIs, ranking, aggregates, queues, comparisons
- test_quality.py: data quality audit and scoring
- test_cache.py: TTL expiry, eviction, single-flight fetches, durable mirror
- test_sync.py: SyncOrchestrator runs, failures and auto-sync
- test_ingestion.py: CSV parsing and upstream row sources
- test_api.py: HTTP endpoints through FastAPI's TestClient

Running Tests:
--------------
    pip install -e .[test]
    pytest callpulse/tests -v

See conftest.py for shared fixtures and test configuration.
'''

__all__ = []
