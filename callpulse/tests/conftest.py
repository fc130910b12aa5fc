"""
Pytest Configuration and Shared Fixtures for CallPulse Tests.

Provides:
- Custom markers (slow, integration)
- A small Portuguese-language call export used across modules
- Isolated Pipeline / TieredCache instances over MemoryCacheStore
- A controllable clock for TTL tests
- StaticRowSource and AsyncMock upstream collaborators

Dependencies:
- pytest
- pytest-asyncio (asyncio_mode = "auto")
"""

from typing import List
from unittest.mock import AsyncMock

import pytest

from callpulse.core.config import Settings
from callpulse.core.storage import MemoryCacheStore
from callpulse.models import RawRow, SourceInfo
from callpulse.services.cache import TieredCache
from callpulse.services.normalization import FieldNormalizer
from callpulse.services.pipeline import Pipeline
from callpulse.services.records import build_column_map
from callpulse.services.sources import StaticRowSource


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - slow: tests that sleep on real timers (deselect with -m "not slow")
    - integration: tests that need external services
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'integration: marks tests requiring external service connectivity'
    )


# ============================================================
# HELPERS
# ============================================================

SAMPLE_HEADER: RawRow = [
    'Data', 'Hora', 'Operador', 'Status', 'Fila',
    'Tempo Falado', 'Tempo de Espera', 'Satisfação',
]

SAMPLE_ROWS: List[RawRow] = [
    ['15/01/2024', '09:00', 'Ana Silva', 'Atendida', 'Suporte', '05:00', '0:20', '5'],
    ['15/01/2024', '09:30', 'ana s.', 'answered', 'Vendas', '02:00', '45', '4'],
    ['15/01/2024', '10:00', 'Carlos Santos', 'Perdida', 'Suporte', '0', '90', ''],
    ['15/01/2024', '14:00', 'Carlos Santos', 'Atendida', 'Financeiro', '8:00', '10', '3'],
    ['16/01/2024', '15:00', 'Maria Costa', 'Abandonada', 'Geral', '0', '120', ''],
    ['16/01/2024', '19:30', 'joão o.', 'ok', 'Suporte', '1:30', '15', '5'],
]


def make_grid(rows: List[RawRow], header: RawRow = SAMPLE_HEADER) -> List[RawRow]:
    """Header row followed by copies of the data rows."""
    return [list(header)] + [list(row) for row in rows]


def grid_to_csv(grid: List[RawRow]) -> bytes:
    """Render a grid as comma-separated CSV bytes (cells contain no commas)."""
    return ('\n'.join(','.join(row) for row in grid) + '\n').encode('utf-8')


class FakeClock:
    """Manually advanced clock in seconds, callable like time.time."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================
# DATA FIXTURES
# ============================================================

@pytest.fixture
def sample_grid() -> List[RawRow]:
    """
    Six-call export covering every status, four operators and four queues.

    Two rows use aliases ("ana s.", "joão o.") that resolve to canonical
    operator names; statuses and queues are Portuguese spellings.
    """
    return make_grid(SAMPLE_ROWS)


@pytest.fixture
def sample_column_map(sample_grid):
    return build_column_map(sample_grid[0])


@pytest.fixture
def normalizer() -> FieldNormalizer:
    return FieldNormalizer()


# ============================================================
# INFRASTRUCTURE FIXTURES
# ============================================================

@pytest.fixture
def settings() -> Settings:
    """Settings with no database or Google credentials configured."""
    return Settings(
        database_url=None,
        google_application_credentials=None,
        spreadsheet_id=None,
        normalization_rules_path=None,
    )


@pytest.fixture
def memory_store() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(memory_store, fake_clock) -> TieredCache:
    """Cache mirrored to an in-memory store, driven by a fake clock."""
    return TieredCache(max_size=10, default_ttl=60.0, store=memory_store, clock=fake_clock)


@pytest.fixture
def pipeline(settings, memory_store) -> Pipeline:
    return Pipeline.from_settings(settings, memory_store)


@pytest.fixture
def static_source(sample_grid) -> StaticRowSource:
    return StaticRowSource({'calls': sample_grid}, names={'calls': 'January calls'})


@pytest.fixture
def mock_source(sample_grid) -> AsyncMock:
    """
    AsyncMock RowSource returning the sample grid.

    Override side_effect/return_value per test to simulate outages and delays.
    """
    source = AsyncMock()
    source.check_connectivity.return_value = True
    source.list_sources.return_value = [SourceInfo(id='calls', name='January calls')]
    source.get_rows.return_value = sample_grid
    return source
