"""
CallPulse Backend Package.

Call-center analytics service: turns spreadsheet call logs into normalized
call records, operator/queue/aggregate KPIs and data quality reports, cached
behind a tiered TTL cache and refreshed by a sync orchestrator.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, errors, storage and dependencies
    - models: Pydantic schemas and enums
    - services: Pipeline components and orchestration
"""

__version__ = "1.0.0"
