"""
CSV export of KPI tables.

Renders lists of OperatorMetrics or QueueMetrics with pandas: one row per
model, one column per field in declaration order. An empty list still yields
the header row. Download names follow "<title>_<YYYY-MM-DD_HH-MM-SS>.csv".
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Type

import pandas as pd
from pydantic import BaseModel

from callpulse.models import OperatorMetrics, QueueMetrics

logger = logging.getLogger(__name__)


def model_columns(model: Type[BaseModel]) -> List[str]:
    return list(model.model_fields)


OPERATOR_COLUMNS: List[str] = model_columns(OperatorMetrics)
QUEUE_COLUMNS: List[str] = model_columns(QueueMetrics)


def models_to_csv(items: Sequence[BaseModel], columns: List[str]) -> str:
    """
    Render models as CSV text.

    Enums are written by value and missing optional values as empty cells.

    Args:
        items: Models to render, in output order.
        columns: Field names to write; other fields are dropped.

    Returns:
        str: CSV text with a header row.
    """
    df = pd.DataFrame([item.model_dump(mode='json') for item in items], columns=columns)
    logger.debug(f"Rendering {len(df)} rows to CSV")
    return df.to_csv(index=False)


def operators_to_csv(metrics: Sequence[OperatorMetrics]) -> str:
    return models_to_csv(metrics, OPERATOR_COLUMNS)


def queues_to_csv(queues: Sequence[QueueMetrics]) -> str:
    return models_to_csv(queues, QUEUE_COLUMNS)


def export_filename(title: str, now: Optional[datetime] = None) -> str:
    """Timestamped download name, e.g. operator_metrics_2024-01-31_18-05-00.csv."""
    now = now or datetime.now()
    return f"{title}_{now.strftime('%Y-%m-%d_%H-%M-%S')}.csv"
