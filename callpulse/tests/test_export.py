"""
Test Module for CSV Export.

Validates:
- One CSV row per model, columns in field order
- Header-only output for empty tables
- Enum and missing optional values
- Timestamped download names
"""

from datetime import datetime
from io import StringIO

import pandas as pd
import pytest

from callpulse.models import OperatorMetrics, QueueMetrics, Trend
from callpulse.services.export import (
    OPERATOR_COLUMNS,
    QUEUE_COLUMNS,
    export_filename,
    operators_to_csv,
    queues_to_csv,
)


class TestOperatorsToCsv:

    def test_rows_follow_ranking_order(self, pipeline, sample_grid):
        ranked = pipeline.process(sample_grid).operator_metrics

        df = pd.read_csv(StringIO(operators_to_csv(ranked)))

        assert list(df.columns) == OPERATOR_COLUMNS
        assert df['operator'].tolist() == [m.operator for m in ranked]
        assert df['ranking'].tolist() == [1, 2, 3, 4]
        assert df['total_calls'].sum() == 6

    def test_enum_and_missing_values(self):
        metrics = OperatorMetrics(operator='Maria Costa', trend=Trend.DOWN, average_satisfaction=None)

        lines = operators_to_csv([metrics]).splitlines()
        row = dict(zip(lines[0].split(','), lines[1].split(',')))

        assert row['trend'] == 'down'
        assert row['average_satisfaction'] == ''

    def test_empty_table_keeps_header(self):
        assert operators_to_csv([]).splitlines() == [','.join(OPERATOR_COLUMNS)]


class TestQueuesToCsv:

    def test_one_row_per_queue(self):
        queues = [
            QueueMetrics(queue='Sales', total_calls=3, answered_calls=2, answer_rate=66.67),
            QueueMetrics(queue='General', total_calls=1),
        ]

        df = pd.read_csv(StringIO(queues_to_csv(queues)))

        assert list(df.columns) == QUEUE_COLUMNS
        assert df['queue'].tolist() == ['Sales', 'General']
        assert df.loc[0, 'answer_rate'] == pytest.approx(66.67)


class TestExportFilename:

    def test_timestamped_name(self):
        assert export_filename('operator_metrics', datetime(2024, 1, 31, 18, 5, 0)) == (
            'operator_metrics_2024-01-31_18-05-00.csv'
        )

    def test_defaults_to_now(self):
        name = export_filename('queue_metrics')
        assert name.startswith('queue_metrics_')
        assert name.endswith('.csv')


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
