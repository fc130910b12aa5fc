"""
CSV Ingestion

Turns uploaded call exports into the raw string grid the pipeline consumes
(header row first, every cell a string).

- Delimiter is sniffed, so both ',' and ';' exports load
- Every column is read as text (dtype=str, no NA coercion) so values such as
  "00:45" or "007" reach the normalizer untouched
- Parse problems are returned as RowIssue entries instead of raised
"""

import csv
import io
import logging
from typing import BinaryIO, List, Tuple, Union

import pandas as pd

from callpulse.models import RawRow, RowIssue

logger = logging.getLogger(__name__)


def grid_from_dataframe(df: pd.DataFrame) -> List[RawRow]:
    """Header row followed by stringified, stripped data rows."""
    header = [str(column).strip() for column in df.columns]
    body = df.fillna('').astype(str).apply(lambda column: column.str.strip())
    return [header] + body.values.tolist()


def parse_csv(file: Union[BinaryIO, bytes, str]) -> Tuple[List[RawRow], List[RowIssue]]:
    """
    Parse a CSV export into a raw grid.

    Args:
        file: File object, raw bytes, or decoded text.

    Returns:
        Tuple of (grid, issues). The grid is empty when issues were found.
    """
    issues: List[RowIssue] = []

    if hasattr(file, 'read'):
        content = file.read()
    else:
        content = file
    if isinstance(content, bytes):
        try:
            content = content.decode('utf-8-sig')
        except UnicodeDecodeError:
            content = content.decode('latin-1')

    try:
        df = pd.read_csv(
            io.StringIO(content),
            sep=None,
            engine='python',
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, csv.Error, ValueError) as e:
        issues.append(RowIssue(field='file', message=f'Failed to parse CSV file: {e}'))
        return [], issues

    if df.empty:
        issues.append(RowIssue(field='file', message='CSV file is empty or contains no data rows'))
        return [], issues

    logger.info(f"Parsed CSV with {len(df)} rows and {len(df.columns)} columns")
    return grid_from_dataframe(df), issues
