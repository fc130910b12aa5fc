"""
Call Record Builder

Maps raw spreadsheet rows into canonical CallRecord objects.

Column Mapping:
Headers are matched case-insensitively by substring, so reordered or renamed
columns ("Data", "Date", "Data da Chamada") still resolve. Fields are claimed in
HEADER_ALIASES order and each header can be claimed once. Within a field,
aliases are tried in order and the first matching header wins. Wait-time
headers are claimed before duration headers so "Tempo de Espera" never shadows
"Tempo Falado".

Row Rules:
- Required: date, time, operator, status. Missing any -> None (row dropped)
- DD/MM/YYYY dates are rewritten to YYYY-MM-DD before combining with time
- Unparseable timestamps or unresolvable statuses -> None
- Operator, queue and status go through FieldNormalizer; only the
  normalized value is kept
- Durations and wait times go through parse_duration
- Queue defaults to "General"; satisfaction outside [1, 5] is dropped

Rejections are not errors: build() returns None and the DataQualityAuditor
explains the reasons separately.
"""

import logging
import re
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from callpulse.models import BuildResult, CallRecord, ColumnMap, RawRow
from callpulse.services.duration import parse_duration
from callpulse.services.normalization import FieldNormalizer

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS - Header Matching
# =============================================================================

# (field, header substrings) in claim order
HEADER_ALIASES: List[Tuple[str, Tuple[str, ...]]] = [
    ('id', ('id ligação', 'id ligacao', 'id chamada', 'call id', 'identificador')),
    ('wait', ('espera', 'wait')),
    ('duration', ('duração', 'duracao', 'duration', 'falado', 'talk', 'tempo')),
    ('date', ('data', 'date')),
    ('time', ('hora', 'time')),
    ('operator', ('operador', 'operator', 'atendente', 'agente', 'agent')),
    ('status', ('status', 'situação', 'situacao', 'result')),
    ('queue', ('fila', 'queue', 'grupo')),
    ('satisfaction', ('satisfação', 'satisfacao', 'satisfaction', 'rating', 'nota', 'avalia')),
    ('customer', ('cliente', 'client', 'customer')),
    ('notes', ('observação', 'observacao', 'obs', 'note')),
]

REQUIRED_FIELDS: List[str] = ['date', 'time', 'operator', 'status']

_BR_DATE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
_ISO_DATE = re.compile(r'^(\d{4})-(\d{1,2})-(\d{1,2})')
_TIME = re.compile(r'^(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?')


# =============================================================================
# Column Mapping
# =============================================================================


def build_column_map(headers: Sequence[str]) -> ColumnMap:
    """
    Build a ColumnMap from a header row.

    Args:
        headers: Header cells, in column order.

    Returns:
        ColumnMap with None for fields no header matched.
    """
    lowered = [str(header or '').strip().lower() for header in headers]
    claimed: Dict[int, str] = {}
    mapping: Dict[str, int] = {}

    for field, aliases in HEADER_ALIASES:
        for alias in aliases:
            index = next(
                (i for i, header in enumerate(lowered) if i not in claimed and alias in header),
                None,
            )
            if index is not None:
                mapping[field] = index
                claimed[index] = field
                break

    column_map = ColumnMap(**mapping)
    missing = column_map.missing_columns(REQUIRED_FIELDS)
    if missing:
        logger.warning(f"Header row has no column for required fields: {missing}")
    return column_map


# =============================================================================
# Timestamp Parsing
# =============================================================================


def normalize_date(raw: str) -> Optional[str]:
    """Rewrite DD/MM/YYYY to YYYY-MM-DD; pass ISO dates through."""
    text = (raw or '').strip()
    match = _BR_DATE.match(text)
    if match:
        day, month, year = match.groups()
        return f"{year}-{int(month):02d}-{int(day):02d}"
    match = _ISO_DATE.match(text)
    if match:
        year, month, day = match.groups()
        return f"{year}-{int(month):02d}-{int(day):02d}"
    return None


def parse_timestamp(date_value: str, time_value: str) -> Optional[datetime]:
    """
    Combine a date cell and a time cell into a datetime.

    Returns:
        The parsed local datetime, or None when either part is unusable.
    """
    date_part = normalize_date(date_value)
    time_match = _TIME.match((time_value or '').strip())
    if date_part is None or time_match is None:
        return None

    hours, minutes, seconds = time_match.groups()
    combined = f"{date_part}T{int(hours):02d}:{int(minutes):02d}:{int(seconds or 0):02d}"
    try:
        return datetime.fromisoformat(combined)
    except ValueError:
        return None


def parse_satisfaction(raw: str) -> Optional[float]:
    text = (raw or '').strip().replace(',', '.')
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    if 1.0 <= value <= 5.0:
        return value
    return None


# =============================================================================
# Call Record Builder
# =============================================================================


class CallRecordBuilder:
    """
    Builds CallRecords from raw rows, delegating field cleanup to a FieldNormalizer.

    Args:
        normalizer: Shared normalizer (its alias tables and known-operator set).
    """

    def __init__(self, normalizer: Optional[FieldNormalizer] = None):
        self.normalizer = normalizer or FieldNormalizer()

    def build(self, raw_row: RawRow, column_map: ColumnMap, row_index: int) -> Optional[CallRecord]:
        """
        Map one raw row to a CallRecord.

        Args:
            raw_row: Cell strings for one data row.
            column_map: Column positions for the dataset.
            row_index: 1-based data row number (header excluded).

        Returns:
            CallRecord, or None when a required field is missing or unusable.
        """
        values = {field: column_map.cell(raw_row, field) for field, _ in HEADER_ALIASES}

        missing = [field for field in REQUIRED_FIELDS if not values[field]]
        if missing:
            logger.debug(f"Row {row_index} dropped: missing {missing}")
            return None

        timestamp = parse_timestamp(values['date'], values['time'])
        if timestamp is None:
            logger.debug(
                f"Row {row_index} dropped: unparseable timestamp "
                f"'{values['date']} {values['time']}'"
            )
            return None

        operator = self.normalizer.normalize_operator(values['operator']).normalized_value
        if not operator:
            logger.debug(f"Row {row_index} dropped: empty operator after normalization")
            return None

        status_text = self.normalizer.normalize_status(values['status']).normalized_value
        status = self.normalizer.to_status(status_text)
        if status is None:
            logger.debug(f"Row {row_index} dropped: unrecognized status '{values['status']}'")
            return None

        queue = self.normalizer.normalize_queue(values['queue']).normalized_value

        record_id = values['id'] or f"call_{row_index}_{timestamp:%Y%m%d%H%M%S}"

        return CallRecord(
            id=record_id,
            timestamp=timestamp,
            operator=operator,
            queue=queue or self.normalizer.rules.default_queue,
            status=status,
            duration_seconds=parse_duration(values['duration']),
            wait_seconds=parse_duration(values['wait']),
            satisfaction=parse_satisfaction(values['satisfaction']),
            customer=values['customer'] or None,
            notes=values['notes'] or None,
            row_index=row_index,
        )

    def build_all(self, grid: Sequence[RawRow], column_map: Optional[ColumnMap] = None) -> BuildResult:
        """
        Build records from a full grid whose first row is the header.

        Rows are processed in source order and the output preserves it.

        Args:
            grid: Header row followed by data rows.
            column_map: Pre-built map; derived from the header when omitted.

        Returns:
            BuildResult with the records and rejection counts.
        """
        if not grid:
            return BuildResult()

        column_map = column_map or build_column_map(grid[0])
        records: List[CallRecord] = []
        data_rows = grid[1:]

        for row_index, raw_row in enumerate(data_rows, start=1):
            if not any(str(cell or '').strip() for cell in raw_row):
                continue
            record = self.build(list(raw_row), column_map, row_index)
            if record is not None:
                records.append(record)

        processed = sum(1 for row in data_rows if any(str(cell or '').strip() for cell in row))
        result = BuildResult(
            records=records,
            rows_processed=processed,
            rows_rejected=processed - len(records),
            column_map=column_map,
        )
        logger.info(
            f"Built {len(records)} call records from {processed} rows "
            f"({result.rows_rejected} rejected)"
        )
        return result
