"""
Data Quality Auditor

Audits a raw dataset independently of the KPI path and explains why rows are
unusable, producing a QualityReport with a score and recommendations.

Checks per data row:
- Missing required fields (date, time, operator, status): +1 per missing field
- Format errors: unparseable timestamps, plus every non-empty operator,
  status, queue or duration cell the FieldNormalizer marks invalid
- Inconsistencies: Missed with duration > 0, or Answered with duration 0
  (only when the dataset has a duration column)
- Out of range: duration or wait time above 24h (reported, not scored)

Dataset checks:
- Duplicates: identical (date, time, operator) key after trim and case
  folding; the first occurrence is canonical, later ones are counted
- Suspected duplicate names: distinct operator spellings whose similarity
  exceeds 0.8

Score:
    quality_score = clamp(valid / total * 100
                          - 2 * (duplicates + inconsistencies + missing + format_errors),
                          0, 100)

A row is valid when it has no missing or format issues. Each audit uses a fresh
FieldNormalizer over the shared alias tables, so reports do not depend on
previously audited datasets.
"""

import logging
from typing import Dict, List, Optional, Sequence

import pandas as pd

from callpulse.models import (
    CallStatus,
    ColumnMap,
    FieldKind,
    IssueCounts,
    QualityReport,
    RawRow,
    RowIssue,
    SimilarNameGroup,
)
from callpulse.services.duration import SECONDS_PER_DAY, parse_duration
from callpulse.services.normalization import (
    DUPLICATE_NAME_THRESHOLD,
    FieldNormalizer,
    NormalizationRules,
)
from callpulse.services.records import REQUIRED_FIELDS, build_column_map, parse_timestamp
from callpulse.services.similarity import similarity

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DUPLICATE_KEY: List[str] = ['date', 'time', 'operator']
ISSUE_PENALTY: float = 2.0

NORMALIZED_FIELDS = [
    (FieldKind.OPERATOR, 'operator'),
    (FieldKind.STATUS, 'status'),
    (FieldKind.QUEUE, 'queue'),
    (FieldKind.DURATION, 'duration'),
]

RECOMMENDATIONS: Dict[str, str] = {
    'duplicates': 'Consolidate duplicate call entries',
    'inconsistencies': 'Standardize status naming and duration formats at the source',
    'missing': 'Enforce required fields (date, time, operator, status) at the source',
    'format_errors': 'Apply stricter validation rules when data is entered',
    'out_of_range': 'Review durations and wait times longer than 24 hours',
}
NO_ISSUES_RECOMMENDATION = 'Data quality is within expected parameters'
EMPTY_DATASET_RECOMMENDATION = 'No data rows to audit'


def _is_blank(row: RawRow) -> bool:
    return not any(str(cell or '').strip() for cell in row)


class DataQualityAuditor:
    """
    Produces QualityReports for raw datasets.

    Args:
        rules: Alias tables shared with the record builder.
    """

    def __init__(self, rules: Optional[NormalizationRules] = None):
        self.rules = rules or NormalizationRules()

    def audit_grid(self, grid: Sequence[RawRow]) -> QualityReport:
        """Audit a grid whose first row is the header."""
        if not grid:
            return self.audit([], ColumnMap())
        return self.audit(grid[1:], build_column_map(grid[0]))

    def audit(self, raw_rows: Sequence[RawRow], column_map: ColumnMap) -> QualityReport:
        """
        Audit data rows (header excluded).

        Args:
            raw_rows: Data rows in source order. Fully blank rows are ignored.
            column_map: Column positions for the dataset.

        Returns:
            QualityReport for this dataset.
        """
        rows = [list(row) for row in raw_rows if not _is_blank(row)]
        total = len(rows)
        normalizer = FieldNormalizer(self.rules)
        counts = IssueCounts()
        issues: List[RowIssue] = []
        valid = 0
        operator_names: List[str] = []
        has_duration = column_map.duration is not None

        for row_number, row in enumerate(rows, start=1):
            values = {
                field: column_map.cell(row, field)
                for field in ('date', 'time', 'operator', 'status', 'queue', 'duration', 'wait')
            }
            row_ok = True

            missing = [field for field in REQUIRED_FIELDS if not values[field]]
            if missing:
                counts.missing += len(missing)
                row_ok = False
                for field in missing:
                    issues.append(RowIssue(field=field, message=f"Required field '{field}' is empty", row_number=row_number))

            if values['date'] and values['time'] and parse_timestamp(values['date'], values['time']) is None:
                counts.format_errors += 1
                row_ok = False
                issues.append(RowIssue(
                    field='timestamp',
                    message=f"Unparseable date/time '{values['date']} {values['time']}'",
                    row_number=row_number,
                ))

            for kind, field in NORMALIZED_FIELDS:
                if not values[field]:
                    continue
                result = normalizer.normalize(kind, values[field])
                if field == 'operator' and result.normalized_value:
                    operator_names.append(result.normalized_value)
                if not result.is_valid:
                    counts.format_errors += 1
                    row_ok = False
                    issues.append(RowIssue(
                        field=field,
                        message='; '.join(result.warnings) or f"Invalid {field} '{values[field]}'",
                        row_number=row_number,
                    ))

            duration_seconds = parse_duration(values['duration'])
            wait_seconds = parse_duration(values['wait'])

            if has_duration and values['status']:
                status = normalizer.to_status(values['status'])
                if status == CallStatus.MISSED and duration_seconds > 0:
                    counts.inconsistencies += 1
                    issues.append(RowIssue(
                        field='status',
                        message=f"Missed call has a talk duration of {duration_seconds}s",
                        row_number=row_number,
                    ))
                elif status == CallStatus.ANSWERED and duration_seconds == 0:
                    counts.inconsistencies += 1
                    issues.append(RowIssue(
                        field='duration',
                        message='Answered call has no talk duration',
                        row_number=row_number,
                    ))

            if duration_seconds > SECONDS_PER_DAY or wait_seconds > SECONDS_PER_DAY:
                field = 'duration' if duration_seconds > SECONDS_PER_DAY else 'wait'
                counts.out_of_range += 1
                issues.append(RowIssue(
                    field=field,
                    message=f"{field.capitalize()} longer than 24 hours",
                    row_number=row_number,
                ))

            if row_ok:
                valid += 1

        duplicate_rows = self.find_duplicate_rows(rows, column_map)
        counts.duplicates = len(duplicate_rows)
        for row_number in duplicate_rows:
            issues.append(RowIssue(
                field='row',
                message='Duplicate of an earlier row with the same date, time and operator',
                row_number=row_number,
            ))

        if total:
            score = valid / total * 100 - ISSUE_PENALTY * counts.scored_total
            quality_score = min(100.0, max(0.0, score))
        else:
            quality_score = 0.0

        report = QualityReport(
            total_records=total,
            valid_records=valid,
            invalid_records=total - valid,
            quality_score=quality_score,
            issue_counts=counts,
            recommendations=self.build_recommendations(counts, total),
            row_issues=sorted(issues, key=lambda issue: issue.row_number or 0),
            suspected_duplicate_names=self.group_similar_names(operator_names),
        )
        logger.info(
            f"Audited {total} rows: score={quality_score:.1f}, "
            f"valid={valid}, issues={counts.model_dump()}"
        )
        return report

    # -------------------------------------------------------------------------
    # Dataset-level checks
    # -------------------------------------------------------------------------

    @staticmethod
    def find_duplicate_rows(rows: Sequence[RawRow], column_map: ColumnMap) -> List[int]:
        """
        1-based row numbers of rows repeating an earlier (date, time, operator) key.

        Rows missing any key part are skipped; they are already counted as missing.
        """
        if column_map.missing_columns(DUPLICATE_KEY):
            return []

        keys = pd.DataFrame(
            [[column_map.cell(row, field).lower() for field in DUPLICATE_KEY] for row in rows],
            columns=DUPLICATE_KEY,
        )
        if keys.empty:
            return []

        keys.index = range(1, len(keys) + 1)
        complete = keys[(keys != '').all(axis=1)]
        duplicated_mask = complete.duplicated(subset=DUPLICATE_KEY, keep='first')
        return [int(row_number) for row_number in complete[duplicated_mask].index]

    @staticmethod
    def group_similar_names(names: Sequence[str]) -> List[SimilarNameGroup]:
        """
        Group distinct spellings whose case-folded similarity exceeds 0.8.

        The most frequent spelling in a group is canonical (first seen on ties).
        """
        frequency: Dict[str, int] = {}
        for name in names:
            frequency[name] = frequency.get(name, 0) + 1
        distinct = list(frequency)

        grouped = set()
        groups: List[SimilarNameGroup] = []
        for index, name in enumerate(distinct):
            if name in grouped:
                continue
            members = [name] + [
                other for other in distinct[index + 1:]
                if other not in grouped
                and similarity(name.lower(), other.lower()) > DUPLICATE_NAME_THRESHOLD
            ]
            if len(members) < 2:
                continue
            grouped.update(members)
            canonical = max(members, key=lambda member: (frequency[member], -distinct.index(member)))
            variants = [member for member in members if member != canonical]
            groups.append(SimilarNameGroup(
                canonical=canonical,
                variants=variants,
                similarity=min(similarity(canonical.lower(), variant.lower()) for variant in variants),
            ))
        return groups

    @staticmethod
    def build_recommendations(counts: IssueCounts, total: int) -> List[str]:
        if total == 0:
            return [EMPTY_DATASET_RECOMMENDATION]
        recommendations = [
            message for counter, message in RECOMMENDATIONS.items()
            if getattr(counts, counter) > 0
        ]
        return recommendations or [NO_ISSUES_RECOMMENDATION]
