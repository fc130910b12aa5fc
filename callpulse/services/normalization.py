"""
Field Normalization Service

Turns raw operator, status, queue and duration cells into canonical values,
with a confidence score and reviewer-facing warnings for each field.

Normalization Steps (operator / status / queue):
1. Trim; empty input is invalid with confidence 0 (queue defaults to "General")
2. Collapse whitespace and look the lower-cased value up in the alias table.
   A hit yields the mapped value with confidence max(similarity, 0.8), or 1.0
   when the input was already canonical.
3. Without a hit the collapsed value is kept (operators are also title-cased)
   and confidence is the case-folded similarity between input and output.
4. Validity = pattern check for the kind AND confidence above its threshold.

Durations are recognized by shape (see callpulse.services.duration) and
rendered back as M:SS / H:MM:SS.

Alias tables are configuration, not code: NormalizationRules can be loaded
from a JSON file and replaces the built-in defaults wholesale.

Operator normalization keeps a set of previously seen canonical names and
warns (never rejects) when a new name is a likely misspelling of one of them.
Reviewers can register known operators, status spellings and queues at
runtime through FieldNormalizer.register_known_values.
"""

import json
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from pydantic import BaseModel, Field, field_validator

from callpulse.models import CallStatus, FieldKind, NormalizationResult
from callpulse.services.duration import (
    detect_duration_format,
    format_duration,
    parse_duration,
)
from callpulse.services.similarity import find_similar, similarity

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS - Thresholds
# =============================================================================

VALIDITY_THRESHOLDS: Dict[FieldKind, float] = {
    FieldKind.OPERATOR: 0.5,
    FieldKind.STATUS: 0.7,
    FieldKind.QUEUE: 0.6,
    FieldKind.DURATION: 0.5,
}

KNOWN_MAPPING_CONFIDENCE: float = 0.8
DUPLICATE_NAME_THRESHOLD: float = 0.8
UNRECOGNIZED_DURATION_CONFIDENCE: float = 0.3
DEFAULT_QUEUE: str = 'General'

_WHITESPACE = re.compile(r'\s+')
# Unicode letters separated by single spaces
_OPERATOR_PATTERN = re.compile(r'^[^\W\d_]+(?: [^\W\d_]+)*$')


# =============================================================================
# CONSTANTS - Default Alias Tables
# =============================================================================

DEFAULT_OPERATOR_ALIASES: Dict[str, str] = {
    'ana silva': 'Ana Silva',
    'ana s.': 'Ana Silva',
    'carlos santos': 'Carlos Santos',
    'carlos s.': 'Carlos Santos',
    'maria costa': 'Maria Costa',
    'maria c.': 'Maria Costa',
    'joão oliveira': 'João Oliveira',
    'joao oliveira': 'João Oliveira',
    'joão o.': 'João Oliveira',
    'joao o.': 'João Oliveira',
}

DEFAULT_STATUS_MAPPINGS: Dict[str, CallStatus] = {
    'atendida': CallStatus.ANSWERED,
    'answered': CallStatus.ANSWERED,
    'ok': CallStatus.ANSWERED,
    'perdida': CallStatus.MISSED,
    'missed': CallStatus.MISSED,
    'nok': CallStatus.MISSED,
    'retida na ura': CallStatus.MISSED,
    'abandonada': CallStatus.ABANDONED,
    'abandoned': CallStatus.ABANDONED,
    'em espera': CallStatus.WAITING,
    'waiting': CallStatus.WAITING,
    'pendente': CallStatus.WAITING,
}

DEFAULT_QUEUE_MAPPINGS: Dict[str, str] = {
    'suporte': 'Technical Support',
    'suporte técnico': 'Technical Support',
    'support': 'Technical Support',
    'tec': 'Technical Support',
    'vendas': 'Sales',
    'sales': 'Sales',
    'comercial': 'Sales',
    'financeiro': 'Finance',
    'financial': 'Finance',
    'fin': 'Finance',
    'geral': 'General',
    'general': 'General',
    'adm': 'General',
}

# Keyword fallbacks for status values the table does not know, checked in order
STATUS_KEYWORDS: List[tuple] = [
    (('atend', 'answer'), CallStatus.ANSWERED),
    (('perd', 'miss', 'retid'), CallStatus.MISSED),
    (('aband',), CallStatus.ABANDONED),
    (('esper', 'wait', 'pend'), CallStatus.WAITING),
]


def collapse_whitespace(value: str) -> str:
    return _WHITESPACE.sub(' ', value).strip()


def title_case(value: str) -> str:
    """Upper-case the first letter of each word and lower-case the rest."""
    return ' '.join(word[:1].upper() + word[1:].lower() for word in value.split(' '))


def _lookup_key(value: str) -> str:
    return collapse_whitespace(value).lower()


# =============================================================================
# Alias Tables
# =============================================================================


class NormalizationRules(BaseModel):
    """
    Alias and mapping tables used by FieldNormalizer.

    Keys are matched after whitespace collapsing and lower-casing. Every
    canonical value is implicitly its own alias, so already-normalized input
    always resolves with confidence 1.0.
    """
    operator_aliases: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_OPERATOR_ALIASES)
    )
    status_mappings: Dict[str, CallStatus] = Field(
        default_factory=lambda: dict(DEFAULT_STATUS_MAPPINGS)
    )
    queue_mappings: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_QUEUE_MAPPINGS)
    )
    default_queue: str = DEFAULT_QUEUE

    @field_validator('operator_aliases', 'status_mappings', 'queue_mappings', mode='after')
    @classmethod
    def _normalize_keys(cls, table: Dict) -> Dict:
        return {_lookup_key(key): value for key, value in table.items()}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'NormalizationRules':
        """
        Load tables from a JSON file.

        Missing tables fall back to the defaults; present tables replace them.

        Raises:
            OSError: If the file cannot be read.
            json.JSONDecodeError: If the file is not valid JSON.
            pydantic.ValidationError: If a status maps to an unknown value.
        """
        with open(path, encoding='utf-8') as fh:
            payload = json.load(fh)
        rules = cls.model_validate(payload)
        logger.info(
            f"Loaded normalization rules from {path}: "
            f"{len(rules.operator_aliases)} operator aliases, "
            f"{len(rules.status_mappings)} status mappings, "
            f"{len(rules.queue_mappings)} queue mappings"
        )
        return rules

    @property
    def canonical_statuses(self) -> Set[str]:
        return {status.value for status in CallStatus}

    @property
    def canonical_queues(self) -> Set[str]:
        return set(self.queue_mappings.values()) | {self.default_queue}

    @property
    def canonical_operators(self) -> Set[str]:
        return set(self.operator_aliases.values())

    def add_status_aliases(self, aliases: Dict[str, str]) -> None:
        """
        Map extra spellings to call statuses.

        Targets may be a canonical status or any spelling the table already
        knows ("atendida" -> Answered). Nothing is added when one fails.

        Raises:
            ValueError: If a target does not resolve to a call status.
        """
        resolved: Dict[str, CallStatus] = {}
        for alias, target in aliases.items():
            status = self.lookup(FieldKind.STATUS, target or '')
            if status is None:
                raise ValueError(f"Unknown call status for alias '{alias}': '{target}'")
            key = _lookup_key(alias)
            if key:
                resolved[key] = CallStatus(status)
        self.status_mappings.update(resolved)

    def add_queues(self, names: Iterable[str]) -> None:
        """Accept each name as a canonical queue. Existing aliases keep their target."""
        for name in names:
            cleaned = collapse_whitespace(name or '')
            if cleaned:
                self.queue_mappings.setdefault(cleaned.lower(), cleaned)

    def lookup(self, kind: FieldKind, value: str) -> Optional[str]:
        """Return the canonical value for `value`, or None when there is no alias."""
        key = _lookup_key(value)
        if kind == FieldKind.OPERATOR:
            if key in self.operator_aliases:
                return self.operator_aliases[key]
            for canonical in self.canonical_operators:
                if canonical.lower() == key:
                    return canonical
            return None
        if kind == FieldKind.STATUS:
            if key in self.status_mappings:
                return self.status_mappings[key].value
            for status in CallStatus:
                if status.value.lower() == key:
                    return status.value
            return None
        if kind == FieldKind.QUEUE:
            if key in self.queue_mappings:
                return self.queue_mappings[key]
            for canonical in self.canonical_queues:
                if canonical.lower() == key:
                    return canonical
            return None
        return None


# =============================================================================
# Field Normalizer
# =============================================================================


class FieldNormalizer:
    """
    Normalizes one raw field value at a time; never raises.

    Args:
        rules: Alias tables; defaults to the built-in tables.

    Attributes:
        known_operators: Canonical operator names seen so far. Valid operator
            results are added automatically.
    """

    def __init__(self, rules: Optional[NormalizationRules] = None):
        self.rules = rules or NormalizationRules()
        self.known_operators: Set[str] = set()

    # -------------------------------------------------------------------------
    # Known-operator bookkeeping
    # -------------------------------------------------------------------------

    def register_known_operators(self, names: Iterable[str]) -> None:
        for name in names:
            cleaned = collapse_whitespace(name or '')
            if cleaned:
                self.known_operators.add(cleaned)

    def clear_known_operators(self) -> None:
        self.known_operators.clear()

    def register_known_values(
        self,
        operators: Iterable[str] = (),
        statuses: Optional[Dict[str, str]] = None,
        queues: Iterable[str] = (),
    ) -> None:
        """
        Register reviewer-confirmed values.

        Operators join the known-operator set, statuses are extra spellings
        mapped to a call status, and queues become canonical queue names.
        Status and queue additions go into the shared NormalizationRules, so
        every component holding the same rules sees them.

        Raises:
            ValueError: If a status alias targets an unknown status.
        """
        if statuses:
            self.rules.add_status_aliases(statuses)
        self.rules.add_queues(queues)
        self.register_known_operators(operators)
        logger.info(
            f"Registered known values: {len(self.known_operators)} operators, "
            f"{len(self.rules.status_mappings)} status spellings, "
            f"{len(self.rules.canonical_queues)} queues"
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def normalize(self, kind: Union[FieldKind, str], raw: Optional[str]) -> NormalizationResult:
        """
        Normalize `raw` as a value of `kind`.

        Args:
            kind: 'operator', 'status', 'queue' or 'duration'.
            raw: Raw cell value; None is treated as empty.

        Returns:
            NormalizationResult, possibly invalid.
        """
        kind = FieldKind(kind)
        original = '' if raw is None else str(raw).strip()

        if not original:
            return self._empty_result(kind)

        if kind == FieldKind.DURATION:
            return self._normalize_duration(original)

        collapsed = collapse_whitespace(original)
        mapped = self.rules.lookup(kind, collapsed)

        if mapped is not None:
            normalized = mapped
            if original == normalized:
                confidence = 1.0
            else:
                confidence = max(self._confidence(original, normalized), KNOWN_MAPPING_CONFIDENCE)
        else:
            normalized = title_case(collapsed) if kind == FieldKind.OPERATOR else collapsed
            confidence = self._confidence(original, normalized)

        pattern_ok = self._matches_pattern(kind, normalized)
        is_valid = pattern_ok and confidence > VALIDITY_THRESHOLDS[kind]

        result = NormalizationResult(
            kind=kind,
            original_value=original,
            normalized_value=normalized,
            confidence=confidence,
            is_valid=is_valid,
        )

        if kind == FieldKind.OPERATOR:
            self._annotate_operator(result, pattern_ok)
        elif kind == FieldKind.STATUS:
            self._annotate_choice(result, pattern_ok, 'call status', sorted(self.rules.canonical_statuses))
            if pattern_ok and confidence < 0.9:
                result.warnings.append('Status was mapped from a non-standard spelling')
        else:
            self._annotate_choice(result, pattern_ok, 'queue', sorted(self.rules.canonical_queues))

        return result

    def normalize_operator(self, raw: Optional[str]) -> NormalizationResult:
        return self.normalize(FieldKind.OPERATOR, raw)

    def normalize_status(self, raw: Optional[str]) -> NormalizationResult:
        return self.normalize(FieldKind.STATUS, raw)

    def normalize_queue(self, raw: Optional[str]) -> NormalizationResult:
        return self.normalize(FieldKind.QUEUE, raw)

    def normalize_duration(self, raw: Optional[str]) -> NormalizationResult:
        return self.normalize(FieldKind.DURATION, raw)

    def to_status(self, value: Optional[str]) -> Optional[CallStatus]:
        """
        Resolve a status cell to a CallStatus.

        Tries the alias table first, then keyword fragments ("atend",
        "perd", "aband", "esper", ...). Returns None when nothing matches.
        """
        if not value or not value.strip():
            return None
        mapped = self.rules.lookup(FieldKind.STATUS, value)
        if mapped is not None:
            return CallStatus(mapped)
        lowered = _lookup_key(value)
        for fragments, status in STATUS_KEYWORDS:
            if any(fragment in lowered for fragment in fragments):
                return status
        return None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _confidence(original: str, normalized: str) -> float:
        return similarity(original.lower(), normalized.lower())

    def _matches_pattern(self, kind: FieldKind, normalized: str) -> bool:
        if kind == FieldKind.OPERATOR:
            return bool(_OPERATOR_PATTERN.match(normalized))
        if kind == FieldKind.STATUS:
            return normalized in self.rules.canonical_statuses
        if kind == FieldKind.QUEUE:
            return normalized in self.rules.canonical_queues
        return detect_duration_format(normalized) is not None

    def _empty_result(self, kind: FieldKind) -> NormalizationResult:
        if kind == FieldKind.QUEUE:
            normalized = self.rules.default_queue
        elif kind == FieldKind.DURATION:
            normalized = format_duration(0)
        else:
            normalized = ''
        return NormalizationResult(
            kind=kind,
            original_value='',
            normalized_value=normalized,
            confidence=0.0,
            is_valid=False,
            warnings=[f"{kind.value.capitalize()} is empty"],
            suggestions=[f"Check that the {kind.value} column is filled in"],
        )

    def _normalize_duration(self, original: str) -> NormalizationResult:
        shape = detect_duration_format(original)
        if shape is None:
            return NormalizationResult(
                kind=FieldKind.DURATION,
                original_value=original,
                normalized_value=format_duration(0),
                confidence=UNRECOGNIZED_DURATION_CONFIDENCE,
                is_valid=False,
                warnings=['Duration format not recognized'],
                suggestions=['Use MM:SS, HH:MM:SS, whole seconds or decimal minutes'],
            )

        seconds = parse_duration(original)
        result = NormalizationResult(
            kind=FieldKind.DURATION,
            original_value=original,
            normalized_value=format_duration(seconds),
            confidence=1.0,
            is_valid=True,
        )
        if original.startswith('-'):
            result.warnings.append('Negative duration clamped to 0')
        return result

    def _annotate_operator(self, result: NormalizationResult, pattern_ok: bool) -> None:
        if not pattern_ok:
            result.warnings.append('Operator name format not recognized')
            result.suggestions.append('Check that the name contains only letters and spaces')

        if result.confidence < 0.8:
            result.warnings.append('Operator name may have been normalized incorrectly')
            result.suggestions.append('Review the normalized name')

        similar = find_similar(
            result.normalized_value,
            self.known_operators,
            threshold=DUPLICATE_NAME_THRESHOLD,
        )
        for name, score in similar:
            result.warnings.append(
                f"Similar operator name already seen: '{name}' ({score:.0%} similar)"
            )
            result.suggestions.append(f"Consolidate with '{name}' if this is the same person")

        if result.is_valid:
            self.known_operators.add(result.normalized_value)

    @staticmethod
    def _annotate_choice(
        result: NormalizationResult,
        pattern_ok: bool,
        label: str,
        choices: List[str],
    ) -> None:
        if pattern_ok:
            return
        result.warnings.append(f"Unrecognized {label}: '{result.original_value}'")
        closest = max(
            choices,
            key=lambda choice: (similarity(result.normalized_value.lower(), choice.lower()), choice),
            default=None,
        )
        if closest is not None:
            result.suggestions.append(f"Did you mean '{closest}'?")
        result.suggestions.append(f"Expected one of: {', '.join(choices)}")
