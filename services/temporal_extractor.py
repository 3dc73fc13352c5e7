# ──────────────────────────────────────────────────────────────────────────────
# File: services/temporal_extractor.py
# ──────────────────────────────────────────────────────────────────────────────
"""
Temporal metadata extraction.

Two independent signals are pulled out of free text:

- the best single date/time mention, resolved against a reference instant by
  a pluggable natural-language ``DateParser`` (``dateparser`` by default),
  scored with a small set of confidence heuristics;
- temporal context phrases ("yesterday", "last week", "3 days ago",
  "morning pages") that say something about time without resolving to a
  calendar date.

A capture that only carries context phrases is still temporally
informative, so a result is returned whenever either signal is present.
"""
from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.8
SHORT_MATCH_CHARS = 5

_MONTHS = r"January|February|March|April|May|June|July|August|September|October|November|December"
_MONTHS_SHORT = r"Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec"
_WEEKDAYS = r"monday|tuesday|wednesday|thursday|friday|saturday|sunday"

YEAR_RE = re.compile(r"\d{4}")
MONTH_NAME_RE = re.compile(rf"\b(?:{_MONTHS})\b", re.IGNORECASE)
RELATIVE_DAY_RE = re.compile(r"\b(?:today|yesterday|tomorrow)\b", re.IGNORECASE)
TIME_OF_DAY_RE = re.compile(
    r"\b\d{1,2}:\d{2}(?::\d{2})?\b|\b\d{1,2}\s*(?:am|pm|a\.m\.|p\.m\.)|\b(?:noon|midnight)\b|\bo'?clock\b",
    re.IGNORECASE,
)
NUMERIC_DATE_RE = re.compile(r"\b\d{1,4}[/.\-]\d{1,2}(?:[/.\-]\d{2,4})?\b")
_TIME_JOINER_RE = re.compile(r"^\s*(?:at|@|,)?\s*$", re.IGNORECASE)
DATE_WORD_RE = re.compile(
    rf"\b(?:{_MONTHS}|{_MONTHS_SHORT}|{_WEEKDAYS}|today|yesterday|tomorrow|tonight|now"
    r"|ago|next|last|this|week|month|year|morning|afternoon|evening|night)\b",
    re.IGNORECASE,
)

TEMPORAL_CONTEXT_PATTERNS: List[re.Pattern] = [
    re.compile(
        r"\b(today|yesterday|tomorrow|tonight|this morning|this afternoon|this evening)\b",
        re.IGNORECASE,
    ),
    re.compile(rf"\b(last (week|month|year|night|{_WEEKDAYS}))\b", re.IGNORECASE),
    re.compile(rf"\b(next (week|month|year|{_WEEKDAYS}))\b", re.IGNORECASE),
    re.compile(r"\b(\d+)\s*(days?|weeks?|months?)\s*(ago|from now)\b", re.IGNORECASE),
    re.compile(
        r"\b(morning|afternoon|evening|night)\s*(pages|journal|notes|thoughts|reflection)\b",
        re.IGNORECASE,
    ),
]


@dataclass(frozen=True)
class DateMatch:
    """Best date/time mention reported by a ``DateParser``."""
    text: str
    index: int
    value: datetime
    has_time: bool


@dataclass
class TemporalMatch:
    text: str
    index: int
    confidence: float
    method: str


@dataclass
class TemporalResult:
    extracted_date: Optional[str] = None
    extracted_time: Optional[str] = None
    extracted_datetime: Optional[datetime] = None
    confidence: float = 0.0
    raw_matches: List[TemporalMatch] = field(default_factory=list)
    temporal_context: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        if self.extracted_datetime is not None:
            payload["extracted_datetime"] = self.extracted_datetime.isoformat()
        return payload


class DateParser(ABC):
    """Narrow interface over a natural-language date parser."""

    method = "parser"

    @abstractmethod
    def parse(self, text: str, reference: datetime) -> Optional[DateMatch]:
        """Return the best date/time mention in ``text`` or None."""


def looks_temporal(matched: str) -> bool:
    """Reject parser hits that are bare numbers (invoice ids, prices)."""
    return bool(
        DATE_WORD_RE.search(matched)
        or NUMERIC_DATE_RE.search(matched)
        or TIME_OF_DAY_RE.search(matched)
    )


class DateparserParser(DateParser):
    """``DateParser`` backed by ``dateparser.search.search_dates``."""

    method = "dateparser"

    def __init__(self, languages: Sequence[str] = ("en",), prefer_dates_from: str = "current_period"):
        self.languages = list(languages)
        self.prefer_dates_from = prefer_dates_from

    def parse(self, text: str, reference: datetime) -> Optional[DateMatch]:
        from dateparser.search import search_dates

        tzinfo = reference.tzinfo
        base = reference.replace(tzinfo=None)
        found = search_dates(
            text,
            languages=self.languages,
            settings={
                "RELATIVE_BASE": base,
                "PREFER_DATES_FROM": self.prefer_dates_from,
                "RETURN_AS_TIMEZONE_AWARE": False,
            },
        )
        if not found:
            return None

        hits = []
        cursor = 0
        for matched, value in found:
            index = text.find(matched, cursor)
            if index >= 0:
                cursor = index + len(matched)
            hits.append((matched, max(index, 0), value))

        for position, (matched, index, value) in enumerate(hits):
            if not looks_temporal(matched):
                continue
            has_time = bool(TIME_OF_DAY_RE.search(matched))
            if not has_time and position + 1 < len(hits):
                merged = self._merge_following_time(text, hits[position], hits[position + 1])
                if merged is not None:
                    matched, value = merged
                    has_time = True
            if tzinfo is not None:
                value = value.replace(tzinfo=tzinfo)
            return DateMatch(text=matched, index=index, value=value, has_time=has_time)
        return None

    @staticmethod
    def _merge_following_time(text, date_hit, time_hit):
        """Join "tomorrow" + "at 3pm" when the parser reports them separately."""
        date_text, date_index, date_value = date_hit
        time_text, time_index, time_value = time_hit
        end = date_index + len(date_text)
        if time_index < end or not TIME_OF_DAY_RE.search(time_text):
            return None
        if not _TIME_JOINER_RE.match(text[end:time_index]):
            return None
        value = datetime.combine(date_value.date(), time_value.time())
        return text[date_index:time_index + len(time_text)], value


def calculate_confidence(match: DateMatch) -> float:
    confidence = BASE_CONFIDENCE

    if YEAR_RE.search(match.text):
        confidence += 0.1
    if MONTH_NAME_RE.search(match.text):
        confidence += 0.05
    if match.has_time:
        confidence += 0.05

    if len(match.text) < SHORT_MATCH_CHARS:
        confidence -= 0.2
    if RELATIVE_DAY_RE.search(match.text):
        confidence -= 0.1

    return min(1.0, max(0.0, round(confidence, 4)))


def extract_temporal_context(text: str) -> Dict[str, Dict[str, Any]]:
    """Collect context phrases keyed by their normalized form; last match wins."""
    context: Dict[str, Dict[str, Any]] = {}
    for pattern in TEMPORAL_CONTEXT_PATTERNS:
        for match in pattern.finditer(text):
            key = re.sub(r"\s+", "_", match.group(0).lower())
            context[key] = {"text": match.group(0), "index": match.start()}
    return context


class TemporalExtractor:
    def __init__(self, parser: Optional[DateParser] = None):
        self.parser = parser or DateparserParser()

    def extract(self, text: Any, reference: Optional[datetime] = None) -> Optional[TemporalResult]:
        """Extract the best date mention and the temporal context of ``text``.

        ``reference`` anchors relative expressions; reprocessing jobs should
        pass the capture's creation time rather than relying on "now".
        Parser failures degrade to None instead of propagating.
        """
        if not text or not isinstance(text, str):
            return None

        reference = reference or datetime.now()
        result = TemporalResult()

        try:
            best = self.parser.parse(text, reference)
            if best is not None:
                result.extracted_datetime = best.value
                result.extracted_date = best.value.date().isoformat()
                if best.has_time:
                    result.extracted_time = best.value.strftime("%H:%M:%S")
                result.confidence = calculate_confidence(best)
                result.raw_matches.append(
                    TemporalMatch(
                        text=best.text,
                        index=best.index,
                        confidence=result.confidence,
                        method=self.parser.method,
                    )
                )

            result.temporal_context = extract_temporal_context(text)
        except Exception as e:
            logger.warning(f"Temporal extraction failed: {e}")
            return None

        if result.extracted_date or result.extracted_time or result.temporal_context:
            return result
        return None
