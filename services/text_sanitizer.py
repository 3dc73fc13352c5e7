# ──────────────────────────────────────────────────────────────────────────────
# File: services/text_sanitizer.py
# ──────────────────────────────────────────────────────────────────────────────
"""
OCR text sanitizer.

Screenshots of browsers and terminals come back from OCR full of runtime
noise: stack frames, console calls, line-number gutters, file paths.  The
sanitizer strips that noise with an ordered list of regex rules and then
normalizes whitespace.  Content rules always run before the whitespace rules
because removed spans leave gaps that the whitespace rules clean up.

The rule list is applied until the text stops changing.  Every rule only
deletes characters, so this terminates and makes ``sanitize`` idempotent.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, List, Sequence, Union

Replacement = Union[str, Callable[[re.Match], str]]

# Lazily consume up to a paragraph break, a new capitalized line or the end
_UNTIL_BREAK = r".*?(?=\n\n|\n[A-Z]|\Z)"

MIN_PLAUSIBLE_YEAR = 1900
MAX_PLAUSIBLE_YEAR = 2100


@dataclass(frozen=True)
class SanitizerRule:
    """A single (matcher, replacement) step of the pipeline."""
    name: str
    pattern: re.Pattern
    replacement: Replacement = ""

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


def _rule(name: str, pattern: str, replacement: Replacement = "", flags: int = 0) -> SanitizerRule:
    return SanitizerRule(name, re.compile(pattern, flags), replacement)


def _in_year_range(value: int) -> bool:
    return MIN_PLAUSIBLE_YEAR <= value <= MAX_PLAUSIBLE_YEAR


def _is_plausible_date(first: str, second: str, third: str) -> bool:
    """True if a numeric triple reads as Y/M/D, M/D/Y or D/M/Y."""
    a, b, c = int(first), int(second), int(third)

    if len(first) == 4:
        return _in_year_range(a) and 1 <= b <= 12 and 1 <= c <= 31

    if len(first) > 2 or len(second) > 2:
        return False
    if len(third) == 4:
        if not _in_year_range(c):
            return False
    elif len(third) != 2:
        return False
    return (1 <= a <= 12 and 1 <= b <= 31) or (1 <= b <= 12 and 1 <= a <= 31)


def _drop_path_like_triple(match: re.Match) -> str:
    if _is_plausible_date(match.group(1), match.group(2), match.group(3)):
        return match.group(0)
    return ""


def _drop_implausible_year(match: re.Match) -> str:
    return match.group(0) if _in_year_range(int(match.group(0))) else ""


CONTENT_RULES: List[SanitizerRule] = [
    # Stack traces and call-stack dumps
    _rule("call_stack", r"Call Stack" + _UNTIL_BREAK, flags=re.DOTALL),
    _rule("python_traceback", r"Traceback \(most recent call last\):.*?(?=\n\n|\Z)", flags=re.DOTALL),
    _rule("uncaught", r"Uncaught" + _UNTIL_BREAK, flags=re.DOTALL),
    _rule(
        "stack_frame",
        r"^[ \t]*at [\w.$<>\[\]]+(?: \[as \w+\])?[^\n]*?:\d+:\d+\)?[ \t]*$",
        flags=re.MULTILINE,
    ),
    # Source file / line references such as src/lib/api.js (12:5) or app/main.py:42
    _rule(
        "source_reference",
        r"(?:[\w.-]+/)+[\w.-]+\.(?:jsx?|tsx?|mjs|py)(?:\s*\(\d+:\d+\)|:\d+(?::\d+)?)",
    ),
    # Thrown errors and error report boilerplate
    _rule("thrown_error", r"throw new \w*Error" + _UNTIL_BREAK, flags=re.DOTALL),
    # Logged errors such as "Error: Request failed with status 500" or "TypeError: x is undefined"
    _rule("error_message", r"^[ \t]*\w*Error:[^\n]*$", flags=re.MULTILINE),
    _rule("error_details", r"(?:Error details|API call failed):" + _UNTIL_BREAK, flags=re.DOTALL),
    # Console invocations
    _rule("console_call", r"console\.(?:log|error|warn|info|debug)" + _UNTIL_BREAK, flags=re.DOTALL),
    # Line-number gutters: "201 21 return date:", "201 21"
    _rule("numbered_return", r"\d+\s+\d+\s+return\b(?:\s+date:)?"),
    _rule("return_date", r"return\s+date:" + _UNTIL_BREAK, flags=re.DOTALL),
    _rule("line_number_pair", r"\b\d{1,3}[ \t]+\d{1,3}\b"),
    # a/b/c that cannot be a calendar date is a path fragment
    _rule("path_like_triple", r"(\d+)\s*/\s*(\d+)\s*/\s*(\d+)", _drop_path_like_triple),
    # Code statements left on their own line
    _rule(
        "keyword_statement",
        r"^[ \t]*(?:return|const|let|var|function|async|await|if|else|try|catch|throw|new)\b"
        r"[^\n]*[;{}()=][^\n]*$",
        flags=re.MULTILINE,
    ),
    # Four-digit numbers that cannot be years are dropped, the line stays
    _rule("implausible_year", r"\b\d{4}\b", _drop_implausible_year),
]

WHITESPACE_RULES: List[SanitizerRule] = [
    _rule("excess_newlines", r"\n{3,}", "\n\n"),
    _rule("trailing_whitespace", r"[ \t]+$", flags=re.MULTILINE),
    _rule("whitespace_only_lines", r"^[ \t]+$", flags=re.MULTILINE),
    _rule("blank_line_runs", r"\n\s*\n\s*\n", "\n\n"),
]

DEFAULT_RULES: List[SanitizerRule] = CONTENT_RULES + WHITESPACE_RULES


class TextSanitizer:
    """Applies an ordered rule list to raw OCR output."""

    def __init__(self, rules: Sequence[SanitizerRule] = DEFAULT_RULES):
        self.rules = list(rules)

    def _apply_once(self, text: str) -> str:
        for rule in self.rules:
            text = rule.apply(text)
        return text.strip()

    def sanitize(self, raw_text: Any) -> str:
        """Return cleaned text; empty or non-string input yields ``""``."""
        if not raw_text or not isinstance(raw_text, str):
            return ""

        text = raw_text
        while True:
            cleaned = self._apply_once(text)
            if cleaned == text:
                return cleaned
            text = cleaned


_default_sanitizer = TextSanitizer()


def sanitize_text(raw_text: Any) -> str:
    """Sanitize with the default rule set."""
    return _default_sanitizer.sanitize(raw_text)
