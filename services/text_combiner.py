# ──────────────────────────────────────────────────────────────────────────────
# File: services/text_combiner.py
# ──────────────────────────────────────────────────────────────────────────────
"""Builds the canonical text blob that gets embedded for a capture."""
from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

SECTION_SEPARATOR = "\n\n"


def combine_text_for_embedding(
    note: Optional[str],
    extracted_text: Optional[str],
    tags: Optional[Iterable[str]] = None,
    temporal_context: Optional[Mapping[str, Dict[str, Any]]] = None,
) -> str:
    """Join note, content, tags and temporal context as labeled sections.

    Sections always appear in the order Note, Content, Tags, Temporal
    context; a section whose source is empty is left out entirely.
    """
    parts = []

    if note and note.strip():
        parts.append(f"Note: {note.strip()}")

    if extracted_text and extracted_text.strip():
        parts.append(f"Content: {extracted_text.strip()}")

    tag_list = [str(tag) for tag in tags] if tags else []
    if tag_list:
        parts.append(f"Tags: {', '.join(tag_list)}")

    if temporal_context:
        context_text = " ".join(entry["text"] for entry in temporal_context.values())
        parts.append(f"Temporal context: {context_text}")

    return SECTION_SEPARATOR.join(parts)
