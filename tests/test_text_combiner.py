"""Tests for the embedding text combiner."""

import pytest

from services.text_combiner import combine_text_for_embedding


CONTEXT = {"tomorrow": {"text": "tomorrow", "index": 19}, "last_week": {"text": "last week", "index": 40}}


def test_all_sections_in_order():
    combined = combine_text_for_embedding(
        "Doctor appointment", "Clinic on Main St", ["health", "todo"], CONTEXT
    )
    assert combined == (
        "Note: Doctor appointment\n\n"
        "Content: Clinic on Main St\n\n"
        "Tags: health, todo\n\n"
        "Temporal context: tomorrow last week"
    )


@pytest.mark.parametrize("note,text,tags,context,expected", [
    (None, "Invoice total", None, None, "Content: Invoice total"),
    ("Lunch", "", [], {}, "Note: Lunch"),
    ("   ", None, ["receipts"], None, "Tags: receipts"),
    (None, None, None, CONTEXT, "Temporal context: tomorrow last week"),
    ("Trip", None, ["travel"], None, "Note: Trip\n\nTags: travel"),
])
def test_absent_sections_are_omitted(note, text, tags, context, expected):
    assert combine_text_for_embedding(note, text, tags, context) == expected


def test_empty_everything():
    assert combine_text_for_embedding(None, None, None, None) == ""


def test_sections_are_trimmed():
    combined = combine_text_for_embedding("  Coffee with Sam \n", "\nReceipt  ")
    assert combined == "Note: Coffee with Sam\n\nContent: Receipt"
