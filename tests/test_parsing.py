"""Defensive parsing of LLM extension output."""

from __future__ import annotations

import pytest

from core.expansion.parsing import MAX_ITEMS, ParsedExtensions, ParseFailure, parse_extensions


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('["a", "b"]', ("a", "b")),
        ('```json\n["glossy", " matte "]\n```', ("glossy", "matte")),
        ("```\n[\"x\"]\n```", ("x",)),
        ('{"extensions": ["one", "two"]}', ("one", "two")),
        ('{"array": ["from array"]}', ("from array",)),
        ('{"groundings": ["grounded"]}', ("grounded",)),
        ('Sure! Here you go: ["inside prose"] Hope it helps.', ("inside prose",)),
        ('[3, "d", ""]', ("3", "d")),
        ('[{"style": "flat", "palette": "blue"}]', ("flat blue",)),
    ],
)
def test_parses_supported_shapes(raw, expected):
    result = parse_extensions(raw)

    assert isinstance(result, ParsedExtensions)
    assert result.items == expected


@pytest.mark.parametrize(
    "raw",
    [None, "", "   ", "not json at all", '{"other": "shape"}', '"just a string"', "[]", '["", "  "]', "[true, null]"],
)
def test_rejects_unusable_output(raw):
    result = parse_extensions(raw)

    assert isinstance(result, ParseFailure)
    assert result.reason


def test_caps_number_of_items():
    raw = "[" + ", ".join(f'"item {n}"' for n in range(10)) + "]"

    result = parse_extensions(raw)

    assert isinstance(result, ParsedExtensions)
    assert len(result.items) == MAX_ITEMS
    assert result.items[0] == "item 0"
