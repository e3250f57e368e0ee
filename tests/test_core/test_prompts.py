"""Tests for prompt building and metadata normalization."""

import pytest

from stockify_pipeline.core.prompts import (
    ADOBE_STOCK_CATEGORIES,
    SHUTTERSTOCK_CATEGORIES,
    build_prompt,
    clean_json_fence,
    normalize_metadata,
    parse_metadata_text,
    split_terms,
)


class TestBuildPrompt:
    """Test platform prompts."""

    def test_shutterstock(self):
        prompt = build_prompt("shutterstock", "rome_2023.jpg")
        assert "Shutterstock" in prompt
        assert SHUTTERSTOCK_CATEGORIES[0] in prompt
        assert prompt.rstrip().endswith("Filename: rome_2023.jpg")

    def test_adobe_stock(self):
        prompt = build_prompt("adobe_stock", "a.jpg")
        assert "Adobe Stock" in prompt
        assert ADOBE_STOCK_CATEGORIES[-1] in prompt

    def test_unknown_platform(self):
        with pytest.raises(ValueError):
            build_prompt("getty", "a.jpg")


class TestParsing:
    """Test model output parsing."""

    def test_clean_json_fence(self):
        assert clean_json_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert clean_json_fence('  {"a": 1} ') == '{"a": 1}'

    def test_embedded_object(self):
        text = 'Sure! {"Description": "A cat", "Keywords": "cat, pet"} Hope this helps.'
        metadata = parse_metadata_text(text, "cat.jpg", "shutterstock")
        assert metadata.description == "A cat"
        assert metadata.keywords == ["cat", "pet"]

    def test_no_object(self):
        with pytest.raises(ValueError):
            parse_metadata_text("no json here", "cat.jpg", "shutterstock")

    def test_broken_object(self):
        with pytest.raises(ValueError):
            parse_metadata_text('{"Description": "A cat",', "cat.jpg", "shutterstock")

    def test_split_terms(self):
        assert split_terms("a, b ,, c ") == ["a", "b", "c"]
        assert split_terms(["x", " y "]) == ["x", "y"]
        assert split_terms(None) == []


class TestNormalizeMetadata:
    """Test platform field mapping."""

    def test_shutterstock_defaults(self):
        metadata = normalize_metadata({"Description": "A cat"}, "cat.jpg", "shutterstock")
        assert metadata.extra == {"editorial": "no", "mature_content": "no", "illustration": "no"}
        assert metadata.keywords == []

    def test_shutterstock_editorial(self):
        metadata = normalize_metadata({"Editorial": "Yes"}, "cat.jpg", "shutterstock")
        assert metadata.extra["editorial"] == "yes"

    def test_adobe_title_and_releases(self):
        data = {"Title": "A cat", "Keywords": "cat", "Category": "1", "Releases": "MR-1"}
        metadata = normalize_metadata(data, "cat.jpg", "adobe_stock")
        assert metadata.description == "A cat"
        assert metadata.categories == ["1"]
        assert metadata.extra == {"releases": "MR-1"}
