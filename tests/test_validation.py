"""Tests for input validation and sanitization."""

import pytest

from todoist_mcp.errors import ValidationError
from todoist_mcp.validation import (
    sanitize_text,
    validate_color,
    validate_date_string,
    validate_id,
    validate_labels,
    validate_limit,
    validate_priority,
    validate_task_content,
    validate_task_identifier,
    validate_url,
)


class TestText:
    def test_strips_whitespace_and_control_characters(self):
        assert sanitize_text("  hello\x00 world\x07 ", "content") == "hello world"

    def test_keeps_newlines_and_tabs(self):
        assert validate_task_content("line one\n\tline two") == "line one\n\tline two"

    @pytest.mark.parametrize("value", [None, 3, ["x"]])
    def test_non_strings_are_rejected(self, value):
        with pytest.raises(ValidationError) as excinfo:
            validate_task_content(value)
        assert excinfo.value.field == "content"

    def test_length_limit_applies_after_trimming(self):
        assert validate_task_content("  " + "a" * 500 + "  ") == "a" * 500


class TestScalars:
    @pytest.mark.parametrize("value", [1, 4, None])
    def test_valid_priority(self, value):
        assert validate_priority(value) == value

    @pytest.mark.parametrize("value", [0, 5, 2.0, "2", True])
    def test_invalid_priority(self, value):
        with pytest.raises(ValidationError):
            validate_priority(value)

    @pytest.mark.parametrize("value", [0, 101, "10", False])
    def test_invalid_limit(self, value):
        with pytest.raises(ValidationError):
            validate_limit(value)

    @pytest.mark.parametrize("value", ["2024-02-29", " 2024-12-31 "])
    def test_valid_dates(self, value):
        assert validate_date_string(value, "due_before") == value.strip()

    @pytest.mark.parametrize("value", ["2023-02-29", "2024/01/01", "20240101", "tomorrow"])
    def test_invalid_dates(self, value):
        with pytest.raises(ValidationError) as excinfo:
            validate_date_string(value, "due_before")
        assert excinfo.value.field == "due_before"

    def test_empty_date_means_absent(self):
        assert validate_date_string("", "due_after") is None

    @pytest.mark.parametrize("value", ["6Jv8p2x", "2995104339", "abc_def-1"])
    def test_valid_ids(self, value):
        assert validate_id(value, "project_id") == value

    @pytest.mark.parametrize("value", ["has space", "semi;colon", 42])
    def test_invalid_ids(self, value):
        with pytest.raises(ValidationError):
            validate_id(value, "project_id")

    def test_color_is_normalised(self):
        assert validate_color(" Sky_Blue ") == "sky_blue"


class TestCollections:
    def test_labels_are_sanitized(self):
        assert validate_labels([" work ", "home"]) == ["work", "home"]

    @pytest.mark.parametrize("value", ["work", ["ok", ""], ["x"] * 11])
    def test_invalid_labels(self, value):
        with pytest.raises(ValidationError):
            validate_labels(value)

    @pytest.mark.parametrize("url", ["https://example.com/a.pdf", "http://files.local/x?y=1"])
    def test_valid_urls(self, url):
        assert validate_url(url) == url

    @pytest.mark.parametrize("url", ["ftp://example.com", "example.com", "https://"])
    def test_invalid_urls(self, url):
        with pytest.raises(ValidationError):
            validate_url(url)

    def test_task_identifier(self):
        validate_task_identifier("1", None)
        validate_task_identifier(None, "name")
        with pytest.raises(ValidationError):
            validate_task_identifier(None, "")
        with pytest.raises(ValidationError):
            validate_task_identifier(None, "n" * 201)
