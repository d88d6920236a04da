"""Tests for input models, validators and small utilities."""

import asyncio
import datetime

import pytest
from pydantic import ValidationError as PydanticValidationError

from tagnotes.exceptions import ErrorCode, ValidationError
from tagnotes.models.schema import (
    MAX_HASHTAG_LENGTH,
    MAX_ROW_ID,
    NoteInput,
    NoteKind,
    ReorderInput,
    ReorderResult,
    ensure_timezone_aware,
    normalize_hashtags,
    validate_blob_key,
)
from tagnotes.utils import parse_payload, run_sync, sanitize_filename


class TestHashtags:
    """Tests for hashtag normalization."""

    def test_strips_and_deduplicates_in_order(self):
        assert normalize_hashtags(["b", " a ", "b", "c", "a"]) == ["b", "a", "c"]

    def test_case_is_preserved(self):
        assert normalize_hashtags(["Work", "work"]) == ["Work", "work"]

    @pytest.mark.parametrize(
        "tags", [[""], ["   "], ["a b"], ["a,b"], ["x" * (MAX_HASHTAG_LENGTH + 1)], [3]]
    )
    def test_rejects_bad_tags(self, tags):
        with pytest.raises(ValueError):
            normalize_hashtags(tags)


class TestInputModels:
    """Tests for the request payload models."""

    def test_note_input_alias_and_defaults(self):
        data = NoteInput.model_validate({"content": "x", "type": "code", "hashtags": None})
        assert data.kind == NoteKind.CODE
        assert data.hashtags == []

    def test_note_input_defaults_to_text(self):
        assert NoteInput(content="x").kind == NoteKind.TEXT

    def test_reorder_input_alias(self):
        assert ReorderInput.model_validate({"noteIds": [3, 1]}).note_ids == [3, 1]

    def test_reorder_input_rejects_duplicates(self):
        with pytest.raises(PydanticValidationError):
            ReorderInput(note_ids=[1, 1])

    def test_reorder_input_bounds_ids_to_row_range(self):
        assert ReorderInput(note_ids=[MAX_ROW_ID]).note_ids == [MAX_ROW_ID]
        for bad in (0, -1, MAX_ROW_ID + 1):
            with pytest.raises(PydanticValidationError):
                ReorderInput(note_ids=[bad])

    def test_reorder_result_partial(self):
        assert not ReorderResult(updated_ids=[1]).partial
        assert ReorderResult(updated_ids=[1], skipped_ids=[2]).partial


class TestParsePayload:
    """Tests for pydantic to ValidationError translation."""

    def test_passes_models_through(self):
        data = NoteInput(content="x")
        assert parse_payload(NoteInput, data) is data

    def test_reports_first_field(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_payload(NoteInput, {"content": "x", "type": "poem"})
        assert exc_info.value.field == "type"
        assert exc_info.value.code == ErrorCode.VALIDATION_FAILED

    def test_non_dict_payload(self):
        with pytest.raises(ValidationError):
            parse_payload(ReorderInput, ["not", "a", "dict"])


class TestBlobKeyAndFilenames:
    """Tests for key validation and filename sanitizing."""

    @pytest.mark.parametrize("key", ["", "..", "a/../b", "a\\b", "a b", "a;b"])
    def test_invalid_keys(self, key):
        with pytest.raises(ValueError):
            validate_blob_key(key)

    def test_valid_key(self):
        assert validate_blob_key("0f3a_report-v2.pdf") == "0f3a_report-v2.pdf"

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("My Report (final).pdf", "My_Report_final.pdf"),
            ("../../etc/passwd", "passwd"),
            ("C:\\Users\\me\\notes.txt", "notes.txt"),
            ("résumé.txt", "resume.txt"),
            ("...", ""),
            ("", ""),
        ],
    )
    def test_sanitize_filename(self, name, expected):
        assert sanitize_filename(name) == expected

    def test_sanitize_truncates(self):
        assert len(sanitize_filename("a" * 500 + ".txt")) == 120


class TestMisc:
    """Tests for timezone handling and run_sync."""

    def test_naive_datetimes_become_utc(self):
        naive = datetime.datetime(2024, 1, 2, 3, 4, 5)
        assert ensure_timezone_aware(naive).tzinfo == datetime.timezone.utc

    def test_run_sync(self):
        assert asyncio.run(run_sync(sum, [1, 2, 3])) == 6
