"""
Tests for prompt assembly and response post-processing.
"""

import pytest

from simplify.processing.prompt_builder import (
    PROJECT_PROMPT_HEADER,
    build_system_prompt,
    category_prompt_for,
    normalize_quotes,
    prompt_hash,
)
from simplify.processing.response_parser import (
    MalformedResponseError,
    compact_json,
    normalize_text,
    parse_grouped_response,
)


class TestPromptBuilder:
    def test_system_prompt_layout(self, variant):
        prompt = build_system_prompt(variant, "Simplify this text.", "Keep sentences short.")

        assert prompt == "Rewrite in plain language.\n\nSimplify this text.\n\nKeep sentences short."

    def test_project_prompt_is_appended_with_header(self, variant):
        variant.project_prompt = "Audience: new readers."

        prompt = build_system_prompt(variant, "fi", "cp")

        assert prompt.startswith("Rewrite in plain language." + PROJECT_PROMPT_HEADER + "Audience: new readers.")
        assert prompt.endswith("\n\nfi\n\ncp")

    def test_prompt_hash_changes_with_prompt(self, variant):
        first = prompt_hash(build_system_prompt(variant, "a", "b"))
        second = prompt_hash(build_system_prompt(variant, "a", "c"))

        assert first != second
        assert len(first) == 32

    def test_category_prompt_selection(self, variant):
        blocks = variant.field_type_instructions["blocks"]
        text = variant.field_type_instructions["text"]

        assert category_prompt_for(variant, blocks) == "Return valid JSON only."
        assert category_prompt_for(variant, text) == "Keep sentences short."
        assert category_prompt_for(variant, None) == "Keep sentences short."

    def test_unknown_category_falls_back_to_default(self, variant):
        text = variant.field_type_instructions["text"]
        text.category = "missing"

        assert category_prompt_for(variant, text) == "Keep sentences short."

    def test_normalize_quotes(self):
        assert normalize_quotes("„Hallo“") == '\\"Hallo\\"'
        assert normalize_quotes("‚ja‘") == "'ja'"
        assert normalize_quotes("plain") == "plain"


class TestNormalizeText:
    def test_strips_code_fences(self):
        assert normalize_text("```json\n[1, 2]\n```", "blocks") == "[1, 2]"

    def test_collapses_blank_lines(self):
        assert normalize_text("One\n\n\n\nTwo", "textarea") == "One\n\nTwo"

    def test_drops_commentary_after_json(self):
        text = '[{"type": "text"}]\nI simplified the block above.'

        assert normalize_text(text, "blocks") == '[{"type": "text"}]'

    def test_plain_fields_keep_trailing_text(self):
        text = "[Note] Short text.\nMore."

        assert normalize_text(text, "text") == text


class TestCompactJson:
    def test_structured_output_is_compacted(self):
        assert compact_json('[ {"a": "ü"} ]', "blocks") == '[{"a":"ü"}]'

    def test_invalid_json_is_returned_unchanged(self):
        assert compact_json("[not json", "blocks") == "[not json"

    def test_plain_types_are_untouched(self):
        assert compact_json('{"a": 1}', "text") == '{"a": 1}'


class TestParseGroupedResponse:
    def test_field_content_format(self):
        text = "Field: headline\nContent: Hi\n\nField: text\nContent: Body line one.\nLine two."

        result = parse_grouped_response(text, ["headline", "text"])

        assert result == {"headline": "Hi", "text": "Body line one.\nLine two."}

    def test_positional_fallback(self):
        result = parse_grouped_response("One\n\nTwo", ["a", "b"])

        assert result == {"a": "One", "b": "Two"}

    def test_positional_fallback_pads_missing_parts(self):
        result = parse_grouped_response("One", ["a", "b", "c"])

        assert result == {"a": "One", "b": "", "c": ""}

    def test_positional_fallback_keeps_surplus_on_last_field(self):
        result = parse_grouped_response("One\n\nTwo\n\nThree", ["a", "b"])

        assert result == {"a": "One", "b": "Two\n\nThree"}

    def test_empty_response_raises(self):
        with pytest.raises(MalformedResponseError):
            parse_grouped_response("  \n ", ["a"])
