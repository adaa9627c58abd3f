"""Tests for shared pipeline helpers."""

import re

import pytest

from card_advisor.models.card_models import ConversationTurn
from card_advisor.services.errors import CardAdvisorError, MalformedOutput
from card_advisor.services.utils import (
    compile_patterns,
    contains_any_phrase,
    extract_json_object,
    matched_phrases,
    matches_any_pattern,
    recent_history,
)

# =============================================================================
# Keyword and Pattern Matching Tests
# =============================================================================


class TestPhraseMatching:
    """Tests for phrase and pattern matching helpers."""

    def test_contains_any_phrase_is_case_insensitive(self):
        """Should match phrases regardless of query case."""
        assert contains_any_phrase("What's the BEST travel card?", ["best"]) is True
        assert contains_any_phrase("Tell me about APR", ["best", "recommend"]) is False

    def test_matched_phrases_keeps_given_order(self):
        """Should return every matched phrase in the order given."""
        found = matched_phrases("Show me the best travel card", ["travel", "best", "gas"])

        assert found == ["travel", "best"]

    def test_compiled_patterns_ignore_case(self):
        """compile_patterns should produce case-insensitive patterns."""
        patterns = compile_patterns([r"\bany of these\b"])

        assert matches_any_pattern("Do ANY OF THESE have lounge access?", patterns)
        assert not matches_any_pattern("Any good cards?", patterns)
        assert all(p.flags & re.IGNORECASE for p in patterns)


# =============================================================================
# JSON Extraction Tests
# =============================================================================


class TestExtractJsonObject:
    """Tests for extract_json_object."""

    def test_plain_object(self):
        """Should parse a bare JSON object."""
        assert extract_json_object('{"needs_cards": false}') == {"needs_cards": False}

    def test_object_inside_prose(self):
        """Should parse the outermost braces span when prose surrounds it."""
        text = 'Sure! Here you go:\n```json\n{"summary": "Hi", "cards": []}\n```'

        assert extract_json_object(text) == {"summary": "Hi", "cards": []}

    def test_non_object_json_is_malformed(self):
        """A JSON array is not an acceptable object."""
        with pytest.raises(MalformedOutput):
            extract_json_object('["a", "b"]')

    def test_garbage_is_malformed_and_keeps_raw_text(self):
        """Unparsable text raises MalformedOutput carrying the raw text."""
        with pytest.raises(MalformedOutput) as exc_info:
            extract_json_object("I cannot answer that {oops")

        assert exc_info.value.raw_text == "I cannot answer that {oops"
        assert isinstance(exc_info.value, CardAdvisorError)

    def test_empty_text_is_malformed(self):
        """Empty output is malformed."""
        with pytest.raises(MalformedOutput):
            extract_json_object("")


# =============================================================================
# History Window Tests
# =============================================================================


class TestRecentHistory:
    """Tests for recent_history."""

    def test_keeps_last_turns(self):
        """Should keep only the last ``window`` turns as message dicts."""
        history = [
            ConversationTurn(role="user" if i % 2 == 0 else "assistant", content=f"turn {i}")
            for i in range(8)
        ]

        messages = recent_history(history, 4)

        assert [m["content"] for m in messages] == ["turn 4", "turn 5", "turn 6", "turn 7"]
        assert messages[0] == {"role": "user", "content": "turn 4"}

    def test_empty_history_or_window(self):
        """Should return nothing for no history or a zero window."""
        history = [ConversationTurn(role="user", content="hi")]

        assert recent_history([], 4) == []
        assert recent_history(None, 4) == []
        assert recent_history(history, 0) == []
