"""Tests for recommendation block extraction and stripping."""

import json
import time

from diy_assistant.utils.json_extract import extract_recommendations, strip_recommendation_json


def _fenced(payload: dict) -> str:
    return f"```json\n{json.dumps(payload)}\n```"


class TestExtractRecommendations:
    def test_fenced_block_preserves_order(self):
        """Items come back in the order the assistant listed them."""
        text = "Sure thing!\n\n" + _fenced(
            {
                "materials": [{"name": "Hammer"}, {"name": "Nails"}],
                "tools": [{"name": "Level"}],
            }
        )
        result = extract_recommendations(text)
        assert result is not None
        assert [m["name"] for m in result.materials] == ["Hammer", "Nails"]
        assert [t["name"] for t in result.tools] == ["Level"]

    def test_plain_text_is_a_miss_not_an_error(self):
        assert extract_recommendations("Start by turning off the water supply.") is None

    def test_empty_and_blank_text(self):
        assert extract_recommendations("") is None
        assert extract_recommendations("   \n ") is None

    def test_uppercase_fence_tag(self):
        text = "```JSON\n" + json.dumps({"materials": [{"name": "Grout"}], "tools": []}) + "\n```"
        result = extract_recommendations(text)
        assert result is not None
        assert result.materials == [{"name": "Grout"}]

    def test_bare_object_inline(self):
        """An unfenced object inside prose is found when it has both keys."""
        text = (
            'You will need {"materials": [{"name": "Wood Glue"}], '
            '"tools": [{"name": "Clamps"}]} for this.'
        )
        result = extract_recommendations(text)
        assert result is not None
        assert result.materials[0]["name"] == "Wood Glue"
        assert result.tools[0]["name"] == "Clamps"

    def test_whole_message_json(self):
        text = json.dumps({"materials": [], "tools": [{"name": "Stud Finder"}]})
        result = extract_recommendations(text)
        assert result is not None
        assert result.materials == []
        assert result.tools == [{"name": "Stud Finder"}]

    def test_broken_fence_falls_back_to_bare_object(self):
        text = (
            "```json\n{not valid json}\n```\n"
            'Corrected: {"materials": [{"name": "Caulk"}], "tools": []}'
        )
        result = extract_recommendations(text)
        assert result is not None
        assert result.materials == [{"name": "Caulk"}]

    def test_object_missing_a_key_is_ignored(self):
        text = _fenced({"materials": [{"name": "Tile"}]})
        assert extract_recommendations(text) is None

    def test_non_list_groups_rejected(self):
        text = _fenced({"materials": "tile and grout", "tools": []})
        assert extract_recommendations(text) is None

    def test_non_object_items_rejected(self):
        text = _fenced({"materials": ["Tile"], "tools": []})
        assert extract_recommendations(text) is None

    def test_items_without_name_dropped(self):
        """Entries with a missing or blank name are dropped, the rest are kept."""
        text = _fenced(
            {
                "materials": [{"name": "Tile"}, {"quantity": 4}, {"name": "   "}],
                "tools": [{"name": "Trowel", "why": "spreads thinset"}],
            }
        )
        result = extract_recommendations(text)
        assert result is not None
        assert result.materials == [{"name": "Tile"}]
        assert result.tools == [{"name": "Trowel", "why": "spreads thinset"}]

    def test_braces_inside_strings(self):
        text = 'Try {"materials": [{"name": "Shelf Bracket }"}], "tools": []} today'
        result = extract_recommendations(text)
        assert result is not None
        assert result.materials == [{"name": "Shelf Bracket }"}]


class TestStripRecommendationJson:
    def test_fenced_block_removed_and_trimmed(self):
        text = 'Here you go:\n```json\n{"materials":[],"tools":[]}\n```'
        assert strip_recommendation_json(text) == "Here you go:"

    def test_plain_text_unchanged_except_trim(self):
        assert strip_recommendation_json("  Measure twice, cut once.\n") == (
            "Measure twice, cut once."
        )

    def test_blank_lines_collapsed(self):
        text = (
            "Intro\n\n"
            + _fenced({"materials": [{"name": "Paint"}], "tools": []})
            + "\n\n\nOutro"
        )
        assert strip_recommendation_json(text) == "Intro\n\nOutro"

    def test_unrelated_fence_kept(self):
        text = 'Config example:\n```json\n{"room": "bath"}\n```'
        assert strip_recommendation_json(text) == text

    def test_bare_object_removed(self):
        text = (
            'You will need: {"materials": [{"name": "Nails"}], "tools": []}\n\n'
            "Good luck with the build."
        )
        stripped = strip_recommendation_json(text)
        assert "{" not in stripped
        assert stripped.startswith("You will need:")
        assert stripped.endswith("Good luck with the build.")

    def test_json_only_message_becomes_empty(self):
        text = _fenced({"materials": [{"name": "Nails"}], "tools": []})
        assert strip_recommendation_json(text) == ""

    def test_unclosed_fence_opener_removed_with_bare_object(self):
        """A reply cut off before its closing fence leaves no stray opener."""
        text = (
            "Here you go:\n```json\n"
            + json.dumps({"materials": [{"name": "Grout"}], "tools": [{"name": "Float"}]})
        )
        assert extract_recommendations(text) is not None
        assert strip_recommendation_json(text) == "Here you go:"

    def test_bare_object_after_stray_braces_removed(self):
        text = 'Use {curly} braces {\n{"materials": [], "tools": []}\nDone.'
        assert strip_recommendation_json(text) == "Use {curly} braces {\n\nDone."


class TestManyUnmatchedBraces:
    """Prose full of unmatched braces must be rejected in linear time."""

    TEXT = "Use brackets like {" * 5000

    def test_extract_and_strip_finish_quickly(self):
        started = time.perf_counter()
        assert extract_recommendations(self.TEXT) is None
        assert strip_recommendation_json(self.TEXT) == self.TEXT.strip()
        assert time.perf_counter() - started < 2.0

    def test_nested_unclosed_objects_are_a_miss(self):
        text = '{"step": ' * 1000 + "and then it stops"
        started = time.perf_counter()
        assert extract_recommendations(text) is None
        assert time.perf_counter() - started < 5.0

    def test_object_after_many_braces_still_found(self):
        text = self.TEXT + '\n{"materials": [{"name": "Tape"}], "tools": []}'
        result = extract_recommendations(text)
        assert result is not None
        assert result.materials == [{"name": "Tape"}]
