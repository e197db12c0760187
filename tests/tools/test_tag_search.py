"""
Unit tests for the TagSearchTool.
"""
import pytest

from offmeta_search.tools.tag_search import TagSearchTool


class TestTagSearchToolInitialization:
    """Test suite for loading tag data."""

    def test_loads_packaged_tags(self):
        tool = TagSearchTool()
        assert "ramp" in tool.all_tags
        assert "boardwipe" in tool.all_tags
        assert all(isinstance(category, str) for _, category in tool.flat_tags)

    def test_accepts_injected_tags(self, sample_tags_data):
        tool = TagSearchTool(tags_data=sample_tags_data)
        assert len(tool.flat_tags) == 8
        assert ("ramp", "mana") in tool.flat_tags


class TestFindSimilarTags:
    """Test suite for fuzzy tag lookup."""

    @pytest.fixture
    def tool(self, sample_tags_data):
        return TagSearchTool(tags_data=sample_tags_data)

    def test_exact_match_ranks_first(self, tool):
        assert tool.find_similar_tags(["ramp"])[0] == "ramp"

    def test_hyphenated_tags_match_spaced_guesses(self, tool):
        assert tool.find_similar_tags(["mana rock"])[0] == "mana-rock"

    def test_case_insensitive(self, tool):
        assert "removal" in tool.find_similar_tags(["REMOVAL"])

    def test_no_duplicates_across_guesses(self, tool):
        results = tool.find_similar_tags(["ramp", "ramps"])
        assert results.count("ramp") == 1

    def test_unrelated_guess_returns_nothing(self, tool):
        assert tool.find_similar_tags(["xyzzyplugh"]) == []

    def test_max_results(self, tool):
        assert len(tool.find_similar_tags(["mana", "ramp", "draw", "tutor"], max_results=2)) <= 2

    def test_empty_guesses(self, tool):
        assert tool.find_similar_tags([]) == []
