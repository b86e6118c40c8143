"""Tests for file ranking."""

import pytest

from promptdesk.server.ranking import (
    fuzzy_score,
    is_subsequence,
    rank_files,
    rank_matches,
    score_path,
)


PATHS = ["src/app.py", "src/application.py", "lib/map.py", "README.md"]


class TestFuzzyScore:
    """Test subsequence scoring."""

    def test_substring_scores_flat(self):
        assert fuzzy_score("abc", "b") == 25

    def test_in_order_subsequence(self):
        # 3/3 matched, 3/5 of the text
        assert fuzzy_score("abcde", "ace") == 12

    def test_out_of_order_is_zero(self):
        assert fuzzy_score("ace", "eca") == 0
        assert fuzzy_score("abcdef", "eca") == 0
        assert fuzzy_score("abcdef", "ace") > 0

    def test_empty_inputs(self):
        assert fuzzy_score("", "a") == 0
        assert fuzzy_score("abc", "") == 0

    def test_case_insensitive(self):
        assert fuzzy_score("ABCDE", "ace") == fuzzy_score("abcde", "ACE")

    def test_is_subsequence(self):
        assert is_subsequence("abcde", "ace")
        assert not is_subsequence("abcde", "aec")
        assert is_subsequence("abc", "")


class TestFlatMode:
    """Filters without a slash score each segment on its own."""

    def test_empty_filter_returns_input_order(self):
        assert rank_files(PATHS, "") == PATHS

    def test_ranking(self):
        assert rank_files(PATHS, "app") == ["src/app.py", "src/application.py", "lib/map.py"]

    def test_exact_beats_suffix(self):
        assert rank_files(["lib/zapp", "lib/app"], "app") == ["lib/app", "lib/zapp"]

    def test_exact_basename_beats_contains(self):
        assert score_path("src/index.js", "index.js") > score_path("src/index.js", "dex")

    def test_no_match_is_dropped(self):
        assert rank_files(PATHS, "xyz") == []

    def test_scores_sorted_descending(self):
        matches = rank_matches(PATHS, "ap")
        scores = [m.score for m in matches]
        assert scores == sorted(scores, reverse=True)
        assert all(score > 0 for score in scores)

    def test_ties_keep_input_order(self):
        assert rank_files(["a/foo.py", "b/foo.py"], "foo") == ["a/foo.py", "b/foo.py"]
        assert rank_files(["b/foo.py", "a/foo.py"], "foo") == ["b/foo.py", "a/foo.py"]

    def test_shorter_path_wins(self):
        assert score_path("a/main.py", "main") > score_path("deep/nested/dir/main.py", "main")

    def test_case_insensitive(self):
        assert score_path("SRC/App.py", "APP") == score_path("src/app.py", "app")


class TestSegmentMode:
    """Filters with a slash match segments left to right."""

    def test_segment_order_matters(self):
        ranked = rank_files(["app/src.py", "src/app.py", "test/app.py"], "src/app")
        assert ranked == ["src/app.py", "app/src.py"]

    def test_segment_score(self):
        # src exact (50) + app.py prefix with file bonus (50) + length bonus (40)
        assert score_path("src/app.py", "src/app") == 140

    def test_whole_path_fallback(self):
        # second filter segment has no segment match left, falls back to half
        # of a substring hit on the whole path
        assert score_path("app/src.py", "src/app") == 102.5

    def test_empty_filter_segments_ignored(self):
        assert score_path("src/app.py", "src//app/") == score_path("src/app.py", "src/app")

    def test_unmatched_segment_drops_path(self):
        assert score_path("test/app.py", "src/app") == 0

    def test_exact_basename_beats_contains(self):
        assert score_path("src/index.js", "src/index.js") > score_path("src/index.js", "src/dex")

    @pytest.mark.parametrize("query", ["src/", "/app", "src/app.py"])
    def test_matching_paths_positive(self, query):
        assert score_path("src/app.py", query) > 0
