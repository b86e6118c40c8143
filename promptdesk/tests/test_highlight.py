"""Tests for match highlighting."""

from promptdesk.server.ranking import highlight_ranges, render_highlight


class TestHighlightRanges:

    def test_empty_filter(self):
        assert highlight_ranges("src/app.py", "") == []

    def test_flat_substring(self):
        assert highlight_ranges("src/app.py", "app") == [(4, 7)]

    def test_flat_case_insensitive(self):
        assert highlight_ranges("Src/App.py", "APP") == [(4, 7)]

    def test_flat_marks_every_segment(self):
        assert highlight_ranges("app/app.py", "app") == [(0, 3), (4, 7)]

    def test_fuzzy_runs(self):
        assert highlight_ranges("abcde", "ace") == [(0, 1), (2, 3), (4, 5)]

    def test_adjacent_ranges_merged(self):
        assert highlight_ranges("aaaa", "aa") == [(0, 4)]

    def test_segment_mode_first_equal_match_wins(self):
        # "api" and "apis.py" are both prefix matches, the earlier one is used
        assert highlight_ranges("lib/api/apis.py", "ap/") == [(4, 6)]

    def test_segment_mode_exact_preferred(self):
        assert highlight_ranges("src/application/app", "app/") == [(16, 19)]

    def test_segment_mode_each_filter_segment(self):
        assert highlight_ranges("src/app.py", "src/app") == [(0, 3), (4, 7)]

    def test_no_match(self):
        assert highlight_ranges("src/app.py", "zzz") == []


class TestRenderHighlight:

    def test_html(self):
        assert render_highlight("src/app.py", [(4, 7)]) == "src/<mark>app</mark>.py"

    def test_escapes_text(self):
        assert render_highlight("a<b", [(0, 1)]) == "<mark>a</mark>&lt;b"

    def test_custom_tags_without_escaping(self):
        rendered = render_highlight("a<b", [(2, 3)], "[", "]", escape=None)
        assert rendered == "a<[b]"

    def test_no_ranges(self):
        assert render_highlight("plain", []) == "plain"

    def test_roundtrip_from_ranges(self):
        path = "src/components/Button.tsx"
        rendered = render_highlight(path, highlight_ranges(path, "button"))
        assert rendered == "src/components/<mark>Button</mark>.tsx"
