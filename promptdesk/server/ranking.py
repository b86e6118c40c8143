"""Fuzzy ranking of project file paths for @-mention autocomplete.

Two scoring modes, picked from the filter:

- flat mode (no ``/`` in the filter): every path segment is scored on its
  own and the path keeps its best segment score.
- segment mode (filter contains ``/``): filter segments are matched against
  path segments left to right, each one consuming the path segments it
  matched.

Both modes add a bonus for short paths. Highlighting is computed separately
as plain ``(start, end)`` spans so that any renderer can consume it.
"""

import html
import math
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

HighlightRange = Tuple[int, int]

# Flat mode ladder
FLAT_EXACT = 60
FLAT_PREFIX = 40
FLAT_SUFFIX = 30
FLAT_CONTAINS = 20

# Segment mode ladder
SEGMENT_EXACT = 50
SEGMENT_PREFIX = 40
SEGMENT_CONTAINS = 30

FILENAME_BONUS = 10
SUBSTRING_FUZZY_SCORE = 25
FUZZY_SCALE = 20
LENGTH_BONUS_BASE = 50
WHOLE_PATH_FALLBACK_WEIGHT = 0.5

SEPARATOR = "/"


@dataclass
class ScoredMatch:
    """A candidate path with its relevance score."""
    path: str
    score: float


def is_subsequence(text: str, pattern: str) -> bool:
    """True if every character of pattern appears in text, in order."""
    index = 0
    for char in text:
        if index >= len(pattern):
            break
        if char == pattern[index]:
            index += 1
    return index == len(pattern)


def fuzzy_score(text: str, pattern: str) -> int:
    """
    Score a subsequence match of pattern inside text.

    A plain substring hit is worth a flat 25. Otherwise the pattern is
    consumed greedily left to right; a complete match scores
    ``floor(matched/len(pattern) * len(pattern)/len(text) * 20)`` so short,
    dense texts rank higher. Incomplete matches score 0.
    """
    if not pattern or not text:
        return 0

    text = text.lower()
    pattern = pattern.lower()

    if pattern in text:
        return SUBSTRING_FUZZY_SCORE

    matched = 0
    index = 0
    for char in text:
        if index >= len(pattern):
            break
        if char == pattern[index]:
            matched += 1
            index += 1

    if index == len(pattern):
        match_ratio = matched / len(pattern)
        length_ratio = len(pattern) / len(text)
        return math.floor(match_ratio * length_ratio * FUZZY_SCALE)

    return 0


def _with_filename_bonus(segment: str, score: float) -> float:
    # Segments with a dot are most likely file names
    if score > 0 and "." in segment:
        return score + FILENAME_BONUS
    return score


def _length_bonus(path: str) -> int:
    return max(0, LENGTH_BONUS_BASE - len(path))


def _flat_segment_score(segment: str, query: str) -> float:
    if segment == query:
        score = FLAT_EXACT
    elif segment.startswith(query):
        score = FLAT_PREFIX
    elif segment.endswith(query):
        score = FLAT_SUFFIX
    elif query in segment:
        score = FLAT_CONTAINS
    else:
        score = fuzzy_score(segment, query)
    return _with_filename_bonus(segment, score)


def _segment_mode_segment_score(segment: str, query: str) -> float:
    if segment == query:
        score = SEGMENT_EXACT
    elif segment.startswith(query):
        score = SEGMENT_PREFIX
    elif query in segment:
        score = SEGMENT_CONTAINS
    else:
        score = fuzzy_score(segment, query)
    return _with_filename_bonus(segment, score)


def _split_filter(query: str) -> List[str]:
    return [part for part in query.split(SEPARATOR) if part]


def _score_flat(path: str, query: str) -> float:
    best = 0.0
    for segment in path.split(SEPARATOR):
        best = max(best, _flat_segment_score(segment, query))

    if best > 0:
        best += _length_bonus(path)
    return best


def _score_segments(path: str, filter_segments: Sequence[str]) -> float:
    segments = path.split(SEPARATOR)
    total = 0.0
    segment_index = 0

    for query in filter_segments:
        best = 0.0
        best_index = -1
        for index in range(segment_index, len(segments)):
            score = _segment_mode_segment_score(segments[index], query)
            if score > best:
                best = score
                best_index = index

        if best > 0:
            total += best
            segment_index = best_index + 1
            continue

        fallback = fuzzy_score(path, query)
        if fallback <= 0:
            return 0.0
        total += fallback * WHOLE_PATH_FALLBACK_WEIGHT

    return total + _length_bonus(path)


def score_path(path: str, query: str) -> float:
    """Relevance of a single path for a filter (0 means no match)."""
    if not query:
        return 0.0

    path = path.lower()
    query = query.lower()

    if SEPARATOR in query:
        return _score_segments(path, _split_filter(query))
    return _score_flat(path, query)


def rank_matches(paths: Sequence[str], query: str) -> List[ScoredMatch]:
    """Score every path and return the positive ones, best first (stable)."""
    matches = []
    for path in paths:
        score = score_path(path, query)
        if score > 0:
            matches.append(ScoredMatch(path=path, score=score))

    # sorted() is stable, equal scores keep input order
    return sorted(matches, key=lambda match: match.score, reverse=True)


def rank_files(paths: Sequence[str], query: str) -> List[str]:
    """Order candidate paths by relevance to the filter.

    An empty filter returns the candidates unchanged.
    """
    if not query:
        return list(paths)
    return [match.path for match in rank_matches(paths, query)]


# ---------------------------------------------------------------------------
# Highlighting
# ---------------------------------------------------------------------------

_EXACT, _PREFIX, _CONTAINS, _FUZZY = 4, 3, 2, 1


def _fuzzy_runs(text: str, pattern: str) -> List[HighlightRange]:
    """Contiguous runs of characters consumed by a greedy subsequence match."""
    runs: List[HighlightRange] = []
    index = 0
    run_start: Optional[int] = None

    for position, char in enumerate(text):
        is_match = index < len(pattern) and char == pattern[index]
        if is_match:
            index += 1
            if run_start is None:
                run_start = position
        elif run_start is not None:
            runs.append((run_start, position))
            run_start = None

    if run_start is not None:
        runs.append((run_start, len(text)))
    return runs


def _segment_ranges(segment: str, query: str) -> List[HighlightRange]:
    lowered = segment.lower()
    if query in lowered:
        return [
            (found.start(), found.end())
            for found in re.finditer(re.escape(query), lowered)
        ]
    if is_subsequence(lowered, query):
        return _fuzzy_runs(lowered, query)
    return []


def _segment_offsets(path: str) -> List[Tuple[int, str]]:
    offsets = []
    position = 0
    for segment in path.split(SEPARATOR):
        offsets.append((position, segment))
        position += len(segment) + 1
    return offsets


def _match_kind(segment: str, query: str) -> int:
    if segment == query:
        return _EXACT
    if segment.startswith(query):
        return _PREFIX
    if query in segment:
        return _CONTAINS
    if is_subsequence(segment, query):
        return _FUZZY
    return 0


def _merge(ranges: List[HighlightRange]) -> List[HighlightRange]:
    merged: List[HighlightRange] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(end, merged[-1][1]))
        else:
            merged.append((start, end))
    return merged


def highlight_ranges(path: str, query: str) -> List[HighlightRange]:
    """
    Character spans of path that match the filter, for display.

    Segment mode marks only the best matching segment per filter segment.
    Flat mode marks every occurrence in every segment, falling back to the
    characters of a subsequence match when a segment has no occurrence.
    """
    if not query:
        return []

    query = query.lower()
    segments = _segment_offsets(path)
    ranges: List[HighlightRange] = []

    if SEPARATOR in query:
        for filter_segment in _split_filter(query):
            best_kind = 0
            best: Optional[Tuple[int, str]] = None
            for offset, segment in segments:
                kind = _match_kind(segment.lower(), filter_segment)
                if kind > best_kind:
                    best_kind = kind
                    best = (offset, segment)
                    if kind == _EXACT:
                        break
            if best is not None:
                offset, segment = best
                ranges.extend(
                    (offset + start, offset + end)
                    for start, end in _segment_ranges(segment, filter_segment)
                )
    else:
        for offset, segment in segments:
            ranges.extend(
                (offset + start, offset + end)
                for start, end in _segment_ranges(segment, query)
            )

    return _merge(ranges)


def render_highlight(
    text: str,
    ranges: Sequence[HighlightRange],
    open_tag: str = "<mark>",
    close_tag: str = "</mark>",
    escape: Optional[Callable[[str], str]] = html.escape,
) -> str:
    """Wrap the given spans of text in markers."""
    escape = escape or (lambda value: value)
    pieces = []
    cursor = 0
    for start, end in ranges:
        pieces.append(escape(text[cursor:start]))
        pieces.append(open_tag + escape(text[start:end]) + close_tag)
        cursor = end
    pieces.append(escape(text[cursor:]))
    return "".join(pieces)
