"""
Fuzzy string scoring for approximate search.

score(query, text) returns an integer in [0, 100]:
- Identical strings (ignoring case) score 100
- Ordered subsequence matches are scored by length ratio, prefix position,
  consecutive runs, word-boundary / initials hits and leftover length
- An exact substring occurrence never scores below CONTAINMENT_FLOOR
- Queries that are not a subsequence fall back to approximate substring
  matching: the edit distance to the closest substring of the text, scaled
  by the query length, so a typo or two still scores moderately

Matching is case-insensitive and deterministic.
"""

from dataclasses import dataclass
from typing import Iterable

# Typo fallback never outranks a clean subsequence match
TYPO_SCORE_CEILING = 70

# Any exact substring occurrence scores at least this much
CONTAINMENT_FLOOR = 80

BOUNDARY_CHARS = frozenset(" -_/")


@dataclass
class MatchResult:
    text: str
    score: int
    index: int


def score(query: str, text: str) -> int:
    """Similarity of query to text, 0-100. Never raises on str input."""
    if not query or not text:
        return 0

    query = query.lower()
    text = text.lower()

    if query == text:
        return 100

    positions = _subsequence_positions(query, text)
    best = _subsequence_score(query, text, positions) if positions else 0
    if query in text:
        best = max(best, _containment_score(query, text))
    best = max(best, _typo_score(query, text))

    return max(0, min(100, best))


def match_many(query: str, texts: Iterable[str], threshold: int) -> list[MatchResult]:
    """Score every text, keep those at or above threshold, best first."""
    results = []
    for index, text in enumerate(texts):
        value = score(query, text)
        if value >= threshold:
            results.append(MatchResult(text=text, score=value, index=index))
    # sorted() is stable, so equal scores keep input order
    return sorted(results, key=lambda r: r.score, reverse=True)


def _subsequence_positions(query: str, text: str) -> list[int]:
    """Greedy left-to-right positions of query's characters in text."""
    if len(query) > len(text):
        return []
    positions = []
    q = 0
    for i, ch in enumerate(text):
        if q < len(query) and ch == query[q]:
            positions.append(i)
            q += 1
    return positions if q == len(query) else []


def _subsequence_score(query: str, text: str, positions: list[int]) -> int:
    query_len = len(query)
    text_len = len(text)

    value = 50.0

    length_ratio = query_len / text_len
    value += 30.0 if length_ratio == 1.0 else length_ratio * 25.0

    if positions[0] == 0:
        value += 12.0

    consecutive = _longest_run(positions)
    consecutive_bonus = consecutive / query_len * 20.0
    if query_len < 3:
        consecutive_bonus *= 0.6
    elif query_len < 5:
        consecutive_bonus *= 0.8
    value += consecutive_bonus

    scattered = query_len - consecutive
    if scattered > 0:
        value -= scattered * 4.0
        if consecutive == 1:
            value -= 10.0

    average_position = sum(positions) / len(positions)
    value += (1.0 - average_position / text_len) * 10.0

    if _initials_ratio(text, positions) > 0.5:
        value += 10.0

    if _boundary_ratio(text, positions) >= 0.3:
        value += 8.0

    # Clean prefix
    if positions[0] == 0 and consecutive == query_len:
        if query_len == text_len:
            value += 20.0
        elif length_ratio >= 0.5:
            value += 10.0
        else:
            value += 5.0

    extra = text_len - query_len
    if extra > 0:
        if query_len < 3:
            rate = 1.0
        elif query_len < 5:
            rate = 0.7
        else:
            rate = 0.5
        value -= extra * rate

    return int(value)


def _containment_score(query: str, text: str) -> int:
    """Score a contiguous occurrence, preferring one that starts a word."""
    starts = [i for i in range(len(text)) if text.startswith(query, i)]
    start = next(
        (i for i in starts if i == 0 or text[i - 1] in BOUNDARY_CHARS),
        starts[0],
    )
    positions = list(range(start, start + len(query)))
    return max(CONTAINMENT_FLOOR, _subsequence_score(query, text, positions))


def _longest_run(positions: list[int]) -> int:
    longest = run = 1
    for prev, cur in zip(positions, positions[1:]):
        run = run + 1 if cur == prev + 1 else 1
        longest = max(longest, run)
    return longest


def _initials_ratio(text: str, positions: list[int]) -> float:
    """Share of matched characters that start a word (after any non-alphanumeric)."""
    hits = sum(1 for pos in positions if pos == 0 or not text[pos - 1].isalnum())
    return hits / len(positions)


def _boundary_ratio(text: str, positions: list[int]) -> float:
    hits = sum(1 for pos in positions if pos == 0 or text[pos - 1] in BOUNDARY_CHARS)
    return hits / len(positions)


def _typo_score(query: str, text: str) -> int:
    distance = _substring_edit_distance(query, text)
    if distance >= len(query):
        return 0
    # Allow roughly one edit per three characters
    if distance > max(1, len(query) // 3):
        return 0
    return int(TYPO_SCORE_CEILING * (1.0 - distance / len(query)))


def _substring_edit_distance(query: str, text: str) -> int:
    """
    Smallest Levenshtein distance between query and any substring of text.

    Row 0 is all zeros so a match may start anywhere in text; the answer is
    the minimum of the last row, so it may end anywhere.
    """
    previous = [0] * (len(text) + 1)
    for i, qch in enumerate(query, start=1):
        current = [i] + [0] * len(text)
        for j, tch in enumerate(text, start=1):
            cost = 0 if qch == tch else 1
            current[j] = min(
                previous[j] + 1,  # skip a query character
                current[j - 1] + 1,  # extra text character
                previous[j - 1] + cost,  # match or substitute
            )
        previous = current
    return min(previous)
