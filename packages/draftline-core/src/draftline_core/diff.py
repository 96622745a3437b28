"""Word-level diff between two text snapshots.

The diff runs a longest-common-subsequence over word tokens. A token is a
run of non-whitespace together with the whitespace that follows it (a
leading whitespace run stands alone), so concatenating tokens reproduces
the input exactly.

Because trailing whitespace belongs to the word before it, appending to a
text changes its final token: ``"hello"`` and ``"hello "`` are different
tokens. Diffing ``"hello"`` against ``"hello world"`` therefore removes
``"hello"`` and adds ``"hello world"``, and attribution hands the final
word of a snapshot to whichever stage appended after it.

The LCS table is ``(m + 1) x (n + 1)`` for token counts ``m`` and ``n``;
time and memory are O(m * n), which is fine for document-sized inputs but
is the scaling limit for very large ones.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from draftline_schemas.diff import DiffSegment, DiffStats
from draftline_schemas.primitives import DiffSegmentType

_TOKEN_PATTERN = re.compile(r"\s+|\S+\s*")


def tokenize(text: str) -> list[str]:
    """Split text into word tokens that reconstruct it exactly.

    Args:
        text: Text to split.

    Returns:
        list[str]: Tokens in order; ``"".join(tokens) == text``.
    """
    return _TOKEN_PATTERN.findall(text)


def compute_diff(old_text: str, new_text: str) -> list[DiffSegment]:
    """Compute a word-level diff between two strings.

    Backtracking prefers an insertion over a deletion when both paths keep
    the same LCS length. Adjacent segments of the same type are merged.

    Args:
        old_text: Earlier snapshot.
        new_text: Later snapshot.

    Returns:
        list[DiffSegment]: Segments in document order. Concatenating
        ``equal`` and ``removed`` segments gives ``old_text``; concatenating
        ``equal`` and ``added`` segments gives ``new_text``.
    """
    if old_text == new_text:
        return [DiffSegment(type=DiffSegmentType.EQUAL, text=old_text)]

    old_tokens = tokenize(old_text)
    new_tokens = tokenize(new_text)
    table = _lcs_table(old_tokens, new_tokens)

    raw: list[tuple[DiffSegmentType, str]] = []
    i = len(old_tokens)
    j = len(new_tokens)
    while i > 0 or j > 0:
        if i > 0 and j > 0 and old_tokens[i - 1] == new_tokens[j - 1]:
            raw.append((DiffSegmentType.EQUAL, old_tokens[i - 1]))
            i -= 1
            j -= 1
        elif j > 0 and (i == 0 or table[i][j - 1] >= table[i - 1][j]):
            raw.append((DiffSegmentType.ADDED, new_tokens[j - 1]))
            j -= 1
        else:
            raw.append((DiffSegmentType.REMOVED, old_tokens[i - 1]))
            i -= 1
    raw.reverse()
    return _merge(raw)


def diff_stats(segments: Iterable[DiffSegment]) -> DiffStats:
    """Count the words added and removed by a diff.

    Args:
        segments: Diff segments to summarize.

    Returns:
        DiffStats: Added and removed word counts.
    """
    added = 0
    removed = 0
    for segment in segments:
        if segment.type == DiffSegmentType.ADDED:
            added += len(segment.text.split())
        elif segment.type == DiffSegmentType.REMOVED:
            removed += len(segment.text.split())
    return DiffStats(added_words=added, removed_words=removed)


def old_text_of(segments: Iterable[DiffSegment]) -> str:
    """Rebuild the old text from diff segments."""
    return "".join(
        segment.text for segment in segments if segment.type != DiffSegmentType.ADDED
    )


def new_text_of(segments: Iterable[DiffSegment]) -> str:
    """Rebuild the new text from diff segments."""
    return "".join(
        segment.text
        for segment in segments
        if segment.type != DiffSegmentType.REMOVED
    )


def _lcs_table(old_tokens: list[str], new_tokens: list[str]) -> list[list[int]]:
    rows = len(old_tokens)
    cols = len(new_tokens)
    table = [[0] * (cols + 1) for _ in range(rows + 1)]
    for i in range(1, rows + 1):
        old_token = old_tokens[i - 1]
        row = table[i]
        above = table[i - 1]
        for j in range(1, cols + 1):
            if old_token == new_tokens[j - 1]:
                row[j] = above[j - 1] + 1
            else:
                row[j] = max(above[j], row[j - 1])
    return table


def _merge(raw: list[tuple[DiffSegmentType, str]]) -> list[DiffSegment]:
    merged: list[tuple[DiffSegmentType, list[str]]] = []
    for segment_type, text in raw:
        if merged and merged[-1][0] == segment_type:
            merged[-1][1].append(text)
        else:
            merged.append((segment_type, [text]))
    return [
        DiffSegment(type=segment_type, text="".join(parts))
        for segment_type, parts in merged
    ]
