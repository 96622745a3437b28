"""Stage attribution for the final text of a multi-stage pipeline."""

from __future__ import annotations

from collections.abc import Sequence
from functools import lru_cache

from draftline_core.diff import compute_diff
from draftline_schemas.diff import AttributionSegment, DiffSegment
from draftline_schemas.primitives import DiffSegmentType, StageId

type Snapshot = tuple[StageId, str]


def build_attribution(snapshots: Sequence[Snapshot]) -> list[AttributionSegment]:
    """Attribute each span of the final snapshot to the stage that wrote it.

    Ownership is tracked per character. The first snapshot owns all of its
    text; each later snapshot is diffed against the text currently owned:
    equal characters keep their owner, removed characters drop out and added
    characters belong to the later stage. Consecutive characters with the
    same owner are then grouped into segments.

    Replacement provenance is filled in best-effort: for each adjacent
    removed/added pair in a stage's diff against its predecessor, the first
    segment owned by that stage whose text equals the added text is
    annotated with the removed text. Matching is by exact text, so a stage
    that makes the same replacement twice only annotates one segment.

    Args:
        snapshots: ``(stage_id, text)`` pairs in pipeline order. Empty texts
            contribute nothing and are skipped.

    Returns:
        list[AttributionSegment]: Segments whose texts concatenate to the
        final snapshot.
    """
    present = [(stage_id, text) for stage_id, text in snapshots if text]
    if not present:
        return []

    first_stage, first_text = present[0]
    chars = list(first_text)
    owners = [first_stage] * len(chars)

    for stage_id, text in present[1:]:
        chars, owners = _apply_snapshot(chars, owners, stage_id, text)

    segments = _group_owners(chars, owners)
    _annotate_replacements(segments, present)
    return segments


@lru_cache(maxsize=32)
def cached_attribution(
    snapshots: tuple[Snapshot, ...],
) -> tuple[AttributionSegment, ...]:
    """Memoized ``build_attribution`` keyed on the snapshot set."""
    return tuple(build_attribution(snapshots))


@lru_cache(maxsize=64)
def cached_diff(old_text: str, new_text: str) -> tuple[DiffSegment, ...]:
    """Memoized ``compute_diff`` keyed on the text pair."""
    return tuple(compute_diff(old_text, new_text))


def _apply_snapshot(
    chars: list[str],
    owners: list[StageId],
    stage_id: StageId,
    text: str,
) -> tuple[list[str], list[StageId]]:
    next_chars: list[str] = []
    next_owners: list[StageId] = []
    cursor = 0
    for segment in compute_diff("".join(chars), text):
        length = len(segment.text)
        if segment.type == DiffSegmentType.EQUAL:
            next_chars.extend(segment.text)
            next_owners.extend(owners[cursor : cursor + length])
            cursor += length
        elif segment.type == DiffSegmentType.REMOVED:
            cursor += length
        else:
            next_chars.extend(segment.text)
            next_owners.extend([stage_id] * length)
    return next_chars, next_owners


def _group_owners(chars: list[str], owners: list[StageId]) -> list[AttributionSegment]:
    groups: list[tuple[StageId, list[str]]] = []
    for char, owner in zip(chars, owners, strict=True):
        if groups and groups[-1][0] == owner:
            groups[-1][1].append(char)
        else:
            groups.append((owner, [char]))
    return [
        AttributionSegment(text="".join(parts), owner_stage_id=owner)
        for owner, parts in groups
    ]


def _annotate_replacements(
    segments: list[AttributionSegment],
    snapshots: Sequence[Snapshot],
) -> None:
    for (previous_stage, previous_text), (stage_id, text) in zip(
        snapshots, snapshots[1:], strict=False
    ):
        diff = compute_diff(previous_text, text)
        for removed, added in zip(diff, diff[1:], strict=False):
            if removed.type != DiffSegmentType.REMOVED:
                continue
            if added.type != DiffSegmentType.ADDED:
                continue
            match = next(
                (
                    segment
                    for segment in segments
                    if segment.owner_stage_id == stage_id
                    and segment.text == added.text
                    and segment.previous_text is None
                ),
                None,
            )
            if match is not None:
                match.previous_text = removed.text
                match.previous_owner_stage_id = previous_stage
