"""Flattening of a trial tree into an executable sequence.

Flattening is pure and deterministic: the same nodes, participant number
and manual assignments always produce the same sequence.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from ..types import FlattenedTrial, TrialKind, TrialNode

logger = logging.getLogger(__name__)

# Repetitions of a single child inside a group are capped; top-level
# standalone repetitions are not.
MAX_GROUP_REPETITIONS = 100

NO_CONDITIONS_SIGNATURE = "no_conditions"


@dataclass
class FlattenResult:
    """Output of flatten_trials."""

    trials: list[FlattenedTrial] = field(default_factory=list)
    # Within-group id -> positions that take part in Latin-square rotation
    latin_square_groups: dict[str, list[int]] = field(default_factory=dict)


def condition_signature(conditions: Mapping[str, str] | None) -> str:
    """Canonical string for a condition mapping.

    Pairs are rendered as ``key:value``, sorted by key and joined with ``|``.
    An empty mapping yields ``"no_conditions"``.
    """
    if not conditions:
        return NO_CONDITIONS_SIGNATURE
    return "|".join(f"{key}:{conditions[key]}" for key in sorted(conditions))


def partition_by_signature(children: Sequence[TrialNode]) -> list[list[TrialNode]]:
    """Group children by condition signature, in order of first appearance."""
    partitions: dict[str, list[TrialNode]] = {}
    for child in children:
        signature = condition_signature(child.conditions)
        if signature in partitions:
            logger.debug(f"Trial '{child.id}' shares condition signature '{signature}'; merging")
        partitions.setdefault(signature, []).append(child)
    return list(partitions.values())


def select_between_partition(
    group: TrialNode,
    participant_number: int,
    manual_index: int | None = None,
) -> list[TrialNode]:
    """Pick the children of a between-subjects group for one participant.

    Args:
        group: The between group.
        participant_number: Non-negative participant sequence number.
        manual_index: Explicit partition index; clamped into range.

    Returns:
        Children of the selected partition, in document order.
    """
    partitions = partition_by_signature(group.child_nodes)
    if not partitions:
        logger.warning(f"Between-subjects group '{group.id}' has no condition partitions")
        return []

    count = len(partitions)
    if manual_index is not None:
        index = min(max(manual_index, 0), count - 1)
        if index != manual_index:
            logger.warning(
                f"Manual assignment {manual_index} for group '{group.id}' is out of range "
                f"for {count} conditions; using {index}"
            )
        else:
            logger.info(f"Between-subjects group '{group.display_name}': using manual condition {index}")
    else:
        index = participant_number % count

    selected = partitions[index]
    logger.debug(
        f"Between-subjects group '{group.display_name}': condition {index + 1}/{count} "
        f"with {len(selected)} trials"
    )
    return selected


def flatten_trials(
    nodes: Sequence[TrialNode],
    participant_number: int = 0,
    manual_between_assignments: Mapping[str, int] | None = None,
) -> FlattenResult:
    """Flatten top-level nodes into an executable sequence.

    Args:
        nodes: Parsed top-level nodes in document order.
        participant_number: Participant sequence number for between-subjects
            assignment. Negative values are treated as 0.
        manual_between_assignments: Group id to partition index overrides.

    Returns:
        The flattened trials and the Latin-square positions per within group.
    """
    if participant_number < 0:
        logger.warning(f"Invalid participant number ({participant_number}); using 0")
        participant_number = 0
    manual = manual_between_assignments or {}

    result = FlattenResult()
    trials = result.trials

    for node in nodes:
        if node.is_bookkeeping:
            continue

        if node.kind in (TrialKind.STANDALONE, TrialKind.SURVEY):
            trials.extend(FlattenedTrial(node=node) for _ in range(node.repetition_count))
            continue

        if not node.child_nodes:
            logger.debug(f"Group '{node.id}' has no children; nothing to flatten")
            continue

        requires_latin = node.requires_latin_square
        if node.kind == TrialKind.BETWEEN:
            included = select_between_partition(node, participant_number, manual.get(node.id))
        else:
            included = list(node.child_nodes)

        track_latin = requires_latin and node.kind == TrialKind.WITHIN
        if track_latin:
            positions = result.latin_square_groups.setdefault(node.id, [])

        for child in included:
            reps = child.repetition_count
            if reps > MAX_GROUP_REPETITIONS:
                logger.warning(
                    f"Trial '{child.id}' has unusually high repetition count ({reps}); "
                    f"capping at {MAX_GROUP_REPETITIONS}"
                )
                reps = MAX_GROUP_REPETITIONS

            entry = FlattenedTrial(
                node=child,
                parent_group_id=node.id,
                parent_group_type=node.kind,
                requires_latin_square=requires_latin,
            )
            for _ in range(reps):
                if track_latin:
                    positions.append(len(trials))
                trials.append(entry)

    return result
