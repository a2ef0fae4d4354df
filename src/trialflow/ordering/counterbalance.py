"""Latin-square counterbalancing.

Each Latin-square group of n positions is rotated by ``participant mod n``:
participant 0 sees A, B, C; participant 1 sees B, C, A; participant 2 sees
C, A, B; participant 3 starts the cycle again.
"""

import logging
from typing import Mapping, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

WHOLE_SEQUENCE = "entire workflow"

# Cycle number beyond which a participant number looks suspicious
_SUSPICIOUS_CYCLE = 100


def rotate_positions(items: list[T], positions: Sequence[int], offset: int) -> None:
    """Rotate the items at ``positions`` in place by ``offset``.

    ``items[positions[i]]`` receives the pre-rotation item that was at
    ``positions[(i + offset) % n]``.
    """
    n = len(positions)
    if n <= 1:
        return
    current = [items[p] for p in positions]
    for i, position in enumerate(positions):
        items[position] = current[(i + offset) % n]


def apply_latin_square(
    trials: Sequence[T],
    latin_square_groups: Mapping[str, Sequence[int]],
    participant_number: int,
) -> list[T]:
    """Apply Latin-square rotation for one participant.

    Args:
        trials: Flattened sequence.
        latin_square_groups: Group id to positions in sequence order. When
            empty, the whole sequence is rotated instead.
        participant_number: Participant sequence number; negative is treated as 0.

    Returns:
        A reordered copy of ``trials``.
    """
    if participant_number < 0:
        logger.warning(f"Invalid participant number ({participant_number}); using 0")
        participant_number = 0

    ordered = list(trials)
    if not ordered:
        return ordered

    if not latin_square_groups:
        n = len(ordered)
        offset = participant_number % n
        rotate_positions(ordered, range(n), offset)
        logger.info(
            f"Applied Latin square to {WHOLE_SEQUENCE} for participant "
            f"{participant_number} (row {offset} of {n})"
        )
        return ordered

    for group_id, positions in latin_square_groups.items():
        n = len(positions)
        if n <= 1:
            logger.debug(f"Skipping Latin square for group '{group_id}': {n} trial(s)")
            continue
        if any(p < 0 or p >= len(ordered) for p in positions):
            logger.error(
                f"Skipping Latin square for group '{group_id}': positions out of range "
                f"for {len(ordered)} trials"
            )
            continue
        offset = participant_number % n
        rotate_positions(ordered, positions, offset)
        logger.info(
            f"Applied Latin square to within-group '{group_id}' for participant "
            f"{participant_number} (row {offset} of {n})"
        )

    return ordered


def group_sizes(latin_square_groups: Mapping[str, Sequence[int]], sequence_length: int) -> dict[str, int]:
    """Condition counts to counterbalance, falling back to the whole sequence."""
    if not latin_square_groups:
        return {WHOLE_SEQUENCE: sequence_length} if sequence_length else {}
    return {gid: len(positions) for gid, positions in latin_square_groups.items() if positions}


def validate_counterbalancing(group_name: str, condition_count: int, participant_number: int) -> list[str]:
    """Log how a participant falls into the counterbalancing cycle.

    Never blocks ordering; returns the warnings that were logged so callers
    can surface them.
    """
    warnings: list[str] = []
    if condition_count <= 0:
        return warnings

    row = participant_number % condition_count
    cycle = participant_number // condition_count

    if cycle >= _SUSPICIOUS_CYCLE:
        message = (
            f"Participant {participant_number} is in cycle {cycle} for group '{group_name}' "
            f"({condition_count} conditions); verify the participant number"
        )
        logger.warning(message)
        warnings.append(message)

    if cycle == 0:
        remaining = condition_count - (participant_number + 1)
        if remaining > 0:
            logger.info(
                f"Group '{group_name}': participant {participant_number} assigned to row "
                f"{row}/{condition_count}; {remaining} more participant(s) needed to complete "
                f"the first counterbalancing cycle"
            )
        else:
            logger.info(
                f"Group '{group_name}': participant {participant_number} completes the first "
                f"counterbalancing cycle"
            )
    else:
        logger.info(
            f"Group '{group_name}': participant {participant_number} assigned to row "
            f"{row}/{condition_count} (cycle {cycle})"
        )

    if condition_count <= 4 and participant_number > 1000:
        message = (
            f"Group '{group_name}' has only {condition_count} conditions but participant "
            f"number is {participant_number}; sequential participant numbers are recommended"
        )
        logger.warning(message)
        warnings.append(message)

    return warnings


def check_total_participants(
    sizes: Mapping[str, int],
    participant_number: int,
    total_participants: int,
) -> bool:
    """Check that a planned cohort can complete the Latin square.

    Args:
        sizes: Condition count per group (see group_sizes).
        participant_number: This participant's sequence number.
        total_participants: Planned cohort size.

    Returns:
        False if the cohort is smaller than a group's condition count or the
        participant number falls outside the cohort.
    """
    if total_participants <= 0:
        logger.warning(f"Total participants must be positive (got {total_participants})")
        return False
    if participant_number >= total_participants:
        logger.warning(
            f"Participant number {participant_number} is outside a cohort of {total_participants}"
        )
        return False
    for group_name, count in sizes.items():
        if total_participants < count:
            logger.warning(
                f"Group '{group_name}' has {count} conditions but only {total_participants} "
                f"participants are planned; counterbalancing would be incomplete"
            )
            return False
    return True
