"""Ordering engine: flattening, counterbalancing and shuffling.

Everything here is pure and synchronous.
"""

from .counterbalance import (
    apply_latin_square,
    check_total_participants,
    group_sizes,
    rotate_positions,
    validate_counterbalancing,
)
from .flatten import (
    MAX_GROUP_REPETITIONS,
    FlattenResult,
    condition_signature,
    flatten_trials,
    partition_by_signature,
    select_between_partition,
)
from .index import GroupIndexSet, build_group_index
from .shuffle import block_shuffle, seeded_shuffle, shuffle_trials

__all__ = [
    "MAX_GROUP_REPETITIONS",
    "FlattenResult",
    "GroupIndexSet",
    "apply_latin_square",
    "block_shuffle",
    "build_group_index",
    "check_total_participants",
    "condition_signature",
    "flatten_trials",
    "group_sizes",
    "partition_by_signature",
    "rotate_positions",
    "seeded_shuffle",
    "select_between_partition",
    "shuffle_trials",
    "validate_counterbalancing",
]
