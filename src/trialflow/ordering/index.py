"""Group membership index over a flattened sequence."""

from typing import Sequence

from ..types import FlattenedTrial


class GroupIndexSet:
    """Maps each group id to its positions in the flattened sequence.

    Rebuild with ``GroupIndexSet.build`` whenever the sequence is reordered.
    """

    def __init__(self, positions: dict[str, list[int]] | None = None):
        self._positions: dict[str, list[int]] = positions or {}
        self._rank: dict[int, int] = {
            position: rank
            for group_positions in self._positions.values()
            for rank, position in enumerate(group_positions)
        }

    @classmethod
    def build(cls, trials: Sequence[FlattenedTrial]) -> "GroupIndexSet":
        positions: dict[str, list[int]] = {}
        for index, trial in enumerate(trials):
            if trial.parent_group_id is not None:
                positions.setdefault(trial.parent_group_id, []).append(index)
        return cls(positions)

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, group_id: object) -> bool:
        return group_id in self._positions

    @property
    def group_ids(self) -> list[str]:
        return list(self._positions)

    def positions(self, group_id: str) -> list[int]:
        """Positions of a group in sequence order (empty if unknown)."""
        return list(self._positions.get(group_id, []))

    def size(self, group_id: str) -> int:
        return len(self._positions.get(group_id, []))

    def position_in_group(self, index: int) -> int | None:
        """0-based rank of ``index`` within its group, or None if ungrouped."""
        return self._rank.get(index)

    def as_dict(self) -> dict[str, list[int]]:
        return {gid: list(p) for gid, p in self._positions.items()}


def build_group_index(trials: Sequence[FlattenedTrial]) -> GroupIndexSet:
    """Group id to sequence positions for a flattened sequence."""
    return GroupIndexSet.build(trials)
