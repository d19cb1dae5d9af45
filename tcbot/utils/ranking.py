"""
Shared ranking utilities for team, user and retired user summaries.

Uses "competition ranking": tied values share a rank and the next distinct value is
ranked by the number of entries ahead of it, so [5000, 5000, 2500] ranks as [1, 1, 3].
"""

from typing import Iterable, List, Protocol, TypeVar

T = TypeVar('T', bound='Rankable')


class Rankable(Protocol):
    """Anything that exposes a value to rank by and can return a copy of itself with a new rank."""

    def rank_value(self) -> int:
        ...

    def with_rank(self: T, rank: int) -> T:
        ...


class RankingUtility:
    """Shared ranking logic for consistent ranks across teams and users."""

    @staticmethod
    def rank(items: Iterable[T], start_offset: int = 0) -> List[T]:
        """
        Rank items by their rank value, highest first.

        Args:
            items: Entities to rank; their existing rank is ignored
            start_offset: Number of entries already ranked above this group. Passing the size
                of a previously ranked group places every item here strictly below that group.

        Returns:
            New ranked copies, sorted descending by value. Items with equal values keep
            their input order.
        """
        if not RankingUtility.validate_start_offset(start_offset):
            raise ValueError("start_offset must be a non-negative integer")

        sorted_items = sorted(items, key=lambda item: item.rank_value(), reverse=True)

        ranked: List[T] = []
        previous_value = None
        previous_rank = 1 + start_offset
        for index, item in enumerate(sorted_items):
            value = item.rank_value()
            if index > 0 and value == previous_value:
                new_rank = previous_rank
            else:
                # Skip ranks after a tie (1st, 1st, 3rd) by ranking on index rather than previous rank
                new_rank = index + 1 + start_offset

            ranked.append(item.with_rank(new_rank))
            previous_value = value
            previous_rank = new_rank

        return ranked

    @staticmethod
    def validate_start_offset(start_offset: int) -> bool:
        """Validate a start offset used to place one ranked group below another."""
        return isinstance(start_offset, int) and start_offset >= 0
