from dataclasses import dataclass, replace

import pytest

from tcbot.utils.ranking import RankingUtility


@dataclass(frozen=True)
class Entry:
    name: str
    value: int
    rank: int = 0

    def rank_value(self) -> int:
        return self.value

    def with_rank(self, rank: int) -> "Entry":
        return replace(self, rank=rank)


def _entries(values):
    return [Entry(f"entry{index}", value) for index, value in enumerate(values)]


def test_ties_share_rank_and_skip_following_ranks():
    ranked = RankingUtility.rank(_entries([5000, 5000, 2500, 500, 500]))
    assert [entry.rank for entry in ranked] == [1, 1, 3, 4, 4]


def test_retired_group_ranked_below_active_group():
    active = RankingUtility.rank(_entries([5000, 5000, 2500, 500, 500]))
    retired = RankingUtility.rank(_entries([10000, 10000, 10000, 3000, 0]), start_offset=len(active))

    assert [entry.rank for entry in retired] == [6, 6, 6, 9, 10]
    assert min(entry.rank for entry in retired) > max(entry.rank for entry in active)


def test_sorts_descending_and_keeps_input_order_within_ties():
    ranked = RankingUtility.rank([Entry("low", 1), Entry("first", 9), Entry("high", 10), Entry("second", 9)])
    assert [entry.name for entry in ranked] == ["high", "first", "second", "low"]
    assert [entry.rank for entry in ranked] == [1, 2, 2, 4]


def test_reranking_is_idempotent():
    ranked = RankingUtility.rank(_entries([7, 3, 7, 0, 3, 12]))
    assert RankingUtility.rank(ranked) == ranked


def test_greater_value_always_has_better_rank():
    ranked = RankingUtility.rank(_entries([4, 8, 15, 16, 23, 42, 15, 8]))
    for first in ranked:
        for second in ranked:
            if first.value == second.value:
                assert first.rank == second.rank
            elif first.value > second.value:
                assert first.rank < second.rank


def test_existing_rank_is_ignored():
    ranked = RankingUtility.rank([Entry("a", 10, rank=99), Entry("b", 20, rank=1)])
    assert [(entry.name, entry.rank) for entry in ranked] == [("b", 1), ("a", 2)]


def test_empty_input():
    assert RankingUtility.rank([]) == []
    assert RankingUtility.rank([], start_offset=5) == []


def test_negative_start_offset_rejected():
    with pytest.raises(ValueError):
        RankingUtility.rank(_entries([1, 2]), start_offset=-1)
