from dataclasses import replace
from typing import Dict, List, Optional, Tuple

import pytest

from tcbot.data_models.competitors import Category, HardwareRef, Role, TeamRef, UserRef
from tcbot.data_models.stats import OffsetStats, RetiredTcStats, SourceStats, Stats, TcStats
from tcbot.data_models.summary import MonthlyResult
from tcbot.database.stats_store import StatsStore
from tcbot.services.state import ParsingState, StateManager, SystemState
from tcbot.utils.exceptions import ExternalConnectionError


class InMemoryStatsStore(StatsStore):
    def __init__(self):
        self.initial: Dict[int, Stats] = {}
        self.total: Dict[int, Stats] = {}
        self.offsets: Dict[int, OffsetStats] = {}
        self.hourly: Dict[int, TcStats] = {}
        self.retired: List[RetiredTcStats] = []
        self.monthly_results: Dict[Tuple[int, int], MonthlyResult] = {}
        self._next_retired_id = 1

    async def get_initial_stats(self, user_id: int) -> Stats:
        return self.initial.get(user_id, Stats.empty(user_id))

    async def set_initial_stats(self, stats: Stats) -> None:
        self.initial[stats.user_id] = stats

    async def get_total_stats(self, user_id: int) -> Stats:
        return self.total.get(user_id, Stats.empty(user_id))

    async def set_total_stats(self, stats: Stats) -> None:
        self.total[stats.user_id] = stats

    async def get_offset_stats(self, user_id: int) -> Optional[OffsetStats]:
        return self.offsets.get(user_id)

    async def set_offset_stats(self, user_id: int, offset: OffsetStats) -> None:
        self.offsets[user_id] = offset

    async def get_hourly_tc_stats(self, user_id: int) -> TcStats:
        return self.hourly.get(user_id, TcStats.empty(user_id))

    async def set_hourly_tc_stats(self, tc_stats: TcStats) -> None:
        self.hourly[tc_stats.user_id] = tc_stats

    async def add_retired_stats(self, retired: RetiredTcStats) -> RetiredTcStats:
        stored = replace(retired, retired_user_id=self._next_retired_id)
        self._next_retired_id += 1
        self.retired.append(stored)
        return stored

    async def get_retired_stats_for_team(self, team_id: int) -> List[RetiredTcStats]:
        return [retired for retired in self.retired if retired.team_id == team_id]

    async def clear_all_offsets(self) -> None:
        self.offsets.clear()

    async def delete_all_retired_stats(self) -> None:
        self.retired.clear()

    async def save_monthly_result(self, result: MonthlyResult) -> None:
        self.monthly_results[(result.year, result.month)] = result

    async def get_monthly_result(self, year: int, month: int) -> Optional[MonthlyResult]:
        return self.monthly_results.get((year, month))


class FakeStatsSource:
    """Returns canned totals keyed by account name; an exception value is raised instead."""

    def __init__(self):
        self.totals = {}
        self.requested_accounts: List[str] = []

    def set_total(self, account_name: str, points: int, units: int):
        self.totals[account_name] = SourceStats(points=points, units=units)

    def set_error(self, account_name: str):
        self.totals[account_name] = ExternalConnectionError("https://stats.example/user", "unreachable")

    async def fetch_total_stats(self, account_name: str, secret_key: str) -> SourceStats:
        self.requested_accounts.append(account_name)
        value = self.totals[account_name]
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_user_total_stats(self, user: UserRef) -> Stats:
        source_stats = await self.fetch_total_stats(user.account_name, user.secret_key)
        return Stats.create_now(user.id, source_stats.points, source_stats.units)


@pytest.fixture
def stats_store():
    return InMemoryStatsStore()


@pytest.fixture
def stats_source():
    return FakeStatsSource()


@pytest.fixture
def state_manager():
    return StateManager(SystemState.AVAILABLE, ParsingState.ENABLED)


@pytest.fixture
def make_user():
    def _make_user(user_id=1, account_name=None, display_name=None, secret_key="a1b2c3d4e5f6a7b8",
                   multiplier=1.0, hardware_id=1, team_id=1, team_name="Team A",
                   category=Category.NVIDIA_GPU, role=Role.MEMBER):
        return UserRef(
            id=user_id,
            account_name=account_name or f"folder{user_id}",
            display_name=display_name or f"Folder {user_id}",
            secret_key=secret_key,
            category=category,
            hardware=HardwareRef(id=hardware_id, name=f"GPU {hardware_id}", multiplier=multiplier),
            team=TeamRef(id=team_id, name=team_name),
            role=role,
        )
    return _make_user
