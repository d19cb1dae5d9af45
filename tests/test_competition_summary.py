import asyncio

from tcbot.data_models.competitors import Category, Role, TeamRef
from tcbot.data_models.stats import RetiredTcStats, TcStats
from tcbot.data_models.summary import (
    CompetitionSummary, MonthlyResult, RetiredUserSummary, TeamSummary, UserSummary
)
from tcbot.services.competition_summary import (
    CompetitionSummaryService, build_category_leaderboard, build_team_leaderboard
)
from tcbot.services.state import StateManager, SystemState


class FakeCatalog:
    def __init__(self, teams, users):
        self.teams = teams
        self.users = users

    async def get_all_teams(self):
        return list(self.teams)

    async def get_users_on_team(self, team_id):
        return [user for user in self.users if user.team.id == team_id]


def _user_summary(make_user, user_id, multiplied_points, **kwargs):
    user = make_user(user_id=user_id, **kwargs)
    return UserSummary.create(user, TcStats(user_id=user_id, points=multiplied_points,
                                            multiplied_points=multiplied_points, units=1))


def _retired_summary(multiplied_points, name="Retired"):
    return RetiredUserSummary.create(RetiredTcStats(
        team_id=1, user_id=99, display_name=name, points=multiplied_points,
        multiplied_points=multiplied_points, units=2
    ))


def test_team_summary_ranks_retired_users_below_active(make_user):
    active = [_user_summary(make_user, index, value) for index, value in enumerate([500, 5000, 2500, 5000, 500], 1)]
    retired = [_retired_summary(value) for value in [0, 10000, 3000, 10000, 10000]]

    team = TeamSummary.create_with_default_rank(TeamRef(1, "Team A"), "Captain", active, retired)

    assert [user.rank for user in team.active_users] == [1, 1, 3, 4, 4]
    assert [user.multiplied_points for user in team.active_users] == [5000, 5000, 2500, 500, 500]
    assert [user.rank for user in team.retired_users] == [6, 6, 6, 9, 10]
    assert team.team_multiplied_points == 13_500 + 33_000
    assert team.team_units == 5 * 1 + 5 * 2
    assert team.captain_name == "Captain"
    assert team.rank == 0


def test_competition_summary_ranks_teams(make_user):
    teams = [
        TeamSummary.create_with_default_rank(TeamRef(team_id, name), None, [_user_summary(make_user, team_id, value)], [])
        for team_id, name, value in [(1, "Low", 100), (2, "High", 900), (3, "Tied", 900)]
    ]

    summary = CompetitionSummary.create(teams)

    assert [(team.team_name, team.rank) for team in summary.teams] == [("High", 1), ("Tied", 1), ("Low", 3)]
    assert summary.total_multiplied_points == 1_900
    assert summary.get_team("low").team_name == "Low"
    assert summary.get_team("missing") is None


def test_team_leaderboard_differences(make_user):
    teams = [
        TeamSummary.create_with_default_rank(TeamRef(team_id, name), None, [_user_summary(make_user, team_id, value)], [])
        for team_id, name, value in [(1, "Second", 700), (2, "First", 1_000), (3, "Third", 200)]
    ]

    entries = build_team_leaderboard(CompetitionSummary.create(teams))

    assert [(entry.team_name, entry.rank) for entry in entries] == [("First", 1), ("Second", 2), ("Third", 3)]
    assert [entry.diff_to_leader for entry in entries] == [0, 300, 800]
    assert [entry.diff_to_next for entry in entries] == [0, 300, 500]


def test_team_leaderboard_without_teams():
    assert build_team_leaderboard(CompetitionSummary.create([])) == []


def test_category_leaderboard_has_every_category(make_user):
    team = TeamSummary.create_with_default_rank(TeamRef(1, "Team A"), None, [
        _user_summary(make_user, 1, 300, category=Category.AMD_GPU),
        _user_summary(make_user, 2, 900, category=Category.AMD_GPU),
        _user_summary(make_user, 3, 50, category=Category.WILDCARD),
    ], [_retired_summary(5_000)])

    leaderboard = build_category_leaderboard(CompetitionSummary.create([team]))

    assert set(leaderboard) == set(Category)
    amd = leaderboard[Category.AMD_GPU]
    assert [(entry.display_name, entry.rank) for entry in amd] == [("Folder 2", 1), ("Folder 1", 2)]
    assert [(entry.diff_to_leader, entry.diff_to_next) for entry in amd] == [(0, 0), (600, 600)]
    assert leaderboard[Category.NVIDIA_GPU] == []
    assert len(leaderboard[Category.WILDCARD]) == 1


def _service(stats_store, make_user, state, cache_ttl=3600):
    team_a, team_b = TeamRef(1, "Team A"), TeamRef(2, "Team B")
    users = [
        make_user(user_id=1, team_id=1, team_name="Team A", role=Role.CAPTAIN),
        make_user(user_id=2, team_id=1, team_name="Team A"),
        make_user(user_id=3, team_id=2, team_name="Team B"),
    ]
    for user, points in zip(users, [100, 200, 250]):
        stats_store.hourly[user.id] = TcStats(user_id=user.id, points=points, multiplied_points=points, units=1)
    asyncio.run(stats_store.add_retired_stats(
        RetiredTcStats(team_id=1, user_id=7, display_name="Leaver", points=40, multiplied_points=40, units=0)
    ))

    state_manager = StateManager(state)
    service = CompetitionSummaryService(FakeCatalog([team_a, team_b], users), stats_store, state_manager, cache_ttl=cache_ttl)
    return service, state_manager


def test_build_summary_from_store(stats_store, make_user):
    service, _ = _service(stats_store, make_user, SystemState.AVAILABLE)

    summary = asyncio.run(service.build_summary())

    team_a = summary.get_team("Team A")
    assert team_a.rank == 1
    assert team_a.team_multiplied_points == 340
    assert team_a.captain_name == "Folder 1"
    assert [user.rank for user in team_a.retired_users] == [3]
    assert summary.get_team("Team B").rank == 2


def test_summary_rebuilt_after_write_then_cached(stats_store, make_user):
    service, state_manager = _service(stats_store, make_user, SystemState.WRITE_EXECUTED)

    first = asyncio.run(service.get_summary())
    assert state_manager.current_system_state() == SystemState.AVAILABLE

    stats_store.hourly[3] = TcStats(user_id=3, points=1_000, multiplied_points=1_000, units=1)
    assert asyncio.run(service.get_summary()) is first

    state_manager.next_system_state(SystemState.WRITE_EXECUTED)
    rebuilt = asyncio.run(service.get_summary())
    assert rebuilt is not first
    assert rebuilt.teams[0].team_name == "Team B"
    assert state_manager.current_system_state() == SystemState.AVAILABLE


def test_summary_built_when_nothing_cached(stats_store, make_user):
    service, state_manager = _service(stats_store, make_user, SystemState.UPDATING_STATS)

    entries = asyncio.run(service.team_leaderboard())

    assert [entry.team_name for entry in entries] == ["Team A", "Team B"]
    assert state_manager.current_system_state() == SystemState.UPDATING_STATS


def test_expired_summary_is_rebuilt(stats_store, make_user):
    service, _ = _service(stats_store, make_user, SystemState.AVAILABLE, cache_ttl=0)

    first = asyncio.run(service.get_summary())
    assert asyncio.run(service.get_summary()) is not first


def test_invalidate_clears_cache(stats_store, make_user):
    service, _ = _service(stats_store, make_user, SystemState.AVAILABLE)

    first = asyncio.run(service.get_summary())
    service.invalidate()
    assert asyncio.run(service.get_summary()) is not first


def test_store_monthly_result_keeps_final_leaderboards(stats_store, make_user):
    service, _ = _service(stats_store, make_user, SystemState.AVAILABLE)

    stored = asyncio.run(service.store_monthly_result(2024, 4))

    assert stats_store.monthly_results[(2024, 4)] is stored
    assert [entry.team_name for entry in stored.team_leaderboard] == ["Team A", "Team B"]
    assert not stored.has_no_stats()
    assert asyncio.run(service.get_monthly_result(2024, 4)) is stored
    assert asyncio.run(service.get_monthly_result(2024, 5)) is None


def test_monthly_result_dict_keeps_categories(stats_store, make_user):
    service, _ = _service(stats_store, make_user, SystemState.AVAILABLE)
    stored = asyncio.run(service.store_monthly_result(2023, 12))

    data = stored.to_dict()
    assert set(data['user_category_leaderboard']) == {category.name for category in Category}

    restored = MonthlyResult.from_dict(data)
    assert restored == stored
    assert restored.user_category_leaderboard[Category.NVIDIA_GPU][0].category == Category.NVIDIA_GPU


def test_monthly_result_without_points_has_no_stats(stats_store, make_user):
    service, _ = _service(stats_store, make_user, SystemState.AVAILABLE)
    stats_store.hourly.clear()
    stats_store.retired.clear()

    assert asyncio.run(service.store_monthly_result(2024, 1)).has_no_stats()
