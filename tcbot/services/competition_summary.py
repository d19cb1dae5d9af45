"""
Competition summary service.

Builds the ranked team and user summaries shown on the leaderboards, and caches the
latest summary until a stats write or the cache TTL makes it stale.
"""

import asyncio
import time
from typing import Dict, List, Optional, Tuple

from tcbot.config import Config
from tcbot.data_models.competitors import Category, TeamRef
from tcbot.data_models.summary import (
    CompetitionSummary, MonthlyResult, RetiredUserSummary, TeamLeaderboardEntry, TeamSummary,
    UserCategoryLeaderboardEntry, UserSummary
)
from tcbot.database.database import Database
from tcbot.database.stats_store import StatsStore
from tcbot.services.state import StateManager, SystemState
from tcbot.utils.ranking import RankingUtility
from tcbot.utils.logger import setup_logger

logger = setup_logger(__name__)


def build_team_leaderboard(summary: CompetitionSummary) -> List[TeamLeaderboardEntry]:
    """Team rows in rank order, with the gap to the leading team and to the team directly above."""
    teams = summary.teams
    if not teams:
        logger.warning("No TC teams to show")
        return []

    leader = teams[0]
    entries = []
    for index, team in enumerate(teams):
        team_ahead = teams[index - 1] if index > 0 else team
        entries.append(TeamLeaderboardEntry(
            rank=team.rank,
            team_name=team.team_name,
            team_points=team.team_points,
            team_multiplied_points=team.team_multiplied_points,
            team_units=team.team_units,
            diff_to_leader=leader.team_multiplied_points - team.team_multiplied_points,
            diff_to_next=team_ahead.team_multiplied_points - team.team_multiplied_points,
        ))
    return entries


def build_category_leaderboard(summary: CompetitionSummary) -> Dict[Category, List[UserCategoryLeaderboardEntry]]:
    """Active users ranked within their category. Every category has an entry, even if empty."""
    leaderboard = {}
    for category, user_summaries in summary.active_users_by_category().items():
        ranked = RankingUtility.rank(user_summaries)
        entries = []
        for index, user_summary in enumerate(ranked):
            user_ahead = ranked[index - 1] if index > 0 else user_summary
            entries.append(UserCategoryLeaderboardEntry(
                rank=user_summary.rank,
                display_name=user_summary.display_name,
                team_name=user_summary.user.team.name,
                hardware_name=user_summary.user.hardware.display_name or user_summary.user.hardware.name,
                category=category,
                points=user_summary.points,
                multiplied_points=user_summary.multiplied_points,
                units=user_summary.units,
                diff_to_leader=ranked[0].multiplied_points - user_summary.multiplied_points,
                diff_to_next=user_ahead.multiplied_points - user_summary.multiplied_points,
            ))
        leaderboard[category] = entries
    return leaderboard


class CompetitionSummaryService:
    """Builds and caches the competition summary."""

    def __init__(self, database: Database, stats_store: StatsStore, state_manager: StateManager,
                 cache_ttl: Optional[int] = None):
        self.database = database
        self.stats_store = stats_store
        self.state_manager = state_manager
        self.cache_ttl = cache_ttl if cache_ttl is not None else Config.SUMMARY_CACHE_TTL_SECONDS
        self._cache: Optional[Tuple[float, CompetitionSummary]] = None  # (timestamp, summary)
        self._lock = asyncio.Lock()

    async def build_summary(self, teams: Optional[List[TeamRef]] = None) -> CompetitionSummary:
        """Build a fresh summary for the given teams, or for every team if none are given."""
        if teams is None:
            teams = await self.database.get_all_teams()

        team_summaries = [await self._build_team_summary(team) for team in teams]
        return CompetitionSummary.create(team_summaries)

    async def _build_team_summary(self, team: TeamRef) -> TeamSummary:
        users = await self.database.get_users_on_team(team.id)

        active_users = []
        for user in users:
            tc_stats = await self.stats_store.get_hourly_tc_stats(user.id)
            active_users.append(UserSummary.create(user, tc_stats))

        retired_users = [
            RetiredUserSummary.create(retired)
            for retired in await self.stats_store.get_retired_stats_for_team(team.id)
        ]

        captain_name = next((user.display_name for user in users if user.is_captain), None)
        return TeamSummary.create_with_default_rank(team, captain_name, active_users, retired_users)

    async def get_summary(self) -> CompetitionSummary:
        """
        Return the cached summary, rebuilding it if stats were written since it was built.

        A rebuild after a stats write moves the system back to AVAILABLE.
        """
        async with self._lock:
            state = self.state_manager.current_system_state()
            if self._cache is not None and state != SystemState.WRITE_EXECUTED:
                timestamp, summary = self._cache
                if time.time() - timestamp < self.cache_ttl:
                    logger.debug("Cache hit for competition summary")
                    return summary

            logger.debug(f"Building competition summary (system state: {state.name})")
            summary = await self.build_summary()
            self._cache = (time.time(), summary)

            if state == SystemState.WRITE_EXECUTED:
                self.state_manager.next_system_state(SystemState.AVAILABLE)
            return summary

    async def get_team_summary(self, team_name: str) -> Optional[TeamSummary]:
        summary = await self.get_summary()
        return summary.get_team(team_name)

    async def team_leaderboard(self) -> List[TeamLeaderboardEntry]:
        return build_team_leaderboard(await self.get_summary())

    async def category_leaderboard(self) -> Dict[Category, List[UserCategoryLeaderboardEntry]]:
        return build_category_leaderboard(await self.get_summary())

    async def store_monthly_result(self, year: int, month: int) -> MonthlyResult:
        """Store the final leaderboards for a competition month, built fresh from the store."""
        summary = await self.build_summary()
        result = MonthlyResult(
            year=year,
            month=month,
            team_leaderboard=build_team_leaderboard(summary),
            user_category_leaderboard=build_category_leaderboard(summary),
        )
        if result.has_no_stats():
            logger.warning(f"Monthly result for {year}-{month:02d} has no stats")

        await self.stats_store.save_monthly_result(result)
        return result

    async def get_monthly_result(self, year: int, month: int) -> Optional[MonthlyResult]:
        return await self.stats_store.get_monthly_result(year, month)

    def invalidate(self):
        """Clear the cached summary."""
        logger.info("Clearing competition summary cache")
        self._cache = None
