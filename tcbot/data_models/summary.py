"""
Summary data models for Team Competition presentation.

Provides immutable data transfer objects for the per-user, per-team and
competition-wide summaries, plus the leaderboard rows built from them.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional

from tcbot.data_models.competitors import Category, TeamRef, UserRef
from tcbot.data_models.stats import RetiredTcStats, TcStats, utc_now
from tcbot.utils.ranking import RankingUtility

DEFAULT_RANK = 0


@dataclass(frozen=True)
class UserSummary:
    """TC stats for an active user on a team."""
    user: UserRef
    points: int
    multiplied_points: int
    units: int
    rank: int = DEFAULT_RANK

    @classmethod
    def create(cls, user: UserRef, tc_stats: TcStats) -> "UserSummary":
        return cls(
            user=user,
            points=tc_stats.points,
            multiplied_points=tc_stats.multiplied_points,
            units=tc_stats.units,
        )

    @property
    def display_name(self) -> str:
        return self.user.display_name

    def rank_value(self) -> int:
        return self.multiplied_points

    def with_rank(self, rank: int) -> "UserSummary":
        return replace(self, rank=rank)


@dataclass(frozen=True)
class RetiredUserSummary:
    """TC stats frozen at the point a user left the team."""
    retired_user_id: Optional[int]
    display_name: str
    points: int
    multiplied_points: int
    units: int
    rank: int = DEFAULT_RANK

    @classmethod
    def create(cls, retired: RetiredTcStats) -> "RetiredUserSummary":
        return cls(
            retired_user_id=retired.retired_user_id,
            display_name=retired.display_name,
            points=retired.points,
            multiplied_points=retired.multiplied_points,
            units=retired.units,
        )

    def rank_value(self) -> int:
        return self.multiplied_points

    def with_rank(self, rank: int) -> "RetiredUserSummary":
        return replace(self, rank=rank)


@dataclass(frozen=True)
class TeamSummary:
    """Totals for a team, made up of its active and retired users."""
    team: TeamRef
    captain_name: Optional[str]
    team_points: int
    team_multiplied_points: int
    team_units: int
    active_users: List[UserSummary] = field(default_factory=list)
    retired_users: List[RetiredUserSummary] = field(default_factory=list)
    rank: int = DEFAULT_RANK

    @classmethod
    def create_with_default_rank(
        cls,
        team: TeamRef,
        captain_name: Optional[str],
        active_users: List[UserSummary],
        retired_users: List[RetiredUserSummary],
    ) -> "TeamSummary":
        """
        Sum a team's users and rank them within the team.

        Active users are ranked from 1. Retired users are ranked below every active
        user, so with 5 active users the best retired user starts at rank 6. The
        team's own rank is left at the default; it is set when all teams are ranked.
        """
        ranked_active = RankingUtility.rank(active_users)
        ranked_retired = RankingUtility.rank(retired_users, start_offset=len(ranked_active))

        everyone = [*ranked_active, *ranked_retired]
        return cls(
            team=team,
            captain_name=captain_name,
            team_points=sum(user.points for user in everyone),
            team_multiplied_points=sum(user.multiplied_points for user in everyone),
            team_units=sum(user.units for user in everyone),
            active_users=ranked_active,
            retired_users=ranked_retired,
        )

    @property
    def team_name(self) -> str:
        return self.team.name

    def rank_value(self) -> int:
        return self.team_multiplied_points

    def with_rank(self, rank: int) -> "TeamSummary":
        return replace(self, rank=rank)


@dataclass(frozen=True)
class CompetitionSummary:
    """Every team in the competition, ranked by multiplied points."""
    teams: List[TeamSummary] = field(default_factory=list)

    @classmethod
    def create(cls, teams: List[TeamSummary]) -> "CompetitionSummary":
        return cls(teams=RankingUtility.rank(teams))

    @property
    def total_points(self) -> int:
        return sum(team.team_points for team in self.teams)

    @property
    def total_multiplied_points(self) -> int:
        return sum(team.team_multiplied_points for team in self.teams)

    @property
    def total_units(self) -> int:
        return sum(team.team_units for team in self.teams)

    def get_team(self, team_name: str) -> Optional[TeamSummary]:
        for team in self.teams:
            if team.team_name.lower() == team_name.lower():
                return team
        return None

    def active_users_by_category(self) -> Dict[Category, List[UserSummary]]:
        """Active users from every team grouped by category, with an entry for every category."""
        grouped = {category: [] for category in Category}
        for team in self.teams:
            for user_summary in team.active_users:
                grouped[user_summary.user.category].append(user_summary)
        return grouped


@dataclass(frozen=True)
class TeamLeaderboardEntry:
    """Single team leaderboard row."""
    rank: int
    team_name: str
    team_points: int
    team_multiplied_points: int
    team_units: int
    diff_to_leader: int
    diff_to_next: int


@dataclass(frozen=True)
class UserCategoryLeaderboardEntry:
    """Single user category leaderboard row."""
    rank: int
    display_name: str
    team_name: str
    hardware_name: str
    category: Category
    points: int
    multiplied_points: int
    units: int
    diff_to_leader: int
    diff_to_next: int


@dataclass(frozen=True)
class MonthlyResult:
    """Final leaderboards of one competition month, kept after the stats are reset."""
    year: int
    month: int
    team_leaderboard: List[TeamLeaderboardEntry] = field(default_factory=list)
    user_category_leaderboard: Dict[Category, List[UserCategoryLeaderboardEntry]] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def has_no_stats(self) -> bool:
        return not any(
            entry.team_points or entry.team_multiplied_points or entry.team_units
            for entry in self.team_leaderboard
        )

    def to_dict(self) -> dict:
        """JSON-ready form, with categories stored by name."""
        return {
            'year': self.year,
            'month': self.month,
            'timestamp': self.timestamp.isoformat(),
            'team_leaderboard': [asdict(entry) for entry in self.team_leaderboard],
            'user_category_leaderboard': {
                category.name: [{**asdict(entry), 'category': category.name} for entry in entries]
                for category, entries in self.user_category_leaderboard.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MonthlyResult":
        user_category_leaderboard = {category: [] for category in Category}
        for category_name, entries in data.get('user_category_leaderboard', {}).items():
            category = Category[category_name]
            user_category_leaderboard[category] = [
                UserCategoryLeaderboardEntry(**{**entry, 'category': category}) for entry in entries
            ]

        return cls(
            year=data['year'],
            month=data['month'],
            team_leaderboard=[TeamLeaderboardEntry(**entry) for entry in data.get('team_leaderboard', [])],
            user_category_leaderboard=user_category_leaderboard,
            timestamp=datetime.fromisoformat(data['timestamp']),
        )
