"""
Persistence for Team Competition stats.

StatsStore is the interface the stats calculator and summary service depend on.
SqlStatsStore implements it over the bot's SQLAlchemy session factory. Connectivity
failures surface as StorageUnavailable so callers can skip a user and carry on.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select

from tcbot.data_models.stats import OffsetStats, RetiredTcStats, Stats, TcStats
from tcbot.data_models.summary import MonthlyResult
from tcbot.database.models import (
    MonthlyResultRecord, RetiredUserStats, UserInitialStats, UserOffsetStats, UserTcStatsHourly, UserTotalStats
)
from tcbot.services.base import BaseService, CONNECTIVITY_ERRORS
from tcbot.utils.exceptions import StorageUnavailable
from tcbot.utils.logger import setup_logger

logger = setup_logger(__name__)


class StatsStore(ABC):
    """Keyed access to initial, total, offset, hourly TC and retired stats, plus monthly results."""

    @abstractmethod
    async def get_initial_stats(self, user_id: int) -> Stats:
        """Initial stats for the user, or empty stats if none are stored."""

    @abstractmethod
    async def set_initial_stats(self, stats: Stats) -> None:
        ...

    @abstractmethod
    async def get_total_stats(self, user_id: int) -> Stats:
        """Last total stats stored for the user, or empty stats if none are stored."""

    @abstractmethod
    async def set_total_stats(self, stats: Stats) -> None:
        ...

    @abstractmethod
    async def get_offset_stats(self, user_id: int) -> Optional[OffsetStats]:
        """Offset for the user, or None if no offset is stored."""

    @abstractmethod
    async def set_offset_stats(self, user_id: int, offset: OffsetStats) -> None:
        ...

    @abstractmethod
    async def get_hourly_tc_stats(self, user_id: int) -> TcStats:
        """Latest TC stats for the user, or empty TC stats if none are stored."""

    @abstractmethod
    async def set_hourly_tc_stats(self, tc_stats: TcStats) -> None:
        ...

    @abstractmethod
    async def add_retired_stats(self, retired: RetiredTcStats) -> RetiredTcStats:
        """Store a retired record, returning it with its assigned id."""

    @abstractmethod
    async def get_retired_stats_for_team(self, team_id: int) -> List[RetiredTcStats]:
        ...

    @abstractmethod
    async def clear_all_offsets(self) -> None:
        ...

    @abstractmethod
    async def delete_all_retired_stats(self) -> None:
        ...

    @abstractmethod
    async def save_monthly_result(self, result: MonthlyResult) -> None:
        """Store a month's result, replacing any result already stored for that month."""

    @abstractmethod
    async def get_monthly_result(self, year: int, month: int) -> Optional[MonthlyResult]:
        ...

def _as_utc(timestamp: datetime) -> datetime:
    # SQLite drops the timezone on the way back out
    if timestamp is not None and timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp


class SqlStatsStore(BaseService, StatsStore):
    """StatsStore backed by the bot database."""

    async def _run(self, operation: str, func):
        try:
            return await self.execute_with_retry(func)
        except CONNECTIVITY_ERRORS as e:
            logger.error(f"Database unavailable during {operation}: {e}")
            raise StorageUnavailable(operation, str(e)) from e

    async def get_initial_stats(self, user_id: int) -> Stats:
        async def _get_initial_stats():
            async with self.get_session() as session:
                row = await session.get(UserInitialStats, user_id)
                if not row:
                    return Stats.empty(user_id)
                return Stats(user_id=user_id, timestamp=_as_utc(row.timestamp), points=row.points, units=row.units)

        return await self._run("get_initial_stats", _get_initial_stats)

    async def set_initial_stats(self, stats: Stats) -> None:
        async def _set_initial_stats():
            async with self.get_session() as session:
                await session.merge(UserInitialStats(
                    user_id=stats.user_id,
                    timestamp=stats.timestamp,
                    points=stats.points,
                    units=stats.units,
                ))

        await self._run("set_initial_stats", _set_initial_stats)

    async def get_total_stats(self, user_id: int) -> Stats:
        async def _get_total_stats():
            async with self.get_session() as session:
                row = await session.get(UserTotalStats, user_id)
                if not row:
                    return Stats.empty(user_id)
                return Stats(user_id=user_id, timestamp=_as_utc(row.timestamp), points=row.points, units=row.units)

        return await self._run("get_total_stats", _get_total_stats)

    async def set_total_stats(self, stats: Stats) -> None:
        async def _set_total_stats():
            async with self.get_session() as session:
                await session.merge(UserTotalStats(
                    user_id=stats.user_id,
                    timestamp=stats.timestamp,
                    points=stats.points,
                    units=stats.units,
                ))

        await self._run("set_total_stats", _set_total_stats)

    async def get_offset_stats(self, user_id: int) -> Optional[OffsetStats]:
        async def _get_offset_stats():
            async with self.get_session() as session:
                row = await session.get(UserOffsetStats, user_id)
                if not row:
                    return None
                return OffsetStats(
                    points_offset=row.points_offset,
                    multiplied_points_offset=row.multiplied_points_offset,
                    units_offset=row.units_offset,
                )

        return await self._run("get_offset_stats", _get_offset_stats)

    async def set_offset_stats(self, user_id: int, offset: OffsetStats) -> None:
        async def _set_offset_stats():
            async with self.get_session() as session:
                await session.merge(UserOffsetStats(
                    user_id=user_id,
                    points_offset=offset.points_offset,
                    multiplied_points_offset=offset.multiplied_points_offset,
                    units_offset=offset.units_offset,
                ))

        await self._run("set_offset_stats", _set_offset_stats)

    async def get_hourly_tc_stats(self, user_id: int) -> TcStats:
        async def _get_hourly_tc_stats():
            async with self.get_session() as session:
                row = await session.get(UserTcStatsHourly, user_id)
                if not row:
                    return TcStats.empty(user_id)
                return TcStats(
                    user_id=user_id,
                    timestamp=_as_utc(row.timestamp),
                    points=row.points,
                    multiplied_points=row.multiplied_points,
                    units=row.units,
                )

        return await self._run("get_hourly_tc_stats", _get_hourly_tc_stats)

    async def set_hourly_tc_stats(self, tc_stats: TcStats) -> None:
        async def _set_hourly_tc_stats():
            async with self.get_session() as session:
                await session.merge(UserTcStatsHourly(
                    user_id=tc_stats.user_id,
                    timestamp=tc_stats.timestamp,
                    points=tc_stats.points,
                    multiplied_points=tc_stats.multiplied_points,
                    units=tc_stats.units,
                ))

        await self._run("set_hourly_tc_stats", _set_hourly_tc_stats)

    async def add_retired_stats(self, retired: RetiredTcStats) -> RetiredTcStats:
        async def _add_retired_stats():
            async with self.get_session() as session:
                row = RetiredUserStats(
                    team_id=retired.team_id,
                    user_id=retired.user_id,
                    display_name=retired.display_name,
                    points=retired.points,
                    multiplied_points=retired.multiplied_points,
                    units=retired.units,
                    retired_at=retired.timestamp,
                )
                session.add(row)
                await session.flush()
                return row.id

        retired_user_id = await self._run("add_retired_stats", _add_retired_stats)
        logger.info(
            f"Retired '{retired.display_name}' from team {retired.team_id} "
            f"with {retired.multiplied_points:,} multiplied points"
        )
        return RetiredTcStats(
            team_id=retired.team_id,
            user_id=retired.user_id,
            display_name=retired.display_name,
            points=retired.points,
            multiplied_points=retired.multiplied_points,
            units=retired.units,
            timestamp=retired.timestamp,
            retired_user_id=retired_user_id,
        )

    async def get_retired_stats_for_team(self, team_id: int) -> List[RetiredTcStats]:
        async def _get_retired_stats_for_team():
            async with self.get_session() as session:
                result = await session.execute(
                    select(RetiredUserStats)
                    .where(RetiredUserStats.team_id == team_id)
                    .order_by(RetiredUserStats.id)
                )
                return [
                    RetiredTcStats(
                        team_id=row.team_id,
                        user_id=row.user_id,
                        display_name=row.display_name,
                        points=row.points,
                        multiplied_points=row.multiplied_points,
                        units=row.units,
                        timestamp=_as_utc(row.retired_at),
                        retired_user_id=row.id,
                    )
                    for row in result.scalars().all()
                ]

        return await self._run("get_retired_stats_for_team", _get_retired_stats_for_team)

    async def clear_all_offsets(self) -> None:
        async def _clear_all_offsets():
            async with self.get_session() as session:
                await session.execute(delete(UserOffsetStats))

        await self._run("clear_all_offsets", _clear_all_offsets)

    async def delete_all_retired_stats(self) -> None:
        async def _delete_all_retired_stats():
            async with self.get_session() as session:
                await session.execute(delete(RetiredUserStats))

        await self._run("delete_all_retired_stats", _delete_all_retired_stats)

    async def save_monthly_result(self, result: MonthlyResult) -> None:
        async def _save_monthly_result():
            async with self.get_session() as session:
                query = await session.execute(
                    select(MonthlyResultRecord).where(
                        (MonthlyResultRecord.year == result.year) & (MonthlyResultRecord.month == result.month)
                    )
                )
                record = query.scalar_one_or_none()
                if record is None:
                    record = MonthlyResultRecord(year=result.year, month=result.month)
                    session.add(record)
                record.result = json.dumps(result.to_dict())
                record.created_at = result.timestamp

        await self._run("save_monthly_result", _save_monthly_result)
        logger.info(f"Stored monthly result for {result.year}-{result.month:02d}")

    async def get_monthly_result(self, year: int, month: int) -> Optional[MonthlyResult]:
        async def _get_monthly_result():
            async with self.get_session() as session:
                query = await session.execute(
                    select(MonthlyResultRecord).where(
                        (MonthlyResultRecord.year == year) & (MonthlyResultRecord.month == month)
                    )
                )
                record = query.scalar_one_or_none()
                return MonthlyResult.from_dict(json.loads(record.result)) if record else None

        return await self._run("get_monthly_result", _get_monthly_result)
