"""
Team Competition stats calculator.

Turns each user's lifetime stats from the external stats API into their contribution
for the current competition period:

    tc_stats = (total - initial) * hardware multiplier + offset

with every field clamped at zero. Initial stats are the baseline taken at enrolment,
at the monthly reset, and whenever a user's account, hardware or team changes. The
offset carries the contribution earned before such a change, so swapping hardware or
secret key never loses or double counts points.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from tcbot.data_models.competitors import TeamRef, UserRef
from tcbot.data_models.stats import OffsetStats, RetiredTcStats, Stats, TcStats
from tcbot.database.stats_store import StatsStore
from tcbot.services.state import OperationType, ParsingState, StateManager, SystemState
from tcbot.services.stats_source import ExternalStatsSource
from tcbot.utils.exceptions import ExternalConnectionError, StorageUnavailable
from tcbot.utils.logger import format_with_commas, setup_logger

logger = setup_logger(__name__)


@dataclass
class ParseResult:
    """Outcome of a stats pass."""
    parsed_user_ids: List[int] = field(default_factory=list)
    skipped_user_ids: List[int] = field(default_factory=list)
    failed_user_ids: List[int] = field(default_factory=list)

    @property
    def total_users(self) -> int:
        return len(self.parsed_user_ids) + len(self.skipped_user_ids) + len(self.failed_user_ids)


class TcStatsCalculator:
    """Calculates and stores Team Competition stats for users."""

    def __init__(self, stats_store: StatsStore, stats_source: ExternalStatsSource, state_manager: StateManager):
        self.stats_store = stats_store
        self.stats_source = stats_source
        self.state_manager = state_manager

    @staticmethod
    def calculate_tc_stats(user: UserRef, initial: Stats, total: Stats, offset: OffsetStats) -> TcStats:
        """Contribution since the baseline, scaled by the user's hardware multiplier, with the offset applied."""
        multiplier = user.hardware.multiplier
        delta = total.subtract(initial)
        tc_stats = TcStats.from_stats(delta, multiplier)
        return tc_stats.add(offset.with_hardware_multiplier(multiplier))

    async def parse_users(self, users: Iterable[UserRef]) -> ParseResult:
        """
        Run a stats pass over the given users.

        Failures for a single user are logged and the pass carries on with the next
        user. The system state always ends as WRITE_EXECUTED so cached summaries are
        rebuilt on the next read.
        """
        self.state_manager.next_parsing_state(ParsingState.ENABLED)
        self.state_manager.next_system_state(SystemState.UPDATING_STATS)

        result = ParseResult()
        try:
            for user in users:
                try:
                    if await self._parse_user(user):
                        result.parsed_user_ids.append(user.id)
                    else:
                        result.skipped_user_ids.append(user.id)
                except StorageUnavailable as e:
                    logger.warning(f"Skipping user '{user.display_name}' (ID: {user.id}): {e}")
                    result.failed_user_ids.append(user.id)
                except Exception as e:
                    logger.error(f"Unexpected error parsing stats for user '{user.display_name}' (ID: {user.id}): {e}",
                                 exc_info=True)
                    result.failed_user_ids.append(user.id)
        finally:
            self.state_manager.next_system_state(SystemState.WRITE_EXECUTED)

        logger.info(
            f"Stats pass complete: {len(result.parsed_user_ids)} parsed, "
            f"{len(result.skipped_user_ids)} skipped, {len(result.failed_user_ids)} failed"
        )
        return result

    async def _parse_user(self, user: UserRef) -> bool:
        """Calculate and store one user's TC stats. Returns False if the user was skipped."""
        if user.is_secret_key_masked():
            logger.warning(f"Secret key for user '{user.display_name}' (ID: {user.id}) is masked, skipping")
            return False

        initial = await self.stats_store.get_initial_stats(user.id)
        if initial.is_empty():
            logger.info(f"No initial stats for user '{user.display_name}' (ID: {user.id}), skipping")
            return False

        offset = await self.stats_store.get_offset_stats(user.id) or OffsetStats.empty()
        total = await self._fetch_total_or_empty(user)
        await self.stats_store.set_total_stats(total)
        if total.is_empty():
            logger.warning(f"No total stats retrieved for user '{user.display_name}' (ID: {user.id}), skipping")
            return False

        tc_stats = self.calculate_tc_stats(user, initial, total, offset)
        await self.stats_store.set_hourly_tc_stats(tc_stats)

        logger.debug(
            f"{user.display_name}: {format_with_commas(tc_stats.points)} points "
            f"({format_with_commas(tc_stats.multiplied_points)} multiplied), "
            f"{format_with_commas(tc_stats.units)} units"
        )
        return True

    async def _fetch_total_or_empty(self, user: UserRef) -> Stats:
        try:
            return await self.stats_source.fetch_user_total_stats(user)
        except ExternalConnectionError as e:
            logger.warning(f"Unable to retrieve stats for user '{user.display_name}' (ID: {user.id}): {e}")
            return Stats.empty(user.id)

    async def initialise_user(self, user: UserRef) -> Stats:
        """Take the baseline for a newly enrolled user. Their TC stats start at zero."""
        if user.is_secret_key_masked():
            logger.warning(f"Secret key for user '{user.display_name}' (ID: {user.id}) is masked, no initial stats taken")
            return Stats.empty(user.id)

        total = await self.stats_source.fetch_user_total_stats(user)
        await self.stats_store.set_initial_stats(total)
        await self.stats_store.set_total_stats(total)
        await self.stats_store.set_hourly_tc_stats(TcStats.empty(user.id))

        logger.info(
            f"Initial stats for user '{user.display_name}' (ID: {user.id}): "
            f"{format_with_commas(total.points)} points, {format_with_commas(total.units)} units"
        )
        return total

    async def reconcile_user_change(self, user: UserRef) -> bool:
        """
        Keep a user's contribution across an account name, secret key or hardware change.

        The current TC stats become the user's complete offset (replacing any previous
        offset) and the baseline is reset to their latest total, so the next pass
        reproduces exactly what they had before the change. If no total is available
        from the API or the store, the existing baseline and offset are kept. Does
        nothing while parsing is disabled. Returns whether the change was handled.
        """
        if not self.state_manager.is_parsing_enabled():
            logger.info(f"Parsing disabled, not reconciling change for user '{user.display_name}' (ID: {user.id})")
            return False

        current_tc = await self.stats_store.get_hourly_tc_stats(user.id)
        if await self._reset_initial_stats(user) is None:
            logger.warning(
                f"No total stats for user '{user.display_name}' (ID: {user.id}), "
                f"keeping existing initial stats and offset"
            )
            return False

        offset = OffsetStats.from_tc_stats(current_tc)
        await self.stats_store.set_offset_stats(user.id, offset)

        logger.info(f"Reconciled change for user '{user.display_name}' (ID: {user.id}) with offset {offset}")
        return True

    async def reconcile_team_change(self, user: UserRef, old_team: TeamRef, new_team: TeamRef) -> Optional[RetiredTcStats]:
        """
        Move a user's contribution so far to their old team and start them at zero on the new one.

        If the user has any TC stats, exactly one retired record is stored under the old
        team. The user's offset is cleared and their baseline reset, so the new team
        only gains what the user earns from now on. Does nothing while parsing is
        disabled. Returns the retired record, if one was created.
        """
        if not self.state_manager.is_parsing_enabled():
            logger.info(f"Parsing disabled, not reconciling team change for user '{user.display_name}' (ID: {user.id})")
            return None

        current_tc = await self.stats_store.get_hourly_tc_stats(user.id)
        retired = None
        if not current_tc.is_empty():
            retired = await self.stats_store.add_retired_stats(
                RetiredTcStats.create(old_team.id, user.display_name, current_tc)
            )

        if await self._reset_initial_stats(user) is None:
            offset = await self._cancelling_offset(user, current_tc)
            logger.warning(
                f"No total stats for user '{user.display_name}' (ID: {user.id}), "
                f"keeping initial stats with offset {offset}"
            )
        else:
            offset = OffsetStats.empty()
        await self.stats_store.set_offset_stats(user.id, offset)
        await self.stats_store.set_hourly_tc_stats(TcStats.empty(user.id))

        logger.info(f"User '{user.display_name}' (ID: {user.id}) moved from team '{old_team.name}' to '{new_team.name}'")
        return retired

    async def retire_user(self, user: UserRef) -> Optional[RetiredTcStats]:
        """
        Keep a departing user's contribution on their team and clear their own stats.

        Their initial stats are cleared too, so passes skip them until they are
        initialised again.
        """
        current_tc = await self.stats_store.get_hourly_tc_stats(user.id)
        retired = None
        if not current_tc.is_empty():
            retired = await self.stats_store.add_retired_stats(
                RetiredTcStats.create(user.team.id, user.display_name, current_tc)
            )

        await self.stats_store.set_offset_stats(user.id, OffsetStats.empty())
        await self.stats_store.set_initial_stats(Stats.empty(user.id))
        await self.stats_store.set_hourly_tc_stats(TcStats.empty(user.id))

        logger.info(f"User '{user.display_name}' (ID: {user.id}) retired from team '{user.team.name}'")
        return retired

    async def _cancelling_offset(self, user: UserRef, current_tc: TcStats) -> OffsetStats:
        """Offset that brings the user back to zero against their existing baseline."""
        offset = await self.stats_store.get_offset_stats(user.id) or OffsetStats.empty()
        return offset.with_hardware_multiplier(user.hardware.multiplier).subtract(current_tc)

    async def _reset_initial_stats(self, user: UserRef) -> Optional[Stats]:
        """
        Reset the baseline to the latest total, falling back to the stored total if the API is unavailable.

        Returns None, leaving the baseline untouched, if neither total is available.
        """
        total = Stats.empty(user.id)
        if not user.is_secret_key_masked():
            total = await self._fetch_total_or_empty(user)

        if total.is_empty():
            total = await self.stats_store.get_total_stats(user.id)
            if total.is_empty():
                return None
        else:
            await self.stats_store.set_total_stats(total)

        initial = Stats.create_now(user.id, total.points, total.units)
        await self.stats_store.set_initial_stats(initial)
        return initial

    async def reset_competition(self, users: List[UserRef]) -> ParseResult:
        """
        Start a new competition period.

        Every user's TC stats are zeroed and their baseline becomes their latest stored
        total. All offsets and retired records are removed, then one stats pass runs.
        A user with no total available keeps their baseline, with an offset cancelling
        what they had already earned.
        """
        logger.info(f"Resetting Team Competition stats for {len(users)} users")
        self.state_manager.next_system_state(SystemState.RESETTING_STATS)
        self.state_manager.next_parsing_state(ParsingState.DISABLED)

        try:
            carried_offsets = {}
            for user in users:
                try:
                    offset = await self._reset_user_baseline(user)
                except StorageUnavailable as e:
                    logger.warning(f"Unable to reset initial stats for user '{user.display_name}' (ID: {user.id}): {e}")
                    continue
                if offset is not None:
                    carried_offsets[user.id] = offset

            await self.stats_store.clear_all_offsets()
            await self.stats_store.delete_all_retired_stats()
            for user_id, offset in carried_offsets.items():
                await self.stats_store.set_offset_stats(user_id, offset)
        except StorageUnavailable:
            logger.error("Team Competition reset failed, stats were not reset", exc_info=True)
            self.state_manager.next_system_state(SystemState.WRITE_EXECUTED)
            raise

        return await self.parse_users(users)

    async def _reset_user_baseline(self, user: UserRef) -> Optional[OffsetStats]:
        """Zero the user's TC stats and reset their baseline. Returns an offset to keep if the baseline could not be reset."""
        current_tc = await self.stats_store.get_hourly_tc_stats(user.id)
        await self.stats_store.set_hourly_tc_stats(TcStats.empty(user.id))

        total = await self.stats_store.get_total_stats(user.id)
        if total.is_empty() and not user.is_secret_key_masked():
            total = await self._fetch_total_or_empty(user)

        if total.is_empty():
            offset = await self._cancelling_offset(user, current_tc)
            logger.warning(
                f"No total stats for user '{user.display_name}' (ID: {user.id}), "
                f"keeping initial stats with offset {offset}"
            )
            return offset

        await self.stats_store.set_initial_stats(Stats.create_now(user.id, total.points, total.units))
        return None

    async def set_manual_offset(self, user: UserRef, offset: OffsetStats) -> TcStats:
        """
        Replace a user's offset with an admin correction and recalculate them straight away.

        A missing points side is derived from the user's hardware multiplier before
        the offset is stored.
        """
        self.state_manager.require(OperationType.WRITE)

        offset_to_store = offset.with_hardware_multiplier(user.hardware.multiplier)
        await self.stats_store.set_offset_stats(user.id, offset_to_store)
        logger.info(f"Set offset for user '{user.display_name}' (ID: {user.id}): {offset_to_store}")

        self.state_manager.next_system_state(SystemState.UPDATING_STATS)
        try:
            await self._parse_user(user)
        finally:
            self.state_manager.next_system_state(SystemState.WRITE_EXECUTED)

        return await self.stats_store.get_hourly_tc_stats(user.id)
