"""
Team Competition Cog - Scheduled Stats Passes & Commands

Runs the scheduled stats pass and the monthly competition reset, and provides the
leaderboard commands plus owner-only admin commands for managing stats.
"""

import discord
from discord import app_commands
from discord.ext import commands, tasks
from datetime import datetime, time, timezone
from typing import List, Optional, Tuple

import pytz

from tcbot.config import Config
from tcbot.data_models.competitors import Category, Role
from tcbot.data_models.stats import OffsetStats
from tcbot.services.state import OperationType, ParsingState, state_required
from tcbot.services.stats_calculator import ParseResult
from tcbot.utils.embeds import (
    build_category_leaderboard_embed, build_error_embed, build_monthly_result_embed, build_state_embed,
    build_team_leaderboard_embed, build_team_summary_embed
)
from tcbot.utils.exceptions import NotFoundError, TeamCompetitionException
from tcbot.utils.logger import setup_logger

logger = setup_logger(__name__)

RESET_CHECK_TIME = time(hour=0, minute=15, tzinfo=timezone.utc)


def is_monthly_reset_due(now: datetime, reset_day: int, last_reset: Optional[datetime] = None) -> bool:
    """Whether today is the reset day and no reset has run yet this month."""
    if now.day != reset_day:
        return False
    if last_reset and (last_reset.year, last_reset.month) == (now.year, now.month):
        return False
    return True


def competition_month(now: datetime, reset_day: int) -> Tuple[int, int]:
    """Year and month in which the competition running at `now` started."""
    if now.day > reset_day:
        return now.year, now.month
    # Up to and including the reset day, the running competition began last month
    if now.month == 1:
        return now.year - 1, 12
    return now.year, now.month - 1


async def end_competition(calculator, summary_service, users, now: datetime, reset_day: int,
                          store_result: bool) -> ParseResult:
    """Store the month's result if enabled, then reset stats for a new competition."""
    if store_result:
        year, month = competition_month(now, reset_day)
        logger.info(f"Storing Team Competition result for {year}-{month:02d}")
        await summary_service.store_monthly_result(year, month)

    return await calculator.reset_competition(users)


class TeamCompetitionCog(commands.Cog):
    """Team Competition stats passes, leaderboards and admin commands"""

    def __init__(self, bot):
        self.bot = bot
        self.db = bot.db
        self.calculator = bot.calculator
        self.summary_service = bot.summary_service
        self.user_operations = bot.user_operations
        self.state_manager = bot.state_manager
        self.last_reset: Optional[datetime] = None
        self.logger = logger

    @commands.Cog.listener()
    async def on_ready(self):
        """Start background tasks after bot is ready"""
        if not self.parse_stats.is_running():
            self.parse_stats.change_interval(minutes=Config.STATS_PARSING_INTERVAL_MINUTES)
            self.parse_stats.start()
        if Config.ENABLE_STATS_MONTHLY_RESET and not self.monthly_reset.is_running():
            self.monthly_reset.start()
        self.logger.info("TeamCompetitionCog: Background tasks started")

    def cog_unload(self):
        """Stop background tasks when cog is unloaded"""
        self.parse_stats.cancel()
        self.monthly_reset.cancel()
        self.logger.info("TeamCompetitionCog: Background tasks stopped")

    @tasks.loop(hours=1)
    async def parse_stats(self):
        """Background task to update TC stats for every active user"""
        try:
            users = await self.db.get_active_users()
            self.logger.info(f"Starting scheduled stats pass for {len(users)} users")
            await self.calculator.parse_users(users)
        except Exception as e:
            self.logger.error(f"Error in scheduled stats pass: {e}", exc_info=True)

    @parse_stats.before_loop
    async def before_parse_stats(self):
        """Wait for bot to be ready before starting stats passes"""
        await self.bot.wait_until_ready()

    @tasks.loop(time=RESET_CHECK_TIME)
    async def monthly_reset(self):
        """Background task to reset the competition on the configured day of the month"""
        try:
            now = datetime.now(pytz.timezone(Config.STATS_RESET_TIMEZONE))
            if not is_monthly_reset_due(now, Config.STATS_RESET_DAY_OF_MONTH, self.last_reset):
                return

            users = await self.db.get_active_users()
            self.logger.info(f"Starting monthly Team Competition reset for {len(users)} users")
            await self._end_competition(users, now)
            self.last_reset = now
        except Exception as e:
            self.logger.error(f"Error in monthly reset task: {e}", exc_info=True)

    @monthly_reset.before_loop
    async def before_monthly_reset(self):
        await self.bot.wait_until_ready()

    async def _end_competition(self, users, now: datetime) -> ParseResult:
        return await end_competition(
            self.calculator, self.summary_service, users, now,
            Config.STATS_RESET_DAY_OF_MONTH, Config.ENABLE_MONTHLY_RESULT_STORAGE
        )

    async def _deny_non_owner(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != Config.OWNER_DISCORD_ID:
            await interaction.response.send_message(
                "❌ **Access Denied**\nThis command is restricted to the bot owner.",
                ephemeral=True
            )
            return True
        return False

    async def _send_error(self, interaction: discord.Interaction, title: str, error: Exception):
        if isinstance(error, TeamCompetitionException):
            description = error.user_message
        else:
            description = f"An error occurred: {str(error)}"
        embed = build_error_embed(title, description)

        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="tc-leaderboard", description="Show the Team Competition team leaderboard")
    @state_required(OperationType.READ)
    async def tc_leaderboard(self, interaction: discord.Interaction):
        try:
            await interaction.response.defer()
            entries = await self.summary_service.team_leaderboard()
            await interaction.followup.send(embed=build_team_leaderboard_embed(entries))
        except Exception as e:
            self.logger.error(f"Error showing team leaderboard: {e}", exc_info=True)
            await self._send_error(interaction, "❌ Leaderboard Unavailable", e)

    @app_commands.command(name="tc-categories", description="Show the Team Competition category leaderboards")
    @state_required(OperationType.READ)
    async def tc_categories(self, interaction: discord.Interaction):
        try:
            await interaction.response.defer()
            leaderboard = await self.summary_service.category_leaderboard()
            await interaction.followup.send(embed=build_category_leaderboard_embed(leaderboard))
        except Exception as e:
            self.logger.error(f"Error showing category leaderboard: {e}", exc_info=True)
            await self._send_error(interaction, "❌ Leaderboard Unavailable", e)

    @app_commands.command(name="tc-team", description="Show a team's Team Competition stats")
    @app_commands.describe(team_name="Name of the team")
    @state_required(OperationType.READ)
    async def tc_team(self, interaction: discord.Interaction, team_name: str):
        try:
            await interaction.response.defer()
            team = await self.summary_service.get_team_summary(team_name)
            if not team:
                await interaction.followup.send(f"❌ Team '{team_name}' not found!", ephemeral=True)
                return
            await interaction.followup.send(embed=build_team_summary_embed(team))
        except Exception as e:
            self.logger.error(f"Error showing team '{team_name}': {e}", exc_info=True)
            await self._send_error(interaction, "❌ Team Unavailable", e)

    @app_commands.command(name="admin-tc-parse", description="Update TC stats for every user now (Owner only)")
    async def admin_tc_parse(self, interaction: discord.Interaction):
        if await self._deny_non_owner(interaction):
            return

        try:
            self.state_manager.require(OperationType.WRITE)
            await interaction.response.defer(ephemeral=True)

            users = await self.db.get_active_users()
            result = await self.calculator.parse_users(users)

            embed = discord.Embed(
                title="✅ Stats Updated",
                description=(
                    f"**Parsed:** {len(result.parsed_user_ids)}\n"
                    f"**Skipped:** {len(result.skipped_user_ids)}\n"
                    f"**Failed:** {len(result.failed_user_ids)}"
                ),
                color=discord.Color.green() if not result.failed_user_ids else discord.Color.orange(),
                timestamp=datetime.now(timezone.utc)
            )
            await interaction.followup.send(embed=embed)

            self.logger.info(f"Manual stats pass executed by {interaction.user.id} ({interaction.user.name})")
        except Exception as e:
            self.logger.error(f"Manual stats pass error: {e}", exc_info=True)
            await self._send_error(interaction, "❌ Stats Update Failed", e)

    @app_commands.command(name="admin-tc-reset", description="Reset all TC stats for a new competition (Owner only - DESTRUCTIVE)")
    @app_commands.describe(confirm="Type RESET to confirm")
    async def admin_tc_reset(self, interaction: discord.Interaction, confirm: str):
        if await self._deny_non_owner(interaction):
            return

        if confirm != "RESET":
            await interaction.response.send_message(
                "⚠️ Reset not confirmed. Run the command again with `confirm: RESET`.",
                ephemeral=True
            )
            return

        try:
            self.state_manager.require(OperationType.WRITE)
            await interaction.response.defer(ephemeral=True)

            users = await self.db.get_active_users()
            now = datetime.now(pytz.timezone(Config.STATS_RESET_TIMEZONE))
            result = await self._end_competition(users, now)
            self.last_reset = now

            embed = discord.Embed(
                title="✅ Competition Reset",
                description=f"Reset stats for **{result.total_users}** users.",
                color=discord.Color.green(),
                timestamp=datetime.now(timezone.utc)
            )
            await interaction.followup.send(embed=embed)

            self.logger.warning(f"Competition reset executed by {interaction.user.id} ({interaction.user.name})")
        except Exception as e:
            self.logger.error(f"Competition reset error: {e}", exc_info=True)
            await self._send_error(interaction, "❌ Reset Failed", e)

    @app_commands.command(name="admin-tc-state", description="Show the current TC system state (Owner only)")
    async def admin_tc_state(self, interaction: discord.Interaction):
        if await self._deny_non_owner(interaction):
            return

        embed = build_state_embed(
            self.state_manager.current_system_state(),
            self.state_manager.current_parsing_state()
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="admin-tc-parsing", description="Enable or disable TC stats parsing (Owner only)")
    @app_commands.describe(enabled="Whether stats changes should be reconciled")
    async def admin_tc_parsing(self, interaction: discord.Interaction, enabled: bool):
        if await self._deny_non_owner(interaction):
            return

        state = ParsingState.ENABLED if enabled else ParsingState.DISABLED
        self.state_manager.next_parsing_state(state)
        await interaction.response.send_message(f"✅ Parsing state set to **{state.name}**.", ephemeral=True)
        self.logger.info(f"Parsing state set to {state.name} by {interaction.user.id} ({interaction.user.name})")

    @app_commands.command(name="admin-tc-offset", description="Replace a user's TC stats offset (Owner only)")
    @app_commands.describe(
        display_name="Display name of the user",
        points="Unmultiplied points offset (0 to derive from multiplied points)",
        multiplied_points="Multiplied points offset (0 to derive from points)",
        units="Units offset"
    )
    async def admin_tc_offset(self, interaction: discord.Interaction, display_name: str,
                              points: int = 0, multiplied_points: int = 0, units: int = 0):
        if await self._deny_non_owner(interaction):
            return

        try:
            await interaction.response.defer(ephemeral=True)

            user = await self.user_operations.get_user_by_display_name(display_name)
            if not user:
                await interaction.followup.send(f"❌ User '{display_name}' not found!", ephemeral=True)
                return

            offset = OffsetStats.from_request(points, multiplied_points, units)
            tc_stats = await self.user_operations.set_user_offset(user.id, offset)

            await interaction.followup.send(
                f"✅ Offset applied to **{user.display_name}**. "
                f"TC stats are now {tc_stats.multiplied_points:,} points, {tc_stats.units:,} units.",
                ephemeral=True
            )
        except Exception as e:
            self.logger.error(f"Error applying offset to '{display_name}': {e}", exc_info=True)
            await self._send_error(interaction, "❌ Offset Failed", e)


    @app_commands.command(name="tc-result", description="Show the stored Team Competition result for a month")
    @app_commands.describe(year="Year of the competition", month="Month of the competition (1-12)")
    @state_required(OperationType.READ)
    async def tc_result(self, interaction: discord.Interaction,
                        year: app_commands.Range[int, 2000, 2100], month: app_commands.Range[int, 1, 12]):
        try:
            await interaction.response.defer()
            result = await self.summary_service.get_monthly_result(year, month)
            if not result:
                await interaction.followup.send(f"❌ No result stored for {year}-{month:02d}.", ephemeral=True)
                return
            await interaction.followup.send(embed=build_monthly_result_embed(result))
        except Exception as e:
            self.logger.error(f"Error showing result for {year}-{month:02d}: {e}", exc_info=True)
            await self._send_error(interaction, "❌ Result Unavailable", e)

    async def _resolve_team(self, name: str):
        team = await self.db.get_team_by_name(name)
        if not team:
            raise NotFoundError("Team", name)
        return team

    async def _resolve_hardware(self, name: str):
        hardware = await self.db.get_hardware_by_name(name)
        if not hardware:
            raise NotFoundError("Hardware", name)
        return hardware

    @staticmethod
    def _resolve_category(value: str) -> Category:
        category = Category.get(value)
        if not category:
            raise ValueError(f"Unknown category '{value}', expected one of: {', '.join(c.name for c in Category)}")
        return category

    @app_commands.command(name="admin-tc-add-hardware", description="Add hardware with a points multiplier (Owner only)")
    @app_commands.describe(name="Hardware name", multiplier="Points multiplier", display_name="Name shown on leaderboards")
    async def admin_tc_add_hardware(self, interaction: discord.Interaction, name: str,
                                    multiplier: app_commands.Range[float, 0.0], display_name: Optional[str] = None):
        if await self._deny_non_owner(interaction):
            return

        try:
            await interaction.response.defer(ephemeral=True)
            hardware = await self.user_operations.add_hardware(name, multiplier, display_name)
            await interaction.followup.send(
                f"✅ Added hardware **{hardware.name}** with multiplier **{hardware.multiplier}**.", ephemeral=True
            )
        except Exception as e:
            self.logger.error(f"Error adding hardware '{name}': {e}", exc_info=True)
            await self._send_error(interaction, "❌ Add Hardware Failed", e)

    @app_commands.command(name="admin-tc-add-team", description="Add a team to the competition (Owner only)")
    @app_commands.describe(name="Team name", description="Team description")
    async def admin_tc_add_team(self, interaction: discord.Interaction, name: str, description: Optional[str] = None):
        if await self._deny_non_owner(interaction):
            return

        try:
            await interaction.response.defer(ephemeral=True)
            team = await self.user_operations.add_team(name, description)
            await interaction.followup.send(f"✅ Added team **{team.name}**.", ephemeral=True)
        except Exception as e:
            self.logger.error(f"Error adding team '{name}': {e}", exc_info=True)
            await self._send_error(interaction, "❌ Add Team Failed", e)

    @app_commands.command(name="admin-tc-add-user", description="Enrol a user and take their initial stats (Owner only)")
    @app_commands.describe(
        account_name="Account name on the stats API",
        display_name="Name shown on leaderboards",
        secret_key="Secret key (passkey) for the account",
        category="Category the user competes in",
        hardware="Hardware name",
        team="Team name",
        captain="Whether the user captains their team"
    )
    async def admin_tc_add_user(self, interaction: discord.Interaction, account_name: str, display_name: str,
                                secret_key: str, category: str, hardware: str, team: str, captain: bool = False):
        if await self._deny_non_owner(interaction):
            return

        try:
            await interaction.response.defer(ephemeral=True)
            hardware_ref = await self._resolve_hardware(hardware)
            team_ref = await self._resolve_team(team)
            user = await self.user_operations.create_user(
                account_name, display_name, secret_key, self._resolve_category(category),
                hardware_ref.id, team_ref.id, role=Role.CAPTAIN if captain else Role.MEMBER
            )
            await interaction.followup.send(
                f"✅ Enrolled **{user.display_name}** on **{user.team.name}** using **{user.hardware.name}**.",
                ephemeral=True
            )
            self.logger.info(f"User {user!r} enrolled by {interaction.user.id} ({interaction.user.name})")
        except Exception as e:
            self.logger.error(f"Error enrolling user '{display_name}': {e}", exc_info=True)
            await self._send_error(interaction, "❌ Enrolment Failed", e)

    @app_commands.command(name="admin-tc-update-user", description="Update a user and carry their stats across (Owner only)")
    @app_commands.describe(
        display_name="Current display name of the user",
        new_display_name="New display name",
        account_name="New account name",
        secret_key="New secret key",
        category="New category",
        hardware="New hardware name",
        team="New team name",
        active="Set to False to retire the user from their team"
    )
    async def admin_tc_update_user(self, interaction: discord.Interaction, display_name: str,
                                   new_display_name: Optional[str] = None, account_name: Optional[str] = None,
                                   secret_key: Optional[str] = None, category: Optional[str] = None,
                                   hardware: Optional[str] = None, team: Optional[str] = None,
                                   active: Optional[bool] = None):
        if await self._deny_non_owner(interaction):
            return

        try:
            await interaction.response.defer(ephemeral=True)

            user = await self.user_operations.get_user_by_display_name(display_name)
            if not user:
                raise NotFoundError("User", display_name)

            changes = {}
            if new_display_name:
                changes['display_name'] = new_display_name
            if account_name:
                changes['account_name'] = account_name
            if secret_key:
                changes['secret_key'] = secret_key
            if category:
                changes['category'] = self._resolve_category(category)
            if hardware:
                changes['hardware_id'] = (await self._resolve_hardware(hardware)).id
            if team:
                changes['team_id'] = (await self._resolve_team(team)).id
            if active is not None:
                changes['is_active'] = active

            if not changes:
                await interaction.followup.send("⚠️ No changes given.", ephemeral=True)
                return

            updated = await self.user_operations.apply_user_update(user.id, **changes)
            await interaction.followup.send(
                f"✅ Updated **{updated.display_name}**: {', '.join(sorted(changes))}.", ephemeral=True
            )
            self.logger.info(f"User {updated.id} updated by {interaction.user.id} ({interaction.user.name}): {sorted(changes)}")
        except Exception as e:
            self.logger.error(f"Error updating user '{display_name}': {e}", exc_info=True)
            await self._send_error(interaction, "❌ Update Failed", e)

    @app_commands.command(name="admin-tc-update-hardware", description="Update hardware and reconcile its users (Owner only)")
    @app_commands.describe(name="Hardware name", multiplier="New points multiplier", display_name="New display name")
    async def admin_tc_update_hardware(self, interaction: discord.Interaction, name: str,
                                       multiplier: Optional[app_commands.Range[float, 0.0]] = None,
                                       display_name: Optional[str] = None):
        if await self._deny_non_owner(interaction):
            return

        try:
            await interaction.response.defer(ephemeral=True)

            hardware = await self._resolve_hardware(name)
            changes = {}
            if multiplier is not None:
                changes['multiplier'] = multiplier
            if display_name:
                changes['display_name'] = display_name

            if not changes:
                await interaction.followup.send("⚠️ No changes given.", ephemeral=True)
                return

            updated = await self.user_operations.apply_hardware_update(hardware.id, **changes)
            await interaction.followup.send(
                f"✅ Updated hardware **{updated.name}** (multiplier {updated.multiplier}).", ephemeral=True
            )
        except Exception as e:
            self.logger.error(f"Error updating hardware '{name}': {e}", exc_info=True)
            await self._send_error(interaction, "❌ Update Failed", e)

    @admin_tc_add_user.autocomplete('category')
    @admin_tc_update_user.autocomplete('category')
    async def category_autocomplete(self, interaction: discord.Interaction, current: str) -> List[app_commands.Choice[str]]:
        """Suggest category names."""
        return [
            app_commands.Choice(name=category.name, value=category.name)
            for category in Category
            if current.lower() in category.name.lower()
        ]


async def setup(bot):
    await bot.add_cog(TeamCompetitionCog(bot))
