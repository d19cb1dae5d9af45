import asyncio
import logging
import traceback
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from tcbot.config import Config
from tcbot.database.database import Database
from tcbot.database.stats_store import SqlStatsStore
from tcbot.operations.user_operations import UserOperations
from tcbot.services.competition_summary import CompetitionSummaryService
from tcbot.services.state import ParsingState, StateManager, SystemState
from tcbot.services.stats_calculator import TcStatsCalculator
from tcbot.services.stats_source import ExternalStatsSource
from tcbot.utils.logger import setup_logger


class TeamCompetitionBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.db: Optional[Database] = None
        self.state_manager = StateManager()
        self.stats_source: Optional[ExternalStatsSource] = None
        self.stats_store: Optional[SqlStatsStore] = None
        self.calculator: Optional[TcStatsCalculator] = None
        self.summary_service: Optional[CompetitionSummaryService] = None
        self.user_operations: Optional[UserOperations] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up Team Competition Bot...")

        # Initialize database
        self.db = Database()
        await self.db.initialize()

        # Initialize stats services
        self.stats_source = ExternalStatsSource()
        self.stats_store = SqlStatsStore(self.db.session_factory)
        self.calculator = TcStatsCalculator(self.stats_store, self.stats_source, self.state_manager)
        self.summary_service = CompetitionSummaryService(self.db, self.stats_store, self.state_manager)
        self.user_operations = UserOperations(self.db, self.calculator, self.state_manager)
        self.logger.info("Stats services initialized")

        # Load cogs
        await self.load_cogs()

        # Sync slash commands
        await self._sync_commands()

        self.state_manager.next_parsing_state(ParsingState.ENABLED)
        self.state_manager.next_system_state(SystemState.AVAILABLE)
        self.logger.info("Team Competition Bot setup complete!")

    async def load_cogs(self):
        """Load all cogs"""
        cogs_to_load = [
            'tcbot.cogs.competition',
        ]

        for cog in cogs_to_load:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except Exception as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        try:
            guild_ids = Config.get_guild_ids()

            if guild_ids:
                # Guild-specific sync (instant updates, works in specified servers)
                self.logger.info(f"Attempting to sync commands to {len(guild_ids)} guild(s): {guild_ids}...")

                for guild_id in guild_ids:
                    try:
                        guild = discord.Object(id=guild_id)
                        self.tree.copy_global_to(guild=guild)
                        synced = await self.tree.sync(guild=guild)
                        self.logger.info(f"Successfully synced {len(synced)} command(s) to guild {guild_id}")
                    except discord.errors.Forbidden:
                        self.logger.error(f"Permission error syncing to guild {guild_id}. Ensure the bot has the 'application.commands' scope and is in the guild.", exc_info=True)
                    except discord.errors.HTTPException as e:
                        self.logger.error(f"HTTP error syncing to guild {guild_id}. Status: {e.status}, Response: {e.text}", exc_info=True)
            else:
                # Global sync (can take up to 1 hour, works everywhere)
                self.logger.info("Attempting to sync commands globally... (Note: This can take up to an hour to propagate)")
                synced = await self.tree.sync()
                self.logger.info(f"Successfully synced {len(synced)} command(s) globally")
        except Exception as e:
            self.logger.error(f"Failed to sync commands: {e}", exc_info=True)

    async def on_ready(self):
        """Called when the bot is ready"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

        await self.change_presence(
            activity=discord.Game(name="Team Competition | /tc-leaderboard")
        )

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'
        if isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
            error_embed = discord.Embed(
                title="❌ Permission Denied",
                description="You don't have the required permissions to use this command.",
                color=discord.Color.red()
            )
        else:
            self.logger.error(f"Error in app command '{command_name}': {error}", exc_info=True)
            error_embed = discord.Embed(
                title="❌ An unexpected error occurred",
                description="An unexpected error occurred while processing your command.",
                color=discord.Color.red()
            )

        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=error_embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
        except Exception as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down Team Competition Bot...")

        if self.stats_source:
            await self.stats_source.aclose()

        if self.db:
            await self.db.close()

        await super().close()


async def main():
    """Main entry point"""
    Config.validate()

    bot = TeamCompetitionBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except KeyboardInterrupt:
        await bot.close()
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
    finally:
        await bot.close()


def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
