"""
Shared embed utilities for the Team Competition bot.

Provides reusable embed building functions so the leaderboard and admin
commands format stats consistently.
"""

import calendar

import discord
from typing import Dict, List

from tcbot.data_models.competitors import Category
from tcbot.data_models.summary import MonthlyResult, TeamLeaderboardEntry, TeamSummary, UserCategoryLeaderboardEntry
from tcbot.services.state import ParsingState, SystemState

MAX_EMBED_FIELDS = 25

RANK_MEDALS = {1: "🥇", 2: "🥈", 3: "🥉"}


def _rank_label(rank: int) -> str:
    return RANK_MEDALS.get(rank, f"#{rank}")


def build_team_leaderboard_embed(entries: List[TeamLeaderboardEntry]) -> discord.Embed:
    """
    Build the team leaderboard embed.

    Args:
        entries: Team rows in rank order

    Returns:
        Formatted Discord embed, one field per team
    """
    embed = discord.Embed(title="🏆 Team Competition Leaderboard", color=discord.Color.gold())

    if not entries:
        embed.description = "No teams are taking part yet."
        return embed

    for entry in entries[:MAX_EMBED_FIELDS]:
        value = f"**Points:** {entry.team_multiplied_points:,}\n**Units:** {entry.team_units:,}"
        if entry.diff_to_leader:
            value += f"\n**Behind leader:** {entry.diff_to_leader:,}\n**Behind next:** {entry.diff_to_next:,}"
        embed.add_field(name=f"{_rank_label(entry.rank)} {entry.team_name}", value=value, inline=False)

    return embed


def build_category_leaderboard_embed(leaderboard: Dict[Category, List[UserCategoryLeaderboardEntry]],
                                     max_users: int = 10) -> discord.Embed:
    """Build one embed holding a field per category, listing the top users in each."""
    embed = discord.Embed(title="📊 Category Leaderboards", color=discord.Color.blue())

    for category, entries in leaderboard.items():
        if entries:
            value = "\n".join(
                f"{_rank_label(entry.rank)} **{entry.display_name}** ({entry.team_name}): "
                f"{entry.multiplied_points:,}"
                for entry in entries[:max_users]
            )
        else:
            value = "No users in this category."
        embed.add_field(name=category.name.replace('_', ' ').title(), value=value, inline=False)

    return embed


def build_team_summary_embed(team: TeamSummary) -> discord.Embed:
    """Build the embed for a single team with its active and retired users."""
    embed = discord.Embed(
        title=f"{_rank_label(team.rank)} {team.team_name}",
        description=team.team.description or None,
        color=discord.Color.gold() if team.rank == 1 else discord.Color.blue()
    )

    embed.add_field(
        name="📊 Team Totals",
        value=(
            f"**Points:** {team.team_multiplied_points:,}\n"
            f"**Unmultiplied Points:** {team.team_points:,}\n"
            f"**Units:** {team.team_units:,}"
        ),
        inline=True
    )
    embed.add_field(name="👑 Captain", value=team.captain_name or "None", inline=True)

    if team.active_users:
        embed.add_field(
            name="Active Users",
            value="\n".join(
                f"{user.rank}. {user.display_name} ({user.user.hardware.display_name or user.user.hardware.name}): "
                f"{user.multiplied_points:,}"
                for user in team.active_users
            ),
            inline=False
        )

    if team.retired_users:
        embed.add_field(
            name="Retired Users",
            value="\n".join(
                f"{user.rank}. {user.display_name}: {user.multiplied_points:,}"
                for user in team.retired_users
            ),
            inline=False
        )

    if team.team.forum_link:
        embed.url = team.team.forum_link

    return embed


def build_state_embed(system_state: SystemState, parsing_state: ParsingState) -> discord.Embed:
    embed = discord.Embed(title="⚙️ Team Competition State", color=discord.Color.blurple())
    embed.add_field(name="System State", value=system_state.name, inline=True)
    embed.add_field(name="Parsing State", value=parsing_state.name, inline=True)
    embed.add_field(
        name="Permitted Operations",
        value=", ".join(sorted(op.name for op in system_state.permitted_operations)) or "None",
        inline=False
    )
    return embed


def build_error_embed(title: str, description: str) -> discord.Embed:
    return discord.Embed(title=title, description=description, color=discord.Color.red())


def build_monthly_result_embed(result: MonthlyResult) -> discord.Embed:
    """Team leaderboard embed for a stored month, titled with that month."""
    embed = build_team_leaderboard_embed(result.team_leaderboard)
    embed.title = f"🏆 Team Competition Result: {calendar.month_name[result.month]} {result.year}"
    embed.timestamp = result.timestamp
    return embed
