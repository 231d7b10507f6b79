"""
taxgate.bot.cogs.meta — Balance & Leaderboard Commands
========================================================

Hybrid commands for member self-service:
- /points — View $TAX balance, lifetime total, streak, messages, rank
- /leaderboard — Top members globally or in this server
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from taxgate.constants import CURRENCY, RANK_BADGES
from taxgate.database.engine import run_db

if TYPE_CHECKING:
    from taxgate.bot.core import TaxGateBot

LEADERBOARD_SIZE = 10


class Meta(commands.Cog, name="Meta"):
    """Balances and leaderboards."""

    def __init__(self, bot: TaxGateBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /points
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="points",
        description="View your (or another member's) $TAX balance.",
    )
    @app_commands.describe(member="The member to look up (defaults to you)")
    async def points(self, ctx: commands.Context, member: discord.Member | None = None) -> None:
        target = member or ctx.author
        stats = await run_db(self.bot.points_service.get_user_stats, target.id)

        if stats is None:
            await ctx.send(
                f"\U0001f50d **{target.display_name}** hasn't earned any {CURRENCY} yet.",
                ephemeral=True,
            )
            return

        embed = discord.Embed(
            title=f"\U0001f4b0 {target.display_name}'s {CURRENCY}",
            color=discord.Color.green(),
        )
        embed.set_thumbnail(url=target.display_avatar.url)
        embed.add_field(name="Balance", value=f"{stats.tax_points:,}", inline=True)
        embed.add_field(name="Lifetime", value=f"{stats.total_earned:,}", inline=True)
        embed.add_field(name="Rank", value=f"#{stats.rank}", inline=True)
        embed.add_field(name="\U0001f525 Streak", value=f"{stats.streak} days", inline=True)
        embed.add_field(name="\U0001f4ac Messages", value=f"{stats.messages:,}", inline=True)
        embed.set_footer(text=self.bot.cfg.community_name)
        await ctx.send(embed=embed)

    # -------------------------------------------------------------------
    # /leaderboard
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="leaderboard",
        description="View the top $TAX earners.",
    )
    @app_commands.describe(scope="Everyone, or points earned in this server")
    @app_commands.choices(scope=[
        app_commands.Choice(name="Global", value="global"),
        app_commands.Choice(name="This server", value="server"),
    ])
    async def leaderboard(self, ctx: commands.Context, scope: str = "global") -> None:
        group_id = ctx.guild.id if scope == "server" and ctx.guild else None
        entries = await run_db(
            self.bot.points_service.get_leaderboard, group_id, LEADERBOARD_SIZE,
        )

        if not entries:
            await ctx.send(
                "No data yet! Start chatting to appear on the leaderboard.",
                ephemeral=True,
            )
            return

        lines = []
        for e in entries:
            medal = (
                RANK_BADGES[e.position - 1]
                if e.position <= len(RANK_BADGES)
                else f"**{e.position}.**"
            )
            lines.append(f"{medal} **{e.display_name}** — {e.tax_points:,} {CURRENCY}")

        where = "this server" if group_id else "everyone"
        embed = discord.Embed(
            title=f"\U0001f3c6 Leaderboard — Top {len(entries)} ({where})",
            description="\n".join(lines),
            color=discord.Color.gold(),
        )
        embed.set_footer(text=self.bot.cfg.community_name)
        await ctx.send(embed=embed)


async def setup(bot: TaxGateBot) -> None:
    await bot.add_cog(Meta(bot))
