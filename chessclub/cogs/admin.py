import discord
from discord.ext import commands
from typing import Optional

from chessclub.config import Config
from chessclub.utils.elo import EloCalculator
from chessclub.utils.exceptions import ClubError
from chessclub.utils.logger import setup_logger

logger = setup_logger(__name__)


def _error_embed(title: str, error: ClubError) -> discord.Embed:
    return discord.Embed(
        title=f"❌ {title}",
        description=error.user_message,
        color=discord.Color.red()
    )


class AdminCog(commands.Cog):
    """Owner-only commands for ratings, cache and identity maintenance"""

    def __init__(self, bot):
        self.bot = bot
        self.engine = bot.engine
        self.logger = logger

    def cog_check(self, ctx):
        """Check if user is the bot owner"""
        return ctx.author.id == Config.OWNER_DISCORD_ID

    @commands.hybrid_command(name='recalc-ratings')
    async def recalc_ratings(self, ctx):
        """Replay every verified game and rebuild all ratings (Owner only)"""
        try:
            report = await self.engine.recalc_ratings(admin_id=str(ctx.author.id))
        except ClubError as e:
            await ctx.send(embed=_error_embed("Rating Recalculation Failed", e))
            return

        color = discord.Color.green() if report.errors == 0 else discord.Color.orange()
        embed = discord.Embed(title="✅ Ratings Recalculated", color=color)
        embed.add_field(name="Processed", value=report.processed, inline=True)
        embed.add_field(name="Errors", value=report.errors, inline=True)
        embed.add_field(name="Skipped", value=report.skipped, inline=True)
        embed.add_field(name="Players Rated", value=report.players_rated, inline=True)
        await ctx.send(embed=embed)

    @commands.hybrid_command(name='quota-status')
    async def quota_status(self, ctx):
        """Show the backing store quota breaker (Owner only)"""
        status = self.engine.quota_status()
        if status['quotaExceeded']:
            embed = discord.Embed(
                title="⚠️ Quota Breaker Open",
                description=f"Serving cached data for another {status['timeRemainingMs'] // 1000}s.",
                color=discord.Color.orange()
            )
        else:
            embed = discord.Embed(
                title="✅ Quota Breaker Closed",
                description="Reads go to the backing store on cache misses.",
                color=discord.Color.green()
            )
        embed.add_field(name="Trips Since Start", value=self.engine.guard.trip_count, inline=True)
        await ctx.send(embed=embed)

    @commands.hybrid_command(name='quota-reset')
    async def quota_reset(self, ctx):
        """Close the quota breaker immediately (Owner only)"""
        result = await self.engine.reset_quota(admin_id=str(ctx.author.id))
        description = "Breaker closed." if result['wasOpen'] else "Breaker was already closed."
        await ctx.send(embed=discord.Embed(
            title="🔄 Quota Reset",
            description=description,
            color=discord.Color.blue()
        ))

    @commands.hybrid_command(name='cache-invalidate')
    async def cache_invalidate(self, ctx, tag: Optional[str] = None, key: Optional[str] = None):
        """Invalidate cached views by tag or key (Owner only)"""
        try:
            keys = await self.engine.invalidate_cache(tag=tag, key=key)
        except ClubError as e:
            await ctx.send(embed=_error_embed("Cache Invalidation Failed", e))
            return

        embed = discord.Embed(
            title="🗑️ Cache Invalidated",
            description=f"Removed {len(keys)} entr{'y' if len(keys) == 1 else 'ies'}.",
            color=discord.Color.green()
        )
        if keys:
            embed.add_field(name="Keys", value="\n".join(keys[:20]), inline=False)
        await ctx.send(embed=embed)

    @commands.hybrid_command(name='merge-preview')
    async def merge_preview(self, ctx, source_id: str, target_id: str):
        """Show how many games a merge would repoint (Owner only)"""
        try:
            preview = await self.engine.consistency.merge_preview(source_id, target_id)
        except ClubError as e:
            await ctx.send(embed=_error_embed("Merge Preview Failed", e))
            return

        embed = discord.Embed(
            title="🔍 Merge Preview",
            description=f"`{source_id}` → `{target_id}`",
            color=discord.Color.blue()
        )
        embed.add_field(name="Games To Update", value=preview.games_to_update, inline=True)
        await ctx.send(embed=embed)

    @commands.hybrid_command(name='merge-players')
    async def merge_players(self, ctx, source_id: str, target_id: str):
        """Merge one player id into another (Owner only)"""
        try:
            report = await self.engine.consistency.merge_players(
                source_id, target_id, admin_id=str(ctx.author.id)
            )
        except ClubError as e:
            await ctx.send(embed=_error_embed("Merge Failed", e))
            return

        embed = discord.Embed(
            title="✅ Players Merged" if report.success else "⚠️ Merge Partially Failed",
            description=report.message,
            color=discord.Color.green() if report.success else discord.Color.orange()
        )
        embed.add_field(name="Games Updated", value=report.games.updated, inline=True)
        embed.add_field(name="Games Failed", value=report.games.failed, inline=True)
        for table, count in report.auxiliary_updated.items():
            embed.add_field(name=table.replace('_', ' ').title(), value=count, inline=True)
        if report.auxiliary_warnings:
            embed.add_field(name="Warnings", value="\n".join(report.auxiliary_warnings), inline=False)
        await ctx.send(embed=embed)

    @commands.hybrid_command(name='reconcile-preview')
    async def reconcile_preview(self, ctx):
        """Preview first-name identity reconciliation (Owner only)"""
        try:
            preview = await self.engine.consistency.preview_reconciliation()
        except ClubError as e:
            await ctx.send(embed=_error_embed("Reconciliation Preview Failed", e))
            return

        embed = discord.Embed(
            title="🔍 Reconciliation Preview",
            description=f"Plan `{preview.plan_id}`. Run `reconcile-apply {preview.plan_id}` to apply.",
            color=discord.Color.blue()
        )
        embed.add_field(name="Total Games", value=preview.total_games, inline=True)
        embed.add_field(name="Games To Update", value=preview.games_to_update, inline=True)

        lines = []
        for proposal in preview.proposals[:10]:
            changes = []
            if proposal.player1_new:
                changes.append(f"{proposal.player1_current.name} → {proposal.player1_new.name}")
            if proposal.player2_new:
                changes.append(f"{proposal.player2_current.name} → {proposal.player2_new.name}")
            lines.append(f"`{proposal.game_date}` " + ", ".join(changes))
        if lines:
            embed.add_field(name="Sample", value="\n".join(lines), inline=False)
        if preview.ambiguous:
            embed.add_field(
                name="Ambiguous First Names",
                value=", ".join(f"{a.first_name} ({len(a.candidates)})" for a in preview.ambiguous),
                inline=False
            )
        await ctx.send(embed=embed)

    @commands.hybrid_command(name='reconcile-apply')
    async def reconcile_apply(self, ctx, plan_id: str):
        """Apply a previewed reconciliation plan (Owner only)"""
        try:
            report = await self.engine.consistency.apply_reconciliation(
                plan_id, admin_id=str(ctx.author.id)
            )
        except ClubError as e:
            await ctx.send(embed=_error_embed("Reconciliation Failed", e))
            return

        embed = discord.Embed(
            title="✅ Reconciliation Applied",
            color=discord.Color.green() if report.games.failed == 0 else discord.Color.orange()
        )
        embed.add_field(name="Games Updated", value=report.games.updated, inline=True)
        embed.add_field(name="Player 1 Updates", value=report.player1_updates, inline=True)
        embed.add_field(name="Player 2 Updates", value=report.player2_updates, inline=True)
        embed.add_field(name="Unchanged", value=report.games_not_changed, inline=True)
        embed.add_field(name="Failed", value=report.games.failed, inline=True)
        await ctx.send(embed=embed)

    @commands.hybrid_command(name='rating-odds')
    async def rating_odds(self, ctx, player1_id: str, player2_id: str):
        """Show win probability between two rated players (Owner only)"""
        try:
            player1 = await self.engine.ledger.get_player(player1_id)
            player2 = await self.engine.ledger.get_player(player2_id)
        except ClubError as e:
            await ctx.send(embed=_error_embed("Lookup Failed", e))
            return

        rating1 = player1.elo_rating or Config.DEFAULT_RATING
        rating2 = player2.elo_rating or Config.DEFAULT_RATING
        probability = EloCalculator.calculate_win_probability(rating1, rating2)
        embed = discord.Embed(title="🎯 Win Probability", color=discord.Color.blue())
        embed.add_field(name=player1.name, value=f"{rating1} ({probability:.1f}%)", inline=True)
        embed.add_field(name=player2.name, value=f"{rating2} ({100 - probability:.1f}%)", inline=True)
        await ctx.send(embed=embed)

async def setup(bot):
    await bot.add_cog(AdminCog(bot))
