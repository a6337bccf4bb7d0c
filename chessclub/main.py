"""
Entry points.

``chessclub-bot`` runs the owner-only Discord admin bot; ``chessclub-api``
serves the HTTP surface. Both build the same ClubEngine from Config.
"""

import asyncio
import logging
from typing import Optional

import discord
from discord.ext import commands

from chessclub.config import Config
from chessclub.engine import ClubEngine
from chessclub.utils.exceptions import ClubError
from chessclub.utils.logger import setup_logger

EXTENSIONS = ('chessclub.cogs.admin',)


class ClubBot(commands.Bot):
    """Discord client that owns one ClubEngine for its admin cog."""

    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(command_prefix=Config.COMMAND_PREFIX, intents=intents, help_command=None)
        self.engine: Optional[ClubEngine] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        self.engine = await ClubEngine.create()
        for extension in EXTENSIONS:
            await self.load_extension(extension)
            self.logger.info(f"Loaded extension {extension}")
        await self._sync_commands()

    async def _sync_commands(self):
        """Guild sync is immediate; global sync can take an hour to show up."""
        try:
            if Config.DISCORD_GUILD_ID:
                guild = discord.Object(id=Config.DISCORD_GUILD_ID)
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
                scope = f"guild {Config.DISCORD_GUILD_ID}"
            else:
                synced = await self.tree.sync()
                scope = "all guilds"
        except discord.HTTPException as e:
            # Prefix commands keep working without synced slash commands
            self.logger.error(f"Slash command sync failed ({e.status}): {e.text}")
            return
        self.logger.info(f"Synced {len(synced)} admin command(s) to {scope}")

    async def on_ready(self):
        self.logger.info(f"Admin bot connected as {self.user}")

    async def on_command_error(self, ctx: commands.Context, error: Exception):
        if isinstance(error, commands.CommandNotFound):
            return
        if isinstance(error, commands.CheckFailure):
            self.logger.info(f"Refused '{ctx.command}' for non-owner {ctx.author}")
            await ctx.send(embed=discord.Embed(
                title="❌ Owner Only",
                description="Club maintenance commands are restricted to the bot owner.",
                color=discord.Color.red()
            ))
            return
        if isinstance(error, commands.UserInputError):
            await ctx.send(f"❌ {error}")
            return

        original = getattr(error, 'original', error)
        if isinstance(original, ClubError):
            await ctx.send(original.user_message)
            return
        self.logger.error(f"Command '{ctx.command}' crashed", exc_info=original)
        await ctx.send("❌ An unexpected error occurred while processing your command.")

    async def close(self):
        if self.engine is not None:
            await self.engine.close()
            self.engine = None
        await super().close()


async def main():
    Config.validate()
    async with ClubBot() as bot:
        await bot.start(Config.DISCORD_TOKEN)


def run_bot():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Admin bot stopped")


def run_api(host: str = "127.0.0.1", port: int = 8000):
    import uvicorn
    from chessclub.api.app import create_app

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    run_bot()
