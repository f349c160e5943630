# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import logging

import discord
from discord.errors import Forbidden

from common.config import Config
from common.constants import CURRENT_VERSION
from scanner.gateway import BotNotReadyError, DiscordGuildGateway

logger = logging.getLogger("sweepcord.bot")


class SweepBot:
    """
    Owns the py-cord session for the configured guild. The scan service reads
    the guild through `gateway()`; slash commands reach the service through
    `bot.sweep.service`.
    """

    def __init__(self, config: Config, *, load_commands: bool = True):
        self.config = config
        intents = discord.Intents.default()
        intents.members = True
        intents.message_content = True
        self.bot = discord.Bot(intents=intents)
        self.bot.sweep = self
        self.service = None

        orig_on_connect = self.bot.on_connect

        async def _command_sync():
            try:
                await orig_on_connect()
            except Forbidden as e:
                logger.warning(
                    "[⚠️] Can't sync slash commands, make sure the bot is in the server: %s",
                    e,
                )

        self.bot.on_connect = _command_sync
        self.bot.add_listener(self.on_ready, "on_ready")
        if load_commands:
            self.bot.load_extension("commands.commands")

    async def on_ready(self):
        guild = self.bot.get_guild(self.config.GUILD_ID)
        if guild is None:
            logger.warning(
                "[⚠️] Logged in as %s but guild %s is not visible to the bot",
                self.bot.user,
                self.config.GUILD_ID,
            )
            return
        logger.info(
            "[🤖] Logged in as %s; watching %s",
            self.bot.user,
            guild.name,
            extra={"guild_id": guild.id},
        )

    def is_ready(self) -> bool:
        return self.bot.is_ready()

    def guild(self) -> discord.Guild:
        guild = self.bot.get_guild(self.config.GUILD_ID)
        if guild is None:
            raise BotNotReadyError(f"Guild {self.config.GUILD_ID} not found.")
        return guild

    def gateway(self) -> DiscordGuildGateway:
        return DiscordGuildGateway(self.guild(), logger=logger.getChild("gateway"))

    async def start(self) -> None:
        if not self.config.DISCORD_TOKEN:
            raise RuntimeError("DISCORD_TOKEN is not set.")
        logger.info("[✨] Starting Sweepcord bot %s", CURRENT_VERSION)
        await self.bot.start(self.config.DISCORD_TOKEN)

    async def close(self) -> None:
        if not self.bot.is_closed():
            await self.bot.close()
        logger.info("Bot shutdown complete.")
