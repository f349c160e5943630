# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

import asyncio
import logging
from typing import List, Optional

import discord
from discord import Color, Embed, Option
from discord import errors as discord_errors
from discord.ext import commands

from cleanup.kick import KickPermissionError
from common.config import Config
from common.constants import CONFIRM_TIMEOUT_SECONDS, DEFAULT_INACTIVE_DAYS, DISCORD_FILE_LIMIT
from common.csv_store import CsvFileError
from scanner.cancellation import ScanCancelledError
from scanner.channels import ChannelResolutionError
from scanner.gateway import BotNotReadyError
from scanner.models import ScanResult
from scanner.service import ScanConflictError

logger = logging.getLogger("sweepcord.commands")

config = Config()
GUILD_ID = config.GUILD_ID

CONFIRM = "✅"
DECLINE = "❌"
EMBED_TITLE_LIMIT = 256

# Errors whose message is meant for the invoking user.
USER_ERRORS = (
    ScanConflictError,
    ScanCancelledError,
    BotNotReadyError,
    ChannelResolutionError,
    CsvFileError,
    KickPermissionError,
    ValueError,
)


class SweepCommands(commands.Cog):
    """
    Slash commands for scans and cleanup, restricted to COMMAND_USERS.
    Destructive commands show a dry run first and wait for a reaction.
    """

    def __init__(self, bot: discord.Bot):
        self.bot = bot
        self.allowed_users = getattr(config, "COMMAND_USERS", []) or []

    @property
    def service(self):
        sweep = getattr(self.bot, "sweep", None)
        service = getattr(sweep, "service", None)
        if service is None:
            raise BotNotReadyError("Scan service is not attached yet.")
        return service

    async def cog_check(self, ctx: discord.ApplicationContext):
        cmd_name = ctx.command.name if ctx.command else "unknown"
        if ctx.user.id in self.allowed_users:
            logger.info("User %s executed the '%s' command.", ctx.user.id, cmd_name)
            return True
        await ctx.respond("You are not authorized to use this command.", ephemeral=True)
        logger.warning(
            "Unauthorized access: user %s attempted to run command '%s'", ctx.user.id, cmd_name
        )
        return False

    @commands.Cog.listener()
    async def on_application_command_error(self, interaction, error):
        """
        Unwraps ApplicationCommandInvokeError, ignores CheckFailure (already
        answered in cog_check) and logs everything else with a traceback.
        """
        orig = getattr(error, "original", None)
        err = orig or error

        if isinstance(err, (commands.CheckFailure, discord_errors.CheckFailure)):
            return

        cmd = interaction.command.name if interaction.command else "<unknown>"
        logger.exception("Error in command '%s':", cmd, exc_info=err)

    @commands.Cog.listener()
    async def on_ready(self):
        if not self.allowed_users:
            logger.warning("No allowed users configured: commands will not work for anyone.")
        else:
            logger.info("Commands permissions set for users: %s", self.allowed_users)

    # --- helpers ---

    async def _confirm(self, ctx: discord.ApplicationContext, prompt: str) -> bool:
        """
        Post `prompt` and wait for the invoker to react. No answer within the
        timeout counts as a decline.
        """
        msg = await ctx.followup.send(
            f"{prompt}\nReact {CONFIRM} to proceed or {DECLINE} to cancel.", wait=True
        )
        await msg.add_reaction(CONFIRM)
        await msg.add_reaction(DECLINE)

        def check(reaction, user):
            return (
                user.id == ctx.user.id
                and reaction.message.id == msg.id
                and str(reaction.emoji) in (CONFIRM, DECLINE)
            )

        try:
            reaction, _ = await self.bot.wait_for(
                "reaction_add", timeout=CONFIRM_TIMEOUT_SECONDS, check=check
            )
        except asyncio.TimeoutError:
            await ctx.followup.send("⌛ No confirmation received; cancelled.")
            return False

        if str(reaction.emoji) != CONFIRM:
            await ctx.followup.send("Cancelled.")
            return False
        return True

    @staticmethod
    def _scan_embed(
        title: str, result: ScanResult, channels: Optional[List[str]] = None
    ) -> Embed:
        embed = Embed(title=title[:EMBED_TITLE_LIMIT], color=Color.blurple())
        if channels:
            embed.add_field(name="Channels", value=", ".join(channels)[:1024], inline=False)
        embed.add_field(name="Guild", value=result.guild_name or "-", inline=True)
        embed.add_field(name="Members found", value=str(len(result.members)), inline=True)
        embed.add_field(
            name="Messages scanned", value=str(result.total_messages_scanned), inline=True
        )
        if result.preview_names:
            names = "\n".join(result.preview_names)
            if result.more_count:
                names += f"\n…and {result.more_count} more"
            embed.add_field(name="Preview", value=names[:1024], inline=False)
        if result.skipped_preview:
            embed.add_field(name="Skipped", value=result.skipped_preview[:1024], inline=False)
        embed.set_footer(text=result.csv_path.name)
        return embed

    async def _send_result(
        self, ctx, title: str, result: ScanResult, channels: Optional[List[str]] = None
    ):
        embed = self._scan_embed(title, result, channels)
        path = result.csv_path
        if path.exists() and path.stat().st_size <= DISCORD_FILE_LIMIT:
            await ctx.followup.send(embed=embed, file=discord.File(str(path)))
        else:
            await ctx.followup.send(embed=embed)

    # --- commands ---

    @commands.slash_command(
        name="scan_zero",
        description="Find members who never posted in the target channels.",
        guild_ids=[GUILD_ID],
    )
    async def scan_zero(
        self,
        ctx: discord.ApplicationContext,
        dry_run: bool = Option(bool, "Only write an empty CSV", default=False),
    ):
        await ctx.defer()
        try:
            result, names = await self.service.run_zero_scan(None, dry_run=dry_run)
        except USER_ERRORS as e:
            await ctx.followup.send(f"⚠️ {e}")
            return
        title = "Zero-message scan (dry run)" if dry_run else "Zero-message scan"
        await self._send_result(ctx, title, result, channels=names)

    @commands.slash_command(
        name="scan_inactive",
        description="Find members with no messages in the last N days.",
        guild_ids=[GUILD_ID],
    )
    async def scan_inactive(
        self,
        ctx: discord.ApplicationContext,
        days: int = Option(int, "Inactivity window in days", default=DEFAULT_INACTIVE_DAYS, min_value=1),
    ):
        await ctx.defer()
        try:
            result = await self.service.run_inactive_scan(days)
        except USER_ERRORS as e:
            await ctx.followup.send(f"⚠️ {e}")
            return
        await self._send_result(ctx, f"Inactive for {days} days", result)

    @commands.slash_command(
        name="scan_cancel",
        description="Cancel a running scan or kick job.",
        guild_ids=[GUILD_ID],
    )
    async def scan_cancel(
        self,
        ctx: discord.ApplicationContext,
        kind: str = Option(str, "Which job to cancel", choices=["zero", "inactive", "kick"]),
    ):
        try:
            self.service.cancel(kind)
        except USER_ERRORS as e:
            await ctx.respond(f"⚠️ {e}", ephemeral=True)
            return
        await ctx.respond("🛑 Cancellation requested.", ephemeral=True)

    @commands.slash_command(
        name="kick_csv",
        description="Kick members listed in a scan CSV (dry run first).",
        guild_ids=[GUILD_ID],
    )
    async def kick_csv(
        self,
        ctx: discord.ApplicationContext,
        filename: str = Option(str, "CSV filename from the csv directory", required=True),
    ):
        await ctx.defer()
        try:
            preview = await self.service.run_kick([filename], dry_run=True)
        except USER_ERRORS as e:
            await ctx.followup.send(f"⚠️ {e}")
            return

        summary = preview[0]
        lines = [
            f"**{summary.filename}**: {summary.matched_users}/{summary.total_rows} rows match.",
        ]
        if summary.failures:
            lines.append(f"{len(summary.failures)} row(s) will be skipped.")
        if summary.matched_users == 0:
            await ctx.followup.send("\n".join(lines) + "\nNothing to kick.")
            return
        if not await self._confirm(ctx, "\n".join(lines)):
            return

        try:
            results = await self.service.run_kick([filename], dry_run=False)
        except USER_ERRORS as e:
            await ctx.followup.send(f"⚠️ {e}")
            return
        done = results[0]
        msg = f"🧹 Kicked {done.successful_kicks}/{done.attempted_kicks} member(s)."
        if done.failures:
            msg += "\n" + "\n".join(done.failures[:10])
        await ctx.followup.send(msg[:2000])

    @commands.slash_command(
        name="cleanup_roles",
        description="Delete roles that have no members (dry run first).",
        guild_ids=[GUILD_ID],
    )
    async def cleanup_roles(self, ctx: discord.ApplicationContext):
        await ctx.defer()
        try:
            preview = await self.service.run_role_cleanup(dry_run=True)
        except USER_ERRORS as e:
            await ctx.followup.send(f"⚠️ {e}")
            return

        if preview.deletable_role_count == 0:
            await ctx.followup.send(preview.message)
            return
        names = ", ".join(preview.preview_names)
        if preview.more_count:
            names += f", +{preview.more_count} more"
        if not await self._confirm(ctx, f"{preview.message}\n{names}"):
            return

        try:
            result = await self.service.run_role_cleanup(dry_run=False)
        except USER_ERRORS as e:
            await ctx.followup.send(f"⚠️ {e}")
            return
        msg = result.message
        if result.failures:
            msg += "\n" + "\n".join(result.failures[:10])
        await ctx.followup.send(msg[:2000])


def setup(bot: discord.Bot):
    bot.add_cog(SweepCommands(bot))
