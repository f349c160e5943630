# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

import discord
from discord.errors import HTTPException, NotFound

from common.constants import KICK_REASON
from common.csv_store import CsvStore
from common.rate_limiter import ActionType, RateLimitManager
from scanner.cancellation import CancellationToken
from scanner.gateway import member_record

logger = logging.getLogger("sweepcord.cleanup.kick")

UNKNOWN_MEMBER = 10007


class KickPermissionError(Exception):
    pass


@dataclass
class KickFileResult:
    filename: str
    dry_run: bool
    total_rows: int = 0
    matched_users: int = 0
    attempted_kicks: int = 0
    successful_kicks: int = 0
    failures: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_username(value: str) -> str:
    s = (value or "").strip()
    return s[:-2] if s.endswith("#0") else s


def can_kick(guild: discord.Guild, member: discord.Member) -> bool:
    """Role hierarchy check for the bot against `member`."""
    me = guild.me
    if me is None or member.id == guild.owner_id or member.id == me.id:
        return False
    if me.id == guild.owner_id:
        return True
    return me.top_role > member.top_role


class CsvKicker:
    """Kicks members listed in scan CSVs after re-checking each row against the guild."""

    def __init__(
        self,
        guild: discord.Guild,
        store: CsvStore,
        *,
        ignored_ids: Optional[Set[str]] = None,
        ratelimit: Optional[RateLimitManager] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.guild = guild
        self.store = store
        self.ignored_ids = ignored_ids or set()
        self.ratelimit = ratelimit or RateLimitManager()
        self.token = token or CancellationToken("Kick job cancelled by user.")

    async def run(self, filenames: Iterable[str], *, dry_run: bool = False) -> List[KickFileResult]:
        unique: List[str] = []
        for name in filenames or []:
            if name and name not in unique:
                unique.append(name)
        if not unique:
            raise ValueError("At least one CSV filename must be provided.")

        me = self.guild.me
        if me is None or not me.guild_permissions.kick_members:
            raise KickPermissionError("Bot is missing the Kick Members permission in this guild.")

        results = []
        for filename in unique:
            self.token.raise_if_cancelled()
            results.append(await self._run_file(filename, dry_run))
        return results

    async def _run_file(self, filename: str, dry_run: bool) -> KickFileResult:
        rows = self.store.read_rows(filename)
        summary = KickFileResult(filename=filename, dry_run=dry_run, total_rows=len(rows))
        matched: List[Tuple[discord.Member, str]] = []

        for i, row in enumerate(rows):
            self.token.raise_if_cancelled()
            line = i + 2
            user_id = (row.get("User ID") or "").strip()
            username = (row.get("Username") or "").strip()
            if not user_id or not username:
                summary.failures.append(f"Row {line}: Missing user data.")
                continue
            if user_id in self.ignored_ids:
                continue

            member, error = await self._fetch_member(user_id)
            if error:
                summary.failures.append(f"Row {line}: {error}")
                continue

            expected = normalize_username(username)
            actual = normalize_username(member_record(member).formatted_name)
            if actual != expected:
                summary.failures.append(
                    f"Row {line}: Username mismatch (expected {expected}, got {actual})."
                )
                continue

            if not can_kick(self.guild, member):
                summary.failures.append(
                    f"Row {line}: Cannot kick {actual} due to role hierarchy or missing permission."
                )
                continue
            matched.append((member, actual))

        summary.matched_users = len(matched)
        summary.attempted_kicks = len(matched)
        if dry_run:
            logger.info(
                "[🧹] Dry run %s: %d/%d rows matched", filename, len(matched), len(rows)
            )
            return summary

        for n, (member, name) in enumerate(matched, start=1):
            self.token.raise_if_cancelled()
            label = f"Kick {n}/{len(matched)}"
            try:
                await self.ratelimit.acquire(ActionType.KICK)
                await member.kick(reason=KICK_REASON)
                if await self._still_in_guild(member.id):
                    summary.failures.append(
                        f"{label} for {name} ({member.id}) reported success but user is still in the guild."
                    )
                else:
                    summary.successful_kicks += 1
                    logger.info("[🧹] Kicked %s (%d)", name, member.id)
            except HTTPException as e:
                self.ratelimit.penalize_from(ActionType.KICK, e)
                summary.failures.append(f"{label} failed for {name} ({member.id}): {e}")
                logger.warning("[⚠️] %s failed for %s (%d): %s", label, name, member.id, e)

        return summary

    async def _fetch_member(self, user_id: str) -> Tuple[Optional[discord.Member], Optional[str]]:
        try:
            uid = int(user_id)
        except ValueError:
            return None, f"User ID {user_id} is not a valid id."

        cached = self.guild.get_member(uid)
        if cached is not None:
            return cached, None
        try:
            return await self.guild.fetch_member(uid), None
        except NotFound:
            return None, f"User ID {user_id} not found in this guild."
        except HTTPException as e:
            return None, f"Failed to fetch user {user_id}: {e}"
        except asyncio.TimeoutError:
            return None, (
                f"Failed to fetch user {user_id}: Members didn't arrive in time "
                "(Discord chunk timeout)."
            )

    async def _still_in_guild(self, user_id: int) -> bool:
        try:
            await self.guild.fetch_member(user_id)
        except NotFound as e:
            if getattr(e, "code", UNKNOWN_MEMBER) == UNKNOWN_MEMBER:
                return False
            raise
        return True
