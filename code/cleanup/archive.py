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
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

import discord
from discord import ChannelType
from discord.errors import HTTPException, NotFound

from common.constants import ARCHIVE_CATEGORY_NAME, ARCHIVE_REASON, CHANNEL_DELETE_REASON
from common.rate_limiter import ActionType, RateLimitManager

logger = logging.getLogger("sweepcord.cleanup.archive")

ACTIONS = ("archive", "delete")


@dataclass
class InactiveChannel:
    id: str
    name: str
    last_message_at: Optional[str]


@dataclass
class ArchiveResult:
    action: str
    dry_run: bool
    days: int
    inactive_channels: List[InactiveChannel] = field(default_factory=list)
    processed_count: int = 0
    archive_category_id: Optional[str] = None
    failures: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def message(self) -> str:
        if self.dry_run:
            if self.inactive_channels:
                return f"Found {len(self.inactive_channels)} inactive channel(s)."
            return "No inactive channels found."
        verb = "Archived" if self.action == "archive" else "Deleted"
        return f"{verb} {self.processed_count} channel(s)."


class ChannelArchiver:
    def __init__(
        self,
        guild: discord.Guild,
        *,
        excluded_categories: Iterable[str] = (),
        ratelimit: Optional[RateLimitManager] = None,
        clock=None,
    ):
        self.guild = guild
        self.excluded = {c.strip().lower() for c in excluded_categories if c and c.strip()}
        self.ratelimit = ratelimit or RateLimitManager()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(
        self,
        *,
        days: int,
        dry_run: bool = True,
        channel_ids: Iterable[str] = (),
        action: str = "archive",
    ) -> ArchiveResult:
        if days <= 0:
            raise ValueError("Provide a positive number of days.")
        if action not in ACTIONS:
            raise ValueError("Unsupported action. Use 'archive' or 'delete'.")

        if dry_run:
            cat = self._archive_category()
            return ArchiveResult(
                action=action,
                dry_run=True,
                days=days,
                inactive_channels=await self.find_inactive(days),
                archive_category_id=str(cat.id) if cat and action == "archive" else None,
            )

        ids = [str(c).strip() for c in channel_ids or [] if str(c).strip()]
        if not ids:
            raise ValueError("Select at least one channel to archive.")

        category = await self._ensure_archive_category() if action == "archive" else None
        result = ArchiveResult(
            action=action,
            dry_run=False,
            days=days,
            archive_category_id=str(category.id) if category else None,
        )
        for cid in ids:
            await self._apply(cid, action, category, result)
        return result

    # --- dry run ---

    async def find_inactive(self, days: int) -> List[InactiveChannel]:
        threshold = self._clock() - timedelta(days=days)
        me = self.guild.me
        found: List[InactiveChannel] = []

        for ch in self.guild.text_channels:
            if ch.type != ChannelType.text:
                continue
            parent = (ch.category.name.lower() if ch.category else None)
            if parent and (parent in self.excluded or parent == ARCHIVE_CATEGORY_NAME.lower()):
                continue
            if me is not None and not ch.permissions_for(me).view_channel:
                continue

            last = await self._last_message_at(ch)
            effective = last or ch.created_at
            if effective is None:
                continue
            if effective < threshold:
                found.append(
                    InactiveChannel(
                        id=str(ch.id),
                        name=ch.name,
                        last_message_at=last.isoformat() if last else None,
                    )
                )

        found.sort(key=lambda c: c.name)
        return found

    async def _last_message_at(self, ch: discord.TextChannel) -> Optional[datetime]:
        try:
            async for msg in ch.history(limit=1):
                return msg.created_at
        except HTTPException as e:
            logger.debug("[archive] cannot read #%s: %s", ch.name, e)
        return None

    # --- real run ---

    def _archive_category(self) -> Optional[discord.CategoryChannel]:
        return discord.utils.get(self.guild.categories, name=ARCHIVE_CATEGORY_NAME)

    async def _ensure_archive_category(self) -> discord.CategoryChannel:
        existing = self._archive_category()
        if existing is not None:
            return existing
        await self.ratelimit.acquire(ActionType.CHANNEL_EDIT)
        created = await self.guild.create_category(ARCHIVE_CATEGORY_NAME, reason=ARCHIVE_REASON)
        logger.info("[🗄️] Created archive category %s", created.id)
        return created

    async def _apply(
        self,
        cid: str,
        action: str,
        category: Optional[discord.CategoryChannel],
        result: ArchiveResult,
    ) -> None:
        try:
            channel = await self.guild.fetch_channel(int(cid))
        except (ValueError, NotFound):
            channel = None
        except HTTPException as e:
            result.failures.append(f"{cid}: {e}")
            return
        if channel is None or channel.type != ChannelType.text:
            result.failures.append(f"{cid}: Channel not found or not a text channel.")
            return

        act = ActionType.CHANNEL_EDIT if action == "archive" else ActionType.CHANNEL_DELETE
        try:
            if action == "archive":
                if category is not None and channel.category_id == category.id:
                    return
                await self.ratelimit.acquire(act)
                await channel.edit(category=category, sync_permissions=False, reason=ARCHIVE_REASON)
            else:
                await self.ratelimit.acquire(act)
                await channel.delete(reason=CHANNEL_DELETE_REASON)
            result.processed_count += 1
            logger.info("[🗄️] %s #%s (%s)", action, channel.name, cid)
        except HTTPException as e:
            self.ratelimit.penalize_from(act, e)
            result.failures.append(f"{cid}: {e}")
            logger.warning("[⚠️] Failed to %s channel %s: %s", action, cid, e)
