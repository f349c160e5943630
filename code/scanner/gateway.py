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
import random
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import aiohttp
import discord
from discord import ChannelType
from discord.errors import Forbidden, HTTPException

from scanner.models import ChannelKind, ChannelTarget, MemberRecord, MessageRecord


class RemoteError(Exception):
    """A remote call failed after retries."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RemoteForbidden(RemoteError):
    pass


class RemoteHTTPError(RemoteError):
    pass


class BotNotReadyError(Exception):
    def __init__(self, message: str = "Discord client is not ready yet. Try again shortly."):
        super().__init__(message)


class GuildGateway:
    """
    Read-only view of one guild, as needed by the scanner. Implementations
    raise RemoteForbidden / RemoteHTTPError for failed remote calls.
    """

    guild_name: str = ""

    async def fetch_members(self) -> List[MemberRecord]:
        raise NotImplementedError

    async def fetch_channels(self) -> List[ChannelTarget]:
        raise NotImplementedError

    async def fetch_active_threads(self) -> List[ChannelTarget]:
        raise NotImplementedError

    async def fetch_threads(self, parent: ChannelTarget) -> List[ChannelTarget]:
        raise NotImplementedError

    async def fetch_history_page(
        self, channel: ChannelTarget, *, before: Optional[int] = None, limit: int = 100
    ) -> List[MessageRecord]:
        """Up to `limit` messages older than `before`, newest first."""
        raise NotImplementedError


_KIND_BY_TYPE = {
    ChannelType.text: ChannelKind.TEXT,
    ChannelType.news: ChannelKind.ANNOUNCEMENT,
    ChannelType.forum: ChannelKind.FORUM,
    ChannelType.category: ChannelKind.CATEGORY,
    ChannelType.public_thread: ChannelKind.THREAD,
    ChannelType.private_thread: ChannelKind.THREAD,
    ChannelType.news_thread: ChannelKind.THREAD,
    ChannelType.voice: ChannelKind.VOICE,
    ChannelType.stage_voice: ChannelKind.VOICE,
}


def channel_kind(obj: Any) -> ChannelKind:
    return _KIND_BY_TYPE.get(getattr(obj, "type", None), ChannelKind.OTHER)


def member_record(m: Any) -> MemberRecord:
    return MemberRecord(
        id=m.id,
        name=m.name,
        display_name=getattr(m, "display_name", None) or m.name,
        bot=bool(getattr(m, "bot", False)),
        discriminator=getattr(m, "discriminator", None),
        joined_at=getattr(m, "joined_at", None),
    )


def category_name_of(obj: Any) -> Optional[str]:
    parent = getattr(obj, "parent", None) if channel_kind(obj) is ChannelKind.THREAD else None
    if parent is not None:
        cat = getattr(parent, "category", None)
    else:
        cat = getattr(obj, "category", None)
    return getattr(cat, "name", None) if cat is not None else None


# Connection resets, dropped sockets and gateway timeouts.
TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class DiscordGuildGateway(GuildGateway):
    """GuildGateway over a py-cord Guild."""

    MAX_RETRIES = 6
    BASE_DELAY = 0.75
    JITTER = 0.40

    def __init__(self, guild: discord.Guild, *, logger: Optional[logging.Logger] = None):
        self.guild = guild
        self.guild_name = getattr(guild, "name", "") or ""
        self.logger = logger or logging.getLogger("sweepcord.gateway")
        self._objects: Dict[int, Any] = {}

    # --- retry plumbing ---

    def _should_retry_http(self, e: Exception) -> bool:
        status = getattr(e, "status", None)
        return status in {500, 502, 503, 504, 520, 522, 524}

    def _delay(self, attempt: int) -> float:
        return self.BASE_DELAY * (2**attempt) * (1.0 + random.random() * self.JITTER)

    async def _retry(self, desc: str, op: Callable[[], Awaitable[Any]]):
        for attempt in range(self.MAX_RETRIES + 1):
            try:
                return await op()
            except Forbidden as e:
                raise RemoteForbidden(str(e), getattr(e, "status", 403)) from e
            except HTTPException as e:
                if not self._should_retry_http(e) or attempt >= self.MAX_RETRIES:
                    raise RemoteHTTPError(
                        getattr(e, "text", None) or str(e), getattr(e, "status", None)
                    ) from e
                delay = self._delay(attempt)
                self.logger.warning(
                    "[gateway] retry %s after HTTP %s attempt=%d sleep=%.2fs",
                    desc,
                    getattr(e, "status", "?"),
                    attempt + 1,
                    delay,
                )
                await asyncio.sleep(delay)
            except TRANSIENT_ERRORS as e:
                if attempt >= self.MAX_RETRIES:
                    raise RemoteError(str(e) or e.__class__.__name__) from e
                delay = self._delay(attempt)
                self.logger.warning(
                    "[gateway] retry %s after %s attempt=%d sleep=%.2fs",
                    desc,
                    e.__class__.__name__,
                    attempt + 1,
                    delay,
                )
                await asyncio.sleep(delay)

    async def _drain(self, desc: str, factory: Callable[[], AsyncIterator]) -> list:
        async def _once():
            return [item async for item in factory()]

        return await self._retry(desc, _once)

    # --- conversion ---

    def _me(self):
        return getattr(self.guild, "me", None)

    def _readable(self, obj: Any) -> bool:
        me = self._me()
        if me is None:
            return True
        try:
            perms = obj.permissions_for(me)
        except Exception:
            return True
        return bool(perms.view_channel and perms.read_message_history)

    def _target(self, obj: Any) -> ChannelTarget:
        self._objects[obj.id] = obj
        kind = channel_kind(obj)
        return ChannelTarget(
            id=obj.id,
            name=getattr(obj, "name", "") or str(obj.id),
            kind=kind,
            category_name=category_name_of(obj),
            readable=self._readable(obj),
        )

    @staticmethod
    def _message(m: Any) -> MessageRecord:
        author = getattr(m, "author", None)
        return MessageRecord(
            id=m.id,
            author_id=getattr(author, "id", 0),
            author_bot=bool(getattr(author, "bot", False)),
            created_at=m.created_at,
        )

    # --- GuildGateway ---

    async def fetch_members(self) -> List[MemberRecord]:
        members = await self._drain(
            "fetch_members", lambda: self.guild.fetch_members(limit=None)
        )
        self.logger.debug("[gateway] fetched %d members", len(members))
        return [member_record(m) for m in members]

    async def fetch_channels(self) -> List[ChannelTarget]:
        channels = await self._retry("fetch_channels", self.guild.fetch_channels)
        channels = sorted(channels, key=lambda c: (getattr(c, "position", 0) or 0, c.id))
        return [self._target(ch) for ch in channels]

    async def fetch_active_threads(self) -> List[ChannelTarget]:
        threads = await self._retry("active_threads", self.guild.active_threads)
        return [self._target(th) for th in threads or []]

    async def fetch_threads(self, parent: ChannelTarget) -> List[ChannelTarget]:
        """
        Active and archived threads under a text/announcement/forum parent.

        Rules:
        - ForumChannel: only public archived threads.
        - Text/announcement: public archived, then private archived.
        Each source fails independently; failures are logged and skipped.
        """
        obj = self._objects.get(parent.id) or self.guild.get_channel(parent.id)
        if obj is None:
            return []

        found: Dict[int, ChannelTarget] = {}
        for th in getattr(obj, "threads", None) or []:
            found.setdefault(th.id, self._target(th))

        sources = [("archived public", lambda: obj.archived_threads(limit=None))]
        if parent.kind is not ChannelKind.FORUM:
            sources.append(
                ("archived private", lambda: obj.archived_threads(private=True, limit=None))
            )

        for label, factory in sources:
            try:
                for th in await self._drain(f"{label} threads", factory):
                    found.setdefault(th.id, self._target(th))
            except RemoteError as e:
                self.logger.debug(
                    "[gateway] %s threads unavailable | channel=%s err=%s",
                    label,
                    parent.id,
                    e,
                )
        return list(found.values())

    async def _resolve(self, channel: ChannelTarget):
        obj = self._objects.get(channel.id)
        if obj is None:
            getter = getattr(self.guild, "get_channel_or_thread", None) or self.guild.get_channel
            obj = getter(channel.id)
        if obj is None:
            obj = await self._retry(
                "fetch_channel", lambda: self.guild.fetch_channel(channel.id)
            )
        self._objects[channel.id] = obj
        return obj

    async def fetch_history_page(
        self, channel: ChannelTarget, *, before: Optional[int] = None, limit: int = 100
    ) -> List[MessageRecord]:
        obj = await self._resolve(channel)
        kw: Dict[str, Any] = {"limit": limit}
        if before is not None:
            kw["before"] = discord.Object(id=before)
        msgs = await self._drain(f"history #{channel.name}", lambda: obj.history(**kw))
        return [self._message(m) for m in msgs]
