"""In-memory stand-ins for the Discord side of the scanner."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from scanner.gateway import GuildGateway
from scanner.models import ChannelKind, ChannelTarget, MemberRecord, MessageRecord

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def member(mid: int, name: str, *, display: Optional[str] = None, bot: bool = False,
           joined_days_ago: Optional[float] = 365, now: datetime = NOW) -> MemberRecord:
    return MemberRecord(
        id=mid,
        name=name,
        display_name=display or name,
        bot=bot,
        discriminator="0",
        joined_at=None if joined_days_ago is None else now - timedelta(days=joined_days_ago),
    )


def channel(cid: int, name: str, *, kind: ChannelKind = ChannelKind.TEXT,
            category: Optional[str] = None, readable: bool = True) -> ChannelTarget:
    return ChannelTarget(
        id=cid,
        name=name,
        kind=kind,
        category_name=category,
        readable=readable,
    )


def history(authors: Iterable[int], *, start_id: int = 1000, end: datetime = NOW,
            step: timedelta = timedelta(minutes=1), bots: Iterable[int] = ()) -> List[MessageRecord]:
    """Messages oldest-first, the last one at `end`, ids increasing with time."""
    authors = list(authors)
    bot_ids = set(bots)
    out = []
    for i, author in enumerate(authors):
        out.append(
            MessageRecord(
                id=start_id + i,
                author_id=author,
                author_bot=author in bot_ids,
                created_at=end - step * (len(authors) - 1 - i),
            )
        )
    return out


class FakeGateway(GuildGateway):
    def __init__(
        self,
        *,
        members: Iterable[MemberRecord] = (),
        channels: Iterable[ChannelTarget] = (),
        messages: Optional[Dict[int, List[MessageRecord]]] = None,
        threads: Optional[Dict[int, List[ChannelTarget]]] = None,
        active_threads: Iterable[ChannelTarget] = (),
        errors: Optional[Dict[int, Exception]] = None,
        guild_name: str = "Test Guild",
    ):
        self.guild_name = guild_name
        self.members = list(members)
        self.channels = list(channels)
        self.messages = messages or {}
        self.threads = threads or {}
        self.active_threads = list(active_threads)
        self.errors = errors or {}
        self.history_calls: List[tuple] = []
        self.member_fetches = 0
        self.members_gate: Optional[asyncio.Event] = None

    async def fetch_members(self) -> List[MemberRecord]:
        self.member_fetches += 1
        if self.members_gate is not None:
            await self.members_gate.wait()
        return list(self.members)

    async def fetch_channels(self) -> List[ChannelTarget]:
        return list(self.channels)

    async def fetch_active_threads(self) -> List[ChannelTarget]:
        return list(self.active_threads)

    async def fetch_threads(self, parent: ChannelTarget) -> List[ChannelTarget]:
        return list(self.threads.get(parent.id, []))

    async def fetch_history_page(self, channel, *, before=None, limit=100):
        self.history_calls.append((channel.id, before))
        if channel.id in self.errors:
            raise self.errors[channel.id]
        msgs = sorted(
            self.messages.get(channel.id, []), key=lambda m: (m.created_at, m.id), reverse=True
        )
        if before is not None:
            msgs = [m for m in msgs if m.id < before]
        return msgs[:limit]

    def fetched_channels(self) -> List[int]:
        seen = []
        for cid, _ in self.history_calls:
            if cid not in seen:
                seen.append(cid)
        return seen


class FakeBot:
    def __init__(self, gateway=None, guild=None, *, ready: bool = True):
        self._gateway = gateway
        self._guild = guild
        self.ready = ready

    def is_ready(self) -> bool:
        return self.ready

    def gateway(self):
        return self._gateway

    def guild(self):
        return self._guild
