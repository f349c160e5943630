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
from typing import Dict, Iterable, List, Optional

from scanner.cancellation import CancellationToken
from scanner.gateway import GuildGateway, RemoteError
from scanner.models import ChannelKind, ChannelTarget

logger = logging.getLogger("sweepcord.scanner.channels")


class ChannelResolutionError(Exception):
    """No channel matched the selection policy."""


def normalize_names(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    for v in values or []:
        s = str(v).strip().lower()
        if s and s not in out:
            out.append(s)
    return out


class ExplicitNamePolicy:
    """Text channels whose lowercased name is in `names`. Unmatched names are dropped."""

    empty_message = "No target channels found with the provided names."
    include_threads = False

    def __init__(self, names: Iterable[str]):
        self.names = set(normalize_names(names))

    def accepts(self, target: ChannelTarget) -> bool:
        return target.kind is ChannelKind.TEXT and target.name.lower() in self.names


class CategoryExclusionPolicy:
    """
    Every history-capable channel whose nearest category is not excluded.
    Forum posts are reached through their threads; the forum itself is never
    a target.
    """

    empty_message = "No eligible channels were found for inactivity scan."

    def __init__(self, excluded: Iterable[str], *, include_threads: bool = True):
        self.excluded = set(normalize_names(excluded))
        self.include_threads = include_threads

    def accepts(self, target: ChannelTarget) -> bool:
        if not target.kind.supports_history:
            return False
        cat = (target.category_name or "").strip().lower()
        return not (cat and cat in self.excluded)


class ChannelResolver:
    def __init__(self, gateway: GuildGateway):
        self.gateway = gateway
        self.logger = logger

    async def resolve(
        self, policy, token: Optional[CancellationToken] = None
    ) -> List[ChannelTarget]:
        """
        Ordered, de-duplicated scan targets for `policy`. Channels come in guild
        order, each followed by its own threads; guild-wide active threads not
        seen yet are appended last.
        """
        token = token or CancellationToken()
        token.raise_if_cancelled()
        channels = await self.gateway.fetch_channels()
        token.raise_if_cancelled()

        targets: Dict[int, ChannelTarget] = {}

        def consider(target: ChannelTarget) -> None:
            if target.id in targets:
                return
            if policy.accepts(target):
                targets[target.id] = target

        for ch in channels:
            consider(ch)
            if policy.include_threads and ch.kind.supports_threads:
                token.raise_if_cancelled()
                for th in await self._threads_of(ch):
                    consider(th)

        if policy.include_threads:
            token.raise_if_cancelled()
            for th in await self._active_threads():
                consider(th)

        if not targets:
            raise ChannelResolutionError(policy.empty_message)

        self.logger.debug("[channels] resolved %d targets", len(targets))
        return list(targets.values())

    async def _threads_of(self, parent: ChannelTarget) -> List[ChannelTarget]:
        try:
            return await self.gateway.fetch_threads(parent)
        except RemoteError as e:
            self.logger.debug(
                "[channels] threads unavailable for #%s: %s", parent.name, e
            )
            return []

    async def _active_threads(self) -> List[ChannelTarget]:
        try:
            return await self.gateway.fetch_active_threads()
        except RemoteError as e:
            self.logger.debug("[channels] guild active threads unavailable: %s", e)
            return []
