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
from datetime import datetime
from typing import Callable, Optional

from common.constants import HISTORY_PAGE_SIZE
from scanner.cancellation import CancellationToken
from scanner.gateway import GuildGateway
from scanner.models import ChannelTarget, WalkStats

logger = logging.getLogger("sweepcord.scanner.history")


class HistoryWalker:
    """
    Pages one channel's history backwards, `page_size` messages at a time,
    using the oldest id of each page as the next `before` cursor.
    """

    def __init__(self, gateway: GuildGateway, *, page_size: int = HISTORY_PAGE_SIZE):
        self.gateway = gateway
        self.page_size = page_size

    async def walk(
        self,
        channel: ChannelTarget,
        on_message: Callable[[int], None],
        *,
        cutoff: Optional[datetime] = None,
        newest_first: bool = False,
        should_stop: Optional[Callable[[], bool]] = None,
        token: Optional[CancellationToken] = None,
    ) -> WalkStats:
        """
        Feed the author id of every non-bot message to `on_message`.

        Every message counts toward `total_messages`, bot or not. With a
        `cutoff`, the first message older than it ends the walk and is not
        counted. `should_stop` is checked after each message; once it returns
        True no further pages are fetched. Remote errors propagate to the
        caller, which decides whether the channel is skipped.
        """
        token = token or CancellationToken()
        stats = WalkStats()
        before: Optional[int] = None

        while True:
            token.raise_if_cancelled()
            page = await self.gateway.fetch_history_page(
                channel, before=before, limit=self.page_size
            )
            if not page:
                break
            stats.pages += 1

            ordered = sorted(page, key=lambda m: (m.created_at, m.id), reverse=newest_first)
            for msg in ordered:
                token.raise_if_cancelled()
                if cutoff is not None and msg.created_at < cutoff:
                    stats.reached_cutoff = True
                    break

                stats.total_messages += 1
                if not msg.author_bot:
                    on_message(msg.author_id)

                if should_stop is not None and should_stop():
                    stats.converged = True
                    break

            if stats.converged or stats.reached_cutoff:
                break

            oldest = min(page, key=lambda m: (m.created_at, m.id)).id
            if oldest == before:
                break
            before = oldest

        logger.debug(
            "[history] #%s pages=%d messages=%d cutoff=%s converged=%s",
            channel.name,
            stats.pages,
            stats.total_messages,
            stats.reached_cutoff,
            stats.converged,
        )
        return stats
