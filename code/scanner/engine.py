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
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from common.constants import (
    INACTIVE_PREVIEW_LIMIT,
    INACTIVE_SKIPPED_PREVIEW_LIMIT,
    ZERO_PREVIEW_LIMIT,
    ZERO_SCAN_PREFIX,
    ZERO_SKIPPED_PREVIEW_LIMIT,
)
from common.csv_store import CsvStore, load_ignored_user_ids
from scanner.cancellation import CancellationToken
from scanner.channels import CategoryExclusionPolicy, ChannelResolver, ExplicitNamePolicy
from scanner.gateway import GuildGateway, RemoteError, RemoteForbidden, RemoteHTTPError
from scanner.history import HistoryWalker
from scanner.models import ChannelTarget, MemberRecord, ScanKind, ScanResult
from scanner.progress import ScanProgress
from scanner.reducer import ScanSession, WorkingSet
from scanner.results import ResultAssembler

logger = logging.getLogger("sweepcord.scanner")


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def skip_reason(exc: RemoteError) -> str:
    if isinstance(exc, RemoteForbidden):
        return "forbidden"
    if isinstance(exc, RemoteHTTPError):
        return f"HTTP error: {exc}"
    return f"error: {exc}"


class MemberActivityScanner:
    """
    Walks guild history once per scan, shrinking a working set of member ids
    until every channel is read or nobody is left to account for.
    """

    def __init__(
        self,
        gateway: GuildGateway,
        store: CsvStore,
        *,
        ignore_dir: Optional[Path] = None,
        include_threads: bool = True,
        zero_preview_limit: int = ZERO_PREVIEW_LIMIT,
        inactive_preview_limit: int = INACTIVE_PREVIEW_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.ignore_dir = ignore_dir
        self.include_threads = include_threads
        self.walker = HistoryWalker(gateway)
        self.resolver = ChannelResolver(gateway)
        self.zero_results = ResultAssembler(
            store, preview_limit=zero_preview_limit, skipped_limit=ZERO_SKIPPED_PREVIEW_LIMIT
        )
        self.inactive_results = ResultAssembler(
            store,
            preview_limit=inactive_preview_limit,
            skipped_limit=INACTIVE_SKIPPED_PREVIEW_LIMIT,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # --- zero-message scan ---

    async def scan_zero_messages(
        self,
        channel_names: Iterable[str],
        *,
        dry_run: bool = False,
        progress: Optional[ScanProgress] = None,
        token: Optional[CancellationToken] = None,
    ) -> ScanResult:
        progress = progress or ScanProgress()
        token = token or CancellationToken()
        token.raise_if_cancelled()

        if dry_run:
            session = self._session(ScanKind.ZERO_MESSAGE, {}, [], token, ZERO_SCAN_PREFIX)
            logger.info("[🔍] Zero-message dry run: writing header-only CSV")
            return self.zero_results.empty(session, dry_run=True)

        members = await self.gateway.fetch_members()
        token.raise_if_cancelled()

        pool = {m.id: m for m in members if not m.bot}
        session = self._session(
            ScanKind.ZERO_MESSAGE, pool, pool.keys(), token, ZERO_SCAN_PREFIX
        )
        session.on_removed = progress.on_member_progress
        progress.on_member_progress(0, len(pool))
        if not pool:
            return self.zero_results.empty(session)

        targets = await self.resolver.resolve(ExplicitNamePolicy(channel_names), token)
        logger.info(
            "[🔍] Zero-message scan: %d members across %d channels",
            len(pool),
            len(targets),
            extra={"scan_kind": ScanKind.ZERO_MESSAGE.value},
        )
        await self._scan_channels(session, targets, progress, newest_first=False)
        return self.zero_results.finalize(session)

    # --- inactivity scan ---

    async def scan_inactive(
        self,
        days: int,
        excluded_categories: Iterable[str] = (),
        *,
        progress: Optional[ScanProgress] = None,
        token: Optional[CancellationToken] = None,
    ) -> ScanResult:
        progress = progress or ScanProgress()
        token = token or CancellationToken()
        token.raise_if_cancelled()

        cutoff = self._clock() - timedelta(days=days)
        members = await self.gateway.fetch_members()
        token.raise_if_cancelled()

        ignored = load_ignored_user_ids(self.ignore_dir) if self.ignore_dir else set()
        pool = {m.id: m for m in members if not m.bot and str(m.id) not in ignored}
        # Members who joined after the cutoff have not had the full window.
        seed = [mid for mid, m in pool.items() if not self._joined_after(m, cutoff)]

        session = self._session(
            ScanKind.INACTIVE, pool, seed, token, f"inactive_{days}d", cutoff=cutoff
        )
        session.on_removed = progress.on_member_progress
        progress.on_member_progress(0, len(seed))
        if not seed:
            return self.inactive_results.empty(session)

        policy = CategoryExclusionPolicy(
            excluded_categories, include_threads=self.include_threads
        )
        targets = await self.resolver.resolve(policy, token)
        logger.info(
            "[🔍] Inactive scan (%dd): %d members across %d channels, %d ignored",
            days,
            len(seed),
            len(targets),
            len(ignored),
            extra={"scan_kind": ScanKind.INACTIVE.value},
        )
        await self._scan_channels(
            session, targets, progress, cutoff=cutoff, newest_first=True
        )
        return self.inactive_results.finalize(session)

    # --- shared ---

    def _session(self, kind, pool, seed, token, prefix, cutoff=None) -> ScanSession:
        return ScanSession(
            kind=kind,
            guild_name=self.gateway.guild_name,
            members=dict(pool),
            working=WorkingSet(seed),
            token=token,
            csv_prefix=prefix,
            cutoff=cutoff,
        )

    @staticmethod
    def _joined_after(member: MemberRecord, cutoff: datetime) -> bool:
        return member.joined_at is not None and _aware(member.joined_at) > cutoff

    async def _scan_channels(
        self,
        session: ScanSession,
        targets: List[ChannelTarget],
        progress: ScanProgress,
        *,
        cutoff: Optional[datetime] = None,
        newest_first: bool = False,
    ) -> None:
        total = len(targets)
        session.total_channels = total

        for index, channel in enumerate(targets, start=1):
            session.token.raise_if_cancelled()

            if not channel.readable:
                session.skip(channel.name, "missing history permission")
                continue

            progress.on_channel_start(channel.name, index, total)
            try:
                stats = await self.walker.walk(
                    channel,
                    session.observe,
                    cutoff=cutoff,
                    newest_first=newest_first,
                    should_stop=session.converged,
                    token=session.token,
                )
                session.total_messages += stats.total_messages
                session.processed.append(channel.name)
            except RemoteError as e:
                reason = skip_reason(e)
                session.skip(channel.name, reason)
                logger.warning(
                    "[⚠️] Skipping #%s: %s",
                    channel.name,
                    reason,
                    extra={"scan_kind": session.kind.value, "channel_id": channel.id},
                )
            finally:
                progress.on_channel_complete(channel.name, index, total)
                progress.on_messages(session.total_messages)

            if session.converged():
                logger.info(
                    "[🔍] Every member accounted for after #%s (%d/%d); stopping early",
                    channel.name,
                    index,
                    total,
                )
                break
