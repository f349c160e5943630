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
import contextlib
import logging
from time import perf_counter
from typing import Dict, Iterable, List, Optional, Tuple

from cleanup.archive import ArchiveResult, ChannelArchiver
from cleanup.kick import CsvKicker, KickFileResult
from cleanup.roles import RoleCleaner, RoleCleanupResult
from common.config import Config
from common.constants import DEFAULT_ARCHIVE_DAYS, DEFAULT_INACTIVE_DAYS
from common.csv_store import CsvStore, load_ignored_user_ids
from common.rate_limiter import RateLimitManager
from scanner.cancellation import CancellationToken, ScanCancelledError
from scanner.engine import MemberActivityScanner
from scanner.gateway import BotNotReadyError, GuildGateway
from scanner.models import ScanResult
from scanner.progress import ScanStatusTracker

logger = logging.getLogger("sweepcord.service")


class ScanConflictError(Exception):
    """A job of this kind is already running, or there is nothing to cancel."""


class JobSlot:
    """
    One in-flight job of a given kind. Begin/end are serialized by a lock;
    cancel only flips the current token.
    """

    def __init__(self, kind: str, *, cancel_message: str = "Scan cancelled by user."):
        self.kind = kind
        self.cancel_message = cancel_message
        self._lock = asyncio.Lock()
        self._token: Optional[CancellationToken] = None

    @property
    def running(self) -> bool:
        return self._token is not None

    async def try_begin(self) -> Optional[CancellationToken]:
        """Claim the slot. Returns None if a job is already running."""
        async with self._lock:
            if self._token is not None:
                return None
            self._token = CancellationToken(self.cancel_message)
            return self._token

    async def end(self) -> None:
        async with self._lock:
            self._token = None

    def cancel(self) -> bool:
        if self._token is None:
            return False
        self._token.cancel()
        return True

    @contextlib.asynccontextmanager
    async def hold(self, busy_message: str):
        token = await self.try_begin()
        if token is None:
            raise ScanConflictError(busy_message)
        try:
            yield token
        finally:
            await self.end()


SLOT_MESSAGES = {
    "zero": ("A scan is already in progress.", "No scan is currently running."),
    "inactive": (
        "An inactive scan is already in progress.",
        "No inactive scan is currently running.",
    ),
    "kick": ("A kick job is already running.", "No kick job is currently running."),
    "roles": ("A role cleanup is already running.", "No role cleanup is currently running."),
    "archive": ("An archive job is already running.", "No archive job is currently running."),
}


class ScanService:
    """
    Runs scans and cleanup jobs against the bot's guild, one per kind at a
    time, and keeps the status trackers the HTTP layer reports from.
    """

    def __init__(
        self,
        config: Config,
        bot=None,
        *,
        store: Optional[CsvStore] = None,
        ratelimit: Optional[RateLimitManager] = None,
    ):
        self.config = config
        self.bot = bot
        self.store = store or CsvStore(config.CSV_DIR)
        self.ratelimit = ratelimit or RateLimitManager()
        self.slots: Dict[str, JobSlot] = {
            "zero": JobSlot("zero"),
            "inactive": JobSlot("inactive"),
            "kick": JobSlot("kick", cancel_message="Kick job cancelled by user."),
            "roles": JobSlot("roles"),
            "archive": JobSlot("archive"),
        }
        self.trackers: Dict[str, ScanStatusTracker] = {
            "zero": ScanStatusTracker("zero", label="scan"),
            "inactive": ScanStatusTracker("inactive", label="inactive scan"),
        }

    # --- plumbing ---

    @property
    def ready(self) -> bool:
        return self.bot is not None and self.bot.is_ready()

    def _gateway(self) -> GuildGateway:
        if not self.ready:
            raise BotNotReadyError()
        return self.bot.gateway()

    def _guild(self):
        if not self.ready:
            raise BotNotReadyError()
        return self.bot.guild()

    def _scanner(self, gateway: GuildGateway) -> MemberActivityScanner:
        return MemberActivityScanner(
            gateway,
            self.store,
            ignore_dir=self.config.IGNORE_DIR,
            include_threads=self.config.INCLUDE_THREADS,
            zero_preview_limit=self.config.ZERO_PREVIEW_LIMIT,
            inactive_preview_limit=self.config.INACTIVE_PREVIEW_LIMIT,
        )

    def _hold(self, kind: str):
        return self.slots[kind].hold(SLOT_MESSAGES[kind][0])

    def status(self, kind: str) -> dict:
        return self.trackers[kind].snapshot()

    def is_running(self, kind: str) -> bool:
        return self.slots[kind].running

    def cancel(self, kind: str) -> None:
        if not self.slots[kind].cancel():
            raise ScanConflictError(SLOT_MESSAGES[kind][1])
        tracker = self.trackers.get(kind)
        if tracker is not None:
            tracker.cancelling()
        logger.info("[🛑] Cancellation requested for %s", kind, extra={"scan_kind": kind})

    # --- scans ---

    async def run_zero_scan(
        self, channel_names: Optional[Iterable[str]] = None, *, dry_run: bool = False
    ) -> Tuple[ScanResult, List[str]]:
        gateway = self._gateway()
        names = [n for n in (channel_names or []) if n]
        if not names:
            names = self.config.target_channel_names()

        tracker = self.trackers["zero"]
        async with self._hold("zero") as token:
            tracker.begin(
                total_channels=len(names),
                message=None if names else "No target channels configured.",
            )
            t0 = perf_counter()
            try:
                result = await self._scanner(gateway).scan_zero_messages(
                    names, dry_run=dry_run, progress=tracker.progress(), token=token
                )
            except ScanCancelledError:
                tracker.cancel("Scan cancelled by user.")
                raise
            except Exception as e:
                tracker.fail(str(e))
                logger.warning("[⚠️] Zero-message scan failed: %s", e)
                raise

            snap = tracker.snapshot()
            tracker.complete(
                f"Scan complete. Found {len(result.members)} users.",
                processed_channels=snap["total_channels"],
                processed_members=snap["total_members"],
                total_messages=result.total_messages_scanned,
            )
            logger.info(
                "[✅] Zero-message scan finished: %d users",
                len(result.members),
                extra={
                    "scan_kind": "zero",
                    "took_ms": int((perf_counter() - t0) * 1000),
                },
            )
            return result, names

    async def run_inactive_scan(
        self, days: int = DEFAULT_INACTIVE_DAYS, extra_categories: Iterable[str] = ()
    ) -> ScanResult:
        if days < 1:
            raise ValueError("days must be a positive integer.")
        gateway = self._gateway()
        excluded = self.config.excluded_categories(extra_categories)

        tracker = self.trackers["inactive"]
        async with self._hold("inactive") as token:
            tracker.begin()
            t0 = perf_counter()
            try:
                result = await self._scanner(gateway).scan_inactive(
                    days, excluded, progress=tracker.progress(), token=token
                )
            except ScanCancelledError:
                tracker.cancel("Inactive scan cancelled by user.")
                raise
            except Exception as e:
                tracker.fail(str(e))
                logger.warning("[⚠️] Inactive scan failed: %s", e)
                raise

            processed = len(result.processed_channels)
            tracker.complete(
                f"Inactive scan complete. Found {len(result.members)} users.",
                processed_channels=processed,
                total_channels=result.total_channels,
                total_messages=result.total_messages_scanned,
            )
            logger.info(
                "[✅] Inactive scan finished: %d users",
                len(result.members),
                extra={
                    "scan_kind": "inactive",
                    "took_ms": int((perf_counter() - t0) * 1000),
                },
            )
            return result

    # --- cleanup jobs ---

    async def run_kick(
        self, filenames: Iterable[str], *, dry_run: bool = False
    ) -> List[KickFileResult]:
        guild = self._guild()
        async with self._hold("kick") as token:
            kicker = CsvKicker(
                guild,
                self.store,
                ignored_ids=load_ignored_user_ids(self.config.IGNORE_DIR),
                ratelimit=self.ratelimit,
                token=token,
            )
            return await kicker.run(filenames, dry_run=dry_run)

    async def run_role_cleanup(self, *, dry_run: bool = True) -> RoleCleanupResult:
        guild = self._guild()
        async with self._hold("roles"):
            return await RoleCleaner(guild, self.ratelimit).run(dry_run=dry_run)

    async def run_archive(
        self,
        *,
        days: int = DEFAULT_ARCHIVE_DAYS,
        dry_run: bool = True,
        channel_ids: Iterable[str] = (),
        action: str = "archive",
    ) -> ArchiveResult:
        guild = self._guild()
        async with self._hold("archive"):
            archiver = ChannelArchiver(
                guild,
                excluded_categories=self.config.excluded_categories(),
                ratelimit=self.ratelimit,
            )
            return await archiver.run(
                days=days, dry_run=dry_run, channel_ids=channel_ids, action=action
            )
