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
from typing import List, Sequence

from common.csv_store import CsvStore
from scanner.models import MemberRecord, ScanResult
from scanner.reducer import ScanSession

logger = logging.getLogger("sweepcord.scanner.results")


def build_skipped_preview(skipped: Sequence[object], limit: int) -> str:
    if not skipped:
        return ""
    shown = ", ".join(str(s) for s in skipped[:limit])
    if len(skipped) > limit:
        shown += f", +{len(skipped) - limit} more"
    return shown


def surviving_members(session: ScanSession) -> List[MemberRecord]:
    """Members still in the working set, sorted by formatted name."""
    out = [session.members[mid] for mid in session.working if mid in session.members]
    out.sort(key=lambda m: (m.formatted_name, m.id))
    return out


class ResultAssembler:
    def __init__(self, store: CsvStore, *, preview_limit: int, skipped_limit: int):
        self.store = store
        self.preview_limit = preview_limit
        self.skipped_limit = skipped_limit

    def finalize(self, session: ScanSession) -> ScanResult:
        session.token.raise_if_cancelled()
        members = surviving_members(session)
        return self._build(session, members)

    def empty(self, session: ScanSession, *, dry_run: bool = False) -> ScanResult:
        """Header-only CSV, used for dry runs and guilds with nobody to check."""
        return self._build(session, [], dry_run=dry_run)

    def _build(
        self, session: ScanSession, members: List[MemberRecord], *, dry_run: bool = False
    ) -> ScanResult:
        path = self.store.write_members(
            session.csv_prefix, [(str(m.id), m.formatted_name) for m in members]
        )
        preview = [m.formatted_name for m in members[: self.preview_limit]]
        logger.info(
            "[📄] %s scan wrote %d members to %s", session.kind.value, len(members), path.name
        )
        return ScanResult(
            kind=session.kind,
            guild_name=session.guild_name,
            total_members_checked=session.working.seed_size,
            total_messages_scanned=session.total_messages,
            members=members,
            processed_channels=list(session.processed),
            skipped_channels=[str(s) for s in session.skipped],
            csv_path=path,
            preview_names=preview,
            more_count=max(len(members) - len(preview), 0),
            skipped_preview=build_skipped_preview(session.skipped, self.skipped_limit),
            total_channels=session.total_channels,
            cutoff=session.cutoff,
            dry_run=dry_run,
        )
