# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from scanner.cancellation import CancellationToken
from scanner.models import MemberRecord, ScanKind, SkippedChannel


class WorkingSet:
    """
    Member ids not yet seen as active. Only ever shrinks.
    """

    def __init__(self, ids: Iterable[int] = ()):
        self._ids = set(ids)
        self.seed_size = len(self._ids)

    def discard(self, member_id: int) -> bool:
        """Remove `member_id`; returns True only the first time it is removed."""
        if member_id in self._ids:
            self._ids.remove(member_id)
            return True
        return False

    @property
    def removed(self) -> int:
        return self.seed_size - len(self._ids)

    def is_empty(self) -> bool:
        return not self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, member_id: object) -> bool:
        return member_id in self._ids

    def __iter__(self) -> Iterator[int]:
        return iter(self._ids)


@dataclass
class ScanSession:
    kind: ScanKind
    guild_name: str
    members: Dict[int, MemberRecord]
    working: WorkingSet
    token: CancellationToken
    csv_prefix: str
    cutoff: Optional[datetime] = None
    total_channels: int = 0
    total_messages: int = 0
    processed: List[str] = field(default_factory=list)
    skipped: List[SkippedChannel] = field(default_factory=list)
    on_removed: Optional[Callable[[int, int], None]] = None

    def observe(self, author_id: int) -> None:
        if self.working.discard(author_id) and self.on_removed is not None:
            self.on_removed(self.working.removed, self.working.seed_size)

    def converged(self) -> bool:
        return self.working.is_empty()

    def skip(self, name: str, reason: str) -> None:
        self.skipped.append(SkippedChannel(name, reason))
