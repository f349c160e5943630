# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class ChannelKind(Enum):
    TEXT = "text"
    ANNOUNCEMENT = "announcement"
    FORUM = "forum"
    CATEGORY = "category"
    THREAD = "thread"
    VOICE = "voice"
    OTHER = "other"

    @property
    def supports_history(self) -> bool:
        return self in (
            ChannelKind.TEXT,
            ChannelKind.ANNOUNCEMENT,
            ChannelKind.THREAD,
            ChannelKind.VOICE,
        )

    @property
    def supports_threads(self) -> bool:
        return self in (ChannelKind.TEXT, ChannelKind.ANNOUNCEMENT, ChannelKind.FORUM)


class ScanKind(Enum):
    ZERO_MESSAGE = "zero"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class ChannelTarget:
    id: int
    name: str
    kind: ChannelKind
    # Nearest category: the parent, or the grandparent for threads.
    category_name: Optional[str] = None
    readable: bool = True


@dataclass(frozen=True)
class MemberRecord:
    id: int
    name: str
    display_name: str
    bot: bool = False
    discriminator: Optional[str] = None
    joined_at: Optional[datetime] = None

    @property
    def tag(self) -> str:
        if self.discriminator and self.discriminator not in ("0", "0000"):
            return f"{self.name}#{self.discriminator}"
        return self.name

    @property
    def formatted_name(self) -> str:
        if self.display_name and self.display_name != self.tag:
            return f"{self.display_name} ({self.tag})"
        return self.tag


@dataclass(frozen=True)
class MessageRecord:
    id: int
    author_id: int
    created_at: datetime
    author_bot: bool = False


@dataclass
class ScanResult:
    kind: ScanKind
    guild_name: str
    total_members_checked: int
    total_messages_scanned: int
    members: List[MemberRecord]
    processed_channels: List[str]
    skipped_channels: List[str]
    csv_path: Path
    preview_names: List[str]
    more_count: int
    skipped_preview: str
    total_channels: int = 0
    cutoff: Optional[datetime] = None
    dry_run: bool = False

    def to_response(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "guild_name": self.guild_name,
            "csv_path": str(self.csv_path),
            "csv_filename": self.csv_path.name,
            "member_count": len(self.members),
            "total_members_checked": self.total_members_checked,
            "total_messages_scanned": self.total_messages_scanned,
            "processed_channels": list(self.processed_channels),
            "skipped_channels": list(self.skipped_channels),
            "preview_names": list(self.preview_names),
            "more_count": self.more_count,
            "skipped_preview": self.skipped_preview,
            "total_channels": self.total_channels,
        }
        if self.cutoff is not None:
            out["cutoff_iso"] = self.cutoff.isoformat()
        return out


@dataclass
class WalkStats:
    total_messages: int = 0
    pages: int = 0
    reached_cutoff: bool = False
    converged: bool = False


@dataclass
class SkippedChannel:
    name: str
    reason: str

    def __str__(self) -> str:
        return f"{self.name} ({self.reason})"
