# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================


from __future__ import annotations
import logging, discord
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional
from discord.errors import HTTPException

from common.constants import ROLE_DELETE_REASON, ROLE_PREVIEW_LIMIT
from common.rate_limiter import ActionType, RateLimitManager

logger = logging.getLogger("sweepcord.cleanup.roles")


@dataclass
class RoleCleanupResult:
    guild_name: str
    dry_run: bool
    total_roles: int = 0
    deletable_role_count: int = 0
    deleted_role_count: int = 0
    preview_names: List[str] = field(default_factory=list)
    more_count: int = 0
    failures: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def message(self) -> str:
        if self.deletable_role_count == 0:
            return "No empty roles found."
        if self.dry_run:
            return f"Found {self.deletable_role_count} empty role(s) ready for deletion."
        return f"Deleted {self.deleted_role_count} empty role(s)."


class RoleCleaner:
    def __init__(self, guild: discord.Guild, ratelimit: Optional[RateLimitManager] = None):
        self.guild = guild
        self.ratelimit = ratelimit or RateLimitManager()

    async def member_counts(self) -> Dict[int, int]:
        """Role id -> member count, from a full member listing."""
        counts: Counter = Counter()
        async for member in self.guild.fetch_members(limit=None):
            for role in member.roles:
                counts[role.id] += 1
        return dict(counts)

    @staticmethod
    def deletable(role: discord.Role, counts: Dict[int, int]) -> bool:
        if role.is_default() or role.managed:
            return False
        return counts.get(role.id, 0) == 0

    async def run(self, *, dry_run: bool = True) -> RoleCleanupResult:
        counts = await self.member_counts()
        roles = await self.guild.fetch_roles()
        empty = sorted(
            (r for r in roles if self.deletable(r, counts)), key=lambda r: r.name
        )
        preview = [r.name for r in empty[:ROLE_PREVIEW_LIMIT]]
        result = RoleCleanupResult(
            guild_name=self.guild.name,
            dry_run=dry_run,
            total_roles=len(roles),
            deletable_role_count=len(empty),
            preview_names=preview,
            more_count=max(len(empty) - len(preview), 0),
        )
        if dry_run:
            logger.info("[🧩] %d empty role(s) found (dry run)", len(empty))
            return result

        for role in empty:
            try:
                await self.ratelimit.acquire(ActionType.ROLE_DELETE)
                await role.delete(reason=ROLE_DELETE_REASON)
                result.deleted_role_count += 1
                logger.info("[🧩] Deleted role %s (%d)", role.name, role.id)
            except HTTPException as e:
                self.ratelimit.penalize_from(ActionType.ROLE_DELETE, e)
                result.failures.append(f"{role.name}: {e}")
                logger.warning("[⚠️] Failed deleting role %s (%d): %s", role.name, role.id, e)
        return result
