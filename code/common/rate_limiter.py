# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

import asyncio, time
from enum import Enum
from typing import Tuple, Dict, Optional


class ActionType(Enum):
    KICK = "kick"
    ROLE_DELETE = "role_delete"
    CHANNEL_EDIT = "channel_edit"
    CHANNEL_DELETE = "channel_delete"


class RateLimiter:
    def __init__(self, max_rate: int, time_window: float):
        self._max_rate = max_rate
        self._time_window = time_window
        self._allowance = float(max_rate)
        self._last_check = time.monotonic()
        self._lock = asyncio.Lock()
        self._cooldown_until = 0.0

    async def acquire(self):
        async with self._lock:
            now = time.monotonic()

            # Respect adaptive cooldowns
            if now < self._cooldown_until:
                await asyncio.sleep(self._cooldown_until - now)
                now = time.monotonic()

            elapsed = now - self._last_check
            self._last_check = now

            # Refill tokens
            self._allowance = min(
                self._max_rate,
                self._allowance + elapsed * (self._max_rate / self._time_window),
            )

            if self._allowance < 1.0:
                wait = (1.0 - self._allowance) * (self._time_window / self._max_rate)
                if wait > 0:
                    await asyncio.sleep(wait)
                self._last_check = time.monotonic()
                self._allowance = 0.0
            else:
                self._allowance -= 1.0

    def backoff(self, seconds: float):
        now = time.monotonic()
        candidate_end = now + max(0.0, seconds)
        if candidate_end > self._cooldown_until:
            self._cooldown_until = candidate_end


class RateLimitManager:
    def __init__(self, config: Dict[ActionType, Tuple[int, float]] = None):
        cfg = config or {
            ActionType.KICK: (1, 1.0),
            ActionType.ROLE_DELETE: (2, 5.0),
            ActionType.CHANNEL_EDIT: (3, 15.0),
            ActionType.CHANNEL_DELETE: (3, 15.0),
        }
        self._limiters: Dict[ActionType, RateLimiter] = {
            a: RateLimiter(*cfg[a]) for a in cfg
        }

    def _get(self, action: ActionType) -> Optional[RateLimiter]:
        return self._limiters.get(action)

    async def acquire(self, action: ActionType):
        lim = self._get(action)
        if lim:
            await lim.acquire()

    def penalize(self, action: ActionType, seconds: float):
        lim = self._get(action)
        if lim:
            lim.backoff(seconds)

    def penalize_from(self, action: ActionType, exc: BaseException) -> bool:
        """
        Apply a cooldown when `exc` is an HTTP 429. Returns True if a penalty
        was applied.
        """
        if getattr(exc, "status", None) != 429:
            return False
        retry_after = getattr(exc, "retry_after", None)
        try:
            seconds = float(retry_after) if retry_after is not None else 5.0
        except (TypeError, ValueError):
            seconds = 5.0
        self.penalize(action, seconds)
        return True

