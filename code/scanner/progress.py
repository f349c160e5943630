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
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("sweepcord.scanner.progress")


class ScanProgress:
    """
    Callback surface the engine reports through. The default does nothing;
    ScanStatusTracker.progress() returns one wired to a tracker.
    """

    def on_channel_start(self, name: str, index: int, total: int) -> None:
        pass

    def on_channel_complete(self, name: str, index: int, total: int) -> None:
        pass

    def on_member_progress(self, processed: int, total: int) -> None:
        pass

    def on_messages(self, total_messages: int) -> None:
        pass


class ScanPhase(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    SCANNING = "scanning"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


StatusListener = Callable[[str, Dict[str, Any]], None]


class ScanStatusTracker:
    """
    Status slot for one scan kind. All writes go through the transition
    methods below; every write notifies listeners with a fresh snapshot.
    """

    def __init__(self, kind: str, *, label: str = "scan"):
        self.kind = kind
        self.label = label
        self._listeners: List[StatusListener] = []
        self._state: Dict[str, Any] = {}
        self._reset()

    def _reset(self) -> None:
        self._state = {
            "phase": ScanPhase.IDLE.value,
            "in_progress": False,
            "current_channel": None,
            "current_index": 0,
            "total_channels": 0,
            "processed_channels": 0,
            "processed_members": 0,
            "total_members": 0,
            "total_messages": 0,
            "started_at": None,
            "finished_at": None,
            "last_message": None,
            "error_message": None,
        }

    # --- listeners ---

    def add_listener(self, cb: StatusListener) -> None:
        self._listeners.append(cb)

    def remove_listener(self, cb: StatusListener) -> None:
        if cb in self._listeners:
            self._listeners.remove(cb)

    def _update(self, **changes: Any) -> None:
        self._state.update(changes)
        snap = self.snapshot()
        for cb in list(self._listeners):
            try:
                cb(self.kind, snap)
            except Exception:
                logger.exception("[⚠️] status listener failed for %s", self.kind)

    # --- reads ---

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._state)

    @property
    def phase(self) -> ScanPhase:
        return ScanPhase(self._state["phase"])

    @property
    def in_progress(self) -> bool:
        return bool(self._state["in_progress"])

    # --- transitions ---

    def begin(self, *, total_channels: int = 0, message: Optional[str] = None) -> None:
        self._reset()
        self._update(
            phase=ScanPhase.PREPARING.value,
            in_progress=True,
            total_channels=total_channels,
            started_at=_now_iso(),
            last_message=message or f"Preparing {self.label}…",
        )

    def channel_started(self, name: str, index: int, total: int) -> None:
        self._update(
            phase=ScanPhase.SCANNING.value,
            current_channel=name,
            current_index=index,
            total_channels=total,
            processed_channels=max(index - 1, 0),
            last_message=f"Scanning #{name}",
        )

    def channel_completed(self, name: str, index: int, total: int) -> None:
        # Clamp rather than increment; start/complete events for adjacent
        # channels can interleave.
        self._update(processed_channels=min(index, total))

    def members_progressed(self, processed: int, total: int) -> None:
        self._update(processed_members=processed, total_members=total)

    def messages_counted(self, total_messages: int) -> None:
        self._update(total_messages=total_messages)

    def cancelling(self) -> None:
        self._update(last_message=f"Cancelling {self.label}…", error_message=None)

    def complete(self, message: str, **counters: Any) -> None:
        self._update(
            phase=ScanPhase.COMPLETED.value,
            in_progress=False,
            current_channel=None,
            current_index=0,
            finished_at=_now_iso(),
            last_message=message,
            error_message=None,
            **counters,
        )

    def cancel(self, message: str) -> None:
        self._update(
            phase=ScanPhase.CANCELLED.value,
            in_progress=False,
            current_channel=None,
            current_index=0,
            finished_at=_now_iso(),
            last_message=message,
            error_message=None,
        )

    def fail(self, error: str) -> None:
        self._update(
            phase=ScanPhase.FAILED.value,
            in_progress=False,
            current_channel=None,
            current_index=0,
            total_channels=0,
            processed_channels=0,
            processed_members=0,
            total_members=0,
            total_messages=0,
            finished_at=_now_iso(),
            last_message=f"{self.label[:1].upper()}{self.label[1:]} failed.",
            error_message=error,
        )

    def progress(self) -> ScanProgress:
        return _TrackerProgress(self)


class _TrackerProgress(ScanProgress):
    def __init__(self, tracker: ScanStatusTracker):
        self.tracker = tracker

    def on_channel_start(self, name: str, index: int, total: int) -> None:
        self.tracker.channel_started(name, index, total)

    def on_channel_complete(self, name: str, index: int, total: int) -> None:
        self.tracker.channel_completed(name, index, total)

    def on_member_progress(self, processed: int, total: int) -> None:
        self.tracker.members_progressed(processed, total)

    def on_messages(self, total_messages: int) -> None:
        self.tracker.messages_counted(total_messages)
