# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations


class ScanCancelledError(Exception):
    def __init__(self, message: str = "Scan cancelled by user."):
        super().__init__(message)


class CancellationToken:
    """
    Cooperative cancellation flag shared between a running job and whoever
    may stop it. Workers poll it at every suspension point and raise
    ScanCancelledError; nothing is ever interrupted preemptively.
    """

    def __init__(self, message: str = "Scan cancelled by user."):
        self._cancelled = False
        self.message = message

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ScanCancelledError(self.message)
