# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

"""Shared constants used across Sweepcord services."""

CURRENT_VERSION = "v1.2.0"

DEFAULT_TARGET_CHANNELS = [
    "in-between",
    "general",
    "ccp-discussion",
    "legit-and-price-check",
]

ARCHIVE_CATEGORY_NAME = "🗄️ Archived"

# Archived channels are never part of an inactivity scan.
BUILTIN_INACTIVE_CATEGORIES = [ARCHIVE_CATEGORY_NAME]

CSV_HEADER = ["User ID", "Username"]

ZERO_SCAN_PREFIX = "users"

ZERO_PREVIEW_LIMIT = 20
ZERO_SKIPPED_PREVIEW_LIMIT = 5
INACTIVE_PREVIEW_LIMIT = 50
INACTIVE_SKIPPED_PREVIEW_LIMIT = 10
ROLE_PREVIEW_LIMIT = 10

HISTORY_PAGE_SIZE = 100

DEFAULT_INACTIVE_DAYS = 30
DEFAULT_ARCHIVE_DAYS = 90

CONFIRM_TIMEOUT_SECONDS = 30.0

KICK_REASON = "Kicked due to inactivity"
ROLE_DELETE_REASON = "Sweepcord: remove empty role"
ARCHIVE_REASON = "Sweepcord: archive inactive channels"
CHANNEL_DELETE_REASON = "Sweepcord: delete inactive channel"

REDACT_KEYS = {"DISCORD_TOKEN"}

# Attachments above this are linked by filename instead of uploaded.
DISCORD_FILE_LIMIT = 8 * 1024 * 1024
