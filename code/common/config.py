# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import json
import os
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from common.constants import (
    BUILTIN_INACTIVE_CATEGORIES,
    DEFAULT_TARGET_CHANNELS,
    INACTIVE_PREVIEW_LIMIT,
    ZERO_PREVIEW_LIMIT,
)

logger = logging.getLogger("sweepcord.config")


def split_csv_list(raw: Optional[str]) -> List[str]:
    """Split a comma separated setting into trimmed, non-empty values."""
    return [tok.strip() for tok in str(raw or "").split(",") if tok.strip()]


class Config:
    def __init__(self, logger: Optional[logging.Logger] = None):

        def _str(key: str, env_default: Optional[str] = None) -> Optional[str]:
            v = os.getenv(key)
            if v is None or v.strip() == "":
                v = env_default
            return v

        def _int(key: str, env_default: str = "0") -> int:
            raw = _str(key, env_default)
            try:
                return int(str(raw).strip())
            except Exception:
                try:
                    return int(env_default)
                except Exception:
                    return 0

        def _bool(key: str, env_default: str = "false") -> bool:
            raw = (_str(key, env_default) or "").strip().lower()
            return raw in ("1", "true", "yes", "y", "on")

        # --- Discord session ---
        self.DISCORD_TOKEN = _str("DISCORD_TOKEN")
        self.GUILD_ID = _int("GUILD_ID", "0")

        # --- HTTP surface ---
        self.HTTP_HOST = _str("HTTP_HOST", "0.0.0.0") or "0.0.0.0"
        self.HTTP_PORT = _int("HTTP_PORT", "3001")

        # --- Storage ---
        self.DATA_DIR = Path(_str("DATA_DIR", "./data") or "./data")
        self.CSV_DIR = Path(_str("CSV_DIR", str(self.DATA_DIR / "csv")))
        self.IGNORE_DIR = Path(_str("IGNORE_DIR", str(self.DATA_DIR / "ignore")))
        self.CONFIG_DIR = Path(_str("CONFIG_DIR", str(self.DATA_DIR / "config")))

        # --- Scan behaviour ---
        self.INCLUDE_THREADS = _bool("INCLUDE_THREADS", "true")
        self.ZERO_PREVIEW_LIMIT = max(1, _int("ZERO_PREVIEW_LIMIT", str(ZERO_PREVIEW_LIMIT)))
        self.INACTIVE_PREVIEW_LIMIT = max(
            1, _int("INACTIVE_PREVIEW_LIMIT", str(INACTIVE_PREVIEW_LIMIT))
        )
        self.INACTIVE_EXCLUDED_CATEGORIES = split_csv_list(
            _str("INACTIVE_EXCLUDED_CATEGORIES", "")
        )

        # --- Users allowed to run slash commands ---
        self.COMMAND_USERS: List[int] = []
        for tok in split_csv_list(_str("COMMAND_USERS", "")):
            try:
                self.COMMAND_USERS.append(int(tok))
            except ValueError:
                pass

        # --- Logging / misc ---
        self.LOG_LEVEL = (_str("LOG_LEVEL", "INFO") or "INFO").upper()
        self.LOG_FORMAT = (_str("LOG_FORMAT", "HUMAN") or "HUMAN").upper()
        self.logger = (logger or logging.getLogger("sweepcord")).getChild(
            self.__class__.__name__
        )

        self._inactive_defaults: Optional[List[str]] = None

    @property
    def target_channels_file(self) -> Path:
        return self.CONFIG_DIR / "targetChannels.json"

    @property
    def inactive_categories_file(self) -> Path:
        return self.CONFIG_DIR / "inactiveCategories.json"

    @property
    def inactive_categories_local_file(self) -> Path:
        return self.CONFIG_DIR / "inactiveCategories.local.json"

    def _load_name_list(self, path: Path) -> Optional[List[str]]:
        """
        Read a JSON list of strings. Returns None when the file is missing,
        unreadable, or not a list of strings.
        """
        try:
            raw = json.loads(path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except Exception as e:
            self.logger.warning("[⚠️] Ignoring unreadable config file %s: %s", path, e)
            return None
        if not isinstance(raw, list) or not all(isinstance(v, str) for v in raw):
            self.logger.warning("[⚠️] Ignoring %s: expected a JSON list of strings", path)
            return None
        return [v.strip() for v in raw if v.strip()]

    def target_channel_names(self) -> List[str]:
        names = self._load_name_list(self.target_channels_file)
        if names is None:
            return list(DEFAULT_TARGET_CHANNELS)
        return names

    def inactive_category_defaults(self) -> List[str]:
        if self._inactive_defaults is None:
            for path in (
                self.inactive_categories_local_file,
                self.inactive_categories_file,
            ):
                names = self._load_name_list(path)
                if names is not None:
                    self._inactive_defaults = names
                    break
            else:
                self._inactive_defaults = list(BUILTIN_INACTIVE_CATEGORIES)
        return list(self._inactive_defaults)

    def clear_inactive_category_cache(self) -> None:
        self._inactive_defaults = None

    def excluded_categories(self, extra: Iterable[str] = ()) -> List[str]:
        """Defaults, then request extras, then the environment list."""
        extra_clean = [str(v).strip() for v in extra if str(v).strip()]
        return [
            *self.inactive_category_defaults(),
            *extra_clean,
            *self.INACTIVE_EXCLUDED_CATEGORIES,
        ]
