# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Union

from common.constants import CSV_HEADER

logger = logging.getLogger("sweepcord.csv")

PathLike = Union[str, Path]


class CsvFileError(Exception):
    """A CSV filename could not be resolved inside the store."""

    def __init__(self, message: str, *, missing: bool = False):
        super().__init__(message)
        self.missing = missing


def dated_csv_filename(prefix: str, when: Optional[datetime] = None) -> str:
    now = when or datetime.now()
    return f"{prefix}-{now.strftime('%Y%m%d')}-{now.strftime('%H%M%S')}.csv"


def read_csv_rows(path: PathLike) -> List[Dict[str, str]]:
    """
    Parse a header-first CSV into dicts keyed by the header. Blank lines are
    skipped and every value is trimmed; short rows are padded with "".
    """
    with open(path, "r", encoding="utf-8", newline="") as f:
        records = [r for r in csv.reader(f) if any(v.strip() for v in r)]
    if not records:
        return []

    headers = [h.strip() for h in records[0]]
    rows: List[Dict[str, str]] = []
    for values in records[1:]:
        row = {}
        for i, header in enumerate(headers):
            row[header] = values[i].strip() if i < len(values) else ""
        rows.append(row)
    return rows


def load_ignored_user_ids(directory: PathLike) -> Set[str]:
    """Union of the `User ID` column of every CSV in the ignore directory."""
    ignored: Set[str] = set()
    root = Path(directory)
    if not root.is_dir():
        return ignored

    for path in sorted(root.glob("*.csv")):
        if not path.is_file():
            continue
        try:
            for row in read_csv_rows(path):
                uid = (row.get("User ID") or "").strip()
                if uid:
                    ignored.add(uid)
        except Exception as e:
            logger.warning("[⚠️] Skipping unreadable ignore file %s: %s", path.name, e)
    return ignored


class CsvStore:
    """Dated member CSVs in a single directory."""

    def __init__(self, directory: PathLike):
        self.directory = Path(directory).resolve()

    def _ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def write_members(
        self, prefix: str, rows: Iterable[Sequence[str]], *, when: Optional[datetime] = None
    ) -> Path:
        self._ensure_dir()
        path = self.directory / dated_csv_filename(prefix, when)
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
            writer.writerow(CSV_HEADER)
            for row in rows:
                writer.writerow([str(v) for v in row])
        logger.debug("[csv] wrote %s", path)
        return path

    def list_files(self) -> List[dict]:
        self._ensure_dir()
        out = []
        for path in self.directory.iterdir():
            if not path.is_file() or not path.name.endswith(".csv"):
                continue
            st = path.stat()
            out.append(
                {
                    "filename": path.name,
                    "size": st.st_size,
                    "modified_at": datetime.fromtimestamp(
                        st.st_mtime, tz=timezone.utc
                    ).isoformat(),
                    "row_count": self.count_rows(path),
                }
            )
        out.sort(key=lambda item: item["modified_at"], reverse=True)
        return out

    @staticmethod
    def count_rows(path: PathLike) -> int:
        return len(read_csv_rows(path))

    def resolve(self, filename: str) -> Path:
        """
        Map a user-supplied filename to a file inside the store. Accepts a bare
        name, `csv/<name>`, or an absolute path that lives in the directory.
        """
        self._ensure_dir()
        raw = (filename or "").strip()
        if not raw:
            raise CsvFileError("Invalid CSV filename.")

        candidate = Path(raw)
        if not candidate.is_absolute():
            rel = raw.replace("\\", "/").lstrip("/")
            if rel.startswith("csv/"):
                rel = rel[len("csv/"):]
            candidate = self.directory / rel

        resolved = candidate.resolve()
        if resolved != self.directory and self.directory not in resolved.parents:
            raise CsvFileError("Invalid CSV filename.")
        if not resolved.is_file():
            raise CsvFileError(f"CSV file not found: {filename}", missing=True)
        return resolved

    def read_rows(self, filename: str) -> List[Dict[str, str]]:
        return read_csv_rows(self.resolve(filename))
