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
import os
import sys as _sys
import json as _json
import contextvars
from datetime import datetime, timezone
from typing import Optional

from common.constants import REDACT_KEYS

REDACTED = "***REDACTED***"

req_id_var = contextvars.ContextVar("req_id", default="-")
route_var = contextvars.ContextVar("route", default="-")
client_var = contextvars.ContextVar("client", default="-")

# Extras rendered after the message when present on a record.
EXTRA_KEYS = ("scan_kind", "channel_id", "guild_id", "status", "took_ms")


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _secrets():
    for k in REDACT_KEYS:
        v = os.getenv(k)
        if v:
            yield v


def _redact_value(val):
    try:
        s = str(val)
        for secret in _secrets():
            if secret in s:
                s = s.replace(secret, REDACTED)
        return s
    except Exception:
        return "<unprintable>"


def _redact_arg(v):
    if isinstance(v, dict):
        return {
            k: (REDACTED if str(k) in REDACT_KEYS and val else _redact_arg(val))
            for k, val in v.items()
        }
    if isinstance(v, str):
        return _redact_value(v)
    return v


class RedactFilter(logging.Filter):
    """Injects request context and redacts the bot token from args/msg."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.req_id = req_id_var.get()
        record.scope = route_var.get()
        record.client = client_var.get()

        if isinstance(record.args, dict):
            record.args = _redact_arg(record.args)
        elif isinstance(record.args, (tuple, list)):
            redacted = [_redact_arg(a) for a in record.args]
            record.args = tuple(redacted) if isinstance(record.args, tuple) else redacted

        if isinstance(record.msg, str):
            record.msg = _redact_value(record.msg)
        return True


LEVEL_MARK = {
    logging.DEBUG: "🧩",
    logging.INFO: "✅",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "💥",
}


def _extras(record: logging.LogRecord) -> dict:
    out = {}
    for k in EXTRA_KEYS:
        v = getattr(record, k, None)
        if v not in (None, "", []):
            out[k] = v
    return out


class HumanFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        mark = LEVEL_MARK.get(record.levelno, "•")
        scope = getattr(record, "scope", "-")
        rid = getattr(record, "req_id", "-")
        cli = getattr(record, "client", "-")
        msg = super().format(record)
        extras = " ".join(f"{k}={v}" for k, v in _extras(record).items())
        extras_s = f" | {extras}" if extras else ""
        return f"{_now_iso()} {mark} {record.levelname:<8} [{scope}] (rid={rid} cli={cli}) {msg}{extras_s}"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "time": _now_iso(),
            "lvl": record.levelname,
            "msg": super().format(record),
            "scope": getattr(record, "scope", "-"),
            "req_id": getattr(record, "req_id", "-"),
            "client": getattr(record, "client", "-"),
            "logger": record.name,
        }
        base.update(_extras(record))
        return _json.dumps(base, separators=(",", ":"), default=str)


class ContextAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        for k, v in self.extra.items():
            extra.setdefault(k, v)
        return msg, kwargs


def get_logger(name="sweepcord", **ctx):
    logger = logging.getLogger(name)
    return ContextAdapter(logger, dict(ctx))


def configure_app_logging(level: Optional[str] = None, fmt: Optional[str] = None):
    """
    Unified logging config for the `sweepcord` hierarchy:
    - LOG_FORMAT: HUMAN (default) or JSON
    - LOG_LEVEL: DEBUG/INFO/etc.
    - redaction + request context
    - reuses uvicorn.error handlers when present
    """
    fmt = (fmt or os.getenv("LOG_FORMAT", "HUMAN")).strip().upper()
    lvl = (level or os.getenv("LOG_LEVEL", "INFO")).strip().upper()

    root = logging.getLogger("sweepcord")
    uvicorn_err = logging.getLogger("uvicorn.error")

    def _apply(h: logging.Handler):
        if fmt == "JSON":
            h.setFormatter(JSONFormatter("%(message)s"))
        else:
            h.setFormatter(HumanFormatter("%(message)s"))
        if not any(isinstance(f, RedactFilter) for f in h.filters):
            h.addFilter(RedactFilter())

    if uvicorn_err.handlers:
        root.handlers = uvicorn_err.handlers[:]
        for h in root.handlers:
            _apply(h)
    else:
        root.handlers.clear()
        h = logging.StreamHandler(stream=_sys.stdout)
        _apply(h)
        root.addHandler(h)

    root.propagate = False
    root.setLevel(getattr(logging, lvl, logging.INFO))

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "discord", "discord.gateway"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(
        logging.WARNING if root.level > logging.DEBUG else logging.DEBUG
    )
    return get_logger("sweepcord")
