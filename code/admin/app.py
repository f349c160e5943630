# =============================================================================
#  Sweepcord
#  Copyright (C) 2025 github.com/Sweepcord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations
import asyncio
import json
import re
import uuid
from contextlib import suppress
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, List, Optional, Set

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.base import BaseHTTPMiddleware

from admin.logging_setup import (
    client_var,
    configure_app_logging,
    get_logger,
    req_id_var,
    route_var,
)
from cleanup.kick import KickPermissionError
from common.config import Config, split_csv_list
from common.constants import (
    CURRENT_VERSION,
    DEFAULT_ARCHIVE_DAYS,
    DEFAULT_INACTIVE_DAYS,
)
from common.csv_store import CsvFileError
from scanner.cancellation import ScanCancelledError
from scanner.channels import ChannelResolutionError
from scanner.gateway import BotNotReadyError
from scanner.service import ScanConflictError, ScanService
from server.bot import SweepBot

APP_TITLE = "Sweepcord"
BASE_DIR = Path(__file__).parent
STATUS_KINDS = ("zero", "inactive")

LOGGER = get_logger("sweepcord.api")
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


class BadRequest(ValueError):
    pass


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


def error_response(exc: Exception) -> JSONResponse:
    """Map a service-layer exception to the API's error body and status."""
    if isinstance(exc, BotNotReadyError):
        return _error(str(exc), 503)
    if isinstance(exc, ScanConflictError):
        return _error(str(exc), 409)
    if isinstance(exc, ScanCancelledError):
        return _error(str(exc), 499)
    if isinstance(exc, CsvFileError):
        return _error(str(exc), 404 if exc.missing else 400)
    if isinstance(exc, (ChannelResolutionError, KickPermissionError)):
        return _error(str(exc), 500)
    if isinstance(exc, ValueError):
        return _error(str(exc), 400)
    LOGGER.exception("Unhandled error: %s", exc)
    return _error(str(exc) or exc.__class__.__name__, 500)


async def _json_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        raise BadRequest("Request body must be JSON.")
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object.")
    return data


def parse_name_list(raw: Any, *, split_newlines: bool = False) -> List[str]:
    """Accept a JSON list of strings or a comma separated string."""
    if not raw:
        return []
    if isinstance(raw, list):
        return [v.strip() for v in raw if isinstance(v, str) and v.strip()]
    if isinstance(raw, str):
        if split_newlines:
            return [v.strip() for v in re.split(r"[,\n]", raw) if v.strip()]
        return split_csv_list(raw)
    return []


def parse_days(raw: Any, default: int) -> int:
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise BadRequest("days must be a positive integer.")
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if isinstance(raw, str) and raw.strip().isdigit():
        raw = int(raw.strip())
    if not isinstance(raw, int) or raw < 1:
        raise BadRequest("days must be a positive integer.")
    return raw


def parse_flag(raw: Any, default: bool) -> bool:
    if raw is None:
        return default
    return raw is True if default is False else raw is not False


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        token_r = req_id_var.set(rid)
        token_s = route_var.set(request.url.path or "-")
        token_c = client_var.set(
            f"{getattr(request.client, 'host', '?')}:{getattr(request.client, 'port', '?')}"
        )
        t0 = perf_counter()
        response = None
        try:
            response = await call_next(request)
        finally:
            if response is not None:
                response.headers["X-Request-ID"] = rid
                if request.url.path.startswith("/api/"):
                    LOGGER.debug(
                        "%s %s",
                        request.method,
                        request.url.path,
                        extra={
                            "status": response.status_code,
                            "took_ms": int((perf_counter() - t0) * 1000),
                        },
                    )
            req_id_var.reset(token_r)
            route_var.reset(token_s)
            client_var.reset(token_c)
        return response


class StatusHub:
    """Fans scan status snapshots out to connected dashboard sockets."""

    def __init__(self):
        self.ui_sockets: Set[WebSocket] = set()
        self.lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    async def add(self, ws: WebSocket):
        async with self.lock:
            self.ui_sockets.add(ws)

    async def remove(self, ws: WebSocket):
        async with self.lock:
            self.ui_sockets.discard(ws)

    @staticmethod
    def message(kind: str, status: dict) -> str:
        return json.dumps({"kind": kind, "status": status}, separators=(",", ":"))

    async def publish(self, kind: str, status: dict):
        text = self.message(kind, status)
        dead = []
        async with self.lock:
            for ws in list(self.ui_sockets):
                try:
                    await ws.send_text(text)
                except Exception:
                    dead.append(ws)
            for ws in dead:
                with suppress(Exception):
                    await ws.close()
                self.ui_sockets.discard(ws)
        if dead:
            LOGGER.debug(
                "StatusHub.publish | cleaned_dead=%d remaining=%d",
                len(dead),
                len(self.ui_sockets),
            )

    def listener(self, kind: str, status: dict) -> None:
        """Tracker callback; schedules a publish on the running loop."""
        if not self.ui_sockets:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.publish(kind, status))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def create_app(
    config: Optional[Config] = None,
    service: Optional[ScanService] = None,
    *,
    start_bot: bool = True,
) -> FastAPI:
    config = config or Config()
    service = service or ScanService(config)
    hub = StatusHub()
    for tracker in service.trackers.values():
        tracker.add_listener(hub.listener)

    app = FastAPI(title=APP_TITLE)
    app.add_middleware(RequestContextMiddleware)
    app.state.config = config
    app.state.service = service
    app.state.hub = hub
    app.state.bot_task = None

    @app.on_event("startup")
    async def _startup():
        configure_app_logging(config.LOG_LEVEL, config.LOG_FORMAT)
        LOGGER.info("[✨] %s %s starting", APP_TITLE, CURRENT_VERSION)
        if not start_bot:
            return
        if not config.DISCORD_TOKEN:
            LOGGER.warning("[⚠️] DISCORD_TOKEN is not set; the Discord bot will not start.")
            return

        bot = SweepBot(config)
        bot.service = service
        service.bot = bot

        async def _run_bot():
            try:
                await bot.start()
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("[❌] Discord bot stopped unexpectedly")

        app.state.bot_task = asyncio.create_task(_run_bot(), name="discord-bot")

    @app.on_event("shutdown")
    async def _shutdown():
        LOGGER.info("Shutdown initiated")
        bot = service.bot
        if bot is not None:
            with suppress(Exception):
                await bot.close()
        task = app.state.bot_task
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await task
        for ws in list(hub.ui_sockets):
            with suppress(Exception):
                await ws.close()
        hub.ui_sockets.clear()
        LOGGER.info("Shutdown complete")

    # --- pages / meta ---

    @app.get("/")
    async def index(request: Request):
        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "title": APP_TITLE,
                "version": CURRENT_VERSION,
                "default_channels": config.target_channel_names(),
                "inactive_defaults": config.inactive_category_defaults(),
                "inactive_days": DEFAULT_INACTIVE_DAYS,
                "archive_days": DEFAULT_ARCHIVE_DAYS,
            },
        )

    @app.get("/health")
    async def health():
        return {"status": "ok", "discord_ready": service.ready, "version": CURRENT_VERSION}

    @app.get("/api/default-channels")
    async def default_channels():
        return {"ok": True, "channels": config.target_channel_names()}

    @app.get("/api/inactive-defaults")
    async def inactive_defaults():
        return {
            "ok": True,
            "days": DEFAULT_INACTIVE_DAYS,
            "categories": config.inactive_category_defaults(),
            "env_categories": list(config.INACTIVE_EXCLUDED_CATEGORIES),
        }

    @app.get("/api/scan-status")
    async def scan_status():
        return service.status("zero")

    @app.get("/api/inactive-status")
    async def inactive_status():
        return service.status("inactive")

    @app.get("/api/csv-files")
    async def csv_files():
        try:
            files = service.store.list_files()
        except OSError as e:
            return error_response(e)
        return {"ok": True, "files": files}

    # --- scans ---

    @app.post("/api/zero-messages")
    async def zero_messages(request: Request):
        try:
            body = await _json_body(request)
            names = parse_name_list(body.get("channel_names"), split_newlines=True)
            dry_run = parse_flag(body.get("dry_run"), False)
            result, used = await service.run_zero_scan(names, dry_run=dry_run)
        except Exception as e:
            return error_response(e)

        count = len(result.members)
        data = result.to_response()
        data["zero_message_count"] = count
        message = (
            "Dry run complete. Empty CSV generated."
            if dry_run
            else f"Scan complete. Found {count} users with zero messages."
        )
        return {"ok": True, "message": message, "channels": used, "data": data}

    @app.post("/api/inactive-scan")
    async def inactive_scan(request: Request):
        try:
            body = await _json_body(request)
            days = parse_days(body.get("days"), DEFAULT_INACTIVE_DAYS)
            extra = parse_name_list(body.get("excluded_categories"))
            result = await service.run_inactive_scan(days, extra)
        except Exception as e:
            return error_response(e)

        count = len(result.members)
        data = result.to_response()
        data["inactive_count"] = count
        return {
            "ok": True,
            "message": f"Inactive scan complete. Found {count} inactive users.",
            "data": data,
        }

    def _cancel(kind: str):
        try:
            service.cancel(kind)
        except Exception as e:
            return error_response(e)
        return {"ok": True, "message": "Cancellation requested."}

    @app.post("/api/cancel-scan")
    async def cancel_scan():
        return _cancel("zero")

    @app.post("/api/cancel-inactive")
    async def cancel_inactive():
        return _cancel("inactive")

    @app.post("/api/cancel-kick")
    async def cancel_kick():
        return _cancel("kick")

    # --- cleanup ---

    @app.post("/api/kick-from-csv")
    async def kick_from_csv(request: Request):
        try:
            body = await _json_body(request)
            filenames = parse_name_list(body.get("filenames"))
            if not filenames:
                raise BadRequest("Provide at least one CSV filename.")
            dry_run = parse_flag(body.get("dry_run"), False)
            results = await service.run_kick(filenames, dry_run=dry_run)
        except Exception as e:
            return error_response(e)

        message = (
            f"Dry run complete. {len(results)} file(s) processed."
            if dry_run
            else f"Kick job finished for {len(results)} file(s)."
        )
        return {"ok": True, "message": message, "results": [r.to_dict() for r in results]}

    @app.post("/api/cleanup-roles")
    async def cleanup_roles(request: Request):
        try:
            body = await _json_body(request)
            result = await service.run_role_cleanup(
                dry_run=parse_flag(body.get("dry_run"), True)
            )
        except Exception as e:
            return error_response(e)
        return {"ok": True, "message": result.message, "data": result.to_dict()}

    @app.post("/api/inactive-channels")
    async def inactive_channels(request: Request):
        try:
            body = await _json_body(request)
            days = parse_days(body.get("days"), DEFAULT_ARCHIVE_DAYS)
            dry_run = parse_flag(body.get("dry_run"), True)
            channel_ids = [
                str(v).strip()
                for v in (body.get("channel_ids") or [])
                if isinstance(v, (str, int)) and not isinstance(v, bool) and str(v).strip()
            ]
            action = "delete" if body.get("action") == "delete" else "archive"
            if not dry_run and not channel_ids:
                raise BadRequest("Select at least one channel to archive.")
            result = await service.run_archive(
                days=days, dry_run=dry_run, channel_ids=channel_ids, action=action
            )
        except Exception as e:
            return error_response(e)
        return {"ok": True, "message": result.message, "data": result.to_dict()}

    # --- status stream ---

    @app.websocket("/ws/status")
    async def ws_status(ws: WebSocket):
        await ws.accept()
        route_var.set("/ws/status")
        req_id_var.set(uuid.uuid4().hex[:8])
        local_log = get_logger("sweepcord.ws.status")
        await hub.add(ws)
        local_log.info("Connected | ui_sockets=%d", len(hub.ui_sockets))
        try:
            for kind in STATUS_KINDS:
                await ws.send_text(hub.message(kind, service.status(kind)))
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            local_log.info("Disconnected")
        finally:
            await hub.remove(ws)

    return app


app = create_app()


def main():
    config = app.state.config
    configure_app_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    uvicorn.run(
        app,
        host=config.HTTP_HOST,
        port=config.HTTP_PORT,
        ws="websockets",
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
