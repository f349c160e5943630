import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from admin.app import StatusHub, create_app, parse_days, parse_flag, parse_name_list, BadRequest
from fakes import FakeBot, FakeGateway, channel, history, member
from scanner.service import ScanService


class FakeSocket(SimpleNamespace):
    __hash__ = object.__hash__


def _gateway():
    return FakeGateway(
        members=[member(1, "alice"), member(2, "bob")],
        channels=[channel(10, "general")],
        messages={10: history([1])},
    )


@pytest.fixture
def service(config, store):
    guild = SimpleNamespace(
        me=SimpleNamespace(id=100, guild_permissions=SimpleNamespace(kick_members=True)),
        owner_id=1,
    )
    return ScanService(config, FakeBot(_gateway(), guild), store=store)


@pytest.fixture
def client(config, service):
    with TestClient(create_app(config, service, start_bot=False)) as c:
        yield c


def test_parse_helpers():
    assert parse_name_list("a, b\nc", split_newlines=True) == ["a", "b", "c"]
    assert parse_name_list([" a ", 3, ""]) == ["a"]
    assert parse_name_list(None) == []
    assert parse_days(None, 30) == 30
    assert parse_days("7", 30) == 7
    assert parse_days(14.0, 30) == 14
    for bad in (0, -1, "x", True, 1.5):
        with pytest.raises(BadRequest):
            parse_days(bad, 30)
    assert parse_flag(None, True) is True
    assert parse_flag("yes", False) is False
    assert parse_flag(True, False) is True


def test_health_and_index(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["discord_ready"] is True

    page = client.get("/")
    assert page.status_code == 200
    assert "Sweepcord" in page.text


def test_request_id_is_echoed(client):
    res = client.get("/api/scan-status", headers={"X-Request-ID": "abc123"})
    assert res.headers["X-Request-ID"] == "abc123"
    assert res.json()["phase"] == "idle"


def test_defaults(client):
    assert "general" in client.get("/api/default-channels").json()["channels"]
    body = client.get("/api/inactive-defaults").json()
    assert body["ok"] is True
    assert body["days"] == 30


def test_zero_scan_endpoint(client):
    res = client.post("/api/zero-messages", json={"channel_names": "general"})

    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["channels"] == ["general"]
    assert body["data"]["zero_message_count"] == 1
    assert body["data"]["preview_names"] == ["bob"]
    assert body["message"] == "Scan complete. Found 1 users with zero messages."

    status = client.get("/api/scan-status").json()
    assert status["phase"] == "completed"

    files = client.get("/api/csv-files").json()["files"]
    assert [f["filename"] for f in files] == [body["data"]["csv_filename"]]
    assert files[0]["row_count"] == 1


def test_zero_scan_dry_run_message(client):
    body = client.post("/api/zero-messages", json={"dry_run": True}).json()
    assert body["message"] == "Dry run complete. Empty CSV generated."
    assert body["data"]["member_count"] == 0


def test_unknown_channels_is_a_server_error(client):
    res = client.post("/api/zero-messages", json={"channel_names": ["nowhere"]})
    assert res.status_code == 500
    assert res.json() == {"ok": False, "error": "No target channels found with the provided names."}


def test_inactive_scan_endpoint(client):
    res = client.post("/api/inactive-scan", json={"days": 30, "excluded_categories": ["Staff"]})

    assert res.status_code == 200
    data = res.json()["data"]
    assert data["inactive_count"] == len(data["preview_names"])
    assert "cutoff_iso" in data
    assert client.get("/api/inactive-status").json()["phase"] == "completed"


@pytest.mark.parametrize("days", [0, -3, "soon", True])
def test_inactive_scan_rejects_bad_days(client, days):
    res = client.post("/api/inactive-scan", json={"days": days})
    assert res.status_code == 400
    assert res.json()["ok"] is False


def test_malformed_body(client):
    res = client.post(
        "/api/inactive-scan", content=b"{nope", headers={"Content-Type": "application/json"}
    )
    assert res.status_code == 400
    assert res.json()["error"] == "Request body must be JSON."


def test_cancel_without_running_job(client):
    for path, text in (
        ("/api/cancel-scan", "No scan is currently running."),
        ("/api/cancel-inactive", "No inactive scan is currently running."),
        ("/api/cancel-kick", "No kick job is currently running."),
    ):
        res = client.post(path)
        assert res.status_code == 409
        assert res.json() == {"ok": False, "error": text}


def test_kick_validation(client):
    res = client.post("/api/kick-from-csv", json={"filenames": []})
    assert res.status_code == 400
    assert res.json()["error"] == "Provide at least one CSV filename."


def test_kick_missing_file(client):
    res = client.post("/api/kick-from-csv", json={"filenames": ["missing.csv"], "dry_run": True})
    assert res.status_code == 404
    assert res.json()["error"] == "CSV file not found: missing.csv"


def test_archive_real_run_needs_channels(client):
    res = client.post("/api/inactive-channels", json={"dry_run": False})
    assert res.status_code == 400
    assert res.json()["error"] == "Select at least one channel to archive."


def test_not_ready_returns_503(config, store):
    service = ScanService(config, FakeBot(_gateway(), ready=False), store=store)
    with TestClient(create_app(config, service, start_bot=False)) as c:
        assert c.get("/health").json()["discord_ready"] is False
        for path in ("/api/zero-messages", "/api/inactive-scan", "/api/cleanup-roles"):
            res = c.post(path, json={})
            assert res.status_code == 503
            assert res.json()["error"] == "Discord client is not ready yet. Try again shortly."


def test_status_socket_sends_both_snapshots(client):
    with client.websocket_connect("/ws/status") as ws:
        first = ws.receive_json()
        second = ws.receive_json()

    assert [first["kind"], second["kind"]] == ["zero", "inactive"]
    assert first["status"]["phase"] == "idle"


def test_status_hub_keeps_publish_tasks_until_done():
    hub = StatusHub()
    ws = FakeSocket(send_text=AsyncMock(), close=AsyncMock())
    hub.ui_sockets.add(ws)

    async def go():
        hub.listener("zero", {"phase": "running"})
        assert len(hub._tasks) == 1
        await asyncio.gather(*list(hub._tasks))
        await asyncio.sleep(0)

    asyncio.run(go())

    ws.send_text.assert_awaited_once_with(StatusHub.message("zero", {"phase": "running"}))
    assert hub._tasks == set()


def test_status_hub_listener_without_loop_or_sockets():
    hub = StatusHub()
    hub.listener("zero", {"phase": "idle"})
    hub.ui_sockets.add(FakeSocket(send_text=AsyncMock()))
    hub.listener("zero", {"phase": "idle"})
    assert hub._tasks == set()
