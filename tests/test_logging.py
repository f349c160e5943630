import json
import logging

from admin.logging_setup import (
    REDACTED,
    HumanFormatter,
    JSONFormatter,
    RedactFilter,
    get_logger,
    req_id_var,
)


def _record(msg, args=(), **extra):
    record = logging.LogRecord("sweepcord.test", logging.INFO, __file__, 1, msg, args, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_token_is_redacted_from_message_and_args(monkeypatch):
    monkeypatch.setenv("DISCORD_TOKEN", "s3cr3t-token")
    record = _record("login with %s", ("Bot s3cr3t-token",))

    assert RedactFilter().filter(record)

    assert "s3cr3t" not in record.getMessage()
    assert REDACTED in record.getMessage()


def test_redacts_token_key_in_mapping_args(monkeypatch):
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    record = _record("cfg %(DISCORD_TOKEN)s %(GUILD_ID)s", ())
    record.args = {"DISCORD_TOKEN": "abc", "GUILD_ID": 5}

    RedactFilter().filter(record)

    assert record.getMessage() == f"cfg {REDACTED} 5"


def test_request_context_is_attached():
    token = req_id_var.set("rid42")
    try:
        record = _record("hello")
        RedactFilter().filter(record)
    finally:
        req_id_var.reset(token)

    assert record.req_id == "rid42"
    line = HumanFormatter("%(message)s").format(record)
    assert "(rid=rid42" in line
    assert line.endswith("hello")


def test_json_formatter_includes_extras():
    record = _record("scan done", scan_kind="zero", took_ms=12)
    RedactFilter().filter(record)

    body = json.loads(JSONFormatter("%(message)s").format(record))

    assert body["msg"] == "scan done"
    assert body["scan_kind"] == "zero"
    assert body["took_ms"] == 12
    assert body["logger"] == "sweepcord.test"


def test_adapter_merges_context():
    adapter = get_logger("sweepcord.test", scan_kind="inactive")
    msg, kwargs = adapter.process("x", {})
    assert kwargs["extra"] == {"scan_kind": "inactive"}
    msg, kwargs = adapter.process("x", {"extra": {"scan_kind": "zero"}})
    assert kwargs["extra"]["scan_kind"] == "zero"
