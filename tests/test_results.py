import pytest

from fakes import member
from scanner.cancellation import CancellationToken, ScanCancelledError
from scanner.models import ScanKind
from scanner.reducer import ScanSession, WorkingSet
from scanner.results import ResultAssembler, build_skipped_preview, surviving_members


def _session(members, remaining, **kw):
    return ScanSession(
        kind=kw.pop("kind", ScanKind.ZERO_MESSAGE),
        guild_name="Guild",
        members={m.id: m for m in members},
        working=WorkingSet(remaining),
        token=kw.pop("token", CancellationToken()),
        csv_prefix="users",
        **kw,
    )


def test_skipped_preview():
    assert build_skipped_preview([], 5) == ""
    assert build_skipped_preview(["a", "b"], 5) == "a, b"
    assert build_skipped_preview(["a", "b", "c", "d"], 2) == "a, b, +2 more"


def test_survivors_sorted_by_formatted_name():
    members = [member(3, "carol"), member(1, "alice", display="Zed"), member(2, "bob")]
    session = _session(members, [1, 2, 3])

    names = [m.formatted_name for m in surviving_members(session)]

    assert names == ["Zed (alice)", "bob", "carol"]


def test_finalize_writes_csv_and_preview(store):
    members = [member(i, f"user{i:02d}") for i in range(1, 6)]
    session = _session(members, [1, 2, 3, 4, 5], total_messages=12, total_channels=3)
    session.working.discard(2)
    session.processed.append("general")
    session.skip("secret", "forbidden")

    result = ResultAssembler(store, preview_limit=2, skipped_limit=5).finalize(session)

    assert [m.id for m in result.members] == [1, 3, 4, 5]
    assert result.preview_names == ["user01", "user03"]
    assert result.more_count == 2
    assert result.total_members_checked == 5
    assert result.total_messages_scanned == 12
    assert result.skipped_channels == ["secret (forbidden)"]
    assert result.skipped_preview == "secret (forbidden)"
    rows = store.read_rows(result.csv_path.name)
    assert [r["User ID"] for r in rows] == ["1", "3", "4", "5"]
    body = result.to_response()
    assert body["csv_filename"] == result.csv_path.name
    assert body["member_count"] == 4
    assert body["total_channels"] == 3
    assert "cutoff_iso" not in body


def test_finalize_refuses_after_cancel(store):
    token = CancellationToken()
    session = _session([member(1, "a")], [1], token=token)
    token.cancel()

    with pytest.raises(ScanCancelledError):
        ResultAssembler(store, preview_limit=5, skipped_limit=5).finalize(session)
    assert not store.directory.exists() or not list(store.directory.iterdir())


def test_empty_result(store):
    session = _session([member(1, "a")], [1])

    result = ResultAssembler(store, preview_limit=5, skipped_limit=5).empty(session, dry_run=True)

    assert result.members == []
    assert result.dry_run
    assert result.csv_path.read_text(encoding="utf-8") == "User ID,Username\n"
