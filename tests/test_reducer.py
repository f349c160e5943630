from scanner.cancellation import CancellationToken
from scanner.models import ScanKind
from scanner.reducer import ScanSession, WorkingSet


def test_discard_is_idempotent():
    ws = WorkingSet([1, 2, 3])
    assert ws.discard(2) is True
    assert ws.discard(2) is False
    assert ws.discard(99) is False
    assert sorted(ws) == [1, 3]
    assert ws.removed == 1
    assert ws.seed_size == 3


def test_empty_after_all_removed():
    ws = WorkingSet([1])
    assert not ws.is_empty()
    ws.discard(1)
    assert ws.is_empty()
    assert len(ws) == 0
    assert 1 not in ws


def test_session_reports_each_removal_once():
    calls = []
    session = ScanSession(
        kind=ScanKind.ZERO_MESSAGE,
        guild_name="g",
        members={},
        working=WorkingSet([1, 2]),
        token=CancellationToken(),
        csv_prefix="users",
        on_removed=lambda done, total: calls.append((done, total)),
    )
    session.observe(1)
    session.observe(1)
    session.observe(7)
    session.observe(2)
    assert calls == [(1, 2), (2, 2)]
    assert session.converged()


def test_skip_records_reason_text():
    session = ScanSession(
        kind=ScanKind.INACTIVE,
        guild_name="g",
        members={},
        working=WorkingSet(),
        token=CancellationToken(),
        csv_prefix="inactive_30d",
    )
    session.skip("general", "forbidden")
    assert [str(s) for s in session.skipped] == ["general (forbidden)"]
