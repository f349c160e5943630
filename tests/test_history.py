import asyncio
from datetime import timedelta

import pytest

from fakes import NOW, FakeGateway, channel, history
from scanner.cancellation import CancellationToken, ScanCancelledError
from scanner.history import HistoryWalker


def _walk(gateway, target, **kwargs):
    seen = []
    walker = HistoryWalker(gateway, page_size=kwargs.pop("page_size", 100))
    stats = asyncio.run(walker.walk(target, seen.append, **kwargs))
    return stats, seen


def test_pages_backwards_with_oldest_id_cursor():
    general = channel(1, "general")
    msgs = history([7] * 250)
    gw = FakeGateway(channels=[general], messages={1: msgs})

    stats, seen = _walk(gw, general)

    assert stats.total_messages == 250
    assert stats.pages == 3
    assert len(seen) == 250
    cursors = [before for _, before in gw.history_calls]
    assert cursors[0] is None
    assert cursors[1] == msgs[150].id
    assert cursors[2] == msgs[50].id


def test_oldest_first_within_a_page():
    general = channel(1, "general")
    gw = FakeGateway(channels=[general], messages={1: history([1, 2, 3])})

    _, seen = _walk(gw, general)

    assert seen == [1, 2, 3]


def test_newest_first_within_a_page():
    general = channel(1, "general")
    gw = FakeGateway(channels=[general], messages={1: history([1, 2, 3])})

    _, seen = _walk(gw, general, newest_first=True)

    assert seen == [3, 2, 1]


def test_bot_messages_count_but_are_not_reported():
    general = channel(1, "general")
    gw = FakeGateway(channels=[general], messages={1: history([1, 99, 2], bots=[99])})

    stats, seen = _walk(gw, general)

    assert stats.total_messages == 3
    assert seen == [1, 2]


def test_cutoff_stops_the_walk_before_older_messages():
    general = channel(1, "general")
    msgs = history([1, 2, 3, 4], step=timedelta(days=1))
    gw = FakeGateway(channels=[general], messages={1: msgs})

    stats, seen = _walk(
        gw, general, newest_first=True, cutoff=NOW - timedelta(days=1, hours=12), page_size=2
    )

    assert seen == [4, 3]
    assert stats.total_messages == 2
    assert stats.reached_cutoff
    # the first page is entirely inside the window; the second crosses it
    assert len(gw.history_calls) == 2


def test_should_stop_prevents_further_pages():
    general = channel(1, "general")
    gw = FakeGateway(channels=[general], messages={1: history([1, 2, 3, 4, 5])})
    remaining = {1, 2}

    def observe(author):
        remaining.discard(author)

    walker = HistoryWalker(gw, page_size=2)
    stats = asyncio.run(
        walker.walk(general, observe, should_stop=lambda: not remaining)
    )

    # the last author seen is in the oldest page; no empty page is requested after it
    assert stats.converged
    assert stats.total_messages == 5
    assert len(gw.history_calls) == 3


def test_convergence_ends_the_walk_mid_page():
    general = channel(1, "general")
    gw = FakeGateway(channels=[general], messages={1: history([1, 2, 3, 4])})
    remaining = {3}

    walker = HistoryWalker(gw, page_size=2)
    stats = asyncio.run(
        walker.walk(general, remaining.discard, should_stop=lambda: not remaining)
    )

    assert stats.converged
    assert stats.total_messages == 1
    assert len(gw.history_calls) == 1


def test_cancelled_token_raises_before_fetching():
    general = channel(1, "general")
    gw = FakeGateway(channels=[general], messages={1: history([1])})
    token = CancellationToken()
    token.cancel()

    with pytest.raises(ScanCancelledError):
        _walk(gw, general, token=token)
    assert gw.history_calls == []


def test_cancel_mid_page_stops_reporting():
    general = channel(1, "general")
    gw = FakeGateway(channels=[general], messages={1: history([1, 2, 3])})
    token = CancellationToken("stopped")
    seen = []

    def observe(author):
        seen.append(author)
        token.cancel()

    walker = HistoryWalker(gw)
    with pytest.raises(ScanCancelledError, match="stopped"):
        asyncio.run(walker.walk(general, observe, token=token))
    assert seen == [1]


def test_empty_channel():
    general = channel(1, "general")
    gw = FakeGateway(channels=[general])

    stats, seen = _walk(gw, general)

    assert stats.total_messages == 0
    assert stats.pages == 0
    assert seen == []
