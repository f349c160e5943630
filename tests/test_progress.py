from scanner.progress import ScanPhase, ScanStatusTracker


def test_idle_snapshot():
    snap = ScanStatusTracker("zero").snapshot()

    assert snap["phase"] == "idle"
    assert snap["in_progress"] is False
    assert snap["processed_channels"] == 0
    assert snap["error_message"] is None


def test_channel_progress_is_clamped():
    tracker = ScanStatusTracker("zero")
    tracker.begin(total_channels=3)
    assert tracker.snapshot()["last_message"] == "Preparing scan…"

    tracker.channel_started("general", 1, 3)
    snap = tracker.snapshot()
    assert snap["phase"] == "scanning"
    assert snap["processed_channels"] == 0
    assert snap["current_channel"] == "general"
    assert snap["last_message"] == "Scanning #general"

    tracker.channel_completed("general", 1, 3)
    tracker.channel_started("memes", 2, 3)
    tracker.channel_completed("memes", 5, 3)
    assert tracker.snapshot()["processed_channels"] == 3


def test_complete_and_cancel_keep_counters():
    tracker = ScanStatusTracker("inactive", label="inactive scan")
    tracker.begin()
    tracker.members_progressed(4, 10)
    tracker.messages_counted(42)

    tracker.cancelling()
    assert tracker.snapshot()["last_message"] == "Cancelling inactive scan…"
    tracker.cancel("Inactive scan cancelled by user.")

    snap = tracker.snapshot()
    assert tracker.phase is ScanPhase.CANCELLED
    assert not tracker.in_progress
    assert snap["processed_members"] == 4
    assert snap["total_messages"] == 42
    assert snap["finished_at"]

    tracker.begin()
    tracker.complete("done", processed_channels=2, total_channels=2)
    snap = tracker.snapshot()
    assert snap["phase"] == "completed"
    assert snap["processed_channels"] == 2
    assert snap["processed_members"] == 0


def test_failure_resets_counters():
    tracker = ScanStatusTracker("inactive", label="inactive scan")
    tracker.begin(total_channels=5)
    tracker.channel_started("a", 2, 5)
    tracker.messages_counted(9)

    tracker.fail("boom")

    snap = tracker.snapshot()
    assert snap["phase"] == "failed"
    assert snap["total_channels"] == 0
    assert snap["total_messages"] == 0
    assert snap["last_message"] == "Inactive scan failed."
    assert snap["error_message"] == "boom"


def test_listeners_receive_snapshots_and_errors_are_contained():
    tracker = ScanStatusTracker("zero")
    seen = []

    def broken(kind, snap):
        raise RuntimeError("listener bug")

    tracker.add_listener(broken)
    tracker.add_listener(lambda kind, snap: seen.append((kind, snap["phase"])))
    tracker.begin()
    tracker.progress().on_channel_start("general", 1, 1)

    assert seen == [("zero", "preparing"), ("zero", "scanning")]

    tracker.remove_listener(broken)
    tracker.remove_listener(broken)
    tracker.complete("ok")
    assert seen[-1] == ("zero", "completed")


def test_snapshot_is_a_copy():
    tracker = ScanStatusTracker("zero")
    snap = tracker.snapshot()
    snap["phase"] = "bogus"
    assert tracker.snapshot()["phase"] == "idle"
