"""Tests for build progress tracking."""

import threading

import pytest
from pydantic import ValidationError

from ragcore.exceptions import BuildInProgressError
from ragcore.models.progress import BuildStatus
from ragcore.progress import MAX_LOG_LINES, BuildProgressTracker


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock: FakeClock) -> BuildProgressTracker:
    return BuildProgressTracker(clock=clock)


class TestStartBuilding:
    def test_initially_idle(self, tracker: BuildProgressTracker) -> None:
        progress = tracker.get_progress()
        assert progress.status is BuildStatus.IDLE
        assert progress.progress_percent == 0
        assert not tracker.is_building

    def test_start_enters_loading(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        progress = tracker.get_progress()

        assert progress.status is BuildStatus.LOADING
        assert progress.build_id == session.build_id
        assert progress.start_time == 1_000_000
        assert progress.progress_percent == 0
        assert tracker.is_building

    def test_second_start_rejected(self, tracker: BuildProgressTracker) -> None:
        tracker.start_building()
        with pytest.raises(BuildInProgressError):
            tracker.start_building()

    def test_restart_after_completion(self, tracker: BuildProgressTracker) -> None:
        first = tracker.start_building()
        first.complete()
        second = tracker.start_building()

        assert second.build_id != first.build_id
        assert tracker.get_progress().build_id == second.build_id
        assert tracker.get_progress(first.build_id).status is BuildStatus.COMPLETED

    def test_restart_after_error(self, tracker: BuildProgressTracker) -> None:
        tracker.start_building().error("boom")
        tracker.start_building()
        assert tracker.get_progress().status is BuildStatus.LOADING

    def test_concurrent_starts_admit_one(self, tracker: BuildProgressTracker) -> None:
        barrier = threading.Barrier(8)
        outcomes: list[str] = []

        def attempt() -> None:
            barrier.wait()
            try:
                tracker.start_building()
                outcomes.append("started")
            except BuildInProgressError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("started") == 1
        assert outcomes.count("rejected") == 7

    def test_unknown_build_id(self, tracker: BuildProgressTracker) -> None:
        with pytest.raises(KeyError):
            tracker.get_progress("missing")


class TestPhases:
    def test_canonical_sequence(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        percents = []

        session.update_documents_loaded(1, 2)
        percents.append(session.progress.progress_percent)
        session.update_documents_loaded(2, 2)
        percents.append(session.progress.progress_percent)
        session.start_chunking(4)
        percents.append(session.progress.progress_percent)
        session.update_chunking(2, 4)
        percents.append(session.progress.progress_percent)
        session.start_embedding(10)
        percents.append(session.progress.progress_percent)
        session.update_embedding(5, 10)
        percents.append(session.progress.progress_percent)
        session.start_saving(10)
        percents.append(session.progress.progress_percent)
        session.update_saving(5, 10)
        percents.append(session.progress.progress_percent)
        session.complete()
        percents.append(session.progress.progress_percent)

        assert percents == [10, 20, 20, 35, 50, 70, 90, 95, 100]
        assert session.progress.status is BuildStatus.COMPLETED

    def test_status_follows_phase(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        session.start_chunking(1)
        assert session.progress.status is BuildStatus.CHUNKING
        session.start_embedding(1)
        assert session.progress.status is BuildStatus.EMBEDDING
        session.start_saving(1)
        assert session.progress.status is BuildStatus.SAVING

    def test_counts_clamped(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        session.start_embedding(10)
        session.update_embedding(15, 10)
        progress = session.progress
        assert progress.processed_chunks == 10
        assert progress.progress_percent == 90

    def test_percent_never_decreases(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        session.start_embedding(10)
        session.update_embedding(8, 10)
        session.update_embedding(2, 10)
        assert session.progress.progress_percent == 82

    def test_backward_transition_rejected(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        session.start_embedding(3)
        with pytest.raises(ValueError):
            session.start_chunking(3)

    def test_complete_fills_counts(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        session.update_documents_loaded(1, 3)
        session.start_chunking(3)
        session.complete()
        progress = session.progress
        assert progress.loaded_documents == 3
        assert progress.processed_chunks == 3
        assert progress.estimated_remaining_seconds == 0

    def test_updates_after_completion_ignored(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        session.complete()
        session.update_saving(1, 2)
        session.error("late")
        assert session.progress.status is BuildStatus.COMPLETED
        assert session.progress.error_message is None


class TestErrors:
    def test_error_keeps_percent(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        session.start_embedding(10)
        session.update_embedding(5, 10)
        session.error("Embedding service down")

        progress = session.progress
        assert progress.status is BuildStatus.ERROR
        assert progress.error_message == "Embedding service down"
        assert progress.progress_percent == 70
        assert progress.current_step == "Build failed!"
        assert not tracker.is_building


class TestTiming:
    def test_eta_from_embedding_rate(self, tracker: BuildProgressTracker, clock: FakeClock) -> None:
        session = tracker.start_building()
        session.start_embedding(10)
        clock.advance(10)
        session.update_embedding(5, 10)
        assert session.progress.estimated_remaining_seconds == 10
        assert session.progress.formatted_eta() == "00:10"

    def test_eta_unknown_before_first_batch(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        session.start_embedding(10)
        assert session.progress.formatted_eta() == "calculating..."

    def test_elapsed_live_then_frozen(self, tracker: BuildProgressTracker, clock: FakeClock) -> None:
        session = tracker.start_building()
        clock.advance(65)
        assert tracker.get_progress().elapsed_seconds == 65
        assert tracker.get_progress().formatted_elapsed() == "01:05"

        session.complete()
        clock.advance(100)
        assert tracker.get_progress().elapsed_seconds == 65


class TestLogsAndReset:
    def test_log_lines_timestamped(self, tracker: BuildProgressTracker, clock: FakeClock) -> None:
        session = tracker.start_building()
        clock.advance(75)
        session.log("Loaded 3 documents")
        assert session.progress.detailed_logs == ["[01:15] Loaded 3 documents"]

    def test_log_capped(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        for i in range(MAX_LOG_LINES + 20):
            session.log(f"line {i}")
        logs = session.progress.detailed_logs
        assert len(logs) == MAX_LOG_LINES
        assert logs[-1].endswith(f"line {MAX_LOG_LINES + 19}")

    def test_reset_while_building(self, tracker: BuildProgressTracker) -> None:
        tracker.start_building()
        with pytest.raises(BuildInProgressError):
            tracker.reset()

    def test_reset_after_completion(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        session.complete()
        tracker.reset()
        assert tracker.get_progress().status is BuildStatus.IDLE
        with pytest.raises(KeyError):
            tracker.get_progress(session.build_id)

    def test_history_bounded(self, clock: FakeClock) -> None:
        tracker = BuildProgressTracker(clock=clock, history_size=2)
        first = tracker.start_building()
        first.complete()
        for _ in range(2):
            tracker.start_building().complete()
        with pytest.raises(KeyError):
            tracker.get_progress(first.build_id)


class TestSnapshots:
    def test_polling_dict_keys(self, tracker: BuildProgressTracker) -> None:
        tracker.start_building()
        data = tracker.get_progress().to_polling_dict()
        assert set(data) == {
            "status",
            "currentStep",
            "totalChunks",
            "processedChunks",
            "totalDocuments",
            "loadedDocuments",
            "progressPercent",
            "elapsedSeconds",
            "estimatedRemainingSeconds",
        }
        assert data["status"] == "loading"

    def test_polling_dict_includes_error(self, tracker: BuildProgressTracker) -> None:
        tracker.start_building().error("boom")
        assert tracker.get_progress().to_polling_dict()["errorMessage"] == "boom"

    def test_progress_bar(self, tracker: BuildProgressTracker) -> None:
        session = tracker.start_building()
        session.start_embedding(2)
        session.update_embedding(0, 2)
        bar = session.progress.progress_bar()
        assert bar == "[" + "█" * 10 + "░" * 10 + "] 50%"

    def test_console_output_shows_error(self, tracker: BuildProgressTracker) -> None:
        tracker.start_building().error("disk full")
        output = tracker.get_progress().to_console_output()
        assert "Status: error" in output
        assert "ERROR: disk full" in output

    def test_snapshot_is_immutable(self, tracker: BuildProgressTracker) -> None:
        tracker.start_building()
        snapshot = tracker.get_progress()
        with pytest.raises(ValidationError):
            snapshot.progress_percent = 50  # type: ignore[misc]
