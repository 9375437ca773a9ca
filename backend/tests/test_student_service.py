from datetime import datetime, timezone

from driving_school.services.student_service import apply_attempt, history_entry

WHEN = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def test_history_entry_fields(driving_test):
    entry = history_entry(driving_test, 75, True, 40, WHEN)
    assert entry == {
        "test_id": driving_test.id,
        "test_name": "Theory Test B",
        "date": "2024-05-01T09:00:00+00:00",
        "score": 75,
        "passed": True,
        "time_spent": 40,
    }


def test_first_attempt_creates_tracker(driving_test):
    entry = history_entry(driving_test, 60, False, 50, WHEN)
    merged = apply_attempt(None, None, "rec-1", entry)
    assert merged.applied
    assert merged.test_history == {"rec-1": entry}
    assert merged.test_scores[driving_test.id] == {
        "latest_score": 60,
        "best_score": 60,
        "attempts": 1,
        "last_attempt": entry["date"],
    }


def test_later_attempt_keeps_best_score(driving_test):
    first = apply_attempt({}, {}, "rec-1", history_entry(driving_test, 80, True, 50, WHEN))
    second = apply_attempt(first.test_history, first.test_scores, "rec-2", history_entry(driving_test, 40, False, 55, WHEN))
    tracker = second.test_scores[driving_test.id]
    assert tracker["latest_score"] == 40
    assert tracker["best_score"] == 80
    assert tracker["attempts"] == 2
    assert set(second.test_history) == {"rec-1", "rec-2"}


def test_same_record_is_merged_only_once(driving_test):
    entry = history_entry(driving_test, 80, True, 50, WHEN)
    first = apply_attempt({}, {}, "rec-1", entry)
    again = apply_attempt(first.test_history, first.test_scores, "rec-1", entry)
    assert not again.applied
    assert again.test_scores[driving_test.id]["attempts"] == 1


def test_inputs_are_not_mutated(driving_test):
    history = {"old": {"test_id": "other", "score": 10}}
    scores = {"other": {"latest_score": 10, "best_score": 10, "attempts": 1, "last_attempt": "x"}}
    apply_attempt(history, scores, "rec-1", history_entry(driving_test, 90, True, 30, WHEN))
    assert list(history) == ["old"]
    assert list(scores) == ["other"]
