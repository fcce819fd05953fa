"""Unit tests for the update-note active window sweep."""
from datetime import datetime, timedelta, timezone

from backend.services.update_notes import NoteState, compute_sweep, pick_active

NOW = datetime(2025, 6, 15, 12, tzinfo=timezone.utc)


def _note(note_id, days_ago, valid_until=None, is_active=False):
    return NoteState(note_id, NOW - timedelta(days=days_ago), valid_until, is_active)


def _by_id(plan):
    return {n.id: n for n in plan.notes}


class TestPickActive:
    def test_latest_published_wins(self):
        notes = [_note(1, 30), _note(2, 10), _note(3, -5)]
        assert pick_active(notes, NOW).id == 2

    def test_nothing_published(self):
        assert pick_active([_note(1, -1)], NOW) is None

    def test_expired_latest_falls_back_to_older_live_note(self):
        notes = [_note(1, 30), _note(2, 10, valid_until=NOW - timedelta(days=1))]
        assert pick_active(notes, NOW).id == 1

    def test_all_expired_uses_latest(self):
        expired = NOW - timedelta(days=1)
        notes = [_note(1, 30, valid_until=expired), _note(2, 10, valid_until=expired)]
        assert pick_active(notes, NOW).id == 2


class TestComputeSweep:
    def test_exactly_one_active_and_older_notes_expire(self):
        notes = [_note(1, 30, is_active=True), _note(2, 10), _note(3, -5)]
        plan = compute_sweep(notes, [], NOW)
        states = _by_id(plan)
        assert plan.active_id == 2
        assert [n.id for n in plan.notes if n.is_active] == [2]
        assert states[1].valid_until == states[2].published_at
        assert states[2].valid_until is None
        assert states[3].valid_until is None

    def test_no_published_notes_clears_everything(self):
        notes = [_note(1, -3, valid_until=NOW, is_active=True)]
        plan = compute_sweep(notes, [(1, 100)], NOW)
        assert plan.active_id is None
        assert not plan.notes[0].is_active
        assert plan.notes[0].valid_until is None
        assert plan.unavailable_item_ids == {100}
        assert plan.available_item_ids == set()

    def test_item_availability_follows_notes(self):
        notes = [_note(1, 30), _note(2, 10), _note(3, -5)]
        links = [(1, 100), (2, 200), (3, 300), (3, 200)]
        plan = compute_sweep(notes, links, NOW)
        assert plan.available_item_ids == {100, 200}
        assert plan.unavailable_item_ids == {300}

    def test_sweep_is_stable(self):
        """Running the sweep on its own output changes nothing."""
        notes = [_note(1, 30), _note(2, 10, valid_until=NOW - timedelta(days=1)), _note(3, -5)]
        first = compute_sweep(notes, [], NOW)
        second = compute_sweep(first.notes, [], NOW)
        assert second.notes == first.notes
        assert second.active_id == first.active_id == 1

    def test_expired_newer_note_keeps_its_expiry(self):
        expired = NOW - timedelta(days=1)
        plan = compute_sweep([_note(1, 30), _note(2, 10, valid_until=expired)], [(2, 5)], NOW)
        states = _by_id(plan)
        assert states[2].valid_until == expired
        assert not states[2].is_active
        assert plan.available_item_ids == {5}
