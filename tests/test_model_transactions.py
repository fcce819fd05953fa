"""Transaction handling of the locking model methods, run against a mocked cursor."""
from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest

from backend import models
from backend.errors import InsufficientCropsError, InsufficientSeedsError
from backend.models import UpdateNote, UserCrop, UserItem, UserPlant

NOW = datetime(2025, 6, 15, 12, tzinfo=timezone.utc)


@pytest.fixture
def db():
    conn, cur = mock.Mock(), mock.Mock()
    with mock.patch.object(models, 'get_db_cursor', return_value=(conn, cur)), \
            mock.patch.object(models, 'close_db') as close_db:
        yield conn, cur
    close_db.assert_called_once_with(conn, cur)


def _statements(cur):
    return [(' '.join(c.args[0].split()), c.args[1] if len(c.args) > 1 else None)
            for c in cur.execute.call_args_list]


def _executed(cur, fragment):
    return [params for sql, params in _statements(cur) if fragment in sql]


class TestCropSale:
    def test_oversell_rolls_back_without_writes(self, db):
        conn, cur = db
        cur.fetchall.return_value = [{'monthly_plant_id': 3, 'quantity': 1}]
        with pytest.raises(InsufficientCropsError):
            UserCrop.sell(7, [(3, 2)], 20)
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        assert not _executed(cur, 'UPDATE user_crops')
        assert not _executed(cur, 'seeds')

    def test_sale_updates_crops_and_credits_seeds(self, db):
        conn, cur = db
        cur.fetchall.return_value = [{'monthly_plant_id': 3, 'quantity': 5}]
        cur.fetchone.return_value = {'count': 40}
        assert UserCrop.sell(7, [(3, 2)], 20) == 40
        assert _executed(cur, 'UPDATE user_crops') == [(3, 7, 3)]
        assert _executed(cur, 'INSERT INTO seeds') == [(7, 20)]
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()


class TestReconcile:
    def test_new_harvests_and_stage_are_written_together(self, db):
        conn, cur = db
        cur.fetchone.return_value = {'id': 1, 'harvest_count': 0, 'stage': 'SEED'}
        plan = UserPlant.reconcile(7, 11, 150)
        assert plan.new_crops == 2
        assert _executed(cur, 'INSERT INTO user_crops') == [(7, 11, 2)]
        assert _executed(cur, 'UPDATE user_plants') == [(2, 'SPROUT', 1)]
        conn.commit.assert_called_once()

    def test_settled_plant_writes_nothing(self, db):
        conn, cur = db
        cur.fetchone.return_value = {'id': 1, 'harvest_count': 2, 'stage': 'SPROUT'}
        assert UserPlant.reconcile(7, 11, 150).new_crops == 0
        assert not _executed(cur, 'INSERT INTO user_crops')
        assert not _executed(cur, 'UPDATE user_plants')

    def test_unplanted_month(self, db):
        conn, cur = db
        cur.fetchone.return_value = None
        assert UserPlant.reconcile(7, 11, 150) is None
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()


class TestPurchase:
    def test_short_on_seeds_rolls_back(self, db):
        conn, cur = db
        cur.fetchone.side_effect = [
            {'id': 5, 'price': 30, 'is_available': True},
            None,
            {'count': 10},
        ]
        with pytest.raises(InsufficientSeedsError):
            UserItem.purchase(7, 5)
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        assert not _executed(cur, 'UPDATE seeds')
        assert not _executed(cur, 'INSERT INTO user_items')


class TestUpdateNoteSweep:
    def test_sweep_writes_changed_notes_and_item_availability(self, db):
        conn, cur = db
        newer = NOW - timedelta(days=5)
        cur.fetchall.side_effect = [
            [
                {'id': 1, 'published_at': NOW - timedelta(days=30), 'valid_until': None, 'is_active': True},
                {'id': 2, 'published_at': newer, 'valid_until': None, 'is_active': False},
                {'id': 3, 'published_at': NOW + timedelta(days=3), 'valid_until': None, 'is_active': False},
            ],
            [{'note_id': 1, 'item_id': 100}, {'note_id': 3, 'item_id': 300}],
        ]
        plan = UpdateNote.apply_sweep(NOW)
        assert plan.active_id == 2
        assert _executed(cur, 'UPDATE update_notes') == [(False, newer, 1), (True, None, 2)]
        assert _executed(cur, 'is_available = TRUE') == [([100],)]
        assert _executed(cur, 'is_available = FALSE') == [([300],)]
        conn.commit.assert_called_once()

    def test_failure_rolls_back(self, db):
        conn, cur = db
        cur.fetchall.side_effect = RuntimeError('lock timeout')
        with pytest.raises(RuntimeError):
            UpdateNote.apply_sweep(NOW)
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
