"""Active-window bookkeeping for update notes.

Exactly one published note is active at a time: the most recently published
one that has not expired, or, if every published note has expired, simply
the most recently published one. Older notes expire when the active one was
published; notes not yet published carry no expiry. Shop items linked to notes follow the
notes: items from the active or past notes are on sale, items announced
only by future notes are held back.
"""
import logging
from collections import namedtuple

from backend.models import UpdateNote
from backend.timeutils import utcnow

logger = logging.getLogger(__name__)

NoteState = namedtuple('NoteState', ['id', 'published_at', 'valid_until', 'is_active'])
SweepPlan = namedtuple('SweepPlan', ['active_id', 'notes', 'available_item_ids', 'unavailable_item_ids'])


def pick_active(notes, now):
    published = [n for n in notes if n.published_at <= now]
    if not published:
        return None
    published.sort(key=lambda n: (n.published_at, n.id), reverse=True)
    for note in published:
        if note.valid_until is None or note.valid_until >= now:
            return note
    return published[0]


def compute_sweep(notes, links, now):
    """Return the SweepPlan for ``notes`` at ``now``.

    ``links`` is an iterable of ``(note_id, item_id)`` pairs.
    """
    active = pick_active(notes, now)
    if active is None:
        new_notes = [n._replace(is_active=False, valid_until=None) for n in notes]
    else:
        new_notes = []
        for note in notes:
            if note.id == active.id:
                new_notes.append(note._replace(is_active=True, valid_until=None))
            elif (note.published_at, note.id) < (active.published_at, active.id):
                new_notes.append(note._replace(is_active=False, valid_until=active.published_at))
            elif note.published_at > now:
                new_notes.append(note._replace(is_active=False, valid_until=None))
            else:
                # published after the active note but already expired
                new_notes.append(note._replace(is_active=False))

    by_id = {n.id: n for n in new_notes}
    available, linked = set(), set()
    for note_id, item_id in links:
        note = by_id.get(note_id)
        if note is None:
            continue
        linked.add(item_id)
        if note.is_active or note.valid_until is not None:
            available.add(item_id)

    return SweepPlan(
        active_id=active.id if active else None,
        notes=new_notes,
        available_item_ids=available,
        unavailable_item_ids=linked - available,
    )


def update_active_status(now=None):
    plan = UpdateNote.apply_sweep(now or utcnow())
    logger.debug("Update note sweep: active=%s, %s item(s) on sale, %s held back",
                 plan.active_id, len(plan.available_item_ids), len(plan.unavailable_item_ids))
    return plan
