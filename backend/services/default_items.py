import logging

from backend.models import GardenItem, UserItem

logger = logging.getLogger(__name__)


def award_default_items(user_id):
    """Give a user every ``default_*`` background (garden and mini modes) and pot.

    Items already owned are skipped. Returns the names granted per group.
    """
    result = {'backgrounds': {'garden': [], 'mini': []}, 'pots': []}
    try:
        defaults = GardenItem.get_defaults()
        granted = set(UserItem.grant(user_id, [item.id for item in defaults]))
    except Exception as e:
        logger.error("Error awarding default items to user %s: %s", user_id, e)
        return result

    for item in defaults:
        if item.id not in granted:
            continue
        if item.category == 'pot':
            result['pots'].append(item.name)
        elif item.mode == 'GARDEN':
            result['backgrounds']['garden'].append(item.name)
        elif item.mode == 'MINI':
            result['backgrounds']['mini'].append(item.name)
    if granted:
        logger.info("Awarded %s default item(s) to user %s", len(granted), user_id)
    return result
