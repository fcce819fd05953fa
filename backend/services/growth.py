import logging
from collections import namedtuple
from datetime import timedelta

from backend.models import MonthlyPlant, User, UserPlant
from backend.services import contribution_cache
from backend.timeutils import current_month_year, utcnow

logger = logging.getLogger(__name__)

STAGES = ('SEED', 'SPROUT', 'GROWING', 'MATURE', 'HARVEST')

# highest first; a stage is reached once the count meets its threshold
STAGE_THRESHOLDS = (
    ('HARVEST', 70),
    ('MATURE', 50),
    ('GROWING', 30),
    ('SPROUT', 10),
    ('SEED', 0),
)

HARVEST_THRESHOLD = 70

GrowthPlan = namedtuple('GrowthPlan', ['harvest_count', 'new_crops', 'stage', 'remainder'])


def stage_for(contributions):
    for stage, threshold in STAGE_THRESHOLDS:
        if contributions >= threshold:
            return stage
    return 'SEED'


def plan_harvest(contributions, harvest_count):
    """Work out what a plant should look like for a month's contribution count.

    Every HARVEST_THRESHOLD contributions yields one harvest. Harvests already
    recorded are never issued again and the count never goes down, so running
    this twice with the same input produces no new crops the second time.
    """
    contributions = max(int(contributions or 0), 0)
    target = contributions // HARVEST_THRESHOLD
    new_crops = max(target - harvest_count, 0)
    remainder = contributions - target * HARVEST_THRESHOLD
    return GrowthPlan(
        harvest_count=max(target, harvest_count),
        new_crops=new_crops,
        stage=stage_for(remainder),
        remainder=remainder,
    )


def stage_image_url(image_urls, stage):
    if not image_urls:
        return None
    try:
        index = STAGES.index(stage)
    except ValueError:
        index = 0
    return image_urls[index] if index < len(image_urls) else image_urls[0]


def needs_refresh(last_synced_at, interval_seconds, now=None):
    if last_synced_at is None:
        return True
    now = now or utcnow()
    return now - last_synced_at >= timedelta(seconds=interval_seconds)


def auto_update_all_user_plants(user_id, month=None, year=None):
    """Reconcile the user's plant for the given month against their contributions.

    Returns a dict describing the outcome, or None when there is no monthly
    plant or the user has not planted it.
    """
    if month is None or year is None:
        month, year = current_month_year()
    monthly_plant = MonthlyPlant.get_by_month(month, year)
    if not monthly_plant:
        logger.debug("No monthly plant for %s-%s", year, month)
        return None
    contributions = contribution_cache.get_monthly_contribution(user_id, year, month)
    plan = UserPlant.reconcile(user_id, monthly_plant.id, contributions)
    if plan is None:
        return None

    new_badges = []
    if plan.new_crops:
        logger.info("User %s harvested %s crop(s) of %s", user_id, plan.new_crops, monthly_plant.name)
        from backend.services.badges import check_and_award_badges
        new_badges = check_and_award_badges(user_id, month=month, year=year)

    return {
        'monthly_plant_id': monthly_plant.id,
        'contributions': contributions,
        'harvest_count': plan.harvest_count,
        'harvested': plan.new_crops,
        'stage': plan.stage,
        'new_badges': new_badges,
    }


def refresh_user_state(user, month, year, interval_seconds):
    """Sync from GitHub and reconcile plants, at most once per interval.

    GitHub failures are logged; the stored state is used instead.
    """
    if not needs_refresh(user.last_synced_at, interval_seconds):
        return None
    from backend.services import github
    try:
        github.sync_user_activities(user, reconcile=False)
    except Exception as e:
        logger.warning("GitHub sync failed for %s, using stored activity: %s", user.username, e)
    User.mark_synced(user.id)
    return auto_update_all_user_plants(user.id, month, year)
