import logging

from flask import Blueprint, current_app, g, jsonify, request

from backend.auth import client_auth_required, current_user_id, logout_user
from backend.errors import NotFoundError, ValidationError
from backend.extensions import limiter
from backend.models import (
    Badge,
    GardenItem,
    GitHubActivity,
    MonthlyPlant,
    Seed,
    UpdateNote,
    User,
    UserBadge,
    UserCrop,
    UserItem,
    UserPlant,
)
from backend.services import badges, contribution_cache, github, growth, update_notes
from backend.services.translations import apply_translation, apply_translations, resolve_language
from backend.timeutils import month_year_from_request

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__)

# Utility functions

def _json_body():
    return request.get_json(silent=True) or {}


def _require_int(data, key, minimum=None):
    value = data.get(key)
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{key} is required")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{key} must be a whole number")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be at least {minimum}")
    return value


def _current_user():
    user = User.get_by_id(current_user_id())
    if not user:
        raise NotFoundError('User not found')
    return user


def _translated(entities, entity_type, fields):
    return apply_translations([e.to_dict() for e in entities], entity_type, resolve_language(request), fields)


def _note_payload(note):
    data = apply_translation(note.to_dict(), 'UpdateNote', resolve_language(request), UpdateNote.TRANSLATABLE)
    if note.item_ids:
        wanted = set(note.item_ids)
        items = [i for i in GardenItem.get_all() if i.id in wanted]
        data['items'] = _translated(items, 'GardenItem', GardenItem.TRANSLATABLE)
    else:
        data['items'] = []
    return data


def activity_stats(activities, month, year):
    """Summary numbers for the activity dashboard."""
    total = sum(a.count for a in activities)
    best = max(activities, key=lambda a: a.count, default=None)
    current = next((a.count for a in activities if a.year == year and a.month == month), 0)
    return {
        'total_contributions': total,
        'months_tracked': len(activities),
        'average_per_month': round(total / len(activities), 2) if activities else 0,
        'best_month': {'year': best.year, 'month': best.month, 'count': best.count} if best else None,
        'current_month': {'year': year, 'month': month, 'count': current},
    }


# Users

@api_bp.route('/api/users/profile', methods=['GET'])
@client_auth_required
def user_profile():
    user = _current_user()
    month, year = month_year_from_request(request)
    refreshed = growth.refresh_user_state(user, month, year, current_app.config['PROFILE_REFRESH_SECONDS'])
    new_badges = list((refreshed or {}).get('new_badges') or [])
    if refreshed is not None or not UserBadge.owned_badge_ids(user.id):
        new_badges += badges.check_and_award_badges(user.id, month=month, year=year)

    equipped = UserItem.get_by_user(user.id, equipped_only=True)
    return jsonify({
        'user': {'id': user.id, 'username': user.username, 'image': user.image, 'is_admin': bool(getattr(g, 'is_admin', False))},
        'seed_count': Seed.get_count(user.id),
        'badges': UserBadge.get_by_user(user.id),
        'equipped': {
            'backgrounds': [ui.item for ui in equipped
                            if ui.item['category'] == 'background' and ui.item['mode'] in ('GARDEN', 'MINI')],
            'pots': [ui.item for ui in equipped if ui.item['category'] == 'pot'],
        },
        'plants': [p.to_dict() for p in UserPlant.get_by_user(user.id)],
        'new_badges': new_badges,
    })


@api_bp.route('/api/users/me', methods=['DELETE'])
@client_auth_required
def delete_account():
    user_id = current_user_id()
    github.stop_auto_sync(user_id)
    contribution_cache.clear_user(user_id)
    if not User.delete(user_id):
        raise NotFoundError('User not found')
    logger.info("User %s deleted their account", user_id)
    return logout_user(jsonify({'message': 'Account deleted'}))


# Activities

@api_bp.route('/api/activities', methods=['GET'])
@client_auth_required
def list_activities():
    return jsonify([a.to_dict() for a in GitHubActivity.get_by_user(current_user_id())])


@api_bp.route('/api/activities/stats', methods=['GET'])
@client_auth_required
def activities_stats():
    month, year = month_year_from_request(request)
    activities = GitHubActivity.get_by_user(current_user_id())
    return jsonify(activity_stats(activities, month, year))


@api_bp.route('/api/activities/analytics', methods=['GET'])
@client_auth_required
def activities_analytics():
    _, current_year = month_year_from_request(request)
    year = request.args.get('year', type=int) or current_year
    months = contribution_cache.get_year(current_user_id(), year)
    series = [{'month': m, 'count': months.get(m, 0)} for m in range(1, 13)]
    return jsonify({'year': year, 'months': series, 'total': sum(s['count'] for s in series)})


@api_bp.route('/api/activities/<int:activity_id>', methods=['GET'])
@client_auth_required
def get_activity(activity_id):
    activity = GitHubActivity.get_by_id(current_user_id(), activity_id)
    if not activity:
        raise NotFoundError('Activity not found')
    return jsonify(activity.to_dict())


@api_bp.route('/api/activities/sync', methods=['POST'])
@client_auth_required
def sync_activities():
    user = _current_user()
    month, year = month_year_from_request(request)
    activities = github.sync_user_activities(user)
    User.mark_synced(user.id)
    new_badges = badges.check_and_award_badges(user.id, month=month, year=year)
    return jsonify({'activities': [a.to_dict() for a in activities], 'new_badges': new_badges})


@api_bp.route('/api/activities/sync/auto', methods=['GET'])
@client_auth_required
def auto_sync_status():
    return jsonify({'enabled': github.get_auto_sync_status(current_user_id())})


@api_bp.route('/api/activities/sync/auto', methods=['POST'])
@limiter.limit(lambda: current_app.config['AUTO_SYNC_RATE_LIMIT'])
@client_auth_required
def toggle_auto_sync():
    data = _json_body()
    if not isinstance(data.get('enabled'), bool):
        raise ValidationError('enabled must be true or false')
    user_id = current_user_id()
    if data['enabled']:
        if not github.setup_auto_sync(user_id):
            raise NotFoundError('User not found')
        message = 'Auto sync enabled'
    else:
        github.stop_auto_sync(user_id)
        message = 'Auto sync disabled'
    return jsonify({'message': message, 'enabled': github.get_auto_sync_status(user_id)})


# Plants

@api_bp.route('/api/plants', methods=['GET'])
@client_auth_required
def list_plants():
    return jsonify([p.to_dict() for p in UserPlant.get_by_user(current_user_id())])


@api_bp.route('/api/plants/current', methods=['GET'])
@client_auth_required
def current_plant():
    month, year = month_year_from_request(request)
    monthly_plant = MonthlyPlant.get_by_month(month, year)
    if not monthly_plant:
        raise NotFoundError('No plant available for current month')
    user_plant = UserPlant.get_for_monthly_plant(current_user_id(), monthly_plant.id)
    return jsonify({
        'monthly_plant': apply_translation(monthly_plant.to_dict(), 'MonthlyPlant',
                                           resolve_language(request), MonthlyPlant.TRANSLATABLE),
        'user_plant': user_plant.to_dict() if user_plant else None,
        'can_plant': user_plant is None,
    })


@api_bp.route('/api/plants/<int:plant_id>', methods=['GET'])
@client_auth_required
def get_plant(plant_id):
    plant = UserPlant.get_by_id(current_user_id(), plant_id)
    if not plant:
        raise NotFoundError('Plant not found')
    return jsonify(plant.to_dict())


@api_bp.route('/api/plants', methods=['POST'])
@client_auth_required
def create_plant():
    monthly_plant_id = _require_int(_json_body(), 'monthly_plant_id', minimum=1)
    monthly_plant = MonthlyPlant.get_by_id(monthly_plant_id)
    if not monthly_plant:
        raise NotFoundError('Monthly plant not found')
    month, year = month_year_from_request(request)
    if (monthly_plant.month, monthly_plant.year) != (month, year):
        raise ValidationError("You can only plant the current month's plant")

    user_id = current_user_id()
    plant = UserPlant.create(user_id, monthly_plant.id)
    growth_result = growth.auto_update_all_user_plants(user_id, month, year)
    new_badges = list((growth_result or {}).get('new_badges') or [])
    new_badges += badges.check_and_award_badges(user_id, month=month, year=year)
    plant = UserPlant.get_by_id(user_id, plant.id) or plant
    return jsonify({'plant': plant.to_dict(), 'new_badges': new_badges}), 201


@api_bp.route('/api/plants/<int:plant_id>', methods=['DELETE'])
@client_auth_required
def delete_plant(plant_id):
    if not UserPlant.delete(current_user_id(), plant_id):
        raise NotFoundError('Plant not found')
    return jsonify({'message': 'Plant deleted successfully'})


@api_bp.route('/api/plants/<int:plant_id>/growth', methods=['POST'])
@client_auth_required
def update_plant_growth(plant_id):
    user_id = current_user_id()
    plant = UserPlant.get_by_id(user_id, plant_id)
    if not plant:
        raise NotFoundError('Plant not found')
    month, year = plant.monthly_plant['month'], plant.monthly_plant['year']
    result = growth.auto_update_all_user_plants(user_id, month, year)
    plant = UserPlant.get_by_id(user_id, plant_id)
    return jsonify({'plant': plant.to_dict(), 'growth': result})


# Seeds

@api_bp.route('/api/seeds', methods=['GET'])
@client_auth_required
def get_seeds():
    return jsonify({'count': Seed.get_count(current_user_id())})


@api_bp.route('/api/seeds/add', methods=['POST'])
@client_auth_required
def add_seeds():
    amount = _require_int(_json_body(), 'count', minimum=1)
    user_id = current_user_id()
    count = Seed.add(user_id, amount)
    return jsonify({'count': count, 'new_badges': badges.check_and_award_badges(user_id)})


@api_bp.route('/api/seeds/use', methods=['POST'])
@client_auth_required
def use_seeds():
    amount = _require_int(_json_body(), 'count', minimum=1)
    user_id = current_user_id()
    count = Seed.use(user_id, amount)
    return jsonify({'count': count, 'new_badges': badges.check_and_award_badges(user_id)})


# Garden

@api_bp.route('/api/garden/items', methods=['GET'])
@client_auth_required
def shop_items():
    category = request.args.get('category')
    if category and category not in GardenItem.CATEGORIES:
        raise ValidationError(f"Unknown category: {category}")
    items = GardenItem.get_all(category=category, available_only=True)
    return jsonify(_translated(items, 'GardenItem', GardenItem.TRANSLATABLE))


@api_bp.route('/api/garden/items/<int:item_id>', methods=['GET'])
@client_auth_required
def shop_item(item_id):
    item = GardenItem.get_by_id(item_id)
    if not item:
        raise NotFoundError('Item not found')
    return jsonify(_translated([item], 'GardenItem', GardenItem.TRANSLATABLE)[0])


@api_bp.route('/api/garden/user-items', methods=['GET'])
@client_auth_required
def user_items():
    category = request.args.get('category')
    items = UserItem.get_by_user(current_user_id(), category=category)
    return jsonify([ui.to_dict() for ui in items])


@api_bp.route('/api/garden/user-items', methods=['POST'])
@client_auth_required
def purchase_item():
    item_id = _require_int(_json_body(), 'item_id', minimum=1)
    user_id = current_user_id()
    user_item_id, seed_count = UserItem.purchase(user_id, item_id)
    logger.info("User %s bought item %s", user_id, item_id)
    return jsonify({
        'user_item': UserItem.get_by_id(user_id, user_item_id).to_dict(),
        'seed_count': seed_count,
        'new_badges': badges.check_and_award_badges(user_id),
    }), 201


@api_bp.route('/api/garden/user-items/<int:user_item_id>', methods=['PUT'])
@client_auth_required
def equip_item(user_item_id):
    equipped = _json_body().get('equipped')
    if not isinstance(equipped, bool):
        raise ValidationError('equipped must be true or false')
    user_item = UserItem.set_equipped(current_user_id(), user_item_id, equipped)
    return jsonify(user_item.to_dict())


@api_bp.route('/api/garden/crops', methods=['GET'])
@client_auth_required
def list_crops():
    return jsonify([c.to_dict() for c in UserCrop.get_by_user(current_user_id())])


@api_bp.route('/api/garden/crops/sell', methods=['POST'])
@client_auth_required
def sell_crops():
    data = _json_body()
    crops = data.get('crops')
    if not isinstance(crops, list) or not crops:
        raise ValidationError('crops must be a non-empty list')
    items = []
    for entry in crops:
        if not isinstance(entry, dict):
            raise ValidationError('Each crop needs monthly_plant_id and quantity')
        items.append((_require_int(entry, 'monthly_plant_id', minimum=1), _require_int(entry, 'quantity')))
    total_price = _require_int(data, 'total_price', minimum=0)

    user_id = current_user_id()
    seed_count = UserCrop.sell(user_id, items, total_price)
    logger.info("User %s sold %s crop(s) for %s seeds", user_id, sum(q for _, q in items), total_price)
    return jsonify({
        'seed_count': seed_count,
        'crops': [c.to_dict() for c in UserCrop.get_by_user(user_id)],
        'new_badges': badges.check_and_award_badges(user_id),
    })


@api_bp.route('/api/garden/badges', methods=['GET'])
@client_auth_required
def list_badges():
    return jsonify(_translated(Badge.get_all(), 'Badge', Badge.TRANSLATABLE))


@api_bp.route('/api/garden/user-badges', methods=['GET'])
@client_auth_required
def list_user_badges():
    owned = UserBadge.get_by_user(current_user_id())
    for badge in owned:
        badge['id'] = badge['badge_id']
    return jsonify(apply_translations(owned, 'Badge', resolve_language(request), Badge.TRANSLATABLE))


@api_bp.route('/api/garden/monthly-plants', methods=['GET'])
@client_auth_required
def list_monthly_plants():
    return jsonify(_translated(MonthlyPlant.get_all(), 'MonthlyPlant', MonthlyPlant.TRANSLATABLE))


@api_bp.route('/api/garden/update-history', methods=['GET'])
@client_auth_required
def update_history():
    update_notes.update_active_status()
    return jsonify([_note_payload(n) for n in UpdateNote.get_published()])


# Public

@api_bp.route('/api/public/monthly-plant', methods=['GET'])
def public_monthly_plant():
    month, year = month_year_from_request(request)
    monthly_plant = MonthlyPlant.get_by_month(month, year)
    if not monthly_plant:
        raise NotFoundError('No plant available for current month')
    return jsonify(apply_translation(monthly_plant.to_dict(), 'MonthlyPlant',
                                     resolve_language(request), MonthlyPlant.TRANSLATABLE))


@api_bp.route('/api/public/current-update', methods=['GET'])
def public_current_update():
    update_notes.update_active_status()
    note = UpdateNote.get_active()
    if not note:
        raise NotFoundError('No active update note')
    return jsonify(_note_payload(note))


@api_bp.route('/api/public/contributions/<username>', methods=['GET'])
def public_contributions(username):
    period = request.args.get('period')
    year = request.args.get('year')
    if year is not None and not year.isdigit():
        raise ValidationError('year must be a number')
    contributions = github.fetch_public_contributions(username, period=period, year=year)
    return jsonify({
        'username': username,
        'contributions': contributions,
        'total': sum(c['count'] for c in contributions),
    })
