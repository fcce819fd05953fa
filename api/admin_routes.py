import logging

from flask import Blueprint, g, jsonify, request

from backend.auth import admin_required, current_user_id
from backend.errors import NotFoundError, ValidationError
from backend.models import (
    Badge,
    GardenItem,
    MonthlyPlant,
    SuperUser,
    Translation,
    UpdateNote,
    User,
    get_admin_stats,
)
from backend.services import badges, contribution_cache, update_notes, uploads
from backend.services.growth import STAGES
from backend.services.translations import save_translations, with_admin_translations
from backend.timeutils import parse_datetime

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__)


# Payload validation

def _text(data, key, required=True):
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip()


def _int(data, key, minimum=None, maximum=None):
    value = data.get(key)
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{key} is required")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{key} must be a whole number")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number")
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        raise ValidationError(f"{key} is out of range")
    return value


def _url_list(data, key, length=None):
    value = data.get(key)
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise ValidationError(f"{key} must be a list of URLs")
    if length is not None and len(value) != length:
        raise ValidationError(f"{key} must contain exactly {length} images")
    return [v.strip() for v in value]


def clean_monthly_plant(data, partial=False):
    """Validate a monthly plant payload; with ``partial`` only present keys are checked."""
    out = {}
    for key in ('title', 'name', 'description'):
        if not partial or key in data:
            out[key] = _text(data, key)
    for key in ('main_image_url', 'icon_url', 'crop_image_url'):
        if key in data:
            out[key] = _text(data, key, required=False)
    if not partial or 'image_urls' in data:
        out['image_urls'] = _url_list(data, 'image_urls', length=len(STAGES))
    if not partial or 'month' in data:
        out['month'] = _int(data, 'month', 1, 12)
    if not partial or 'year' in data:
        out['year'] = _int(data, 'year', 2000, 9999)
    return out


def clean_garden_item(data, partial=False):
    out = {}
    if not partial or 'name' in data:
        out['name'] = _text(data, 'name')
    if not partial or 'category' in data:
        out['category'] = _text(data, 'category')
        if out['category'] not in GardenItem.CATEGORIES:
            raise ValidationError(f"category must be one of {', '.join(GardenItem.CATEGORIES)}")
    if 'mode' in data or not partial:
        out['mode'] = (_text(data, 'mode', required=False) or 'DEFAULT').upper()
        if out['mode'] not in GardenItem.MODES:
            raise ValidationError('Mode must be either DEFAULT, GARDEN or MINI')
    if not partial or 'image_url' in data:
        out['image_url'] = _text(data, 'image_url')
    if 'icon_url' in data:
        out['icon_url'] = _text(data, 'icon_url', required=False)
    if not partial or 'price' in data:
        out['price'] = _int(data, 'price', minimum=0)
    if 'is_available' in data:
        if not isinstance(data['is_available'], bool):
            raise ValidationError('is_available must be true or false')
        out['is_available'] = data['is_available']
    return out


def clean_badge(data, partial=False):
    return {key: _text(data, key) for key in Badge.FIELDS if not partial or key in data}


def clean_update_note(data, partial=False):
    out = {}
    for key in ('title', 'description'):
        if not partial or key in data:
            out[key] = _text(data, key)
    if 'image_urls' in data:
        out['image_urls'] = _url_list(data, 'image_urls')
    for key in ('published_at', 'valid_until'):
        if key in data:
            try:
                out[key] = parse_datetime(data[key])
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be an ISO-8601 date")
    if partial and 'published_at' in out and out['published_at'] is None:
        raise ValidationError('published_at cannot be cleared')
    item_ids = None
    if 'item_ids' in data:
        if not isinstance(data['item_ids'], list):
            raise ValidationError('item_ids must be a list')
        item_ids = [_int({'id': i}, 'id', minimum=1) for i in data['item_ids']]
    return out, item_ids


def _admin_view(entities, entity_type, fields):
    return with_admin_translations([e.to_dict() for e in entities], entity_type, fields)


# Session and dashboard

@admin_bp.route('/api/admin/session', methods=['GET'])
@admin_required
def admin_session():
    user = User.get_by_id(current_user_id())
    if not user:
        return jsonify({'message': 'User not authenticated'}), 401
    return jsonify({
        'user': {'id': user.id, 'username': user.username, 'image': user.image},
        'role': g.super_user.role,
        'is_admin': True,
    })


@admin_bp.route('/api/admin/stats', methods=['GET'])
@admin_required
def admin_stats():
    stats = get_admin_stats()
    recent = sorted(User.get_all(), key=lambda u: u.id, reverse=True)[:5]
    stats['recent_users'] = [u.to_dict() for u in recent]
    stats['cache'] = contribution_cache.stats()
    return jsonify(stats)


# Monthly plants

@admin_bp.route('/api/admin/monthly-plants', methods=['GET'])
@admin_required
def admin_monthly_plants():
    return jsonify(_admin_view(MonthlyPlant.get_all(), 'MonthlyPlant', MonthlyPlant.TRANSLATABLE))


@admin_bp.route('/api/admin/monthly-plants', methods=['POST'])
@admin_required
def admin_create_monthly_plant():
    data = request.get_json(silent=True) or {}
    plant = MonthlyPlant.create(clean_monthly_plant(data), updated_by_id=g.super_user.id)
    save_translations('MonthlyPlant', plant.id, data, MonthlyPlant.TRANSLATABLE)
    logger.info("Admin %s created monthly plant %s for %s-%s", g.super_user.id, plant.id, plant.year, plant.month)
    return jsonify(_admin_view([plant], 'MonthlyPlant', MonthlyPlant.TRANSLATABLE)[0]), 201


@admin_bp.route('/api/admin/monthly-plants/<int:plant_id>', methods=['GET'])
@admin_required
def admin_monthly_plant(plant_id):
    plant = MonthlyPlant.get_by_id(plant_id)
    if not plant:
        raise NotFoundError('Monthly plant not found')
    return jsonify(_admin_view([plant], 'MonthlyPlant', MonthlyPlant.TRANSLATABLE)[0])


@admin_bp.route('/api/admin/monthly-plants/<int:plant_id>', methods=['PUT'])
@admin_required
def admin_update_monthly_plant(plant_id):
    data = request.get_json(silent=True) or {}
    plant = MonthlyPlant.update(plant_id, clean_monthly_plant(data, partial=True), updated_by_id=g.super_user.id)
    save_translations('MonthlyPlant', plant.id, data, MonthlyPlant.TRANSLATABLE)
    return jsonify(_admin_view([plant], 'MonthlyPlant', MonthlyPlant.TRANSLATABLE)[0])


@admin_bp.route('/api/admin/monthly-plants/<int:plant_id>', methods=['DELETE'])
@admin_required
def admin_delete_monthly_plant(plant_id):
    if not MonthlyPlant.delete(plant_id):
        raise NotFoundError('Monthly plant not found')
    Translation.delete_for('MonthlyPlant', plant_id)
    return jsonify({'message': 'Monthly plant deleted'})


# Garden items

@admin_bp.route('/api/admin/items', methods=['GET'])
@admin_required
def admin_items():
    return jsonify(_admin_view(GardenItem.get_all(), 'GardenItem', GardenItem.TRANSLATABLE))


@admin_bp.route('/api/admin/items', methods=['POST'])
@admin_required
def admin_create_item():
    data = request.get_json(silent=True) or {}
    item = GardenItem.create(clean_garden_item(data), updated_by_id=g.super_user.id)
    save_translations('GardenItem', item.id, data, GardenItem.TRANSLATABLE)
    return jsonify(_admin_view([item], 'GardenItem', GardenItem.TRANSLATABLE)[0]), 201


@admin_bp.route('/api/admin/items/<int:item_id>', methods=['GET'])
@admin_required
def admin_item(item_id):
    item = GardenItem.get_by_id(item_id)
    if not item:
        raise NotFoundError('Item not found')
    return jsonify(_admin_view([item], 'GardenItem', GardenItem.TRANSLATABLE)[0])


@admin_bp.route('/api/admin/items/<int:item_id>', methods=['PUT'])
@admin_required
def admin_update_item(item_id):
    data = request.get_json(silent=True) or {}
    item = GardenItem.update(item_id, clean_garden_item(data, partial=True), updated_by_id=g.super_user.id)
    save_translations('GardenItem', item.id, data, GardenItem.TRANSLATABLE)
    return jsonify(_admin_view([item], 'GardenItem', GardenItem.TRANSLATABLE)[0])


@admin_bp.route('/api/admin/items/<int:item_id>', methods=['DELETE'])
@admin_required
def admin_delete_item(item_id):
    if not GardenItem.delete(item_id):
        raise NotFoundError('Item not found')
    Translation.delete_for('GardenItem', item_id)
    return jsonify({'message': 'Item deleted'})


# Badges

@admin_bp.route('/api/admin/badges', methods=['GET'])
@admin_required
def admin_badges():
    return jsonify(_admin_view(Badge.get_all(), 'Badge', Badge.TRANSLATABLE))


@admin_bp.route('/api/admin/badges', methods=['POST'])
@admin_required
def admin_create_badge():
    data = request.get_json(silent=True) or {}
    badge = Badge.create(clean_badge(data), updated_by_id=g.super_user.id)
    badges.invalidate_cache()
    save_translations('Badge', badge.id, data, Badge.TRANSLATABLE)
    return jsonify(_admin_view([badge], 'Badge', Badge.TRANSLATABLE)[0]), 201


@admin_bp.route('/api/admin/badges/<int:badge_id>', methods=['GET'])
@admin_required
def admin_badge(badge_id):
    badge = Badge.get_by_id(badge_id)
    if not badge:
        raise NotFoundError('Badge not found')
    return jsonify(_admin_view([badge], 'Badge', Badge.TRANSLATABLE)[0])


@admin_bp.route('/api/admin/badges/<int:badge_id>', methods=['PUT'])
@admin_required
def admin_update_badge(badge_id):
    data = request.get_json(silent=True) or {}
    badge = Badge.update(badge_id, clean_badge(data, partial=True), updated_by_id=g.super_user.id)
    badges.invalidate_cache()
    save_translations('Badge', badge.id, data, Badge.TRANSLATABLE)
    return jsonify(_admin_view([badge], 'Badge', Badge.TRANSLATABLE)[0])


@admin_bp.route('/api/admin/badges/<int:badge_id>', methods=['DELETE'])
@admin_required
def admin_delete_badge(badge_id):
    if not Badge.delete(badge_id):
        raise NotFoundError('Badge not found')
    badges.invalidate_cache()
    Translation.delete_for('Badge', badge_id)
    return jsonify({'message': 'Badge deleted'})


# Update notes

@admin_bp.route('/api/admin/update-notes', methods=['GET'])
@admin_required
def admin_update_notes():
    update_notes.update_active_status()
    return jsonify(_admin_view(UpdateNote.get_all(), 'UpdateNote', UpdateNote.TRANSLATABLE))


@admin_bp.route('/api/admin/update-notes/active', methods=['GET'])
@admin_required
def admin_active_update_note():
    update_notes.update_active_status()
    note = UpdateNote.get_active()
    if not note:
        raise NotFoundError('No active update note')
    return jsonify(_admin_view([note], 'UpdateNote', UpdateNote.TRANSLATABLE)[0])


@admin_bp.route('/api/admin/update-notes/<int:note_id>', methods=['GET'])
@admin_required
def admin_update_note(note_id):
    update_notes.update_active_status()
    note = UpdateNote.get_by_id(note_id)
    if not note:
        raise NotFoundError('Update note not found')
    return jsonify(_admin_view([note], 'UpdateNote', UpdateNote.TRANSLATABLE)[0])


@admin_bp.route('/api/admin/update-notes', methods=['POST'])
@admin_required
def admin_create_update_note():
    data = request.get_json(silent=True) or {}
    fields, item_ids = clean_update_note(data)
    note = UpdateNote.create(fields, item_ids=item_ids, updated_by_id=g.super_user.id)
    save_translations('UpdateNote', note.id, data, UpdateNote.TRANSLATABLE)
    update_notes.update_active_status()
    note = UpdateNote.get_by_id(note.id)
    return jsonify(_admin_view([note], 'UpdateNote', UpdateNote.TRANSLATABLE)[0]), 201


@admin_bp.route('/api/admin/update-notes/<int:note_id>', methods=['PUT'])
@admin_required
def admin_edit_update_note(note_id):
    data = request.get_json(silent=True) or {}
    fields, item_ids = clean_update_note(data, partial=True)
    UpdateNote.update(note_id, fields, item_ids=item_ids, updated_by_id=g.super_user.id)
    save_translations('UpdateNote', note_id, data, UpdateNote.TRANSLATABLE)
    update_notes.update_active_status()
    note = UpdateNote.get_by_id(note_id)
    return jsonify(_admin_view([note], 'UpdateNote', UpdateNote.TRANSLATABLE)[0])


@admin_bp.route('/api/admin/update-notes/<int:note_id>', methods=['DELETE'])
@admin_required
def admin_delete_update_note(note_id):
    if not UpdateNote.delete(note_id):
        raise NotFoundError('Update note not found')
    Translation.delete_for('UpdateNote', note_id)
    update_notes.update_active_status()
    return jsonify({'message': 'Update note deleted'})


# Admin users

def _require_full_admin():
    if g.super_user.role != 'ADMIN':
        return jsonify({'message': 'Only ADMIN role can manage admins'}), 403
    return None


@admin_bp.route('/api/admin/users', methods=['GET'])
@admin_required
def admin_users():
    return jsonify([s.to_dict() for s in SuperUser.get_all()])


@admin_bp.route('/api/admin/users', methods=['POST'])
@admin_required
def admin_add_user():
    denied = _require_full_admin()
    if denied:
        return denied
    data = request.get_json(silent=True) or {}
    user_id = data.get('user_id')
    if user_id is None and data.get('username'):
        user = User.get_by_username(data['username'])
        if not user:
            raise NotFoundError('User not found')
        user_id = user.id
    user_id = _int({'user_id': user_id}, 'user_id', minimum=1)
    super_user = SuperUser.create(user_id, (data.get('role') or 'ADMIN').upper())
    logger.info("Admin %s granted %s to user %s", g.super_user.id, super_user.role, user_id)
    return jsonify(super_user.to_dict()), 201


@admin_bp.route('/api/admin/users/<int:super_user_id>', methods=['PUT'])
@admin_required
def admin_update_user(super_user_id):
    denied = _require_full_admin()
    if denied:
        return denied
    data = request.get_json(silent=True) or {}
    role = _text(data, 'role').upper()
    return jsonify(SuperUser.update_role(super_user_id, role).to_dict())


@admin_bp.route('/api/admin/users/<int:super_user_id>', methods=['DELETE'])
@admin_required
def admin_remove_user(super_user_id):
    denied = _require_full_admin()
    if denied:
        return denied
    if super_user_id == g.super_user.id:
        raise ValidationError('You cannot remove yourself')
    if not SuperUser.delete(super_user_id):
        raise NotFoundError('Admin not found')
    return jsonify({'message': 'Admin removed'})


# Translations

@admin_bp.route('/api/admin/translations', methods=['PUT'])
@admin_required
def admin_put_translations():
    data = request.get_json(silent=True) or {}
    entries = data.get('translations') if isinstance(data.get('translations'), list) else [data]
    saved = 0
    for entry in entries:
        entity_type = _text(entry, 'entity_type')
        if entity_type not in Translation.ENTITY_TYPES:
            raise ValidationError(f"Unsupported entity type: {entity_type}")
        language = (_text(entry, 'language', required=False) or 'ko').lower()
        if language not in Translation.LANGUAGES:
            raise ValidationError(f"Unsupported language: {language}")
        entity_id = entry.get('entity_id')
        if entity_id is None or str(entity_id).strip() == '':
            raise ValidationError('entity_id is required')
        Translation.upsert(entity_type, entity_id, _text(entry, 'field'), language, _text(entry, 'value'))
        saved += 1
    return jsonify({'message': 'Translations saved', 'count': saved})


# Uploads

def _form_file(name):
    file_storage = request.files.get(name)
    if file_storage is None or not file_storage.filename:
        raise ValidationError(f"{name} is required")
    return file_storage


@admin_bp.route('/api/admin/upload/plants', methods=['POST'])
@admin_required
def upload_monthly_plant():
    """Upload main, icon and the five stage images, then create the monthly plant."""
    form = request.form
    name = _text(form, 'name')
    main = uploads.upload_image(_form_file('mainImage'), 'plants', form.get('mainFilename'))
    icon = uploads.upload_image(_form_file('iconImage'), 'plants', form.get('iconFilename'))
    stage_urls = []
    for stage in STAGES:
        result = uploads.upload_image(_form_file(stage), 'plants', uploads.public_id_for(f"{name}_{stage}"))
        stage_urls.append(result['secure_url'])
    crop_url = None
    if request.files.get('cropImage'):
        crop_url = uploads.upload_image(request.files['cropImage'], 'plants',
                                        uploads.public_id_for(f"{name}_crop"))['secure_url']

    payload = {
        'title': form.get('title') or name,
        'name': name,
        'description': form.get('description') or '',
        'main_image_url': main['secure_url'],
        'icon_url': icon['secure_url'],
        'crop_image_url': crop_url,
        'image_urls': stage_urls,
        'month': form.get('month'),
        'year': form.get('year'),
    }
    if not payload['description']:
        raise ValidationError('description is required')
    plant = MonthlyPlant.create(clean_monthly_plant(payload), updated_by_id=g.super_user.id)
    save_translations('MonthlyPlant', plant.id, form, MonthlyPlant.TRANSLATABLE)
    return jsonify({'data': {'monthly_plant': plant.to_dict()}}), 201


@admin_bp.route('/api/admin/upload/garden-items', methods=['POST'])
@admin_required
def upload_garden_item():
    form = request.form
    category = (form.get('category') or '').lower()
    if category not in ('background', 'pot'):
        raise ValidationError('category must be background or pot')
    target = 'backgrounds' if category == 'background' else 'pots'
    main = uploads.upload_image(_form_file('mainImage'), target, form.get('mainFilename'))
    icon = uploads.upload_image(_form_file('iconImage'), target, form.get('iconFilename'))
    payload = {
        'name': form.get('name') or form.get('mainFilename') or uploads.public_id_for(request.files['mainImage'].filename),
        'category': category,
        'mode': form.get('mode') or 'DEFAULT',
        'image_url': main['secure_url'],
        'icon_url': icon['secure_url'],
        'price': form.get('price') or 0,
    }
    item = GardenItem.create(clean_garden_item(payload), updated_by_id=g.super_user.id)
    save_translations('GardenItem', item.id, form, GardenItem.TRANSLATABLE)
    return jsonify({'data': {'garden_item': item.to_dict()}}), 201


@admin_bp.route('/api/admin/upload/badges', methods=['POST'])
@admin_required
def upload_badge():
    form = request.form
    image = uploads.upload_image(_form_file('image'), 'badges', form.get('filename'))
    payload = {'name': form.get('name'), 'condition': form.get('condition'), 'image_url': image['secure_url']}
    badge = Badge.create(clean_badge(payload), updated_by_id=g.super_user.id)
    badges.invalidate_cache()
    save_translations('Badge', badge.id, form, Badge.TRANSLATABLE)
    return jsonify({'data': {'badge': badge.to_dict()}}), 201


@admin_bp.route('/api/admin/upload/update-notes', methods=['POST'])
@admin_required
def upload_update_note_image():
    image = uploads.upload_image(_form_file('image'), 'update-notes', request.form.get('filename'))
    return jsonify({'data': {'url': image['secure_url'], 'public_id': image.get('public_id')}}), 201


@admin_bp.route('/api/admin/upload/icons/<int:item_id>', methods=['POST'])
@admin_required
def upload_item_icon(item_id):
    item = GardenItem.get_by_id(item_id)
    if not item:
        raise NotFoundError('Item not found')
    target = {'background': 'backgrounds', 'pot': 'pots'}.get(item.category, 'plants')
    image_file = _form_file('image')
    filename = request.form.get('filename') or uploads.public_id_for(image_file.filename)
    image = uploads.upload_image(image_file, target, f"{filename}_icon" if filename else None)
    item = GardenItem.update(item_id, {'icon_url': image['secure_url']}, updated_by_id=g.super_user.id)
    return jsonify({'data': {'garden_item': item.to_dict()}})
