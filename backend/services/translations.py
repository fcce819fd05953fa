import logging

from backend.models import Translation

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = 'en'
SUPPORTED_LANGUAGES = Translation.LANGUAGES


def resolve_language(req):
    """``?lang=`` wins, then the Accept-Language header, then English."""
    lang = (req.args.get('lang') or '').strip().lower()
    if lang in SUPPORTED_LANGUAGES:
        return lang
    best = req.accept_languages.best_match(list(SUPPORTED_LANGUAGES))
    return best or DEFAULT_LANGUAGE


def apply_translations(entities, entity_type, language, fields):
    """Overlay translated values onto serialized entities (dicts with an ``id``).

    English is the stored value, so it is returned untouched.
    """
    if language == DEFAULT_LANGUAGE or not entities:
        return entities
    found = Translation.get_for(entity_type, [e['id'] for e in entities], language)
    out = []
    for entity in entities:
        overlay = found.get(str(entity['id']), {})
        translated = dict(entity)
        for field in fields:
            if overlay.get(field):
                translated[field] = overlay[field]
        out.append(translated)
    return out


def apply_translation(entity, entity_type, language, fields):
    if entity is None:
        return None
    return apply_translations([entity], entity_type, language, fields)[0]


def save_translations(entity_type, entity_id, payload, fields):
    """Upsert any ``<field>_ko`` values found in an admin payload."""
    saved = []
    for field in fields:
        value = payload.get(f"{field}_ko")
        if value is None:
            continue
        Translation.upsert(entity_type, entity_id, field, 'ko', str(value))
        saved.append(field)
    return saved


def with_admin_translations(entities, entity_type, fields):
    """Add ``<field>_ko`` keys to serialized entities for the admin panel."""
    if not entities:
        return entities
    found = Translation.get_for(entity_type, [e['id'] for e in entities], 'ko')
    out = []
    for entity in entities:
        overlay = found.get(str(entity['id']), {})
        enriched = dict(entity)
        for field in fields:
            enriched[f"{field}_ko"] = overlay.get(field)
        out.append(enriched)
    return out
