"""
Site content edited by admins: content sections, FAQs, policies and the
public contact information.
"""
import logging
import re

from errors import NotFound, ValidationError
from extensions import db
from models import FAQ, ContactInformation, ContentSection, Policy, User, commit_changes

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
CONTENT_TYPES = ('text', 'html', 'markdown')
CONTACT_FIELDS = ('email', 'phone', 'address', 'website')


class ContentKind:

    def __init__(self, name, model, required, fields, order_by, key=None):
        self.name = name
        self.model = model
        self.required = required
        self.fields = fields
        self.order_by = order_by
        self.key = key


CONTENT_KINDS = {
    kind.name: kind for kind in (
        ContentKind('sections', ContentSection, ('section_key', 'title'),
                    ('section_key', 'title', 'content', 'content_type', 'is_active'),
                    ContentSection.created_at, key='section_key'),
        ContentKind('faqs', FAQ, ('question', 'answer'),
                    ('question', 'answer', 'category', 'sort_order', 'is_active'),
                    FAQ.sort_order),
        ContentKind('policies', Policy, ('policy_key', 'title'),
                    ('policy_key', 'title', 'content', 'version', 'is_active'),
                    Policy.created_at, key='policy_key'),
    )
}


def content_kind(name):
    kind = CONTENT_KINDS.get(name)
    if kind is None:
        raise NotFound(f'Unknown content type: {name}')
    return kind


def list_content(name, include_inactive=False):
    kind = content_kind(name)
    query = kind.model.query
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(kind.order_by, kind.model.id).all()


def get_content_item(name, item_id):
    kind = content_kind(name)
    item = db.session.get(kind.model, item_id)
    if not item:
        raise NotFound('Content not found')
    return item


def _clean_content(kind, data, partial):
    cleaned = {}
    for field in kind.fields:
        if field not in data:
            continue
        value = data[field]
        if field == 'is_active':
            value = bool(value)
        elif field == 'sort_order':
            try:
                value = int(value or 0)
            except (TypeError, ValueError):
                raise ValidationError('Sort order must be a number')
        elif field == 'content_type':
            if value not in CONTENT_TYPES:
                raise ValidationError(f'Content type must be one of: {", ".join(CONTENT_TYPES)}')
        elif isinstance(value, str):
            value = value.strip()
        cleaned[field] = value

    for field in kind.required:
        if (not partial or field in cleaned) and not cleaned.get(field):
            raise ValidationError(f'{field.replace("_", " ").capitalize()} is required')
    return cleaned


def save_content(name, data, item_id=None):
    """Create a content item, or update the one with ``item_id``"""
    kind = content_kind(name)
    item = get_content_item(name, item_id) if item_id else None
    cleaned = _clean_content(kind, data, partial=item is not None)

    if kind.key and kind.key in cleaned:
        existing = kind.model.query.filter(getattr(kind.model, kind.key) == cleaned[kind.key]).first()
        if existing and existing is not item:
            raise ValidationError(f'{kind.key.replace("_", " ").capitalize()} "{cleaned[kind.key]}" already exists')

    if item is None:
        item = kind.model(**cleaned)
        db.session.add(item)
    else:
        for field, value in cleaned.items():
            setattr(item, field, value)

    commit_changes()
    logger.info("[CONTENT] Saved %s %s", name, item.id)
    return item


def toggle_content(name, item_id):
    item = get_content_item(name, item_id)
    item.is_active = not item.is_active
    commit_changes()
    logger.info("[CONTENT] %s %s %s", name, item.id, 'activated' if item.is_active else 'deactivated')
    return item


def get_contact_info():
    """The active contact details, falling back to the first admin's email and phone"""
    contact = ContactInformation.query.filter_by(is_active=True).order_by(ContactInformation.id.desc()).first()
    if contact:
        return contact.to_dict()

    admin_user = User.query.filter_by(user_type='admin').order_by(User.id).first()
    return {
        'id': None,
        'email': admin_user.email if admin_user else None,
        'phone': admin_user.phone if admin_user else None,
        'address': None,
        'website': None,
        'is_active': True,
        'updated_at': None,
    }


def save_contact_info(data):
    cleaned = {}
    for field in CONTACT_FIELDS:
        if field in data:
            cleaned[field] = str(data.get(field) or '').strip() or None
    if cleaned.get('email') and not EMAIL_PATTERN.match(cleaned['email']):
        raise ValidationError('Please enter a valid email address')

    contact = ContactInformation.query.filter_by(is_active=True).order_by(ContactInformation.id.desc()).first()
    if contact is None:
        contact = ContactInformation(is_active=True)
        db.session.add(contact)
    for field, value in cleaned.items():
        setattr(contact, field, value)

    commit_changes()
    logger.info("[CONTENT] Contact information updated")
    return contact
