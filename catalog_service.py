import logging

from commission_service import is_cycle_due
from errors import NotFound, PermissionDenied, ValidationError
from extensions import db
from geo_service import distance_zone, format_distance, haversine_distance, parse_coordinates
from models import ProviderProfile, Service, User, commit_changes
from notification_service import notify, notify_admins
from verification_service import require_approved_provider

logger = logging.getLogger(__name__)

CATEGORIES = (
    ('cleaning', 'Cleaning'),
    ('beauty', 'Beauty & Wellness'),
    ('moving', 'Moving & Shifting'),
    ('education', 'Education & Tutoring'),
    ('tech', 'Tech Support'),
    ('tailoring', 'Tailoring'),
    ('food', 'Food & Catering'),
    ('pet_care', 'Pet Care'),
    ('vehicle', 'Vehicle Services'),
    ('repair', 'Home Repair'),
    ('yoga', 'Yoga & Fitness'),
    ('events', 'Events'),
)
CATEGORY_CODES = tuple(code for code, _ in CATEGORIES)

SORT_OPTIONS = ('distance', 'priority', 'rating', 'combined')

_EDITABLE_FIELDS = ('title', 'description', 'category', 'base_price', 'price_negotiable',
                    'duration_hours', 'service_area', 'images')


def _clean_service_data(data, partial=False):
    cleaned = {}
    if not partial or 'title' in data:
        title = (data.get('title') or '').strip()
        if not title:
            raise ValidationError('Title is required')
        cleaned['title'] = title
    if not partial or 'description' in data:
        cleaned['description'] = (data.get('description') or '').strip()
    if not partial or 'category' in data:
        if data.get('category') not in CATEGORY_CODES:
            raise ValidationError('Please choose a valid category')
        cleaned['category'] = data['category']
    if not partial or 'base_price' in data:
        try:
            price = float(data.get('base_price'))
        except (TypeError, ValueError):
            raise ValidationError('Base price must be a number')
        if price <= 0:
            raise ValidationError('Base price must be greater than zero')
        cleaned['base_price'] = price
    if 'price_negotiable' in data:
        cleaned['price_negotiable'] = bool(data['price_negotiable'])
    if 'duration_hours' in data:
        duration = data.get('duration_hours')
        try:
            cleaned['duration_hours'] = float(duration) if duration not in (None, '') else None
        except (TypeError, ValueError):
            raise ValidationError('Duration must be a number')
    for list_field in ('service_area', 'images'):
        if list_field in data:
            value = data.get(list_field) or []
            if not isinstance(value, list):
                raise ValidationError(f'{list_field} must be a list')
            cleaned[list_field] = [str(item) for item in value]
    return cleaned


def get_service(service_id):
    service = db.session.get(Service, service_id)
    if not service:
        raise NotFound('Service not found')
    return service


def _owned_service(user, service_id):
    service = get_service(service_id)
    if service.provider_id != user.id:
        raise PermissionDenied('You can only manage your own services')
    return service


def create_service(user, data):
    profile = require_approved_provider(user)
    service = Service(provider_id=user.id, is_active=False, admin_approved=False,
                      **_clean_service_data(data))
    db.session.add(service)
    notify_admins('New Service Pending Approval',
                  f'{profile.business_name} added "{service.title}".', 'service_approval')
    commit_changes()
    logger.info("[SERVICES] Provider %s created service %s", user.id, service.id)
    return service


def update_service(user, service_id, data):
    """Apply an edit; the service goes back to admin review"""
    service = _owned_service(user, service_id)
    for field, value in _clean_service_data(data, partial=True).items():
        setattr(service, field, value)
    service.admin_approved = False
    service.is_active = False
    service.rejection_reason = None
    notify_admins('Service Updated', f'"{service.title}" was edited and needs approval.', 'service_approval')
    commit_changes()
    return service


def toggle_service(user, service_id, active=None):
    service = _owned_service(user, service_id)
    target = (not service.is_active) if active is None else bool(active)
    if target:
        if not service.admin_approved:
            raise ValidationError('This service is waiting for admin approval')
        if is_cycle_due(user.id):
            raise PermissionDenied('Please pay your pending commission to reactivate your services')
    service.is_active = target
    commit_changes()
    return service


def delete_service(user, service_id):
    service = _owned_service(user, service_id)
    if service.bookings.count():
        # keep history for bookings that reference it
        service.is_active = False
    else:
        db.session.delete(service)
    commit_changes()


def provider_services(user_id):
    return Service.query.filter_by(provider_id=user_id).order_by(Service.created_at.desc()).all()


def pending_services():
    return (
        Service.query
        .filter_by(admin_approved=False)
        .filter(Service.rejection_reason.is_(None))
        .order_by(Service.created_at)
        .all()
    )


def approve_service(service_id, admin):
    service = get_service(service_id)
    service.admin_approved = True
    service.rejection_reason = None
    # stays off until the pending commission is paid
    service.is_active = not is_cycle_due(service.provider_id)
    if service.is_active:
        content = f'Your service "{service.title}" is now live.'
    else:
        content = (f'Your service "{service.title}" was approved and will go live once your '
                   'pending commission payment is approved.')
    notify(service.provider_id, 'Service Approved', content, 'service_update')
    commit_changes()
    logger.info("[SERVICES] Service %s approved by admin %s", service.id, admin.id)
    return service


def reject_service(service_id, admin, reason=None):
    service = get_service(service_id)
    service.admin_approved = False
    service.is_active = False
    service.rejection_reason = (reason or '').strip() or 'Not approved'
    content = f'Your service "{service.title}" was not approved.'
    if reason:
        content = f'{content} Reason: {reason}'
    notify(service.provider_id, 'Service Rejected', content, 'service_update')
    commit_changes()
    logger.info("[SERVICES] Service %s rejected by admin %s", service.id, admin.id)
    return service


def priority_score(zone_priority, profile):
    score = zone_priority
    if profile.verified_pro:
        score += 20
    score += (profile.rating or 0) * 2
    score += min((profile.total_jobs or 0) / 10, 10)
    return score


def _listing(service, profile, distance=None):
    data = service.to_dict()
    data['provider'] = {
        'id': service.provider_id,
        'full_name': service.provider.full_name,
        'business_name': profile.business_name if profile else None,
        'rating': profile.rating if profile else 0.0,
        'total_jobs': profile.total_jobs if profile else 0,
        'verified_pro': bool(profile.verified_pro) if profile else False,
        'latitude': profile.latitude if profile else None,
        'longitude': profile.longitude if profile else None,
    }
    if distance is not None:
        name, _, zone_priority = distance_zone(distance)
        data['distance'] = round(distance)
        data['distance_text'] = format_distance(distance)
        data['distance_zone'] = name
        data['priority_score'] = priority_score(zone_priority, profile)
    return data


def escape_like(text):
    return text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def search_services(category=None, text=None, lat=None, lng=None, radius_km=None, sort_by='distance'):
    """Active, approved services of providers in good standing.

    With a point, services get a distance and zone; providers without
    coordinates are left out, as are those beyond ``radius_km``.
    """
    query = (
        db.session.query(Service, ProviderProfile)
        .join(User, User.id == Service.provider_id)
        .outerjoin(ProviderProfile, ProviderProfile.user_id == Service.provider_id)
        .filter(Service.is_active.is_(True), Service.admin_approved.is_(True))
        .filter(User.is_banned.is_(False))
    )
    if category:
        if category not in CATEGORY_CODES:
            raise ValidationError('Unknown category')
        query = query.filter(Service.category == category)
    if text:
        pattern = f'%{escape_like(text.strip())}%'
        query = query.filter(db.or_(
            Service.title.ilike(pattern, escape='\\'),
            Service.description.ilike(pattern, escape='\\'),
            ProviderProfile.business_name.ilike(pattern, escape='\\'),
        ))

    rows = query.order_by(Service.created_at.desc()).all()

    if lat is None or lng is None:
        return [_listing(service, profile) for service, profile in rows]

    if sort_by not in SORT_OPTIONS:
        raise ValidationError(f'sort_by must be one of: {", ".join(SORT_OPTIONS)}')
    lat, lng = parse_coordinates(lat, lng)
    radius = float(radius_km) * 1000 if radius_km else None

    results = []
    for service, profile in rows:
        if not profile or profile.latitude is None or profile.longitude is None:
            continue
        distance = haversine_distance(lat, lng, profile.latitude, profile.longitude)
        if radius is not None and distance > radius:
            continue
        results.append(_listing(service, profile, distance))

    def zone_rank(item):
        return distance_zone(item['distance'])[2]

    if sort_by == 'priority':
        results.sort(key=lambda item: (-item['priority_score'], item['distance']))
    elif sort_by == 'rating':
        results.sort(key=lambda item: (-(item['provider']['rating'] or 0), item['distance']))
    elif sort_by == 'combined':
        results.sort(key=lambda item: (-zone_rank(item), -item['priority_score'], item['distance']))
    else:
        # pro providers come first within a zone
        results.sort(key=lambda item: (-zone_rank(item), not item['provider']['verified_pro'], item['distance']))
    return results
