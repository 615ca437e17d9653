"""
Provider onboarding: application submission, admin review and pro badges.
"""
import logging
import time

from errors import NotFound, PermissionDenied, ValidationError
from extensions import db
from models import ProBadgeRequest, ProviderProfile, commit_changes, utcnow
from notification_service import notify, notify_admins
from state_machines import application_machine
from upload_service import APPLICATION_SLOTS, upload_slots, validate_slots

logger = logging.getLogger(__name__)

REQUIRED_SLOTS = ('cnic_front', 'profile_photo')
MIN_SHOP_PHOTOS = 2

_TEXT_FIELDS = ('business_address', 'description', 'phone', 'cnic')


def _parse_number(value, cast, label):
    if value in (None, ''):
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{label} must be a number')


def check_application(form, files, profile=None):
    """Refuse an incomplete application before anything is uploaded.

    Documents already on file from an earlier submission count towards the
    requirements of a resubmission.
    """
    if not (form.get('business_name') or '').strip() or not (form.get('business_type') or '').strip():
        raise ValidationError('Business name and business type are required')

    existing = profile.documents() if profile else {}
    missing = [
        APPLICATION_SLOTS[name].label for name in REQUIRED_SLOTS
        if not files.get(name) and not existing.get(APPLICATION_SLOTS[name].field)
    ]
    if missing:
        raise ValidationError(f'Missing required documents: {", ".join(missing)}')

    shop_photos = len(files.get('shop_photos', [])) or len(existing.get('shop_photos', []))
    if shop_photos < MIN_SHOP_PHOTOS:
        raise ValidationError(f'Please upload at least {MIN_SHOP_PHOTOS} shop photos')

    validate_slots(files, APPLICATION_SLOTS)


def submit_application(user, form, files, storage, sleep=time.sleep):
    """Create or resubmit the provider application of ``user``.

    Returns ``(profile, failed_slots)``. A file that could not be stored
    after retrying is left out; the document already on file for that slot,
    if any, is kept. Shop photos are replaced only by a complete new set.
    """
    if not user.is_provider:
        raise PermissionDenied('Only provider accounts can apply for verification')

    profile = user.provider_profile
    current = profile.application_status if profile else None
    check_application(form, files, profile)

    event = 'submit' if current is None else 'resubmit'
    new_status = application_machine.fire(event, current, 'provider')

    paths, failed = upload_slots(storage, user.id, files, APPLICATION_SLOTS, sleep=sleep)

    if profile is None:
        profile = ProviderProfile(user=user, business_name='', business_type='')
        db.session.add(profile)

    profile.business_name = form['business_name'].strip()
    profile.business_type = form['business_type'].strip()
    for field in _TEXT_FIELDS:
        if form.get(field) is not None:
            setattr(profile, field, form.get(field))
    experience = _parse_number(form.get('experience_years'), int, 'Experience years')
    if experience is not None:
        profile.experience_years = experience
    latitude = _parse_number(form.get('latitude'), float, 'Latitude')
    longitude = _parse_number(form.get('longitude'), float, 'Longitude')
    if latitude is not None and longitude is not None:
        profile.latitude = latitude
        profile.longitude = longitude
        profile.location_updated_at = utcnow()

    for name, path in paths.items():
        slot = APPLICATION_SLOTS[name]
        if slot.multiple and getattr(profile, slot.field) and (name in failed or len(path) < MIN_SHOP_PHOTOS):
            # a partial set never replaces the photos already on file
            continue
        setattr(profile, slot.field, list(path) if slot.multiple else path)

    profile.documents_uploaded = bool(profile.cnic_front_image and profile.profile_photo)
    profile.application_status = new_status
    profile.admin_approved = False
    profile.verified = False
    profile.rejection_reason = None
    profile.submitted_at = utcnow()
    profile.reviewed_at = None

    notify_admins(
        'New Provider Application' if event == 'submit' else 'Provider Application Resubmitted',
        f'{user.full_name} submitted "{profile.business_name}" for verification.',
        'provider_application',
    )
    commit_changes()

    logger.info("[APPLICATION] User %s %s application (%d uploads failed)", user.id, new_status, len(failed))
    return profile, failed


def get_profile(profile_id):
    profile = db.session.get(ProviderProfile, profile_id)
    if not profile:
        raise NotFound('Provider application not found')
    return profile


def pending_applications():
    return (
        ProviderProfile.query
        .filter(ProviderProfile.application_status.in_(('submitted', 'resubmitted')))
        .order_by(ProviderProfile.submitted_at)
        .all()
    )


def approve_application(profile_id, admin, notes=None):
    profile = get_profile(profile_id)
    profile.application_status = application_machine.fire('approve', profile.application_status, 'admin')
    profile.admin_approved = True
    profile.verified = True
    profile.rejection_reason = None
    profile.reviewed_at = utcnow()
    if notes:
        profile.admin_notes = notes

    notify(
        profile.user_id,
        'Application Approved',
        f'Your provider application for "{profile.business_name}" has been approved. You can now list services.',
        'application_update',
    )
    commit_changes()
    logger.info("[APPLICATION] Profile %s approved by admin %s", profile.id, admin.id)
    return profile


def reject_application(profile_id, admin, reason):
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('A rejection reason is required')

    profile = get_profile(profile_id)
    profile.application_status = application_machine.fire('reject', profile.application_status, 'admin')
    profile.admin_approved = False
    profile.verified = False
    profile.rejection_reason = reason
    profile.reviewed_at = utcnow()

    notify(
        profile.user_id,
        'Application Rejected',
        f'Your provider application was rejected. Reason: {reason}',
        'application_update',
    )
    commit_changes()
    logger.info("[APPLICATION] Profile %s rejected by admin %s", profile.id, admin.id)
    return profile


def require_approved_provider(user):
    profile = user.provider_profile
    if not user.is_provider or not profile or not profile.admin_approved:
        raise PermissionDenied('Your provider account has not been approved yet')
    return profile


def request_pro_badge(user, message=None):
    profile = require_approved_provider(user)
    if profile.verified_pro:
        raise ValidationError('You already have the pro badge')

    pending = ProBadgeRequest.query.filter_by(provider_id=user.id, status='pending').first()
    if pending:
        raise ValidationError('You already have a pending pro badge request')

    badge_request = ProBadgeRequest(provider_id=user.id, request_message=message)
    db.session.add(badge_request)
    notify_admins('Pro Badge Request', f'{profile.business_name} requested the pro badge.', 'pro_badge_request')
    commit_changes()
    return badge_request


def review_pro_badge(request_id, admin, approve, notes=None):
    badge_request = db.session.get(ProBadgeRequest, request_id)
    if not badge_request:
        raise NotFound('Pro badge request not found')
    if badge_request.status != 'pending':
        raise ValidationError(f'This request has already been {badge_request.status}')

    badge_request.status = 'approved' if approve else 'rejected'
    badge_request.reviewed_at = utcnow()
    badge_request.reviewed_by = admin.id
    badge_request.admin_notes = notes

    if approve:
        profile = badge_request.provider.provider_profile
        profile.verified_pro = True
        notify(badge_request.provider_id, 'Pro Badge Approved', 'You are now a verified pro provider.', 'pro_badge_update')
    else:
        content = 'Your pro badge request was not approved.'
        if notes:
            content = f'{content} {notes}'
        notify(badge_request.provider_id, 'Pro Badge Request Declined', content, 'pro_badge_update')

    commit_changes()
    return badge_request


def list_pro_badge_requests(status=None):
    query = ProBadgeRequest.query
    if status:
        query = query.filter_by(status=status)
    return query.order_by(ProBadgeRequest.requested_at.desc()).all()


def remove_pro_badge(profile_id, admin):
    profile = get_profile(profile_id)
    if not profile.verified_pro:
        raise ValidationError('This provider does not have the pro badge')
    profile.verified_pro = False
    notify(profile.user_id, 'Pro Badge Removed', 'Your verified pro badge has been removed.', 'pro_badge_update')
    commit_changes()
    logger.info("[PRO BADGE] Badge of profile %s removed by admin %s", profile.id, admin.id)
    return profile
