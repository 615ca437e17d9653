import logging

from booking_service import get_booking
from errors import PermissionDenied, ValidationError
from extensions import db
from models import ProviderProfile, Review, commit_changes
from notification_service import notify

logger = logging.getLogger(__name__)


def _parse_rating(value):
    if isinstance(value, bool):
        raise ValidationError('Rating must be a whole number from 1 to 5')
    try:
        rating = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Rating must be a whole number from 1 to 5')
    if rating != value and str(rating) != str(value):
        raise ValidationError('Rating must be a whole number from 1 to 5')
    if not 1 <= rating <= 5:
        raise ValidationError('Rating must be between 1 and 5')
    return rating


def refresh_provider_rating(provider_id):
    average = (
        db.session.query(db.func.avg(Review.rating))
        .filter(Review.provider_id == provider_id)
        .scalar()
    )
    profile = ProviderProfile.query.filter_by(user_id=provider_id).first()
    if profile is not None:
        profile.rating = round(float(average), 1) if average is not None else 0.0
    return profile


def create_review(booking_id, user, rating, comment=None):
    booking = get_booking(booking_id)
    if user.id != booking.customer_id:
        raise PermissionDenied('Only the customer of this booking can review it')
    if booking.status != 'completed':
        raise ValidationError('You can only review a completed booking')
    if Review.query.filter_by(booking_id=booking.id).first():
        raise ValidationError('You have already reviewed this booking')

    review = Review(
        booking_id=booking.id,
        customer_id=user.id,
        provider_id=booking.provider_id,
        rating=_parse_rating(rating),
        comment=(comment or '').strip() or None,
    )
    db.session.add(review)
    db.session.flush()
    refresh_provider_rating(booking.provider_id)

    notify(booking.provider_id, 'New Review',
           f'{user.full_name} rated "{booking.title}" {review.rating} out of 5.', 'review', booking.id)
    commit_changes()
    logger.info("[REVIEW] Booking %s rated %d by user %s", booking.id, review.rating, user.id)
    return review


def provider_reviews(provider_id):
    reviews = Review.query.filter_by(provider_id=provider_id).order_by(Review.created_at.desc()).all()
    average = round(sum(r.rating for r in reviews) / len(reviews), 1) if reviews else 0.0
    return {
        'reviews': [review.to_dict() for review in reviews],
        'average_rating': average,
        'total_reviews': len(reviews),
    }


def ratings_history(provider_id):
    """All reviews of a provider with the booking they rate and a star breakdown"""
    reviews = Review.query.filter_by(provider_id=provider_id).order_by(Review.created_at.desc()).all()

    distribution = {stars: 0 for stars in range(5, 0, -1)}
    history = []
    for review in reviews:
        distribution[review.rating] += 1
        data = review.to_dict()
        booking = review.booking
        data['booking_title'] = booking.title if booking else None
        data['completed_at'] = booking.completed_at.isoformat() if booking and booking.completed_at else None
        data['service_title'] = booking.service.title if booking and booking.service else None
        history.append(data)

    return {
        'reviews': history,
        'average_rating': round(sum(r.rating for r in reviews) / len(reviews), 1) if reviews else 0.0,
        'total_reviews': len(reviews),
        'distribution': distribution,
    }
