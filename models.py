from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.security import generate_password_hash, check_password_hash

from errors import ConflictError
from extensions import db


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


def commit_changes():
    """Commit the session, turning a lost optimistic-version race into ConflictError."""
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConflictError('This record was changed by someone else. Reload and try again.')


class User(UserMixin, db.Model):
    __tablename__ = 'profiles'

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    phone = db.Column(db.String(20))
    user_type = db.Column(db.String(20), nullable=False, default='customer')  # customer, provider, admin
    avatar_url = db.Column(db.String(500))
    theme = db.Column(db.String(10), default='system')  # light, dark, system

    # Email confirmation and phone verification
    email_confirmed = db.Column(db.Boolean, default=False)
    confirmation_code = db.Column(db.String(10))
    confirmation_attempts = db.Column(db.Integer, default=0)
    phone_verified = db.Column(db.Boolean, default=False)
    phone_otp = db.Column(db.String(10))
    phone_otp_attempts = db.Column(db.Integer, default=0)

    # Moderation
    is_banned = db.Column(db.Boolean, default=False)
    is_suspended = db.Column(db.Boolean, default=False)
    suspension_end_time = db.Column(db.DateTime)
    no_show_strikes_count = db.Column(db.Integer, default=0)
    last_strike_date = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    provider_profile = db.relationship('ProviderProfile', backref='user', uselist=False)
    notifications = db.relationship('Notification', backref='user', lazy='dynamic')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.user_type == 'admin'

    @property
    def is_provider(self):
        return self.user_type == 'provider'

    def to_dict(self):
        """Convert user to dictionary for API responses"""
        return {
            'id': self.id,
            'full_name': self.full_name,
            'email': self.email,
            'phone': self.phone,
            'user_type': self.user_type,
            'avatar_url': self.avatar_url,
            'theme': self.theme,
            'email_confirmed': bool(self.email_confirmed),
            'phone_verified': bool(self.phone_verified),
            'is_banned': bool(self.is_banned),
            'is_suspended': bool(self.is_suspended),
            'suspension_end_time': _iso(self.suspension_end_time),
            'no_show_strikes_count': self.no_show_strikes_count or 0,
            'last_strike_date': _iso(self.last_strike_date),
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<User {self.email}>'


class ProviderProfile(db.Model):
    """Business details and verification documents of a provider"""
    __tablename__ = 'provider_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), unique=True, nullable=False)

    business_name = db.Column(db.String(150), nullable=False)
    business_type = db.Column(db.String(100), nullable=False)
    business_address = db.Column(db.String(300), default='')
    description = db.Column(db.Text)
    phone = db.Column(db.String(20))
    cnic = db.Column(db.String(20))
    experience_years = db.Column(db.Integer)

    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    location_updated_at = db.Column(db.DateTime)

    # Verification documents (storage paths)
    cnic_front_image = db.Column(db.String(500))
    cnic_back_image = db.Column(db.String(500))
    license_certificate = db.Column(db.String(500))
    profile_photo = db.Column(db.String(500))
    proof_of_address = db.Column(db.String(500))
    business_certificate = db.Column(db.String(500))
    shop_photos = db.Column(db.JSON, default=list)
    documents_uploaded = db.Column(db.Boolean, default=False)

    # Application workflow: submitted, resubmitted, approved, rejected
    application_status = db.Column(db.String(20))
    admin_approved = db.Column(db.Boolean, default=False)
    verified = db.Column(db.Boolean, default=False)
    verified_pro = db.Column(db.Boolean, default=False)
    rejection_reason = db.Column(db.Text)
    admin_notes = db.Column(db.Text)
    submitted_at = db.Column(db.DateTime)
    reviewed_at = db.Column(db.DateTime)

    # Running totals
    rating = db.Column(db.Float, default=0.0)
    total_jobs = db.Column(db.Integer, default=0)
    total_earnings = db.Column(db.Float, default=0.0)
    total_commission = db.Column(db.Float, default=0.0)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {'version_id_col': version}

    def documents(self):
        return {
            'cnic_front_image': self.cnic_front_image,
            'cnic_back_image': self.cnic_back_image,
            'license_certificate': self.license_certificate,
            'profile_photo': self.profile_photo,
            'proof_of_address': self.proof_of_address,
            'business_certificate': self.business_certificate,
            'shop_photos': list(self.shop_photos or []),
        }

    def to_dict(self, include_documents=False):
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'business_name': self.business_name,
            'business_type': self.business_type,
            'business_address': self.business_address,
            'description': self.description,
            'phone': self.phone,
            'experience_years': self.experience_years,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'application_status': self.application_status,
            'admin_approved': bool(self.admin_approved),
            'verified': bool(self.verified),
            'verified_pro': bool(self.verified_pro),
            'rejection_reason': self.rejection_reason,
            'submitted_at': _iso(self.submitted_at),
            'rating': self.rating or 0.0,
            'total_jobs': self.total_jobs or 0,
            'total_earnings': float(self.total_earnings or 0),
            'total_commission': float(self.total_commission or 0),
        }
        if include_documents:
            data['cnic'] = self.cnic
            data['admin_notes'] = self.admin_notes
            data['documents_uploaded'] = bool(self.documents_uploaded)
            data['documents'] = self.documents()
        return data

    def __repr__(self):
        return f'<ProviderProfile {self.business_name}>'


class Service(db.Model):
    __tablename__ = 'services'

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    title = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    category = db.Column(db.String(50), nullable=False)
    base_price = db.Column(db.Float, nullable=False)
    price_negotiable = db.Column(db.Boolean, default=True)
    duration_hours = db.Column(db.Float)
    service_area = db.Column(db.JSON, default=list)
    images = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, default=False)
    admin_approved = db.Column(db.Boolean, default=False)
    rejection_reason = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    provider = db.relationship('User', backref=db.backref('services', lazy='dynamic'))

    def to_dict(self):
        return {
            'id': self.id,
            'provider_id': self.provider_id,
            'title': self.title,
            'description': self.description,
            'category': self.category,
            'base_price': float(self.base_price),
            'price_negotiable': bool(self.price_negotiable),
            'duration_hours': self.duration_hours,
            'service_area': list(self.service_area or []),
            'images': list(self.images or []),
            'is_active': bool(self.is_active),
            'admin_approved': bool(self.admin_approved),
            'rejection_reason': self.rejection_reason,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Service {self.title}>'


class Booking(db.Model):
    __tablename__ = 'bookings'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    provider_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey('services.id'), nullable=False)

    title = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    location = db.Column(db.String(300), nullable=False)
    scheduled_date = db.Column(db.DateTime)

    # Booking status: pending, confirmed, coming, in_progress, completed, cancelled, rejected
    status = db.Column(db.String(20), nullable=False, default='pending')

    # Pricing
    proposed_price = db.Column(db.Float, nullable=False)
    final_price = db.Column(db.Float)
    commission_amount = db.Column(db.Float)

    # Customer location sharing
    customer_location_lat = db.Column(db.Float)
    customer_location_lng = db.Column(db.Float)
    customer_location_shared_at = db.Column(db.DateTime)
    location_access_active = db.Column(db.Boolean, default=False)
    location_access_expires_at = db.Column(db.DateTime)

    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    # Cancellation tracking
    cancellation_reason = db.Column(db.Text)
    cancelled_by = db.Column(db.String(20))  # 'customer', 'provider' or 'admin'
    cancelled_at = db.Column(db.DateTime)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {'version_id_col': version}

    customer = db.relationship('User', foreign_keys=[customer_id])
    provider = db.relationship('User', foreign_keys=[provider_id])
    service = db.relationship('Service', backref=db.backref('bookings', lazy='dynamic'))

    @property
    def price(self):
        """Price the job is settled at: the agreed final price, else the proposal"""
        return self.final_price or self.proposed_price or 0.0

    def other_party_id(self, user_id):
        return self.provider_id if user_id == self.customer_id else self.customer_id

    def to_dict(self):
        """Convert booking to dictionary for API responses"""
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'provider_id': self.provider_id,
            'service_id': self.service_id,
            'title': self.title,
            'description': self.description,
            'location': self.location,
            'scheduled_date': _iso(self.scheduled_date),
            'status': self.status,
            'proposed_price': float(self.proposed_price),
            'final_price': float(self.final_price) if self.final_price is not None else None,
            'commission_amount': float(self.commission_amount) if self.commission_amount is not None else None,
            'location_access_active': bool(self.location_access_active),
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
            'cancellation_reason': self.cancellation_reason,
            'cancelled_by': self.cancelled_by,
            'cancelled_at': _iso(self.cancelled_at),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'customer': {
                'id': self.customer.id,
                'full_name': self.customer.full_name,
            } if self.customer else None,
            'service': {
                'id': self.service.id,
                'title': self.service.title,
                'category': self.service.category,
            } if self.service else None,
        }

    def __repr__(self):
        return f'<Booking {self.id}>'


class ChatMessage(db.Model):
    __tablename__ = 'chat_messages'

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False)
    sender_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    message_type = db.Column(db.String(20), nullable=False, default='text')  # text, price_offer, booking_update
    price_offer = db.Column(db.Float)
    read_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    booking = db.relationship('Booking', backref=db.backref('messages', lazy='dynamic'))
    sender = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'booking_id': self.booking_id,
            'sender_id': self.sender_id,
            'sender_name': self.sender.full_name if self.sender else None,
            'content': self.content,
            'message_type': self.message_type,
            'price_offer': self.price_offer,
            'read_at': _iso(self.read_at),
            'created_at': _iso(self.created_at),
        }


class Review(db.Model):
    __tablename__ = 'reviews'

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), unique=True, nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    provider_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)

    booking = db.relationship('Booking', backref=db.backref('review', uselist=False))
    customer = db.relationship('User', foreign_keys=[customer_id])

    def to_dict(self):
        return {
            'id': self.id,
            'booking_id': self.booking_id,
            'customer_id': self.customer_id,
            'customer_name': self.customer.full_name if self.customer else None,
            'provider_id': self.provider_id,
            'rating': self.rating,
            'comment': self.comment,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Review {self.id} by User {self.customer_id}>'


class CommissionPayment(db.Model):
    __tablename__ = 'commission_payments'

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    booking_count = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(50), nullable=False)
    screenshot_url = db.Column(db.String(500))
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, approved, rejected
    rejection_reason = db.Column(db.Text)
    submitted_at = db.Column(db.DateTime, default=utcnow)
    reviewed_at = db.Column(db.DateTime)
    reviewed_by = db.Column(db.Integer, db.ForeignKey('profiles.id'))

    version = db.Column(db.Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    provider = db.relationship('User', foreign_keys=[provider_id])

    def to_dict(self):
        return {
            'id': self.id,
            'provider_id': self.provider_id,
            'provider_name': self.provider.full_name if self.provider else None,
            'amount': float(self.amount),
            'booking_count': self.booking_count,
            'payment_method': self.payment_method,
            'screenshot_url': self.screenshot_url,
            'status': self.status,
            'rejection_reason': self.rejection_reason,
            'submitted_at': _iso(self.submitted_at),
            'reviewed_at': _iso(self.reviewed_at),
            'reviewed_by': self.reviewed_by,
        }

    def __repr__(self):
        return f'<CommissionPayment {self.id} - {self.payment_method} - {self.amount}>'


class PaymentMethod(db.Model):
    """Accounts providers transfer their commission into"""
    __tablename__ = 'payment_methods'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)  # 'Bank Transfer', 'EasyPaisa', 'JazzCash'
    code = db.Column(db.String(30), unique=True, nullable=False)  # 'bank_transfer', 'easypaisa', 'jazzcash'
    account_details = db.Column(db.Text)
    instructions = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'code': self.code,
            'account_details': self.account_details,
            'instructions': self.instructions,
            'is_active': bool(self.is_active),
        }

    def __repr__(self):
        return f'<PaymentMethod {self.name}>'


class Notification(db.Model):
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'))
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(50), nullable=False)  # 'booking_update', 'message', 'strike_warning', ...
    read_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'booking_id': self.booking_id,
            'title': self.title,
            'content': self.content,
            'type': self.type,
            'is_read': self.read_at is not None,
            'read_at': _iso(self.read_at),
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Notification {self.id}>'


class NoShowStrike(db.Model):
    __tablename__ = 'no_show_strikes'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False)
    provider_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    strike_date = db.Column(db.DateTime, default=utcnow)
    reason = db.Column(db.Text)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'booking_id': self.booking_id,
            'provider_id': self.provider_id,
            'strike_date': _iso(self.strike_date),
            'reason': self.reason,
        }


class UserSuspension(db.Model):
    __tablename__ = 'user_suspensions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    suspension_reason = db.Column(db.Text, nullable=False)
    suspension_start = db.Column(db.DateTime, default=utcnow)
    suspension_end = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    auto_suspension = db.Column(db.Boolean, default=False)
    created_by = db.Column(db.Integer, db.ForeignKey('profiles.id'))

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'suspension_reason': self.suspension_reason,
            'suspension_start': _iso(self.suspension_start),
            'suspension_end': _iso(self.suspension_end),
            'is_active': bool(self.is_active),
            'auto_suspension': bool(self.auto_suspension),
            'created_by': self.created_by,
        }


class ProBadgeRequest(db.Model):
    __tablename__ = 'pro_badge_requests'

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    request_message = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, approved, rejected
    requested_at = db.Column(db.DateTime, default=utcnow)
    reviewed_at = db.Column(db.DateTime)
    reviewed_by = db.Column(db.Integer, db.ForeignKey('profiles.id'))
    admin_notes = db.Column(db.Text)

    provider = db.relationship('User', foreign_keys=[provider_id])

    def to_dict(self):
        return {
            'id': self.id,
            'provider_id': self.provider_id,
            'provider_name': self.provider.full_name if self.provider else None,
            'request_message': self.request_message,
            'status': self.status,
            'requested_at': _iso(self.requested_at),
            'reviewed_at': _iso(self.reviewed_at),
            'admin_notes': self.admin_notes,
        }


# Site content managed by admins

class ContentSection(db.Model):
    __tablename__ = 'content_sections'

    id = db.Column(db.Integer, primary_key=True)
    section_key = db.Column(db.String(100), unique=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False, default='')
    content_type = db.Column(db.String(20), default='text')  # text, html, markdown
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'section_key': self.section_key,
            'title': self.title,
            'content': self.content,
            'content_type': self.content_type,
            'is_active': bool(self.is_active),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class FAQ(db.Model):
    __tablename__ = 'faqs'

    id = db.Column(db.Integer, primary_key=True)
    question = db.Column(db.String(500), nullable=False)
    answer = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(100))
    sort_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'question': self.question,
            'answer': self.answer,
            'category': self.category,
            'sort_order': self.sort_order or 0,
            'is_active': bool(self.is_active),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Policy(db.Model):
    __tablename__ = 'policies'

    id = db.Column(db.Integer, primary_key=True)
    policy_key = db.Column(db.String(100), unique=True, nullable=False)  # terms, privacy, refund ...
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False, default='')
    version = db.Column(db.String(20), default='1.0')
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'policy_key': self.policy_key,
            'title': self.title,
            'content': self.content,
            'version': self.version,
            'is_active': bool(self.is_active),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class ContactInformation(db.Model):
    __tablename__ = 'contact_information'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120))
    phone = db.Column(db.String(20))
    address = db.Column(db.String(300))
    website = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'website': self.website,
            'is_active': bool(self.is_active),
            'updated_at': _iso(self.updated_at),
        }
