import io
from types import SimpleNamespace

import pytest
from PIL import Image

from app import create_app
from extensions import db
from models import Booking, ProviderProfile, Service, User, utcnow
from security import create_token


def image_bytes(size=(64, 64), fmt='PNG', color=(200, 40, 40)):
    buffer = io.BytesIO()
    Image.new('RGB', size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def auth(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'UPLOAD_RETRY_BASE_DELAY': 0,
        'SEED_INITIAL_DATA': False,
        'SENDGRID_API_KEY': None,
        'NOTIFICATION_POLL_SECONDS': 0,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def create_user(app):
    def _create(email, user_type='customer', password='secret123', full_name=None, confirmed=True):
        with app.app_context():
            user = User(
                full_name=full_name or email.split('@')[0].title(),
                email=email,
                user_type=user_type,
                email_confirmed=confirmed,
            )
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return SimpleNamespace(id=user.id, email=email, token=create_token(user))
    return _create


@pytest.fixture
def admin(create_user):
    return create_user('admin@example.com', user_type='admin')


@pytest.fixture
def customer(create_user):
    return create_user('customer@example.com')


@pytest.fixture
def provider(app, create_user):
    """An approved provider with one live service in Lahore"""
    user = create_user('provider@example.com', user_type='provider', full_name='Ali Provider')
    with app.app_context():
        profile = ProviderProfile(
            user_id=user.id,
            business_name='Ali Cleaning Co',
            business_type='cleaning',
            application_status='approved',
            admin_approved=True,
            verified=True,
            latitude=31.5204,
            longitude=74.3587,
            cnic_front_image=f'{user.id}/front.jpg',
            profile_photo=f'{user.id}/photo.jpg',
            shop_photos=[f'{user.id}/shop1.jpg', f'{user.id}/shop2.jpg'],
        )
        service = Service(
            provider_id=user.id,
            title='Deep House Cleaning',
            description='Full home cleaning',
            category='cleaning',
            base_price=3000.0,
            is_active=True,
            admin_approved=True,
        )
        db.session.add_all([profile, service])
        db.session.commit()
        user.profile_id = profile.id
        user.service_id = service.id
    return user


@pytest.fixture
def make_completed_booking(app):
    """Insert a completed booking directly, bypassing the lifecycle"""
    def _make(provider, customer, price=1000.0, completed_at=None):
        with app.app_context():
            booking = Booking(
                customer_id=customer.id,
                provider_id=provider.id,
                service_id=provider.service_id,
                title='Job',
                location='Lahore',
                proposed_price=price,
                final_price=price,
                status='completed',
                completed_at=completed_at or utcnow(),
            )
            db.session.add(booking)
            db.session.commit()
            return booking.id
    return _make


@pytest.fixture
def create_booking(client, provider, customer):
    def _create(price=2500):
        response = client.post('/api/bookings', json={
            'service_id': provider.service_id,
            'location': 'Gulberg, Lahore',
            'proposed_price': price,
        }, headers=auth(customer.token))
        assert response.status_code == 201, response.get_json()
        return response.get_json()['booking']['id']
    return _create
