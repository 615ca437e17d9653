from datetime import timedelta

import pytest

from booking_service import get_shared_location
from conftest import auth
from extensions import db
from models import Booking, NoShowStrike, Notification, User, UserSuspension, utcnow


def act(client, booking_id, action, token, **payload):
    return client.post(f'/api/bookings/{booking_id}/{action}', json=payload, headers=auth(token))


def test_create_booking_notifies_provider(app, client, provider, customer, create_booking):
    booking_id = create_booking()
    with app.app_context():
        booking = db.session.get(Booking, booking_id)
        assert booking.status == 'pending'
        assert Notification.query.filter_by(user_id=provider.id, type='booking_request').count() == 1


def test_booking_needs_positive_price(client, provider, customer):
    response = client.post('/api/bookings', json={
        'service_id': provider.service_id, 'location': 'Lahore', 'proposed_price': -5,
    }, headers=auth(customer.token))
    assert response.status_code == 400


def test_zero_price_is_rejected_not_replaced(client, provider, customer):
    response = client.post('/api/bookings', json={
        'service_id': provider.service_id, 'location': 'Lahore', 'proposed_price': 0,
    }, headers=auth(customer.token))
    assert response.status_code == 400


def test_missing_price_uses_base_price(client, provider, customer):
    response = client.post('/api/bookings', json={
        'service_id': provider.service_id, 'location': 'Lahore',
    }, headers=auth(customer.token))
    assert response.status_code == 201
    assert response.get_json()['booking']['proposed_price'] > 0


def test_provider_cannot_book(client, provider):
    response = client.post('/api/bookings', json={
        'service_id': provider.service_id, 'location': 'Lahore',
    }, headers=auth(provider.token))
    assert response.status_code == 403


def test_full_lifecycle_records_commission(app, client, provider, customer, create_booking):
    booking_id = create_booking(price=2000)
    for action in ('confirm', 'coming', 'start', 'complete'):
        response = act(client, booking_id, action, provider.token)
        assert response.status_code == 200, response.get_json()

    booking = response.get_json()['booking']
    assert booking['status'] == 'completed'
    assert booking['commission_amount'] == pytest.approx(100.0)
    assert booking['completed_at']

    with app.app_context():
        profile = db.session.get(User, provider.id).provider_profile
        assert profile.total_jobs == 1
        assert profile.total_earnings == pytest.approx(2000)
        assert profile.total_commission == pytest.approx(100)
        assert Notification.query.filter_by(user_id=customer.id, type='booking_update').count() == 4


def test_customer_cannot_confirm(client, provider, customer, create_booking):
    booking_id = create_booking()
    assert act(client, booking_id, 'confirm', customer.token).status_code == 403


def test_outsider_cannot_touch_booking(client, create_user, create_booking):
    booking_id = create_booking()
    stranger = create_user('stranger@example.com')
    assert client.get(f'/api/bookings/{booking_id}', headers=auth(stranger.token)).status_code == 403


@pytest.mark.parametrize('finish', ['complete', 'cancel'])
def test_finished_booking_cannot_be_reopened(app, client, provider, customer, create_booking, finish):
    booking_id = create_booking()
    act(client, booking_id, 'confirm', provider.token)
    act(client, booking_id, 'start', provider.token)
    assert act(client, booking_id, finish, provider.token, reason='Tools broke').status_code == 200

    for action in ('confirm', 'reject', 'coming', 'start', 'complete', 'cancel'):
        for user in (provider, customer):
            response = act(client, booking_id, action, user.token, reason='Again')
            assert response.status_code in (403, 409)

    with app.app_context():
        assert db.session.get(Booking, booking_id).status in ('completed', 'cancelled')


def test_customer_cannot_cancel_job_in_progress(client, provider, customer, create_booking):
    booking_id = create_booking()
    act(client, booking_id, 'confirm', provider.token)
    act(client, booking_id, 'start', provider.token)
    assert act(client, booking_id, 'cancel', customer.token).status_code == 403


def test_cancel_records_reason_and_actor(client, provider, customer, create_booking):
    booking_id = create_booking()
    response = act(client, booking_id, 'cancel', customer.token, reason='Changed my plans')
    booking = response.get_json()['booking']
    assert booking['status'] == 'cancelled'
    assert booking['cancelled_by'] == 'customer'
    assert booking['cancellation_reason'] == 'Changed my plans'


def test_cancel_requires_reason(app, client, provider, customer, create_booking):
    booking_id = create_booking()
    for payload in ({}, {'reason': '   '}):
        response = act(client, booking_id, 'cancel', customer.token, **payload)
        assert response.status_code == 400
        assert 'reason' in response.get_json()['message']

    with app.app_context():
        booking = db.session.get(Booking, booking_id)
        assert booking.status == 'pending'
        assert booking.cancelled_at is None


def test_three_no_shows_suspend_customer(app, client, provider, customer, create_booking):
    for _ in range(3):
        booking_id = create_booking()
        act(client, booking_id, 'confirm', provider.token)
        response = act(client, booking_id, 'cancel', provider.token, reason='Nobody home', no_show=True)
        assert response.status_code == 200

    with app.app_context():
        user = db.session.get(User, customer.id)
        assert user.no_show_strikes_count == 3
        assert user.is_suspended is True
        assert user.suspension_end_time > utcnow() + timedelta(hours=47)
        assert NoShowStrike.query.filter_by(user_id=customer.id).count() == 3
        suspension = UserSuspension.query.filter_by(user_id=customer.id).one()
        assert suspension.auto_suspension is True
        warnings = Notification.query.filter_by(user_id=customer.id, type='strike_warning').all()
        assert any('3 of 3' in warning.content for warning in warnings)

    response = client.post('/api/bookings', json={
        'service_id': provider.service_id, 'location': 'Lahore', 'proposed_price': 100,
    }, headers=auth(customer.token))
    assert response.status_code == 403


def test_customer_cannot_report_no_show(client, provider, customer, create_booking):
    booking_id = create_booking()
    act(client, booking_id, 'confirm', provider.token)
    assert act(client, booking_id, 'cancel', customer.token, no_show=True).status_code == 403


def test_location_sharing_window(app, client, provider, customer, create_user, create_booking):
    booking_id = create_booking()
    response = client.post(f'/api/bookings/{booking_id}/location', json={'lat': 31.52, 'lng': 74.35},
                           headers=auth(customer.token))
    assert response.status_code == 200

    location = client.get(f'/api/bookings/{booking_id}/location', headers=auth(provider.token)).get_json()['location']
    assert location['active'] is True
    assert location['lat'] == pytest.approx(31.52)

    stranger = create_user('stranger@example.com')
    assert client.get(f'/api/bookings/{booking_id}/location', headers=auth(stranger.token)).status_code == 403

    with app.app_context():
        user = db.session.get(User, provider.id)
        later = utcnow() + timedelta(hours=3)
        assert get_shared_location(booking_id, user, now=later) == {'active': False}


def test_provider_cannot_share_customer_location(client, provider, create_booking):
    booking_id = create_booking()
    response = client.post(f'/api/bookings/{booking_id}/location', json={'lat': 1, 'lng': 1},
                           headers=auth(provider.token))
    assert response.status_code == 403


def test_listing_bookings_by_role(client, provider, customer, create_booking):
    create_booking()
    create_booking()
    assert len(client.get('/api/bookings', headers=auth(provider.token)).get_json()['bookings']) == 2
    assert len(client.get('/api/bookings', headers=auth(customer.token)).get_json()['bookings']) == 2
    assert len(client.get('/api/bookings?status=completed', headers=auth(customer.token)).get_json()['bookings']) == 0
