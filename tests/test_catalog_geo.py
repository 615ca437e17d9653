import pytest
import requests

from conftest import auth
from extensions import db
from geo_service import distance_zone, format_distance, haversine_distance
from models import ProviderProfile, Service, User


class FakeResponse:

    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')

    def json(self):
        return self.payload


def test_haversine_lahore_to_islamabad():
    meters = haversine_distance(31.5204, 74.3587, 33.6844, 73.0479)
    assert meters == pytest.approx(270_000, rel=0.02)
    assert haversine_distance(31.5, 74.3, 31.5, 74.3) == 0


def test_format_distance():
    assert format_distance(850) == '850m'
    assert format_distance(1500) == '1.5km'


@pytest.mark.parametrize('meters, zone', [
    (1500, 'Very Close'), (2000, 'Very Close'), (4000, 'Close'),
    (9000, 'Moderate'), (15000, 'Far'), (25000, 'Very Far'),
])
def test_distance_zones(meters, zone):
    assert distance_zone(meters)[0] == zone


def test_new_service_needs_admin_approval(app, client, provider, admin):
    response = client.post('/api/services', json={
        'title': 'Sofa Cleaning', 'description': 'Fabric sofas', 'category': 'cleaning', 'base_price': 1500,
    }, headers=auth(provider.token))
    assert response.status_code == 201
    service = response.get_json()['service']
    assert service['is_active'] is False
    assert service['admin_approved'] is False

    pending = client.get('/api/admin/services/pending', headers=auth(admin.token)).get_json()['services']
    assert [s['id'] for s in pending] == [service['id']]

    response = client.post(f'/api/admin/services/{service["id"]}/approve', headers=auth(admin.token))
    assert response.get_json()['service']['is_active'] is True

    response = client.patch(f'/api/services/{service["id"]}', json={'base_price': 1800}, headers=auth(provider.token))
    assert response.get_json()['service']['admin_approved'] is False


def test_service_validation(client, provider):
    response = client.post('/api/services', json={'title': 'X', 'category': 'astrology', 'base_price': 10},
                           headers=auth(provider.token))
    assert response.status_code == 400
    response = client.post('/api/services', json={'title': 'X', 'category': 'repair', 'base_price': 0},
                           headers=auth(provider.token))
    assert response.status_code == 400


def test_unapproved_provider_cannot_list_services(client, create_user):
    newcomer = create_user('newcomer@example.com', user_type='provider')
    response = client.post('/api/services', json={'title': 'X', 'category': 'repair', 'base_price': 10},
                           headers=auth(newcomer.token))
    assert response.status_code == 403


def test_public_listing_filters(client, provider):
    services = client.get('/api/services?category=cleaning').get_json()['services']
    assert [s['id'] for s in services] == [provider.service_id]
    assert client.get('/api/services?category=tech').get_json()['services'] == []
    assert len(client.get('/api/services?q=house').get_json()['services']) == 1


def test_search_text_wildcards_are_literal(client, provider):
    assert client.get('/api/services?q=%25').get_json()['services'] == []
    assert client.get('/api/services?q=Deep_House').get_json()['services'] == []
    assert len(client.get('/api/services?q=Deep%20House').get_json()['services']) == 1


def test_nearby_listing_sorted_by_zone_with_pro_first(app, client, provider, create_user):
    users = [
        (create_user('far@example.com', user_type='provider'), 31.65, False),
        (create_user('pro@example.com', user_type='provider'), 31.5300, True),
    ]
    others = []
    with app.app_context():
        for user, lat, pro in users:
            email = user.email
            db.session.add(ProviderProfile(user_id=user.id, business_name=email, business_type='cleaning',
                                           application_status='approved', admin_approved=True,
                                           latitude=lat, longitude=74.3587, verified_pro=pro))
            service = Service(provider_id=user.id, title=f'Cleaning by {email}', category='cleaning',
                              base_price=1000, is_active=True, admin_approved=True)
            db.session.add(service)
            db.session.commit()
            others.append(service.id)

    response = client.get('/api/services?lat=31.5204&lng=74.3587')
    services = response.get_json()['services']
    assert [s['id'] for s in services] == [others[1], provider.service_id, others[0]]
    assert services[0]['distance_zone'] == 'Very Close'
    assert services[1]['distance_text'] == '0m'
    assert services[2]['distance_zone'] == 'Far'

    nearby = client.get('/api/services?lat=31.5204&lng=74.3587&radius_km=5').get_json()['services']
    assert {s['id'] for s in nearby} == {others[1], provider.service_id}


def test_banned_provider_hidden(app, client, provider):
    with app.app_context():
        db.session.get(User, provider.id).is_banned = True
        db.session.commit()
    assert client.get('/api/services').get_json()['services'] == []


def test_geocoder_search(client, monkeypatch):
    calls = []

    def fake_get(url, params=None, headers=None, timeout=None):
        calls.append((url, params, headers, timeout))
        return FakeResponse([{'display_name': 'Gulberg, Lahore', 'lat': '31.51', 'lon': '74.34', 'type': 'suburb'}])

    monkeypatch.setattr('geo_service.requests.get', fake_get)
    response = client.get('/api/geo/search?q=Gulberg')
    assert response.status_code == 200
    assert response.get_json()['results'][0]['lng'] == pytest.approx(74.34)

    url, params, headers, timeout = calls[0]
    assert url.endswith('/search')
    assert params['countrycodes'] == 'pk'
    assert headers['User-Agent'] == 'TaskKarwalo/1.0'
    assert timeout == 10


def test_geocoder_failure_is_reported(client, monkeypatch):
    def fake_get(*args, **kwargs):
        raise requests.ConnectionError('offline')

    monkeypatch.setattr('geo_service.requests.get', fake_get)
    response = client.get('/api/geo/reverse?lat=31.5&lng=74.3')
    assert response.status_code == 502


def test_reverse_geocode(client, monkeypatch):
    monkeypatch.setattr('geo_service.requests.get',
                        lambda *a, **k: FakeResponse({'display_name': 'Mall Road, Lahore', 'address': {'city': 'Lahore'}}))
    result = client.get('/api/geo/reverse?lat=31.5&lng=74.3').get_json()['result']
    assert result['address']['city'] == 'Lahore'
