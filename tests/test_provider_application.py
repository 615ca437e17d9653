import io

import pytest
from sqlalchemy import text

from conftest import auth, image_bytes
from errors import ConflictError
from extensions import db
from models import Notification, ProviderProfile, User
from storage import LocalStorage, StorageError
from verification_service import approve_application


class RecordingStorage(LocalStorage):

    def __init__(self, root, fail_buckets=()):
        super().__init__(root)
        self.fail_buckets = set(fail_buckets)
        # bucket -> uploads that succeed before the bucket starts failing
        self.allowed = {}
        self.calls = []

    def upload(self, bucket, path, data, content_type=None):
        self.calls.append(bucket)
        if bucket in self.allowed:
            if not self.allowed[bucket]:
                raise StorageError('bucket full')
            self.allowed[bucket] -= 1
        if bucket in self.fail_buckets:
            raise StorageError('bucket unavailable')
        return super().upload(bucket, path, data, content_type)


@pytest.fixture
def storage(app, tmp_path):
    storage = RecordingStorage(str(tmp_path / 'store'))
    app.extensions['storage'] = storage
    return storage


@pytest.fixture
def applicant(create_user):
    return create_user('applicant@example.com', user_type='provider')


def image(name):
    return (io.BytesIO(image_bytes()), name, 'image/png')


def application_form(**overrides):
    form = {
        'business_name': 'Karachi Tailors',
        'business_type': 'tailoring',
        'business_address': 'Saddar, Karachi',
        'cnic_front': image('front.png'),
        'profile_photo': image('me.png'),
        'shop_photos': [image('shop1.png'), image('shop2.png')],
    }
    form.update(overrides)
    return {key: value for key, value in form.items() if value is not None}


def submit(client, token, **overrides):
    return client.post('/api/provider/application', data=application_form(**overrides),
                       headers=auth(token), content_type='multipart/form-data')


@pytest.mark.parametrize('missing', ['cnic_front', 'profile_photo'])
def test_missing_required_document_rejected_before_upload(client, storage, applicant, missing):
    response = submit(client, applicant.token, **{missing: None})
    assert response.status_code == 400
    assert 'Missing required documents' in response.get_json()['message']
    assert storage.calls == []


def test_single_shop_photo_rejected_before_upload(client, storage, applicant):
    response = submit(client, applicant.token, shop_photos=[image('only.png')])
    assert response.status_code == 400
    assert storage.calls == []


def test_oversized_file_rejected_before_upload(client, storage, applicant):
    too_big = (io.BytesIO(b'x' * (2 * 1024 * 1024 + 10)), 'huge.png', 'image/png')
    response = submit(client, applicant.token, proof_of_address=too_big)
    assert response.status_code == 400
    assert storage.calls == []


def test_submit_stores_documents_by_slot(app, client, storage, applicant, admin):
    response = submit(client, applicant.token)
    assert response.status_code == 201
    body = response.get_json()
    assert body['failed_uploads'] == []
    profile = body['profile']
    assert profile['application_status'] == 'submitted'
    assert profile['admin_approved'] is False
    documents = profile['documents']
    assert documents['cnic_front_image'] != documents['profile_photo']
    assert len(documents['shop_photos']) == 2
    assert storage.calls.count('shop-photos') == 2

    with app.app_context():
        assert Notification.query.filter_by(user_id=admin.id, type='provider_application').count() == 1


def test_approve_sets_flags(client, storage, applicant, admin):
    profile_id = submit(client, applicant.token).get_json()['profile']['id']

    response = client.post(f'/api/admin/applications/{profile_id}/approve', headers=auth(admin.token))
    assert response.status_code == 200
    application = response.get_json()['application']
    assert application['application_status'] == 'approved'
    assert application['admin_approved'] is True
    assert application['verified'] is True

    response = client.post(f'/api/admin/applications/{profile_id}/reject', json={'reason': 'late'},
                           headers=auth(admin.token))
    assert response.status_code == 409


def test_reject_requires_reason_and_clears_flags(client, storage, applicant, admin):
    profile_id = submit(client, applicant.token).get_json()['profile']['id']

    response = client.post(f'/api/admin/applications/{profile_id}/reject', json={}, headers=auth(admin.token))
    assert response.status_code == 400

    response = client.post(f'/api/admin/applications/{profile_id}/reject', json={'reason': 'Blurry CNIC'},
                           headers=auth(admin.token))
    application = response.get_json()['application']
    assert application['application_status'] == 'rejected'
    assert application['admin_approved'] is False
    assert application['rejection_reason'] == 'Blurry CNIC'

    response = client.post(f'/api/admin/applications/{profile_id}/approve', headers=auth(admin.token))
    assert response.status_code == 409


def test_resubmission_keeps_previous_document_when_upload_fails(client, storage, applicant, admin):
    certificate = (io.BytesIO(b'%PDF-1.4 first'), 'cert.pdf', 'application/pdf')
    first = submit(client, applicant.token, business_certificate=certificate).get_json()['profile']
    client.post(f'/api/admin/applications/{first["id"]}/reject', json={'reason': 'Redo photos'},
                headers=auth(admin.token))

    storage.fail_buckets = {'provider-documents'}
    new_certificate = (io.BytesIO(b'%PDF-1.4 second'), 'cert2.pdf', 'application/pdf')
    response = client.post('/api/provider/application', data={
        'business_name': 'Karachi Tailors',
        'business_type': 'tailoring',
        'business_certificate': new_certificate,
    }, headers=auth(applicant.token), content_type='multipart/form-data')

    assert response.status_code == 201
    body = response.get_json()
    assert body['failed_uploads'] == ['business_certificate']
    assert body['profile']['application_status'] == 'resubmitted'
    assert body['profile']['documents']['business_certificate'] == first['documents']['business_certificate']
    assert body['profile']['documents']['shop_photos'] == first['documents']['shop_photos']


def test_application_status_only_known_values(app, client, storage, applicant, admin):
    profile_id = submit(client, applicant.token).get_json()['profile']['id']
    client.post(f'/api/admin/applications/{profile_id}/reject', json={'reason': 'x'}, headers=auth(admin.token))
    submit(client, applicant.token)
    client.post(f'/api/admin/applications/{profile_id}/approve', headers=auth(admin.token))

    with app.app_context():
        statuses = {status for (status,) in db.session.query(ProviderProfile.application_status)}
    assert statuses <= {'submitted', 'resubmitted', 'approved', 'rejected'}
    assert statuses == {'approved'}


def test_customer_cannot_apply(client, storage, customer):
    response = submit(client, customer.token)
    assert response.status_code == 403


def test_concurrent_review_raises_conflict(app, client, storage, applicant, admin):
    profile_id = submit(client, applicant.token).get_json()['profile']['id']

    with app.app_context():
        reviewer = db.session.get(User, admin.id)
        profile = db.session.get(ProviderProfile, profile_id)
        assert profile.application_status == 'submitted'
        db.session.execute(
            text('UPDATE provider_profiles SET version = version + 1 WHERE id = :id'), {'id': profile_id}
        )
        with pytest.raises(ConflictError):
            approve_application(profile_id, reviewer)


def test_admin_can_read_private_document(client, storage, applicant, admin, customer):
    documents = submit(client, applicant.token).get_json()['profile']['documents']
    url = f'/api/files/verification-docs/{documents["cnic_front_image"]}'

    assert client.get(url, headers=auth(admin.token)).status_code == 200
    assert client.get(url, headers=auth(applicant.token)).status_code == 200
    assert client.get(url, headers=auth(customer.token)).status_code == 403


def test_pro_badge_request_and_approval(client, provider, admin):
    response = client.post('/api/provider/pro-badge', json={'message': 'Ten years experience'},
                           headers=auth(provider.token))
    assert response.status_code == 201
    request_id = response.get_json()['request']['id']

    assert client.post('/api/provider/pro-badge', json={}, headers=auth(provider.token)).status_code == 400

    response = client.post(f'/api/admin/pro-badges/{request_id}/approve', headers=auth(admin.token))
    assert response.status_code == 200

    profile = client.get(f'/api/provider/{provider.id}').get_json()['provider']
    assert profile['verified_pro'] is True


def test_partial_shop_photo_upload_keeps_photos_on_file(client, storage, applicant, admin):
    first = submit(client, applicant.token,
                   shop_photos=[image('a.png'), image('b.png'), image('c.png')]).get_json()['profile']
    assert len(first['documents']['shop_photos']) == 3
    client.post(f'/api/admin/applications/{first["id"]}/reject', json={'reason': 'Redo'},
                headers=auth(admin.token))

    storage.allowed = {'shop-photos': 1}
    response = submit(client, applicant.token, shop_photos=[image('d.png'), image('e.png')])

    assert response.status_code == 201
    body = response.get_json()
    assert body['failed_uploads'] == ['shop_photos']
    assert body['profile']['application_status'] == 'resubmitted'
    assert body['profile']['documents']['shop_photos'] == first['documents']['shop_photos']


def test_complete_new_shop_photo_set_replaces_old(client, storage, applicant, admin):
    first = submit(client, applicant.token).get_json()['profile']
    client.post(f'/api/admin/applications/{first["id"]}/reject', json={'reason': 'Redo'},
                headers=auth(admin.token))

    response = submit(client, applicant.token, shop_photos=[image('x.png'), image('y.png')])
    photos = response.get_json()['profile']['documents']['shop_photos']
    assert len(photos) == 2
    assert not set(photos) & set(first['documents']['shop_photos'])
