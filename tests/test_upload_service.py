import io

import pytest
from PIL import Image

from conftest import image_bytes
from errors import UploadError, ValidationError
from storage import StorageError
from upload_service import (
    APPLICATION_SLOTS, SCREENSHOT_SLOT, PendingFile, compress_image, upload_slots,
    upload_with_retry, validate_file,
)

MB = 1024 * 1024


class FlakyStorage:
    """Fails the first ``failures`` uploads, then stores normally"""

    def __init__(self, failures=0, transient=True, fail_buckets=None):
        self.failures = failures
        self.transient = transient
        self.fail_buckets = fail_buckets
        self.calls = []
        self.stored = {}

    def upload(self, bucket, path, data, content_type=None):
        self.calls.append((bucket, path))
        failing = self.fail_buckets is None or bucket in self.fail_buckets
        if failing and self.failures:
            self.failures -= 1
            raise StorageError('timeout', transient=self.transient)
        self.stored[(bucket, path)] = data
        return path


class AlwaysFailing(FlakyStorage):

    def __init__(self, fail_buckets):
        super().__init__(fail_buckets=fail_buckets)

    def upload(self, bucket, path, data, content_type=None):
        self.calls.append((bucket, path))
        if bucket in self.fail_buckets:
            raise StorageError('service unavailable')
        self.stored[(bucket, path)] = data
        return path


def png(name='photo.png'):
    return PendingFile(name, 'image/png', image_bytes())


def test_rejects_file_over_two_megabytes():
    big = PendingFile('big.png', 'image/png', b'x' * (2 * MB + 1))
    with pytest.raises(ValidationError, match='too large'):
        validate_file(big, APPLICATION_SLOTS['cnic_front'], max_bytes=2 * MB)


def test_accepts_file_of_exactly_two_megabytes():
    validate_file(PendingFile('ok.png', 'image/png', b'x' * (2 * MB)), APPLICATION_SLOTS['cnic_front'], max_bytes=2 * MB)


def test_rejects_type_outside_allowlist():
    gif = PendingFile('anim.gif', 'image/gif', b'GIF89a')
    with pytest.raises(ValidationError, match='not allowed'):
        validate_file(gif, APPLICATION_SLOTS['profile_photo'], max_bytes=2 * MB)


def test_pdf_only_allowed_in_document_slots():
    pdf = PendingFile('cert.pdf', 'application/pdf', b'%PDF-1.4')
    validate_file(pdf, APPLICATION_SLOTS['license_certificate'], max_bytes=2 * MB)
    with pytest.raises(ValidationError):
        validate_file(pdf, APPLICATION_SLOTS['shop_photos'], max_bytes=2 * MB)


def test_rejects_empty_file():
    with pytest.raises(ValidationError, match='empty'):
        validate_file(PendingFile('x.png', 'image/png', b''), SCREENSHOT_SLOT, max_bytes=2 * MB)


def test_compress_image_limits_longest_side():
    data, content_type = compress_image(image_bytes(size=(3000, 1500)), 'image/png', max_dimension=1200, quality=80)
    assert content_type == 'image/jpeg'
    with Image.open(io.BytesIO(data)) as image:
        assert max(image.size) == 1200
        assert image.format == 'JPEG'


def test_compress_leaves_pdf_alone():
    assert compress_image(b'%PDF-1.4 data', 'application/pdf') == (b'%PDF-1.4 data', 'application/pdf')


def test_compress_falls_back_to_original_bytes():
    assert compress_image(b'not an image', 'image/png') == (b'not an image', 'image/png')


def test_upload_retries_with_exponential_backoff():
    storage = FlakyStorage(failures=3)
    delays = []
    path = upload_with_retry(storage, 'shop-photos', '1/a.jpg', b'data', 'image/jpeg',
                             max_retries=3, base_delay=1.0, sleep=delays.append)
    assert path == '1/a.jpg'
    assert delays == [1.0, 2.0, 4.0]
    assert len(storage.calls) == 4


def test_upload_gives_up_after_three_retries():
    storage = FlakyStorage(failures=10)
    delays = []
    with pytest.raises(UploadError):
        upload_with_retry(storage, 'shop-photos', '1/a.jpg', b'data', 'image/jpeg',
                          max_retries=3, base_delay=1.0, sleep=delays.append)
    assert len(storage.calls) == 4
    assert delays == [1.0, 2.0, 4.0]


def test_permanent_error_is_not_retried():
    storage = FlakyStorage(failures=1, transient=False)
    delays = []
    with pytest.raises(UploadError):
        upload_with_retry(storage, 'shop-photos', '1/a.jpg', b'data', 'image/jpeg', sleep=delays.append)
    assert delays == []


def test_invalid_file_stops_every_upload(app):
    storage = FlakyStorage()
    files = {
        'cnic_front': [png()],
        'profile_photo': [PendingFile('p.bmp', 'image/bmp', b'BM....')],
    }
    with app.app_context():
        with pytest.raises(ValidationError):
            upload_slots(storage, 1, files, APPLICATION_SLOTS, sleep=lambda _: None)
    assert storage.calls == []


def test_failed_slot_does_not_shift_other_files(app):
    storage = AlwaysFailing(fail_buckets={'provider-documents'})
    files = {
        'cnic_front': [png('front.png')],
        'business_certificate': [PendingFile('cert.pdf', 'application/pdf', b'%PDF-1.4')],
        'profile_photo': [png('me.png')],
        'shop_photos': [png('s1.png'), png('s2.png')],
    }
    with app.app_context():
        paths, failed = upload_slots(storage, 7, files, APPLICATION_SLOTS, sleep=lambda _: None)

    assert failed == ['business_certificate']
    assert set(paths) == {'cnic_front', 'profile_photo', 'shop_photos'}
    assert len(paths['shop_photos']) == 2
    assert all(path.startswith('7/') and path.endswith('.jpg') for path in [paths['cnic_front'], paths['profile_photo']])
    assert paths['cnic_front'] != paths['profile_photo']
