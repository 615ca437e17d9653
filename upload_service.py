"""
Validation, compression and retrying upload of user files.

Files are handled per named slot (``cnic_front``, ``shop_photos`` ...), so a
file that fails to upload can never shift another file into the wrong field.
Every file is validated before the first storage call is made.
"""
import io
import logging
import secrets
import time

from flask import current_app
from PIL import Image

from errors import UploadError, ValidationError
from storage import StorageError

logger = logging.getLogger(__name__)

IMAGE_TYPES = ('image/jpeg', 'image/jpg', 'image/png', 'image/webp')
DOCUMENT_TYPES = ('application/pdf', 'image/jpeg', 'image/jpg', 'image/png')

_EXTENSIONS = {
    'image/jpeg': 'jpg',
    'image/jpg': 'jpg',
    'image/png': 'png',
    'image/webp': 'webp',
    'application/pdf': 'pdf',
}


class Slot:

    def __init__(self, name, bucket, kind, field, multiple=False, label=None):
        self.name = name
        self.bucket = bucket
        self.kind = kind
        self.field = field
        self.multiple = multiple
        self.label = label or name.replace('_', ' ')

    @property
    def allowed_types(self):
        return IMAGE_TYPES if self.kind == 'image' else DOCUMENT_TYPES


APPLICATION_SLOTS = {
    slot.name: slot for slot in (
        Slot('cnic_front', 'verification-docs', 'image', 'cnic_front_image', label='CNIC front'),
        Slot('profile_photo', 'verification-docs', 'image', 'profile_photo', label='profile photo'),
        Slot('cnic_back', 'verification-docs', 'image', 'cnic_back_image', label='CNIC back'),
        Slot('license_certificate', 'verification-docs', 'document', 'license_certificate'),
        Slot('proof_of_address', 'verification-docs', 'document', 'proof_of_address'),
        Slot('business_certificate', 'provider-documents', 'document', 'business_certificate'),
        Slot('shop_photos', 'shop-photos', 'image', 'shop_photos', multiple=True, label='shop photo'),
    )
}

SCREENSHOT_SLOT = Slot('screenshot', 'commission-screenshots', 'image', 'screenshot_url', label='payment screenshot')


class PendingFile:
    """An uploaded file read into memory, waiting to be validated and stored"""

    def __init__(self, filename, content_type, data):
        self.filename = filename or ''
        self.content_type = (content_type or '').lower()
        self.data = data

    @classmethod
    def from_storage(cls, file_storage):
        return cls(file_storage.filename, file_storage.mimetype, file_storage.read())

    @property
    def size(self):
        return len(self.data)

    def __repr__(self):
        return f'<PendingFile {self.filename} {self.content_type} {self.size}b>'


def validate_file(pending, slot, max_bytes=None):
    if max_bytes is None:
        max_bytes = current_app.config['MAX_UPLOAD_BYTES']

    if not pending.size:
        raise ValidationError(f'The {slot.label} file is empty')
    if pending.size > max_bytes:
        raise ValidationError(
            f'The {slot.label} file is too large. Maximum size is {max_bytes // (1024 * 1024)}MB'
        )
    if pending.content_type not in slot.allowed_types:
        raise ValidationError(
            f'The {slot.label} file type {pending.content_type or "unknown"} is not allowed'
        )


def compress_image(data, content_type, max_dimension=1200, quality=80):
    """Downscale an image to ``max_dimension`` and re-encode it as JPEG.

    Returns ``(data, content_type)``. PDFs and anything Pillow cannot read
    are returned unchanged.
    """
    if not content_type.startswith('image/'):
        return data, content_type

    try:
        with Image.open(io.BytesIO(data)) as image:
            image.thumbnail((max_dimension, max_dimension))
            if image.mode != 'RGB':
                image = image.convert('RGB')
            output = io.BytesIO()
            image.save(output, format='JPEG', quality=quality)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning("[UPLOAD] Compression failed, using original file: %s", e)
        return data, content_type

    return output.getvalue(), 'image/jpeg'


def object_path(user_id, content_type):
    extension = _EXTENSIONS.get(content_type, 'bin')
    return f'{user_id}/{int(time.time() * 1000)}-{secrets.token_hex(4)}.{extension}'


def upload_with_retry(storage, bucket, path, data, content_type, max_retries=3, base_delay=1.0, sleep=time.sleep):
    """Upload one object, retrying transient failures with exponential backoff.

    Waits ``base_delay * 2 ** attempt`` seconds between attempts and raises
    UploadError once ``max_retries`` retries have failed.
    """
    attempt = 0
    while True:
        try:
            return storage.upload(bucket, path, data, content_type)
        except StorageError as e:
            if not e.transient or attempt >= max_retries:
                logger.error("[UPLOAD] Giving up on %s/%s after %d attempts: %s", bucket, path, attempt + 1, e)
                raise UploadError(f'Upload failed: {e}') from e
            delay = base_delay * (2 ** attempt)
            logger.warning("[UPLOAD] Attempt %d for %s/%s failed, retrying in %.1fs: %s",
                           attempt + 1, bucket, path, delay, e)
            sleep(delay)
            attempt += 1


def store_file(storage, user_id, slot, pending, sleep=time.sleep):
    config = current_app.config
    data, content_type = compress_image(
        pending.data, pending.content_type,
        max_dimension=config['IMAGE_MAX_DIMENSION'],
        quality=config['IMAGE_QUALITY'],
    )
    path = object_path(user_id, content_type)
    return upload_with_retry(
        storage, slot.bucket, path, data, content_type,
        max_retries=config['UPLOAD_MAX_RETRIES'],
        base_delay=config['UPLOAD_RETRY_BASE_DELAY'],
        sleep=sleep,
    )


def validate_slots(files, slots):
    """Check every file of every slot; nothing is uploaded when one is invalid"""
    for name, pending_files in files.items():
        slot = slots.get(name)
        if slot is None:
            raise ValidationError(f'Unknown upload field: {name}')
        if not slot.multiple and len(pending_files) > 1:
            raise ValidationError(f'Only one {slot.label} file is allowed')
        for pending in pending_files:
            validate_file(pending, slot)


def upload_slots(storage, user_id, files, slots, sleep=time.sleep):
    """Upload validated files slot by slot.

    ``files`` maps a slot name to a list of PendingFile. Returns
    ``(paths, failed)``: ``paths`` maps each slot to its stored path (a list
    for repeated slots, holding only the files that made it) and ``failed``
    names the files that could not be stored after retrying.
    """
    validate_slots(files, slots)

    paths = {}
    failed = []
    for name, pending_files in files.items():
        slot = slots[name]
        stored = []
        for pending in pending_files:
            try:
                stored.append(store_file(storage, user_id, slot, pending, sleep=sleep))
            except UploadError:
                failed.append(name)
        if slot.multiple:
            if stored:
                paths[name] = stored
        elif stored:
            paths[name] = stored[0]

    if failed:
        logger.warning("[UPLOAD] User %s: %d file(s) failed to upload: %s", user_id, len(failed), ', '.join(failed))
    return paths, failed


def files_from_request(request_files, slots):
    """Collect the non-empty files of a multipart request by slot name"""
    files = {}
    for name in slots:
        pending_files = [
            PendingFile.from_storage(storage_file)
            for storage_file in request_files.getlist(name)
            if storage_file and storage_file.filename
        ]
        if pending_files:
            files[name] = pending_files
    return files
