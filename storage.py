"""
Object storage for uploaded files.

Files live under ``<root>/<bucket>/<path>``. The app keeps one backend in
``app.extensions['storage']``; tests swap in a backend that fails on demand.
"""
import logging
import os

from werkzeug.utils import safe_join

logger = logging.getLogger(__name__)

BUCKETS = ('verification-docs', 'shop-photos', 'provider-documents', 'commission-screenshots')

# Only the owner and admins may read these
PRIVATE_BUCKETS = ('verification-docs', 'provider-documents', 'commission-screenshots')


class StorageError(Exception):

    def __init__(self, message, transient=True):
        super().__init__(message)
        self.transient = transient


class LocalStorage:

    def __init__(self, root):
        self.root = root

    def _full_path(self, bucket, path):
        if bucket not in BUCKETS:
            raise StorageError(f'Unknown bucket: {bucket}', transient=False)
        full_path = safe_join(self.root, bucket, path)
        if full_path is None:
            raise StorageError(f'Invalid object path: {path}', transient=False)
        return full_path

    def upload(self, bucket, path, data, content_type=None):
        full_path = self._full_path(bucket, path)
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f'Could not write {bucket}/{path}: {e}') from e
        logger.debug("[STORAGE] Stored %s/%s (%d bytes, %s)", bucket, path, len(data), content_type)
        return path

    def open_path(self, bucket, path):
        """Absolute path of a stored object, or None when it does not exist"""
        full_path = self._full_path(bucket, path)
        return full_path if os.path.isfile(full_path) else None

    def public_url(self, bucket, path):
        return f'/api/files/{bucket}/{path}'


def owner_id_from_path(path):
    """Objects are stored under ``<user_id>/...``"""
    head = path.split('/', 1)[0]
    return int(head) if head.isdigit() else None
