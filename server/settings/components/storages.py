"""Storage backend configuration for user files.

Uploaded files go to one backend chosen at deployment time:

- ``local``: a managed directory on the server's disk
- ``object_store``: an S3-compatible bucket (MinIO, R2, AWS S3)

Files that were uploaded while another backend was configured stay
readable as long as that backend's settings are still present.
"""

from typing import Any, Final

from server.settings.components import BASE_DIR, config

FILES_STORAGE_BACKEND = config('FILES_STORAGE_BACKEND', default='local')

FILES_LOCAL_ROOT = config(
    'FILES_LOCAL_ROOT',
    default=str(BASE_DIR.joinpath('media', 'uploads')),
)

_BUCKET_NAME = config('AWS_STORAGE_BUCKET_NAME', default='')

# S3-compatible bucket, only configured when a bucket name is set
FILES_OBJECT_STORE: Final[dict[str, Any] | None] = {
    'bucket_name': _BUCKET_NAME,
    'access_key': config('AWS_ACCESS_KEY_ID', default=None),
    'secret_key': config('AWS_SECRET_ACCESS_KEY', default=None),
    'endpoint_url': config('AWS_S3_ENDPOINT_URL', default=None),
    'region_name': config('AWS_S3_REGION_NAME', default='auto'),
    'key_prefix': config('FILES_OBJECT_STORE_PREFIX', default='uploads'),
} if _BUCKET_NAME else None

STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': {
        'BACKEND': 'django.core.files.storage.FileSystemStorage',
    },
    'staticfiles': {
        # Keep static files separate from user files
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}
