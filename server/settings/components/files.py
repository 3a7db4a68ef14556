"""Upload limits for the files app."""

from decouple import Csv

from server.settings.components import config

# 5 MiB
FILES_MAX_UPLOAD_BYTES = config(
    'FILES_MAX_UPLOAD_BYTES',
    cast=int,
    default=5 * 1024 * 1024,
)

FILES_ALLOWED_MIME_TYPES = config(
    'FILES_ALLOWED_MIME_TYPES',
    cast=Csv(post_process=frozenset),
    default='image/jpeg,image/png,application/pdf',
)
