"""Immutable configuration for the file registry.

Django settings are read once, when the registry is built, and
converted into frozen dataclasses that get passed to the components
that need them.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, final

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from server.apps.files.models import BackendKind

_DEFAULT_MAX_UPLOAD_BYTES: Final = 5 * 1024 * 1024
_DEFAULT_ALLOWED_MIME_TYPES: Final = frozenset((
    'image/jpeg',
    'image/png',
    'application/pdf',
))
_DEFAULT_KEY_PREFIX: Final = 'uploads'


@final
@dataclass(frozen=True, slots=True)
class ObjectStoreSettings:
    """Connection settings for an S3-compatible bucket."""

    bucket_name: str
    region_name: str | None = None
    access_key: str | None = None
    secret_key: str | None = None
    endpoint_url: str | None = None
    key_prefix: str = _DEFAULT_KEY_PREFIX

    def as_storage_options(self) -> dict[str, Any]:
        """Keyword arguments for django-storages ``S3Storage``.

        Returns:
            Options dictionary.
        """
        return {
            'bucket_name': self.bucket_name,
            'region_name': self.region_name,
            'access_key': self.access_key,
            'secret_key': self.secret_key,
            'endpoint_url': self.endpoint_url,
            'file_overwrite': False,  # Prevent accidental overwrites
            'default_acl': None,  # Inherit bucket ACL
            'querystring_auth': False,
        }


@final
@dataclass(frozen=True, slots=True)
class RegistrySettings:
    """Process-wide settings of the file registry."""

    storage_backend: BackendKind
    local_root: Path
    max_upload_bytes: int = _DEFAULT_MAX_UPLOAD_BYTES
    allowed_mime_types: frozenset[str] = _DEFAULT_ALLOWED_MIME_TYPES
    object_store: ObjectStoreSettings | None = None


def load_registry_settings() -> RegistrySettings:
    """Build registry settings from Django settings.

    Returns:
        Validated RegistrySettings.

    Raises:
        ImproperlyConfigured: If a setting is missing or invalid.
    """
    storage_backend = _parse_backend_kind(
        getattr(settings, 'FILES_STORAGE_BACKEND', BackendKind.LOCAL),
    )
    max_upload_bytes = _parse_max_upload_bytes(
        getattr(settings, 'FILES_MAX_UPLOAD_BYTES', _DEFAULT_MAX_UPLOAD_BYTES),
    )
    allowed_mime_types = _parse_mime_types(
        getattr(
            settings,
            'FILES_ALLOWED_MIME_TYPES',
            _DEFAULT_ALLOWED_MIME_TYPES,
        ),
    )
    object_store = _parse_object_store(
        getattr(settings, 'FILES_OBJECT_STORE', None),
    )

    if storage_backend == BackendKind.OBJECT_STORE and object_store is None:
        raise ImproperlyConfigured(
            'FILES_STORAGE_BACKEND is "object_store" '
            'but FILES_OBJECT_STORE is not configured',
        )

    return RegistrySettings(
        storage_backend=storage_backend,
        local_root=Path(settings.FILES_LOCAL_ROOT),
        max_upload_bytes=max_upload_bytes,
        allowed_mime_types=allowed_mime_types,
        object_store=object_store,
    )


def _parse_backend_kind(raw_value: str) -> BackendKind:
    try:
        return BackendKind(raw_value)
    except ValueError as error:
        raise ImproperlyConfigured(
            f'Unknown FILES_STORAGE_BACKEND {raw_value!r}, expected one of: '
            f'{", ".join(BackendKind.values)}',
        ) from error


def _parse_max_upload_bytes(raw_value: Any) -> int:
    try:
        max_upload_bytes = int(raw_value)
    except (TypeError, ValueError) as error:
        raise ImproperlyConfigured(
            f'FILES_MAX_UPLOAD_BYTES must be an integer, got {raw_value!r}',
        ) from error
    if max_upload_bytes < 1:
        raise ImproperlyConfigured('FILES_MAX_UPLOAD_BYTES must be positive')
    return max_upload_bytes


def _parse_mime_types(raw_value: Iterable[str]) -> frozenset[str]:
    mime_types = frozenset(
        mime_type.strip().lower()
        for mime_type in raw_value
        if mime_type.strip()
    )
    if not mime_types:
        raise ImproperlyConfigured('FILES_ALLOWED_MIME_TYPES is empty')
    return mime_types


def _parse_object_store(
    raw_value: Mapping[str, Any] | None,
) -> ObjectStoreSettings | None:
    if not raw_value:
        return None
    if not raw_value.get('bucket_name'):
        raise ImproperlyConfigured('FILES_OBJECT_STORE needs a bucket_name')
    try:
        return ObjectStoreSettings(**raw_value)
    except TypeError as error:
        raise ImproperlyConfigured(
            f'Invalid FILES_OBJECT_STORE options: {error}',
        ) from error
