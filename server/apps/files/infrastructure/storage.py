"""Storage backends for uploaded file content.

Each backend wraps a Django ``Storage`` and exposes the same small
contract to the registry: put bytes, get bytes, delete bytes. Backend
failures are translated into ``StoredObjectNotFoundError`` (the object
is gone) or ``BackendUnavailableError`` (anything else, may be retried).
"""

import logging
from abc import ABC
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, Final, final, override

from botocore.exceptions import BotoCoreError, ClientError
from django.core.files.base import ContentFile
from django.core.files.storage import FileSystemStorage, Storage
from storages.backends.s3 import S3Storage

from server.apps.files.conf import ObjectStoreSettings, RegistrySettings
from server.apps.files.exceptions import (
    BackendUnavailableError,
    FileRegistryError,
    StoredObjectNotFoundError,
)
from server.apps.files.infrastructure.metadata import generate_storage_name
from server.apps.files.models import BackendKind

logger = logging.getLogger(__name__)

_MISSING_OBJECT_CODES: Final = frozenset(('404', 'NoSuchKey', 'NotFound'))
_LOCAL_FILE_PERMISSIONS: Final = 0o640


@final
class ObjectStoreStorage(S3Storage):
    """S3 storage with logging around writes and deletes."""

    @override
    def save(  # noqa: WPS211
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Save file to S3 with error logging.

        Args:
            name: Object key for the file.
            content: File content (file-like object).
            max_length: Optional maximum length for the key.

        Returns:
            Actual key used (may differ from name if conflicts).

        Raises:
            Exception: If S3 upload fails.
        """
        try:
            logger.info('Uploading object to bucket: %s', name)
            saved_name = super().save(name, content, max_length)
            logger.info('Successfully uploaded object: %s', saved_name)
        except Exception:
            logger.exception('Failed to upload object to bucket: %s', name)
            raise
        else:
            return saved_name

    @override
    def delete(self, name: str) -> None:
        """Delete file from S3 with error logging.

        Args:
            name: Object key of file to delete.

        Raises:
            Exception: If S3 delete fails.
        """
        try:
            logger.info('Deleting object from bucket: %s', name)
            super().delete(name)
            logger.info('Successfully deleted object: %s', name)
        except Exception:
            logger.exception('Failed to delete object from bucket: %s', name)
            raise


class StorageBackend(ABC):
    """Byte storage addressed by opaque locators.

    Subclasses pick the Django storage and decide which errors mean
    "object missing" for their backend.
    """

    kind: ClassVar[BackendKind]
    unavailable_errors: ClassVar[tuple[type[Exception], ...]] = (OSError,)

    def __init__(self, storage: Storage, prefix: str = '') -> None:
        """Initialize backend.

        Args:
            storage: Django storage holding the bytes.
            prefix: Folder (or key prefix) for generated names.
        """
        self._storage = storage
        self._prefix = prefix.strip('/')

    def put(
        self,
        content: bytes,
        content_type: str,
        suggested_name: str,
    ) -> str:
        """Store bytes under a newly generated name.

        Args:
            content: Bytes to store.
            content_type: MIME type recorded with the object.
            suggested_name: Client filename, used for its extension only.

        Returns:
            Locator of the stored object.

        Raises:
            BackendUnavailableError: If the write fails.
        """
        name = generate_storage_name(suggested_name)
        if self._prefix:
            name = f'{self._prefix}/{name}'

        file_obj = ContentFile(content, name=name)
        file_obj.content_type = content_type  # type: ignore[attr-defined]

        with self._translate_errors('put'):
            locator = self._storage.save(name, file_obj)

        logger.info(
            'Stored %d bytes in %s backend: %s',
            len(content),
            self.kind,
            locator,
        )
        return locator

    def get(self, locator: str) -> bytes:
        """Read an object's bytes.

        Args:
            locator: Locator returned by ``put``.

        Returns:
            Stored bytes.

        Raises:
            StoredObjectNotFoundError: If no object exists.
            BackendUnavailableError: If the read fails.
        """
        with self._translate_errors('get', locator):
            with self._storage.open(locator, 'rb') as stored:
                return stored.read()

    def delete(self, locator: str) -> None:
        """Delete an object. Deleting a missing object is a no-op.

        Args:
            locator: Locator returned by ``put``.

        Raises:
            BackendUnavailableError: If the delete fails.
        """
        with self._translate_errors('delete', locator):
            self._storage.delete(locator)
        logger.info('Deleted object from %s backend: %s', self.kind, locator)

    def rollback_upload(self, locator: str) -> None:
        """Delete an uploaded object whose metadata was never saved.

        This is a best-effort operation - if deletion fails, the error
        is logged but not raised. The object stays behind as an orphan
        for ``reconcile_storage`` to find.

        Args:
            locator: Locator of the object to delete.
        """
        try:
            logger.warning('Rolling back upload, deleting object: %s', locator)
            self.delete(locator)
        except FileRegistryError:
            logger.exception(
                'Failed to rollback upload, orphaned object: %s',
                locator,
            )
        else:
            logger.info('Successfully rolled back upload: %s', locator)

    def iter_locators(self) -> Iterator[str]:
        """Yield locators of every object under the backend's prefix.

        Yields:
            Locators in name order.
        """
        with self._translate_errors('list'):
            _, names = self._storage.listdir(self._prefix)
        for name in sorted(names):
            yield f'{self._prefix}/{name}' if self._prefix else name

    def modified_time(self, locator: str) -> datetime:
        """Last modification time of an object.

        Args:
            locator: Locator of the object.

        Returns:
            Modification time (timezone-aware when USE_TZ is on).

        Raises:
            StoredObjectNotFoundError: If no object exists.
        """
        with self._translate_errors('stat', locator):
            return self._storage.get_modified_time(locator)

    def _is_missing(self, error: Exception) -> bool:
        return isinstance(error, FileNotFoundError)

    @contextmanager
    def _translate_errors(
        self,
        operation: str,
        locator: str | None = None,
    ) -> Iterator[None]:
        try:
            yield
        except self.unavailable_errors as error:
            if locator is not None and self._is_missing(error):
                raise StoredObjectNotFoundError(
                    self.kind.value,
                    locator,
                ) from error
            logger.exception(
                '%s backend failed during %s: %s',
                self.kind,
                operation,
                locator or '-',
            )
            raise BackendUnavailableError(
                self.kind.value,
                operation,
            ) from error


@final
class LocalDiskBackend(StorageBackend):
    """Files in a single managed directory on local disk.

    Locators are names relative to the managed root.
    """

    kind = BackendKind.LOCAL

    def __init__(self, root: Path) -> None:
        """Initialize backend and create the managed root.

        Args:
            root: Directory holding all uploaded files.
        """
        root.mkdir(parents=True, exist_ok=True)
        super().__init__(
            FileSystemStorage(
                location=root,
                file_permissions_mode=_LOCAL_FILE_PERMISSIONS,
            ),
        )
        self.root = root


@final
class ObjectStoreBackend(StorageBackend):
    """Objects in an S3-compatible bucket.

    Locators are object keys under the configured key prefix.
    """

    kind = BackendKind.OBJECT_STORE
    unavailable_errors = (ClientError, BotoCoreError, OSError)

    def __init__(self, object_store: ObjectStoreSettings) -> None:
        """Initialize backend.

        Args:
            object_store: Bucket connection settings.
        """
        super().__init__(
            ObjectStoreStorage(**object_store.as_storage_options()),
            prefix=object_store.key_prefix,
        )
        self.bucket_name = object_store.bucket_name

    @override
    def _is_missing(self, error: Exception) -> bool:
        if isinstance(error, ClientError):
            error_code = error.response.get('Error', {}).get('Code')
            return error_code in _MISSING_OBJECT_CODES
        return super()._is_missing(error)


def build_backends(
    registry_settings: RegistrySettings,
) -> dict[BackendKind, StorageBackend]:
    """Build every backend the settings describe.

    The local backend always exists so files stored before a switch to
    the object store stay readable; the object store backend exists
    only when a bucket is configured.

    Args:
        registry_settings: Registry configuration.

    Returns:
        Backends keyed by kind.
    """
    backends: dict[BackendKind, StorageBackend] = {
        BackendKind.LOCAL: LocalDiskBackend(registry_settings.local_root),
    }
    if registry_settings.object_store is not None:
        backends[BackendKind.OBJECT_STORE] = ObjectStoreBackend(
            registry_settings.object_store,
        )
    return backends
