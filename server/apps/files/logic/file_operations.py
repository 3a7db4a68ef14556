"""Business logic for file operations.

``FileRegistry`` keeps file bytes (in a storage backend) and file
metadata (in the database) consistent:

- upload writes bytes first and the record second, deleting the bytes
  again if the record cannot be written
- delete removes bytes first and the record second, keeping the record
  if the bytes cannot be removed
- download and list never change anything but the download counter
"""

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import cache
from types import MappingProxyType
from typing import Any, Final, final

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction

from server.apps.files.conf import RegistrySettings, load_registry_settings
from server.apps.files.exceptions import (
    AccessDeniedError,
    BackendUnavailableError,
    FileRecordNotFoundError,
    PayloadTooLargeError,
    StoredObjectNotFoundError,
    UnauthenticatedError,
    UnsupportedMediaTypeError,
)
from server.apps.files.infrastructure.metadata import (
    normalize_tags,
    validate_description,
    validate_original_name,
    validate_visibility,
)
from server.apps.files.infrastructure.storage import (
    StorageBackend,
    build_backends,
)
from server.apps.files.logic.access_policy import can_mutate, can_read
from server.apps.files.models import File, Tag

logger = logging.getLogger(__name__)

_METADATA_BACKEND: Final = 'metadata'
_MUTABLE_FIELDS: Final = frozenset(('description', 'tags', 'is_public'))
_SORT_FIELDS: Final = frozenset((
    'uploaded_at',
    'original_name',
    'size_bytes',
    'mime_type',
    'download_count',
))


@final
@dataclass(frozen=True, slots=True)
class FileFilters:
    """Optional narrowing of a file listing."""

    search: str = ''
    tag: str | None = None
    mime_type: str | None = None


@final
@dataclass(frozen=True, slots=True)
class Pagination:
    """One-based page selection."""

    page: int = 1
    page_size: int = 10

    def __post_init__(self) -> None:
        """Validate page numbers.

        Raises:
            ValidationError: If page or page size is below 1.
        """
        if self.page < 1:
            raise ValidationError('Page must be at least 1')
        if self.page_size < 1:
            raise ValidationError('Page size must be at least 1')

    @property
    def offset(self) -> int:
        """Index of the first record on the page."""
        return (self.page - 1) * self.page_size


@final
@dataclass(frozen=True, slots=True)
class Sort:
    """Sort key and direction of a file listing."""

    field: str = 'uploaded_at'
    descending: bool = True

    def __post_init__(self) -> None:
        """Validate sort field.

        Raises:
            ValidationError: If the field cannot be sorted on.
        """
        if self.field not in _SORT_FIELDS:
            raise ValidationError(
                f'Cannot sort by {self.field!r}, expected one of: '
                f'{", ".join(sorted(_SORT_FIELDS))}',
            )

    def order_by(self) -> tuple[str, str]:
        """ORM ordering with the primary key as tie-breaker.

        Returns:
            Arguments for ``QuerySet.order_by``.
        """
        prefix = '-' if self.descending else ''
        return f'{prefix}{self.field}', f'{prefix}pk'


@final
@dataclass(frozen=True, slots=True)
class FilePage:
    """One page of a file listing."""

    files: list[File]
    total_files: int
    total_pages: int
    current_page: int


@final
@dataclass(frozen=True, slots=True)
class Download:
    """Downloaded bytes with their (refreshed) record."""

    content: bytes = field(repr=False)
    file: File


@final
class FileRegistry:
    """Coordinates storage backends, metadata and access rules."""

    def __init__(
        self,
        registry_settings: RegistrySettings,
        backends: Mapping[str, StorageBackend],
    ) -> None:
        """Initialize registry.

        Args:
            registry_settings: Registry configuration.
            backends: Storage backends keyed by backend kind. Must
                contain the configured upload backend.

        Raises:
            ValueError: If the upload backend is missing.
        """
        if registry_settings.storage_backend not in backends:
            raise ValueError(
                f'No backend for {registry_settings.storage_backend!s}',
            )
        self.settings = registry_settings
        self._backends = dict(backends)
        self._upload_backend = backends[registry_settings.storage_backend]

    @property
    def backends(self) -> Mapping[str, StorageBackend]:
        """Storage backends keyed by backend kind."""
        return MappingProxyType(self._backends)

    def validate_upload(self, content_type: str, size_bytes: int) -> None:
        """Check content type and size before any bytes are stored.

        Args:
            content_type: Declared MIME type.
            size_bytes: Payload size in bytes.

        Raises:
            UnsupportedMediaTypeError: If the MIME type is not allowed.
            PayloadTooLargeError: If the payload exceeds the ceiling.
        """
        content_type = _normalize_mime_type(content_type)
        if content_type not in self.settings.allowed_mime_types:
            raise UnsupportedMediaTypeError(
                content_type,
                self.settings.allowed_mime_types,
            )
        if size_bytes > self.settings.max_upload_bytes:
            raise PayloadTooLargeError(
                size_bytes,
                self.settings.max_upload_bytes,
            )

    def upload(  # noqa: WPS211
        self,
        principal_id: int | None,
        content: bytes,
        content_type: str,
        original_name: str,
        description: str = '',
        tags: str | Iterable[str] = (),
        is_public: bool = False,  # noqa: FBT001, FBT002
    ) -> File:
        """Store file bytes and create the file record.

        Transaction safety: bytes go to the backend first, then the
        record is created. If the record cannot be created (or the
        call is interrupted in between), the stored bytes are deleted
        again (rollback).

        Args:
            principal_id: ID of the uploading user.
            content: File bytes.
            content_type: Declared MIME type.
            original_name: Client filename.
            description: Free-text description.
            tags: Tag names (list or comma separated string).
            is_public: Whether other users may read the file.

        Returns:
            Created File instance.

        Raises:
            UnauthenticatedError: If there is no principal.
            UnsupportedMediaTypeError: If the MIME type is not allowed.
            PayloadTooLargeError: If the payload exceeds the ceiling.
            ValidationError: If a metadata field is malformed.
            BackendUnavailableError: If the backend or database fails.
        """
        if principal_id is None:
            raise UnauthenticatedError('upload')

        content_type = _normalize_mime_type(content_type)
        self.validate_upload(content_type, len(content))
        original_name = validate_original_name(original_name)
        description = validate_description(description)
        tag_names = normalize_tags(tags)
        is_public = validate_visibility(is_public)

        backend = self._upload_backend

        # Step 1: Store bytes
        locator = backend.put(content, content_type, original_name)

        # Step 2: Create record, delete the bytes if that does not happen
        persisted = False
        try:
            file_instance = self._create_record(
                principal_id,
                locator=locator,
                backend=backend,
                size_bytes=len(content),
                content_type=content_type,
                original_name=original_name,
                description=description,
                tag_names=tag_names,
                is_public=is_public,
            )
            persisted = True
        except DatabaseError as error:
            logger.exception(
                'Database write failed, rolling back storage upload: %s',
                locator,
            )
            raise BackendUnavailableError(
                _METADATA_BACKEND,
                'create',
            ) from error
        finally:
            if not persisted:
                backend.rollback_upload(locator)

        logger.info(
            'File uploaded: %s (ID: %d, %d bytes, %s)',
            original_name,
            file_instance.pk,
            file_instance.size_bytes,
            locator,
        )
        return file_instance

    def get_file(self, principal_id: int | None, file_id: int) -> File:
        """Read a file record.

        Args:
            principal_id: ID of the acting user (None for anonymous).
            file_id: ID of the file.

        Returns:
            File instance.

        Raises:
            FileRecordNotFoundError: If the file does not exist.
            AccessDeniedError: If the principal may not read it.
        """
        file_instance = _get_record(file_id)
        if not can_read(principal_id, file_instance):
            raise AccessDeniedError(file_id, principal_id, 'read')
        return file_instance

    def download(self, principal_id: int | None, file_id: int) -> Download:
        """Read a file's bytes and count the download.

        The counter increment is best-effort: if it fails the download
        still succeeds.

        Args:
            principal_id: ID of the acting user (None for anonymous).
            file_id: ID of the file.

        Returns:
            Download with bytes and record.

        Raises:
            FileRecordNotFoundError: If the file or its bytes are missing.
            AccessDeniedError: If the principal may not read it.
            BackendUnavailableError: If the backend fails.
        """
        file_instance = self.get_file(principal_id, file_id)
        backend = self._backend_for(file_instance)

        try:
            content = backend.get(file_instance.storage_locator)
        except StoredObjectNotFoundError as error:
            logger.exception(
                'File record has no stored object: ID=%d, locator=%s',
                file_id,
                file_instance.storage_locator,
            )
            raise FileRecordNotFoundError(file_id) from error

        self._record_download(file_instance)
        return Download(content=content, file=file_instance)

    def delete(self, principal_id: int | None, file_id: int) -> None:
        """Delete a file's bytes and then its record.

        Transaction safety: if the bytes cannot be deleted the record
        is kept, so no record is ever removed while its bytes remain.

        Args:
            principal_id: ID of the acting user.
            file_id: ID of the file.

        Raises:
            FileRecordNotFoundError: If the file does not exist.
            AccessDeniedError: If the principal is not the owner.
            BackendUnavailableError: If the backend or database fails.
        """
        file_instance = _get_record(file_id)
        if not can_mutate(principal_id, file_instance):
            raise AccessDeniedError(file_id, principal_id, 'delete')

        locator = file_instance.storage_locator
        backend = self._backend_for(file_instance)

        logger.info('Deleting file: ID=%d, locator=%s', file_id, locator)

        # Step 1: Delete bytes, failure keeps the record
        backend.delete(locator)

        # Step 2: Delete record
        try:
            with transaction.atomic():
                file_instance.delete()
        except DatabaseError as error:
            logger.exception(
                'Failed to delete file record after its object: ID=%d',
                file_id,
            )
            raise BackendUnavailableError(
                _METADATA_BACKEND,
                'delete',
            ) from error

        logger.info('File deleted: ID=%d', file_id)

    def update(
        self,
        principal_id: int | None,
        file_id: int,
        fields: Mapping[str, Any],
    ) -> File:
        """Apply owner edits to description, tags and visibility.

        Keys outside the editable set are ignored.

        Args:
            principal_id: ID of the acting user.
            file_id: ID of the file.
            fields: Requested changes.

        Returns:
            Updated File instance.

        Raises:
            FileRecordNotFoundError: If the file does not exist.
            AccessDeniedError: If the principal is not the owner.
            ValidationError: If a value is malformed.
        """
        ignored = sorted(set(fields) - _MUTABLE_FIELDS)
        if ignored:
            logger.debug(
                'Ignoring non-editable fields for file %d: %s',
                file_id,
                ', '.join(ignored),
            )

        with transaction.atomic():
            try:
                file_instance = File.objects.select_for_update().get(
                    pk=file_id,
                )
            except File.DoesNotExist as error:
                raise FileRecordNotFoundError(file_id) from error

            if not can_mutate(principal_id, file_instance):
                raise AccessDeniedError(file_id, principal_id, 'update')

            changes = _validate_changes(fields)

            tag_names = changes.pop('tags', None)
            for field_name, field_value in changes.items():
                setattr(file_instance, field_name, field_value)
            file_instance.save(update_fields=[*changes, 'modified_at'])

            if tag_names is not None:
                _set_tags(file_instance, tag_names)

        logger.info(
            'File updated: ID=%d, fields=%s',
            file_id,
            ', '.join(sorted(set(fields) & _MUTABLE_FIELDS)) or '-',
        )
        return file_instance

    def list_files(
        self,
        principal_id: int | None,
        filters: FileFilters | None = None,
        pagination: Pagination | None = None,
        sort: Sort | None = None,
    ) -> FilePage:
        """List files the principal can see.

        Reads only the database, never a storage backend.

        Args:
            principal_id: ID of the acting user (None for anonymous).
            filters: Search, tag and MIME type filters.
            pagination: Page selection (first 10 by default).
            sort: Ordering (newest first by default).

        Returns:
            Requested page with totals.
        """
        filters = filters or FileFilters()
        pagination = pagination or Pagination()
        sort = sort or Sort()

        queryset = File.objects.visible_to(principal_id)
        if filters.search.strip():
            queryset = queryset.search(filters.search)
        if filters.tag:
            queryset = queryset.with_tag(filters.tag)
        if filters.mime_type:
            queryset = queryset.of_type(filters.mime_type)

        total_files = queryset.count()
        page_end = pagination.offset + pagination.page_size
        files = list(
            queryset.order_by(*sort.order_by())
            .select_related('user')
            .prefetch_related('tags')[pagination.offset:page_end],
        )

        logger.debug(
            'Listed %d of %d files for principal %s',
            len(files),
            total_files,
            principal_id,
        )
        return FilePage(
            files=files,
            total_files=total_files,
            total_pages=math.ceil(total_files / pagination.page_size),
            current_page=pagination.page,
        )

    def _backend_for(self, file_instance: File) -> StorageBackend:
        try:
            return self._backends[file_instance.backend_kind]
        except KeyError as error:
            logger.exception(
                'No backend configured for %s (file ID=%d)',
                file_instance.backend_kind,
                file_instance.pk,
            )
            raise BackendUnavailableError(
                file_instance.backend_kind,
                'resolve',
            ) from error

    def _create_record(  # noqa: WPS211
        self,
        principal_id: int,
        *,
        locator: str,
        backend: StorageBackend,
        size_bytes: int,
        content_type: str,
        original_name: str,
        description: str,
        tag_names: list[str],
        is_public: bool,
    ) -> File:
        with transaction.atomic():
            file_instance = File.objects.create(
                user_id=principal_id,
                original_name=original_name,
                size_bytes=size_bytes,
                mime_type=content_type,
                storage_locator=locator,
                backend_kind=backend.kind,
                description=description,
                is_public=is_public,
            )
            _set_tags(file_instance, tag_names)
        return file_instance

    def _record_download(self, file_instance: File) -> None:
        try:
            File.objects.increment_downloads(file_instance.pk)
            file_instance.refresh_from_db(fields=['download_count'])
        except DatabaseError:
            # Counter is best-effort, the caller already has the bytes
            logger.exception(
                'Failed to record download: ID=%d',
                file_instance.pk,
            )


@cache
def get_file_registry() -> FileRegistry:
    """Get the process-wide registry built from Django settings.

    Returns:
        Shared FileRegistry instance.
    """
    registry_settings = load_registry_settings()
    logger.info(
        'Building file registry with %s upload backend',
        registry_settings.storage_backend,
    )
    return FileRegistry(registry_settings, build_backends(registry_settings))


def _get_record(file_id: int) -> File:
    try:
        return File.objects.get(pk=file_id)
    except File.DoesNotExist as error:
        raise FileRecordNotFoundError(file_id) from error


def _normalize_mime_type(content_type: str) -> str:
    return content_type.strip().lower()


def _validate_changes(fields: Mapping[str, Any]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if 'description' in fields:
        changes['description'] = validate_description(fields['description'])
    if 'is_public' in fields:
        changes['is_public'] = validate_visibility(fields['is_public'])
    if 'tags' in fields:
        changes['tags'] = normalize_tags(fields['tags'])
    return changes


def _set_tags(file_instance: File, tag_names: list[str]) -> None:
    """Replace a file's tags with owner-scoped tags of these names."""
    tags = [
        Tag.objects.get_or_create(user_id=file_instance.user_id, name=name)[0]
        for name in tag_names
    ]
    file_instance.tags.set(tags)
