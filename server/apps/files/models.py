"""Database models for files app."""

from pathlib import Path
from typing import Final, final, override

from django.conf import settings
from django.db import models
from django.db.models import F, Q

# Constants for field max lengths
_ORIGINAL_NAME_MAX_LENGTH: Final = 255
_MIME_TYPE_MAX_LENGTH: Final = 255
_LOCATOR_MAX_LENGTH: Final = 1024
_BACKEND_KIND_MAX_LENGTH: Final = 20
TAG_NAME_MAX_LENGTH: Final = 100


class BackendKind(models.TextChoices):
    """Storage backend that holds a file's bytes."""

    LOCAL = 'local', 'Local disk'
    OBJECT_STORE = 'object_store', 'Object store'


class FileQuerySet(models.QuerySet['File']):
    """Query helpers for file metadata."""

    def visible_to(self, principal_id: int | None) -> 'FileQuerySet':
        """Files the principal owns plus every public file.

        Args:
            principal_id: ID of the acting user (None for anonymous).

        Returns:
            Filtered QuerySet.
        """
        if principal_id is None:
            return self.filter(is_public=True)
        return self.filter(Q(user_id=principal_id) | Q(is_public=True))

    def search(self, text: str) -> 'FileQuerySet':
        """Case-insensitive search over name, description and tags.

        A file matches when any whitespace separated term appears in
        its original name, its description or one of its tag names.

        Args:
            text: Free-text query.

        Returns:
            Filtered QuerySet (unchanged for a blank query).
        """
        terms = text.split()
        if not terms:
            return self

        condition = Q()
        for term in terms:
            tagged = File.tags.through.objects.filter(
                tag__name__icontains=term,
            ).values('file_id')
            condition |= (
                Q(original_name__icontains=term) |
                Q(description__icontains=term) |
                Q(pk__in=tagged)
            )
        return self.filter(condition)

    def with_tag(self, tag_name: str) -> 'FileQuerySet':
        """Files carrying a tag with exactly this name.

        Args:
            tag_name: Tag name to match.

        Returns:
            Filtered QuerySet.
        """
        tagged = File.tags.through.objects.filter(
            tag__name=tag_name,
        ).values('file_id')
        return self.filter(pk__in=tagged)

    def of_type(self, mime_type: str) -> 'FileQuerySet':
        """Files with exactly this MIME type.

        Args:
            mime_type: MIME type to match.

        Returns:
            Filtered QuerySet.
        """
        return self.filter(mime_type=mime_type)

    def increment_downloads(self, file_id: int) -> int:
        """Atomically add one to a file's download counter.

        Runs as a single UPDATE so concurrent downloads never lose
        increments.

        Args:
            file_id: ID of the downloaded file.

        Returns:
            Number of rows updated (0 if the file no longer exists).
        """
        return self.filter(pk=file_id).update(
            download_count=F('download_count') + 1,
        )


@final
class Tag(models.Model):
    """User-defined tag for organizing files.

    Tags are scoped to the owner of the files they label, so two users
    can use the same tag name without sharing a row.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='tags',
        db_index=True,
    )

    name = models.CharField(
        max_length=TAG_NAME_MAX_LENGTH,
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Tag'  # type: ignore[mutable-override]
        verbose_name_plural = 'Tags'  # type: ignore[mutable-override]
        ordering = ['name']

        constraints = [
            # Ensure tag names are unique per user
            models.UniqueConstraint(
                fields=['user', 'name'],
                name='tags_user_name_unique',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.user.username}:{self.name}'


@final
class File(models.Model):
    """Metadata for one stored object.

    The bytes live in a storage backend; ``backend_kind`` and
    ``storage_locator`` say where. Both are set once at upload time
    and never change. Only ``description``, ``tags`` and ``is_public``
    are editable by the owner.
    """

    # Owner relationship
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='files',
        db_index=True,
    )

    original_name = models.CharField(
        max_length=_ORIGINAL_NAME_MAX_LENGTH,
        help_text='Client-supplied filename, display only',
    )

    size_bytes = models.BigIntegerField(
        help_text='File size in bytes',
    )

    mime_type = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
        help_text='Declared content type at upload time',
    )

    storage_locator = models.CharField(
        max_length=_LOCATOR_MAX_LENGTH,
        help_text='Backend-specific name or key of the stored object',
    )

    backend_kind = models.CharField(
        max_length=_BACKEND_KIND_MAX_LENGTH,
        choices=BackendKind.choices,
    )

    is_public = models.BooleanField(
        default=False,
        help_text='Readable by users other than the owner',
    )

    description = models.TextField(
        blank=True,
        default='',
    )

    download_count = models.BigIntegerField(default=0)

    # Timestamps
    uploaded_at = models.DateTimeField(auto_now_add=True)
    modified_at = models.DateTimeField(auto_now=True)

    tags = models.ManyToManyField(
        Tag,
        related_name='files',
        blank=True,
    )

    objects = FileQuerySet.as_manager()

    class Meta:
        """Model metadata."""

        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]
        ordering = ['-uploaded_at']

        indexes = [
            # Owner's recent files
            models.Index(
                fields=['user', '-uploaded_at'],
                name='files_user_recent_idx',
            ),
            # Public recent files
            models.Index(
                fields=['is_public', '-uploaded_at'],
                name='files_public_recent_idx',
            ),
        ]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(size_bytes__gte=0),
                name='files_size_bytes_non_negative',
            ),
            models.CheckConstraint(
                condition=models.Q(download_count__gte=0),
                name='files_download_count_non_negative',
            ),
            models.CheckConstraint(
                condition=~models.Q(storage_locator=''),
                name='files_storage_locator_present',
            ),
            # One record per stored object
            models.UniqueConstraint(
                fields=['backend_kind', 'storage_locator'],
                name='files_backend_locator_unique',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.user.username}:{self.original_name}'

    def get_extension(self) -> str:
        """Extract extension of the original filename.

        Example: 'Report.PDF' -> 'pdf'

        Returns:
            Extension without dot (lowercase).
        """
        extension = Path(self.original_name).suffix
        return extension.lstrip('.').lower()

    def get_tag_names(self) -> list[str]:
        """Names of the file's tags in alphabetical order.

        Returns:
            Sorted tag names.
        """
        return sorted(tag.name for tag in self.tags.all())
