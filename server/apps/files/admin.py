"""Django admin configuration for files app."""

from typing import Any

from django.contrib import admin
from django.db.models import ManyToManyField, QuerySet
from django.forms import ModelMultipleChoiceField
from django.http import HttpRequest

from server.apps.files.models import File, Tag


def _format_bytes(size_bytes: int) -> str:
    """Format bytes in human-readable format.

    Args:
        size_bytes: Size in bytes.

    Returns:
        Formatted size string (e.g., '1.5 MB', '234 KB').
    """
    if size_bytes < 1024:
        return f'{size_bytes} B'
    if size_bytes < 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / 1024:.1f} KB'
    if size_bytes < 1024 * 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / (1024 * 1024):.1f} MB'
    return f'{size_bytes / (1024 * 1024 * 1024):.1f} GB'


@admin.register(File)
class FileAdmin(admin.ModelAdmin[File]):
    """Admin interface for File model.

    Storage fields are read-only and rows cannot be deleted here:
    deleting only the record would leave its bytes behind, so deletes
    go through the file registry.
    """

    list_display = [
        'original_name',
        'user',
        'size_display',
        'mime_type',
        'backend_kind',
        'is_public',
        'download_count',
        'uploaded_at',
    ]

    list_filter = [
        'mime_type',
        'backend_kind',
        'is_public',
        'uploaded_at',
    ]

    search_fields = [
        'original_name',
        'description',
        'tags__name',
    ]

    readonly_fields = [
        'user',
        'original_name',
        'size_bytes',
        'mime_type',
        'storage_locator',
        'backend_kind',
        'download_count',
        'uploaded_at',
        'modified_at',
    ]

    filter_horizontal = ['tags']  # Better UX for M2M relationship

    fieldsets = (
        ('File Information', {
            'fields': ('original_name', 'user', 'description', 'is_public'),
        }),
        ('Storage', {
            'fields': (
                'backend_kind',
                'storage_locator',
                'size_bytes',
                'mime_type',
            ),
        }),
        ('Tags', {
            'fields': ('tags',),
        }),
        ('Statistics', {
            'fields': ('download_count', 'uploaded_at', 'modified_at'),
        }),
    )

    def size_display(self, obj: File) -> str:
        """Display file size in human-readable format.

        Args:
            obj: File instance.

        Returns:
            Formatted size string (e.g., '1.5 MB', '234 KB').
        """
        return _format_bytes(obj.size_bytes)
    size_display.short_description = 'Size'  # type: ignore[attr-defined]

    def has_add_permission(self, request: HttpRequest) -> bool:
        """Files are only created by uploads."""
        return False

    def has_delete_permission(
        self,
        request: HttpRequest,
        obj: File | None = None,
    ) -> bool:
        """Files are only deleted through the registry."""
        return False

    def get_queryset(self, request: HttpRequest) -> QuerySet[File]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('user')

    def formfield_for_manytomany(
        self,
        db_field: ManyToManyField,  # type: ignore[type-arg]
        request: HttpRequest,
        **kwargs: Any,
    ) -> ModelMultipleChoiceField | None:
        """Offer only tags owned by the file's owner.

        Args:
            db_field: Many-to-many field being rendered.
            request: HTTP request for the change view.
            kwargs: Form field options.

        Returns:
            Form field for the relation.
        """
        if db_field.name == 'tags':
            object_id = request.resolver_match.kwargs.get('object_id')
            kwargs['queryset'] = Tag.objects.filter(user__files__pk=object_id)
        return super().formfield_for_manytomany(db_field, request, **kwargs)


@admin.register(Tag)
class TagAdmin(admin.ModelAdmin[Tag]):
    """Admin interface for Tag model."""

    list_display = [
        'name',
        'user',
        'file_count',
        'created_at',
    ]

    list_filter = [
        'user',
    ]

    search_fields = [
        'name',
    ]

    readonly_fields = ['created_at']

    def file_count(self, obj: Tag) -> int:
        """Count of files with this tag.

        Args:
            obj: Tag instance.

        Returns:
            Number of files tagged with this tag.
        """
        return obj.files.count()
    file_count.short_description = 'Files'  # type: ignore[attr-defined]

    def get_queryset(self, request: HttpRequest) -> QuerySet[Tag]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('user')
