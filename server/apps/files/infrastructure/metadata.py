"""Naming and validation utilities for file metadata."""

import re
import secrets
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from django.core.exceptions import ValidationError

from server.apps.files.models import TAG_NAME_MAX_LENGTH

_ORIGINAL_NAME_MAX_LENGTH: Final = 255
_EXTENSION_MAX_LENGTH: Final = 10
_RANDOM_SUFFIX_BYTES: Final = 6  # 12 hex chars
_EXTENSION_PATTERN: Final = re.compile(r'^[a-z0-9]+$')


def get_file_extension(filename: str) -> str:
    """Get a storage-safe extension from a client filename.

    Only short, alphanumeric extensions are kept; anything else
    (including path separators smuggled into the name) yields no
    extension at all.

    Args:
        filename: Client filename (e.g., 'Report.PDF').

    Returns:
        Extension without dot, lowercase (e.g., 'pdf').
        Returns empty string if there is no usable extension.
    """
    extension = Path(filename).suffix.lstrip('.').lower()
    if len(extension) > _EXTENSION_MAX_LENGTH:
        return ''
    if not _EXTENSION_PATTERN.match(extension):
        return ''
    return extension


def generate_storage_name(suggested_name: str) -> str:
    """Generate a collision-resistant storage name.

    The suggested name only contributes its extension.

    Args:
        suggested_name: Client filename (e.g., '../../etc/report.pdf').

    Returns:
        Name like '20260131T143052123456-3f9a1c0b7d2e.pdf'.
    """
    timestamp = datetime.now(tz=UTC).strftime('%Y%m%dT%H%M%S%f')
    token = secrets.token_hex(_RANDOM_SUFFIX_BYTES)
    extension = get_file_extension(suggested_name)
    if extension:
        return f'{timestamp}-{token}.{extension}'
    return f'{timestamp}-{token}'


def validate_original_name(original_name: object) -> str:
    """Validate the client-supplied filename.

    Args:
        original_name: Filename from the client.

    Returns:
        Filename with surrounding whitespace removed.

    Raises:
        ValidationError: If the name is not a non-empty string
            of at most 255 characters.
    """
    if not isinstance(original_name, str) or not original_name.strip():
        raise ValidationError('Original filename cannot be empty')

    cleaned = original_name.strip()
    if len(cleaned) > _ORIGINAL_NAME_MAX_LENGTH:
        raise ValidationError(
            f'Original filename is longer than '
            f'{_ORIGINAL_NAME_MAX_LENGTH} characters',
        )
    return cleaned


def validate_description(description: object) -> str:
    """Validate a file description.

    Args:
        description: Description from the client (None means empty).

    Returns:
        Description text.

    Raises:
        ValidationError: If the description is not a string.
    """
    if description is None:
        return ''
    if not isinstance(description, str):
        raise ValidationError('Description must be a string')
    return description


def validate_visibility(is_public: object) -> bool:
    """Validate the public flag.

    Args:
        is_public: Flag from the client.

    Returns:
        The flag.

    Raises:
        ValidationError: If the flag is not a boolean.
    """
    if not isinstance(is_public, bool):
        raise ValidationError('isPublic must be a boolean')
    return is_public


def normalize_tags(tags: str | Iterable[str] | None) -> list[str]:
    """Normalize tags into a list of unique names.

    Accepts either an iterable of names or a comma separated string
    ('holiday, beach'). Whitespace is trimmed, empty names dropped and
    duplicates collapsed keeping the first occurrence.

    Args:
        tags: Tag names from the client.

    Returns:
        Unique tag names in first-seen order.

    Raises:
        ValidationError: If a tag is not a string or is too long.
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(',')
    elif not isinstance(tags, Iterable):
        raise ValidationError('Tags must be a list or comma separated string')

    normalized: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationError('Tags must be strings')
        name = tag.strip()
        if not name or name in normalized:
            continue
        if len(name) > TAG_NAME_MAX_LENGTH:
            raise ValidationError(
                f'Tag {name[:20]!r}... is longer than '
                f'{TAG_NAME_MAX_LENGTH} characters',
            )
        normalized.append(name)
    return normalized
