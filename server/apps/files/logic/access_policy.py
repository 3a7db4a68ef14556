"""Access rules for file records.

Pure functions: they only look at the principal and the record, so
they work the same for every storage backend.
"""

from typing import Protocol


class _OwnedFile(Protocol):
    user_id: int
    is_public: bool


def can_read(principal_id: int | None, file_instance: _OwnedFile) -> bool:
    """Check whether a principal may read a file's content or metadata.

    Args:
        principal_id: ID of the acting user (None for anonymous).
        file_instance: File record.

    Returns:
        True for public files and for the owner.
    """
    return file_instance.is_public or principal_id == file_instance.user_id


def can_mutate(principal_id: int | None, file_instance: _OwnedFile) -> bool:
    """Check whether a principal may update or delete a file.

    Visibility never grants write access.

    Args:
        principal_id: ID of the acting user (None for anonymous).
        file_instance: File record.

    Returns:
        True only for the owner.
    """
    return principal_id is not None and principal_id == file_instance.user_id
