"""Exceptions for files app.

Malformed input fields raise Django's ``ValidationError``; everything
else a registry operation can fail with derives from
``FileRegistryError``.
"""

from collections.abc import Iterable


class FileRegistryError(Exception):
    """Base class for file registry failures."""


class UnauthenticatedError(FileRegistryError):
    """Raised when an operation needs a principal and none is available."""

    def __init__(self, action: str) -> None:
        """Initialize UnauthenticatedError.

        Args:
            action: Operation that was attempted.
        """
        self.action = action
        super().__init__(f'Authentication required to {action} files')


class AccessDeniedError(FileRegistryError):
    """Raised when a principal may not perform an action on a file."""

    def __init__(
        self,
        file_id: int,
        principal_id: int | None,
        action: str,
    ) -> None:
        """Initialize AccessDeniedError.

        Args:
            file_id: ID of the file.
            principal_id: ID of the acting principal (None for anonymous).
            action: Operation that was denied.
        """
        self.file_id = file_id
        self.principal_id = principal_id
        self.action = action
        super().__init__(
            f'Principal {principal_id} may not {action} file {file_id}',
        )


class FileRecordNotFoundError(FileRegistryError):
    """Raised when no file record exists for an ID."""

    def __init__(self, file_id: int) -> None:
        """Initialize FileRecordNotFoundError.

        Args:
            file_id: ID that was looked up.
        """
        self.file_id = file_id
        super().__init__(f'File not found: ID={file_id}')


class UnsupportedMediaTypeError(FileRegistryError):
    """Raised when an upload's content type is not allowed."""

    def __init__(self, mime_type: str, allowed: Iterable[str]) -> None:
        """Initialize UnsupportedMediaTypeError.

        Args:
            mime_type: Declared content type of the upload.
            allowed: Content types accepted by the registry.
        """
        self.mime_type = mime_type
        self.allowed = frozenset(allowed)
        super().__init__(
            f'Unsupported media type {mime_type!r}, '
            f'allowed: {", ".join(sorted(self.allowed))}',
        )


class PayloadTooLargeError(FileRegistryError):
    """Raised when an upload exceeds the size ceiling."""

    def __init__(self, size_bytes: int, max_bytes: int) -> None:
        """Initialize PayloadTooLargeError.

        Args:
            size_bytes: Size of the upload in bytes.
            max_bytes: Maximum accepted size in bytes.
        """
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
        super().__init__(
            f'Payload too large: {size_bytes} bytes '
            f'(maximum: {max_bytes} bytes)',
        )


class BackendUnavailableError(FileRegistryError):
    """Raised when a storage backend or the metadata store fails.

    Callers may retry; nothing about the failure implies the object
    or record is missing.
    """

    def __init__(self, backend: str, operation: str) -> None:
        """Initialize BackendUnavailableError.

        Args:
            backend: Backend that failed (a backend kind or 'metadata').
            operation: Operation that failed (e.g. 'put', 'delete').
        """
        self.backend = backend
        self.operation = operation
        super().__init__(f'Backend {backend!r} unavailable during {operation}')


class StoredObjectNotFoundError(FileRegistryError):
    """Raised by a storage backend when a locator has no object."""

    def __init__(self, backend: str, locator: str) -> None:
        """Initialize StoredObjectNotFoundError.

        Args:
            backend: Backend kind that was asked.
            locator: Locator that has no object.
        """
        self.backend = backend
        self.locator = locator
        super().__init__(f'Object not found in {backend!r}: {locator}')


class OrphanedObjectError(FileRegistryError):
    """A backend object that no file record references.

    Only ever logged by maintenance tooling, never shown to users.
    """

    def __init__(self, backend: str, locator: str) -> None:
        """Initialize OrphanedObjectError.

        Args:
            backend: Backend kind holding the object.
            locator: Locator of the unreferenced object.
        """
        self.backend = backend
        self.locator = locator
        super().__init__(f'Orphaned object in {backend!r}: {locator}')
