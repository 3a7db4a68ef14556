"""Business logic for finding objects that lost their file record.

An upload whose record could not be written, and whose rollback also
failed, leaves its bytes behind in the backend. These orphans are
harmless to users (nothing links to them) and are cleaned up here.
"""

import logging
from datetime import timedelta

from django.utils import timezone

from server.apps.files.exceptions import (
    FileRegistryError,
    OrphanedObjectError,
    StoredObjectNotFoundError,
)
from server.apps.files.infrastructure.storage import StorageBackend
from server.apps.files.models import File

logger = logging.getLogger(__name__)


def check_locator(backend: StorageBackend, locator: str) -> None:
    """Check that a file record references a backend object.

    Args:
        backend: Backend holding the object.
        locator: Locator of the object.

    Raises:
        OrphanedObjectError: If no record references the object.
    """
    referenced = File.objects.filter(
        backend_kind=backend.kind,
        storage_locator=locator,
    ).exists()
    if not referenced:
        raise OrphanedObjectError(backend.kind.value, locator)


def find_orphans(
    backend: StorageBackend,
    min_age: timedelta = timedelta(hours=1),
) -> list[str]:
    """List backend objects that no file record references.

    Objects younger than ``min_age`` are skipped: their upload may
    still be about to write its record.

    Args:
        backend: Backend to scan.
        min_age: Minimum object age to consider.

    Returns:
        Locators of orphaned objects.
    """
    cutoff = timezone.now() - min_age
    referenced = set(
        File.objects.filter(
            backend_kind=backend.kind,
        ).values_list('storage_locator', flat=True),
    )

    orphans = []
    for locator in backend.iter_locators():
        if locator in referenced:
            continue
        try:
            if backend.modified_time(locator) > cutoff:
                logger.debug('Skipping recent object: %s', locator)
                continue
            check_locator(backend, locator)
        except StoredObjectNotFoundError:
            logger.debug('Object disappeared during scan: %s', locator)
        except OrphanedObjectError as orphan:
            logger.warning('%s', orphan)
            orphans.append(locator)

    logger.info(
        'Found %d orphaned objects in %s backend',
        len(orphans),
        backend.kind,
    )
    return orphans


def purge_orphans(
    backend: StorageBackend,
    locators: list[str],
) -> tuple[int, int]:
    """Delete orphaned objects.

    Each locator is checked again right before deletion so an object
    that got its record in the meantime is kept.

    Args:
        backend: Backend holding the objects.
        locators: Locators returned by ``find_orphans``.

    Returns:
        Tuple of (purged count, failed count).
    """
    purged = 0
    failed = 0

    for locator in locators:
        try:
            check_locator(backend, locator)
        except OrphanedObjectError:
            pass  # noqa: WPS420
        else:
            logger.info('Object is referenced again, keeping: %s', locator)
            continue

        try:
            backend.delete(locator)
        except FileRegistryError:
            logger.exception('Failed to purge orphaned object: %s', locator)
            failed += 1
        else:
            logger.info('Purged orphaned object: %s', locator)
            purged += 1

    return purged, failed
