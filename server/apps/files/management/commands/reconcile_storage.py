"""Management command to find and purge orphaned storage objects."""

import logging
from datetime import timedelta
from typing import Any, Final

from django.core.management.base import BaseCommand, CommandError

from server.apps.files.exceptions import BackendUnavailableError
from server.apps.files.logic.file_operations import get_file_registry
from server.apps.files.logic.reconcile_operations import (
    find_orphans,
    purge_orphans,
)
from server.apps.files.models import BackendKind

_DEFAULT_MIN_AGE_MINUTES: Final = 60

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Report (and optionally delete) objects without a file record."""

    help = 'Find storage objects that no file record references'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--backend',
            choices=BackendKind.values,
            default=None,
            help='Backend to scan (default: the configured upload backend)',
        )
        parser.add_argument(
            '--min-age-minutes',
            type=int,
            default=_DEFAULT_MIN_AGE_MINUTES,
            help=(
                'Ignore objects younger than this '
                f'(default: {_DEFAULT_MIN_AGE_MINUTES})'
            ),
        )
        parser.add_argument(
            '--purge',
            action='store_true',
            help='Delete orphaned objects instead of only listing them',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the reconcile command.

        Args:
            args: Positional arguments (unused).
            options: Command options.

        Raises:
            CommandError: If the backend is not configured or fails.
        """
        registry = get_file_registry()
        kind = options['backend'] or registry.settings.storage_backend
        backend = registry.backends.get(kind)
        if backend is None:
            raise CommandError(f'Backend {kind!s} is not configured')

        min_age = timedelta(minutes=options['min_age_minutes'])
        self.stdout.write(
            f'Scanning {kind!s} backend for objects older than {min_age}',
        )

        try:
            orphans = find_orphans(backend, min_age=min_age)
        except BackendUnavailableError as exc:
            raise CommandError(f'Scan failed: {exc}') from exc

        for locator in orphans:
            self.stdout.write(f'Orphaned: {locator}')

        if not options['purge']:
            self.stdout.write(
                self.style.SUCCESS(f'Found {len(orphans)} orphaned objects'),
            )
            return

        purged, failed = purge_orphans(backend, orphans)
        logger.info(
            'Reconciled %s backend: %d purged, %d failed',
            kind,
            purged,
            failed,
        )
        self.stdout.write(
            self.style.SUCCESS(
                f'Purged {purged} orphaned objects, {failed} failed',
            ),
        )
