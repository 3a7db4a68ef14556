"""Shared fixtures for files app tests."""

import itertools

import boto3
import pytest
from django.contrib.auth import get_user_model
from moto import mock_aws

from server.apps.files.conf import ObjectStoreSettings, RegistrySettings
from server.apps.files.infrastructure.storage import (
    LocalDiskBackend,
    ObjectStoreBackend,
)
from server.apps.files.logic.file_operations import (
    FileRegistry,
    get_file_registry,
)
from server.apps.files.models import BackendKind, File, Tag

User = get_user_model()

TEST_BUCKET = 'file-registry'


@pytest.fixture
def user(db):
    """Create test user.

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture
def other_user(db):
    """Create second test user for access tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='otheruser',
        password='testpass123',
        email='other@example.com',
    )


@pytest.fixture
def mock_s3():
    """Mock S3 service with the test bucket.

    Yields:
        boto3 S3 resource with the test bucket created.
    """
    with mock_aws():
        # Create S3 resource
        conn = boto3.resource('s3', region_name='us-east-1')

        # Create bucket
        conn.create_bucket(Bucket=TEST_BUCKET)

        yield conn


@pytest.fixture
def registry_settings(tmp_path):
    """Registry settings with local uploads under a temp directory.

    Returns:
        RegistrySettings instance.
    """
    return RegistrySettings(
        storage_backend=BackendKind.LOCAL,
        local_root=tmp_path / 'uploads',
    )


@pytest.fixture
def object_store_settings():
    """Bucket settings matching the mocked S3 service.

    Returns:
        ObjectStoreSettings instance.
    """
    return ObjectStoreSettings(
        bucket_name=TEST_BUCKET,
        region_name='us-east-1',
        access_key='testing',
        secret_key='testing',
    )


@pytest.fixture
def local_backend(registry_settings):
    """Local disk backend rooted in a temp directory.

    Returns:
        LocalDiskBackend instance.
    """
    return LocalDiskBackend(registry_settings.local_root)


@pytest.fixture
def object_store_backend(mock_s3, object_store_settings):
    """Object store backend talking to mocked S3.

    Returns:
        ObjectStoreBackend instance.
    """
    return ObjectStoreBackend(object_store_settings)


@pytest.fixture
def registry(registry_settings, local_backend):
    """File registry uploading to the local backend.

    Returns:
        FileRegistry instance.
    """
    return FileRegistry(
        registry_settings,
        {BackendKind.LOCAL: local_backend},
    )


@pytest.fixture
def configured_registry(settings, tmp_path):
    """Process-wide registry built from Django settings.

    Yields:
        The registry returned by get_file_registry().
    """
    settings.FILES_STORAGE_BACKEND = 'local'
    settings.FILES_LOCAL_ROOT = str(tmp_path / 'media')
    settings.FILES_OBJECT_STORE = None
    get_file_registry.cache_clear()

    yield get_file_registry()

    get_file_registry.cache_clear()


@pytest.fixture
def make_record(user):
    """Factory creating file records without stored bytes.

    Returns:
        Callable accepting model field overrides and ``tags``.
    """
    counter = itertools.count()

    def factory(**fields):
        index = next(counter)
        tag_names = fields.pop('tags', ())
        record_fields = {
            'user': user,
            'original_name': f'file{index}.pdf',
            'size_bytes': 100,
            'mime_type': 'application/pdf',
            'storage_locator': f'record-{index}.pdf',
            'backend_kind': BackendKind.LOCAL,
            **fields,
        }
        file_instance = File.objects.create(**record_fields)
        for name in tag_names:
            tag, _ = Tag.objects.get_or_create(
                user=file_instance.user,
                name=name,
            )
            file_instance.tags.add(tag)
        return file_instance

    return factory
