"""Tests for file operations business logic."""

from concurrent.futures import ThreadPoolExecutor

import pytest
from django.core.exceptions import ValidationError
from django.db import DatabaseError, connection

from server.apps.files.conf import RegistrySettings
from server.apps.files.exceptions import (
    AccessDeniedError,
    BackendUnavailableError,
    FileRecordNotFoundError,
    PayloadTooLargeError,
    UnauthenticatedError,
    UnsupportedMediaTypeError,
)
from server.apps.files.logic.file_operations import (
    Download,
    FileFilters,
    FileRegistry,
    Pagination,
    Sort,
    get_file_registry,
)
from server.apps.files.models import BackendKind, File, FileQuerySet, Tag

PDF_CONTENT = b'%PDF-1.4 test document'
MIB = 1024 * 1024
CONCURRENT_DOWNLOADS = 8


def _upload(registry, owner, **overrides):
    upload_kwargs = {
        'content': PDF_CONTENT,
        'content_type': 'application/pdf',
        'original_name': 'report.pdf',
        **overrides,
    }
    return registry.upload(owner.pk, **upload_kwargs)


def _fail(exception):
    def failing(*args, **kwargs):
        raise exception
    return failing


@pytest.mark.django_db
def test_upload_success(registry, local_backend, user):
    """Test successful upload (bytes + record)."""
    file_instance = _upload(
        registry,
        user,
        description='Quarterly numbers',
        tags='finance, 2024, finance',
        is_public=True,
    )

    # Check record
    assert file_instance.pk is not None
    assert file_instance.user == user
    assert file_instance.original_name == 'report.pdf'
    assert file_instance.size_bytes == len(PDF_CONTENT)
    assert file_instance.mime_type == 'application/pdf'
    assert file_instance.backend_kind == BackendKind.LOCAL
    assert file_instance.description == 'Quarterly numbers'
    assert file_instance.is_public is True
    assert file_instance.download_count == 0
    assert file_instance.get_tag_names() == ['2024', 'finance']

    # Check stored bytes
    assert local_backend.get(file_instance.storage_locator) == PDF_CONTENT


@pytest.mark.django_db
def test_upload_defaults_private(registry, user):
    """Test uploads are private unless requested otherwise."""
    file_instance = _upload(registry, user)

    assert file_instance.is_public is False
    assert file_instance.get_tag_names() == []


@pytest.mark.django_db
def test_upload_same_name_twice(registry, user):
    """Test equal filenames get distinct locators."""
    first = _upload(registry, user)
    second = _upload(registry, user)

    assert first.storage_locator != second.storage_locator


@pytest.mark.django_db
def test_upload_unauthenticated(registry, local_backend):
    """Test upload without a principal stores nothing."""
    with pytest.raises(UnauthenticatedError):
        registry.upload(
            None,
            content=PDF_CONTENT,
            content_type='application/pdf',
            original_name='report.pdf',
        )

    assert File.objects.count() == 0
    assert list(local_backend.iter_locators()) == []


@pytest.mark.django_db
def test_upload_unsupported_type(registry, local_backend, user):
    """Test disallowed MIME type is rejected before storing."""
    with pytest.raises(UnsupportedMediaTypeError) as exc_info:
        _upload(
            registry,
            user,
            content=b'PK\x03\x04',
            content_type='application/zip',
            original_name='archive.zip',
        )

    assert exc_info.value.mime_type == 'application/zip'
    assert 'application/pdf' in exc_info.value.allowed
    assert File.objects.count() == 0
    assert list(local_backend.iter_locators()) == []


@pytest.mark.django_db
def test_upload_mime_type_case_insensitive(registry, user):
    """Test declared MIME types match the allowlist in any case."""
    file_instance = _upload(registry, user, content_type=' Application/PDF ')

    assert file_instance.mime_type == 'application/pdf'


def test_validate_upload_normalizes_mime_type(registry):
    """Test validation trims and lowercases the declared type."""
    registry.validate_upload('IMAGE/PNG', 10)

    with pytest.raises(UnsupportedMediaTypeError) as exc_info:
        registry.validate_upload('Application/ZIP', 10)

    assert exc_info.value.mime_type == 'application/zip'


@pytest.mark.django_db
def test_upload_too_large(registry, local_backend, user):
    """Test payload above the ceiling is rejected before storing."""
    with pytest.raises(PayloadTooLargeError) as exc_info:
        _upload(registry, user, content=b'a' * (6 * MIB))

    assert exc_info.value.max_bytes == 5 * MIB
    assert File.objects.count() == 0
    assert list(local_backend.iter_locators()) == []


@pytest.mark.django_db
def test_upload_exactly_at_limit(registry, user):
    """Test payload of exactly the ceiling is accepted."""
    file_instance = _upload(registry, user, content=b'a' * (5 * MIB))

    assert file_instance.size_bytes == 5 * MIB


@pytest.mark.django_db
def test_upload_invalid_name(registry, local_backend, user):
    """Test malformed metadata is rejected before storing."""
    with pytest.raises(ValidationError):
        _upload(registry, user, original_name='   ')

    assert list(local_backend.iter_locators()) == []


@pytest.mark.django_db
def test_upload_backend_failure(registry, local_backend, user, monkeypatch):
    """Test backend write failure creates no record."""
    monkeypatch.setattr(local_backend, 'put', _fail(
        BackendUnavailableError('local', 'put'),
    ))

    with pytest.raises(BackendUnavailableError):
        _upload(registry, user)

    assert File.objects.count() == 0


@pytest.mark.django_db
def test_upload_rollback_on_db_error(
    registry,
    local_backend,
    user,
    monkeypatch,
):
    """Test that stored bytes are deleted if the record cannot be saved."""
    monkeypatch.setattr(registry, '_create_record', _fail(
        DatabaseError('database is locked'),
    ))

    with pytest.raises(BackendUnavailableError) as exc_info:
        _upload(registry, user)

    assert exc_info.value.backend == 'metadata'
    assert File.objects.count() == 0
    # Bytes were rolled back
    assert list(local_backend.iter_locators()) == []


@pytest.mark.django_db
def test_upload_rollback_on_interrupt(
    registry,
    local_backend,
    user,
    monkeypatch,
):
    """Test interrupted uploads still delete the stored bytes."""
    monkeypatch.setattr(
        registry,
        '_create_record',
        _fail(KeyboardInterrupt()),
    )

    with pytest.raises(KeyboardInterrupt):
        _upload(registry, user)

    assert File.objects.count() == 0
    assert list(local_backend.iter_locators()) == []


@pytest.mark.django_db
def test_upload_rollback_failure_leaves_orphan(
    registry,
    local_backend,
    user,
    monkeypatch,
):
    """Test failed rollback keeps the original error and the orphan."""
    monkeypatch.setattr(registry, '_create_record', _fail(
        DatabaseError('database is locked'),
    ))
    monkeypatch.setattr(local_backend, 'delete', _fail(
        BackendUnavailableError('local', 'delete'),
    ))

    with pytest.raises(BackendUnavailableError) as exc_info:
        _upload(registry, user)

    assert exc_info.value.backend == 'metadata'
    assert File.objects.count() == 0
    assert len(list(local_backend.iter_locators())) == 1


@pytest.mark.django_db
def test_upload_to_object_store(
    registry_settings,
    local_backend,
    object_store_backend,
    user,
):
    """Test upload to the object store and read back."""
    registry = FileRegistry(
        RegistrySettings(
            storage_backend=BackendKind.OBJECT_STORE,
            local_root=registry_settings.local_root,
        ),
        {
            BackendKind.LOCAL: local_backend,
            BackendKind.OBJECT_STORE: object_store_backend,
        },
    )

    file_instance = _upload(registry, user)
    download = registry.download(user.pk, file_instance.pk)

    assert file_instance.backend_kind == BackendKind.OBJECT_STORE
    assert file_instance.storage_locator.startswith('uploads/')
    assert download.content == PDF_CONTENT
    assert list(local_backend.iter_locators()) == []


@pytest.mark.django_db
def test_records_readable_after_backend_switch(
    registry_settings,
    local_backend,
    object_store_backend,
    user,
):
    """Test local records stay readable when uploads go to the bucket."""
    local_registry = FileRegistry(
        registry_settings,
        {BackendKind.LOCAL: local_backend},
    )
    local_file = _upload(local_registry, user)

    switched = FileRegistry(
        RegistrySettings(
            storage_backend=BackendKind.OBJECT_STORE,
            local_root=registry_settings.local_root,
        ),
        {
            BackendKind.LOCAL: local_backend,
            BackendKind.OBJECT_STORE: object_store_backend,
        },
    )

    assert switched.download(user.pk, local_file.pk).content == PDF_CONTENT


def test_registry_requires_upload_backend(registry_settings, local_backend):
    """Test the configured upload backend must be present."""
    with pytest.raises(ValueError, match='object_store'):
        FileRegistry(
            RegistrySettings(
                storage_backend=BackendKind.OBJECT_STORE,
                local_root=registry_settings.local_root,
            ),
            {BackendKind.LOCAL: local_backend},
        )


@pytest.mark.django_db
def test_download_owner_private(registry, user):
    """Test the owner can download a private file."""
    file_instance = _upload(registry, user)

    download = registry.download(user.pk, file_instance.pk)

    assert download.content == PDF_CONTENT
    assert download.file.pk == file_instance.pk
    assert download.file.download_count == 1


@pytest.mark.django_db
def test_download_private_denied(registry, user, other_user):
    """Test other users and anonymous callers cannot read private files."""
    file_instance = _upload(registry, user)

    with pytest.raises(AccessDeniedError):
        registry.download(other_user.pk, file_instance.pk)
    with pytest.raises(AccessDeniedError):
        registry.download(None, file_instance.pk)

    file_instance.refresh_from_db()
    assert file_instance.download_count == 0


@pytest.mark.django_db
def test_download_public(registry, user, other_user):
    """Test anyone can download a public file."""
    file_instance = _upload(registry, user, is_public=True)

    assert registry.download(other_user.pk, file_instance.pk).content == (
        PDF_CONTENT
    )
    assert registry.download(None, file_instance.pk).content == PDF_CONTENT

    file_instance.refresh_from_db()
    assert file_instance.download_count == 2


@pytest.mark.django_db
def test_download_counts_every_download(registry, user):
    """Test N downloads add exactly N to the counter."""
    file_instance = _upload(registry, user)

    for _ in range(5):
        registry.download(user.pk, file_instance.pk)

    file_instance.refresh_from_db()
    assert file_instance.download_count == 5


@pytest.mark.django_db
def test_download_increments_database_value(registry, user):
    """Test the counter builds on the stored value, not a stale copy."""
    file_instance = _upload(registry, user)
    # Another process counted downloads in the meantime
    File.objects.filter(pk=file_instance.pk).update(download_count=7)

    download = registry.download(user.pk, file_instance.pk)

    assert download.file.download_count == 8


@pytest.mark.django_db(transaction=True)
def test_download_concurrent_callers(registry, user):
    """Test N concurrent downloads add exactly N to the counter."""
    file_instance = _upload(registry, user)

    def download_once(_):
        try:
            return registry.download(user.pk, file_instance.pk)
        finally:
            # Each worker thread opened its own connection
            connection.close()

    with ThreadPoolExecutor(max_workers=CONCURRENT_DOWNLOADS) as executor:
        downloads = list(
            executor.map(download_once, range(CONCURRENT_DOWNLOADS)),
        )

    assert all(download.content == PDF_CONTENT for download in downloads)
    file_instance.refresh_from_db()
    assert file_instance.download_count == CONCURRENT_DOWNLOADS


@pytest.mark.django_db
def test_download_counter_failure_ignored(registry, user, monkeypatch):
    """Test a failed counter update does not fail the download."""
    file_instance = _upload(registry, user)
    monkeypatch.setattr(
        FileQuerySet,
        'increment_downloads',
        _fail(DatabaseError('database is locked')),
    )

    download = registry.download(user.pk, file_instance.pk)

    assert download.content == PDF_CONTENT
    file_instance.refresh_from_db()
    assert file_instance.download_count == 0


@pytest.mark.django_db
def test_download_missing_record(registry, db):
    """Test downloading an unknown file ID."""
    with pytest.raises(FileRecordNotFoundError):
        registry.download(None, 999999)


@pytest.mark.django_db
def test_download_missing_object(registry, local_backend, user):
    """Test a record whose bytes are gone reads as not found."""
    file_instance = _upload(registry, user)
    local_backend.delete(file_instance.storage_locator)

    with pytest.raises(FileRecordNotFoundError):
        registry.download(user.pk, file_instance.pk)


@pytest.mark.django_db
def test_download_unconfigured_backend(registry, make_record, user):
    """Test records in a backend that is not configured."""
    file_instance = make_record(backend_kind=BackendKind.OBJECT_STORE)

    with pytest.raises(BackendUnavailableError) as exc_info:
        registry.download(user.pk, file_instance.pk)

    assert exc_info.value.operation == 'resolve'


@pytest.mark.django_db
def test_get_file_access(registry, user, other_user):
    """Test metadata reads follow the same rules as downloads."""
    private = _upload(registry, user)
    public = _upload(registry, user, is_public=True)

    assert registry.get_file(user.pk, private.pk) == private
    assert registry.get_file(other_user.pk, public.pk) == public
    with pytest.raises(AccessDeniedError):
        registry.get_file(other_user.pk, private.pk)


@pytest.mark.django_db
def test_delete_success(registry, local_backend, user):
    """Test successful deletion (bytes + record)."""
    file_instance = _upload(registry, user)
    locator = file_instance.storage_locator

    registry.delete(user.pk, file_instance.pk)

    assert not File.objects.filter(pk=file_instance.pk).exists()
    assert not (local_backend.root / locator).exists()


@pytest.mark.django_db
def test_download_after_delete(registry, user):
    """Test a deleted file cannot be downloaded."""
    file_instance = _upload(registry, user, is_public=True)
    registry.delete(user.pk, file_instance.pk)

    with pytest.raises(FileRecordNotFoundError):
        registry.download(user.pk, file_instance.pk)


@pytest.mark.django_db
def test_delete_not_owner(registry, local_backend, user, other_user):
    """Test public visibility does not allow deletion by others."""
    file_instance = _upload(registry, user, is_public=True)

    with pytest.raises(AccessDeniedError):
        registry.delete(other_user.pk, file_instance.pk)
    with pytest.raises(AccessDeniedError):
        registry.delete(None, file_instance.pk)

    assert File.objects.filter(pk=file_instance.pk).exists()
    assert (local_backend.root / file_instance.storage_locator).exists()


@pytest.mark.django_db
def test_delete_backend_failure_keeps_record(
    registry,
    local_backend,
    user,
    monkeypatch,
):
    """Test the record survives when the bytes cannot be deleted."""
    file_instance = _upload(registry, user)
    monkeypatch.setattr(local_backend, 'delete', _fail(
        BackendUnavailableError('local', 'delete'),
    ))

    with pytest.raises(BackendUnavailableError):
        registry.delete(user.pk, file_instance.pk)

    assert File.objects.filter(pk=file_instance.pk).exists()


@pytest.mark.django_db
def test_delete_missing_object(registry, local_backend, user):
    """Test deleting a record whose bytes are already gone."""
    file_instance = _upload(registry, user)
    local_backend.delete(file_instance.storage_locator)

    registry.delete(user.pk, file_instance.pk)

    assert not File.objects.filter(pk=file_instance.pk).exists()


@pytest.mark.django_db
def test_delete_missing_record(registry, user):
    """Test deleting an unknown file ID."""
    with pytest.raises(FileRecordNotFoundError):
        registry.delete(user.pk, 999999)


@pytest.mark.django_db
def test_update_success(registry, user):
    """Test owner edits description, tags and visibility."""
    file_instance = _upload(registry, user, tags=['old'])
    modified_before = file_instance.modified_at

    updated = registry.update(user.pk, file_instance.pk, {
        'description': 'Updated',
        'tags': ['new', 'shiny'],
        'is_public': True,
    })

    updated.refresh_from_db()
    assert updated.description == 'Updated'
    assert updated.is_public is True
    assert updated.get_tag_names() == ['new', 'shiny']
    assert updated.modified_at > modified_before


@pytest.mark.django_db
def test_update_ignores_other_fields(registry, user, other_user):
    """Test keys outside the editable set are silently ignored."""
    file_instance = _upload(registry, user)

    registry.update(user.pk, file_instance.pk, {
        'description': 'Updated',
        'original_name': 'renamed.pdf',
        'storage_locator': '../../etc/passwd',
        'download_count': 1000,
        'user_id': other_user.pk,
    })

    file_instance.refresh_from_db()
    assert file_instance.description == 'Updated'
    assert file_instance.original_name == 'report.pdf'
    assert file_instance.download_count == 0
    assert file_instance.user_id == user.pk
    assert '..' not in file_instance.storage_locator


@pytest.mark.django_db
def test_update_keeps_tags_when_absent(registry, user):
    """Test tags are only replaced when given."""
    file_instance = _upload(registry, user, tags=['keep'])

    registry.update(user.pk, file_instance.pk, {'is_public': True})

    file_instance.refresh_from_db()
    assert file_instance.get_tag_names() == ['keep']


@pytest.mark.django_db
def test_update_not_owner(registry, user, other_user):
    """Test only the owner may edit, even for public files."""
    file_instance = _upload(registry, user, is_public=True)

    with pytest.raises(AccessDeniedError):
        registry.update(other_user.pk, file_instance.pk, {
            'description': 'Defaced',
        })

    file_instance.refresh_from_db()
    assert file_instance.description == ''


@pytest.mark.django_db
def test_update_invalid_value(registry, user):
    """Test malformed values change nothing."""
    file_instance = _upload(registry, user, tags=['keep'])

    with pytest.raises(ValidationError):
        registry.update(user.pk, file_instance.pk, {
            'description': 'Updated',
            'is_public': 'yes',
        })

    file_instance.refresh_from_db()
    assert file_instance.description == ''
    assert file_instance.is_public is False
    assert file_instance.get_tag_names() == ['keep']


@pytest.mark.django_db
def test_update_missing_record(registry, user):
    """Test editing an unknown file ID."""
    with pytest.raises(FileRecordNotFoundError):
        registry.update(user.pk, 999999, {'description': 'x'})


@pytest.mark.django_db
def test_tags_scoped_to_owner(registry, user, other_user):
    """Test equal tag names of two users are separate tags."""
    _upload(registry, user, tags=['beach'])
    _upload(registry, other_user, tags=['beach'])

    assert Tag.objects.filter(name='beach').count() == 2


@pytest.mark.django_db
def test_list_visibility(registry, make_record, user, other_user):
    """Test listing shows own files and public files of others."""
    own_private = make_record()
    others_public = make_record(user=other_user, is_public=True)
    make_record(user=other_user)

    page = registry.list_files(user.pk)

    assert {f.pk for f in page.files} == {own_private.pk, others_public.pk}
    assert page.total_files == 2


@pytest.mark.django_db
def test_list_anonymous(registry, make_record):
    """Test anonymous listing shows public files only."""
    public = make_record(is_public=True)
    make_record()

    page = registry.list_files(None)

    assert [f.pk for f in page.files] == [public.pk]


@pytest.mark.django_db
def test_list_pagination(registry, make_record, user):
    """Test page counts and the partial last page."""
    for _ in range(25):
        make_record()

    first = registry.list_files(user.pk, pagination=Pagination(page_size=10))
    last = registry.list_files(
        user.pk,
        pagination=Pagination(page=3, page_size=10),
    )
    beyond = registry.list_files(
        user.pk,
        pagination=Pagination(page=4, page_size=10),
    )

    assert first.total_files == 25
    assert first.total_pages == 3
    assert len(first.files) == 10
    assert last.current_page == 3
    assert len(last.files) == 5
    assert beyond.files == []
    assert beyond.total_files == 25


@pytest.mark.django_db
def test_list_pages_do_not_overlap(registry, make_record, user):
    """Test every record appears on exactly one page."""
    created = {make_record().pk for _ in range(7)}

    seen = []
    for page_number in (1, 2, 3):
        page = registry.list_files(
            user.pk,
            pagination=Pagination(page=page_number, page_size=3),
        )
        seen.extend(f.pk for f in page.files)

    assert sorted(seen) == sorted(created)


@pytest.mark.django_db
def test_list_empty(registry, user):
    """Test listing with no files."""
    page = registry.list_files(user.pk)

    assert page.files == []
    assert page.total_files == 0
    assert page.total_pages == 0


@pytest.mark.django_db
def test_list_default_newest_first(registry, make_record, user):
    """Test default ordering is newest upload first."""
    older = make_record()
    newer = make_record()

    page = registry.list_files(user.pk)

    assert [f.pk for f in page.files] == [newer.pk, older.pk]


@pytest.mark.django_db
def test_list_sorted_by_name(registry, make_record, user):
    """Test ascending sort by original name."""
    make_record(original_name='b.pdf')
    make_record(original_name='c.pdf')
    make_record(original_name='a.pdf')

    page = registry.list_files(
        user.pk,
        sort=Sort(field='original_name', descending=False),
    )

    assert [f.original_name for f in page.files] == ['a.pdf', 'b.pdf', 'c.pdf']


@pytest.mark.django_db
def test_list_filters(registry, make_record, user):
    """Test search, tag and MIME type filters combine."""
    match = make_record(
        original_name='beach.png',
        mime_type='image/png',
        tags=['holiday'],
    )
    make_record(original_name='beach.pdf', tags=['holiday'])
    make_record(original_name='beach2.png', mime_type='image/png')

    page = registry.list_files(
        user.pk,
        filters=FileFilters(
            search='beach',
            tag='holiday',
            mime_type='image/png',
        ),
    )

    assert [f.pk for f in page.files] == [match.pk]
    assert page.total_files == 1


@pytest.mark.django_db
def test_list_search_counts_each_file_once(registry, make_record, user):
    """Test matching several tags does not inflate the total."""
    make_record(tags=['beach', 'beachwear'])

    page = registry.list_files(user.pk, filters=FileFilters(search='beach'))

    assert page.total_files == 1
    assert len(page.files) == 1


@pytest.mark.parametrize('pagination_kwargs', [
    {'page': 0},
    {'page_size': 0},
    {'page_size': -5},
])
def test_pagination_invalid(pagination_kwargs):
    """Test out-of-range page selection is rejected."""
    with pytest.raises(ValidationError):
        Pagination(**pagination_kwargs)


def test_pagination_offset():
    """Test offset of the first record on a page."""
    assert Pagination(page=3, page_size=10).offset == 20


@pytest.mark.django_db
def test_list_large_page_size(registry, make_record, user):
    """Test any page size of at least one is accepted."""
    for _ in range(12):
        make_record()

    page = registry.list_files(user.pk, pagination=Pagination(page_size=150))

    assert Pagination(page_size=101).page_size == 101
    assert page.total_files == 12
    assert page.total_pages == 1
    assert len(page.files) == 12


def test_sort_invalid_field():
    """Test sorting only on known fields."""
    with pytest.raises(ValidationError):
        Sort(field='storage_locator')


def test_sort_order_by():
    """Test ordering includes the primary key tie-breaker."""
    assert Sort().order_by() == ('-uploaded_at', '-pk')
    assert Sort('size_bytes', descending=False).order_by() == (
        'size_bytes',
        'pk',
    )


def test_download_repr_hides_content(make_record):
    """Test downloaded bytes are not dumped into reprs."""
    download = Download(content=b'secret bytes', file=make_record())

    assert 'secret bytes' not in repr(download)


@pytest.mark.django_db
def test_get_file_registry_from_settings(configured_registry, tmp_path):
    """Test the shared registry is built from Django settings."""
    assert get_file_registry() is configured_registry
    assert configured_registry.settings.storage_backend == BackendKind.LOCAL
    assert configured_registry.settings.local_root == tmp_path / 'media'
    assert set(configured_registry.backends) == {BackendKind.LOCAL}
