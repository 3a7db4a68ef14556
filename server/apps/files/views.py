"""JSON views for the files app.

Views only translate requests into ``FileRegistry`` calls and registry
errors into HTTP status codes. Wire field names follow the public API
(``originalName``, ``isPublic``, ...), not the model field names.
"""

import functools
import json
import logging
from collections.abc import Callable
from http import HTTPStatus
from typing import Any, Final

from django.core.exceptions import ValidationError
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.utils.http import content_disposition_header
from django.views.decorators.http import require_GET, require_http_methods

from server.apps.files.exceptions import (
    AccessDeniedError,
    BackendUnavailableError,
    FileRecordNotFoundError,
    FileRegistryError,
    PayloadTooLargeError,
    UnauthenticatedError,
    UnsupportedMediaTypeError,
)
from server.apps.files.logic.file_operations import (
    FileFilters,
    Pagination,
    Sort,
    get_file_registry,
)
from server.apps.files.models import File

_View = Callable[..., HttpResponse]

logger = logging.getLogger(__name__)

# Public API names of sortable fields
_SORT_ALIASES: Final = {
    'uploadDate': 'uploaded_at',
    'originalName': 'original_name',
    'size': 'size_bytes',
    'mimetype': 'mime_type',
    'downloads': 'download_count',
}

# Public API names of editable fields
_UPDATE_ALIASES: Final = {
    'isPublic': 'is_public',
}

_DEFAULT_PAGE_SIZE: Final = 10


def _error(message: str, status: HTTPStatus) -> JsonResponse:
    return JsonResponse({'error': message}, status=status)


def _describe_error(
    exc: FileRegistryError | ValidationError,
) -> tuple[str, HTTPStatus]:
    """Caller-visible message and status for a registry error.

    Messages never include locators, principal IDs or backend names.
    """
    match exc:
        case UnauthenticatedError():
            return 'Authentication required', HTTPStatus.UNAUTHORIZED
        case AccessDeniedError():
            return 'Access denied', HTTPStatus.FORBIDDEN
        case FileRecordNotFoundError():
            return 'File not found', HTTPStatus.NOT_FOUND
        case UnsupportedMediaTypeError():
            allowed = ', '.join(sorted(exc.allowed))
            return (
                f'Invalid file type. Allowed types: {allowed}',
                HTTPStatus.UNSUPPORTED_MEDIA_TYPE,
            )
        case PayloadTooLargeError():
            return (
                f'File size too large. Maximum size is {exc.max_bytes} bytes.',
                HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            )
        case BackendUnavailableError():
            return (
                'Storage temporarily unavailable',
                HTTPStatus.SERVICE_UNAVAILABLE,
            )
        case ValidationError():
            return '; '.join(exc.messages), HTTPStatus.BAD_REQUEST
        case _:
            return 'Internal server error', HTTPStatus.INTERNAL_SERVER_ERROR


def _registry_errors(view: _View) -> _View:
    """Turn registry errors raised by a view into JSON error responses."""
    @functools.wraps(view)
    def wrapper(
        request: HttpRequest,
        *args: Any,
        **kwargs: Any,
    ) -> HttpResponse:
        try:
            return view(request, *args, **kwargs)
        except (FileRegistryError, ValidationError) as exc:
            message, status = _describe_error(exc)
            logger.info(
                '%s %s -> %d: %s',
                request.method,
                request.path,
                status,
                exc,
            )
            return _error(message, status)
        except Exception:
            logger.exception(
                'Unhandled error: %s %s',
                request.method,
                request.path,
            )
            return _error(
                'Internal server error',
                HTTPStatus.INTERNAL_SERVER_ERROR,
            )
    return wrapper


def _principal_id(request: HttpRequest) -> int | None:
    if request.user.is_authenticated:
        return request.user.pk
    return None


def _require_principal(request: HttpRequest, action: str) -> int:
    principal_id = _principal_id(request)
    if principal_id is None:
        raise UnauthenticatedError(action)
    return principal_id


def _int_param(request: HttpRequest, name: str, default: int) -> int:
    raw_value = request.GET.get(name)
    if not raw_value:
        return default
    try:
        return int(raw_value)
    except ValueError as error:
        raise ValidationError(f'{name} must be an integer') from error


def _serialize_file(file_instance: File) -> dict[str, Any]:
    return {
        'id': file_instance.pk,
        'originalName': file_instance.original_name,
        'size': file_instance.size_bytes,
        'mimetype': file_instance.mime_type,
        'isPublic': file_instance.is_public,
        'uploadedBy': {
            'id': file_instance.user_id,
            'username': file_instance.user.username,
        },
        'tags': file_instance.get_tag_names(),
        'description': file_instance.description,
        'downloads': file_instance.download_count,
        'uploadDate': file_instance.uploaded_at.isoformat(),
    }


@require_GET
@_registry_errors
def file_list(request: HttpRequest) -> HttpResponse:
    """List files visible to the user with search and pagination."""
    principal_id = _require_principal(request, 'list')

    sort_field = request.GET.get('sortBy', 'uploadDate')
    page = get_file_registry().list_files(
        principal_id,
        filters=FileFilters(
            search=request.GET.get('search', ''),
            tag=request.GET.get('tag') or None,
            mime_type=request.GET.get('type') or None,
        ),
        pagination=Pagination(
            page=_int_param(request, 'page', 1),
            page_size=_int_param(request, 'limit', _DEFAULT_PAGE_SIZE),
        ),
        sort=Sort(
            field=_SORT_ALIASES.get(sort_field, sort_field),
            descending=request.GET.get('sortOrder') != 'asc',
        ),
    )
    return JsonResponse({
        'files': [
            _serialize_file(file_instance) for file_instance in page.files
        ],
        'currentPage': page.current_page,
        'totalPages': page.total_pages,
        'totalFiles': page.total_files,
    })


@require_http_methods(['POST'])
@_registry_errors
def file_upload(request: HttpRequest) -> HttpResponse:
    """Upload a file from a multipart form."""
    principal_id = _require_principal(request, 'upload')

    uploaded = request.FILES.get('file')
    if uploaded is None:
        raise ValidationError('No file uploaded')

    registry = get_file_registry()
    # Reject before reading the body into memory
    registry.validate_upload(uploaded.content_type, uploaded.size)

    file_instance = registry.upload(
        principal_id,
        content=uploaded.read(),
        content_type=uploaded.content_type,
        original_name=uploaded.name,
        description=request.POST.get('description', ''),
        tags=request.POST.get('tags', ''),
        is_public=request.POST.get('isPublic') == 'true',
    )
    return JsonResponse(
        {
            'message': 'File uploaded successfully',
            'file': _serialize_file(file_instance),
        },
        status=HTTPStatus.CREATED,
    )


@require_http_methods(['GET', 'PATCH', 'DELETE'])
@_registry_errors
def file_detail(request: HttpRequest, file_id: int) -> HttpResponse:
    """Show, update or delete one file."""
    registry = get_file_registry()

    if request.method == 'GET':
        file_instance = registry.get_file(_principal_id(request), file_id)
        return JsonResponse({'file': _serialize_file(file_instance)})

    if request.method == 'DELETE':
        registry.delete(_require_principal(request, 'delete'), file_id)
        return JsonResponse({'message': 'File deleted successfully'})

    principal_id = _require_principal(request, 'update')
    file_instance = registry.update(
        principal_id,
        file_id,
        _parse_update_body(request),
    )
    return JsonResponse({
        'message': 'File updated successfully',
        'file': _serialize_file(file_instance),
    })


@require_GET
@_registry_errors
def file_download(request: HttpRequest, file_id: int) -> HttpResponse:
    """Send a file's content as an attachment."""
    download = get_file_registry().download(_principal_id(request), file_id)

    response = HttpResponse(
        download.content,
        content_type=download.file.mime_type,
    )
    response['Content-Disposition'] = content_disposition_header(
        as_attachment=True,
        filename=download.file.original_name,
    )
    return response


def _parse_update_body(request: HttpRequest) -> dict[str, Any]:
    try:
        body = json.loads(request.body or b'{}')
    except json.JSONDecodeError as error:
        raise ValidationError('Request body must be valid JSON') from error
    if not isinstance(body, dict):
        raise ValidationError('Request body must be a JSON object')
    return {
        _UPDATE_ALIASES.get(field_name, field_name): field_value
        for field_name, field_value in body.items()
    }
