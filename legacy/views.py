import json
import logging
from pathlib import Path

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.errors import BadParams, MarkbookError
from . import config
from .importer import import_legacy_class

logger = logging.getLogger(__name__)


def _resolve_folder(payload):
    """
    Validate the requested folder against LEGACY_IMPORT_ROOT.

    Raises:
        BadParams: missing folder, or a folder outside the import root
    """
    folder = payload.get('folder') if isinstance(payload, dict) else None
    if not isinstance(folder, str) or not folder.strip():
        raise BadParams('missing folder')

    folder = Path(folder.strip())
    root = config.IMPORT_ROOT
    if root:
        root = Path(root).resolve()
        resolved = (root / folder).resolve()
        if resolved != root and root not in resolved.parents:
            raise BadParams('folder is outside the import root', details={'folder': str(folder)})
        return resolved
    return folder


@csrf_exempt
@require_POST
def import_class(request):
    """
    Import a legacy class folder.

    Body: {"folder": "<path>"}; relative paths resolve against
    LEGACY_IMPORT_ROOT when it is set.
    """
    try:
        try:
            payload = json.loads(request.body or b'{}')
        except ValueError:
            raise BadParams('request body is not valid JSON')
        result = import_legacy_class(_resolve_folder(payload))
    except MarkbookError as e:
        return JsonResponse({'ok': False, 'error': e.as_dict()}, status=e.http_status)

    return JsonResponse({'ok': True, 'result': result})
