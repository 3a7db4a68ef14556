"""Main settings file.

This file loads the configuration components in order. Values that
differ between deployments are read from the environment (or from
``config/.env``) by ``python-decouple``.
"""

import django_stubs_ext
from split_settings.tools import include

# Allows generic admin and queryset classes at runtime
django_stubs_ext.monkeypatch()

include(
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/files.py',
)
