"""
WSGI config for smart_bom project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'smart_bom.settings.local')

application = get_wsgi_application()
