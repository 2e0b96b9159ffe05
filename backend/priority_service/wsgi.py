"""
WSGI config for priority_service project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'priority_service.settings')

application = get_wsgi_application()
