"""
WSGI config for the chat service.

Serves the REST API only. WebSocket delivery requires the ASGI entry point
(config.asgi), so production runs an ASGI server; this module exists for
management tooling and WSGI-only hosts.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
