"""
ASGI config for the chat service.

Routes two protocols:
- HTTP: the REST API (Django)
- WebSocket: /ws/chat/ sessions (Django Channels)

Each WebSocket session authenticates with a JWT access token, registers in
the connection directory, and receives event envelopes fanned out by
chat.events.EventBroadcaster over the channel layer.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Initialize Django before importing anything that touches models
django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402

from chat.middleware import JWTAuthMiddleware  # noqa: E402
from chat.routing import websocket_urlpatterns  # noqa: E402

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
        # Origin check, then JWT authentication, then consumer routing
        "websocket": AllowedHostsOriginValidator(
            JWTAuthMiddleware(URLRouter(websocket_urlpatterns))
        ),
    }
)
