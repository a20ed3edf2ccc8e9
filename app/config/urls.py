"""
URL configuration for the chat service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - Authentication endpoints
        token/                     - Obtain JWT pair
        token/refresh/             - Refresh JWT
        me/                        - Current user (GET/PATCH)
    /api/v1/chat/                  - Chat endpoints (see chat/urls.py)
        conversations/             - Conversation list/create
        conversations/{id}/        - Conversation detail/retitle
        conversations/{id}/members/   - Roster list/add
        conversations/{id}/messages/  - History/send

WebSocket routes are declared in chat/routing.py and mounted in asgi.py.
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# All routes here are prefixed with /api/v1/
api_v1_patterns = [
    path("auth/", include("authentication.urls")),
    path("chat/", include("chat.urls")),
]

urlpatterns = [
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Chat Admin"
admin.site.site_title = "Chat Admin"
admin.site.index_title = "Conversations and messages"
