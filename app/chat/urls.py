"""
URL configuration for chat API.

URL Structure:
    Conversations:
        /conversations/                          GET, POST
        /conversations/unread-count/             GET
        /conversations/{id}/                     GET, PATCH
        /conversations/{id}/archive/             POST
        /conversations/{id}/read/                POST
        /conversations/{id}/mute/                POST
        /conversations/{id}/typing/              POST
        /conversations/{id}/presence/            GET
        /conversations/{id}/leave/               POST

    Members:
        /conversations/{id}/members/             GET, POST
        /conversations/{id}/members/{user_id}/   PATCH, DELETE

    Messages:
        /conversations/{id}/messages/                  GET, POST
        /conversations/{id}/messages/{pk}/             GET, PATCH, DELETE
        /conversations/{id}/messages/{pk}/receipts/    GET

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import ConversationViewSet, MemberViewSet, MessageViewSet

# Main router for conversations
router = DefaultRouter()
router.register(r"conversations", ConversationViewSet, basename="conversation")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
    # Nested routes for members
    path(
        "conversations/<int:conversation_pk>/members/",
        MemberViewSet.as_view({"get": "list", "post": "create"}),
        name="conversation-member-list",
    ),
    path(
        "conversations/<int:conversation_pk>/members/<int:user_id>/",
        MemberViewSet.as_view({"patch": "partial_update", "delete": "destroy"}),
        name="conversation-member-detail",
    ),
    # Nested routes for messages
    path(
        "conversations/<int:conversation_pk>/messages/",
        MessageViewSet.as_view({"get": "list", "post": "create"}),
        name="conversation-message-list",
    ),
    path(
        "conversations/<int:conversation_pk>/messages/<int:pk>/",
        MessageViewSet.as_view(
            {"get": "retrieve", "patch": "partial_update", "delete": "destroy"}
        ),
        name="conversation-message-detail",
    ),
    path(
        "conversations/<int:conversation_pk>/messages/<int:pk>/receipts/",
        MessageViewSet.as_view({"get": "receipts"}),
        name="conversation-message-receipts",
    ),
]
