"""
Chat application configuration.

This app provides the chat system with:
- Direct (1:1) and group conversations
- Role-based permissions (owner, admin, member)
- Cursor-paginated message history with soft deletion
- Read markers, read receipts and unread counts
- Real-time event fan-out over WebSockets
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
