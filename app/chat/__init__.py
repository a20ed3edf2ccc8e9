"""
Chat app for real-time messaging.

This app handles:
- Conversations (direct and group) and their rosters
- Message sending, editing, soft deletion and history paging
- Read markers, read receipts and unread counts
- WebSocket sessions, presence and event fan-out

Related apps:
    - authentication: User model for members and senders
    - core: Base models, services and the error taxonomy

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See routing.py for WebSocket URL patterns.

Usage:
    from chat.services import ConversationService, MessageService

    conversation, created = ConversationService.create_conversation(
        creator=user,
        conversation_type="direct",
        member_ids=[user.pk, other_user.pk],
    )

    message = MessageService.send_message(
        conversation_id=conversation.pk,
        sender=user,
        kind="text",
        content="Hello!",
    )
"""
