"""
WebSocket consumers for the chat application.

This module implements the WebSocket consumer for real-time chat functionality,
handling connection management, event delivery, and integration with the
chat service layer.

Consumers:
    ChatConsumer: One session per connected client

Authentication:
    Users are authenticated via JWT (see chat.middleware.JWTAuthMiddleware),
    which attaches the user to self.scope["user"]. Unauthenticated sockets
    are closed with code 4001.

Delivery:
    Each session registers its channel name in the connection directory.
    EventBroadcaster sends {"type": "chat.event", "event": envelope} to the
    channel; chat_event forwards the envelope to the client unchanged.

Message Types (from client):
    - message: Send a new message
        {"type": "message", "conversation_id": 1, "kind": "text", "content": "Hi",
         "attachments": [...], "reply_to_message_id": 5, "request_id": "abc"}
    - typing: Typing indicator
        {"type": "typing", "conversation_id": 1, "is_typing": true}
    - read: Read receipt
        {"type": "read", "conversation_id": 1, "message_id": 9}
    - heartbeat: Keep the session registered
        {"type": "heartbeat"}

Message Types (to client):
    - Event envelopes: {"type": "MESSAGE_SENT", "conversation_id", ...}
    - ack: {"type": "ack", "request": "message", "request_id", "message_id"}
    - heartbeat: {"type": "heartbeat"}
    - error: {"type": "error", "error_code": "...", "error": "..."}
"""

from __future__ import annotations

import logging

from asgiref.sync import sync_to_async
from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from core.exceptions import BaseApplicationError

from chat.connections import get_connection_directory
from chat.events import EventBroadcaster
from chat.middleware import JWT_SUBPROTOCOL
from chat.serializers import MessageCreateSerializer
from chat.services import MessageService, ReadReceiptService

logger = logging.getLogger(__name__)

CLOSE_CODE_UNAUTHENTICATED = 4001


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for real-time chat functionality.

    Handles:
        - Connection authentication
        - Session registration in the connection directory (presence)
        - Sending messages, typing indicators and read receipts
        - Forwarding broadcast events to the client

    Attributes:
        user: Authenticated user (after connect)
        registered: Whether this session is in the connection directory
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user = None
        self.registered = False

    async def connect(self):
        """
        Handle WebSocket connection.

        Rejects unauthenticated users, then registers the session. The
        user's first session announces them online to their peers.
        """
        user = self.scope.get("user")

        if user is None or not user.is_authenticated:
            logger.warning("Rejected unauthenticated chat connection")
            await self.close(code=CLOSE_CODE_UNAUTHENTICATED)
            return

        self.user = user
        subprotocol = (
            JWT_SUBPROTOCOL
            if JWT_SUBPROTOCOL in self.scope.get("subprotocols", [])
            else None
        )
        await self.accept(subprotocol=subprotocol)

        directory = get_connection_directory()
        first_session = await sync_to_async(directory.register)(
            user.pk, self.channel_name
        )
        self.registered = True
        logger.info(f"User {user.pk} connected on {self.channel_name}")

        if first_session:
            await database_sync_to_async(EventBroadcaster.publish_presence)(
                user, True
            )

    async def disconnect(self, close_code):
        """
        Handle WebSocket disconnection.

        Unregisters the session; the user's last session going away
        announces them offline.
        """
        if not self.registered:
            return

        directory = get_connection_directory()
        last_session = await sync_to_async(directory.unregister)(
            self.user.pk, self.channel_name
        )
        self.registered = False
        logger.info(
            f"User {self.user.pk} disconnected from {self.channel_name} (code {close_code})"
        )

        if last_session:
            await database_sync_to_async(EventBroadcaster.publish_presence)(
                self.user, False
            )

    async def receive_json(self, content, **kwargs):
        """
        Handle incoming WebSocket frames.

        Args:
            content: Parsed JSON frame from client
        """
        if not isinstance(content, dict):
            await self._send_error("INVALID_FRAME", "Frames must be JSON objects")
            return

        frame_type = content.get("type")
        handlers = {
            "message": self._handle_message,
            "typing": self._handle_typing,
            "read": self._handle_read,
            "heartbeat": self._handle_heartbeat,
        }
        handler = handlers.get(frame_type)
        if handler is None:
            await self._send_error(
                "UNKNOWN_FRAME_TYPE", f"Unknown message type: {frame_type}"
            )
            return

        try:
            await handler(content)
        except BaseApplicationError as e:
            logger.info(f"Rejected {frame_type} frame from user {self.user.pk}: {e}")
            await self._send_error(e.error_code, e.message, e.details)

    async def _handle_message(self, content):
        """Send a message through MessageService."""
        conversation_id = self._get_int(content, "conversation_id")
        if conversation_id is None:
            await self._send_error("VALIDATION_ERROR", "conversation_id is required")
            return

        serializer = MessageCreateSerializer(data=content)
        if not serializer.is_valid():
            await self._send_error(
                "VALIDATION_ERROR", "Invalid message", serializer.errors
            )
            return

        data = serializer.validated_data
        message = await database_sync_to_async(MessageService.send_message)(
            conversation_id=conversation_id,
            sender=self.user,
            kind=data["kind"],
            content=data.get("content", ""),
            attachments=data.get("attachments"),
            reply_to_id=data.get("reply_to_message_id"),
        )
        await self.send_json(
            {
                "type": "ack",
                "request": "message",
                "request_id": content.get("request_id"),
                "message_id": message.pk,
            }
        )

    async def _handle_typing(self, content):
        """Broadcast a typing indicator to the other members."""
        conversation_id = self._get_int(content, "conversation_id")
        if conversation_id is None:
            await self._send_error("VALIDATION_ERROR", "conversation_id is required")
            return

        await database_sync_to_async(MessageService.set_typing)(
            conversation_id, self.user, bool(content.get("is_typing", False))
        )

    async def _handle_read(self, content):
        """Record a read receipt."""
        conversation_id = self._get_int(content, "conversation_id")
        message_id = self._get_int(content, "message_id")
        if conversation_id is None or message_id is None:
            await self._send_error(
                "VALIDATION_ERROR", "conversation_id and message_id are required"
            )
            return

        await database_sync_to_async(ReadReceiptService.record_read)(
            conversation_id, self.user, message_id
        )

    async def _handle_heartbeat(self, content):
        """Refresh this user's session registration."""
        await sync_to_async(get_connection_directory().touch)(self.user.pk)
        await self.send_json({"type": "heartbeat"})

    async def chat_event(self, event):
        """
        Handle chat.event messages from the channel layer.

        Sends the event envelope to the WebSocket client.
        """
        await self.send_json(event["event"])

    async def _send_error(self, error_code: str, error: str, details=None):
        frame = {"type": "error", "error_code": error_code, "error": error}
        if details:
            frame["details"] = details
        await self.send_json(frame)

    @staticmethod
    def _get_int(content: dict, key: str) -> int | None:
        value = content.get(key)
        if isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
