"""
Real-time event fan-out for the chat system.

Services describe what happened as a ChatEvent and hand it to the
EventBroadcaster, which looks up the live sessions of every recipient in
the connection directory and pushes the event envelope to each session
through the channel layer. Nothing here is persisted.

Delivery semantics:
    - Best-effort, at most once per connected session
    - Members without a live session receive nothing and reconcile through
      the REST listing endpoints when they reconnect
    - A failed delivery is logged and never fails the write that caused it

Envelope (what clients receive):
    {
        "type": "MESSAGE_SENT",
        "conversation_id": 12,
        "actor_id": 3,
        "actor_name": "Ada Lovelace",
        "payload": {...},
        "timestamp": "2024-05-01T12:00:00.000000+00:00"
    }

Usage:
    event = ChatEvent.build(ChatEventType.MESSAGE_SENT, conversation.pk, actor=user,
                            payload=message_payload)
    EventBroadcaster.publish_on_commit(event)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import DatabaseError, transaction
from django.utils import timezone

from chat.connections import get_connection_directory
from chat.models import Membership

if TYPE_CHECKING:
    from authentication.models import User

logger = logging.getLogger(__name__)

# Consumer handler invoked for every delivered event (ChatConsumer.chat_event)
CONSUMER_HANDLER_TYPE = "chat.event"


class ChatEventType:
    """Event types pushed to connected clients."""

    MESSAGE_SENT = "MESSAGE_SENT"
    MESSAGE_EDITED = "MESSAGE_EDITED"
    MESSAGE_DELETED = "MESSAGE_DELETED"
    USER_TYPING = "USER_TYPING"
    USER_STOPPED_TYPING = "USER_STOPPED_TYPING"
    USER_JOINED_CONVERSATION = "USER_JOINED_CONVERSATION"
    USER_LEFT_CONVERSATION = "USER_LEFT_CONVERSATION"
    CONVERSATION_CREATED = "CONVERSATION_CREATED"
    CONVERSATION_UPDATED = "CONVERSATION_UPDATED"
    USER_ONLINE = "USER_ONLINE"
    USER_OFFLINE = "USER_OFFLINE"
    MESSAGE_READ = "MESSAGE_READ"

    ALL = (
        MESSAGE_SENT,
        MESSAGE_EDITED,
        MESSAGE_DELETED,
        USER_TYPING,
        USER_STOPPED_TYPING,
        USER_JOINED_CONVERSATION,
        USER_LEFT_CONVERSATION,
        CONVERSATION_CREATED,
        CONVERSATION_UPDATED,
        USER_ONLINE,
        USER_OFFLINE,
        MESSAGE_READ,
    )

    @classmethod
    def is_valid(cls, event_type: str) -> bool:
        """Check if event type value is valid."""
        return event_type in cls.ALL


@dataclass(frozen=True)
class ChatEvent:
    """
    Description of something that happened in a conversation.

    Attributes:
        type: One of ChatEventType
        conversation_id: Conversation the event belongs to (None for presence)
        actor_id: User who caused the event (None for system events)
        actor_name: Actor display name
        payload: Event-specific JSON-serializable data
        timestamp: When the event happened (server clock)
    """

    type: str
    conversation_id: int | None
    actor_id: int | None
    actor_name: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=timezone.now)

    def __post_init__(self):
        if not ChatEventType.is_valid(self.type):
            raise ValueError(f"Unknown chat event type: {self.type}")

    @classmethod
    def build(
        cls,
        event_type: str,
        conversation_id: int | None,
        actor: User | None = None,
        payload: dict[str, Any] | None = None,
    ) -> ChatEvent:
        """Build an event, deriving actor id and name from a user."""
        return cls(
            type=event_type,
            conversation_id=conversation_id,
            actor_id=actor.pk if actor is not None else None,
            actor_name=actor.get_full_name() if actor is not None else "",
            payload=payload or {},
        )

    def to_envelope(self) -> dict[str, Any]:
        """Render the wire envelope sent to clients."""
        return {
            "type": self.type,
            "conversation_id": self.conversation_id,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


class EventBroadcaster:
    """
    Fan-out of chat events to members' live sessions.

    Stateless; all methods are classmethods. Recipients default to the
    conversation's current members at delivery time.
    """

    @classmethod
    def resolve_recipients(cls, conversation_id: int) -> list[int]:
        """Current member user ids of a conversation."""
        return list(
            Membership.objects.filter(conversation_id=conversation_id)
            .order_by("joined_at", "id")
            .values_list("user_id", flat=True)
        )

    @classmethod
    def publish(
        cls,
        event: ChatEvent,
        recipients: Iterable[int] | None = None,
        exclude: Iterable[int] = (),
    ) -> int:
        """
        Deliver event to every live session of every recipient.

        Never raises: a failing channel layer, connection directory or
        recipient lookup is logged and counts as nothing delivered, so the
        write that produced the event still succeeds for its caller.

        Args:
            event: Event to deliver
            recipients: User ids to deliver to (defaults to conversation members)
            exclude: User ids to skip (e.g. the typist for typing events)

        Returns:
            Number of sessions the event was handed to
        """
        try:
            return cls._deliver(event, recipients, exclude)
        except Exception:
            logger.exception(
                f"Failed to publish {event.type} for conversation {event.conversation_id}"
            )
            return 0

    @classmethod
    def _deliver(
        cls,
        event: ChatEvent,
        recipients: Iterable[int] | None,
        exclude: Iterable[int],
    ) -> int:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            logger.debug(f"No channel layer configured, dropping {event.type}")
            return 0

        if recipients is None:
            if event.conversation_id is None:
                return 0
            recipients = cls.resolve_recipients(event.conversation_id)

        skipped = set(exclude)
        directory = get_connection_directory()
        message = {"type": CONSUMER_HANDLER_TYPE, "event": event.to_envelope()}
        delivered = 0

        for user_id in dict.fromkeys(recipients):
            if user_id in skipped:
                continue
            for channel_name in directory.sessions_for(user_id):
                try:
                    async_to_sync(channel_layer.send)(channel_name, message)
                except Exception:
                    # Best-effort: one bad session must not stop the fan-out
                    logger.exception(
                        f"Failed to deliver {event.type} to session {channel_name} "
                        f"of user {user_id}"
                    )
                    continue
                delivered += 1

        logger.debug(
            f"Delivered {event.type} for conversation {event.conversation_id} "
            f"to {delivered} session(s)"
        )
        return delivered

    @classmethod
    def publish_on_commit(
        cls,
        event: ChatEvent,
        recipients: Iterable[int] | None = None,
        exclude: Iterable[int] = (),
    ) -> None:
        """
        Publish once the current transaction commits.

        Events for rolled-back writes are never delivered. Outside a
        transaction the event is published immediately.
        """
        recipients = list(recipients) if recipients is not None else None
        exclude = tuple(exclude)
        transaction.on_commit(lambda: cls.publish(event, recipients, exclude))

    @classmethod
    def publish_presence(cls, user: User, online: bool) -> int:
        """
        Tell everyone sharing a conversation with user that they came online
        or went offline.
        """
        event = ChatEvent.build(
            ChatEventType.USER_ONLINE if online else ChatEventType.USER_OFFLINE,
            conversation_id=None,
            actor=user,
            payload={"user_id": user.pk, "online": online},
        )
        try:
            peer_ids = list(
                Membership.objects.filter(
                    conversation__memberships__user=user,
                    conversation__is_archived=False,
                )
                .exclude(user=user)
                .values_list("user_id", flat=True)
                .distinct()
            )
        except DatabaseError:
            logger.exception(f"Failed to resolve presence peers of user {user.pk}")
            return 0
        return cls.publish(event, recipients=peer_ids)
