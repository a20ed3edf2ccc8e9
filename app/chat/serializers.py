"""
Serializers for chat API.

This module provides serializers for the chat system:
- Conversation serializers (read, create, update)
- Membership serializers (read, add, role change)
- Message serializers (read, create, update, preview)
- Small request bodies for read markers, mute and typing

Serializer Hierarchy:
    ConversationSerializer: Conversation with members, unread count and preview
    ConversationCreateSerializer: Direct/group conversation creation
    ConversationUpdateSerializer: Group title update

    MembershipSerializer: Member with role and read/mute state
    AddMembersSerializer: Add a batch of users to a group
    RoleUpdateSerializer: Promote, demote or transfer ownership

    MessageSerializer: Message with attachments, reply preview and receipts
    MessageCreateSerializer: Send new message
    MessageUpdateSerializer: Edit own message
    MessagePreviewSerializer: Minimal message for conversation list preview
    ReadReceiptSerializer: Who read a message, and when

Design Decisions:
    - Read and write serializers are separate for clarity
    - Soft-deleted messages render content null and no attachments
    - System messages keep their JSON descriptor in system_event and show a
      formatted description in content
    - Event payloads are rendered with the same serializers as REST responses
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from rest_framework import serializers

from chat.constants import ATTACHMENT_CONFIG, CONVERSATION_CONFIG, MESSAGE_CONFIG
from chat.models import (
    Conversation,
    ConversationType,
    Membership,
    MembershipRole,
    Message,
    MessageAttachment,
    MessageKind,
    MessageReadStatus,
    SystemMessageEvent,
)

if TYPE_CHECKING:
    from authentication.models import User


# =============================================================================
# Helper Functions
# =============================================================================


def format_system_message(content: str) -> str:
    """
    Format system message content for display.

    Converts JSON system message content into human-readable text.

    Args:
        content: JSON string with {event, data}

    Returns:
        Human-readable message string
    """
    try:
        data = json.loads(content)
        event = data.get("event", "")
        event_data = data.get("data", {})

        formatters = {
            SystemMessageEvent.MEMBERS_ADDED: lambda d: (
                "A member was added to the group"
                if len(d.get("user_ids", [])) == 1
                else f"{len(d.get('user_ids', []))} members were added to the group"
            ),
            SystemMessageEvent.MEMBER_REMOVED: lambda d: "A member was removed from the group",
            SystemMessageEvent.MEMBER_LEFT: lambda d: "A member left the group",
            SystemMessageEvent.ROLE_CHANGED: lambda d: f"A member's role was changed to {d.get('new_role', 'unknown')}",
            SystemMessageEvent.OWNERSHIP_TRANSFERRED: lambda d: "Group ownership was transferred",
            SystemMessageEvent.TITLE_CHANGED: lambda d: f'Group title was changed to "{d.get("new_title", "")}"',
        }

        formatter = formatters.get(event)
        if formatter:
            return formatter(event_data)
        return "System message"

    except (json.JSONDecodeError, TypeError, AttributeError):
        return "System message"


def message_payload(message: Message) -> dict[str, Any]:
    """Render a message for an event payload (plain dict, JSON-safe)."""
    return json.loads(json.dumps(MessageSerializer(message).data, default=str))


# =============================================================================
# Attachment and Receipt Serializers
# =============================================================================


class AttachmentSerializer(serializers.ModelSerializer):
    """
    Media descriptor attached to a message.

    Used for reading and for validating attachment input on send and edit.
    """

    caption = serializers.CharField(
        max_length=ATTACHMENT_CONFIG.MAX_CAPTION_LENGTH,
        required=False,
        allow_blank=True,
        default="",
    )

    class Meta:
        model = MessageAttachment
        fields = [
            "media_id",
            "file_name",
            "content_type",
            "file_size",
            "download_url",
            "caption",
        ]


class ReadReceiptSerializer(serializers.ModelSerializer):
    """A single read receipt."""

    user_id = serializers.IntegerField(read_only=True)
    display_name = serializers.CharField(source="user_display_name", read_only=True)

    class Meta:
        model = MessageReadStatus
        fields = ["user_id", "display_name", "read_at"]
        read_only_fields = fields


# =============================================================================
# Message Serializers
# =============================================================================


class MessagePreviewSerializer(serializers.ModelSerializer):
    """
    Minimal message serializer for conversation list preview and replies.

    Content is truncated and redacted for deleted messages.
    """

    content = serializers.SerializerMethodField(
        help_text="Content snippet (null if deleted)"
    )

    class Meta:
        model = Message
        fields = [
            "id",
            "sender_id",
            "sender_name",
            "kind",
            "content",
            "is_deleted",
            "created_at",
        ]
        read_only_fields = fields

    def get_content(self, obj: Message) -> str | None:
        """Snippet of the display content."""
        if obj.is_deleted:
            return None
        if obj.is_system_message:
            return format_system_message(obj.content)
        return obj.content[: MESSAGE_CONFIG.REPLY_PREVIEW_LENGTH]


class MessageSerializer(serializers.ModelSerializer):
    """
    Full message serializer for message lists and event payloads.

    Includes attachments, reply preview and read receipts, with deleted
    messages redacted server-side.
    """

    conversation_id = serializers.IntegerField(read_only=True)
    sender_id = serializers.IntegerField(read_only=True, allow_null=True)
    content = serializers.SerializerMethodField(
        help_text="Message content (null if deleted)"
    )
    system_event = serializers.SerializerMethodField(
        help_text="Structured event for system messages"
    )
    attachments = serializers.SerializerMethodField()
    reply_to_message_id = serializers.IntegerField(
        source="reply_to_id",
        read_only=True,
        allow_null=True,
    )
    reply_to = serializers.SerializerMethodField()
    sent_at = serializers.DateTimeField(source="created_at", read_only=True)
    read_by = serializers.SerializerMethodField()
    read_count = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sender_id",
            "sender_name",
            "kind",
            "content",
            "system_event",
            "attachments",
            "reply_to_message_id",
            "reply_to",
            "sent_at",
            "edited_at",
            "is_edited",
            "is_deleted",
            "read_by",
            "read_count",
        ]
        read_only_fields = fields

    def get_content(self, obj: Message) -> str | None:
        """
        Get display content.

        - Deleted messages: None
        - System messages: Formatted event description
        - Other messages: Original content
        """
        if obj.is_deleted:
            return None
        if obj.is_system_message:
            return format_system_message(obj.content)
        return obj.content

    def get_system_event(self, obj: Message) -> dict | None:
        if obj.is_deleted:
            return None
        return obj.get_system_event_data()

    def get_attachments(self, obj: Message) -> list[dict]:
        if obj.is_deleted:
            return []
        return AttachmentSerializer(obj.attachments.all(), many=True).data

    def get_reply_to(self, obj: Message) -> dict | None:
        if obj.reply_to_id is None or obj.reply_to is None:
            return None
        return MessagePreviewSerializer(obj.reply_to).data

    def get_read_by(self, obj: Message) -> list[dict]:
        return ReadReceiptSerializer(obj.read_receipts.all(), many=True).data

    def get_read_count(self, obj: Message) -> int:
        return len(obj.read_receipts.all())


class MessageCreateSerializer(serializers.Serializer):
    """
    Serializer for sending messages.

    Supports:
    - Text messages
    - Image and file messages (attachments required)
    - Replies (reply_to_message_id)

    Business rules (blank text, attachment requirements, archived
    conversations) are enforced by MessageService.
    """

    kind = serializers.ChoiceField(
        choices=[
            (MessageKind.TEXT, "Text"),
            (MessageKind.IMAGE, "Image"),
            (MessageKind.FILE, "File"),
        ],
        default=MessageKind.TEXT,
        help_text="Kind of message (text, image or file)",
    )
    content = serializers.CharField(
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
        required=False,
        allow_blank=True,
        trim_whitespace=False,
        default="",
        help_text="Message content (max 2,000 characters)",
    )
    attachments = AttachmentSerializer(
        many=True,
        required=False,
        max_length=ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE,
        help_text="Attachments (max 10)",
    )
    reply_to_message_id = serializers.IntegerField(
        required=False,
        allow_null=True,
        help_text="Message this one replies to (optional)",
    )


class MessageUpdateSerializer(serializers.Serializer):
    """
    Serializer for editing a message.

    Attachments are replaced only when supplied.
    """

    content = serializers.CharField(
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
        allow_blank=True,
        trim_whitespace=False,
        help_text="New message content",
    )
    attachments = AttachmentSerializer(
        many=True,
        required=False,
        max_length=ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE,
        help_text="Replacement attachments (optional)",
    )


# =============================================================================
# Membership Serializers
# =============================================================================


class MembershipSerializer(serializers.ModelSerializer):
    """
    Read serializer for conversation members.

    Includes display name and per-member read/mute state.
    """

    user_id = serializers.IntegerField(read_only=True)
    display_name = serializers.SerializerMethodField()

    class Meta:
        model = Membership
        fields = [
            "user_id",
            "display_name",
            "role",
            "last_read_at",
            "muted",
            "joined_at",
        ]
        read_only_fields = fields

    def get_display_name(self, obj: Membership) -> str:
        return obj.user.get_full_name()


class AddMembersSerializer(serializers.Serializer):
    """Serializer for adding users to a group conversation."""

    user_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        min_length=1,
        max_length=CONVERSATION_CONFIG.MAX_ADD_MEMBERS_BATCH,
        help_text="User IDs to add (1-10)",
    )


class RoleUpdateSerializer(serializers.Serializer):
    """
    Serializer for changing a member's role.

    Setting OWNER transfers ownership; the previous owner becomes ADMIN.
    """

    role = serializers.ChoiceField(
        choices=MembershipRole.choices,
        help_text="New role (owner transfers ownership)",
    )


class MarkReadSerializer(serializers.Serializer):
    """Serializer for advancing the caller's read marker."""

    last_read_message_id = serializers.IntegerField(
        help_text="Latest message the caller has read",
    )


class MuteSerializer(serializers.Serializer):
    """Serializer for muting or unmuting a conversation."""

    muted = serializers.BooleanField()


class TypingSerializer(serializers.Serializer):
    """Serializer for typing indicators."""

    is_typing = serializers.BooleanField()


# =============================================================================
# Conversation Serializers
# =============================================================================


class ConversationSerializer(serializers.ModelSerializer):
    """
    Serializer for conversation list and detail views.

    Includes computed fields:
    - members: Current roster with roles and read state
    - unread_count: Number of unread messages for current user
    - last_message: Preview of most recent visible message
    """

    type = serializers.CharField(source="conversation_type", read_only=True)
    owner_id = serializers.IntegerField(read_only=True, allow_null=True)
    members = MembershipSerializer(source="memberships", many=True, read_only=True)
    unread_count = serializers.SerializerMethodField(
        help_text="Number of unread messages"
    )
    last_message = serializers.SerializerMethodField(
        help_text="Most recent message preview"
    )

    class Meta:
        model = Conversation
        fields = [
            "id",
            "type",
            "title",
            "owner_id",
            "admin_ids",
            "members",
            "created_at",
            "last_message_at",
            "is_archived",
            "unread_count",
            "last_message",
        ]
        read_only_fields = fields

    def _get_user(self) -> User | None:
        request = self.context.get("request")
        if request is not None and request.user.is_authenticated:
            return request.user
        return self.context.get("user")

    def get_unread_count(self, obj: Conversation) -> int:
        """Count messages after the current user's read marker."""
        from chat.services import ReadReceiptService

        user = self._get_user()
        if user is None:
            return 0
        return ReadReceiptService.count_unread(obj.pk, user.pk)

    def get_last_message(self, obj: Conversation) -> dict | None:
        """Get most recent visible message preview."""
        from chat.services import MessageService

        last_message = MessageService.get_latest_message(obj.pk)
        if last_message:
            return MessagePreviewSerializer(last_message).data
        return None


class ConversationCreateSerializer(serializers.Serializer):
    """
    Serializer for creating conversations.

    Supports both direct (1:1) and group conversations:
    - Direct: member_ids holds both users (the caller among them) or only
      the other user; an existing active conversation is returned
    - Group: caller becomes owner, listed users become members
    """

    type = serializers.ChoiceField(
        choices=ConversationType.choices,
        help_text="Type of conversation to create",
    )
    member_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        min_length=1,
        max_length=CONVERSATION_CONFIG.MAX_GROUP_MEMBERS,
        help_text="User IDs to include in the conversation",
    )
    title = serializers.CharField(
        max_length=CONVERSATION_CONFIG.MAX_TITLE_LENGTH,
        required=False,
        allow_blank=True,
        allow_null=True,
        default=None,
        help_text="Title for group conversations (ignored for direct)",
    )


class ConversationUpdateSerializer(serializers.Serializer):
    """
    Serializer for updating group conversation.

    Only title can be updated.
    """

    title = serializers.CharField(
        max_length=CONVERSATION_CONFIG.MAX_TITLE_LENGTH,
        help_text="New title for the group",
    )

    def validate_title(self, value: str) -> str:
        """Ensure title is not empty."""
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Title cannot be empty")
        return value
