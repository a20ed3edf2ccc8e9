"""
Chat system models.

This module defines the data models for the chat system supporting:
- Direct (1:1) conversations between exactly two users
- Group conversations with role-based permissions

Models:
    Conversation: Thread metadata plus the authoritative member roster
    DirectConversationPair: Enforces one active direct conversation per user pair
    Membership: Per-user role, mute and read-marker state in a conversation
    Message: Individual message within a conversation (soft-deletable)
    MessageAttachment: Media descriptor attached to a message
    MessageReadStatus: Who has read a message, and when

Design Decisions:
    - Conversation.member_ids is the roster; Membership rows are its queryable
      projection. Services change both in one transaction.
    - Membership rows are deleted when a user leaves or is removed. Messages
      are retained.
    - Group conversations use a three-tier role hierarchy: owner > admin > member.
      At most one OWNER row per conversation is enforced in the database.
    - Messages are totally ordered by (created_at, id).
    - Soft delete keeps the message row in place; read paths redact it.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import SoftDeleteMixin

if TYPE_CHECKING:
    from authentication.models import User


class ConversationType(models.TextChoices):
    """
    Type of conversation.

    DIRECT: Exactly two members, fixed roster, no roles
    GROUP: Named thread with mutable roster and role-based permissions
    """

    DIRECT = "direct", "Direct Message"
    GROUP = "group", "Group"


class MembershipRole(models.TextChoices):
    """
    Role within a conversation.

    Hierarchy: OWNER > ADMIN > MEMBER

    OWNER: Full control (promote/demote admins, transfer ownership, remove anyone)
    ADMIN: Can add members, remove members, change title, archive
    MEMBER: Can send messages, delete own messages, leave

    Note: Direct conversation memberships are always MEMBER.
    """

    OWNER = "owner", "Owner"
    ADMIN = "admin", "Admin"
    MEMBER = "member", "Member"


class MessageKind(models.TextChoices):
    """
    Kind of message content.

    TEXT: User-authored text, content required
    IMAGE: One or more image attachments, content is an optional caption
    FILE: One or more file attachments, content is optional
    SYSTEM: Server-generated event message (no sender)
    """

    TEXT = "text", "Text"
    IMAGE = "image", "Image"
    FILE = "file", "File"
    SYSTEM = "system", "System"


class SystemMessageEvent:
    """
    System message event types.

    System messages store structured event data as JSON in the content field.
    Format: {"event": "<event_type>", "data": {...event-specific data...}}

    Events:
        MEMBERS_ADDED: Users were added to the group
            data: {"user_ids": [int], "added_by_id": int}

        MEMBER_REMOVED: A user was removed by an owner/admin
            data: {"user_id": int, "removed_by_id": int}

        MEMBER_LEFT: A user left on their own
            data: {"user_id": int}

        ROLE_CHANGED: A member was promoted or demoted
            data: {"user_id": int, "old_role": str, "new_role": str, "changed_by_id": int}

        OWNERSHIP_TRANSFERRED: Group ownership moved to another member
            data: {"from_user_id": int, "to_user_id": int}

        TITLE_CHANGED: Group title was changed
            data: {"old_title": str, "new_title": str, "changed_by_id": int}
    """

    MEMBERS_ADDED = "members_added"
    MEMBER_REMOVED = "member_removed"
    MEMBER_LEFT = "member_left"
    ROLE_CHANGED = "role_changed"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    TITLE_CHANGED = "title_changed"


class Conversation(BaseModel):
    """
    A conversation between two or more users.

    Conversation Types:
        DIRECT: Exactly 2 members, fixed roster, no title, no owner or admins.
                Unique per user pair while not archived (DirectConversationPair).

        GROUP: Titled thread. Creator becomes owner. Owners and admins manage
               the roster.

    Fields:
        conversation_type: Type of conversation (direct or group)
        title: Group title (empty string for direct conversations)
        created_by: User who created the conversation
        owner: Current owner (GROUP only)
        member_ids: Ordered list of member user ids (authoritative roster)
        admin_ids: User ids holding the ADMIN role (GROUP only)
        last_message_at: Timestamp of most recent accepted message; never decreases
        is_archived: Archived conversations are hidden from listings
        archived_at: When the conversation was archived

    Relationships:
        memberships: Membership rows mirroring member_ids
        messages: All Message records for this conversation
        direct_pair: DirectConversationPair while a DIRECT conversation is active
    """

    conversation_type = models.CharField(
        max_length=10,
        choices=ConversationType.choices,
        default=ConversationType.GROUP,
        db_index=True,
        help_text="Type of conversation (direct or group)",
    )

    title = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Title for group conversations (empty for direct)",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_conversations",
        help_text="User who created this conversation",
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="owned_conversations",
        help_text="Current owner of a group conversation (null for direct)",
    )

    member_ids = models.JSONField(
        default=list,
        blank=True,
        help_text="Ordered list of member user ids (authoritative roster)",
    )

    admin_ids = models.JSONField(
        default=list,
        blank=True,
        help_text="User ids holding the admin role (group only)",
    )

    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp of most recent message (for sorting conversation lists)",
    )

    is_archived = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Archived conversations are hidden from conversation lists",
    )

    archived_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the conversation was archived",
    )

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-last_message_at", "-created_at"]
        indexes = [
            models.Index(
                fields=["conversation_type", "is_archived"],
                name="chat_conv_type_archived_idx",
            ),
            # Sort by last activity (active conversations only)
            models.Index(
                fields=["-last_message_at"],
                name="chat_conv_last_msg_idx",
                condition=Q(is_archived=False),
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        if self.conversation_type == ConversationType.DIRECT:
            return f"Direct({self.pk})"
        if self.title:
            return f"Group: {self.title}"
        return f"Group({self.pk})"

    @property
    def is_direct(self) -> bool:
        """Check if this is a direct (1:1) conversation."""
        return self.conversation_type == ConversationType.DIRECT

    @property
    def is_group(self) -> bool:
        """Check if this is a group conversation."""
        return self.conversation_type == ConversationType.GROUP

    @property
    def member_count(self) -> int:
        """Number of users on the roster."""
        return len(self.member_ids)

    def has_member(self, user_id: int) -> bool:
        """Check the roster for user_id."""
        return user_id in self.member_ids

    def get_membership_for_user(self, user: User) -> Membership | None:
        """
        Get the membership record for a specific user.

        Args:
            user: User to look up

        Returns:
            Membership if user is a member, None otherwise
        """
        return self.memberships.filter(user=user).first()


class DirectConversationPair(models.Model):
    """
    Enforces uniqueness of active direct conversations between two users.

    Stores user pairs in canonical order (lower user id first). The unique
    constraint means two concurrent creates for the same pair cannot both
    commit; the loser reads back the winner.

    Archiving a direct conversation deletes its pair row, so a later create
    for the same users starts a fresh conversation.

    Fields:
        conversation: The direct conversation (OneToOne, serves as PK)
        user_lower: User with lower ID
        user_higher: User with higher ID
    """

    conversation = models.OneToOneField(
        Conversation,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="direct_pair",
        help_text="The direct conversation this pair represents",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower ID in this conversation pair",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher ID in this conversation pair",
    )

    class Meta:
        db_table = "chat_direct_conversation_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_direct_conversation_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="user_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"DirectPair({self.user_lower_id}, {self.user_higher_id})"

    @staticmethod
    def canonical(first_id: int, second_id: int) -> tuple[int, int]:
        """Return (lower, higher) for a pair of user ids."""
        return (first_id, second_id) if first_id < second_id else (second_id, first_id)


class Membership(BaseModel):
    """
    A user's membership in a conversation.

    Lifecycle:
        1. Added (at creation or via add-member): row created, joined_at = now,
           last_read_at = now so earlier history is not counted as unread
        2. Role change / mute toggle / read-marker advance: row updated
        3. Leave or removal: row deleted (messages are kept)

    Fields:
        conversation: Conversation this membership belongs to
        user: Member
        role: OWNER, ADMIN or MEMBER (always MEMBER for direct conversations)
        muted: Member silenced notifications for this conversation
        joined_at: When the user joined
        last_read_at: Read marker; only ever moves forward
        last_read_message: Message the read marker points at

    Constraints:
        - UniqueConstraint(conversation, user)
        - UniqueConstraint(conversation) WHERE role = OWNER
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="memberships",
        help_text="Conversation this membership belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="conversation_memberships",
        help_text="Member of the conversation",
    )

    role = models.CharField(
        max_length=10,
        choices=MembershipRole.choices,
        default=MembershipRole.MEMBER,
        db_index=True,
        help_text="Role in the conversation",
    )

    muted = models.BooleanField(
        default=False,
        help_text="Whether the member muted this conversation",
    )

    joined_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the user joined this conversation",
    )

    last_read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Creation time of the last message the member acknowledged",
    )

    last_read_message = models.ForeignKey(
        "Message",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Last message the member acknowledged",
    )

    class Meta:
        db_table = "chat_conversation_membership"
        ordering = ["joined_at", "id"]
        indexes = [
            models.Index(
                fields=["user", "-joined_at"],
                name="chat_member_user_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "user"],
                name="unique_conversation_membership",
            ),
            models.UniqueConstraint(
                fields=["conversation"],
                condition=Q(role="owner"),
                name="unique_conversation_owner",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Membership: {self.user_id} in {self.conversation_id} ({self.role})"

    @property
    def is_owner(self) -> bool:
        """Check if member has OWNER role."""
        return self.role == MembershipRole.OWNER

    @property
    def is_admin(self) -> bool:
        """Check if member has ADMIN role."""
        return self.role == MembershipRole.ADMIN

    @property
    def is_admin_or_owner(self) -> bool:
        """Check if member has ADMIN or OWNER role."""
        return self.role in (MembershipRole.OWNER, MembershipRole.ADMIN)


class Message(SoftDeleteMixin, BaseModel):
    """
    A message within a conversation.

    Ordering:
        Messages are totally ordered by (created_at, id). created_at comes
        from the server clock when the message is accepted and never changes.

    Soft Delete Behavior:
        When is_deleted=True the row keeps its id and position. Read APIs
        drop deleted messages from listings and redact content and
        attachments anywhere a deleted message is still rendered.

    Fields:
        conversation: Conversation this message belongs to
        sender: User who sent the message (NULL for system messages)
        sender_name: Sender display name captured at send time
        kind: text, image, file or system
        content: Message text or system event JSON
        reply_to: Message this one replies to (same conversation)
        is_edited: Set once the sender edits the message
        edited_at: Time of the last edit

    Relationships:
        attachments: Ordered MessageAttachment rows
        read_receipts: MessageReadStatus rows
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent this message (null for system messages)",
    )

    sender_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Sender display name at send time",
    )

    kind = models.CharField(
        max_length=10,
        choices=MessageKind.choices,
        default=MessageKind.TEXT,
        help_text="Kind of message content",
    )

    content = models.TextField(
        blank=True,
        default="",
        help_text="Message content (text for user messages, JSON for system messages)",
    )

    reply_to = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Message this one replies to",
    )

    is_edited = models.BooleanField(
        default=False,
        help_text="Whether the message has been edited",
    )

    edited_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the message was last edited",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            # Messages in a conversation (cursor pagination)
            models.Index(
                fields=["conversation", "created_at", "id"],
                name="chat_msg_conv_cursor_idx",
            ),
            # Unread counts skip deleted messages
            models.Index(
                fields=["conversation", "is_deleted", "created_at"],
                name="chat_msg_conv_visible_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        sender_str = f"User {self.sender_id}" if self.sender_id else "System"
        content_preview = (
            self.content[:50] + "..." if len(self.content) > 50 else self.content
        )
        deleted_str = " [deleted]" if self.is_deleted else ""
        return f"{sender_str}: {content_preview}{deleted_str}"

    @property
    def is_system_message(self) -> bool:
        """Check if this is a system-generated message."""
        return self.kind == MessageKind.SYSTEM

    def get_system_event_data(self) -> dict | None:
        """
        Parse system message content as JSON.

        Returns:
            Dict with 'event' and 'data' keys if system message, None otherwise
        """
        if not self.is_system_message:
            return None
        try:
            return json.loads(self.content)
        except (json.JSONDecodeError, TypeError):
            return None

    def get_display_content(self) -> str | None:
        """
        Get content suitable for clients.

        Returns:
            None if soft deleted, the stored content otherwise
        """
        if self.is_deleted:
            return None
        return self.content


class MessageAttachment(BaseModel):
    """
    A media descriptor attached to a message.

    The file itself lives in the media service; this row only records the
    reference and metadata the media service returned.

    Fields:
        message: Owning message
        position: Order of the attachment within the message (0-based)
        media_id: Stable media reference from the media service
        file_name: Original file name
        content_type: MIME type
        file_size: Size in bytes
        download_url: URL clients use to fetch the file
        caption: Optional caption
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="attachments",
        help_text="Message this attachment belongs to",
    )

    position = models.PositiveSmallIntegerField(
        default=0,
        help_text="Order of the attachment within the message",
    )

    media_id = models.CharField(
        max_length=255,
        help_text="Stable media reference returned by the media service",
    )

    file_name = models.CharField(
        max_length=255,
        help_text="Original file name",
    )

    content_type = models.CharField(
        max_length=100,
        help_text="MIME type of the file",
    )

    file_size = models.PositiveBigIntegerField(
        default=0,
        help_text="File size in bytes",
    )

    download_url = models.URLField(
        max_length=2048,
        help_text="URL for downloading the file",
    )

    caption = models.CharField(
        max_length=200,
        blank=True,
        default="",
        help_text="Optional caption",
    )

    class Meta:
        db_table = "chat_message_attachment"
        ordering = ["position", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "position"],
                name="unique_attachment_position",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Attachment {self.file_name} on message {self.message_id}"


class MessageReadStatus(models.Model):
    """
    Read receipt for a single message.

    A projection of members' read markers for "who has read this" queries.
    Upserted by ReadReceiptService.record_read, one row per (message, user).

    Fields:
        message: Message that was read
        user: Reader
        user_display_name: Reader display name at read time
        read_at: Last time the reader acknowledged this message
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="read_receipts",
        help_text="Message that was read",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_read_statuses",
        help_text="User who read the message",
    )

    user_display_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Reader display name at read time",
    )

    read_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the user last read the message",
    )

    class Meta:
        db_table = "message_read_status"
        ordering = ["read_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user"],
                name="unique_message_read_status",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Read: message {self.message_id} by {self.user_id}"
