"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Conversation management
- Membership viewing
- Message moderation
"""

from django.contrib import admin

from chat.models import (
    Conversation,
    DirectConversationPair,
    Membership,
    Message,
    MessageAttachment,
    MessageReadStatus,
)


class MembershipInline(admin.TabularInline):
    """Inline display of memberships in conversation admin."""

    model = Membership
    extra = 0
    readonly_fields = ["joined_at", "last_read_at", "last_read_message"]
    raw_id_fields = ["user", "last_read_message"]


class MessageAttachmentInline(admin.TabularInline):
    """Inline display of attachments in message admin."""

    model = MessageAttachment
    extra = 0
    readonly_fields = ["position", "media_id", "file_name", "content_type", "file_size"]


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    """Admin interface for Conversation model."""

    list_display = [
        "id",
        "conversation_type",
        "title",
        "member_count",
        "is_archived",
        "created_at",
        "last_message_at",
    ]
    list_filter = ["conversation_type", "is_archived", "created_at"]
    search_fields = ["title", "id"]
    readonly_fields = [
        "created_at",
        "updated_at",
        "archived_at",
        "member_ids",
        "admin_ids",
        "last_message_at",
    ]
    raw_id_fields = ["created_by", "owner"]
    inlines = [MembershipInline]
    ordering = ["-created_at"]


@admin.register(DirectConversationPair)
class DirectConversationPairAdmin(admin.ModelAdmin):
    """Admin interface for DirectConversationPair model."""

    list_display = ["conversation", "user_lower", "user_higher"]
    raw_id_fields = ["conversation", "user_lower", "user_higher"]


@admin.register(Membership)
class MembershipAdmin(admin.ModelAdmin):
    """Admin interface for Membership model."""

    list_display = ["id", "conversation", "user", "role", "muted", "joined_at"]
    list_filter = ["role", "muted", "joined_at"]
    search_fields = ["user__email", "conversation__title"]
    readonly_fields = ["created_at", "updated_at", "joined_at", "last_read_at"]
    raw_id_fields = ["conversation", "user", "last_read_message"]
    ordering = ["-joined_at"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = [
        "id",
        "conversation",
        "sender",
        "kind",
        "content_preview",
        "is_edited",
        "is_deleted",
        "created_at",
    ]
    list_filter = ["kind", "is_edited", "is_deleted", "created_at"]
    search_fields = ["content", "sender__email"]
    readonly_fields = ["created_at", "updated_at", "edited_at", "deleted_at"]
    raw_id_fields = ["conversation", "sender", "reply_to"]
    inlines = [MessageAttachmentInline]
    ordering = ["-created_at"]

    @admin.display(description="Content Preview")
    def content_preview(self, obj: Message) -> str:
        """Return truncated content for list display."""
        max_length = 50
        if len(obj.content) > max_length:
            return obj.content[:max_length] + "..."
        return obj.content


@admin.register(MessageReadStatus)
class MessageReadStatusAdmin(admin.ModelAdmin):
    """Admin interface for MessageReadStatus model."""

    list_display = ["id", "message", "user", "user_display_name", "read_at"]
    raw_id_fields = ["message", "user"]
    ordering = ["-read_at"]
