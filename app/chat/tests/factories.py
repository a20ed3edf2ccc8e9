"""
Factory Boy factories for chat models.

Provides test data for model-level tests that do not need the service
rules applied:
- ConversationFactory: Bare group conversation row
- GroupConversationFactory: Group with the creator as OWNER
- MembershipFactory: A user's membership in a conversation
- MessageFactory: Text and system messages
- MessageAttachmentFactory / MessageReadStatusFactory

Service-level tests build conversations through ConversationService so the
roster, pair and membership rows stay consistent.

Usage:
    from chat.tests.factories import GroupConversationFactory, MessageFactory

    conversation = GroupConversationFactory()
    message = MessageFactory(conversation=conversation, sender=conversation.owner)
"""

import json

import factory
from django.utils import timezone

from authentication.tests.factories import UserFactory
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


def make_attachment(**overrides):
    """Attachment descriptor as clients send it."""
    data = {
        "media_id": "media-123",
        "file_name": "photo.jpg",
        "content_type": "image/jpeg",
        "file_size": 2048,
        "download_url": "https://media.example.com/media-123/photo.jpg",
        "caption": "",
    }
    data.update(overrides)
    return data


class ConversationFactory(factory.django.DjangoModelFactory):
    """
    Base factory for Conversation model.

    Creates a group conversation row with no memberships.

    Examples:
        conversation = ConversationFactory(title="Project Team")
        archived = ConversationFactory(is_archived=True)
    """

    class Meta:
        model = Conversation
        skip_postgeneration_save = True

    conversation_type = ConversationType.GROUP
    title = factory.Sequence(lambda n: f"Group Chat {n}")
    created_by = factory.SubFactory(UserFactory)
    owner = factory.SelfAttribute("created_by")
    member_ids = factory.LazyAttribute(lambda o: [o.created_by.pk])
    admin_ids = factory.LazyFunction(list)
    last_message_at = factory.LazyFunction(timezone.now)
    is_archived = False


class GroupConversationFactory(ConversationFactory):
    """
    Factory for group conversations with an owner membership.

    Examples:
        conversation = GroupConversationFactory()
        owner = conversation.memberships.get(role=MembershipRole.OWNER)
    """

    @factory.post_generation
    def add_owner(self, create, extracted, **kwargs):
        """Add the creator as owner after the conversation is created."""
        if not create:
            return
        MembershipFactory(
            conversation=self,
            user=self.created_by,
            role=MembershipRole.OWNER,
        )


class MembershipFactory(factory.django.DjangoModelFactory):
    """
    Factory for Membership model.

    Does not touch Conversation.member_ids; keep them in step when a test
    depends on the roster.
    """

    class Meta:
        model = Membership

    conversation = factory.SubFactory(ConversationFactory)
    user = factory.SubFactory(UserFactory)
    role = MembershipRole.MEMBER
    muted = False
    joined_at = factory.LazyFunction(timezone.now)
    last_read_at = factory.LazyFunction(timezone.now)


class MessageFactory(factory.django.DjangoModelFactory):
    """
    Factory for Message model.

    Examples:
        message = MessageFactory(conversation=conversation, sender=user)
        system = SystemMessageFactory(conversation=conversation)
    """

    class Meta:
        model = Message

    conversation = factory.SubFactory(ConversationFactory)
    sender = factory.SubFactory(UserFactory)
    sender_name = factory.LazyAttribute(lambda o: o.sender.get_full_name() if o.sender else "")
    kind = MessageKind.TEXT
    content = factory.Faker("sentence")


class SystemMessageFactory(MessageFactory):
    """Factory for system messages (no sender, JSON content)."""

    sender = None
    kind = MessageKind.SYSTEM
    content = factory.LazyFunction(
        lambda: json.dumps(
            {"event": SystemMessageEvent.TITLE_CHANGED, "data": {"new_title": "Renamed"}}
        )
    )


class MessageAttachmentFactory(factory.django.DjangoModelFactory):
    """Factory for MessageAttachment model."""

    class Meta:
        model = MessageAttachment

    message = factory.SubFactory(MessageFactory, kind=MessageKind.FILE)
    position = factory.Sequence(lambda n: n)
    media_id = factory.Sequence(lambda n: f"media-{n}")
    file_name = "report.pdf"
    content_type = "application/pdf"
    file_size = 4096
    download_url = factory.LazyAttribute(
        lambda o: f"https://media.example.com/{o.media_id}/{o.file_name}"
    )


class MessageReadStatusFactory(factory.django.DjangoModelFactory):
    """Factory for MessageReadStatus model."""

    class Meta:
        model = MessageReadStatus

    message = factory.SubFactory(MessageFactory)
    user = factory.SubFactory(UserFactory)
    user_display_name = factory.LazyAttribute(lambda o: o.user.get_full_name())
