"""
Test configuration and fixtures for chat tests.

This module provides:
- User fixtures with different conversation roles
- Conversation fixtures (direct and group), built through the services
- Message fixtures
- API client helpers for authenticated requests

Usage:
    def test_example(group_conversation, owner_client):
        response = owner_client.get(f'/api/v1/chat/conversations/{group_conversation.id}/')
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import UserFactory
from chat.models import ConversationType, Membership, MembershipRole, MessageKind
from chat.services import ConversationService, MessageService
from chat.tests.factories import make_attachment


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def owner_user(db):
    """Create a user who will be a conversation owner."""
    return UserFactory(first_name="Olivia", last_name="Owner")


@pytest.fixture
def admin_user(db):
    """Create a user who will be a conversation admin."""
    return UserFactory(first_name="Adam", last_name="Admin")


@pytest.fixture
def member_user(db):
    """Create a user who will be a plain conversation member."""
    return UserFactory(first_name="Mia", last_name="Member")


@pytest.fixture
def other_user(db):
    """Create another user for various tests."""
    return UserFactory(first_name="Oscar", last_name="Other")


@pytest.fixture
def non_member_user(db):
    """Create a user who is not a member of any test conversation."""
    return UserFactory(first_name="Nora", last_name="Outsider")


# =============================================================================
# Conversation Fixtures
# =============================================================================


@pytest.fixture
def group_conversation(db, owner_user, admin_user, member_user):
    """
    Group conversation with an owner, an admin and a member.

    The admin is promoted directly on the rows so no system message is
    posted; tests start from an empty ledger.
    """
    conversation, _ = ConversationService.create_conversation(
        creator=owner_user,
        conversation_type=ConversationType.GROUP,
        member_ids=[admin_user.pk, member_user.pk],
        title="Test Group",
    )
    Membership.objects.filter(conversation=conversation, user=admin_user).update(
        role=MembershipRole.ADMIN
    )
    conversation.admin_ids = [admin_user.pk]
    conversation.save(update_fields=["admin_ids", "updated_at"])
    return conversation


@pytest.fixture
def direct_conversation(db, owner_user, other_user):
    """Direct conversation between owner_user and other_user."""
    conversation, _ = ConversationService.create_conversation(
        creator=owner_user,
        conversation_type=ConversationType.DIRECT,
        member_ids=[owner_user.pk, other_user.pk],
    )
    return conversation


# =============================================================================
# Message Fixtures
# =============================================================================


@pytest.fixture
def text_message(db, group_conversation, member_user):
    """A text message sent by the plain member."""
    return MessageService.send_message(
        conversation_id=group_conversation.pk,
        sender=member_user,
        kind=MessageKind.TEXT,
        content="Hello everyone!",
    )


@pytest.fixture
def image_message(db, group_conversation, owner_user):
    """An image message with one attachment, sent by the owner."""
    return MessageService.send_message(
        conversation_id=group_conversation.pk,
        sender=owner_user,
        kind=MessageKind.IMAGE,
        content="",
        attachments=[make_attachment(caption="Sunset")],
    )


@pytest.fixture
def message_history(db, group_conversation, owner_user, member_user):
    """Five text messages alternating between owner and member."""
    messages = []
    for index in range(5):
        sender = owner_user if index % 2 == 0 else member_user
        messages.append(
            MessageService.send_message(
                conversation_id=group_conversation.pk,
                sender=sender,
                kind=MessageKind.TEXT,
                content=f"Message {index}",
            )
        )
    return messages


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


@pytest.fixture
def authenticated_client_factory():
    """Build an API client carrying a bearer access token for a user."""

    def _make(user):
        client = APIClient()
        token = RefreshToken.for_user(user).access_token
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        return client

    return _make


@pytest.fixture
def owner_client(authenticated_client_factory, owner_user):
    return authenticated_client_factory(owner_user)


@pytest.fixture
def admin_client(authenticated_client_factory, admin_user):
    return authenticated_client_factory(admin_user)


@pytest.fixture
def member_client(authenticated_client_factory, member_user):
    return authenticated_client_factory(member_user)


@pytest.fixture
def other_client(authenticated_client_factory, other_user):
    return authenticated_client_factory(other_user)


@pytest.fixture
def non_member_client(authenticated_client_factory, non_member_user):
    return authenticated_client_factory(non_member_user)
