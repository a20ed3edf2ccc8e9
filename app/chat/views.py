"""
ViewSets for chat API.

This module provides REST API endpoints for the chat system:
- ConversationViewSet: Conversation lifecycle and per-member actions
- MemberViewSet: Roster management (nested under conversation)
- MessageViewSet: Message operations (nested under conversation)

URL Structure:
    /api/v1/chat/conversations/                               GET, POST
    /api/v1/chat/conversations/unread-count/                  GET
    /api/v1/chat/conversations/{id}/                          GET, PATCH
    /api/v1/chat/conversations/{id}/archive/                  POST
    /api/v1/chat/conversations/{id}/read/                     POST
    /api/v1/chat/conversations/{id}/mute/                     POST
    /api/v1/chat/conversations/{id}/typing/                   POST
    /api/v1/chat/conversations/{id}/presence/                 GET
    /api/v1/chat/conversations/{id}/leave/                    POST
    /api/v1/chat/conversations/{id}/members/                  GET, POST
    /api/v1/chat/conversations/{id}/members/{user_id}/        PATCH, DELETE
    /api/v1/chat/conversations/{id}/messages/                 GET, POST
    /api/v1/chat/conversations/{id}/messages/{pk}/            GET, PATCH, DELETE
    /api/v1/chat/conversations/{id}/messages/{pk}/receipts/   GET

Design Decisions:
    - Views only parse input and render output; all rules live in services
    - Service errors propagate to core.exception_handlers, which maps them
      to status codes
    - Non-members get 404 for every conversation-scoped endpoint
"""

from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import serializers, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.exceptions import NotFoundError

from chat.models import ConversationType
from chat.pagination import DIRECTION_AFTER, DIRECTION_BEFORE, MessageCursorPagination
from chat.serializers import (
    AddMembersSerializer,
    ConversationCreateSerializer,
    ConversationSerializer,
    ConversationUpdateSerializer,
    MarkReadSerializer,
    MembershipSerializer,
    MessageCreateSerializer,
    MessageSerializer,
    MessageUpdateSerializer,
    MuteSerializer,
    ReadReceiptSerializer,
    RoleUpdateSerializer,
    TypingSerializer,
)
from chat.services import (
    ConversationService,
    MembershipService,
    MessageService,
    ReadReceiptService,
)


def _int_param(request, name: str, default: int | None = None) -> int | None:
    """Parse an integer query parameter, rejecting garbage with a 400."""
    value = request.query_params.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise serializers.ValidationError({name: ["A valid integer is required."]})


@extend_schema_view(
    list=extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        parameters=[
            OpenApiParameter("page", OpenApiTypes.INT, description="Page number (1-based)"),
            OpenApiParameter("page_size", OpenApiTypes.INT, description="Items per page (max 50)"),
        ],
        responses={200: ConversationSerializer(many=True)},
        tags=["Chat - Conversations"],
    ),
    create=extend_schema(
        operation_id="create_conversation",
        summary="Create conversation",
        request=ConversationCreateSerializer,
        responses={
            200: OpenApiResponse(ConversationSerializer, description="Existing direct conversation"),
            201: ConversationSerializer,
        },
        tags=["Chat - Conversations"],
    ),
    retrieve=extend_schema(
        operation_id="get_conversation",
        summary="Get conversation",
        responses={200: ConversationSerializer},
        tags=["Chat - Conversations"],
    ),
    partial_update=extend_schema(
        operation_id="update_conversation",
        summary="Update conversation title",
        request=ConversationUpdateSerializer,
        responses={200: ConversationSerializer},
        tags=["Chat - Conversations"],
    ),
)
class ConversationViewSet(viewsets.ViewSet):
    """
    ViewSet for conversation operations.

    list:
        Get the current user's active conversations, most recent first.
        Returns paginated list with unread counts and last message preview.

    create:
        Create a new conversation (direct or group).
        For direct: returns existing if found (200), creates if not (201).
        For group: creates new group with the caller as owner.

    retrieve:
        Get conversation details including all members.

    partial_update:
        Update group conversation title.
        Only admins and owners can update.

    archive:
        Hide the conversation from listings. Messages are kept.

    read:
        Advance the caller's read marker and record a read receipt.

    leave:
        Leave a group conversation. The owner must transfer ownership first.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = r"\d+"

    def _render(self, request, conversation, status_code=status.HTTP_200_OK):
        serializer = ConversationSerializer(conversation, context={"request": request})
        return Response(serializer.data, status=status_code)

    def list(self, request):
        """List conversations for the current user."""
        page = ConversationService.list_conversations_for_user(
            request.user,
            page=_int_param(request, "page", 1),
            page_size=_int_param(request, "page_size"),
        )
        serializer = ConversationSerializer(
            page.items, many=True, context={"request": request}
        )
        return Response({"results": serializer.data, "pagination": page.pagination})

    def create(self, request):
        """Create a conversation (direct or group)."""
        serializer = ConversationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        member_ids = list(data["member_ids"])
        if data["type"] == ConversationType.DIRECT and request.user.pk not in member_ids:
            member_ids.insert(0, request.user.pk)

        conversation, created = ConversationService.create_conversation(
            creator=request.user,
            conversation_type=data["type"],
            member_ids=member_ids,
            title=data.get("title"),
        )
        conversation = ConversationService.get_conversation(conversation.pk, request.user)
        return self._render(
            request,
            conversation,
            status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def retrieve(self, request, pk=None):
        """Get a conversation."""
        conversation = ConversationService.get_conversation(int(pk), request.user)
        return self._render(request, conversation)

    def partial_update(self, request, pk=None):
        """Update group conversation title."""
        serializer = ConversationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        ConversationService.update_title(
            int(pk), request.user, serializer.validated_data["title"]
        )
        conversation = ConversationService.get_conversation(int(pk), request.user)
        return self._render(request, conversation)

    @extend_schema(
        operation_id="archive_conversation",
        summary="Archive conversation",
        request=None,
        responses={200: ConversationSerializer},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def archive(self, request, pk=None):
        """Archive the conversation."""
        ConversationService.archive_conversation(int(pk), request.user)
        conversation = ConversationService.get_conversation(int(pk), request.user)
        return self._render(request, conversation)

    @extend_schema(
        operation_id="mark_conversation_read",
        summary="Mark conversation as read",
        request=MarkReadSerializer,
        responses={
            200: OpenApiResponse(
                description="Receipt recorded; returns read time and remaining unread count"
            )
        },
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        """Advance the caller's read marker."""
        serializer = MarkReadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        message_id = serializer.validated_data["last_read_message_id"]

        receipt = ReadReceiptService.record_read(int(pk), request.user, message_id)
        return Response(
            {
                "last_read_message_id": message_id,
                "read_at": receipt.read_at,
                "unread_count": ReadReceiptService.count_unread(int(pk), request.user.pk),
            }
        )

    @extend_schema(
        operation_id="mute_conversation",
        summary="Mute or unmute conversation",
        request=MuteSerializer,
        responses={200: MembershipSerializer},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def mute(self, request, pk=None):
        """Set the caller's muted flag."""
        serializer = MuteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        membership = MembershipService.set_muted(
            int(pk), request.user, serializer.validated_data["muted"]
        )
        return Response(MembershipSerializer(membership).data)

    @extend_schema(
        operation_id="send_typing_indicator",
        summary="Send typing indicator",
        request=TypingSerializer,
        responses={204: None},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def typing(self, request, pk=None):
        """Broadcast a typing indicator."""
        serializer = TypingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        MessageService.set_typing(
            int(pk), request.user, serializer.validated_data["is_typing"]
        )
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="get_conversation_presence",
        summary="Get conversation presence",
        description=(
            "List the members of this conversation with at least one live "
            "WebSocket session."
        ),
        responses={
            200: OpenApiResponse(description="Online member user ids"),
            404: OpenApiResponse(description="Conversation not found"),
        },
        tags=["Chat - Presence"],
    )
    @action(detail=True, methods=["get"])
    def presence(self, request, pk=None):
        """Online members of the conversation."""
        ConversationService.get_conversation(int(pk), request.user)
        return Response(
            {"online_user_ids": MembershipService.get_online_member_ids(int(pk))}
        )

    @extend_schema(
        operation_id="leave_conversation",
        summary="Leave conversation",
        request=None,
        responses={204: None},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def leave(self, request, pk=None):
        """Leave the conversation."""
        MembershipService.remove_member(int(pk), request.user, request.user.pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="count_unread_conversations",
        summary="Count conversations with unread messages",
        responses={200: OpenApiResponse(description="Unread conversation count")},
        tags=["Chat - Conversations"],
    )
    @action(detail=False, methods=["get"], url_path="unread-count")
    def unread_count(self, request):
        """Number of active conversations with unread messages."""
        return Response(
            {
                "unread_conversations": ReadReceiptService.count_unread_conversations(
                    request.user.pk
                )
            }
        )


@extend_schema_view(
    list=extend_schema(
        operation_id="list_members",
        summary="List members",
        responses={200: MembershipSerializer(many=True)},
        tags=["Chat - Members"],
    ),
    create=extend_schema(
        operation_id="add_members",
        summary="Add members",
        request=AddMembersSerializer,
        responses={201: MembershipSerializer(many=True)},
        tags=["Chat - Members"],
    ),
    partial_update=extend_schema(
        operation_id="change_member_role",
        summary="Change member role",
        description="Setting role to owner transfers ownership; the previous owner becomes admin.",
        request=RoleUpdateSerializer,
        responses={200: MembershipSerializer},
        tags=["Chat - Members"],
    ),
    destroy=extend_schema(
        operation_id="remove_member",
        summary="Remove member",
        responses={204: None},
        tags=["Chat - Members"],
    ),
)
class MemberViewSet(viewsets.ViewSet):
    """
    ViewSet for roster operations within a conversation.

    list:
        Get all members in the conversation.

    create:
        Add up to 10 users to a group conversation.
        Requires admin or owner role.

    partial_update:
        Change a member's role, or transfer ownership.
        Requires owner role.

    destroy:
        Remove a member from the conversation.
        Owners remove anyone but themselves; admins remove members.
    """

    permission_classes = [IsAuthenticated]

    def list(self, request, conversation_pk=None):
        """List members of the conversation."""
        ConversationService.get_conversation(int(conversation_pk), request.user)
        members = MembershipService.get_members(int(conversation_pk))
        return Response(MembershipSerializer(members, many=True).data)

    def create(self, request, conversation_pk=None):
        """Add members to the conversation."""
        serializer = AddMembersSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        added = MembershipService.add_members(
            int(conversation_pk), request.user, serializer.validated_data["user_ids"]
        )
        return Response(
            MembershipSerializer(added, many=True).data,
            status=status.HTTP_201_CREATED,
        )

    def partial_update(self, request, conversation_pk=None, user_id=None):
        """Change a member's role."""
        serializer = RoleUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        membership = MembershipService.change_role(
            int(conversation_pk),
            request.user,
            int(user_id),
            serializer.validated_data["role"],
        )
        return Response(MembershipSerializer(membership).data)

    def destroy(self, request, conversation_pk=None, user_id=None):
        """Remove a member from the conversation."""
        MembershipService.remove_member(int(conversation_pk), request.user, int(user_id))
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_messages",
        summary="List messages",
        parameters=[
            OpenApiParameter("cursor", OpenApiTypes.STR, description="Opaque cursor or ISO-8601 timestamp"),
            OpenApiParameter(
                "direction",
                OpenApiTypes.STR,
                enum=[DIRECTION_BEFORE, DIRECTION_AFTER],
                description="Walk older (before) or newer (after) from the cursor",
            ),
            OpenApiParameter("before", OpenApiTypes.STR, description="Shorthand for cursor=<value>&direction=before"),
            OpenApiParameter("after", OpenApiTypes.STR, description="Shorthand for cursor=<value>&direction=after"),
            OpenApiParameter("page_size", OpenApiTypes.INT, description="Messages per page (max 100)"),
        ],
        responses={200: MessageSerializer(many=True)},
        tags=["Chat - Messages"],
    ),
    create=extend_schema(
        operation_id="send_message",
        summary="Send message",
        request=MessageCreateSerializer,
        responses={201: MessageSerializer},
        tags=["Chat - Messages"],
    ),
    retrieve=extend_schema(
        operation_id="get_message",
        summary="Get message",
        responses={200: MessageSerializer},
        tags=["Chat - Messages"],
    ),
    partial_update=extend_schema(
        operation_id="edit_message",
        summary="Edit message",
        request=MessageUpdateSerializer,
        responses={200: MessageSerializer},
        tags=["Chat - Messages"],
    ),
    destroy=extend_schema(
        operation_id="delete_message",
        summary="Delete message",
        responses={204: None},
        tags=["Chat - Messages"],
    ),
)
class MessageViewSet(viewsets.ViewSet):
    """
    ViewSet for message operations within a conversation.

    list:
        Get a page of messages, oldest first within the page.
        Deleted messages are left out.

    create:
        Send a message to the conversation.
        Supports replies via reply_to_message_id.

    partial_update:
        Edit your own message.

    destroy:
        Soft delete a message.
        Senders delete their own; owners and admins delete any.
    """

    permission_classes = [IsAuthenticated]

    def _get_message(self, request, conversation_pk, pk):
        """Fetch a message and make sure it belongs to the URL's conversation."""
        message = MessageService.get_message(int(pk), request.user)
        if message.conversation_id != int(conversation_pk):
            raise NotFoundError(
                "Message not found",
                error_code="MESSAGE_NOT_FOUND",
                details={"message_id": int(pk)},
            )
        return message

    def list(self, request, conversation_pk=None):
        """Get a page of messages."""
        paginator = MessageCursorPagination()
        cursor, direction = paginator.parse_request(request)

        page = MessageService.list_messages(
            int(conversation_pk),
            request.user,
            cursor=cursor,
            page_size=_int_param(request, "page_size"),
            direction=direction,
        )
        return Response(
            {
                "results": MessageSerializer(page.items, many=True).data,
                "pagination": paginator.get_pagination_metadata(page),
            }
        )

    def create(self, request, conversation_pk=None):
        """Send a message."""
        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        message = MessageService.send_message(
            conversation_id=int(conversation_pk),
            sender=request.user,
            kind=data["kind"],
            content=data.get("content", ""),
            attachments=data.get("attachments"),
            reply_to_id=data.get("reply_to_message_id"),
        )
        message = MessageService.get_message(message.pk, request.user)
        return Response(MessageSerializer(message).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, conversation_pk=None, pk=None):
        """Get a single message."""
        message = self._get_message(request, conversation_pk, pk)
        return Response(MessageSerializer(message).data)

    def partial_update(self, request, conversation_pk=None, pk=None):
        """Edit a message."""
        self._get_message(request, conversation_pk, pk)
        serializer = MessageUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        MessageService.edit_message(
            int(pk), request.user, data["content"], attachments=data.get("attachments")
        )
        message = MessageService.get_message(int(pk), request.user)
        return Response(MessageSerializer(message).data)

    def destroy(self, request, conversation_pk=None, pk=None):
        """Soft delete a message."""
        self._get_message(request, conversation_pk, pk)
        MessageService.delete_message(int(pk), request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="list_message_receipts",
        summary="List read receipts",
        responses={200: ReadReceiptSerializer(many=True)},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["get"])
    def receipts(self, request, conversation_pk=None, pk=None):
        """Who has read the message."""
        self._get_message(request, conversation_pk, pk)
        receipts = ReadReceiptService.get_read_receipts(int(pk), request.user)
        return Response(ReadReceiptSerializer(receipts, many=True).data)
