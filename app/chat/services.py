"""
Chat system service layer.

This module provides the business logic for the chat system, encapsulating
all operations on conversations, memberships, messages and read receipts.

Services:
    ConversationService: Conversation lifecycle (create, title, archive, listing)
    MembershipService: Roster and per-member state (add, remove, roles, mute,
        read markers)
    MessageService: Message ledger (send, edit, delete, list, system messages,
        typing)
    ReadReceiptService: Read receipts and unread counts

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures raise core.exceptions / chat.exceptions errors
    - Roster and role changes lock the Conversation row for the whole
      transaction
    - Monotonic timestamps (last_message_at, last_read_at) are advanced with
      conditional UPDATEs, never read-modify-write
    - Events are published after commit; a rolled-back write emits nothing
    - System messages are generated for significant roster/role/title events

Usage:
    from chat.services import ConversationService, MessageService

    # Create a direct conversation (returns the existing one if present)
    conversation, created = ConversationService.create_conversation(
        creator=user,
        conversation_type=ConversationType.DIRECT,
        member_ids=[user.id, other.id],
    )

    # Send a message
    message = MessageService.send_message(
        conversation_id=conversation.id,
        sender=user,
        kind=MessageKind.TEXT,
        content="Hello everyone!",
    )
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.db.models import F, Q
from django.utils import timezone

from core.decorators import translate_storage_errors
from core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.services import BaseService

from chat.connections import get_connection_directory
from chat.constants import ATTACHMENT_CONFIG, CONVERSATION_CONFIG, MESSAGE_CONFIG
from chat.events import ChatEvent, ChatEventType, EventBroadcaster
from chat.exceptions import (
    InvalidConversationSpec,
    InvalidReference,
    OwnershipConflict,
    UnsupportedOperation,
)
from chat.models import (
    Conversation,
    ConversationType,
    DirectConversationPair,
    Membership,
    MembershipRole,
    Message,
    MessageAttachment,
    MessageKind,
    MessageReadStatus,
    SystemMessageEvent,
)
from chat.pagination import (
    DIRECTION_AFTER,
    DIRECTION_BEFORE,
    DIRECTIONS,
    ConversationPage,
    MessageCursor,
    MessagePage,
    page_metadata,
)
from chat.serializers import MembershipSerializer, message_payload

if TYPE_CHECKING:
    from datetime import datetime

    from authentication.models import User


USER_MESSAGE_KINDS = (MessageKind.TEXT, MessageKind.IMAGE, MessageKind.FILE)
ATTACHMENT_REQUIRED_FIELDS = ("media_id", "file_name", "content_type", "download_url")


def conversation_payload(conversation: Conversation) -> dict[str, Any]:
    """Conversation summary carried by conversation events."""
    return {
        "id": conversation.pk,
        "type": conversation.conversation_type,
        "title": conversation.title,
        "owner_id": conversation.owner_id,
        "member_ids": list(conversation.member_ids),
        "admin_ids": list(conversation.admin_ids),
        "is_archived": conversation.is_archived,
        "last_message_at": (
            conversation.last_message_at.isoformat()
            if conversation.last_message_at
            else None
        ),
    }


def _lock_conversation(conversation_id: int) -> Conversation:
    """
    Lock and return a conversation row.

    Must be called inside a transaction.

    Raises:
        NotFoundError: If the conversation does not exist
    """
    conversation = (
        Conversation.objects.select_for_update().filter(pk=conversation_id).first()
    )
    if conversation is None:
        raise NotFoundError(
            "Conversation not found",
            error_code="CONVERSATION_NOT_FOUND",
            details={"conversation_id": conversation_id},
        )
    return conversation


def _require_membership(conversation_id: int, user_id: int) -> Membership:
    """
    Return the caller's membership.

    Non-members get NotFoundError so they cannot learn the conversation exists.
    """
    membership = Membership.objects.filter(
        conversation_id=conversation_id, user_id=user_id
    ).first()
    if membership is None:
        raise NotFoundError(
            "Conversation not found",
            error_code="CONVERSATION_NOT_FOUND",
            details={"conversation_id": conversation_id},
        )
    return membership


def _active_user_ids(user_ids) -> set[int]:
    User = get_user_model()
    return set(
        User.objects.filter(pk__in=list(user_ids), is_active=True).values_list(
            "pk", flat=True
        )
    )


class ConversationService(BaseService):
    """
    Service for conversation lifecycle operations.

    Methods:
        create_conversation: Create a group, or create/retrieve a direct conversation
        get_conversation: Fetch a conversation visible to a member
        update_title: Rename a group conversation
        archive_conversation: Hide a conversation from listings
        list_conversations_for_user: Page through a user's active conversations
        touch_last_message_at: Monotonically advance last-message time
    """

    @classmethod
    @translate_storage_errors
    def create_conversation(
        cls,
        creator: User,
        conversation_type: str,
        member_ids: list[int],
        title: str | None = None,
    ) -> tuple[Conversation, bool]:
        """
        Create a conversation.

        Direct conversations are unique per user pair. If an active one
        already exists between the two users it is returned instead of
        creating a duplicate; a concurrent create that loses the race on
        the pair constraint returns the winner.

        Group conversations make the creator OWNER and every other listed
        user MEMBER. The creator is added to the roster if absent.

        Args:
            creator: User creating the conversation
            conversation_type: ConversationType.DIRECT or GROUP
            member_ids: Listed member user ids
            title: Group title (required for groups, ignored for direct)

        Returns:
            (conversation, created) tuple

        Raises:
            InvalidConversationSpec: Type, roster or title rules violated
            ConflictError: Lost a concurrent direct create and the winner
                could not be read back
        """
        if conversation_type not in ConversationType.values:
            raise InvalidConversationSpec(
                f"Unknown conversation type: {conversation_type}",
                details={"conversation_type": conversation_type},
            )

        listed = list(dict.fromkeys(member_ids or []))

        if conversation_type == ConversationType.DIRECT:
            return cls._create_direct(creator, listed)
        return cls._create_group(creator, listed, title), True

    @classmethod
    def _create_direct(
        cls,
        creator: User,
        listed: list[int],
    ) -> tuple[Conversation, bool]:
        if len(listed) != CONVERSATION_CONFIG.DIRECT_MEMBER_COUNT:
            raise InvalidConversationSpec(
                "Direct conversations require exactly 2 distinct members",
                details={"member_ids": listed},
            )
        if creator.pk not in listed:
            raise InvalidConversationSpec(
                "The creator must be a member of a direct conversation",
                details={"member_ids": listed},
            )

        missing = set(listed) - _active_user_ids(listed)
        if missing:
            raise InvalidConversationSpec(
                "Users not found or inactive",
                details={"member_ids": sorted(missing)},
            )

        user_lower_id, user_higher_id = DirectConversationPair.canonical(*listed)

        existing = cls._find_direct(user_lower_id, user_higher_id)
        if existing is not None:
            cls.get_logger().debug(
                f"Found existing direct conversation {existing.pk} "
                f"between users {user_lower_id} and {user_higher_id}"
            )
            return existing, False

        try:
            with cls.atomic():
                now = timezone.now()
                conversation = Conversation.objects.create(
                    conversation_type=ConversationType.DIRECT,
                    title="",
                    created_by=creator,
                    member_ids=listed,
                    admin_ids=[],
                    last_message_at=now,
                )
                DirectConversationPair.objects.create(
                    conversation=conversation,
                    user_lower_id=user_lower_id,
                    user_higher_id=user_higher_id,
                )
                Membership.objects.bulk_create(
                    [
                        Membership(
                            conversation=conversation,
                            user_id=user_id,
                            role=MembershipRole.MEMBER,
                            joined_at=now,
                            last_read_at=now,
                        )
                        for user_id in listed
                    ]
                )
                cls._publish_created(conversation, creator)
        except IntegrityError:
            winner = cls._find_direct(user_lower_id, user_higher_id)
            if winner is None:
                raise ConflictError(
                    "Direct conversation was created concurrently, please retry",
                    error_code="DIRECT_CONVERSATION_CONFLICT",
                ) from None
            cls.get_logger().info(
                f"Lost direct conversation race for users {user_lower_id} and "
                f"{user_higher_id}, returning {winner.pk}"
            )
            return winner, False

        cls.get_logger().info(
            f"Created direct conversation {conversation.pk} "
            f"between users {user_lower_id} and {user_higher_id}"
        )
        return conversation, True

    @staticmethod
    def _find_direct(user_lower_id: int, user_higher_id: int) -> Conversation | None:
        pair = (
            DirectConversationPair.objects.select_related("conversation")
            .filter(user_lower_id=user_lower_id, user_higher_id=user_higher_id)
            .first()
        )
        return pair.conversation if pair else None

    @classmethod
    def _create_group(
        cls,
        creator: User,
        listed: list[int],
        title: str | None,
    ) -> Conversation:
        title = title.strip() if title else ""
        if not title:
            raise InvalidConversationSpec(
                "Group title is required",
                details={"title": ["This field is required."]},
            )
        if len(title) > CONVERSATION_CONFIG.MAX_TITLE_LENGTH:
            raise InvalidConversationSpec(
                f"Group title cannot exceed {CONVERSATION_CONFIG.MAX_TITLE_LENGTH} characters",
                details={"title": title},
            )
        if not 1 <= len(listed) <= CONVERSATION_CONFIG.MAX_GROUP_MEMBERS:
            raise InvalidConversationSpec(
                f"Group conversations take 1-{CONVERSATION_CONFIG.MAX_GROUP_MEMBERS} members",
                details={"member_ids": listed},
            )

        roster = [creator.pk] + [uid for uid in listed if uid != creator.pk]
        if len(roster) > CONVERSATION_CONFIG.MAX_GROUP_MEMBERS:
            raise InvalidConversationSpec(
                f"Group conversations cannot exceed {CONVERSATION_CONFIG.MAX_GROUP_MEMBERS} members",
                details={"member_count": len(roster)},
            )

        missing = set(roster) - _active_user_ids(roster)
        if missing:
            raise InvalidConversationSpec(
                "Users not found or inactive",
                details={"member_ids": sorted(missing)},
            )

        with cls.atomic():
            now = timezone.now()
            conversation = Conversation.objects.create(
                conversation_type=ConversationType.GROUP,
                title=title,
                created_by=creator,
                owner=creator,
                member_ids=roster,
                admin_ids=[],
                last_message_at=now,
            )
            Membership.objects.bulk_create(
                [
                    Membership(
                        conversation=conversation,
                        user_id=user_id,
                        role=(
                            MembershipRole.OWNER
                            if user_id == creator.pk
                            else MembershipRole.MEMBER
                        ),
                        joined_at=now,
                        last_read_at=now,
                    )
                    for user_id in roster
                ]
            )
            cls._publish_created(conversation, creator)

        cls.get_logger().info(
            f"Created group conversation {conversation.pk} "
            f"titled '{title}' with {len(roster)} members"
        )
        return conversation

    @staticmethod
    def _publish_created(conversation: Conversation, creator: User) -> None:
        EventBroadcaster.publish_on_commit(
            ChatEvent.build(
                ChatEventType.CONVERSATION_CREATED,
                conversation.pk,
                actor=creator,
                payload={"conversation": conversation_payload(conversation)},
            ),
            recipients=conversation.member_ids,
        )

    @classmethod
    @translate_storage_errors
    def get_conversation(cls, conversation_id: int, user: User) -> Conversation:
        """
        Get a conversation the user is a member of.

        Raises:
            NotFoundError: Conversation missing or user is not a member
        """
        conversation = (
            Conversation.objects.filter(pk=conversation_id, memberships__user=user)
            .prefetch_related("memberships__user__profile")
            .first()
        )
        if conversation is None:
            raise NotFoundError(
                "Conversation not found",
                error_code="CONVERSATION_NOT_FOUND",
                details={"conversation_id": conversation_id},
            )
        return conversation

    @classmethod
    @translate_storage_errors
    def update_title(
        cls,
        conversation_id: int,
        actor: User,
        title: str,
    ) -> Conversation:
        """
        Update group conversation title.

        Only admins and owners can update the title. Direct conversations
        cannot have titles.

        Raises:
            NotFoundError: Actor is not a member
            UnsupportedOperation: Direct conversation
            PermissionDeniedError: Actor is not owner/admin
            ValidationError: Empty or too long title
        """
        new_title = title.strip() if title else ""
        if not new_title:
            raise ValidationError(
                "Group title cannot be empty", error_code="TITLE_REQUIRED"
            )
        if len(new_title) > CONVERSATION_CONFIG.MAX_TITLE_LENGTH:
            raise ValidationError(
                f"Group title cannot exceed {CONVERSATION_CONFIG.MAX_TITLE_LENGTH} characters",
                error_code="TITLE_TOO_LONG",
            )

        with cls.atomic():
            conversation = _lock_conversation(conversation_id)
            membership = _require_membership(conversation_id, actor.pk)

            if conversation.is_direct:
                raise UnsupportedOperation("Cannot set title on direct conversations")
            if not membership.is_admin_or_owner:
                cls.get_logger().warning(
                    f"User {actor.pk} denied title change in conversation {conversation_id}"
                )
                raise PermissionDeniedError(
                    "Only admins and owners can change the group title",
                    error_code="NOT_ADMIN",
                )

            old_title = conversation.title
            if old_title == new_title:
                return conversation

            conversation.title = new_title
            conversation.save(update_fields=["title", "updated_at"])

            MessageService.post_system_message(
                conversation,
                SystemMessageEvent.TITLE_CHANGED,
                actor,
                old_title=old_title,
                new_title=new_title,
                changed_by_id=actor.pk,
            )
            conversation.refresh_from_db(fields=["last_message_at"])

            EventBroadcaster.publish_on_commit(
                ChatEvent.build(
                    ChatEventType.CONVERSATION_UPDATED,
                    conversation.pk,
                    actor=actor,
                    payload={
                        "conversation": conversation_payload(conversation),
                        "changes": {"title": new_title},
                    },
                )
            )

        cls.get_logger().info(
            f"Updated title of conversation {conversation_id} "
            f"from '{old_title}' to '{new_title}' by user {actor.pk}"
        )
        return conversation

    @classmethod
    @translate_storage_errors
    def archive_conversation(cls, conversation_id: int, actor: User) -> Conversation:
        """
        Archive a conversation.

        Group conversations require an owner or admin; any member may
        archive a direct conversation. Messages and memberships are kept.
        Archiving a direct conversation frees its user pair. Archiving an
        archived conversation is a no-op.

        Raises:
            NotFoundError: Actor is not a member
            PermissionDeniedError: Group member without owner/admin role
        """
        with cls.atomic():
            conversation = _lock_conversation(conversation_id)
            membership = _require_membership(conversation_id, actor.pk)

            if conversation.is_group and not membership.is_admin_or_owner:
                cls.get_logger().warning(
                    f"User {actor.pk} denied archive of conversation {conversation_id}"
                )
                raise PermissionDeniedError(
                    "Only admins and owners can archive a group",
                    error_code="NOT_ADMIN",
                )

            if conversation.is_archived:
                return conversation

            conversation.is_archived = True
            conversation.archived_at = timezone.now()
            conversation.save(update_fields=["is_archived", "archived_at", "updated_at"])

            if conversation.is_direct:
                DirectConversationPair.objects.filter(conversation=conversation).delete()

            EventBroadcaster.publish_on_commit(
                ChatEvent.build(
                    ChatEventType.CONVERSATION_UPDATED,
                    conversation.pk,
                    actor=actor,
                    payload={
                        "conversation": conversation_payload(conversation),
                        "changes": {"is_archived": True},
                    },
                )
            )

        cls.get_logger().info(f"Archived conversation {conversation_id} by user {actor.pk}")
        return conversation

    @classmethod
    @translate_storage_errors
    def list_conversations_for_user(
        cls,
        user: User,
        page: int = 1,
        page_size: int | None = None,
    ) -> ConversationPage:
        """
        List a user's active conversations, most recent activity first.

        Ties on last-message time are broken by creation time, then id,
        both descending.

        Raises:
            ValidationError: page or page_size below 1
        """
        page_size = page_size or CONVERSATION_CONFIG.DEFAULT_PAGE_SIZE
        if page < 1 or page_size < 1:
            raise ValidationError(
                "page and page_size must be positive", error_code="INVALID_PAGE"
            )
        page_size = min(page_size, CONVERSATION_CONFIG.MAX_PAGE_SIZE)

        queryset = Conversation.objects.filter(
            memberships__user=user,
            is_archived=False,
        ).order_by(
            F("last_message_at").desc(nulls_last=True),
            "-created_at",
            "-id",
        )
        total = queryset.count()
        offset = (page - 1) * page_size
        items = list(
            queryset.prefetch_related("memberships__user__profile")[
                offset : offset + page_size
            ]
        )
        return ConversationPage(
            items=items,
            pagination=page_metadata(total, page, page_size),
        )

    @classmethod
    @translate_storage_errors
    def touch_last_message_at(cls, conversation_id: int, timestamp: datetime) -> bool:
        """
        Advance last_message_at to timestamp if it is newer.

        A single conditional UPDATE so concurrent senders cannot move the
        value backwards.

        Returns:
            True if the stored value changed
        """
        updated = (
            Conversation.objects.filter(pk=conversation_id)
            .filter(Q(last_message_at__isnull=True) | Q(last_message_at__lt=timestamp))
            .update(last_message_at=timestamp, updated_at=timezone.now())
        )
        return updated > 0


class MembershipService(BaseService):
    """
    Service for roster management and per-member state.

    Methods:
        add_members: Add a batch of users to a group
        remove_member: Remove a member, or leave
        change_role: Promote/demote admins or transfer ownership
        set_muted: Mute or unmute a conversation for the caller
        mark_read: Monotonically advance a member's read marker
        get_members / is_member / count_members / get_membership: Lookups
        get_online_member_ids: Members with a live session
    """

    @classmethod
    @translate_storage_errors
    def add_members(
        cls,
        conversation_id: int,
        actor: User,
        user_ids: list[int],
    ) -> list[Membership]:
        """
        Add users to a group conversation.

        Users already on the roster are skipped. New members join with role
        MEMBER and a read marker at the join time, so earlier history is not
        counted as unread.

        Args:
            conversation_id: Group conversation
            actor: Owner or admin adding the users
            user_ids: 1-10 user ids

        Returns:
            The newly created memberships (empty if everyone was already a member)

        Raises:
            ValidationError: Bad batch size, unknown users or roster full
            NotFoundError: Actor is not a member
            UnsupportedOperation: Direct conversation
            PermissionDeniedError: Actor is not owner/admin
        """
        requested = list(dict.fromkeys(user_ids or []))
        if not 1 <= len(requested) <= CONVERSATION_CONFIG.MAX_ADD_MEMBERS_BATCH:
            raise ValidationError(
                f"Add 1-{CONVERSATION_CONFIG.MAX_ADD_MEMBERS_BATCH} users at a time",
                error_code="INVALID_BATCH_SIZE",
                details={"user_ids": requested},
            )

        with cls.atomic():
            conversation = _lock_conversation(conversation_id)
            membership = _require_membership(conversation_id, actor.pk)

            if conversation.is_direct:
                raise UnsupportedOperation("Direct conversations cannot gain members")
            if not membership.is_admin_or_owner:
                cls.get_logger().warning(
                    f"User {actor.pk} denied adding members to conversation {conversation_id}"
                )
                raise PermissionDeniedError(
                    "Only admins and owners can add members",
                    error_code="NOT_ADMIN",
                )

            missing = set(requested) - _active_user_ids(requested)
            if missing:
                raise ValidationError(
                    "Users not found or inactive",
                    error_code="USER_NOT_FOUND",
                    details={"user_ids": sorted(missing)},
                )

            new_ids = [uid for uid in requested if uid not in conversation.member_ids]
            if not new_ids:
                return []

            if len(conversation.member_ids) + len(new_ids) > CONVERSATION_CONFIG.MAX_GROUP_MEMBERS:
                raise ValidationError(
                    f"Group conversations cannot exceed {CONVERSATION_CONFIG.MAX_GROUP_MEMBERS} members",
                    error_code="GROUP_FULL",
                    details={"member_count": len(conversation.member_ids)},
                )

            now = timezone.now()
            Membership.objects.bulk_create(
                [
                    Membership(
                        conversation=conversation,
                        user_id=user_id,
                        role=MembershipRole.MEMBER,
                        joined_at=now,
                        last_read_at=now,
                    )
                    for user_id in new_ids
                ]
            )
            conversation.member_ids = conversation.member_ids + new_ids
            conversation.save(update_fields=["member_ids", "updated_at"])

            MessageService.post_system_message(
                conversation,
                SystemMessageEvent.MEMBERS_ADDED,
                actor,
                user_ids=new_ids,
                added_by_id=actor.pk,
            )

            added = list(
                Membership.objects.filter(
                    conversation=conversation, user_id__in=new_ids
                ).select_related("user__profile")
            )

            EventBroadcaster.publish_on_commit(
                ChatEvent.build(
                    ChatEventType.USER_JOINED_CONVERSATION,
                    conversation.pk,
                    actor=actor,
                    payload={
                        "user_ids": new_ids,
                        "members": json.loads(
                            json.dumps(MembershipSerializer(added, many=True).data)
                        ),
                    },
                )
            )

        cls.get_logger().info(
            f"User {actor.pk} added {len(new_ids)} member(s) to conversation {conversation_id}"
        )
        return added

    @classmethod
    @translate_storage_errors
    def remove_member(
        cls,
        conversation_id: int,
        actor: User,
        target_user_id: int,
    ) -> None:
        """
        Remove a member from a group conversation, or leave it.

        Permission rules:
        - Any member can remove themselves (leave)
        - Owners can remove anyone else
        - Admins can remove members but not other admins
        - The owner cannot be removed or leave without transferring ownership

        Raises:
            NotFoundError: Actor or target is not a member
            UnsupportedOperation: Direct conversation
            OwnershipConflict: Target is the owner
            PermissionDeniedError: Actor lacks the role to remove target
        """
        with cls.atomic():
            conversation = _lock_conversation(conversation_id)
            actor_membership = _require_membership(conversation_id, actor.pk)

            if conversation.is_direct:
                raise UnsupportedOperation(
                    "Direct conversations do not support member removal, archive instead"
                )

            target = Membership.objects.filter(
                conversation_id=conversation_id, user_id=target_user_id
            ).first()
            if target is None:
                raise NotFoundError(
                    "User is not a member of this conversation",
                    error_code="MEMBER_NOT_FOUND",
                    details={"user_id": target_user_id},
                )

            is_leaving = target_user_id == actor.pk

            if not is_leaving and not actor_membership.is_admin_or_owner:
                cls.get_logger().warning(
                    f"User {actor.pk} denied removing {target_user_id} "
                    f"from conversation {conversation_id}"
                )
                raise PermissionDeniedError(
                    "Only admins and owners can remove members",
                    error_code="NOT_ADMIN",
                )

            if target.is_owner:
                raise OwnershipConflict(
                    "The owner must transfer ownership before leaving"
                    if is_leaving
                    else "The owner cannot be removed"
                )

            if not is_leaving and actor_membership.is_admin and target.is_admin:
                raise PermissionDeniedError(
                    "Admins cannot remove other admins",
                    error_code="CANNOT_REMOVE_ADMIN",
                )

            target.delete()
            conversation.member_ids = [
                uid for uid in conversation.member_ids if uid != target_user_id
            ]
            conversation.admin_ids = [
                uid for uid in conversation.admin_ids if uid != target_user_id
            ]
            conversation.save(update_fields=["member_ids", "admin_ids", "updated_at"])

            if is_leaving:
                MessageService.post_system_message(
                    conversation,
                    SystemMessageEvent.MEMBER_LEFT,
                    actor,
                    user_id=target_user_id,
                )
            else:
                MessageService.post_system_message(
                    conversation,
                    SystemMessageEvent.MEMBER_REMOVED,
                    actor,
                    user_id=target_user_id,
                    removed_by_id=actor.pk,
                )

            EventBroadcaster.publish_on_commit(
                ChatEvent.build(
                    ChatEventType.USER_LEFT_CONVERSATION,
                    conversation.pk,
                    actor=actor,
                    payload={
                        "user_id": target_user_id,
                        "reason": "left" if is_leaving else "removed",
                    },
                ),
                recipients=list(conversation.member_ids) + [target_user_id],
            )

        cls.get_logger().info(
            f"User {target_user_id} {'left' if is_leaving else 'removed from'} "
            f"conversation {conversation_id} (actor {actor.pk})"
        )

    @classmethod
    @translate_storage_errors
    def change_role(
        cls,
        conversation_id: int,
        actor: User,
        target_user_id: int,
        new_role: str,
    ) -> Membership:
        """
        Change a member's role in a group conversation.

        Only the owner can change roles. Setting OWNER transfers ownership:
        the target becomes OWNER and the previous owner becomes ADMIN.
        Exactly one owner exists after every call.

        Role changes are serialized per conversation by the row lock. An
        actor who was owner when the call started but lost a concurrent
        transfer gets ConflictError rather than PermissionDeniedError.

        Raises:
            ValidationError: Unknown role
            NotFoundError: Actor or target is not a member
            UnsupportedOperation: Direct conversation
            PermissionDeniedError: Actor is not the owner
            ConflictError: Actor lost ownership to a concurrent transfer
            OwnershipConflict: Owner tried to demote themselves
        """
        if new_role not in MembershipRole.values:
            raise ValidationError(
                f"Invalid role: {new_role}",
                error_code="INVALID_ROLE",
                details={"role": new_role},
            )

        was_owner = Membership.objects.filter(
            conversation_id=conversation_id,
            user_id=actor.pk,
            role=MembershipRole.OWNER,
        ).exists()

        with cls.atomic():
            conversation = _lock_conversation(conversation_id)
            actor_membership = _require_membership(conversation_id, actor.pk)

            if conversation.is_direct:
                raise UnsupportedOperation("Direct conversations do not have roles")

            if not actor_membership.is_owner:
                if was_owner:
                    raise ConflictError(
                        "Ownership changed while the request was in flight",
                        error_code="OWNERSHIP_CHANGED",
                    )
                cls.get_logger().warning(
                    f"User {actor.pk} denied role change in conversation {conversation_id}"
                )
                raise PermissionDeniedError(
                    "Only the owner can change member roles",
                    error_code="NOT_OWNER",
                )

            target = Membership.objects.filter(
                conversation_id=conversation_id, user_id=target_user_id
            ).first()
            if target is None:
                raise NotFoundError(
                    "User is not a member of this conversation",
                    error_code="MEMBER_NOT_FOUND",
                    details={"user_id": target_user_id},
                )

            old_role = target.role
            if old_role == new_role:
                return target

            if target.pk == actor_membership.pk:
                raise OwnershipConflict(
                    "Transfer ownership to another member instead of demoting yourself"
                )

            admin_ids = [uid for uid in conversation.admin_ids if uid != target_user_id]

            if new_role == MembershipRole.OWNER:
                # Demote first: the partial unique index allows one owner row
                actor_membership.role = MembershipRole.ADMIN
                actor_membership.save(update_fields=["role", "updated_at"])
                target.role = MembershipRole.OWNER
                target.save(update_fields=["role", "updated_at"])

                conversation.owner_id = target_user_id
                conversation.admin_ids = admin_ids + [actor.pk]
                conversation.save(update_fields=["owner", "admin_ids", "updated_at"])

                MessageService.post_system_message(
                    conversation,
                    SystemMessageEvent.OWNERSHIP_TRANSFERRED,
                    actor,
                    from_user_id=actor.pk,
                    to_user_id=target_user_id,
                )
            else:
                target.role = new_role
                target.save(update_fields=["role", "updated_at"])

                if new_role == MembershipRole.ADMIN:
                    admin_ids.append(target_user_id)
                conversation.admin_ids = admin_ids
                conversation.save(update_fields=["admin_ids", "updated_at"])

                MessageService.post_system_message(
                    conversation,
                    SystemMessageEvent.ROLE_CHANGED,
                    actor,
                    user_id=target_user_id,
                    old_role=old_role,
                    new_role=new_role,
                    changed_by_id=actor.pk,
                )

            conversation.refresh_from_db(fields=["last_message_at"])
            EventBroadcaster.publish_on_commit(
                ChatEvent.build(
                    ChatEventType.CONVERSATION_UPDATED,
                    conversation.pk,
                    actor=actor,
                    payload={
                        "conversation": conversation_payload(conversation),
                        "changes": {"user_id": target_user_id, "role": new_role},
                    },
                )
            )

        cls.get_logger().info(
            f"Changed role of user {target_user_id} in conversation {conversation_id} "
            f"from {old_role} to {new_role} by user {actor.pk}"
        )
        return target

    @classmethod
    @translate_storage_errors
    def set_muted(cls, conversation_id: int, user: User, muted: bool) -> Membership:
        """Mute or unmute a conversation for the caller."""
        membership = _require_membership(conversation_id, user.pk)
        if membership.muted != muted:
            membership.muted = muted
            membership.save(update_fields=["muted", "updated_at"])
            cls.get_logger().debug(
                f"User {user.pk} set muted={muted} on conversation {conversation_id}"
            )
        return membership

    @classmethod
    @translate_storage_errors
    def mark_read(
        cls,
        conversation_id: int,
        user_id: int,
        last_read_message_id: int,
    ) -> bool:
        """
        Advance the member's read marker to a message.

        Monotonic: a message at or before the stored marker is a no-op.

        Returns:
            True if the marker moved forward

        Raises:
            NotFoundError: User is not a member, or the message is not in
                this conversation
        """
        _require_membership(conversation_id, user_id)
        message = Message.objects.filter(
            pk=last_read_message_id, conversation_id=conversation_id
        ).first()
        if message is None:
            raise NotFoundError(
                "Message not found",
                error_code="MESSAGE_NOT_FOUND",
                details={"message_id": last_read_message_id},
            )
        return cls.advance_read_marker(conversation_id, user_id, message)

    @classmethod
    def advance_read_marker(
        cls,
        conversation_id: int,
        user_id: int,
        message: Message,
    ) -> bool:
        """
        Conditional UPDATE of the marker keyed on the stored position.

        Positions compare in (created_at, id) order, so a later message
        sharing the marker's timestamp still moves it forward. Concurrent
        calls applied in any order leave the newest marker.
        A user without a membership row is left untouched.
        """
        updated = (
            Membership.objects.filter(conversation_id=conversation_id, user_id=user_id)
            .filter(
                Q(last_read_at__isnull=True)
                | Q(last_read_at__lt=message.created_at)
                | Q(last_read_at=message.created_at, last_read_message__isnull=True)
                | Q(last_read_at=message.created_at, last_read_message_id__lt=message.pk)
            )
            .update(
                last_read_at=message.created_at,
                last_read_message=message,
                updated_at=timezone.now(),
            )
        )
        return updated > 0

    @classmethod
    @translate_storage_errors
    def get_members(cls, conversation_id: int) -> list[Membership]:
        """Current memberships in join order."""
        return list(
            Membership.objects.filter(conversation_id=conversation_id)
            .select_related("user__profile")
            .order_by("joined_at", "id")
        )

    @classmethod
    @translate_storage_errors
    def is_member(cls, conversation_id: int, user_id: int) -> bool:
        return Membership.objects.filter(
            conversation_id=conversation_id, user_id=user_id
        ).exists()

    @classmethod
    @translate_storage_errors
    def count_members(cls, conversation_id: int) -> int:
        return Membership.objects.filter(conversation_id=conversation_id).count()

    @classmethod
    @translate_storage_errors
    def get_membership(cls, conversation_id: int, user_id: int) -> Membership | None:
        return (
            Membership.objects.filter(conversation_id=conversation_id, user_id=user_id)
            .select_related("user__profile")
            .first()
        )

    @classmethod
    @translate_storage_errors
    def get_online_member_ids(cls, conversation_id: int) -> list[int]:
        """Members of the conversation with at least one live session."""
        directory = get_connection_directory()
        return [
            user_id
            for user_id in Membership.objects.filter(conversation_id=conversation_id)
            .order_by("joined_at", "id")
            .values_list("user_id", flat=True)
            if directory.is_online(user_id)
        ]


class MessageService(BaseService):
    """
    Service for the message ledger.

    Methods:
        send_message: Append a user message
        edit_message: Edit own message
        delete_message: Soft delete a message
        list_messages: Cursor-paginated history
        get_message / get_latest_message / count_messages: Lookups
        post_system_message: Append a server-generated event message
        set_typing: Broadcast typing indicators
    """

    @classmethod
    def _validate_content(cls, kind: str, content: str) -> None:
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            raise ValidationError(
                f"Message content cannot exceed {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code="CONTENT_TOO_LONG",
                details={"length": len(content)},
            )
        if kind == MessageKind.TEXT and not content.strip():
            raise ValidationError(
                "Text messages cannot be empty", error_code="EMPTY_CONTENT"
            )

    @classmethod
    def _validate_attachments(cls, kind: str, attachments: list[dict]) -> None:
        if len(attachments) > ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE:
            raise ValidationError(
                f"A message can carry at most {ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE} attachments",
                error_code="TOO_MANY_ATTACHMENTS",
                details={"count": len(attachments)},
            )
        if kind in (MessageKind.IMAGE, MessageKind.FILE) and not attachments:
            raise ValidationError(
                f"{kind} messages require at least one attachment",
                error_code="ATTACHMENT_REQUIRED",
            )
        for index, attachment in enumerate(attachments):
            missing = [
                name for name in ATTACHMENT_REQUIRED_FIELDS if not attachment.get(name)
            ]
            if missing:
                raise ValidationError(
                    "Attachment is missing required fields",
                    error_code="INVALID_ATTACHMENT",
                    details={"index": index, "missing": missing},
                )
            if len(attachment.get("caption") or "") > ATTACHMENT_CONFIG.MAX_CAPTION_LENGTH:
                raise ValidationError(
                    f"Attachment caption cannot exceed {ATTACHMENT_CONFIG.MAX_CAPTION_LENGTH} characters",
                    error_code="CAPTION_TOO_LONG",
                    details={"index": index},
                )

    @staticmethod
    def _create_attachments(message: Message, attachments: list[dict]) -> None:
        MessageAttachment.objects.bulk_create(
            [
                MessageAttachment(
                    message=message,
                    position=position,
                    media_id=str(attachment["media_id"]),
                    file_name=attachment["file_name"],
                    content_type=attachment["content_type"],
                    file_size=attachment.get("file_size") or 0,
                    download_url=attachment["download_url"],
                    caption=attachment.get("caption") or "",
                )
                for position, attachment in enumerate(attachments)
            ]
        )

    @staticmethod
    def _with_relations(queryset):
        return queryset.select_related("reply_to").prefetch_related(
            "attachments", "read_receipts"
        )

    @classmethod
    @translate_storage_errors
    def send_message(
        cls,
        conversation_id: int,
        sender: User,
        kind: str,
        content: str,
        attachments: list[dict] | None = None,
        reply_to_id: int | None = None,
    ) -> Message:
        """
        Send a message to a conversation.

        The creation time is the server clock at acceptance. The sender's
        own read marker moves to the new message.

        Args:
            conversation_id: Target conversation
            sender: Member sending the message
            kind: TEXT, IMAGE or FILE
            content: Text (required for TEXT, optional caption otherwise)
            attachments: Attachment descriptors (required for IMAGE/FILE)
            reply_to_id: Message being replied to (optional)

        Returns:
            Created Message

        Raises:
            ValidationError: Bad kind, content or attachments
            NotFoundError: Sender is not a member
            ConflictError: Conversation is archived
            InvalidReference: reply_to_id is missing, deleted or elsewhere
        """
        if kind == MessageKind.SYSTEM:
            raise ValidationError(
                "System messages cannot be sent by users",
                error_code="SYSTEM_MESSAGE_NOT_ALLOWED",
            )
        if kind not in USER_MESSAGE_KINDS:
            raise ValidationError(
                f"Invalid message kind: {kind}",
                error_code="INVALID_KIND",
                details={"kind": kind},
            )

        content = content or ""
        attachments = list(attachments or [])
        cls._validate_content(kind, content)
        cls._validate_attachments(kind, attachments)

        _require_membership(conversation_id, sender.pk)
        conversation = Conversation.objects.get(pk=conversation_id)
        if conversation.is_archived:
            raise ConflictError(
                "Cannot send messages to an archived conversation",
                error_code="CONVERSATION_ARCHIVED",
            )

        reply_to = None
        if reply_to_id is not None:
            reply_to = Message.objects.filter(
                pk=reply_to_id,
                conversation_id=conversation_id,
                is_deleted=False,
            ).first()
            if reply_to is None:
                raise InvalidReference(
                    "Reply target not found in this conversation",
                    details={"reply_to_message_id": reply_to_id},
                )

        with cls.atomic():
            message = Message.objects.create(
                conversation=conversation,
                sender=sender,
                sender_name=sender.get_full_name(),
                kind=kind,
                content=content,
                reply_to=reply_to,
            )
            if attachments:
                cls._create_attachments(message, attachments)

            ConversationService.touch_last_message_at(conversation_id, message.created_at)
            MembershipService.advance_read_marker(conversation_id, sender.pk, message)

            EventBroadcaster.publish_on_commit(
                ChatEvent.build(
                    ChatEventType.MESSAGE_SENT,
                    conversation_id,
                    actor=sender,
                    payload={"message": message_payload(message)},
                )
            )

        cls.get_logger().info(
            f"User {sender.pk} sent {kind} message {message.pk} "
            f"in conversation {conversation_id}"
        )
        return message

    @classmethod
    @translate_storage_errors
    def edit_message(
        cls,
        message_id: int,
        actor: User,
        content: str,
        attachments: list[dict] | None = None,
    ) -> Message:
        """
        Edit a message.

        Only the original sender can edit. Attachments are replaced only
        when supplied.

        Raises:
            NotFoundError: Message missing or actor is not a member
            PermissionDeniedError: Actor is not the sender (includes system messages)
            ConflictError: Message is deleted
            ValidationError: Bad content or attachments
        """
        content = content or ""

        with cls.atomic():
            message = Message.objects.select_for_update().filter(pk=message_id).first()
            if message is None:
                raise NotFoundError(
                    "Message not found",
                    error_code="MESSAGE_NOT_FOUND",
                    details={"message_id": message_id},
                )
            _require_membership(message.conversation_id, actor.pk)

            if message.is_system_message or message.sender_id != actor.pk:
                raise PermissionDeniedError(
                    "You can only edit your own messages",
                    error_code="NOT_MESSAGE_OWNER",
                )
            if message.is_deleted:
                raise ConflictError(
                    "Cannot edit a deleted message",
                    error_code="MESSAGE_DELETED",
                )

            cls._validate_content(message.kind, content)
            if attachments is not None:
                attachments = list(attachments)
                cls._validate_attachments(message.kind, attachments)
                message.attachments.all().delete()
                cls._create_attachments(message, attachments)

            message.content = content
            message.is_edited = True
            message.edited_at = timezone.now()
            message.save(update_fields=["content", "is_edited", "edited_at", "updated_at"])

            EventBroadcaster.publish_on_commit(
                ChatEvent.build(
                    ChatEventType.MESSAGE_EDITED,
                    message.conversation_id,
                    actor=actor,
                    payload={"message": message_payload(message)},
                )
            )

        cls.get_logger().info(f"User {actor.pk} edited message {message_id}")
        return message

    @classmethod
    @translate_storage_errors
    def delete_message(cls, message_id: int, actor: User) -> Message:
        """
        Soft delete a message.

        The sender or a conversation owner/admin can delete. The row keeps
        its id and position; read paths redact content and attachments.

        Raises:
            NotFoundError: Message missing or actor is not a member
            ConflictError: Message already deleted
            PermissionDeniedError: Actor is neither sender nor owner/admin
        """
        with cls.atomic():
            message = Message.objects.select_for_update().filter(pk=message_id).first()
            if message is None:
                raise NotFoundError(
                    "Message not found",
                    error_code="MESSAGE_NOT_FOUND",
                    details={"message_id": message_id},
                )
            membership = _require_membership(message.conversation_id, actor.pk)

            if message.is_deleted:
                raise ConflictError(
                    "Message is already deleted",
                    error_code="MESSAGE_DELETED",
                )
            is_sender = message.sender_id is not None and message.sender_id == actor.pk
            if not is_sender and not membership.is_admin_or_owner:
                cls.get_logger().warning(
                    f"User {actor.pk} denied deleting message {message_id}"
                )
                raise PermissionDeniedError(
                    "You can only delete your own messages",
                    error_code="NOT_MESSAGE_OWNER",
                )

            message.soft_delete()

            EventBroadcaster.publish_on_commit(
                ChatEvent.build(
                    ChatEventType.MESSAGE_DELETED,
                    message.conversation_id,
                    actor=actor,
                    payload={
                        "message_id": message.pk,
                        "message": message_payload(message),
                    },
                )
            )

        cls.get_logger().info(f"User {actor.pk} deleted message {message_id}")
        return message

    @staticmethod
    def _window(cursor: MessageCursor, direction: str) -> Q:
        """Messages strictly before/after cursor in (created_at, id) order."""
        if direction == DIRECTION_BEFORE:
            if cursor.message_id is None:
                return Q(created_at__lt=cursor.created_at)
            return Q(created_at__lt=cursor.created_at) | Q(
                created_at=cursor.created_at, id__lt=cursor.message_id
            )
        if cursor.message_id is None:
            return Q(created_at__gt=cursor.created_at)
        return Q(created_at__gt=cursor.created_at) | Q(
            created_at=cursor.created_at, id__gt=cursor.message_id
        )

    @classmethod
    @translate_storage_errors
    def list_messages(
        cls,
        conversation_id: int,
        user: User,
        cursor: str | MessageCursor | None = None,
        page_size: int | None = None,
        direction: str = DIRECTION_BEFORE,
    ) -> MessagePage:
        """
        Page through a conversation's visible messages.

        "before" returns the newest page strictly older than the cursor (the
        latest page without a cursor); "after" returns the oldest page
        strictly newer than the cursor (the first page without a cursor).
        Items are always ascending. Soft-deleted messages are skipped.

        Args:
            conversation_id: Conversation to read
            user: Member reading
            cursor: MessageCursor or ISO-8601 timestamp
            page_size: Messages per page (default 50, max 100)
            direction: "before" or "after"

        Raises:
            ValidationError: Bad page size, direction or cursor
            NotFoundError: User is not a member
        """
        page_size = page_size or MESSAGE_CONFIG.DEFAULT_PAGE_SIZE
        if page_size < 1:
            raise ValidationError(
                "page_size must be positive", error_code="INVALID_PAGE_SIZE"
            )
        page_size = min(page_size, MESSAGE_CONFIG.MAX_PAGE_SIZE)
        if direction not in DIRECTIONS:
            raise ValidationError(
                f"direction must be one of {', '.join(DIRECTIONS)}",
                error_code="INVALID_DIRECTION",
            )

        if isinstance(cursor, str):
            try:
                cursor = MessageCursor.parse(cursor)
            except ValueError:
                raise ValidationError(
                    "Invalid cursor", error_code="INVALID_CURSOR"
                ) from None

        _require_membership(conversation_id, user.pk)

        visible = Message.objects.filter(conversation_id=conversation_id, is_deleted=False)
        total = visible.count()

        page_qs = visible
        if cursor is not None:
            page_qs = page_qs.filter(cls._window(cursor, direction))
        if direction == DIRECTION_BEFORE:
            page_qs = page_qs.order_by("-created_at", "-id")
        else:
            page_qs = page_qs.order_by("created_at", "id")

        rows = list(cls._with_relations(page_qs)[: page_size + 1])
        has_more = len(rows) > page_size
        rows = rows[:page_size]
        if direction == DIRECTION_BEFORE:
            rows.reverse()

        if direction == DIRECTION_BEFORE:
            is_first = not has_more
            if cursor is None:
                is_last = True
            elif rows:
                is_last = not visible.filter(
                    cls._window(MessageCursor.for_message(rows[-1]), DIRECTION_AFTER)
                ).exists()
            else:
                is_last = not visible.exclude(cls._window(cursor, DIRECTION_BEFORE)).exists()
        else:
            is_last = not has_more
            if cursor is None:
                is_first = True
            elif rows:
                is_first = not visible.filter(
                    cls._window(MessageCursor.for_message(rows[0]), DIRECTION_BEFORE)
                ).exists()
            else:
                is_first = not visible.exclude(cls._window(cursor, DIRECTION_AFTER)).exists()

        older_cursor = (
            MessageCursor.for_message(rows[0]) if rows and not is_first else None
        )
        newer_cursor = (
            MessageCursor.for_message(rows[-1]) if rows and not is_last else None
        )

        return MessagePage(
            items=rows,
            page_size=page_size,
            total_elements=total,
            direction=direction,
            is_first=is_first,
            is_last=is_last,
            cursor=cursor,
            older_cursor=older_cursor,
            newer_cursor=newer_cursor,
        )

    @classmethod
    @translate_storage_errors
    def get_message(cls, message_id: int, user: User) -> Message:
        """
        Get a single message visible to a member.

        Deleted messages are returned as tombstones; serializers redact them.

        Raises:
            NotFoundError: Message missing or user is not a member
        """
        message = cls._with_relations(Message.objects.filter(pk=message_id)).first()
        if message is None or not MembershipService.is_member(
            message.conversation_id, user.pk
        ):
            raise NotFoundError(
                "Message not found",
                error_code="MESSAGE_NOT_FOUND",
                details={"message_id": message_id},
            )
        return message

    @classmethod
    @translate_storage_errors
    def get_latest_message(cls, conversation_id: int) -> Message | None:
        """Most recent non-deleted message."""
        return (
            Message.objects.filter(conversation_id=conversation_id, is_deleted=False)
            .order_by("-created_at", "-id")
            .first()
        )

    @classmethod
    @translate_storage_errors
    def count_messages(cls, conversation_id: int) -> int:
        """Number of non-deleted messages."""
        return Message.objects.filter(
            conversation_id=conversation_id, is_deleted=False
        ).count()

    @classmethod
    @translate_storage_errors
    def post_system_message(
        cls,
        conversation: Conversation,
        event: str,
        actor: User | None = None,
        **data: Any,
    ) -> Message:
        """
        Append a server-generated event message.

        System messages have:
        - sender = None (system-generated)
        - kind = SYSTEM
        - content = JSON with {event, data}

        The actor's read marker moves past the message they caused. Should
        be called within the transaction making the change it describes.

        Args:
            conversation: Target conversation
            event: Event type from SystemMessageEvent
            actor: User whose action produced the event
            **data: Event-specific payload

        Returns:
            Created Message
        """
        message = Message.objects.create(
            conversation=conversation,
            sender=None,
            sender_name="",
            kind=MessageKind.SYSTEM,
            content=json.dumps({"event": event, "data": data}),
        )

        ConversationService.touch_last_message_at(conversation.pk, message.created_at)
        if actor is not None:
            MembershipService.advance_read_marker(conversation.pk, actor.pk, message)

        EventBroadcaster.publish_on_commit(
            ChatEvent.build(
                ChatEventType.MESSAGE_SENT,
                conversation.pk,
                actor=actor,
                payload={"message": message_payload(message)},
            )
        )
        return message

    @classmethod
    @translate_storage_errors
    def set_typing(cls, conversation_id: int, user: User, is_typing: bool) -> int:
        """
        Broadcast a typing indicator to every other member.

        Nothing is persisted.

        Returns:
            Number of sessions notified

        Raises:
            NotFoundError: User is not a member
        """
        _require_membership(conversation_id, user.pk)
        event = ChatEvent.build(
            ChatEventType.USER_TYPING if is_typing else ChatEventType.USER_STOPPED_TYPING,
            conversation_id,
            actor=user,
            payload={"user_id": user.pk, "is_typing": is_typing},
        )
        return EventBroadcaster.publish(event, exclude=[user.pk])


class ReadReceiptService(BaseService):
    """
    Service for read receipts and unread counts.

    Unread counts derive from Membership.last_read_at only; the
    MessageReadStatus rows are a "who has read this" projection.

    Methods:
        record_read: Advance marker and upsert a receipt
        count_unread: Unread messages in one conversation
        count_unread_conversations: Conversations with unread activity
        get_read_receipts: Read-by list for a message
    """

    @classmethod
    @translate_storage_errors
    def record_read(
        cls,
        conversation_id: int,
        user: User,
        message_id: int,
    ) -> MessageReadStatus:
        """
        Record that user read a message.

        Repeated reads update the receipt timestamp instead of duplicating
        it. The read marker only moves forward.

        Raises:
            NotFoundError: User is not a member, or message is not in the
                conversation
        """
        _require_membership(conversation_id, user.pk)
        message = Message.objects.filter(
            pk=message_id, conversation_id=conversation_id
        ).first()
        if message is None:
            raise NotFoundError(
                "Message not found",
                error_code="MESSAGE_NOT_FOUND",
                details={"message_id": message_id},
            )

        with cls.atomic():
            advanced = MembershipService.advance_read_marker(
                conversation_id, user.pk, message
            )
            receipt, _ = MessageReadStatus.objects.update_or_create(
                message=message,
                user=user,
                defaults={
                    "user_display_name": user.get_full_name(),
                    "read_at": timezone.now(),
                },
            )

            EventBroadcaster.publish_on_commit(
                ChatEvent.build(
                    ChatEventType.MESSAGE_READ,
                    conversation_id,
                    actor=user,
                    payload={
                        "message_id": message.pk,
                        "user_id": user.pk,
                        "read_at": receipt.read_at.isoformat(),
                        "marker_advanced": advanced,
                    },
                )
            )

        cls.get_logger().debug(
            f"User {user.pk} read message {message_id} in conversation {conversation_id}"
        )
        return receipt

    @classmethod
    @translate_storage_errors
    def count_unread(cls, conversation_id: int, user_id: int) -> int:
        """
        Count non-deleted messages newer than the user's read marker.

        Without a membership or marker, every non-deleted message is unread.
        """
        last_read_at = (
            Membership.objects.filter(conversation_id=conversation_id, user_id=user_id)
            .values_list("last_read_at", flat=True)
            .first()
        )
        queryset = Message.objects.filter(
            conversation_id=conversation_id, is_deleted=False
        )
        if last_read_at is not None:
            queryset = queryset.filter(created_at__gt=last_read_at)
        return queryset.count()

    @classmethod
    @translate_storage_errors
    def count_unread_conversations(cls, user_id: int) -> int:
        """Active conversations whose last message is newer than the user's marker."""
        return (
            Membership.objects.filter(
                user_id=user_id,
                conversation__is_archived=False,
                conversation__last_message_at__isnull=False,
            )
            .filter(
                Q(last_read_at__isnull=True)
                | Q(conversation__last_message_at__gt=F("last_read_at"))
            )
            .count()
        )

    @classmethod
    @translate_storage_errors
    def get_read_receipts(cls, message_id: int, user: User) -> list[MessageReadStatus]:
        """
        Read-by list for a message visible to the caller.

        Raises:
            NotFoundError: Message missing or user is not a member
        """
        message = MessageService.get_message(message_id, user)
        return list(message.read_receipts.order_by("read_at", "id"))
