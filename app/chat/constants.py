"""
Constants and configuration for chat module features.

This module centralizes configuration values for:
- Conversation limits (roster size, title length, add-member batches)
- Message limits (content length, attachments, page sizes)
- Presence and connection tracking

Limits can be overridden via Django settings (see config/settings.py,
CHAT_* variables), which read them from the environment.

Import example:
    from chat.constants import CONVERSATION_CONFIG, MESSAGE_CONFIG
"""

from typing import Final

from django.conf import settings


# =============================================================================
# Conversation Configuration
# =============================================================================


class CONVERSATION_CONFIG:
    """Configuration for conversations and memberships."""

    DIRECT_MEMBER_COUNT: Final[int] = 2
    MAX_GROUP_MEMBERS: Final[int] = getattr(settings, "CHAT_MAX_GROUP_MEMBERS", 50)
    MAX_TITLE_LENGTH: Final[int] = 100

    # Add-member requests accept this many user ids per call
    MAX_ADD_MEMBERS_BATCH: Final[int] = getattr(
        settings, "CHAT_MAX_ADD_MEMBERS_BATCH", 10
    )

    DEFAULT_PAGE_SIZE: Final[int] = getattr(settings, "CHAT_CONVERSATION_PAGE_SIZE", 20)
    MAX_PAGE_SIZE: Final[int] = 50


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    MAX_CONTENT_LENGTH: Final[int] = getattr(settings, "CHAT_MAX_MESSAGE_LENGTH", 2000)

    DEFAULT_PAGE_SIZE: Final[int] = getattr(settings, "CHAT_MESSAGE_PAGE_SIZE", 50)
    MAX_PAGE_SIZE: Final[int] = 100

    # Reply previews truncate the quoted content to this many characters
    REPLY_PREVIEW_LENGTH: Final[int] = 100


# =============================================================================
# Attachment Configuration
# =============================================================================


class ATTACHMENT_CONFIG:
    """
    Configuration for message attachments.

    Files are uploaded through the media service, which hands back a stable
    media reference and download URL. Chat only stores those descriptors.
    """

    MAX_ATTACHMENTS_PER_MESSAGE: Final[int] = getattr(settings, "CHAT_MAX_ATTACHMENTS", 10)
    MAX_CAPTION_LENGTH: Final[int] = 200


# =============================================================================
# Presence Configuration
# =============================================================================


class PRESENCE_CONFIG:
    """Configuration for connection tracking and presence."""

    # How long a session registration survives without a heartbeat
    SESSION_TTL_SECONDS: Final[int] = getattr(settings, "CHAT_PRESENCE_TTL_SECONDS", 120)

    # Redis key prefix for per-user session sets
    KEY_PREFIX_USER_SESSIONS: Final[str] = "chat:sessions"
