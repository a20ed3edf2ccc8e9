"""
Pagination primitives for the chat API.

- Conversations page by index (most recent activity first).
- Messages page by cursor: a (created_at, id) position in the conversation's
  total order, walked backwards ("before") or forwards ("after").

The service layer works with MessageCursor positions. Opaque tokens only
exist at the REST boundary, where MessageCursorPagination encodes them with
DRF's cursor machinery. Clients may also pass an ISO-8601 timestamp instead
of a token.

Every page carries the same metadata block:
    page / cursor, page_size, total_elements, total_pages, is_first, is_last

Message pages also carry older_cursor / newer_cursor tokens to continue in
either direction, plus next / previous links.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any
from urllib import parse

from django.utils.dateparse import parse_datetime
from rest_framework.exceptions import NotFound
from rest_framework.pagination import Cursor, CursorPagination
from rest_framework.utils.urls import remove_query_param

from core.exceptions import ValidationError
from core.helpers import calculate_pagination

DIRECTION_BEFORE = "before"
DIRECTION_AFTER = "after"
DIRECTIONS = (DIRECTION_BEFORE, DIRECTION_AFTER)

# Separates created_at from the message id inside a token position
POSITION_SEPARATOR = "|"


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    try:
        parsed = parse_datetime(value)
    except ValueError:
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return parsed


@dataclass(frozen=True)
class MessageCursor:
    """
    Position in a conversation's message order.

    message_id is optional: a bare timestamp cursor ("before 12:00") has no
    tie-break and compares on created_at only.
    """

    created_at: datetime
    message_id: int | None = None

    @classmethod
    def for_message(cls, message) -> MessageCursor:
        """Cursor pointing at an existing message."""
        return cls(created_at=message.created_at, message_id=message.pk)

    @property
    def position(self) -> str:
        """Position string stored inside a pagination token."""
        if self.message_id is None:
            return self.created_at.isoformat()
        return f"{self.created_at.isoformat()}{POSITION_SEPARATOR}{self.message_id}"

    @classmethod
    def from_position(cls, position: str) -> MessageCursor:
        """
        Inverse of position.

        Raises:
            ValueError: If position is malformed
        """
        timestamp, _, message_id = position.partition(POSITION_SEPARATOR)
        created_at = parse_timestamp(timestamp)
        if created_at is None:
            raise ValueError("Invalid cursor")
        if not message_id:
            return cls(created_at=created_at)
        try:
            return cls(created_at=created_at, message_id=int(message_id))
        except ValueError:
            raise ValueError("Invalid cursor") from None

    @classmethod
    def parse(cls, value: str) -> MessageCursor:
        """
        Parse an ISO-8601 timestamp.

        Raises:
            ValueError: If value is not a timestamp
        """
        created_at = parse_timestamp(value)
        if created_at is None:
            raise ValueError("Invalid cursor")
        return cls(created_at=created_at)


def page_metadata(total: int, page: int, page_size: int) -> dict[str, Any]:
    """
    Index-page metadata.

    Unlike calculate_pagination the requested page is not clamped, so a
    page past the end reports itself with is_last=True and no items.
    """
    meta = calculate_pagination(total, page, page_size)
    total_pages = meta["total_pages"]
    return {
        "page": page,
        "page_size": page_size,
        "total_elements": total,
        "total_pages": total_pages,
        "is_first": page <= 1,
        "is_last": page >= total_pages,
    }


@dataclass
class ConversationPage:
    """A page of conversations plus metadata."""

    items: list
    pagination: dict[str, Any]


@dataclass
class MessagePage:
    """A page of messages in ascending order plus metadata."""

    items: list
    page_size: int
    total_elements: int
    direction: str
    is_first: bool
    is_last: bool
    cursor: MessageCursor | None = None
    older_cursor: MessageCursor | None = field(default=None)
    newer_cursor: MessageCursor | None = field(default=None)

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_elements / self.page_size) if self.page_size else 0

    @property
    def next_cursor(self) -> MessageCursor | None:
        """Cursor continuing in the direction this page was fetched."""
        if self.direction == DIRECTION_BEFORE:
            return self.older_cursor
        return self.newer_cursor

    @property
    def previous_cursor(self) -> MessageCursor | None:
        """Cursor walking back towards where this page started."""
        if self.direction == DIRECTION_BEFORE:
            return self.newer_cursor
        return self.older_cursor


class MessageCursorPagination(CursorPagination):
    """
    Cursor tokens for message lists.

    The query itself runs in MessageService.list_messages; this class only
    reads the request's cursor and renders the page metadata. Tokens carry
    the (created_at, id) position and the walking direction (reverse means
    "after"), so following next_cursor needs no other parameter.

    Query parameters:
        cursor: Token or ISO-8601 timestamp
        direction: "before" (default) or "after"; overrides a token's direction
        before / after: Shorthand for cursor=<value>&direction=<name>
        page_size: Messages per page (optional override)
    """

    page_size = 50
    max_page_size = 100
    page_size_query_param = "page_size"
    ordering = ("created_at", "id")
    cursor_query_param = "cursor"
    invalid_cursor_message = "Invalid cursor"
    raw_cursor = None

    def parse_request(self, request) -> tuple[MessageCursor | None, str]:
        """
        Read the requested position and direction.

        Returns:
            Tuple of (cursor or None, direction)

        Raises:
            ValidationError: If the cursor is neither a token nor a timestamp
        """
        params = request.query_params
        self.raw_cursor = None
        self.base_url = request.build_absolute_uri()
        for param in ("before", "after", "direction"):
            self.base_url = remove_query_param(self.base_url, param)

        for direction in (DIRECTION_BEFORE, DIRECTION_AFTER):
            if params.get(direction):
                cursor, _ = self._read(request, direction)
                return cursor, direction

        explicit = params.get("direction") or None
        if not params.get(self.cursor_query_param):
            return None, explicit or DIRECTION_BEFORE
        cursor, token_direction = self._read(request, self.cursor_query_param)
        return cursor, explicit or token_direction or DIRECTION_BEFORE

    def _read(self, request, param: str) -> tuple[MessageCursor, str | None]:
        """Decode one query parameter as a timestamp or a token."""
        self.raw_cursor = request.query_params[param]
        created_at = parse_timestamp(self.raw_cursor)
        if created_at is not None:
            return MessageCursor(created_at=created_at), None

        default_param = self.cursor_query_param
        self.cursor_query_param = param
        try:
            token = self.decode_cursor(request)
            if token is None or token.position is None:
                raise ValueError("Invalid cursor")
            cursor = MessageCursor.from_position(token.position)
        except (NotFound, ValueError):
            raise ValidationError(
                self.invalid_cursor_message, error_code="INVALID_CURSOR"
            ) from None
        finally:
            self.cursor_query_param = default_param
        return cursor, DIRECTION_AFTER if token.reverse else DIRECTION_BEFORE

    def link_for(self, cursor: MessageCursor | None, direction: str) -> str | None:
        """Absolute URL continuing from cursor in direction."""
        if cursor is None:
            return None
        return self.encode_cursor(
            Cursor(offset=0, reverse=direction == DIRECTION_AFTER, position=cursor.position)
        )

    def token_for(self, cursor: MessageCursor | None, direction: str) -> str | None:
        """Opaque token continuing from cursor in direction."""
        link = self.link_for(cursor, direction)
        if link is None:
            return None
        query = parse.parse_qs(parse.urlsplit(link).query)
        return query[self.cursor_query_param][0]

    def get_pagination_metadata(self, page: MessagePage) -> dict[str, Any]:
        """Metadata block for a MessagePage."""
        older = self.token_for(page.older_cursor, DIRECTION_BEFORE)
        newer = self.token_for(page.newer_cursor, DIRECTION_AFTER)
        walking_back = page.direction == DIRECTION_BEFORE
        return {
            "cursor": self.raw_cursor,
            "direction": page.direction,
            "page_size": page.page_size,
            "total_elements": page.total_elements,
            "total_pages": page.total_pages,
            "is_first": page.is_first,
            "is_last": page.is_last,
            "older_cursor": older,
            "newer_cursor": newer,
            "next_cursor": older if walking_back else newer,
            "previous_cursor": newer if walking_back else older,
            "next": self.link_for(page.next_cursor, page.direction),
            "previous": self.link_for(
                page.previous_cursor,
                DIRECTION_AFTER if walking_back else DIRECTION_BEFORE,
            ),
        }
