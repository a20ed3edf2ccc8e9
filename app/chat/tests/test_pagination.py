"""
Tests for chat pagination primitives.

This module tests:
- MessageCursor: token positions and ISO timestamps
- page_metadata: index page metadata
- MessagePage: direction-aware next/previous cursors
- MessageCursorPagination: reading request cursors and rendering metadata
"""

from datetime import datetime, timezone

import pytest
from rest_framework.request import Request
from rest_framework.test import APIRequestFactory

from chat.pagination import (
    DIRECTION_AFTER,
    DIRECTION_BEFORE,
    MessageCursor,
    MessageCursorPagination,
    MessagePage,
    page_metadata,
)
from core.exceptions import ValidationError

NOON = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
LATER = datetime(2024, 5, 1, 13, 0, 0, tzinfo=timezone.utc)

MESSAGES_PATH = "/api/v1/chat/conversations/1/messages/"


def make_request(params=None):
    return Request(APIRequestFactory().get(MESSAGES_PATH, params or {}))


class TestMessageCursor:
    """Tests for MessageCursor."""

    def test_position_round_trip(self):
        cursor = MessageCursor(created_at=NOON, message_id=42)

        assert MessageCursor.from_position(cursor.position) == cursor

    def test_position_without_id_is_timestamp_only(self):
        cursor = MessageCursor.from_position(MessageCursor(created_at=NOON).position)

        assert cursor.created_at == NOON
        assert cursor.message_id is None

    def test_parses_iso_timestamp(self):
        cursor = MessageCursor.parse("2024-05-01T12:00:00.123456+00:00")

        assert cursor.created_at == NOON
        assert cursor.message_id is None

    def test_naive_timestamp_is_utc(self):
        cursor = MessageCursor.parse("2024-05-01T12:00:00")

        assert cursor.created_at.tzinfo is not None
        assert cursor.created_at.utcoffset().total_seconds() == 0

    @pytest.mark.parametrize("value", ["garbage", "", "2024-13-45T99:00:00"])
    def test_parse_rejects_bad_values(self, value):
        with pytest.raises(ValueError):
            MessageCursor.parse(value)

    @pytest.mark.parametrize(
        "position",
        ["yesterday|4", f"{NOON.isoformat()}|forty-two", ""],
    )
    def test_from_position_rejects_bad_values(self, position):
        with pytest.raises(ValueError):
            MessageCursor.from_position(position)


class TestPageMetadata:
    """Tests for page_metadata()."""

    def test_first_of_several_pages(self):
        assert page_metadata(total=45, page=1, page_size=20) == {
            "page": 1,
            "page_size": 20,
            "total_elements": 45,
            "total_pages": 3,
            "is_first": True,
            "is_last": False,
        }

    def test_last_page(self):
        meta = page_metadata(total=45, page=3, page_size=20)

        assert meta["is_last"] is True
        assert meta["is_first"] is False

    def test_page_past_the_end_is_not_clamped(self):
        meta = page_metadata(total=5, page=4, page_size=20)

        assert meta["page"] == 4
        assert meta["is_last"] is True

    def test_empty_result(self):
        meta = page_metadata(total=0, page=1, page_size=20)

        assert meta["total_elements"] == 0
        assert meta["is_first"] is True
        assert meta["is_last"] is True


OLDER = MessageCursor(created_at=NOON, message_id=1)
NEWER = MessageCursor(created_at=LATER, message_id=9)


def make_page(direction):
    return MessagePage(
        items=[],
        page_size=10,
        total_elements=25,
        direction=direction,
        is_first=False,
        is_last=False,
        older_cursor=OLDER,
        newer_cursor=NEWER,
    )


class TestMessagePage:
    """Tests for MessagePage cursor helpers."""

    def test_before_pages_continue_with_older_cursor(self):
        page = make_page(DIRECTION_BEFORE)

        assert page.next_cursor == OLDER
        assert page.previous_cursor == NEWER

    def test_after_pages_continue_with_newer_cursor(self):
        page = make_page(DIRECTION_AFTER)

        assert page.next_cursor == NEWER
        assert page.previous_cursor == OLDER

    def test_total_pages(self):
        assert make_page(DIRECTION_BEFORE).total_pages == 3


class TestMessageCursorPagination:
    """Tests for MessageCursorPagination."""

    def test_no_cursor_defaults_to_before(self):
        cursor, direction = MessageCursorPagination().parse_request(make_request())

        assert cursor is None
        assert direction == DIRECTION_BEFORE

    def test_rendered_token_reads_back(self):
        """
        A next_cursor token from one response decodes to the same position
        and direction on the following request.

        Why it matters: Clients echo tokens verbatim to continue paging.
        """
        paginator = MessageCursorPagination()
        paginator.parse_request(make_request())
        meta = paginator.get_pagination_metadata(make_page(DIRECTION_AFTER))

        cursor, direction = MessageCursorPagination().parse_request(
            make_request({"cursor": meta["next_cursor"]})
        )

        assert cursor == NEWER
        assert direction == DIRECTION_AFTER

    def test_explicit_direction_overrides_token(self):
        paginator = MessageCursorPagination()
        paginator.parse_request(make_request())
        token = paginator.get_pagination_metadata(make_page(DIRECTION_BEFORE))["older_cursor"]

        _, direction = MessageCursorPagination().parse_request(
            make_request({"cursor": token, "direction": DIRECTION_AFTER})
        )

        assert direction == DIRECTION_AFTER

    def test_iso_timestamp_cursor(self):
        cursor, direction = MessageCursorPagination().parse_request(
            make_request({"cursor": NOON.isoformat()})
        )

        assert cursor == MessageCursor(created_at=NOON)
        assert direction == DIRECTION_BEFORE

    @pytest.mark.parametrize("param", [DIRECTION_BEFORE, DIRECTION_AFTER])
    def test_shorthand_sets_direction(self, param):
        cursor, direction = MessageCursorPagination().parse_request(
            make_request({param: NOON.isoformat()})
        )

        assert cursor.created_at == NOON
        assert direction == param

    @pytest.mark.parametrize("value", ["garbage", "cD0=", "é"])
    def test_invalid_cursor_is_validation_error(self, value):
        """
        Unreadable cursors are a 400 INVALID_CURSOR, not DRF's 404.

        Why it matters: A stale or mangled token is a client input error.
        """
        with pytest.raises(ValidationError) as exc_info:
            MessageCursorPagination().parse_request(make_request({"cursor": value}))

        assert exc_info.value.error_code == "INVALID_CURSOR"

    def test_metadata_block(self):
        paginator = MessageCursorPagination()
        paginator.parse_request(make_request({"page_size": 10}))

        meta = paginator.get_pagination_metadata(make_page(DIRECTION_BEFORE))

        assert meta["total_pages"] == 3
        assert meta["direction"] == DIRECTION_BEFORE
        assert meta["cursor"] is None
        assert meta["next_cursor"] == meta["older_cursor"]
        assert meta["previous_cursor"] == meta["newer_cursor"]
        assert meta["next"].startswith("http://testserver" + MESSAGES_PATH)
        assert "page_size=10" in meta["next"]

    def test_links_drop_shorthand_params(self):
        """
        next links from a before=/after= request page with the token only.

        Why it matters: A leftover shorthand would win over the token and
        return the same page forever.
        """
        paginator = MessageCursorPagination()
        paginator.parse_request(make_request({"after": NOON.isoformat()}))

        meta = paginator.get_pagination_metadata(make_page(DIRECTION_AFTER))

        assert "after=" not in meta["next"]
        assert "cursor=" in meta["next"]
        assert meta["cursor"] == NOON.isoformat()

    def test_missing_cursors_render_as_none(self):
        paginator = MessageCursorPagination()
        paginator.parse_request(make_request())
        page = MessagePage(
            items=[],
            page_size=10,
            total_elements=0,
            direction=DIRECTION_BEFORE,
            is_first=True,
            is_last=True,
        )

        meta = paginator.get_pagination_metadata(page)

        assert meta["next_cursor"] is None
        assert meta["next"] is None
        assert meta["previous"] is None
