"""
Tests for WebSocket JWT authentication.

This module tests:
- JWTAuthMiddleware: token from query string or subprotocol
- Rejection paths: missing, malformed, unknown-user and inactive-user tokens
"""

import pytest
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import AccessToken

from authentication.tests.factories import UserFactory
from chat.middleware import JWTAuthMiddleware

pytestmark = pytest.mark.django_db(transaction=True)


async def authenticate(query_string=b"", subprotocols=()):
    """Run the middleware over a websocket scope and return the scope user."""
    seen = {}

    async def inner(scope, receive, send):
        seen["user"] = scope["user"]

    scope = {
        "type": "websocket",
        "path": "/ws/chat/",
        "query_string": query_string,
        "subprotocols": list(subprotocols),
    }
    await JWTAuthMiddleware(inner)(scope, None, None)
    return seen["user"]


def token_for(user):
    return str(AccessToken.for_user(user))


class TestJWTAuthMiddleware:
    """
    Tests for JWTAuthMiddleware.

    Verifies:
    - Valid tokens attach the user from either source
    - Anything else leaves an AnonymousUser for the consumer to reject
    """

    @pytest.fixture
    def user(self):
        return UserFactory()

    @pytest.fixture
    def other_user(self):
        return UserFactory()

    @pytest.fixture
    def inactive_user(self):
        return UserFactory(is_active=False)

    async def test_token_in_query_string(self, user):
        """
        Given a valid access token in the query string
        When the middleware runs
        Then the token's user is attached to the scope
        """
        scope_user = await authenticate(query_string=f"token={token_for(user)}".encode())

        assert scope_user.pk == user.pk
        assert scope_user.is_authenticated

    async def test_token_in_subprotocol(self, user):
        """
        Given a valid access token sent as the "jwt, <token>" subprotocol
        When the middleware runs
        Then the token's user is attached to the scope

        Why it matters: Browsers cannot set headers on WebSocket upgrades.
        """
        scope_user = await authenticate(subprotocols=["jwt", token_for(user)])

        assert scope_user.pk == user.pk

    async def test_query_string_wins_over_subprotocol(self, user, other_user):
        scope_user = await authenticate(
            query_string=f"token={token_for(user)}".encode(),
            subprotocols=["jwt", token_for(other_user)],
        )

        assert scope_user.pk == user.pk

    async def test_subprotocol_without_jwt_marker_is_ignored(self, user):
        scope_user = await authenticate(subprotocols=["chat", token_for(user)])

        assert isinstance(scope_user, AnonymousUser)

    async def test_missing_token(self):
        """
        Given no token at all
        When the middleware runs
        Then the scope user is anonymous
        """
        assert isinstance(await authenticate(), AnonymousUser)

    async def test_malformed_token(self):
        scope_user = await authenticate(query_string=b"token=not-a-jwt")

        assert isinstance(scope_user, AnonymousUser)

    async def test_token_without_user_claim(self):
        scope_user = await authenticate(query_string=f"token={AccessToken()}".encode())

        assert isinstance(scope_user, AnonymousUser)

    async def test_token_for_unknown_user(self):
        token = AccessToken()
        token[api_settings.USER_ID_CLAIM] = 987654

        scope_user = await authenticate(query_string=f"token={token}".encode())

        assert isinstance(scope_user, AnonymousUser)

    async def test_inactive_user(self, inactive_user):
        """
        Given a valid token for a deactivated account
        When the middleware runs
        Then the scope user is anonymous
        """
        scope_user = await authenticate(query_string=f"token={token_for(inactive_user)}".encode())

        assert isinstance(scope_user, AnonymousUser)
