"""
Base service layer patterns for business logic encapsulation.

Service Layer Philosophy:
    Services encapsulate business logic separate from views and models.
    Views handle HTTP concerns, models handle data, services handle logic.

Error Handling:
    Services fail fast by raising the typed errors from core.exceptions.
    They never return partial results for a failed mutation; the API layer
    (core.exception_handlers) maps each error kind to a status code.

Usage:
    from core.exceptions import ConflictError
    from core.services import BaseService

    class ConversationService(BaseService):
        @classmethod
        def archive(cls, conversation_id: int, actor: User) -> Conversation:
            with cls.atomic():
                conversation = cls.lock_conversation(conversation_id)
                if conversation.is_archived:
                    raise ConflictError("Already archived")
                ...

            cls.get_logger().info(f"Archived conversation {conversation_id}")
            return conversation

Related:
    - core.exceptions: Typed error taxonomy
    - core.decorators: translate_storage_errors for service entry points
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Services should be stateless
        - Raise core.exceptions errors for expected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.

        Example:
            class MessageService(BaseService):
                @classmethod
                def send_message(cls, ...):
                    cls.get_logger().info(f"Message sent in {conversation_id}")
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation fails, all
        changes are rolled back.

        Example:
            with cls.atomic():
                conversation = Conversation.objects.create(...)
                Membership.objects.bulk_create(memberships)
                # If a membership insert fails, the conversation is rolled back
        """
        with transaction.atomic():
            yield
