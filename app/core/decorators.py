"""
Custom decorators for service entry points.

This module provides generic infrastructure decorators for:
- Translating storage driver failures into retryable application errors

Usage:
    from core.decorators import translate_storage_errors

    class MessageService(BaseService):
        @classmethod
        @translate_storage_errors
        def send_message(cls, ...):
            ...
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

from django.db import DatabaseError, IntegrityError

from core.exceptions import UnavailableError

logger = logging.getLogger(__name__)


def translate_storage_errors(func: Callable):
    """
    Convert database driver errors raised by func into UnavailableError.

    Timeouts, dropped connections and other OperationalError/DatabaseError
    subclasses become UnavailableError so callers get a stable, retryable
    error instead of the driver's message. IntegrityError is re-raised
    unchanged: it signals a constraint the caller must handle, not an
    outage.

    Args:
        func: Function or method to wrap

    Returns:
        Wrapped function

    Example:
        @translate_storage_errors
        def count_unread(cls, conversation_id, user_id):
            ...
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except IntegrityError:
            raise
        except DatabaseError as exc:
            logger.exception(f"Storage failure in {func.__qualname__}: {exc}")
            raise UnavailableError() from exc

    return wrapper
