"""
Shared plumbing for the client state stores.

A store caches what was last fetched for one entity family, tracks whether a
request is in flight and the last error, and reports user-facing notices
through a notifier. Stores are never the source of truth: every action goes
through a service first and only then patches the cache.
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Dict, List, Optional, TypeVar

from core.errors import ServiceError

logger = logging.getLogger(__name__)

# notifier(level, message) with level "success" or "error"
Notifier = Callable[[str, str], None]

SUCCESS = "success"
ERROR = "error"

T = TypeVar("T")


def log_notifier(level: str, message: str) -> None:
    """Default notifier: user-facing notices go to the log."""
    if level == ERROR:
        logger.warning(message)
    else:
        logger.info(message)


def replace_by_id(items: List[T], updated: T) -> List[T]:
    return [updated if item.id == updated.id else item for item in items]


def remove_by_id(items: List[T], item_id: str) -> List[T]:
    return [item for item in items if item.id != item_id]


class Store:
    def __init__(self, notifier: Optional[Notifier] = None) -> None:
        self.is_loading = False
        self.error: Optional[str] = None
        self.notify: Notifier = notifier or log_notifier

    @asynccontextmanager
    async def loading(self):
        self.is_loading = True
        self.error = None
        try:
            yield
        finally:
            self.is_loading = False

    def succeed(self, message: str) -> None:
        self.notify(SUCCESS, message)

    def fail(self, e: Exception, messages: Optional[Dict[int, str]] = None, default: str = "Something went wrong") -> None:
        """Record the error and show the notice matching its status code."""
        self.error = str(e)
        status = e.status_code if isinstance(e, ServiceError) else 500
        self.notify(ERROR, (messages or {}).get(status, default))
