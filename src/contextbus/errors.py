"""Error hierarchy for the context bus."""
from __future__ import annotations

from typing import Any


class ContextBusError(Exception):
    """Base error for all contextbus errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DuplicateIdentifierError(ContextBusError):
    """A live listener already uses this identifier.

    The existing listener must be unsubscribed before the identifier can be
    reused.
    """

    def __init__(self, event: Any, identifier: Any, context: Any) -> None:
        super().__init__(
            f"Listener identifier {identifier} is already subscribed to "
            f"{event!r} in {context}; unsubscribe it first"
        )
        self.event = event
        self.identifier = identifier
        self.context = context

