"""Listener identifiers: canonical named tokens and generated tokens."""

from __future__ import annotations

import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class Identifier:
    """Opaque token naming one listener registration.

    Named identifiers compare by value, so the same string always denotes
    the same identifier. Generated identifiers never equal a named one.
    """

    name: str
    generated: bool = False

    @classmethod
    def named(cls, name: str) -> Identifier:
        if not isinstance(name, str):
            raise TypeError(f"Identifier name must be a string, got {type(name).__name__}")
        if not name:
            raise ValueError("Identifier name must not be empty")
        return cls(name=name)

    @classmethod
    def generate(cls) -> Identifier:
        return cls(name=uuid.uuid4().hex, generated=True)

    def __str__(self) -> str:
        if self.generated:
            return f"<anonymous {self.name[:8]}>"
        return self.name


def resolve_identifier(value: str | Identifier) -> Identifier:
    """Canonicalize a string or token into an ``Identifier``."""
    if isinstance(value, Identifier):
        return value
    if isinstance(value, str):
        return Identifier.named(value)
    raise TypeError(
        f"Identifier must be a string or Identifier, got {type(value).__name__}"
    )
