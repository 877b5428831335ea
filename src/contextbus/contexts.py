"""Context references: the keys that partition listeners of one event.

A context is one of three variants:

* ``GLOBAL`` -- the shared default context.
* ``Labeled`` -- a string label, compared by string equality.
* ``Keyed`` -- an arbitrary object, compared by identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


class GlobalContext:
    """The default context. Use the ``GLOBAL`` instance."""

    _instance: GlobalContext | None = None

    def __new__(cls) -> GlobalContext:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "GLOBAL"

    def __str__(self) -> str:
        return "the global context"

    def __reduce__(self) -> str:
        return "GLOBAL"


GLOBAL = GlobalContext()


@dataclass(frozen=True)
class Labeled:
    """A context named by a string label."""

    label: str

    def __str__(self) -> str:
        return f"context {self.label!r}"


@dataclass(frozen=True, eq=False)
class Keyed:
    """A context keyed by the identity of an arbitrary object.

    The wrapper holds its object only for the duration of a call; registries
    store the object through a weak reference.
    """

    obj: Any

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Keyed):
            return NotImplemented
        return self.obj is other.obj

    def __hash__(self) -> int:
        return id(self.obj)

    def __str__(self) -> str:
        return f"context <{type(self.obj).__name__} at {id(self.obj):#x}>"


ContextRef = Union[GlobalContext, Labeled, Keyed]


def resolve_context(value: Any = None) -> ContextRef:
    """Map a caller-supplied context value onto a ``ContextRef``."""
    if value is None or isinstance(value, (GlobalContext, Labeled, Keyed)):
        return GLOBAL if value is None else value
    if isinstance(value, str):
        return Labeled(value)
    return Keyed(value)
