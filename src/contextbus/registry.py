"""Listener registry: subscribe, unsubscribe and broadcast, scoped by context.

State is a two-level mapping::

    event -> ContextMap -> ListenerSet -> Listener

Empty listener sets and empty context maps are pruned as soon as they
empty. Object contexts are held weakly; collecting the object drops its
listeners.
"""

from __future__ import annotations

import logging
import types
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Union

from contextbus.config import IdentifierScope, RegistryConfig
from contextbus.contexts import GLOBAL, ContextRef, Keyed, resolve_context
from contextbus.errors import DuplicateIdentifierError
from contextbus.identifiers import Identifier, resolve_identifier

Selector = Union[str, Identifier, Callable[..., Any], None]

_MISSING = object()  # broadcast called without a payload


@dataclass(frozen=True)
class Listener:
    """One registration: the subscribed callback and what broadcast invokes.

    ``target`` is ``callback`` bound to ``receiver`` when one was given at
    subscribe time, otherwise ``callback`` itself.
    """

    identifier: Identifier
    callback: Callable[..., Any]
    target: Callable[..., Any]
    receiver: Any = None

    @classmethod
    def create(
        cls, identifier: Identifier, callback: Callable[..., Any], receiver: Any = None
    ) -> Listener:
        target = callback if receiver is None else types.MethodType(callback, receiver)
        return cls(identifier=identifier, callback=callback, target=target, receiver=receiver)


class ListenerSet:
    """Listeners of one (event, context) pair in registration order."""

    def __init__(self) -> None:
        self._listeners: dict[Identifier, Listener] = {}

    def add(self, listener: Listener) -> None:
        self._listeners[listener.identifier] = listener

    def pop(self, identifier: Identifier) -> Listener | None:
        return self._listeners.pop(identifier, None)

    def remove_callback(self, callback: Callable[..., Any]) -> list[Listener]:
        """Remove every listener whose subscribed callback equals *callback*."""
        removed = [
            listener for listener in self._listeners.values() if listener.callback == callback
        ]
        for listener in removed:
            del self._listeners[listener.identifier]
        return removed

    def snapshot(self) -> tuple[Listener, ...]:
        return tuple(self._listeners.values())

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._listeners

    def __len__(self) -> int:
        return len(self._listeners)


class _Pin:
    """Strong holder for a context object that cannot be weakly referenced."""

    __slots__ = ("obj",)

    def __init__(self, obj: Any) -> None:
        self.obj = obj

    def __call__(self) -> Any:
        return self.obj


_KeyedEntry = tuple[Callable[[], Any], ListenerSet]


class ContextMap:
    """Per-event mapping from context to listener set.

    Global and labelled contexts live in an ordinary dict. Object contexts
    are keyed by identity and held through weak references; when such an
    object is collected its entry is dropped and *on_evict* is called with
    the map and the orphaned listener set. Objects that cannot be weakly
    referenced are held strongly until their entry is popped.
    """

    def __init__(
        self, on_evict: Callable[[ContextMap, ListenerSet], None] | None = None
    ) -> None:
        self._shared: dict[ContextRef, ListenerSet] = {}
        self._keyed: dict[int, _KeyedEntry] = {}
        self._on_evict = on_evict

    def get(self, context: ContextRef) -> ListenerSet | None:
        if isinstance(context, Keyed):
            entry = self._live_entry(context.obj)
            return entry[1] if entry is not None else None
        return self._shared.get(context)

    def put(self, context: ContextRef, listeners: ListenerSet) -> None:
        if not isinstance(context, Keyed):
            self._shared[context] = listeners
            return
        entry = self._live_entry(context.obj)
        ref = entry[0] if entry is not None else self._watch(context.obj)
        self._keyed[id(context.obj)] = (ref, listeners)

    def pop(self, context: ContextRef) -> ListenerSet | None:
        if not isinstance(context, Keyed):
            return self._shared.pop(context, None)
        entry = self._live_entry(context.obj)
        if entry is None:
            return None
        del self._keyed[id(context.obj)]
        return entry[1]

    def items(self) -> list[tuple[ContextRef, ListenerSet]]:
        """Live (context, listeners) pairs."""
        result: list[tuple[ContextRef, ListenerSet]] = list(self._shared.items())
        for ref, listeners in list(self._keyed.values()):
            obj = ref()
            if obj is not None:
                result.append((Keyed(obj), listeners))
        return result

    def __len__(self) -> int:
        return len(self._shared) + len(self._keyed)

    # --- weak keys --------------------------------------------------------------

    def _live_entry(self, obj: Any) -> _KeyedEntry | None:
        key = id(obj)
        entry = self._keyed.get(key)
        if entry is None:
            return None
        if entry[0]() is obj:
            return entry
        # id reused before the previous referent's callback ran
        del self._keyed[key]
        self._evicted(entry[1])
        return None

    def _watch(self, obj: Any) -> Callable[[], Any]:
        key = id(obj)
        self_ref = weakref.ref(self)

        def evict(ref: weakref.ref[Any]) -> None:
            cmap = self_ref()
            if cmap is None:
                return
            entry = cmap._keyed.get(key)
            if entry is None or entry[0] is not ref:
                return
            del cmap._keyed[key]
            cmap._evicted(entry[1])

        try:
            return weakref.ref(obj, evict)
        except TypeError:
            return _Pin(obj)

    def _evicted(self, listeners: ListenerSet) -> None:
        if self._on_evict is not None:
            self._on_evict(self, listeners)


class ListenerRegistry:
    """In-memory publish/subscribe registry with context-scoped listeners.

    All operations are synchronous. Broadcast iterates over a snapshot of
    the listener set taken when it starts, so listeners may subscribe,
    unsubscribe or broadcast reentrantly. Not thread-safe; callers sharing a
    registry across threads must serialize access.
    """

    def __init__(self, config: RegistryConfig | None = None) -> None:
        self.config = config or RegistryConfig()
        self._events: dict[Any, ContextMap] = {}
        self._claimed: set[Identifier] = set()
        self._log = logging.getLogger(self.config.logger_name)

    # --- subscribe ----------------------------------------------------------------

    def subscribe(
        self,
        event: Any,
        callback: Callable[..., Any],
        identifier: str | Identifier | None = None,
        context: Any = GLOBAL,
        *,
        receiver: Any = None,
    ) -> Identifier:
        """Register *callback* for *event* in *context* and return its identifier.

        A string *identifier* is canonicalized, so the same string always
        names the same listener. When omitted a unique identifier is
        generated. If *receiver* is given, the callback is bound to it once,
        here, and invoked as a method of it.

        Raises ``DuplicateIdentifierError`` if the identifier is already live
        in its identifier space.
        """
        _check_event(event)
        if not callable(callback):
            raise TypeError(f"Listener callback must be callable, got {type(callback).__name__}")
        ident = Identifier.generate() if identifier is None else resolve_identifier(identifier)
        ctx = resolve_context(context)

        cmap = self._events.get(event)
        if cmap is None:
            cmap = self._new_context_map(event)
        listeners = cmap.get(ctx)

        if self._is_taken(ident, listeners):
            raise DuplicateIdentifierError(event, ident, ctx)

        if listeners is None:
            listeners = ListenerSet()
            cmap.put(ctx, listeners)
        listeners.add(Listener.create(ident, callback, receiver))
        self._events[event] = cmap
        if self.config.identifier_scope is IdentifierScope.REGISTRY:
            self._claimed.add(ident)

        self._log.debug("Subscribed %s to %r in %s", ident, event, ctx)
        return ident

    def on(
        self,
        event: Any,
        identifier: str | Identifier | None = None,
        context: Any = GLOBAL,
        *,
        receiver: Any = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of ``subscribe``. Returns the function unchanged."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.subscribe(event, fn, identifier, context, receiver=receiver)
            return fn

        return decorator

    # --- unsubscribe --------------------------------------------------------------

    def unsubscribe(self, event: Any, selector: Selector = None, context: Any = GLOBAL) -> int:
        """Remove listeners of *event* in *context*.

        * no selector -- remove all of them
        * a string or ``Identifier`` -- remove the one with that identifier
        * a callable -- remove every registration of that callback

        Unknown events, contexts and identifiers are no-ops, as is any other
        selector value, since it cannot name a listener. Returns the number
        of listeners removed.
        """
        by_identifier = isinstance(selector, (str, Identifier))
        if selector is not None and not by_identifier and not callable(selector):
            return 0
        ctx = resolve_context(context)
        cmap = self._events.get(event)
        listeners = cmap.get(ctx) if cmap is not None else None
        if not listeners:
            return 0

        if selector is None:
            removed = listeners.snapshot()
            cmap.pop(ctx)
        elif by_identifier:
            ident = selector if isinstance(selector, Identifier) else Identifier(name=selector)
            found = listeners.pop(ident)
            removed = (found,) if found is not None else ()
        else:
            removed = tuple(listeners.remove_callback(selector))

        self._release(removed)
        self._prune(event, cmap, ctx, listeners)
        if removed:
            self._log.debug("Unsubscribed %d listener(s) from %r in %s", len(removed), event, ctx)
        return len(removed)

    def unsubscribe_context(self, context: Any) -> int:
        """Remove every listener registered under *context*, across all events."""
        ctx = resolve_context(context)
        total = 0
        for event, cmap in list(self._events.items()):
            listeners = cmap.pop(ctx)
            if listeners is None:
                continue
            removed = listeners.snapshot()
            self._release(removed)
            self._prune(event, cmap, ctx, None)
            total += len(removed)
        if total:
            self._log.debug("Unsubscribed %d listener(s) in %s", total, ctx)
        return total

    def clear(self, event: Any = None) -> int:
        """Remove every listener of *event*, or of every event when omitted."""
        if event is None:
            targets = list(self._events)
        else:
            targets = [event] if event in self._events else []
        total = 0
        for name in targets:
            cmap = self._events.pop(name)
            for _ctx, listeners in cmap.items():
                removed = listeners.snapshot()
                self._release(removed)
                total += len(removed)
        if total:
            self._log.debug("Cleared %d listener(s)", total)
        return total

    # --- broadcast ----------------------------------------------------------------

    def broadcast(self, event: Any, context: Any = GLOBAL, payload: Any = _MISSING) -> None:
        """Invoke the listeners of *event* in *context*, in registration order.

        Listeners get *payload* as their single argument when one is passed,
        and no arguments otherwise. A listener exception propagates and stops
        the broadcast unless the registry isolates errors.
        """
        ctx = resolve_context(context)
        cmap = self._events.get(event)
        listeners = cmap.get(ctx) if cmap is not None else None
        if not listeners:
            return

        snapshot = listeners.snapshot()
        args = () if payload is _MISSING else (payload,)
        self._log.debug("Broadcasting %r in %s to %d listener(s)", event, ctx, len(snapshot))

        for listener in snapshot:
            if not self.config.isolate_errors:
                listener.target(*args)
                continue
            try:
                listener.target(*args)
            except Exception:
                self._log.exception(
                    "Listener %s for %r in %s raised", listener.identifier, event, ctx
                )

    # --- introspection ------------------------------------------------------------

    def listeners(self, event: Any, context: Any = GLOBAL) -> tuple[Listener, ...]:
        """Snapshot of the listeners of *event* in *context*."""
        cmap = self._events.get(event)
        listeners = cmap.get(resolve_context(context)) if cmap is not None else None
        return listeners.snapshot() if listeners is not None else ()

    def has_listeners(self, event: Any, context: Any = GLOBAL) -> bool:
        return bool(self.listeners(event, context))

    def events(self) -> list[Any]:
        return list(self._events)

    def contexts(self, event: Any) -> list[ContextRef]:
        cmap = self._events.get(event)
        return [ctx for ctx, _ in cmap.items()] if cmap is not None else []

    def __contains__(self, event: object) -> bool:
        return event in self._events

    def __len__(self) -> int:
        return sum(
            len(listeners) for cmap in self._events.values() for _, listeners in cmap.items()
        )

    def __repr__(self) -> str:
        return (
            f"ListenerRegistry(events={len(self._events)}, listeners={len(self)}, "
            f"scope={self.config.identifier_scope.value})"
        )

    # --- internals ----------------------------------------------------------------

    def _is_taken(self, ident: Identifier, listeners: ListenerSet | None) -> bool:
        if self.config.identifier_scope is IdentifierScope.REGISTRY and ident in self._claimed:
            return True
        return listeners is not None and ident in listeners

    def _release(self, removed: Iterable[Listener]) -> None:
        for listener in removed:
            self._claimed.discard(listener.identifier)

    def _prune(
        self, event: Any, cmap: ContextMap, ctx: ContextRef, listeners: ListenerSet | None
    ) -> None:
        if listeners is not None and not listeners:
            cmap.pop(ctx)
        if not cmap and self._events.get(event) is cmap:
            del self._events[event]

    def _new_context_map(self, event: Any) -> ContextMap:
        registry_ref = weakref.ref(self)

        def on_evict(cmap: ContextMap, listeners: ListenerSet) -> None:
            registry = registry_ref()
            if registry is not None:
                registry._evicted(event, cmap, listeners)

        return ContextMap(on_evict)

    def _evicted(self, event: Any, cmap: ContextMap, listeners: ListenerSet) -> None:
        self._release(listeners.snapshot())
        if not cmap and self._events.get(event) is cmap:
            del self._events[event]
        self._log.debug(
            "Dropped %d listener(s) of %r for a collected context", len(listeners), event
        )


def _check_event(event: Any) -> None:
    if event is None or event == "":
        raise ValueError("Event name must not be empty")
    hash(event)
