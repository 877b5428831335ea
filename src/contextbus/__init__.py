"""contextbus: a synchronous publish/subscribe dispatcher with context-scoped listeners."""

from contextbus.config import IdentifierScope, RegistryConfig
from contextbus.contexts import GLOBAL, ContextRef, GlobalContext, Keyed, Labeled, resolve_context
from contextbus.errors import ContextBusError, DuplicateIdentifierError
from contextbus.identifiers import Identifier, resolve_identifier
from contextbus.registry import ContextMap, Listener, ListenerRegistry, ListenerSet

__version__ = "0.1.0"

__all__ = [
    # Registry
    "ListenerRegistry",
    "Listener",
    "ListenerSet",
    "ContextMap",
    # Configuration
    "RegistryConfig",
    "IdentifierScope",
    # Contexts
    "GLOBAL",
    "ContextRef",
    "GlobalContext",
    "Labeled",
    "Keyed",
    "resolve_context",
    # Identifiers
    "Identifier",
    "resolve_identifier",
    # Errors
    "ContextBusError",
    "DuplicateIdentifierError",
]
