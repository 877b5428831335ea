"""Registry configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping


class IdentifierScope(Enum):
    CONTEXT = "context"  # unique per (event, context) listener set
    REGISTRY = "registry"  # one flat space across the whole registry


_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class RegistryConfig:
    """Configuration for a ``ListenerRegistry``."""

    identifier_scope: IdentifierScope = IdentifierScope.CONTEXT
    isolate_errors: bool = False
    logger_name: str = "contextbus"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RegistryConfig:
        """Build a config from ``CONTEXTBUS_*`` environment variables.

        Missing or unrecognised values fall back to the defaults.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        raw_scope = env.get("CONTEXTBUS_IDENTIFIER_SCOPE", "").strip().lower()
        try:
            scope = IdentifierScope(raw_scope)
        except ValueError:
            scope = defaults.identifier_scope

        raw_isolate = env.get("CONTEXTBUS_ISOLATE_ERRORS")
        if raw_isolate is None:
            isolate = defaults.isolate_errors
        else:
            isolate = raw_isolate.strip().lower() in _TRUTHY

        return cls(identifier_scope=scope, isolate_errors=isolate)
