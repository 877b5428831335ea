"""CLI command: contextbus replay -- run a JSON script of bus operations."""

from __future__ import annotations

import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable

import click

from contextbus.config import IdentifierScope, RegistryConfig
from contextbus.errors import ContextBusError
from contextbus.registry import ListenerRegistry


_OPS = ("subscribe", "unsubscribe", "broadcast")


class ScriptError(ValueError):
    """The replay script is malformed."""


class ListenerFailure(RuntimeError):
    """Raised by a recorder subscribed with ``"fail": true``."""


# ---------------------------------------------------------------------------
# Script loading
# ---------------------------------------------------------------------------


def load_script(path: Path) -> list[dict[str, Any]]:
    """Read a replay script: a JSON list of operation objects."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ScriptError(f"invalid JSON: {exc}") from exc
    if not isinstance(data, list) or not all(isinstance(op, dict) for op in data):
        raise ScriptError("script must be a JSON list of operation objects")
    return data


def _field(op: dict[str, Any], index: int, name: str, required: bool = False) -> str | None:
    value = op.get(name)
    if value is None:
        if required:
            raise ScriptError(f"operation {index}: missing {name!r}")
        return None
    if not isinstance(value, str) or not value:
        raise ScriptError(f"operation {index}: {name!r} must be a non-empty string")
    return value


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------


def run_script(
    ops: list[dict[str, Any]],
    registry: ListenerRegistry,
    echo: Callable[[str], None] = click.echo,
) -> None:
    """Apply *ops* to *registry*, echoing each listener invocation.

    Listeners are recorders named in the script; the same name always maps to
    the same function, so ``{"op": "unsubscribe", "listener": name}`` removes
    every registration of it. A name keeps the ``fail`` flag it was first
    subscribed with.
    """
    recorders: dict[str, Callable[..., None]] = {}
    failing: dict[str, bool] = {}

    def recorder(index: int, name: str, fail: bool) -> Callable[..., None]:
        if name in recorders:
            if failing[name] != fail:
                raise ScriptError(
                    f"operation {index}: listener {name!r} was first subscribed "
                    f"with fail={failing[name]}"
                )
            return recorders[name]

        def record(*args: Any) -> None:
            shown = ", ".join(json.dumps(arg) for arg in args)
            echo(f"  {name}({shown})")
            if fail:
                raise ListenerFailure(f"listener {name!r} failed")

        recorders[name] = record
        failing[name] = fail
        return record

    for index, op in enumerate(ops):
        kind = op.get("op")
        if kind not in _OPS:
            raise ScriptError(f"operation {index}: unknown op {kind!r}")
        event = _field(op, index, "event", required=True)
        context = _field(op, index, "context")
        where = f" in {context!r}" if context else ""

        if kind == "subscribe":
            name = _field(op, index, "listener", required=True)
            ident = registry.subscribe(
                event,
                recorder(index, name, bool(op.get("fail"))),
                _field(op, index, "identifier"),
                context,
            )
            echo(f"subscribed {name} to {event}{where} as {ident}")
        elif kind == "unsubscribe":
            name = _field(op, index, "listener")
            identifier = _field(op, index, "identifier")
            if name is not None and identifier is not None:
                raise ScriptError(f"operation {index}: give 'listener' or 'identifier', not both")
            if name is not None:
                removed = registry.unsubscribe(event, recorders[name], context) if name in recorders else 0
            else:
                removed = registry.unsubscribe(event, identifier, context)
            echo(f"unsubscribed {removed} listener(s) from {event}{where}")
        else:
            echo(f"broadcast {event}{where}")
            if "payload" in op:
                registry.broadcast(event, context, op["payload"])
            else:
                registry.broadcast(event, context)


@click.command()
@click.argument("script", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--scope",
    type=click.Choice([s.value for s in IdentifierScope]),
    default=None,
    help="Identifier space: per (event, context) or registry-wide "
    "[default: CONTEXTBUS_IDENTIFIER_SCOPE or context]",
)
@click.option(
    "--isolate-errors",
    is_flag=True,
    help="Log failing listeners and keep broadcasting [default: CONTEXTBUS_ISOLATE_ERRORS]",
)
def replay(script: str, scope: str | None, isolate_errors: bool) -> None:
    """Replay a JSON script of subscribe/unsubscribe/broadcast operations.

    Prints each listener invocation. Exits with code 1 on a malformed script,
    a duplicate identifier or an uncaught listener failure. Options left
    unset fall back to the CONTEXTBUS_* environment variables.
    """
    config = RegistryConfig.from_env()
    if scope is not None:
        config = replace(config, identifier_scope=IdentifierScope(scope))
    if isolate_errors:
        config = replace(config, isolate_errors=True)
    registry = ListenerRegistry(config)

    try:
        ops = load_script(Path(script))
        run_script(ops, registry)
    except ScriptError as exc:
        click.echo(f"Script error: {exc}", err=True)
        sys.exit(1)
    except ContextBusError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except ListenerFailure as exc:
        click.echo(f"Listener error: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Done: {len(ops)} operation(s), {len(registry)} listener(s) still subscribed")
