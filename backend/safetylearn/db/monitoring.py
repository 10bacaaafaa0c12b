"""Per-operation connection pool accounting for the account stores.

Database stores tag each unit of work with the operation they are running
(``"profile fetch"``, ``"progress update"`` and so on). Pool checkouts are
attributed to that tag, and how long each connection was held is tracked so
``/healthz/database`` can show which store operations keep connections busy.
"""

from __future__ import annotations

import os
import time
from collections import Counter
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Dict, Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..telemetry import emit_event

UNTAGGED_OPERATION = "untagged"
_CHECKOUT_KEY = "safetylearn_checkout"

_current_operation: ContextVar[str] = ContextVar("safetylearn_db_operation", default=UNTAGGED_OPERATION)
_EMIT_INTERVAL = float(os.getenv("SAFETYLEARN_DB_TELEMETRY_INTERVAL", "30"))


@dataclass
class PoolUsage:
    connects: int = 0
    checkouts: Counter = field(default_factory=Counter)
    longest_hold_ms: Dict[str, float] = field(default_factory=dict)
    last_emit: float = 0.0

    def record_hold(self, operation: str, held_ms: float) -> None:
        if held_ms > self.longest_hold_ms.get(operation, 0.0):
            self.longest_hold_ms[operation] = held_ms


_USAGE_BY_ENGINE: Dict[int, PoolUsage] = {}


@contextmanager
def tag_operation(operation: str) -> Iterator[None]:
    """Attribute connections checked out inside the block to ``operation``."""
    token = _current_operation.set(operation)
    try:
        yield
    finally:
        _current_operation.reset(token)


def current_operation() -> str:
    return _current_operation.get()


def instrument_engine(engine: Engine) -> None:
    key = id(engine)
    if key in _USAGE_BY_ENGINE:
        return
    usage = PoolUsage()
    _USAGE_BY_ENGINE[key] = usage

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        usage.connects += 1

    @event.listens_for(engine, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy) -> None:  # type: ignore[no-untyped-def]
        operation = current_operation()
        usage.checkouts[operation] += 1
        connection_record.info[_CHECKOUT_KEY] = (operation, time.perf_counter())

    @event.listens_for(engine, "checkin")
    def _on_checkin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        started = connection_record.info.pop(_CHECKOUT_KEY, None)
        if started is None:
            return
        operation, checked_out_at = started
        held_ms = round((time.perf_counter() - checked_out_at) * 1000, 2)
        usage.record_hold(operation, held_ms)
        _maybe_emit(engine, usage, operation, held_ms)


def _maybe_emit(engine: Engine, usage: PoolUsage, operation: str, held_ms: float) -> None:
    now = time.time()
    if _EMIT_INTERVAL > 0 and (now - usage.last_emit) < _EMIT_INTERVAL:
        return
    usage.last_emit = now
    emit_event(
        "db_pool_status",
        status=_pool_status(engine),
        operation=operation,
        held_ms=held_ms,
        connects=usage.connects,
        checkouts=sum(usage.checkouts.values()),
    )


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    usage = _USAGE_BY_ENGINE.get(id(engine)) or PoolUsage()
    return {
        "status": _pool_status(engine),
        "connects": usage.connects,
        "checkouts": sum(usage.checkouts.values()),
        "by_operation": {
            operation: {
                "checkouts": count,
                "longest_hold_ms": usage.longest_hold_ms.get(operation, 0.0),
            }
            for operation, count in sorted(usage.checkouts.items())
        },
    }


def _pool_status(engine: Engine) -> str:
    try:
        return engine.pool.status()  # type: ignore[no-untyped-call]
    except Exception as exc:  # pragma: no cover
        return f"unavailable: {exc}"


__all__ = [
    "PoolUsage",
    "UNTAGGED_OPERATION",
    "current_operation",
    "get_pool_snapshot",
    "instrument_engine",
    "tag_operation",
]
