"""Tie log records to the fetch or server connection that produced them.

Every client fetch and every accepted server connection begins its own
correlation: a fresh id, the kind of exchange (``fetch`` or ``connection``)
and the protocol phase reached so far. The logger adapter copies all three
onto each record, so a failure line says which exchange broke and where.
"""

import contextvars
import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, MutableMapping, Optional

LOGGER_ROOT = "gemini"
NO_CORRELATION = "-"

SCOPE_FETCH = "fetch"
SCOPE_CONNECTION = "connection"


@dataclass(frozen=True)
class Correlation:
    correlation_id: str
    scope: str
    phase: str = "started"


_current: contextvars.ContextVar[Optional[Correlation]] = contextvars.ContextVar(
    "gemini_correlation", default=None
)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def begin_correlation(scope: str) -> Correlation:
    """Start a new correlation for ``scope`` in the current context."""
    correlation = Correlation(generate_correlation_id(), scope)
    _current.set(correlation)
    return correlation


def current_correlation() -> Optional[Correlation]:
    return _current.get()


def get_correlation_id() -> Optional[str]:
    correlation = _current.get()
    return correlation.correlation_id if correlation is not None else None


def mark_phase(phase: str) -> None:
    """Record the phase the current exchange reached; no-op outside one."""
    correlation = _current.get()
    if correlation is not None and correlation.phase != phase:
        _current.set(replace(correlation, phase=phase))


def end_correlation() -> None:
    _current.set(None)


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Adds correlation id, scope, phase and component to every record."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})

        correlation = _current.get()
        if correlation is None:
            extra["correlation_id"] = NO_CORRELATION
        else:
            extra["correlation_id"] = correlation.correlation_id
            extra["correlation_scope"] = correlation.scope
            extra.setdefault("phase", correlation.phase)

        name = self.logger.name
        prefix = f"{LOGGER_ROOT}."
        extra["component"] = name[len(prefix) :] if name.startswith(prefix) else name

        kwargs["extra"] = extra
        return msg, kwargs
