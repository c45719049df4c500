"""Lifecycle events emitted against machines and clusters."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from loguru import logger

if TYPE_CHECKING:
    from capaws.scope import ClusterScope, Machine

type Subject = Machine | ClusterScope
type Handler = Callable[[Event], object]

log = logger.bind(component="events")


@dataclass(frozen=True, slots=True)
class Event:
    subject: Subject
    reason: str
    message: str


@runtime_checkable
class EventRecorder(Protocol):
    """Fire-and-forget event sink."""

    def event(self, subject: Subject, reason: str, message: str) -> None: ...


class EventBus:
    """Minimal event bus implementing ``EventRecorder``.

    Every event is logged; registered handlers receive it in registration
    order. A failing handler is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: list[Handler] = []

    def on(self, handler: Handler) -> Handler:
        """Register a handler. Usable as a decorator."""
        self._handlers.append(handler)
        return handler

    def event(self, subject: Subject, reason: str, message: str) -> None:
        emitted = Event(subject=subject, reason=reason, message=message)
        log.info(
            "{reason} on {kind} {name}: {message}",
            reason=reason, kind=type(subject).__name__, name=subject.name, message=message,
        )
        for handler in self._handlers:
            try:
                handler(emitted)
            except Exception:
                log.exception("Event handler {handler} failed for {reason}", handler=handler, reason=reason)

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()
