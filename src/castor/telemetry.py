"""Injected analytics client.

A ``Telemetry`` instance is constructed explicitly at process start and passed
to the orchestrator; nothing here is a module-level singleton. A disabled
instance short-circuits every call.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
import logging
import time
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

_scope_stack_var: ContextVar[tuple[str, ...]] = ContextVar("castor_scope_stack", default=())


@runtime_checkable
class TelemetryReporter(Protocol):
    """Sink for captured events and scope timings."""

    def record_event(self, event: str, **properties: Any) -> None: ...
    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...
    def flush(self) -> None: ...


class Telemetry:
    """Analytics client with explicit lifecycle.

    Example:
        telemetry = Telemetry(MemoryReporter(), enabled=True)
        telemetry.init()
        telemetry.capture("chat_turn", model="gpt-4o-mini")
        await telemetry.shutdown()
    """

    def __init__(self, *reporters: TelemetryReporter, enabled: bool = True) -> None:
        self.reporters = reporters
        self.enabled = enabled and bool(reporters)
        self._started = False

    @classmethod
    def disabled(cls) -> Telemetry:
        return cls(enabled=False)

    def init(self) -> None:
        if self.enabled and not self._started:
            self._started = True
            logger.debug("Telemetry started with %d reporter(s)", len(self.reporters))

    def capture(self, event: str, **properties: Any) -> None:
        """Record one event. Reporter failures are logged, never raised."""
        if not self.enabled:
            return
        stack = _scope_stack_var.get()
        if stack:
            properties.setdefault("scope", ".".join(stack))
        for reporter in self.reporters:
            try:
                reporter.record_event(event, **properties)
            except Exception as e:
                logger.error(
                    "Telemetry reporter '%s' failed: %s", type(reporter).__name__, e
                )

    @contextmanager
    def timed(self, scope: str, **metadata: Any) -> Iterator[None]:
        """Time the enclosed block under a dotted scope path."""
        if not self.enabled:
            yield
            return
        stack = _scope_stack_var.get()
        token = _scope_stack_var.set((*stack, scope))
        start = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start
            _scope_stack_var.reset(token)
            path = ".".join((*stack, scope))
            for reporter in self.reporters:
                try:
                    reporter.record_timing(path, duration, depth=len(stack), **metadata)
                except Exception as e:
                    logger.error(
                        "Telemetry reporter '%s' failed: %s", type(reporter).__name__, e
                    )

    def flush(self) -> None:
        if not self.enabled:
            return
        for reporter in self.reporters:
            try:
                reporter.flush()
            except Exception as e:
                logger.error("Telemetry flush failed: %s", e)

    async def shutdown(self) -> None:
        """Flush pending data off the event loop and stop accepting events."""
        if not self.enabled:
            return
        await asyncio.to_thread(self.flush)
        self.enabled = False
        self._started = False
        logger.debug("Telemetry shut down")


class MemoryReporter:
    """In-memory reporter for development and tests."""

    def __init__(self, max_entries: int = 1000) -> None:
        self.events: deque[tuple[str, dict[str, Any]]] = deque(maxlen=max_entries)
        self.timings: dict[str, deque[float]] = {}
        self._max_entries = max_entries
        self.flushes = 0

    def record_event(self, event: str, **properties: Any) -> None:
        self.events.append((event, properties))

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:  # noqa: ARG002
        self.timings.setdefault(scope, deque(maxlen=self._max_entries)).append(duration)

    def flush(self) -> None:
        self.flushes += 1

    def event_names(self) -> list[str]:
        return [name for name, _ in self.events]


class LoggingReporter:
    """Write events and timings to the ``castor.telemetry`` logger."""

    def record_event(self, event: str, **properties: Any) -> None:
        logger.info("event %s %s", event, properties)

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:  # noqa: ARG002
        logger.info("timing %s %.4fs", scope, duration)

    def flush(self) -> None:
        pass
