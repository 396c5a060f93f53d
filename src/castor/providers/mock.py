"""Mock provider for testing and local development."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from castor.providers.models import (
    ProviderRequest,
    StepFinish,
    StreamPart,
    TextDelta,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Sequence

MockStep = list[StreamPart | BaseException]


class MockProvider:
    """Replay scripted steps without API calls.

    Each call to ``stream`` consumes the next script. A script item that is an
    exception is raised at that point, so a failure can be placed before the
    first part or mid-stream. With no scripts left, the provider echoes the
    last user message.
    """

    name = "mock"

    def __init__(self, steps: Iterable[Sequence[StreamPart | BaseException]] = ()):
        self._steps: deque[MockStep] = deque(list(s) for s in steps)
        self.requests: list[ProviderRequest] = []
        self.closed = False

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamPart]:
        """Yield the next scripted step."""
        self.requests.append(request)
        if self._steps:
            script = self._steps.popleft()
        else:
            last_user = next(
                (m.content for m in reversed(request.messages) if m.role == "user"),
                "",
            )
            script = [
                TextDelta(f"echo: {last_user[:100]}"),
                StepFinish(
                    finish_reason="stop",
                    usage={"input_tokens": 10, "output_tokens": 10},
                ),
            ]

        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item
        if not script or not isinstance(script[-1], StepFinish):
            yield StepFinish(finish_reason="stop")

    async def aclose(self) -> None:
        self.closed = True
