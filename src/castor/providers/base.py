"""Provider protocol: minimal interface for streaming providers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from castor.providers.models import ProviderRequest, StreamPart


@runtime_checkable
class StreamingProvider(Protocol):
    """Run one generation step and stream its parts.

    Every step ends with exactly one ``StepFinish``. Tool execution and the
    multi-step loop belong to the engine, not to providers.
    """

    name: str

    def stream(self, request: ProviderRequest) -> AsyncIterator[StreamPart]:
        """Stream the parts of a single step."""
        ...

    async def aclose(self) -> None:
        """Close underlying client resources."""
        ...
