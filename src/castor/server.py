"""HTTP surface: ``POST /api/chat`` and ``GET /health``.

Run locally with ``castor-server`` or ``uvicorn castor.server:app``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from castor.config import Config
from castor.orchestrator import ChatOrchestrator
from castor.store import InMemoryChatStore
from castor.telemetry import LoggingReporter, Telemetry

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[Config, Telemetry], ChatOrchestrator]


def default_orchestrator(config: Config, telemetry: Telemetry) -> ChatOrchestrator:
    """Orchestrator over a process-local store; real deployments inject their own."""
    return ChatOrchestrator(InMemoryChatStore(), config, telemetry=telemetry)


def create_app(
    orchestrator_factory: OrchestratorFactory = default_orchestrator,
    *,
    config: Config | None = None,
    telemetry: Telemetry | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    The lifespan constructs config, telemetry and the orchestrator once per
    process and shuts telemetry down on exit.
    """

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        cfg = config or Config.from_env()
        tel = telemetry or (
            Telemetry(LoggingReporter()) if cfg.telemetry_enabled else Telemetry.disabled()
        )
        tel.init()
        application.state.config = cfg
        application.state.telemetry = tel
        application.state.orchestrator = orchestrator_factory(cfg, tel)
        logger.info("Castor chat API started (mock=%s).", cfg.use_mock)
        try:
            yield
        finally:
            await tel.shutdown()
            logger.info("Castor chat API shutting down.")

    application = FastAPI(
        title="Castor Chat API",
        description="Chat turn orchestration with provider fallback and web search.",
        lifespan=lifespan,
    )

    @application.post("/api/chat")
    async def chat(request: Request) -> Response:
        """Run one chat turn and stream the answer as server-sent events."""
        orchestrator: ChatOrchestrator = request.app.state.orchestrator
        result = await orchestrator.handle_turn(await request.body())
        if result.is_streaming:
            return StreamingResponse(
                result.sse(),
                media_type="text/event-stream",
                headers=result.headers,
            )
        return JSONResponse(result.body or {}, status_code=result.status)

    @application.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "castor-chat"}

    return application


def main() -> None:
    """Console entrypoint: serve the API with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("CASTOR_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        create_app(),
        host=os.environ.get("CASTOR_HOST", "127.0.0.1"),
        port=int(os.environ.get("CASTOR_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
